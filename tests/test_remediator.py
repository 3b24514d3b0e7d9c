"""Tests for remediation routing and the individual handlers."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from posture_audit import remediator
from posture_audit.catalog import Severity
from posture_audit.evaluator import Finding
from posture_audit.records import NetworkRuleRecord, RoleAssignmentRecord


@pytest.fixture
def fixer(monkeypatch, tmp_path):
    for name in ("ClientSecretCredential", "StorageManagementClient", "NetworkManagementClient",
                 "AuthorizationManagementClient"):
        monkeypatch.setattr(remediator, name, MagicMock())
    return remediator.AzureRemediator("sub-1", "tenant-1", "client-1", "secret",
                                      snapshots_dir=tmp_path / "snapshots")


def _finding(rule_id, subject_id):
    return Finding(rule_id=rule_id, severity=Severity.HIGH, message="m", subject_id=subject_id)


def _account(**settings):
    values = dict(
        name="stweb01",
        enable_https_traffic_only=True,
        minimum_tls_version="TLS1_2",
        allow_blob_public_access=False,
        network_rule_set=SimpleNamespace(default_action="Allow"),
        encryption=None,
        tags={},
    )
    values.update(settings)
    return SimpleNamespace(**values)


def test_rule_without_handler(fixer, exposed_ssh_rule):
    success, message = fixer.apply_change(_finding("nsg-inbound-all-ports", "x"), exposed_ssh_rule)
    assert not success
    assert message == "No remediation handler for rule ID: nsg-inbound-all-ports"


def test_has_remediation():
    assert remediator.has_remediation("storage-https-only")
    assert not remediator.has_remediation("vm-deallocated")


def test_restrict_storage_network(fixer, storage_record, tmp_path):
    storage = fixer.storage_client.storage_accounts
    storage.get_properties.return_value = _account()
    storage.update.return_value = _account(network_rule_set=SimpleNamespace(default_action="Deny"))

    success, message = fixer.apply_change(
        _finding("storage-network-restricted", "stweb01"), storage_record)

    assert success
    assert "network default action set to Deny" in message
    params = storage.update.call_args.kwargs["parameters"]
    assert params.network_rule_set.default_action == "Deny"
    assert storage.update.call_args.kwargs["resource_group_name"] == "rg-web"

    (snapshot_file,) = (tmp_path / "snapshots").iterdir()
    snapshot = json.loads(snapshot_file.read_text(encoding="utf-8"))
    assert snapshot["subject_id"] == "stweb01"
    assert snapshot["configuration"]["network_default_action"] == "Allow"


def test_already_compliant_storage_is_not_updated(fixer, storage_record):
    fixer.storage_client.storage_accounts.get_properties.return_value = _account()
    success, message = fixer.enforce_storage_https(storage_record)
    assert success
    assert "already compliant" in message
    fixer.storage_client.storage_accounts.update.assert_not_called()


def test_unconfirmed_update_fails(fixer, storage_record):
    storage = fixer.storage_client.storage_accounts
    storage.get_properties.return_value = _account(minimum_tls_version="TLS1_0")
    storage.update.return_value = _account(minimum_tls_version="TLS1_0")
    success, message = fixer.set_storage_minimum_tls(storage_record)
    assert not success
    assert "not confirmed" in message


def test_missing_account(fixer, storage_record):
    fixer.storage_client.storage_accounts.get_properties.side_effect = ResourceNotFoundError("gone")
    success, message = fixer.disable_storage_public_access(storage_record)
    assert not success
    assert message == "Storage account 'stweb01' not found in resource group 'rg-web'"


def test_api_error_is_returned(fixer, storage_record):
    fixer.storage_client.storage_accounts.get_properties.side_effect = HttpResponseError(message="Conflict")
    success, message = fixer.enable_storage_encryption(storage_record)
    assert not success
    assert message.startswith("Azure API error")


def test_deny_rule_takes_next_free_priority(fixer, exposed_ssh_rule, make_azure_rule):
    fixer.network_client.network_security_groups.get.return_value = SimpleNamespace(
        security_rules=[make_azure_rule(priority=300), make_azure_rule(name="Other", priority=299)],
        tags=None,
    )

    success, message = fixer.apply_change(_finding("nsg-exposed-ssh", exposed_ssh_rule.subject_id),
                                          exposed_ssh_rule)

    assert success
    kwargs = fixer.network_client.security_rules.begin_create_or_update.call_args.kwargs
    rule = kwargs["security_rule_parameters"]
    assert kwargs["security_rule_name"] == "DENY-Remediation-Allow-SSH"
    assert rule.priority == 298
    assert rule.access == "Deny"
    assert rule.destination_port_range == "22"
    assert rule.destination_port_ranges is None
    assert "priority 298" in message


def test_deny_rule_lists_several_port_ranges(fixer):
    record = NetworkRuleRecord("nsg-web", "Allow-Admin", "Allow", "Inbound",
                               ("Internet", "10.0.0.0/8"), ("22", "3389"),
                               priority=400, resource_group="rg-web")
    fixer.network_client.network_security_groups.get.return_value = SimpleNamespace(
        security_rules=[], tags=None)

    success, _ = fixer.deny_nsg_rule(record)

    assert success
    rule = fixer.network_client.security_rules.begin_create_or_update.call_args.kwargs[
        "security_rule_parameters"]
    assert rule.destination_port_range is None
    assert rule.destination_port_ranges == ["22", "3389"]
    assert rule.priority == 399


def test_comma_separated_ports_are_split():
    assert remediator._port_ranges("80, 443") == ["80", "443"]
    assert remediator._port_ranges(None) == ["*"]


def test_existing_deny_rule_is_reused(fixer, exposed_ssh_rule, make_azure_rule):
    fixer.network_client.network_security_groups.get.return_value = SimpleNamespace(
        security_rules=[make_azure_rule(name="DENY-Remediation-Allow-SSH", access="Deny", priority=299)],
        tags=None,
    )
    success, message = fixer.deny_nsg_rule(exposed_ssh_rule)
    assert success
    assert "already exists" in message
    fixer.network_client.security_rules.begin_create_or_update.assert_not_called()


def test_no_free_priority(fixer, make_azure_rule):
    record = NetworkRuleRecord("nsg-web", "Allow-Top", "Allow", "Inbound", "*", "22",
                               priority=100, resource_group="rg-web")
    fixer.network_client.network_security_groups.get.return_value = SimpleNamespace(
        security_rules=[make_azure_rule(name="Allow-Top", priority=100)], tags=None)
    success, message = fixer.deny_nsg_rule(record)
    assert not success
    assert "No free priority" in message


def test_remove_role_assignment(fixer):
    record = RoleAssignmentRecord("p-1", "ServicePrincipal", "Owner", "/subscriptions/sub-1",
                                  assignment_id="/subscriptions/sub-1/roleAssignments/ra-1")
    success, _ = fixer.remove_role_assignment(record)
    assert success
    fixer.authorization_client.role_assignments.delete_by_id.assert_called_once_with(
        "/subscriptions/sub-1/roleAssignments/ra-1")


def test_role_assignment_without_id(fixer):
    record = RoleAssignmentRecord("p-1", "User", "Owner", "/subscriptions/sub-1")
    success, message = fixer.remove_role_assignment(record)
    assert not success
    assert "has no assignment ID" in message


def test_snapshot_failure_is_recorded(fixer, storage_record):
    fixer.storage_client.storage_accounts.get_properties.side_effect = HttpResponseError(message="boom")
    snapshot = fixer.create_rollback_snapshot(storage_record)
    assert "error" in snapshot
    assert "snapshot_file" not in snapshot
