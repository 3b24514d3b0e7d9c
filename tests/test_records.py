"""Tests for record types and their constructors."""

from types import SimpleNamespace

import pytest

from posture_audit.errors import RecordEvaluationError
from posture_audit.records import (
    NetworkRuleRecord,
    RoleAssignmentRecord,
    StorageAccountRecord,
    VMRecord,
    record_type_for,
    resource_group_from_id,
)

NSG_ID = "/subscriptions/sub-1/resourceGroups/rg-web/providers/Microsoft.Network/networkSecurityGroups/nsg-web"


def test_resource_group_from_id():
    assert resource_group_from_id(NSG_ID) == "rg-web"
    assert resource_group_from_id(None) == ""
    assert resource_group_from_id("/subscriptions/sub-1") == ""


def test_network_rule_from_azure_keeps_plural_fields_as_tuples(make_azure_rule):
    nsg = SimpleNamespace(name="nsg-web", id=NSG_ID)
    rule = make_azure_rule(
        source_address_prefix=None,
        source_address_prefixes=["10.0.0.0/8", "192.168.0.0/16"],
        destination_port_range=None,
        destination_port_ranges=["22", "3389"],
    )
    record = NetworkRuleRecord.from_azure(nsg, rule)

    assert record.subject_id == "nsg-web/Allow-SSH"
    assert record.source_address_prefix == ("10.0.0.0/8", "192.168.0.0/16")
    assert record.destination_port_range == ("22", "3389")
    assert record.resource_group == "rg-web"
    assert record.priority == 300


def test_storage_from_azure_reads_nested_settings():
    account = SimpleNamespace(
        name="stweb01",
        id="/subscriptions/sub-1/resourceGroups/rg-data/providers/Microsoft.Storage/storageAccounts/stweb01",
        enable_https_traffic_only=True,
        minimum_tls_version="TLS1_0",
        allow_blob_public_access=None,
        network_rule_set=SimpleNamespace(default_action="Allow"),
        encryption=SimpleNamespace(services=SimpleNamespace(blob=SimpleNamespace(enabled=True))),
    )
    record = StorageAccountRecord.from_azure(account)

    assert record.minimum_tls_version == "TLS1_0"
    assert record.allow_blob_public_access is None
    assert record.network_default_action == "Allow"
    assert record.blob_encryption_enabled is True
    assert record.resource_group == "rg-data"


def test_storage_from_azure_without_encryption():
    account = SimpleNamespace(
        name="stbare", id=None, enable_https_traffic_only=False, minimum_tls_version=None,
        allow_blob_public_access=True, network_rule_set=None, encryption=None,
    )
    record = StorageAccountRecord.from_azure(account)
    assert record.network_default_action is None
    assert record.blob_encryption_enabled is None


def test_role_assignment_from_azure_resolves_role_name():
    assignment = SimpleNamespace(
        id="/subscriptions/sub-1/providers/Microsoft.Authorization/roleAssignments/ra-1",
        principal_id="p-1",
        principal_type=SimpleNamespace(value="ServicePrincipal"),
        role_definition_id="/subscriptions/sub-1/providers/Microsoft.Authorization/roleDefinitions/8E3AF657-A8FF-443C-A75C-2FE8C4BCB635",
        scope="/subscriptions/sub-1",
    )
    record = RoleAssignmentRecord.from_azure(
        assignment, {"8e3af657-a8ff-443c-a75c-2fe8c4bcb635": "Owner"})

    assert record.role_name == "Owner"
    assert record.principal_type == "ServicePrincipal"
    assert record.assignment_id.endswith("ra-1")
    assert record.subject_id == "p-1:Owner@/subscriptions/sub-1"


def test_unknown_role_definition():
    assignment = SimpleNamespace(id=None, principal_id="p-2", principal_type="User",
                                 role_definition_id="/x/roleDefinitions/abc", scope="/")
    assert RoleAssignmentRecord.from_azure(assignment, {}).role_name == "Unknown"


def test_from_mapping_requires_fields():
    with pytest.raises(RecordEvaluationError) as excinfo:
        VMRecord.from_mapping({"vm_name": "vm-1"})
    assert excinfo.value.field == "vm_size"
    assert excinfo.value.subject_id == "vm-1"


def test_from_mapping_accepts_none_and_ignores_extras(storage_mapping):
    data = dict(storage_mapping, minimum_tls_version=None, tags={"env": "dev"})
    record = StorageAccountRecord.from_mapping(data)
    assert record.minimum_tls_version is None
    assert not hasattr(record, "tags")


def test_from_mapping_rejects_non_mapping():
    with pytest.raises(RecordEvaluationError):
        NetworkRuleRecord.from_mapping(["not", "a", "mapping"])


def test_category_comes_from_category_field():
    vm = VMRecord(vm_name="vm-1", vm_size="Standard_B2s")
    assert vm.category == "Standard_B2s"
    storage = StorageAccountRecord("st", True, "TLS1_2", False, "Deny", True)
    assert storage.category is None


def test_record_type_for():
    assert record_type_for("rbac") is RoleAssignmentRecord
    with pytest.raises(ValueError):
        record_type_for("dns")


def test_from_mapping_turns_lists_into_tuples(exposed_ssh_rule):
    data = dict(exposed_ssh_rule.as_dict(), source_address_prefix=["Internet", "10.0.0.0/8"])
    record = NetworkRuleRecord.from_mapping(data)
    assert record.source_address_prefix == ("Internet", "10.0.0.0/8")
    assert hash(record) == hash(NetworkRuleRecord.from_mapping(data))
