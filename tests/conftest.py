"""Shared fixtures: sample records, rule files and a throwaway event log."""

from types import SimpleNamespace

import pytest

from posture_audit.catalog import list_rules
from posture_audit.eventlog import EventLog
from posture_audit.records import NetworkRuleRecord, StorageAccountRecord


@pytest.fixture
def nsg_rules():
    return list_rules("nsg")


@pytest.fixture
def storage_rules():
    return list_rules("storage")


@pytest.fixture
def exposed_ssh_rule():
    return NetworkRuleRecord(
        nsg_name="nsg-web",
        rule_name="Allow-SSH",
        access="Allow",
        direction="Inbound",
        source_address_prefix="*",
        destination_port_range="22",
        protocol="Tcp",
        priority=300,
        resource_group="rg-web",
    )


@pytest.fixture
def storage_mapping():
    """Storage settings with only the network restriction missing."""
    return {
        "account_name": "stweb01",
        "enable_https_traffic_only": True,
        "minimum_tls_version": "TLS1_2",
        "allow_blob_public_access": False,
        "network_default_action": "Allow",
        "blob_encryption_enabled": True,
        "resource_group": "rg-web",
    }


@pytest.fixture
def storage_record(storage_mapping):
    return StorageAccountRecord.from_mapping(storage_mapping)


@pytest.fixture
def event_log(tmp_path):
    return EventLog(logs_dir=tmp_path / "logs", run_id="test")


@pytest.fixture
def write_rules(tmp_path):
    """Write a rule file and return its path."""
    counter = {"n": 0}

    def _write(text):
        counter["n"] += 1
        path = tmp_path / f"rules_{counter['n']}.yaml"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_azure_rule():
    """Factory for SecurityRule stand-ins."""

    def _make(**overrides):
        values = dict(
            name="Allow-SSH",
            access="Allow",
            direction="Inbound",
            source_address_prefix="*",
            source_address_prefixes=[],
            destination_port_range="22",
            destination_port_ranges=[],
            protocol="Tcp",
            priority=300,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    return _make
