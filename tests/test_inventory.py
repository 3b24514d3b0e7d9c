"""Tests for the tenant resource inventory."""

import csv
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError

from posture_audit.errors import FetchError
from posture_audit.inventory import (
    ResourceInventoryItem,
    collect_inventory,
    summarize_inventory,
    write_inventory,
)


def _subscription(sub_id, name, state="Enabled"):
    return SimpleNamespace(subscription_id=sub_id, display_name=name, state=SimpleNamespace(value=state))


def _resource(name, rtype, location, group="rg-app", sub_id="sub-1"):
    return SimpleNamespace(
        name=name,
        type=rtype,
        location=location,
        id=f"/subscriptions/{sub_id}/resourceGroups/{group}/providers/{rtype}/{name}",
    )


@pytest.fixture
def subscription_client():
    client = MagicMock()
    client.subscriptions.list.return_value = [
        _subscription("sub-1", "Production"),
        _subscription("sub-2", "Sandbox"),
        _subscription("sub-3", "Retired", state="Disabled"),
    ]
    return client


def _factory(resources_by_sub):
    clients = {}

    def factory(credential, subscription_id):
        client = MagicMock()
        outcome = resources_by_sub[subscription_id]
        if isinstance(outcome, Exception):
            client.resources.list.side_effect = outcome
        else:
            client.resources.list.return_value = outcome
        clients[subscription_id] = client
        return client

    factory.clients = clients
    return factory


def test_collects_enabled_subscriptions_only(subscription_client):
    factory = _factory({
        "sub-1": [_resource("vm-1", "Microsoft.Compute/virtualMachines", "eastus")],
        "sub-2": [_resource("st1", "Microsoft.Storage/storageAccounts", "westeurope", "rg-data", "sub-2")],
    })
    items = collect_inventory(object(), subscription_client=subscription_client,
                              resource_client_factory=factory)

    assert [item.name for item in items] == ["vm-1", "st1"]
    assert items[1].subscription_name == "Sandbox"
    assert items[1].resource_group == "rg-data"
    assert "sub-3" not in factory.clients


def test_subscription_filter(subscription_client):
    factory = _factory({"sub-2": []})
    items = collect_inventory(object(), ["sub-2"], subscription_client=subscription_client,
                              resource_client_factory=factory)
    assert items == []
    assert list(factory.clients) == ["sub-2"]


def test_failing_subscription_is_skipped(subscription_client, capsys):
    factory = _factory({
        "sub-1": HttpResponseError(message="AuthorizationFailed"),
        "sub-2": [_resource("st1", "Microsoft.Storage/storageAccounts", "westeurope")],
    })
    items = collect_inventory(object(), subscription_client=subscription_client,
                              resource_client_factory=factory)
    assert [item.name for item in items] == ["st1"]
    assert "⚠ Skipping subscription Production" in capsys.readouterr().out


def test_subscription_list_failure_raises():
    client = MagicMock()
    client.subscriptions.list.side_effect = HttpResponseError(message="denied")
    with pytest.raises(FetchError, match="inventory"):
        collect_inventory(object(), subscription_client=client)


def _items():
    return [
        ResourceInventoryItem("sub-1", "Production", "rg-app", "vm-1", "Microsoft.Compute/virtualMachines", "eastus", "/id/1"),
        ResourceInventoryItem("sub-1", "Production", "rg-app", "vm-2", "Microsoft.Compute/virtualMachines", "westus", "/id/2"),
        ResourceInventoryItem("sub-2", "Sandbox", "rg-data", "st1", "Microsoft.Storage/storageAccounts", "eastus", "/id/3"),
    ]


def test_summary_counts():
    summary = summarize_inventory(_items())
    assert summary["total"] == 3
    assert summary["by_type"] == {"Microsoft.Compute/virtualMachines": 2, "Microsoft.Storage/storageAccounts": 1}
    assert summary["by_location"]["eastus"] == 2
    assert summary["by_subscription"] == {"Production": 2, "Sandbox": 1}


def test_write_inventory_csv_and_json(tmp_path):
    stamp = datetime(2025, 1, 2, tzinfo=timezone.utc)
    result = write_inventory(_items(), ["csv", "json"], tmp_path, generated_at=stamp)

    assert result.ok
    assert result.written["csv"] == tmp_path / "resource_inventory_20250102.csv"
    with open(result.written["csv"], newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [row["name"] for row in rows] == ["vm-1", "vm-2", "st1"]

    with open(result.written["json"], encoding="utf-8") as f:
        data = json.load(f)
    assert data["summary"]["total"] == 3
    assert data["resources"][2]["resource_group"] == "rg-data"


def test_write_inventory_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        write_inventory(_items(), ["xml"], tmp_path)
