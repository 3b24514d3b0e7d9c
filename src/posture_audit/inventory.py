"""
Tenant-wide resource inventory.

Lists every resource of every enabled subscription the identity can see and
exports the list to CSV and/or JSON. No rules are applied; this is a plain
inventory with summary counts.
"""

from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from azure.core.exceptions import AzureError
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient

from .errors import FetchError, RenderError
from .records import resource_group_from_id
from .reporter import RenderResult, write_artifact, write_csv_rows, write_json
from .settings import INVENTORY_BASENAME, REPORT_DATE_FORMAT, REPORTS_DIR, get_client_options

INVENTORY_COLUMNS = [
    'subscription_id', 'subscription_name', 'resource_group',
    'name', 'type', 'location', 'id',
]


def _resource_client(credential: Any, subscription_id: str) -> ResourceManagementClient:
    return ResourceManagementClient(credential, subscription_id, **get_client_options())


@dataclass(frozen=True)
class ResourceInventoryItem:
    subscription_id: str
    subscription_name: str
    resource_group: str
    name: str
    type: str
    location: str
    id: str


def collect_inventory(credential: Any, subscription_ids: Optional[Sequence[str]] = None,
                      subscription_client: Optional[Any] = None,
                      resource_client_factory: Callable[..., Any] = _resource_client
                      ) -> List[ResourceInventoryItem]:
    """
    Collect resources across subscriptions.

    Args:
        credential: azure.identity credential
        subscription_ids: Limit to these subscriptions (default: every
            enabled subscription)
        subscription_client: SubscriptionClient to use (created when omitted)
        resource_client_factory: Builds a ResourceManagementClient for
            (credential, subscription_id)

    Returns:
        Inventory items, subscription by subscription

    Raises:
        FetchError: If the subscription list itself cannot be read
    """
    subscription_client = subscription_client or SubscriptionClient(credential, **get_client_options())

    print(f"\nListing subscriptions...")
    try:
        subscriptions = [
            sub for sub in subscription_client.subscriptions.list()
            if str(getattr(sub.state, 'value', sub.state)) == 'Enabled'
        ]
    except AzureError as e:
        print(f"  ✗ Azure API error: {e}")
        raise FetchError('inventory', 'tenant', e) from e

    if subscription_ids:
        wanted = set(subscription_ids)
        subscriptions = [sub for sub in subscriptions if sub.subscription_id in wanted]
    print(f"  Found {len(subscriptions)} enabled subscription(s)")

    items: List[ResourceInventoryItem] = []
    for sub in subscriptions:
        client = resource_client_factory(credential, sub.subscription_id)
        try:
            resources = list(client.resources.list())
        except AzureError as e:
            print(f"  ⚠ Skipping subscription {sub.display_name}: {e}")
            continue
        print(f"  {sub.display_name}: {len(resources)} resource(s)")
        items.extend(
            ResourceInventoryItem(
                subscription_id=sub.subscription_id,
                subscription_name=sub.display_name or "",
                resource_group=resource_group_from_id(resource.id),
                name=resource.name,
                type=resource.type,
                location=resource.location or "",
                id=resource.id,
            )
            for resource in resources
        )
    return items


def summarize_inventory(items: Sequence[ResourceInventoryItem]) -> Dict[str, Any]:
    """Total plus counts by type, location and subscription (most common first)."""
    return {
        'total': len(items),
        'by_type': dict(Counter(item.type for item in items).most_common()),
        'by_location': dict(Counter(item.location for item in items).most_common()),
        'by_subscription': dict(Counter(item.subscription_name for item in items).most_common()),
    }


def print_inventory_summary(items: Sequence[ResourceInventoryItem], top: int = 10) -> None:
    summary = summarize_inventory(items)
    print(f"\n{'='*70}")
    print(f"RESOURCE INVENTORY: {summary['total']} resource(s)")
    print(f"{'='*70}")
    for title, key in (("By subscription", 'by_subscription'), ("By type", 'by_type'),
                       ("By location", 'by_location')):
        print(f"\n{title}:")
        for name, count in list(summary[key].items())[:top]:
            print(f"  {count:6d}  {name}")
    print(f"{'='*70}\n")


def write_inventory(items: Sequence[ResourceInventoryItem], formats: Iterable[str],
                    output_dir: Union[str, Path] = REPORTS_DIR,
                    basename: str = INVENTORY_BASENAME,
                    generated_at: Optional[datetime] = None) -> RenderResult:
    """
    Write the inventory as CSV and/or JSON.

    Returns:
        RenderResult; a failed artifact is listed in errors and does not stop
        the other format
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    stamp = generated_at.strftime(REPORT_DATE_FORMAT)
    rows = [asdict(item) for item in items]
    writers = {
        'csv': lambda path: write_csv_rows(path, INVENTORY_COLUMNS, rows),
        'json': lambda path: write_json(path, {
            'generated_at': generated_at.isoformat(),
            'summary': summarize_inventory(items),
            'resources': rows,
        }),
    }

    result = RenderResult()
    for fmt in formats:
        fmt = fmt.lower()
        if fmt not in writers:
            raise ValueError(f"Unsupported inventory format: {fmt}")
        path = Path(output_dir) / f"{basename}_{stamp}.{fmt}"
        try:
            write_artifact(path, writers[fmt])
        except RenderError as e:
            print(f"✗ {e}")
            result.errors.append(e)
            continue
        print(f"✓ Inventory {fmt.upper()} saved to: {path}")
        result.written[fmt] = path
    return result
