"""
Azure Record Source

Fetches audit records from Azure Resource Manager: NSG security rules,
storage account settings, virtual machines with utilisation metrics and
RBAC role assignments.

Authentication uses a service principal (ClientSecretCredential), so the
source runs unattended in scheduled jobs and pipelines. The identity needs
Reader on the audited scope (plus Monitoring Reader for VM metrics).

A failed list call aborts the fetch with FetchError, as does a storage
account read that never reached Azure. An error response for one storage
account skips that account; a failed VM metrics or power state read leaves
the value empty. Both are printed as warnings.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from azure.core.exceptions import AzureError, HttpResponseError
from azure.identity import ClientSecretCredential
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.monitor import MonitorManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.storage import StorageManagementClient

from .errors import FetchError
from .records import (
    NetworkRuleRecord,
    RoleAssignmentRecord,
    StorageAccountRecord,
    VMRecord,
    resource_group_from_id,
)
from .settings import METRICS_INTERVAL, METRICS_LOOKBACK_DAYS, get_client_options
from .sizing import memory_gb

CPU_METRIC = "Percentage CPU"
MEMORY_METRIC = "Available Memory Bytes"


class AzureRecordSource:
    """
    Produces typed audit records for one subscription.

    Args:
        subscription_id: Azure subscription to audit
        tenant_id: Azure AD tenant ID
        client_id: Service Principal application (client) ID
        client_secret: Service Principal secret value
    """

    def __init__(self, subscription_id: str, tenant_id: str, client_id: str,
                 client_secret: str):
        self.subscription_id = subscription_id

        # Tokens are cached and refreshed by the credential
        self.credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret
        )
        client_options = get_client_options()

        self.network_client = NetworkManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.storage_client = StorageManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.compute_client = ComputeManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.monitor_client = MonitorManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.authorization_client = AuthorizationManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.resource_client = ResourceManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )

    @property
    def subscription_scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"

    def list_scopes(self, domain: str) -> List[str]:
        """
        Scopes an audit of the domain can be limited to.

        Returns:
            Resource group names (nsg, storage, vm) or resource group IDs
            (rbac, whose assignments are listed by scope ID), sorted by name

        Raises:
            FetchError: If the resource groups cannot be listed
        """
        try:
            groups = sorted(self.resource_client.resource_groups.list(),
                            key=lambda group: group.name.lower())
        except AzureError as e:
            print(f"  ✗ Azure API error: {e}")
            raise FetchError(domain, self.subscription_scope, e) from e
        if domain == 'rbac':
            return [group.id for group in groups]
        return [group.name for group in groups]

    def fetch_records(self, domain: str, scope: Optional[str] = None) -> List[Any]:
        """
        Fetch the records of one audit domain.

        Args:
            domain: nsg, storage, vm or rbac
            scope: Resource group name (nsg, storage, vm) or role scope (rbac);
                None means the whole subscription

        Raises:
            FetchError: If the records could not be listed
            ValueError: For an unknown domain
        """
        fetchers = {
            'nsg': self.fetch_network_rules,
            'storage': self.fetch_storage_accounts,
            'vm': self.fetch_virtual_machines,
            'rbac': self.fetch_role_assignments,
        }
        if domain not in fetchers:
            raise ValueError(f"Unknown audit domain: {domain}")
        return fetchers[domain](scope)

    def fetch_network_rules(self, resource_group: Optional[str] = None) -> List[NetworkRuleRecord]:
        """One record per custom security rule of every NSG in scope."""
        print(f"\nFetching Network Security Groups...")
        try:
            if resource_group:
                nsgs = list(self.network_client.network_security_groups.list(resource_group))
            else:
                nsgs = list(self.network_client.network_security_groups.list_all())
        except AzureError as e:
            print(f"  ✗ Azure API error: {e}")
            raise FetchError('nsg', resource_group or self.subscription_scope, e) from e

        print(f"  Found {len(nsgs)} NSG(s)")
        records = []
        for nsg in nsgs:
            rules = nsg.security_rules or []
            print(f"  Checking: {nsg.name} ({len(rules)} rule(s))")
            records.extend(NetworkRuleRecord.from_azure(nsg, rule) for rule in rules)
        return records

    def fetch_storage_accounts(self, resource_group: Optional[str] = None) -> List[StorageAccountRecord]:
        """
        Storage account settings, read through get_properties().

        List responses omit some properties, so each account is re-read in
        full. An account whose properties cannot be read is skipped. Any other
        SDK failure (a dropped connection, a timeout) aborts the fetch.
        """
        print(f"\nFetching Storage Accounts...")
        try:
            if resource_group:
                accounts = list(self.storage_client.storage_accounts.list_by_resource_group(resource_group))
            else:
                accounts = list(self.storage_client.storage_accounts.list())
        except AzureError as e:
            print(f"  ✗ Azure API error: {e}")
            raise FetchError('storage', resource_group or self.subscription_scope, e) from e

        print(f"  Found {len(accounts)} storage account(s)")
        records = []
        for account in accounts:
            account_group = resource_group_from_id(account.id)
            try:
                details = self.storage_client.storage_accounts.get_properties(
                    resource_group_name=account_group,
                    account_name=account.name
                )
            except HttpResponseError as e:
                print(f"  ⚠ Skipping {account.name}: failed to get properties: {e.message}")
                continue
            except AzureError as e:
                print(f"  ✗ Azure SDK error reading {account.name}: {e}")
                raise FetchError('storage', resource_group or self.subscription_scope, e) from e
            records.append(StorageAccountRecord.from_azure(details))
        return records

    def fetch_virtual_machines(self, resource_group: Optional[str] = None,
                               lookback_days: int = METRICS_LOOKBACK_DAYS) -> List[VMRecord]:
        """VMs with power state and average CPU / available memory over the window."""
        print(f"\nFetching Virtual Machines...")
        try:
            if resource_group:
                vms = list(self.compute_client.virtual_machines.list(resource_group))
            else:
                vms = list(self.compute_client.virtual_machines.list_all())
        except AzureError as e:
            print(f"  ✗ Azure API error: {e}")
            raise FetchError('vm', resource_group or self.subscription_scope, e) from e

        print(f"  Found {len(vms)} VM(s)")
        records = []
        for vm in vms:
            vm_group = resource_group_from_id(vm.id)
            vm_size = vm.hardware_profile.vm_size if vm.hardware_profile else "Unknown"
            cpu, available_bytes = self._vm_metrics(vm, lookback_days)
            records.append(VMRecord(
                vm_name=vm.name,
                vm_size=vm_size,
                resource_group=vm_group,
                location=vm.location or "",
                power_state=self._power_state(vm_group, vm.name),
                cpu_average=cpu,
                available_memory_percent=self._memory_percent(vm_size, available_bytes),
            ))
        return records

    def _vm_metrics(self, vm: Any, lookback_days: int) -> Tuple[Optional[float], Optional[float]]:
        """Average CPU percent and available memory bytes from Azure Monitor."""
        end_time = datetime.now(timezone.utc)
        start_time = end_time - timedelta(days=lookback_days)
        try:
            response = self.monitor_client.metrics.list(
                vm.id,
                timespan=f"{start_time.isoformat()}/{end_time.isoformat()}",
                interval=METRICS_INTERVAL,
                metricnames=f"{CPU_METRIC},{MEMORY_METRIC}",
                aggregation="Average"
            )
        except AzureError as e:
            print(f"  ⚠ Could not read metrics for {vm.name}: {e}")
            return None, None

        averages: Dict[str, Optional[float]] = {}
        for metric in response.value:
            values = [
                point.average
                for series in metric.timeseries
                for point in series.data
                if point.average is not None
            ]
            averages[metric.name.value] = sum(values) / len(values) if values else None
        return averages.get(CPU_METRIC), averages.get(MEMORY_METRIC)

    def _power_state(self, resource_group: str, vm_name: str) -> Optional[str]:
        try:
            view = self.compute_client.virtual_machines.instance_view(resource_group, vm_name)
        except AzureError as e:
            print(f"  ⚠ Could not read power state for {vm_name}: {e}")
            return None
        for status in view.statuses or []:
            if (status.code or "").startswith("PowerState/"):
                return status.display_status
        return None

    @staticmethod
    def _memory_percent(vm_size: str, available_bytes: Optional[float]) -> Optional[float]:
        total_gb = memory_gb(vm_size)
        if available_bytes is None or not total_gb:
            return None
        return round(available_bytes / (total_gb * 1024 ** 3) * 100, 1)

    def fetch_role_assignments(self, scope: Optional[str] = None) -> List[RoleAssignmentRecord]:
        """
        Role assignments at a scope (default: the subscription), with role
        names resolved from the role definitions visible at that scope.
        """
        scope = scope or self.subscription_scope
        print(f"\nFetching role assignments for {scope}...")
        try:
            role_names = {
                (definition.name or "").lower(): definition.role_name
                for definition in self.authorization_client.role_definitions.list(scope)
            }
            assignments = list(self.authorization_client.role_assignments.list_for_scope(scope))
        except AzureError as e:
            print(f"  ✗ Azure API error: {e}")
            raise FetchError('rbac', scope, e) from e

        print(f"  Found {len(assignments)} role assignment(s)")
        return [RoleAssignmentRecord.from_azure(assignment, role_names) for assignment in assignments]
