"""
Demo environment provisioning.

Creates the scaffolding the audits run against: a resource group, a virtual
network with one subnet, an NSG (deliberately including an exposed SSH rule
so the NSG audit has something to report) and a storage account. Removing
the environment deletes the whole resource group.

Long-running operations are awaited with poller.result() so each step is
complete before the next one starts.
"""

from typing import Any, Dict, List, Optional

from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import NetworkSecurityGroup, SecurityRule
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import Sku, StorageAccountCreateParameters

from .settings import DEFAULT_LOCATION, DEMO_PREFIX, get_client_options

DEMO_TAGS = {'purpose': 'posture-audit-demo'}

# Rules placed on the demo NSG
DEMO_NSG_RULES = [
    {
        'name': 'Allow-SSH-Any',
        'priority': 300,
        'direction': 'Inbound',
        'access': 'Allow',
        'protocol': 'Tcp',
        'source_address_prefix': '*',
        'destination_port_range': '22',
    },
    {
        'name': 'Allow-HTTPS-VNet',
        'priority': 310,
        'direction': 'Inbound',
        'access': 'Allow',
        'protocol': 'Tcp',
        'source_address_prefix': 'VirtualNetwork',
        'destination_port_range': '443',
    },
    {
        'name': 'Deny-All-Inbound',
        'priority': 4000,
        'direction': 'Inbound',
        'access': 'Deny',
        'protocol': '*',
        'source_address_prefix': '*',
        'destination_port_range': '*',
    },
]


def demo_names(prefix: str = DEMO_PREFIX) -> Dict[str, str]:
    """
    Resource names for a demo environment.

    Storage account names must be 3-24 lowercase letters and digits, so the
    prefix is filtered and truncated for that one.
    """
    storage_prefix = "".join(c for c in prefix.lower() if c.isalnum())
    return {
        'resource_group': f"rg-{prefix}",
        'virtual_network': f"vnet-{prefix}",
        'subnet': "snet-default",
        'network_security_group': f"nsg-{prefix}",
        'storage_account': f"{storage_prefix[:20]}sa01",
    }


class DemoProvisioner:
    """
    Creates and removes demo resources in one subscription.

    Args:
        subscription_id: Azure subscription ID
        tenant_id: Azure AD tenant ID
        client_id: Service Principal application ID
        client_secret: Service Principal secret
    """

    def __init__(self, subscription_id: str, tenant_id: str,
                 client_id: str, client_secret: str):
        self.subscription_id = subscription_id
        self.credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret
        )
        client_options = get_client_options()
        self.resource_client = ResourceManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
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

    def create_resource_group(self, name: str, location: str = DEFAULT_LOCATION) -> Any:
        print(f"  Creating resource group {name} in {location}...")
        group = self.resource_client.resource_groups.create_or_update(
            name, {'location': location, 'tags': DEMO_TAGS}
        )
        print(f"  ✓ Resource group {group.name} ready")
        return group

    def create_virtual_network(self, resource_group: str, name: str, subnet_name: str,
                               location: str = DEFAULT_LOCATION,
                               address_prefix: str = "10.10.0.0/16",
                               subnet_prefix: str = "10.10.1.0/24") -> Any:
        print(f"  Creating virtual network {name} ({address_prefix})...")
        poller = self.network_client.virtual_networks.begin_create_or_update(
            resource_group,
            name,
            {
                'location': location,
                'tags': DEMO_TAGS,
                'address_space': {'address_prefixes': [address_prefix]},
                'subnets': [{'name': subnet_name, 'address_prefix': subnet_prefix}],
            }
        )
        vnet = poller.result()
        print(f"  ✓ Virtual network {vnet.name} ready")
        return vnet

    def create_network_security_group(self, resource_group: str, name: str,
                                      rules: Optional[List[Dict[str, Any]]] = None,
                                      location: str = DEFAULT_LOCATION) -> Any:
        rules = DEMO_NSG_RULES if rules is None else rules
        print(f"  Creating network security group {name} with {len(rules)} rule(s)...")
        parameters = NetworkSecurityGroup(
            location=location,
            tags=DEMO_TAGS,
            security_rules=[
                SecurityRule(source_port_range='*', destination_address_prefix='*', **rule)
                for rule in rules
            ]
        )
        poller = self.network_client.network_security_groups.begin_create_or_update(
            resource_group, name, parameters
        )
        nsg = poller.result()
        print(f"  ✓ NSG {nsg.name} ready")
        return nsg

    def create_storage_account(self, resource_group: str, name: str,
                               location: str = DEFAULT_LOCATION) -> Any:
        print(f"  Creating storage account {name}...")
        availability = self.storage_client.storage_accounts.check_name_availability(
            {'name': name, 'type': 'Microsoft.Storage/storageAccounts'}
        )
        if not availability.name_available:
            raise ValueError(f"Storage account name '{name}' is not available: {availability.message}")

        parameters = StorageAccountCreateParameters(
            sku=Sku(name='Standard_LRS'),
            kind='StorageV2',
            location=location,
            tags=DEMO_TAGS,
            enable_https_traffic_only=True,
            minimum_tls_version='TLS1_2',
            allow_blob_public_access=False
        )
        poller = self.storage_client.storage_accounts.begin_create(resource_group, name, parameters)
        account = poller.result()
        print(f"  ✓ Storage account {account.name} ready")
        return account

    def provision_demo_environment(self, prefix: str = DEMO_PREFIX,
                                   location: str = DEFAULT_LOCATION) -> Dict[str, Any]:
        """
        Create the full demo environment in order.

        Returns:
            Dictionary with 'status' (COMPLETE or FAILED), the resource names,
            the steps completed and, on failure, the error
        """
        names = demo_names(prefix)
        result: Dict[str, Any] = {'status': 'IN_PROGRESS', 'names': names, 'completed': []}

        print(f"\n{'='*70}")
        print(f"Provisioning demo environment '{prefix}' in {location}")
        print(f"{'='*70}")

        steps = [
            ('resource_group', lambda: self.create_resource_group(names['resource_group'], location)),
            ('virtual_network', lambda: self.create_virtual_network(
                names['resource_group'], names['virtual_network'], names['subnet'], location)),
            ('network_security_group', lambda: self.create_network_security_group(
                names['resource_group'], names['network_security_group'], location=location)),
            ('storage_account', lambda: self.create_storage_account(
                names['resource_group'], names['storage_account'], location)),
        ]

        for step, create in steps:
            try:
                create()
            except (AzureError, ValueError) as e:
                print(f"  ✗ Failed to create {step}: {e}")
                result['status'] = 'FAILED'
                result['error'] = f"{step}: {e}"
                return result
            result['completed'].append(step)

        result['status'] = 'COMPLETE'
        print(f"\n✓ Demo environment ready in resource group {names['resource_group']}")
        return result

    def list_demo_groups(self) -> List[str]:
        """Names of the resource groups tagged as demo environments."""
        return sorted(
            group.name for group in self.resource_client.resource_groups.list()
            if (group.tags or {}).get('purpose') == DEMO_TAGS['purpose']
        )

    def remove_demo_environment(self, resource_group: str) -> bool:
        """Delete the demo resource group and everything in it."""
        print(f"\nDeleting resource group {resource_group} (this can take several minutes)...")
        try:
            self.resource_client.resource_groups.begin_delete(resource_group).result()
        except AzureError as e:
            print(f"  ✗ Failed to delete {resource_group}: {e}")
            return False
        print(f"  ✓ Resource group {resource_group} deleted")
        return True
