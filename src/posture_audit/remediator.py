"""
Azure Remediator

Applies the change that resolves a finding: storage account hardening,
blocking exposed NSG rules and removing risky role assignments.

Every handler is idempotent (an already-compliant resource is reported as
success without an update) and returns a (success, message) tuple instead of
raising, so one failed change never stops the others. A JSON snapshot of the
resource's configuration is written before each change.

Required Azure permissions:
- Storage Account Contributor (storage remediations)
- Network Contributor (NSG remediations)
- User Access Administrator (role assignment removal)
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple, Union

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.identity import ClientSecretCredential
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import SecurityRule
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import (
    Encryption,
    EncryptionService,
    EncryptionServices,
    NetworkRuleSet,
    StorageAccountUpdateParameters,
)

from .evaluator import Finding
from .records import NetworkRuleRecord, RoleAssignmentRecord, StorageAccountRecord
from .settings import CREATE_ROLLBACK_SNAPSHOTS, ROLLBACK_SNAPSHOTS_DIR, get_client_options

# Rule ID -> handler method name
REMEDIATIONS = {
    'storage-https-only': 'enforce_storage_https',
    'storage-minimum-tls': 'set_storage_minimum_tls',
    'storage-public-blob-access': 'disable_storage_public_access',
    'storage-network-restricted': 'restrict_storage_network',
    'storage-blob-encryption': 'enable_storage_encryption',
    'nsg-allow-all-inbound': 'deny_nsg_rule',
    'nsg-exposed-ssh': 'deny_nsg_rule',
    'nsg-exposed-rdp': 'deny_nsg_rule',
    'rbac-owner-subscription-scope': 'remove_role_assignment',
    'rbac-service-principal-owner': 'remove_role_assignment',
}

MIN_NSG_PRIORITY = 100


def has_remediation(rule_id: str) -> bool:
    return rule_id in REMEDIATIONS


def _port_ranges(value: Any) -> List[str]:
    """Split a record's port specification into individual ranges."""
    pieces = value if isinstance(value, (list, tuple)) else str(value or '*').split(',')
    return [str(piece).strip() for piece in pieces if str(piece).strip()] or ['*']


def _blob_encrypted(account: Any) -> bool:
    return bool(account.encryption and account.encryption.services
                and account.encryption.services.blob
                and account.encryption.services.blob.enabled)


class AzureRemediator:
    """
    Executes remediations through the Azure management SDK.

    Args:
        subscription_id: Azure subscription ID
        tenant_id: Azure AD tenant ID
        client_id: Service Principal application ID
        client_secret: Service Principal secret
        snapshots_dir: Where rollback snapshots are written
    """

    def __init__(self, subscription_id: str, tenant_id: str,
                 client_id: str, client_secret: str,
                 snapshots_dir: Union[str, Path] = ROLLBACK_SNAPSHOTS_DIR):
        self.subscription_id = subscription_id
        self.snapshots_dir = Path(snapshots_dir)

        self.credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret
        )
        client_options = get_client_options()
        self.storage_client = StorageManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.network_client = NetworkManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )
        self.authorization_client = AuthorizationManagementClient(
            credential=self.credential,
            subscription_id=subscription_id,
            **client_options
        )

        print(f"✓ Azure Remediator initialized for subscription: {subscription_id}")

    # =========================================================================
    # ROUTING
    # =========================================================================

    def apply_change(self, finding: Finding, record: Any) -> Tuple[bool, str]:
        """
        Apply the remediation mapped to a finding's rule.

        Args:
            finding: Finding produced by the evaluator
            record: The record the finding was raised on

        Returns:
            Tuple of (success: bool, message: str)
        """
        print(f"\n{'='*70}")
        print(f"Executing Remediation")
        print(f"Rule ID: {finding.rule_id}")
        print(f"Subject: {finding.subject_id}")
        print(f"{'='*70}")

        handler_name = REMEDIATIONS.get(finding.rule_id)
        if handler_name is None:
            msg = f"No remediation handler for rule ID: {finding.rule_id}"
            print(f"✗ {msg}")
            return (False, msg)

        if CREATE_ROLLBACK_SNAPSHOTS:
            self.create_rollback_snapshot(record)

        handler: Callable[[Any], Tuple[bool, str]] = getattr(self, handler_name)
        return handler(record)

    def _call(self, action: Callable[[], Tuple[bool, str]], not_found: str) -> Tuple[bool, str]:
        """Run an SDK action, mapping Azure errors to a failed result."""
        try:
            return action()
        except ResourceNotFoundError:
            msg = not_found
        except ClientAuthenticationError:
            msg = "Authentication failed - check service principal credentials and permissions"
        except HttpResponseError as e:
            msg = f"Azure API error: {e.message}"
        except AzureError as e:
            msg = f"Azure SDK error: {str(e)}"
        print(f"  ✗ {msg}")
        return (False, msg)

    # =========================================================================
    # STORAGE
    # =========================================================================

    def _update_storage_account(self, record: StorageAccountRecord, description: str,
                                is_compliant: Callable[[Any], bool],
                                parameters: StorageAccountUpdateParameters) -> Tuple[bool, str]:
        """
        Fetch, check, update and verify one storage account setting.

        Only the fields set on the update parameters are changed (PATCH).
        """
        name = record.account_name
        group = record.resource_group
        print(f"\nRemediating storage account {name}: {description}")

        def action() -> Tuple[bool, str]:
            print(f"  Fetching current state...")
            account = self.storage_client.storage_accounts.get_properties(
                resource_group_name=group,
                account_name=name
            )
            if is_compliant(account):
                return (True, f"Storage account '{name}' already compliant: {description}")

            print(f"  Applying update...")
            updated = self.storage_client.storage_accounts.update(
                resource_group_name=group,
                account_name=name,
                parameters=parameters
            )
            if is_compliant(updated):
                print(f"  ✓ {description}")
                return (True, f"Successfully applied '{description}' to '{name}'")
            return (False, f"Update completed but '{description}' not confirmed for '{name}'")

        return self._call(
            action,
            f"Storage account '{name}' not found in resource group '{group}'"
        )

    def enforce_storage_https(self, record: StorageAccountRecord) -> Tuple[bool, str]:
        return self._update_storage_account(
            record, "HTTPS-only traffic enforced",
            lambda account: bool(account.enable_https_traffic_only),
            StorageAccountUpdateParameters(enable_https_traffic_only=True)
        )

    def set_storage_minimum_tls(self, record: StorageAccountRecord) -> Tuple[bool, str]:
        return self._update_storage_account(
            record, "minimum TLS version set to 1.2",
            lambda account: account.minimum_tls_version in ('TLS1_2', 'TLS1_3'),
            StorageAccountUpdateParameters(minimum_tls_version='TLS1_2')
        )

    def disable_storage_public_access(self, record: StorageAccountRecord) -> Tuple[bool, str]:
        """Existing anonymous blob access stops working after this change."""
        return self._update_storage_account(
            record, "public blob access disabled",
            lambda account: account.allow_blob_public_access is False,
            StorageAccountUpdateParameters(allow_blob_public_access=False)
        )

    def restrict_storage_network(self, record: StorageAccountRecord) -> Tuple[bool, str]:
        """
        Set the network rule set's default action to Deny.

        Azure services stay allowed through the bypass; clients outside any
        configured virtual network or IP rule lose access.
        """
        return self._update_storage_account(
            record, "network default action set to Deny",
            lambda account: bool(account.network_rule_set
                                 and account.network_rule_set.default_action == 'Deny'),
            StorageAccountUpdateParameters(
                network_rule_set=NetworkRuleSet(default_action='Deny', bypass='AzureServices')
            )
        )

    def enable_storage_encryption(self, record: StorageAccountRecord) -> Tuple[bool, str]:
        """Blob and file encryption with Microsoft-managed keys."""
        return self._update_storage_account(
            record, "blob encryption enabled",
            _blob_encrypted,
            StorageAccountUpdateParameters(
                encryption=Encryption(
                    services=EncryptionServices(
                        blob=EncryptionService(enabled=True, key_type='Account'),
                        file=EncryptionService(enabled=True, key_type='Account')
                    ),
                    key_source='Microsoft.Storage'
                )
            )
        )

    # =========================================================================
    # NETWORK SECURITY GROUPS
    # =========================================================================

    def deny_nsg_rule(self, record: NetworkRuleRecord) -> Tuple[bool, str]:
        """
        Block an exposed NSG rule with a higher-priority Deny rule.

        The original rule is kept for audit; removing the Deny rule rolls the
        change back. The Deny rule takes the closest free priority below the
        offending rule's (lower number = evaluated first).
        """
        nsg_name = record.nsg_name
        group = record.resource_group
        print(f"\nRemediating NSG rule {record.subject_id}")

        def action() -> Tuple[bool, str]:
            nsg = self.network_client.network_security_groups.get(
                resource_group_name=group,
                network_security_group_name=nsg_name
            )
            existing = nsg.security_rules or []
            deny_name = f"DENY-Remediation-{record.rule_name}"[:80]
            if any(rule.name == deny_name for rule in existing):
                return (True, f"Deny rule '{deny_name}' already exists in '{nsg_name}'")

            used = {rule.priority for rule in existing if rule.direction == 'Inbound'}
            start = (record.priority or MIN_NSG_PRIORITY + 1) - 1
            priority = next((p for p in range(start, MIN_NSG_PRIORITY - 1, -1) if p not in used), None)
            if priority is None:
                msg = f"No free priority above rule '{record.rule_name}' in '{nsg_name}'"
                print(f"  ✗ {msg}")
                return (False, msg)

            # Azure accepts either one range or a list of several, not both
            ports = _port_ranges(record.destination_port_range)
            deny_rule = SecurityRule(
                name=deny_name,
                protocol=record.protocol,
                source_port_range='*',
                destination_port_range=ports[0] if len(ports) == 1 else None,
                destination_port_ranges=ports if len(ports) > 1 else None,
                source_address_prefix='*',
                destination_address_prefix='*',
                access='Deny',
                priority=priority,
                direction='Inbound',
                description=f'Auto-remediation: blocks rule {record.rule_name}'
            )
            print(f"  Adding deny rule with priority {priority}...")
            poller = self.network_client.security_rules.begin_create_or_update(
                resource_group_name=group,
                network_security_group_name=nsg_name,
                security_rule_name=deny_name,
                security_rule_parameters=deny_rule
            )
            poller.result()
            print(f"  ✓ Deny rule '{deny_name}' created")
            return (True, f"Added deny rule '{deny_name}' (priority {priority}) to '{nsg_name}'")

        return self._call(action, f"NSG '{nsg_name}' not found in resource group '{group}'")

    # =========================================================================
    # RBAC
    # =========================================================================

    def remove_role_assignment(self, record: RoleAssignmentRecord) -> Tuple[bool, str]:
        """Delete a role assignment by its ID."""
        print(f"\nRemoving role assignment {record.subject_id}")
        if not record.assignment_id:
            msg = f"Role assignment '{record.subject_id}' has no assignment ID"
            print(f"  ✗ {msg}")
            return (False, msg)

        def action() -> Tuple[bool, str]:
            self.authorization_client.role_assignments.delete_by_id(record.assignment_id)
            print(f"  ✓ Role assignment removed")
            return (True, f"Removed role assignment '{record.subject_id}'")

        return self._call(action, f"Role assignment '{record.assignment_id}' not found")

    # =========================================================================
    # ROLLBACK SNAPSHOTS
    # =========================================================================

    def create_rollback_snapshot(self, record: Any) -> Dict[str, Any]:
        """
        Save the resource's current configuration before changing it.

        Returns:
            Snapshot dictionary; 'snapshot_file' on success, 'error' when the
            configuration could not be read or written
        """
        snapshot: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'subscription_id': self.subscription_id,
            'domain': record.DOMAIN,
            'subject_id': record.subject_id,
            'record': record.as_dict(),
            'configuration': {},
        }

        try:
            if isinstance(record, StorageAccountRecord):
                account = self.storage_client.storage_accounts.get_properties(
                    resource_group_name=record.resource_group,
                    account_name=record.account_name
                )
                snapshot['configuration'] = {
                    'enable_https_traffic_only': account.enable_https_traffic_only,
                    'minimum_tls_version': account.minimum_tls_version,
                    'allow_blob_public_access': account.allow_blob_public_access,
                    'network_default_action': (account.network_rule_set.default_action
                                               if account.network_rule_set else None),
                    'blob_encryption_enabled': _blob_encrypted(account),
                    'tags': account.tags,
                }
            elif isinstance(record, NetworkRuleRecord):
                nsg = self.network_client.network_security_groups.get(
                    resource_group_name=record.resource_group,
                    network_security_group_name=record.nsg_name
                )
                snapshot['configuration'] = {
                    'security_rules': [
                        {
                            'name': rule.name,
                            'priority': rule.priority,
                            'direction': rule.direction,
                            'access': rule.access,
                            'protocol': rule.protocol,
                            'source_address_prefix': rule.source_address_prefix,
                            'source_address_prefixes': rule.source_address_prefixes,
                            'destination_port_range': rule.destination_port_range,
                            'destination_port_ranges': rule.destination_port_ranges,
                        }
                        for rule in (nsg.security_rules or [])
                    ],
                    'tags': nsg.tags,
                }

            self.snapshots_dir.mkdir(parents=True, exist_ok=True)
            timestamp_str = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            safe_name = "".join(c if c.isalnum() or c in '-_' else '_' for c in record.subject_id)
            snapshot_file = self.snapshots_dir / f"{safe_name}_{timestamp_str}.json"
            with open(snapshot_file, 'w', encoding='utf-8') as f:
                json.dump(snapshot, f, indent=2, default=str)

            snapshot['snapshot_file'] = str(snapshot_file)
            print(f"  ✓ Snapshot saved to: {snapshot_file}")
        except (AzureError, OSError) as e:
            print(f"  ✗ Failed to create snapshot: {e}")
            snapshot['error'] = str(e)

        return snapshot
