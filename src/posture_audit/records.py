"""
Audit record types.

Each audit domain has one immutable record type. Records are built either
from Azure SDK model objects (from_azure) or from plain mappings
(from_mapping, used for exported data and tests). Building from a mapping
validates the required fields up front, so a missing property surfaces as a
RecordEvaluationError instead of a silent None deep inside a rule check.
"""

from dataclasses import MISSING, asdict, dataclass, fields
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from .errors import RecordEvaluationError


def resource_group_from_id(resource_id: Optional[str]) -> str:
    """
    Extract the resource group name from an ARM resource ID.

    ARM IDs follow /subscriptions/{sub}/resourceGroups/{rg}/providers/...
    """
    if not resource_id:
        return ""
    parts = resource_id.split('/')
    return parts[4] if len(parts) > 4 else ""


def _single_or_many(single: Optional[str], many: Optional[List[str]]) -> Union[str, Tuple[str, ...]]:
    # Azure sets either the singular property or the plural list, never both
    if single:
        return single
    return tuple(many or ())


class AuditRecord:
    """Behaviour shared by every record type."""

    DOMAIN: ClassVar[str] = ""
    CATEGORY_FIELD: ClassVar[Optional[str]] = None
    ID_FIELDS: ClassVar[Tuple[str, ...]] = ()

    @property
    def subject_id(self) -> str:
        raise NotImplementedError

    @property
    def category(self) -> Optional[str]:
        if not self.CATEGORY_FIELD:
            return None
        value = getattr(self, self.CATEGORY_FIELD)
        return None if value is None else str(value)

    @classmethod
    def required_fields(cls) -> List[str]:
        return [
            f.name for f in fields(cls)
            if f.default is MISSING and f.default_factory is MISSING
        ]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]):
        """
        Build a record from a plain mapping, validating required fields.

        Keys that are not record fields are ignored. A required key that is
        absent raises; a key present with a None value is accepted.

        Raises:
            RecordEvaluationError: If the mapping is not a mapping or lacks a
                required field
        """
        if not isinstance(data, Mapping):
            raise RecordEvaluationError(repr(data)[:60], cls.DOMAIN,
                                        reason="not a record mapping for")
        hint = "/".join(str(data[k]) for k in cls.ID_FIELDS if data.get(k)) or "<unknown>"
        for name in cls.required_fields():
            if name not in data:
                raise RecordEvaluationError(hint, name)
        known = {f.name for f in fields(cls)}
        return cls(**{
            k: tuple(v) if isinstance(v, list) else v
            for k, v in data.items() if k in known
        })

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NetworkRuleRecord(AuditRecord):
    """
    One security rule of one Network Security Group.

    Address prefixes and port ranges hold a single string when the rule uses
    the singular Azure property, or a tuple when it uses the plural list.
    """

    DOMAIN: ClassVar[str] = "nsg"
    CATEGORY_FIELD: ClassVar[Optional[str]] = "access"
    ID_FIELDS: ClassVar[Tuple[str, ...]] = ("nsg_name", "rule_name")

    nsg_name: str
    rule_name: str
    access: str
    direction: str
    source_address_prefix: Union[str, Tuple[str, ...]]
    destination_port_range: Union[str, Tuple[str, ...]]
    protocol: str = "*"
    priority: Optional[int] = None
    resource_group: str = ""

    @property
    def subject_id(self) -> str:
        return f"{self.nsg_name}/{self.rule_name}"

    @classmethod
    def from_azure(cls, nsg: Any, rule: Any) -> "NetworkRuleRecord":
        """Build from a NetworkSecurityGroup and one of its SecurityRule objects."""
        return cls(
            nsg_name=nsg.name,
            rule_name=rule.name,
            access=rule.access,
            direction=rule.direction,
            source_address_prefix=_single_or_many(rule.source_address_prefix,
                                                   getattr(rule, 'source_address_prefixes', None)),
            destination_port_range=_single_or_many(rule.destination_port_range,
                                                    getattr(rule, 'destination_port_ranges', None)),
            protocol=rule.protocol or "*",
            priority=rule.priority,
            resource_group=resource_group_from_id(nsg.id),
        )


@dataclass(frozen=True)
class StorageAccountRecord(AuditRecord):
    """Security-relevant configuration of one storage account."""

    DOMAIN: ClassVar[str] = "storage"
    ID_FIELDS: ClassVar[Tuple[str, ...]] = ("account_name",)

    account_name: str
    enable_https_traffic_only: Optional[bool]
    minimum_tls_version: Optional[str]
    allow_blob_public_access: Optional[bool]
    network_default_action: Optional[str]
    blob_encryption_enabled: Optional[bool]
    resource_group: str = ""

    @property
    def subject_id(self) -> str:
        return self.account_name

    @classmethod
    def from_azure(cls, account: Any) -> "StorageAccountRecord":
        """Build from a StorageAccount returned by get_properties()."""
        rule_set = account.network_rule_set
        encryption = account.encryption
        blob = None
        if encryption is not None and encryption.services is not None:
            blob = encryption.services.blob
        return cls(
            account_name=account.name,
            enable_https_traffic_only=account.enable_https_traffic_only,
            minimum_tls_version=account.minimum_tls_version,
            allow_blob_public_access=account.allow_blob_public_access,
            network_default_action=rule_set.default_action if rule_set else None,
            blob_encryption_enabled=blob.enabled if blob else None,
            resource_group=resource_group_from_id(account.id),
        )


@dataclass(frozen=True)
class VMRecord(AuditRecord):
    """A virtual machine with its utilisation averages (percent)."""

    DOMAIN: ClassVar[str] = "vm"
    CATEGORY_FIELD: ClassVar[Optional[str]] = "vm_size"
    ID_FIELDS: ClassVar[Tuple[str, ...]] = ("vm_name",)

    vm_name: str
    vm_size: str
    resource_group: str = ""
    location: str = ""
    power_state: Optional[str] = None
    cpu_average: Optional[float] = None
    available_memory_percent: Optional[float] = None

    @property
    def subject_id(self) -> str:
        return self.vm_name


@dataclass(frozen=True)
class RoleAssignmentRecord(AuditRecord):
    """One RBAC role assignment: principal, role and scope."""

    DOMAIN: ClassVar[str] = "rbac"
    CATEGORY_FIELD: ClassVar[Optional[str]] = "role_name"
    ID_FIELDS: ClassVar[Tuple[str, ...]] = ("principal_id", "role_name")

    principal_id: str
    principal_type: str
    role_name: str
    scope: str
    principal_name: str = ""
    assignment_id: str = ""

    @property
    def subject_id(self) -> str:
        who = self.principal_name or self.principal_id
        return f"{who}:{self.role_name}@{self.scope}"

    @classmethod
    def from_azure(cls, assignment: Any,
                   role_names: Mapping[str, str]) -> "RoleAssignmentRecord":
        """
        Build from a RoleAssignment.

        Args:
            assignment: azure.mgmt.authorization RoleAssignment
            role_names: Role definition GUID (lower case) to role name
        """
        principal_type = assignment.principal_type
        definition_guid = (assignment.role_definition_id or "").rsplit('/', 1)[-1].lower()
        return cls(
            principal_id=assignment.principal_id,
            principal_type=str(getattr(principal_type, "value", principal_type) or "Unknown"),
            role_name=role_names.get(definition_guid, "Unknown"),
            scope=assignment.scope,
            assignment_id=assignment.id or "",
        )


RECORD_TYPES = {
    record_type.DOMAIN: record_type
    for record_type in (NetworkRuleRecord, StorageAccountRecord, VMRecord, RoleAssignmentRecord)
}


def record_type_for(domain: str):
    """Return the record class for an audit domain."""
    try:
        return RECORD_TYPES[domain]
    except KeyError:
        raise ValueError(f"Unknown audit domain: {domain}") from None
