"""
Error types raised by the posture audit pipeline.

FetchError aborts the audit of one scope, RecordEvaluationError skips one
record, RenderError marks one failed artifact. None of them is swallowed:
every occurrence is printed and, when an event log is attached, recorded.
"""

from typing import Optional


class PostureAuditError(Exception):
    """Base class for all audit pipeline errors."""


class CatalogError(PostureAuditError):
    """The rule file is missing, malformed or declares an invalid rule."""


class FetchError(PostureAuditError):
    """
    A record source could not produce records (network, auth or API failure).

    Args:
        domain: Audit domain being fetched (nsg, storage, vm, rbac)
        scope: Subscription, resource group or role scope that was queried
        cause: Underlying exception, usually an azure.core AzureError
    """

    def __init__(self, domain: str, scope: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.domain = domain
        self.scope = scope
        self.cause = cause
        where = f" in scope '{scope}'" if scope else ""
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to fetch {domain} records{where}{detail}")


class RecordEvaluationError(PostureAuditError):
    """
    One record lacks a field the rules need, or cannot be built at all.

    Args:
        subject_id: Identifier of the affected record (best effort)
        field: Name of the missing or malformed field
        reason: Human-readable explanation
    """

    def __init__(self, subject_id: str, field: str, reason: str = "missing field"):
        self.subject_id = subject_id
        self.field = field
        self.reason = reason
        super().__init__(f"Record '{subject_id}': {reason} '{field}'")


class RenderError(PostureAuditError):
    """An artifact could not be written."""

    def __init__(self, artifact: str, cause: Optional[BaseException] = None):
        self.artifact = artifact
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to write {artifact}{detail}")
