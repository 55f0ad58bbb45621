"""Audit trail and authorization."""

from narrative_ledger.audit.authz import authorize, is_authorized
from narrative_ledger.audit.diff import diff, snapshot
from narrative_ledger.audit.log import AuditLog
from narrative_ledger.audit.sensitive import scan_for_sensitive_content

__all__ = [
    "AuditLog",
    "authorize",
    "diff",
    "is_authorized",
    "scan_for_sensitive_content",
    "snapshot",
]
