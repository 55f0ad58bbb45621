"""Role-based permission checks."""

import logging

from narrative_ledger.errors import AuthorizationError
from narrative_ledger.models.audit import AuditAction
from narrative_ledger.models.entry import Role

logger = logging.getLogger(__name__)

# Actions absent from this table are open to every role
_PERMISSIONS: dict[AuditAction, frozenset[Role]] = {
    AuditAction.PUBLISH: frozenset({Role.LUX, Role.MINI_LUX}),
    AuditAction.DELETE: frozenset({Role.LUX}),
}


def is_authorized(action: AuditAction | str, role: Role | str | None) -> bool:
    """Return True if the role may perform the action."""
    try:
        resolved = Role(role) if role is not None else None
    except ValueError:
        return False
    if resolved is None:
        return False
    allowed = _PERMISSIONS.get(AuditAction(action))
    return allowed is None or resolved in allowed


def authorize(action: AuditAction | str, role: Role | str | None) -> Role:
    """Raise AuthorizationError unless the role may perform the action.

    Returns the resolved role on success.
    """
    if not is_authorized(action, role):
        logger.warning("Denied %s for role %r", action, role)
        raise AuthorizationError(str(action), None if role is None else str(role))
    return Role(role)  # type: ignore[arg-type]
