"""Error taxonomy for ledger operations."""

from pydantic import BaseModel


class FieldError(BaseModel):
    """A single field-level validation failure."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class LedgerError(Exception):
    """Base class for all ledger errors."""


class ValidationError(LedgerError):
    """Missing or malformed required fields. Never retried automatically."""

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        super().__init__("; ".join(str(e) for e in errors) or "validation failed")

    @property
    def fields(self) -> list[str]:
        """Names of the offending fields, in report order."""
        return [e.field for e in self.errors]


class AuthorizationError(LedgerError):
    """The role lacks permission for the requested action."""

    def __init__(self, action: str, role: str | None):
        self.action = action
        self.role = role
        super().__init__(f"Role {role!r} is not allowed to {action}")


class NotFoundError(LedgerError):
    """Unknown entry id."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Entry {entry_id} not found")


class LifecycleError(LedgerError):
    """Illegal state transition, e.g. editing an archived entry."""


class IngestionSkipped(LedgerError):
    """A malformed or irrelevant external event. Logged, never fatal."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class PersistenceError(LedgerError):
    """Storage layer failure. The only retryable error class."""
