"""Database connection and schema management."""

from narrative_ledger.db.backend import Cursor, Database, Row
from narrative_ledger.db.sqlite_backend import SQLiteBackend

__all__ = ["Cursor", "Database", "Row", "SQLiteBackend"]
