"""SQLite implementation of the Database protocol.

Thin wrapper around aiosqlite.Connection. Driver errors surface as
PersistenceError so callers can apply the retry policy.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from narrative_ledger.errors import PersistenceError

if TYPE_CHECKING:
    import aiosqlite

    from narrative_ledger.db.backend import Cursor, Row

logger = logging.getLogger(__name__)


class SQLiteCursor:
    """Wraps aiosqlite.Cursor to satisfy the Cursor protocol."""

    def __init__(self, cursor: aiosqlite.Cursor) -> None:
        """Initialize with an aiosqlite cursor."""
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last operation."""
        rc = self._cursor.rowcount
        return rc if rc is not None else -1

    async def fetchone(self) -> Row | None:
        """Fetch the next row, or None if exhausted."""
        return await self._cursor.fetchone()

    async def fetchall(self) -> list[Row]:
        """Fetch all remaining rows."""
        return list(await self._cursor.fetchall())


class SQLiteBackend:
    """SQLite implementation of the Database protocol.

    A single aiosqlite connection is shared by every component, so write
    sections take ``_write_lock`` to keep one caller's commit from flushing
    another caller's half-finished transaction.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        """Initialize with an aiosqlite connection."""
        self._conn = conn
        self._write_lock = asyncio.Lock()

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Execute a single SQL statement and return a cursor."""
        try:
            cursor = await self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite execute failed: {e}") from e
        return SQLiteCursor(cursor)

    async def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements (DDL, migrations)."""
        try:
            await self._conn.executescript(sql)
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite script failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Serialize a write section; commit on success, roll back on any error."""
        async with self._write_lock:
            try:
                yield
            except BaseException:
                await self._conn.rollback()
                raise
            try:
                await self._conn.commit()
            except sqlite3.Error as e:
                await self._conn.rollback()
                raise PersistenceError(f"SQLite commit failed: {e}") from e

    async def commit(self) -> None:
        """Commit the current transaction."""
        try:
            await self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite commit failed: {e}") from e

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()

    async def apply_schema(self) -> None:
        """Apply all SQLite DDL: entries, revisions, audit log."""
        from narrative_ledger.db.schema import apply_schema

        await apply_schema(self)
