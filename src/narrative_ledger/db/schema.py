"""DDL and migrations for the ledger database."""

from narrative_ledger.db.backend import Database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS ledger_entries (
    id TEXT PRIMARY KEY,
    revision INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    event_date TEXT NOT NULL,
    title TEXT NOT NULL,
    executive_summary TEXT NOT NULL,
    what_changed TEXT NOT NULL,
    decisions_rationale TEXT NOT NULL,
    risks_mitigations TEXT NOT NULL,
    narrative_extended TEXT,
    entry_type TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    author TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    supersedes_entry_id TEXT,
    refs TEXT NOT NULL DEFAULT '[]',
    embedding TEXT NOT NULL DEFAULT '[]',
    integrity_hash TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entries_status ON ledger_entries(status);
CREATE INDEX IF NOT EXISTS idx_entries_type ON ledger_entries(entry_type);
CREATE INDEX IF NOT EXISTS idx_entries_date ON ledger_entries(event_date);

CREATE TABLE IF NOT EXISTS entry_revisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id TEXT NOT NULL,
    revision INTEGER NOT NULL,
    status TEXT NOT NULL,
    integrity_hash TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE(entry_id, revision)
);

CREATE TABLE IF NOT EXISTS audit_log (
    sequence INTEGER PRIMARY KEY,
    timestamp TEXT NOT NULL,
    action TEXT NOT NULL,
    entry_id TEXT NOT NULL,
    author_role TEXT,
    field_changes TEXT NOT NULL DEFAULT '[]',
    metadata TEXT NOT NULL DEFAULT '{}',
    severity TEXT NOT NULL DEFAULT 'info',
    batch_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_entry ON audit_log(entry_id);
"""


async def apply_schema(db: Database) -> None:
    """Apply the database schema."""
    await db.executescript(SCHEMA_SQL)

    cursor = await db.execute("SELECT version FROM schema_version")
    row = await cursor.fetchone()
    if row is None:
        await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    await db.commit()
