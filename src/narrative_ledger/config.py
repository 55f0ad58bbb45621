"""Environment-variable-based configuration."""

import os
from pathlib import Path


def _flag(name: str, default: str = "") -> bool:
    return os.environ.get(name, default).upper() == "TRUE"


def get_db_path() -> Path | str:
    """Return the database file path from LEDGER_DB_PATH."""
    raw = os.environ.get("LEDGER_DB_PATH", "~/.local/share/narrative_ledger/ledger.db")
    if raw == ":memory:":
        return raw
    return Path(raw).expanduser()


def get_log_level() -> str:
    """Return the logging level from LEDGER_LOG_LEVEL."""
    return os.environ.get("LEDGER_LOG_LEVEL", "WARNING").upper()


def get_audit_capacity() -> int:
    """Return the audit ring buffer capacity from LEDGER_AUDIT_CAPACITY."""
    return int(os.environ.get("LEDGER_AUDIT_CAPACITY", "1000"))


def is_automation_enabled() -> bool:
    """Return True unless LEDGER_AUTOMATION_ENABLED is set to something other than TRUE."""
    return _flag("LEDGER_AUTOMATION_ENABLED", "TRUE")


def is_auto_publish() -> bool:
    """Return True if LEDGER_AUTO_PUBLISH is set to TRUE."""
    return _flag("LEDGER_AUTO_PUBLISH")


def get_default_author() -> str:
    """Return the role attributed to automated entries from LEDGER_DEFAULT_AUTHOR."""
    return os.environ.get("LEDGER_DEFAULT_AUTHOR", "mini-lux")


def include_references() -> bool:
    """Return True unless LEDGER_INCLUDE_REFERENCES is disabled."""
    return _flag("LEDGER_INCLUDE_REFERENCES", "TRUE")


def upsert_unknown_ids() -> bool:
    """Return True if saving with an unknown id creates a new entry (LEDGER_UPSERT_UNKNOWN_IDS)."""
    return _flag("LEDGER_UPSERT_UNKNOWN_IDS", "TRUE")


def get_embedder_kind() -> str:
    """Return the embedder backend name from LEDGER_EMBEDDER ("hash" or "ollama")."""
    return os.environ.get("LEDGER_EMBEDDER", "hash").lower()


def get_ollama_url() -> str:
    """Return the Ollama API URL from LEDGER_OLLAMA_URL."""
    return os.environ.get("LEDGER_OLLAMA_URL", "http://localhost:11434")


def get_embedding_model() -> str:
    """Return the embedding model name from LEDGER_EMBEDDING_MODEL."""
    return os.environ.get("LEDGER_EMBEDDING_MODEL", "nomic-embed-text")


def get_ollama_timeout() -> float:
    """Return the Ollama timeout in seconds from LEDGER_OLLAMA_TIMEOUT."""
    return float(os.environ.get("LEDGER_OLLAMA_TIMEOUT", "10.0"))


def get_persist_retries() -> int:
    """Return the attempt budget for retryable persistence calls."""
    return int(os.environ.get("LEDGER_PERSIST_RETRIES", "3"))


def get_search_threshold_ms() -> float:
    """Return the search latency threshold in milliseconds."""
    return float(os.environ.get("LEDGER_SEARCH_THRESHOLD_MS", "1000"))
