"""Advisory scan of narrative text for credentials and secrets."""

import re

from narrative_ledger.models.entry import NARRATIVE_FIELDS, EntryDraft, LedgerEntry

SENSITIVE_PATTERNS: dict[str, re.Pattern[str]] = {
    "api_key": re.compile(r"\b(?:api[_-]?key|apikey)\b\s*[:=]\s*\S+", re.IGNORECASE),
    "password": re.compile(r"\b(?:password|passwd|pwd)\b\s*[:=]\s*\S+", re.IGNORECASE),
    "secret": re.compile(r"\b(?:client[_-]?)?secret\b\s*[:=]\s*\S+", re.IGNORECASE),
    "token": re.compile(
        r"\b(?:access[_-]?|auth[_-]?|bearer\s+)?token\b\s*[:=]\s*\S+"
        r"|\bbearer\s+[A-Za-z0-9\-._~+/]{16,}=*"
        r"|\bgh[pousr]_[A-Za-z0-9]{20,}",
        re.IGNORECASE,
    ),
    "private_key": re.compile(r"-----BEGIN (?:[A-Z]+ )?PRIVATE KEY-----"),
}

_SCANNED_FIELDS: tuple[str, ...] = (*NARRATIVE_FIELDS, "narrative_extended")


def scan_text(text: str) -> list[str]:
    """Return the names of sensitive patterns found in the text, in table order."""
    return [name for name, pattern in SENSITIVE_PATTERNS.items() if pattern.search(text)]


def scan_for_sensitive_content(entry: EntryDraft | LedgerEntry) -> list[str]:
    """Scan all narrative text of an entry. Findings are advisory, never blocking."""
    text = "\n".join(str(getattr(entry, name, None) or "") for name in _SCANNED_FIELDS)
    return scan_text(text)
