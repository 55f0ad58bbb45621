"""Fixed UTC date format used for entry event dates."""

import re
from datetime import UTC, datetime

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")


def format_utc(moment: datetime | None = None) -> str:
    """Format a datetime (default: now) as ``YYYY-MM-DD HH:MM:SS`` in UTC."""
    if moment is None:
        moment = datetime.now(UTC)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).strftime(DATE_FORMAT)


def parse_utc(value: str) -> datetime:
    """Parse a fixed-format date string. Raises ValueError if malformed or impossible."""
    if not DATE_RE.match(value):
        raise ValueError(f"Date must be in UTC format YYYY-MM-DD HH:MM:SS: {value!r}")
    return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=UTC)


def from_iso(value: str | None) -> str | None:
    """Convert an ISO-8601 timestamp (e.g. a webhook ``merged_at``) to the fixed format."""
    if not value:
        return None
    try:
        return format_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None
