"""Type-specific format checks for entry references."""

import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from narrative_ledger.models.entry import Reference, ReferenceType

logger = logging.getLogger(__name__)

_COMMIT_HASH_RE = re.compile(r"^[0-9a-f]{7,40}$", re.IGNORECASE)
_DV_JOB_RE = re.compile(r"^dv-job-\d+$")
_LEGACY_JOB_PREFIX = "deploy-job-"


@dataclass(frozen=True)
class ReferenceCheck:
    """Outcome of checking one reference. Warnings never invalidate."""

    is_valid: bool
    message: str | None = None
    warning: str | None = None


def _is_absolute_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ReferenceValidator:
    """Validates reference ids and URLs by reference type."""

    def validate(self, reference: Reference) -> ReferenceCheck:
        """Check a single reference's format for its type."""
        if reference.type == ReferenceType.COMMIT_HASH:
            if not _COMMIT_HASH_RE.match(reference.id):
                return ReferenceCheck(False, "Invalid Git commit hash format.")
        elif reference.type == ReferenceType.DV_JOB:
            if reference.id.startswith(_LEGACY_JOB_PREFIX):
                return ReferenceCheck(
                    True, warning="DV job id uses the legacy deploy-job- prefix."
                )
            if not _DV_JOB_RE.match(reference.id):
                return ReferenceCheck(False, "Invalid DV job id format. Expected 'dv-job-123'.")
        elif reference.type == ReferenceType.EXTERNAL:
            if reference.url and not _is_absolute_url(reference.url):
                return ReferenceCheck(False, "Invalid URL format.")
        return ReferenceCheck(True)
