"""Minimum-structure validation and template drafting."""

import logging
from dataclasses import dataclass, field

from narrative_ledger.dates import format_utc, parse_utc
from narrative_ledger.errors import FieldError
from narrative_ledger.models.entry import (
    EntryDraft,
    EntryStatus,
    EntryType,
    LedgerEntry,
    Reference,
    ReferenceType,
    Role,
)
from narrative_ledger.templates.catalog import TEMPLATES, EntryTemplate
from narrative_ledger.templates.references import ReferenceValidator

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = (
    "title",
    "date",
    "executive_summary",
    "what_changed",
    "decisions_rationale",
    "risks_mitigations",
)

MIN_TITLE_LENGTH = 5
MIN_SUMMARY_LENGTH = 20
MIN_WHAT_CHANGED_LENGTH = 10

# Quick-write ceilings: an entry over these is unlikely to be authored in a few minutes
QUICK_WRITE_LIMITS: dict[str, int] = {
    "executive_summary": 500,
    "what_changed": 1000,
    "decisions_rationale": 1000,
    "risks_mitigations": 500,
}

_ROLE_VALUES = {r.value for r in Role}
_TYPE_VALUES = {t.value for t in EntryType}
_REFERENCE_TYPE_VALUES = {t.value for t in ReferenceType}


@dataclass
class ValidationReport:
    """Blocking errors plus advisory warnings."""

    errors: list[FieldError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class TemplateEngine:
    """Per-type skeletons and the minimum-structure rules an entry must meet."""

    def __init__(self, reference_validator: ReferenceValidator | None = None):
        """Initialize with an optional reference validator."""
        self._references = reference_validator or ReferenceValidator()

    def get_template(self, entry_type: EntryType | str) -> EntryTemplate:
        """Return the template for an entry type. Raises KeyError for unknown types."""
        return TEMPLATES[EntryType(entry_type)]

    def create_from_template(self, entry_type: EntryType | str, **overrides: object) -> EntryDraft:
        """Return a pre-filled draft for the type, with caller overrides applied."""
        template = self.get_template(entry_type)
        values: dict[str, object] = {
            "title": f"{template.title_prefix} • ",
            "date": format_utc(),
            "executive_summary": template.example_summary,
            "what_changed": template.example_what_changed,
            "decisions_rationale": template.example_decisions,
            "risks_mitigations": template.example_risks,
            "references": [],
            "type": template.type,
            "author": Role.LUX,
            "status": EntryStatus.DRAFT,
            "tags": list(template.suggested_tags),
        }
        values.update(overrides)
        return EntryDraft(**values)

    def validate(self, entry: EntryDraft | LedgerEntry) -> ValidationReport:
        """Check an entry against the minimum template structure."""
        report = ValidationReport()

        for name in REQUIRED_FIELDS:
            value = getattr(entry, name, None)
            if not value or not str(value).strip():
                report.errors.append(FieldError(field=name, message="Missing required field"))

        if entry.title and len(entry.title.strip()) < MIN_TITLE_LENGTH:
            report.errors.append(
                FieldError(
                    field="title",
                    message=f"Title too short (minimum {MIN_TITLE_LENGTH} characters)",
                )
            )

        if entry.date:
            try:
                parse_utc(entry.date)
            except ValueError:
                report.errors.append(
                    FieldError(
                        field="date", message="Date must be in UTC format: YYYY-MM-DD HH:MM:SS"
                    )
                )

        if entry.author is None or str(entry.author) not in _ROLE_VALUES:
            report.errors.append(
                FieldError(field="author", message="Author must be one of: lux, mini-lux, scribe")
            )

        if entry.type is None or str(entry.type) not in _TYPE_VALUES:
            report.errors.append(FieldError(field="type", message="Invalid entry type"))

        summary = entry.executive_summary or ""
        if summary and len(summary) < MIN_SUMMARY_LENGTH:
            report.warnings.append(
                f"Executive summary is short (minimum {MIN_SUMMARY_LENGTH} characters recommended)"
            )
        what_changed = entry.what_changed or ""
        if what_changed and len(what_changed) < MIN_WHAT_CHANGED_LENGTH:
            report.warnings.append(
                f'"What changed" is brief '
                f"(minimum {MIN_WHAT_CHANGED_LENGTH} characters recommended)"
            )

        references = entry.references or []
        if not references:
            report.warnings.append(
                "No references provided. "
                "Consider adding commit hashes, PR links, or other references."
            )
        else:
            self._check_references(references, report)

        return report

    def _check_references(self, references: list[Reference], report: ValidationReport) -> None:
        for idx, ref in enumerate(references):
            name = f"references[{idx}]"
            if not ref.id or not ref.type or not ref.description:
                message = "Reference is incomplete (needs id, type, and description)"
                report.errors.append(FieldError(field=name, message=message))
                continue
            if str(ref.type) not in _REFERENCE_TYPE_VALUES:
                message = f"Unknown reference type {ref.type!r}"
                report.errors.append(FieldError(field=name, message=message))
                continue
            check = self._references.validate(ref)
            if not check.is_valid:
                report.errors.append(FieldError(field=name, message=check.message or "Invalid"))
            if check.warning:
                report.warnings.append(f"Reference {idx}: {check.warning}")

    def check_quick_write_criteria(self, entry: EntryDraft | LedgerEntry) -> bool:
        """True when the entry validates and every narrative field is under its ceiling."""
        if not self.validate(entry).is_valid:
            return False
        return all(
            len(getattr(entry, name) or "") < limit for name, limit in QUICK_WRITE_LIMITS.items()
        )

    def auto_populate_context(
        self,
        draft: EntryDraft,
        *,
        commit_sha: str | None = None,
        pr_number: int | None = None,
        issue_number: int | None = None,
    ) -> EntryDraft:
        """Return a copy of the draft with references derived from repository context."""
        references = list(draft.references or [])
        if commit_sha:
            references.append(
                Reference(
                    id=commit_sha, type=ReferenceType.COMMIT_HASH, description="Related commit"
                )
            )
        if pr_number:
            references.append(
                Reference(
                    id=f"PR#{pr_number}",
                    type=ReferenceType.EXTERNAL,
                    description=f"Pull Request #{pr_number}",
                )
            )
        if issue_number:
            references.append(
                Reference(
                    id=f"Issue#{issue_number}",
                    type=ReferenceType.EXTERNAL,
                    description=f"Issue #{issue_number}",
                )
            )
        return draft.model_copy(update={"references": references})
