"""Compact output formatters for MCP tool responses."""

from narrative_ledger.audit.authz import is_authorized
from narrative_ledger.errors import ValidationError
from narrative_ledger.models.audit import AuditAction
from narrative_ledger.models.entry import LedgerEntry
from narrative_ledger.models.search import SimilarEntry


def format_entry_header(entry: LedgerEntry) -> str:
    """Format: [01J...] Incident | Deploy • cache fix (draft r1)."""
    return (
        f"[{entry.id}] {entry.type.value} | {entry.title} "
        f"({entry.status.value} r{entry.revision})"
    )


def format_entry_meta(entry: LedgerEntry) -> str:
    """Format: 2025-01-01 00:00:00 | mini-lux | #tag1 #tag2."""
    parts = [entry.date, entry.author.value]
    if entry.tags:
        parts.append(" ".join(f"#{t}" for t in entry.tags))
    if entry.supersedes_entry_id:
        parts.append(f"supersedes {entry.supersedes_entry_id}")
    return " | ".join(parts)


def format_entry_compact(entry: LedgerEntry) -> str:
    """Header + meta + executive summary. For listings and search."""
    return "\n".join(
        [
            format_entry_header(entry),
            f"  {format_entry_meta(entry)}",
            f"  {entry.executive_summary}",
        ]
    )


def format_entry_full(entry: LedgerEntry, findings: list[str] | None = None) -> str:
    """Every narrative section plus references. For ledger_get."""
    lines = [
        format_entry_header(entry),
        f"  {format_entry_meta(entry)}",
        "",
        "Executive summary:",
        f"  {entry.executive_summary}",
        "What changed:",
        f"  {entry.what_changed}",
        "Decisions & rationale:",
        f"  {entry.decisions_rationale}",
        "Risks & mitigations:",
        f"  {entry.risks_mitigations}",
    ]
    if entry.narrative_extended:
        lines.extend(["Narrative:", f"  {entry.narrative_extended}"])
    if entry.references:
        lines.append("References:")
        for ref in entry.references:
            line = f"  - {ref.type}: {ref.id} ({ref.description})"
            if ref.url:
                line += f" {ref.url}"
            lines.append(line)
    if findings:
        lines.append(f"Warning: possible sensitive content ({', '.join(findings)})")
    return "\n".join(lines)


def format_similar(result: SimilarEntry) -> str:
    """Compact entry prefixed with its similarity score."""
    return f"{result.score:.3f} {format_entry_compact(result.entry)}"


def format_save_result(
    entry: LedgerEntry,
    is_update: bool,
    warnings: list[str],
    findings: list[str] | None = None,
    quick_write: bool = True,
) -> str:
    """Format the result of a save for the MCP response.

    Sensitive-content findings are advisory; the entry is saved regardless.
    """
    action = "Updated" if is_update else "Created"
    lines = [f"{action} {entry.id} (r{entry.revision})", format_entry_compact(entry)]
    lines.extend(f"  Warning: {w}" for w in warnings)
    if findings:
        lines.append(f"  Warning: possible sensitive content ({', '.join(findings)})")
    if not quick_write:
        lines.append("  Note: over the quick-write length limits, see narrative_extended")
    if entry.status.value == "draft" and not is_authorized(AuditAction.PUBLISH, entry.author):
        lines.append("  Note: a lux or mini-lux role must publish this draft")
    return "\n".join(lines)


def format_validation_error(error: ValidationError) -> str:
    """One line per offending field."""
    lines = ["Error: Validation failed"]
    lines.extend(f"  - {e.field}: {e.message}" for e in error.errors)
    return "\n".join(lines)


def format_result_list(formatted_entries: list[str], header: str | None = None) -> str:
    """Count + entries joined by blank lines."""
    if not formatted_entries:
        return "No results found."

    lines: list[str] = []
    if header:
        lines.append(header)
    lines.append(f"{len(formatted_entries)} result(s)")
    lines.append("")
    lines.append("\n\n".join(formatted_entries))
    return "\n".join(lines)
