"""Narrative section extraction from free-text event bodies."""

import re

WHAT_CHANGED_HEADINGS = ("What Changed", "Changes")
RATIONALE_HEADINGS = ("Rationale", "Why", "Decisions?")
RISKS_HEADINGS = ("Risks?", "Mitigations?")

WHAT_CHANGED_FALLBACK = "See PR description for details."
RATIONALE_FALLBACK = "See PR discussion for rationale."
RISKS_FALLBACK = "Standard deployment risks apply."

MIN_SUMMARY_PARAGRAPH = 20
MAX_SUMMARY_LENGTH = 300


def _section_pattern(headings: tuple[str, ...]) -> re.Pattern[str]:
    # A markdown heading line followed by everything up to the next "##" heading
    alternatives = "|".join(headings)
    return re.compile(rf"##?\s*({alternatives})\s*\n([\s\S]*?)(?=\n##|$)", re.IGNORECASE)


def extract_section(body: str | None, headings: tuple[str, ...], fallback: str) -> str:
    """Return the trimmed text under the first matching heading, or the fallback."""
    if not body:
        return fallback
    match = _section_pattern(headings).search(body)
    if match:
        text = match.group(2).strip()
        if text:
            return text
    return fallback


def summarize(body: str | None, default: str) -> str:
    """First paragraph of the body when it is substantial, otherwise ``default``."""
    first_paragraph = (body or "").split("\n\n")[0].strip()
    if len(first_paragraph) > MIN_SUMMARY_PARAGRAPH:
        return first_paragraph[:MAX_SUMMARY_LENGTH]
    return default
