"""Rule-based entry type classification for external events."""

from collections.abc import Iterable
from dataclasses import dataclass

from narrative_ledger.models.entry import EntryType


@dataclass(frozen=True)
class ClassificationRule:
    """Keywords that select an entry type. ``match_body`` also searches the event body."""

    type: EntryType
    keywords: tuple[str, ...]
    match_body: bool = False

    def matches(self, title: str, labels: Iterable[str], body: str) -> bool:
        haystacks = [title, *labels]
        if self.match_body:
            haystacks.append(body)
        return any(keyword in text for text in haystacks for keyword in self.keywords)


# First matching rule wins
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(EntryType.ROLLBACK, ("rollback",), match_body=True),
    ClassificationRule(EntryType.INCIDENT, ("incident", "hotfix", "fix")),
    ClassificationRule(EntryType.FLIP, ("flip", "feature flag", "feature-flag")),
    ClassificationRule(EntryType.MILESTONE, ("milestone", "release", "major")),
    ClassificationRule(EntryType.DECISION, ("decision", "rfc")),
)

# Title keyword -> heuristic tag
KEYWORD_TAGS: tuple[tuple[str, str], ...] = (
    ("feature", "feature"),
    ("fix", "bugfix"),
    ("security", "security"),
    ("performance", "optimization"),
    ("docs", "doc-update"),
)


def classify(
    title: str,
    labels: Iterable[str] = (),
    body: str | None = None,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> EntryType:
    """Return the entry type of the first rule matching the title, labels or body."""
    lowered_labels = [label.lower() for label in labels]
    for rule in rules:
        if rule.matches(title.lower(), lowered_labels, (body or "").lower()):
            return rule.type
    return EntryType.ROUTINE


def keyword_tags(title: str) -> list[str]:
    lowered = title.lower()
    return [tag for keyword, tag in KEYWORD_TAGS if keyword in lowered]
