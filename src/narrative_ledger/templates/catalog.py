"""Per-type entry skeletons."""

from dataclasses import dataclass

from narrative_ledger.models.entry import EntryType


@dataclass(frozen=True)
class EntryTemplate:
    """Behavior descriptor for one entry type: title prefix, tags and example text."""

    type: EntryType
    title_prefix: str
    suggested_tags: tuple[str, ...]
    example_summary: str
    example_what_changed: str
    example_decisions: str
    example_risks: str


TEMPLATES: dict[EntryType, EntryTemplate] = {
    EntryType.DECISION: EntryTemplate(
        type=EntryType.DECISION,
        title_prefix="Decision",
        suggested_tags=("decision", "architecture"),
        example_summary="Decision to adopt [technology/approach] for [use case].",
        example_what_changed="- Changed [X] from [Y] to [Z]\n- Added [new capability]",
        example_decisions=(
            "Chose [option] because [rationale]. Considered alternatives: [list]. "
            "Selected based on [criteria]."
        ),
        example_risks="Risk: [potential issue]\nMitigation: [how we address it]",
    ),
    EntryType.INCIDENT: EntryTemplate(
        type=EntryType.INCIDENT,
        title_prefix="Incident",
        suggested_tags=("incident", "rollback"),
        example_summary=(
            "Service degradation/outage affecting [component] for [duration]. "
            "Root cause: [brief explanation]."
        ),
        example_what_changed=(
            "Incident detected at [time]. Impact: [description]. Resolution: [action taken]."
        ),
        example_decisions=(
            "Decided to [rollback/hotfix/etc] to restore service. Long-term fix: [plan]."
        ),
        example_risks=(
            "Risk: Data inconsistency/service unavailability\nMitigation: [specific actions taken]"
        ),
    ),
    EntryType.MILESTONE: EntryTemplate(
        type=EntryType.MILESTONE,
        title_prefix="Milestone",
        suggested_tags=("milestone", "deploy", "feature"),
        example_summary="Achieved [milestone name]: [brief description of accomplishment].",
        example_what_changed=(
            "- Completed [feature/phase]\n- Deployed [components]\n- Achieved [metrics/goals]"
        ),
        example_decisions="Delivered per roadmap priorities. Key decisions: [list].",
        example_risks="Standard deployment risks. Monitoring [metrics] for [timeframe].",
    ),
    EntryType.ROUTINE: EntryTemplate(
        type=EntryType.ROUTINE,
        title_prefix="Update",
        suggested_tags=("routine", "update"),
        example_summary="Regular update: [what was updated].",
        example_what_changed=(
            "- Updated [component]\n- Refreshed [data/config]\n- Applied [patches]"
        ),
        example_decisions="Routine maintenance following standard procedures.",
        example_risks="Low risk. Standard rollback available if needed.",
    ),
    EntryType.ROLLBACK: EntryTemplate(
        type=EntryType.ROLLBACK,
        title_prefix="Rollback",
        suggested_tags=("rollback", "incident"),
        example_summary=(
            "Rolled back [deployment/change] due to [issue]. Service restored at [time]."
        ),
        example_what_changed=(
            "Reverted [component] from version [new] to [old]. Verified [functionality]."
        ),
        example_decisions=(
            "Immediate rollback chosen to minimize impact. Root cause investigation ongoing."
        ),
        example_risks="Risk: Loss of new features\nMitigation: Planned re-deployment after fix",
    ),
    EntryType.FLIP: EntryTemplate(
        type=EntryType.FLIP,
        title_prefix="Feature Flag Flip",
        suggested_tags=("flip", "feature-flag", "experiment"),
        example_summary="Enabled/disabled [feature flag] affecting [scope].",
        example_what_changed=(
            "Flipped [flag-name] from [off/on] to [on/off] for [users/environment]."
        ),
        example_decisions="Feature flag change based on [metrics/feedback/plan].",
        example_risks=(
            "Risk: Behavior change for users\nMitigation: Gradual rollout with monitoring"
        ),
    ),
}
