"""Feedback classification and prompt rewriting.

The decision table maps each feedback event type to whether an improvement
is applied, why, and what the improvement does. Unknown event types never
raise; they resolve to "do not apply, manual review".
"""

from dataclasses import dataclass

REVIEW_SUGGESTION_THRESHOLD = 3
CONFIDENCE_GAIN_PER_IMPROVEMENT = 0.05

SPECIFICITY_CLAUSE = (
    "Be more specific in your assessment. Only mark as compliant if there is clear, verified evidence."
)
SENSITIVITY_CLAUSE = (
    "Be more inclusive in your assessment. Consider partial evidence and in-progress implementations."
)
REVIEW_FEEDBACK_TEXT = "Control consistently requires human review"

# Event types whose application rewrites the control's assessment prompt.
PROMPT_REWRITING_EVENTS = frozenset({"prompt_improvement", "false_positive", "false_negative"})


@dataclass(frozen=True)
class FeedbackDecision:
    """Outcome of classifying one feedback row."""

    should_apply: bool
    reason: str
    suggested_action: str


_DECISIONS: dict[str, FeedbackDecision] = {
    "rating_override": FeedbackDecision(True, "User corrected the assessment rating", "Adjust assessment criteria"),
    "assessment_correction": FeedbackDecision(
        True, "User corrected the assessment rating", "Adjust assessment criteria"
    ),
    "false_positive": FeedbackDecision(True, "False positive identified", "Increase specificity in assessment"),
    "false_negative": FeedbackDecision(True, "False negative identified", "Increase sensitivity in assessment"),
    "evidence_pattern": FeedbackDecision(
        True, "New evidence pattern identified", "Record pattern for future assessments"
    ),
}

_UNKNOWN_DECISION = FeedbackDecision(False, "Unknown event type", "Manual review required")


def classify_feedback(event_type: str, improvement_suggestion: str | None) -> FeedbackDecision:
    """Classify a feedback event.

    ``prompt_improvement`` applies only when a non-blank suggestion is present.

    Args:
        event_type: The feedback event type.
        improvement_suggestion: Optional suggestion text.

    Returns:
        FeedbackDecision; never raises.
    """
    if event_type == "prompt_improvement":
        return FeedbackDecision(
            should_apply=bool(improvement_suggestion and improvement_suggestion.strip()),
            reason="Prompt improvement suggested",
            suggested_action="Update assessment prompt",
        )
    return _DECISIONS.get(event_type, _UNKNOWN_DECISION)


def generate_improved_prompt(
    original_prompt: str,
    feedback: str | None,
    suggestion: str | None,
    event_type: str | None = None,
) -> str:
    """Append feedback-derived guidance clauses to an assessment prompt.

    Args:
        original_prompt: Current prompt, possibly empty.
        feedback: Free-text feedback.
        suggestion: Optional improvement suggestion.
        event_type: Feedback event type; false_positive / false_negative add
            the matching clause even when the text does not mention it.

    Returns:
        The rewritten prompt.
    """
    improved = original_prompt
    lower = (feedback or "").lower()
    if suggestion:
        improved += f"\n\nAdditional consideration: {suggestion}"
    if "false positive" in lower or event_type == "false_positive":
        improved += f"\n\n{SPECIFICITY_CLAUSE}"
    if "false negative" in lower or event_type == "false_negative":
        improved += f"\n\n{SENSITIVITY_CLAUSE}"
    return improved


def review_suggestion_text(rationale: str) -> str:
    """Suggestion emitted for a control that keeps needing human review."""
    return f"Consider revising prompt to address: {rationale}"


def evidence_pattern_key(evidence_files: list[str]) -> str:
    """Stable key for the set of evidence files behind a finding."""
    return ",".join(sorted(evidence_files))[:255]
