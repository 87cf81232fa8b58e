"""Validation of generated controls before implementation.

Severity levels:
- critical: blocks implementation (short control id, id already in the catalog)
- error: reported, does not block (short title)
- warnings: advisory (short description, no evidence types, low confidence)
- suggestions: non-blocking hints (no assessment prompt)
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

MIN_CONTROL_ID_LENGTH = 3
MIN_TITLE_LENGTH = 10
MIN_DESCRIPTION_LENGTH = 50
LOW_CONFIDENCE_THRESHOLD = 0.7


@dataclass(frozen=True)
class ValidationIssue:
    """A validation finding for one control."""

    control_id: str
    field: str
    message: str
    severity: str = "warning"


@dataclass
class ValidationResult:
    """Outcome of validating a batch of controls."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True when no critical error was found."""
        return not any(issue.severity == "critical" for issue in self.errors)

    def critical_for(self, control_id: str) -> list[ValidationIssue]:
        """Critical errors reported against one control."""
        return [issue for issue in self.errors if issue.control_id == control_id and issue.severity == "critical"]


def validate_controls(controls: Iterable[Any], existing_control_ids: set[str]) -> ValidationResult:
    """Validate controls against structural rules and the existing catalog.

    Args:
        controls: Generated controls or candidates. Each needs id, control_id,
            title, description, evidence_types, ai_prompt and confidence.
        existing_control_ids: Control ids already present in the catalog.

    Returns:
        ValidationResult; ``is_valid`` is False if any control is critically invalid.
    """
    result = ValidationResult()
    for control in controls:
        ref = str(control.id)
        control_id = control.control_id or ""

        if len(control_id) < MIN_CONTROL_ID_LENGTH:
            result.errors.append(
                ValidationIssue(ref, "control_id", "Control ID must be at least 3 characters", "critical")
            )
        if control_id in existing_control_ids:
            result.errors.append(
                ValidationIssue(
                    ref, "control_id", f"Control ID '{control_id}' already exists in the catalog", "critical"
                )
            )
        if len(control.title or "") < MIN_TITLE_LENGTH:
            result.errors.append(ValidationIssue(ref, "title", "Title must be at least 10 characters", "error"))
        if len(control.description or "") < MIN_DESCRIPTION_LENGTH:
            result.warnings.append(
                ValidationIssue(ref, "description", "Description should be more detailed (at least 50 characters)")
            )
        if not control.evidence_types:
            result.warnings.append(
                ValidationIssue(ref, "evidence_types", "No evidence types specified - assessment may be difficult")
            )
        if not control.ai_prompt:
            result.suggestions.append(
                f"Control {control_id}: Consider adding an assessment prompt for automated evaluation"
            )
        if control.confidence < LOW_CONFIDENCE_THRESHOLD:
            result.warnings.append(
                ValidationIssue(
                    ref, "confidence", f"Low confidence ({control.confidence:.2f}) - manual review recommended"
                )
            )
    return result
