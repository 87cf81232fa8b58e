"""Synthesis of candidate controls from obligation statements.

- ControlCandidate        — an unsaved generated control
- synthesize_section      — one candidate per requirement found in a section
- control_from_requirement — candidate from a structured extracted requirement
- score_confidence        — heuristic confidence of a requirement
- plan_refinements        — reviewer-feedback driven adjustments
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from aumos_compliance_learning.core.domain import ExtractedRequirement
from aumos_compliance_learning.core.interfaces import TextClassifier
from aumos_compliance_learning.generation.segmenter import DocumentSection

_TITLE_WORDS = 8
_TITLE_MAX_LENGTH = 50

_BASE_CONFIDENCE = 0.5
_MODAL_BONUS = 0.2
_LENGTH_BONUS = 0.1
_CITATION_BONUS = 0.1
_LONG_REQUIREMENT = 100
_MAX_CONFIDENCE = 0.95
STRUCTURED_REQUIREMENT_CONFIDENCE = 0.7

_MODAL_PATTERN = re.compile(r"\b(?:shall|must)\b", re.IGNORECASE)
_CITATION_PATTERN = re.compile(r"\b(?:Article|Section)\b")

DIFFICULTY_ORDER: tuple[str, ...] = ("low", "medium", "high", "very_high")


@dataclass
class ControlCandidate:
    """A generated control before it is stored."""

    framework_id: str
    control_id: str
    title: str
    description: str
    category: str
    control_type: str
    requirement: str
    implementation_difficulty: str
    evidence_types: list[str]
    assessment_criteria: list[str]
    confidence: float
    domain: str | None = None
    guidance: str | None = None
    ai_prompt: str | None = None
    source_document: str | None = None
    source_section: str | None = None
    generation_context: dict[str, Any] = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)


# ---------------------------------------------------------------------------
# Text templates
# ---------------------------------------------------------------------------


def control_title(requirement: str) -> str:
    """Leading clause of a requirement, at most 50 characters, capitalised."""
    title = " ".join(requirement.split()[:_TITLE_WORDS])
    if len(title) > _TITLE_MAX_LENGTH:
        title = title[: _TITLE_MAX_LENGTH - 3] + "..."
    return title[:1].upper() + title[1:]


def guidance_for(requirement: str) -> str:
    return (
        f"To comply with this control, organizations should implement measures to {requirement.lower()} "
        "This includes establishing appropriate policies, procedures, and technical controls."
    )


def assessment_criteria_for(requirement: str) -> str:
    return (
        f"Verify that the organization has implemented controls to address the following: {requirement} "
        "Evidence should demonstrate ongoing compliance and regular review."
    )


def assessment_prompt_for(requirement: str, framework_name: str) -> str:
    return (
        f'Assess the organization\'s compliance with the following {framework_name} requirement: "{requirement}"\n\n'
        "Consider:\n"
        "1. Are appropriate policies and procedures in place?\n"
        "2. Is there evidence of implementation?\n"
        "3. Are controls operating effectively?\n"
        "4. Are there any gaps or areas for improvement?\n\n"
        "Provide a compliance rating (compliant, partially_compliant, non_compliant) with justification."
    )


def score_confidence(requirement: str) -> float:
    """Heuristic confidence that a sentence is a genuine obligation.

    0.5 base, +0.2 for shall/must, +0.1 above 100 characters and +0.1 for an
    Article/Section citation, capped at 0.95.
    """
    confidence = _BASE_CONFIDENCE
    if _MODAL_PATTERN.search(requirement):
        confidence += _MODAL_BONUS
    if len(requirement) > _LONG_REQUIREMENT:
        confidence += _LENGTH_BONUS
    if _CITATION_PATTERN.search(requirement):
        confidence += _CITATION_BONUS
    return min(round(confidence, 4), _MAX_CONFIDENCE)


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def synthesize_section(
    section: DocumentSection,
    framework_id: str,
    framework_name: str,
    classifier: TextClassifier,
    context: dict[str, Any] | None = None,
) -> list[ControlCandidate]:
    """Build one candidate per obligation found in a section.

    Args:
        section: The document section.
        framework_id: Target framework slug.
        framework_name: Target framework display name.
        classifier: Extraction and classification strategy.
        context: Provenance stored on each candidate.

    Returns:
        Candidates in extraction order.
    """
    candidates: list[ControlCandidate] = []
    reference = section.article_number or section.section_id
    for position, requirement in enumerate(classifier.extract_requirements(section.content), start=1):
        traits = classifier.classify(requirement)
        candidates.append(
            ControlCandidate(
                framework_id=framework_id,
                control_id=f"{framework_id.upper()}-{reference}-{position}",
                title=control_title(requirement),
                description=requirement,
                category=traits.category,
                control_type=traits.control_type,
                domain=section.title,
                requirement=f"Article {section.article_number}" if section.article_number else requirement,
                guidance=guidance_for(requirement),
                implementation_difficulty=traits.difficulty,
                evidence_types=list(traits.evidence_types),
                assessment_criteria=[assessment_criteria_for(requirement)],
                ai_prompt=assessment_prompt_for(requirement, framework_name),
                source_document=framework_name,
                source_section=section.title,
                confidence=score_confidence(requirement),
                generation_context=dict(context or {}),
            )
        )
    return candidates


def control_from_requirement(
    requirement: ExtractedRequirement,
    framework_id: str,
    source_title: str,
    position: int,
    context: dict[str, Any] | None = None,
) -> ControlCandidate:
    """Candidate from a structured requirement carried by a change analysis.

    Raises:
        ValueError: If the requirement has no text.
    """
    if not requirement.text.strip():
        raise ValueError(f"Extracted requirement {requirement.id or position} has no text")
    return ControlCandidate(
        framework_id=framework_id,
        control_id=requirement.id or f"{framework_id.upper()}-UPD-{position}",
        title=requirement.title or control_title(requirement.text),
        description=requirement.text,
        category=requirement.category,
        control_type=requirement.control_type,
        domain=requirement.domain,
        requirement=requirement.text,
        guidance=requirement.guidance or "Implement appropriate controls.",
        implementation_difficulty=requirement.difficulty,
        evidence_types=list(requirement.evidence_types),
        assessment_criteria=list(requirement.criteria) or ["Verify implementation."],
        ai_prompt=None,
        source_document=source_title,
        confidence=STRUCTURED_REQUIREMENT_CONFIDENCE,
        generation_context=dict(context or {}),
    )


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ControlRefinement:
    """One field change proposed from reviewer feedback."""

    control_id: uuid.UUID
    field: str
    original_value: str
    new_value: str
    reason: str


def lower_difficulty(current: str) -> str:
    """One step down the difficulty scale, floored at low."""
    if current not in DIFFICULTY_ORDER:
        return current
    return DIFFICULTY_ORDER[max(0, DIFFICULTY_ORDER.index(current) - 1)]


def plan_refinements(controls: list[Any], feedback: str) -> list[ControlRefinement]:
    """Derive field changes from free-text reviewer feedback.

    Feedback asking for "easier" or "simpler" controls lowers the
    implementation difficulty of every control that is not already low.
    """
    lower = feedback.lower()
    refinements: list[ControlRefinement] = []
    if "easier" not in lower and "simpler" not in lower:
        return refinements
    for control in controls:
        current = control.implementation_difficulty
        lowered = lower_difficulty(current)
        if lowered != current:
            refinements.append(
                ControlRefinement(
                    control_id=control.id,
                    field="implementation_difficulty",
                    original_value=current,
                    new_value=lowered,
                    reason="Difficulty adjusted based on feedback",
                )
            )
    return refinements
