"""Evidence-based control rating.

Pure functions used by AssessmentService:
- rate_evidence        — rating, base confidence, rationale and recommendations
- apply_learning_boost — confidence nudge from applied learning improvements
- needs_review         — route uncertain or changed verdicts to a human
- RatingCounts / overall_score — aggregation across findings
"""

from dataclasses import dataclass

COMPLIANT_RATIO = 0.8
PARTIAL_RATIO = 0.5
REVIEW_CONFIDENCE_THRESHOLD = 0.7
IMPROVEMENT_BOOST = 0.05
MAX_BOOSTED_IMPROVEMENTS = 5
MAX_CONFIDENCE = 0.95
EVIDENCE_SAMPLE_SIZE = 10


@dataclass(frozen=True)
class EvidenceRating:
    """Rating derived from a control's evidence."""

    rating: str
    confidence: float
    rationale: str
    recommendations: tuple[str, ...] = ()


def rate_evidence(total: int, verified: int) -> EvidenceRating:
    """Map the verified share of a control's evidence to a rating.

    Zero evidence is always non-compliant. Otherwise a verified ratio of at
    least 0.8 is compliant and at least 0.5 is partially compliant.

    Args:
        total: Number of evidence items considered.
        verified: How many of them are verified.

    Returns:
        EvidenceRating with a base confidence between 0.7 and 0.85.
    """
    if total <= 0:
        return EvidenceRating(
            rating="non_compliant",
            confidence=0.7,
            rationale="No evidence found for this control.",
            recommendations=("Upload relevant documentation or evidence.",),
        )

    ratio = verified / total
    if ratio >= COMPLIANT_RATIO:
        return EvidenceRating(
            rating="compliant",
            confidence=0.85,
            rationale=f"{verified} of {total} evidence items verified.",
        )
    if ratio >= PARTIAL_RATIO:
        return EvidenceRating(
            rating="partially_compliant",
            confidence=0.75,
            rationale=f"Only {verified} of {total} evidence items verified.",
            recommendations=("Verify remaining evidence items.",),
        )
    return EvidenceRating(
        rating="non_compliant",
        confidence=0.7,
        rationale=f"Insufficient verified evidence: {verified} of {total}.",
        recommendations=(
            "Review and verify existing evidence.",
            "Upload additional supporting documentation.",
        ),
    )


def apply_learning_boost(confidence: float, applied_improvements: int) -> float:
    """Raise confidence by 0.05 per applied improvement (at most 5), capped at 0.95."""
    boosted = confidence + IMPROVEMENT_BOOST * min(max(applied_improvements, 0), MAX_BOOSTED_IMPROVEMENTS)
    return min(round(boosted, 4), MAX_CONFIDENCE)


def needs_review(
    confidence: float,
    rating: str,
    prior_rating: str | None,
    threshold: float = REVIEW_CONFIDENCE_THRESHOLD,
) -> bool:
    """A finding needs review when confidence is low or the rating changed."""
    return confidence < threshold or (prior_rating is not None and prior_rating != rating)


@dataclass
class RatingCounts:
    """Per-rating tallies for one assessment run."""

    compliant: int = 0
    partially_compliant: int = 0
    non_compliant: int = 0
    not_applicable: int = 0

    def add(self, rating: str) -> None:
        if rating == "compliant":
            self.compliant += 1
        elif rating == "partially_compliant":
            self.partially_compliant += 1
        elif rating == "non_compliant":
            self.non_compliant += 1
        elif rating == "not_applicable":
            self.not_applicable += 1

    @property
    def total(self) -> int:
        return self.compliant + self.partially_compliant + self.non_compliant + self.not_applicable

    @property
    def assessed(self) -> int:
        """Controls counted in the score denominator."""
        return self.total - self.not_applicable


def overall_score(counts: RatingCounts) -> float:
    """(compliant × 100 + partially compliant × 50) / assessed, to 2 decimals."""
    if counts.assessed <= 0:
        return 0.0
    return round((counts.compliant * 100 + counts.partially_compliant * 50) / counts.assessed, 2)
