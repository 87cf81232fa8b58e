"""Framework applicability scoring.

Pure functions; the same profile and rule always produce the same result.

- evaluate_condition       — one weighted predicate against a profile
- evaluate_applicability   — weighted score, rationale and priority for a catalog rule
- score_discovered_framework — category heuristic for frameworks with no rule
- relevance_reasons        — human-readable reasons for a discovered framework
- assess_discovered_framework — factor-based assessment for a discovered framework
- priority_for_score       — score → priority tier
- FrameworkSuggestion      — one entry of a discovery run
"""

from dataclasses import dataclass, field
from typing import Any

from aumos_compliance_learning.applicability.rules import ApplicabilityCondition, ApplicabilityRule

_CRITICAL_THRESHOLD = 0.9
_HIGH_THRESHOLD = 0.7
_MEDIUM_THRESHOLD = 0.5
_HIGHLY_APPLICABLE_THRESHOLD = 0.8

_JURISDICTION_MATCH_SCORE = 0.3
_DEFAULT_CATEGORY_SCORE = 0.2
_SIZE_SCORES: dict[str, float] = {
    "micro": 0.1,
    "small": 0.15,
    "medium": 0.2,
    "large": 0.25,
    "enterprise": 0.3,
}


@dataclass
class MatchingFactor:
    """Per-condition detail of a relevance assessment."""

    factor: str
    weight: float
    matched: bool
    details: str


@dataclass
class RelevanceAssessment:
    """Weighted relevance of a framework for an entity."""

    framework_name: str
    relevance_score: float
    matching_factors: list[MatchingFactor] = field(default_factory=list)
    missing_factors: list[str] = field(default_factory=list)
    overall_rationale: str = ""
    recommended_priority: str = "low"


@dataclass
class FrameworkSuggestion:
    """A framework suggested to a tenant by a discovery run.

    Attributes:
        framework_id: Catalog slug, or the discovered framework UUID as a string.
        is_new: True for discovered frameworks not yet in the catalog.
        estimated_controls: Expected control count, discovered frameworks only.
    """

    framework_id: str
    framework_name: str
    jurisdiction: str
    category: str
    relevance_score: float
    reasons: list[str]
    is_new: bool
    priority: str
    estimated_controls: int | None = None


def priority_for_score(score: float) -> str:
    """Map a relevance score to a priority tier."""
    if score >= _CRITICAL_THRESHOLD:
        return "critical"
    if score >= _HIGH_THRESHOLD:
        return "high"
    if score >= _MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(profile: Any, condition: ApplicabilityCondition) -> bool:
    """Evaluate one condition against a profile.

    Unknown operators evaluate to False.

    Args:
        profile: An EntityProfile (or any object with the same attributes).
        condition: The condition to evaluate.

    Returns:
        Whether the condition holds.
    """
    field_value = getattr(profile, condition.field, None)
    operator = condition.operator

    if operator == "equals":
        return field_value == condition.value
    if operator == "contains":
        return isinstance(field_value, (list, tuple, set, frozenset)) and condition.value in field_value
    if operator == "greater_than":
        return _is_number(field_value) and field_value > condition.value
    if operator == "less_than":
        return _is_number(field_value) and field_value < condition.value
    if operator == "in":
        return isinstance(condition.value, (list, tuple, set, frozenset)) and field_value in condition.value
    return False


def _join_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(str(item) for item in value)
    return str(value)


def describe_condition(condition: ApplicabilityCondition, matched: bool) -> str:
    """Return a human-readable description of a condition outcome."""
    verb = "matches" if matched else "does not match"
    name = condition.field

    if name == "jurisdictions":
        return f"Entity {verb} jurisdiction requirement: {str(condition.value).upper()}"
    if name == "processes_personal_data":
        return "Entity processes personal data" if matched else "Entity does not process personal data"
    if name == "uses_ai_systems":
        return "Entity uses AI systems" if matched else "Entity does not use AI systems"
    if name == "is_critical_infrastructure":
        return "Entity is critical infrastructure" if matched else "Entity is not critical infrastructure"
    if name == "is_publicly_traded":
        return "Entity is publicly traded" if matched else "Entity is not publicly traded"
    if name == "entity_size":
        return f"Entity size {verb}: {_join_value(condition.value)}"
    if name == "industry":
        return f"Industry {verb}: {_join_value(condition.value)}"
    if name == "data_categories":
        return f"Data categories {verb}: {condition.value}"
    return f"{name} {verb} {_join_value(condition.value)}"


def build_rationale(framework_name: str, factors: list[MatchingFactor], score: float) -> str:
    """Summarise an assessment in one or two sentences."""
    matched = [factor for factor in factors if factor.matched]
    unmatched = [factor for factor in factors if not factor.matched]

    if score >= _HIGHLY_APPLICABLE_THRESHOLD:
        names = ", ".join(factor.factor for factor in matched)
        return f"{framework_name} is highly applicable. {len(matched)} of {len(factors)} criteria met: {names}."
    if score >= _MEDIUM_THRESHOLD:
        names = ", ".join(factor.factor for factor in unmatched)
        return f"{framework_name} is moderately applicable. Consider implementing if {names} become relevant."
    return f"{framework_name} has limited applicability. Only {len(matched)} of {len(factors)} criteria met."


def _assessment_from_factors(framework_name: str, factors: list[MatchingFactor]) -> RelevanceAssessment:
    total_weight = sum(factor.weight for factor in factors)
    matched_weight = sum(factor.weight for factor in factors if factor.matched)
    score = matched_weight / total_weight if total_weight > 0 else 0.0
    return RelevanceAssessment(
        framework_name=framework_name,
        relevance_score=score,
        matching_factors=factors,
        missing_factors=[factor.details for factor in factors if not factor.matched],
        overall_rationale=build_rationale(framework_name, factors, score),
        recommended_priority=priority_for_score(score),
    )


def evaluate_applicability(profile: Any, rule: ApplicabilityRule) -> RelevanceAssessment:
    """Score a catalog framework's rule against a profile.

    Score = satisfied weight / total weight, 0 when the rule has no weight.

    Args:
        profile: The entity profile.
        rule: The framework's applicability rule.

    Returns:
        RelevanceAssessment with per-condition detail.
    """
    factors: list[MatchingFactor] = []
    for condition in rule.conditions:
        matched = evaluate_condition(profile, condition)
        factors.append(
            MatchingFactor(
                factor=condition.field,
                weight=condition.weight,
                matched=matched,
                details=describe_condition(condition, matched),
            )
        )
    return _assessment_from_factors(rule.framework_name, factors)


# ---------------------------------------------------------------------------
# Discovered frameworks (no built-in rule)
# ---------------------------------------------------------------------------


def _category_score(profile: Any, category: str) -> float:
    if category == "data_protection":
        return 0.4 if profile.processes_personal_data else 0.0
    if category == "ai_governance":
        return 0.4 if profile.uses_ai_systems else 0.0
    if category == "cybersecurity":
        return 0.1 if profile.entity_size in ("micro", "small") else 0.3
    if category == "critical_infrastructure":
        return 0.5 if profile.is_critical_infrastructure else 0.0
    if category == "financial":
        return 0.4 if profile.industry == "financial_services" else 0.0
    if category == "healthcare":
        return 0.4 if profile.industry == "healthcare" else 0.0
    return _DEFAULT_CATEGORY_SCORE


def score_discovered_framework(profile: Any, framework: Any) -> float:
    """Heuristic relevance of a discovered framework, capped at 1.0.

    Blends a jurisdiction match, a category-specific predicate and an
    entity-size weight.

    Args:
        profile: The entity profile.
        framework: A DiscoveredFramework (needs jurisdiction and category).

    Returns:
        Relevance score in [0, 1].
    """
    score = 0.0
    if framework.jurisdiction in (profile.jurisdictions or []):
        score += _JURISDICTION_MATCH_SCORE
    score += _category_score(profile, framework.category)
    score += _SIZE_SCORES.get(profile.entity_size, 0.1)
    return min(score, 1.0)


def relevance_reasons(profile: Any, framework: Any) -> list[str]:
    """List the profile characteristics that make a discovered framework relevant."""
    reasons: list[str] = []
    category = framework.category

    if framework.jurisdiction in (profile.jurisdictions or []):
        reasons.append(f"Operating in {framework.jurisdiction.upper()} jurisdiction")
    if category == "data_protection" and profile.processes_personal_data:
        reasons.append("Processes personal data")
    if category == "ai_governance" and profile.uses_ai_systems:
        reasons.append("Uses AI systems")
    if category == "critical_infrastructure" and profile.is_critical_infrastructure:
        reasons.append("Critical infrastructure operator")
    if category == "healthcare" and profile.industry == "healthcare":
        reasons.append("Healthcare industry")
    if category == "financial" and profile.industry == "financial_services":
        reasons.append("Financial services industry")
    if profile.entity_size in ("large", "enterprise"):
        reasons.append("Large organization with comprehensive compliance needs")
    return reasons


def assess_discovered_framework(profile: Any, framework: Any) -> RelevanceAssessment:
    """Factor-based relevance assessment for a discovered framework."""
    jurisdiction = framework.jurisdiction.upper()
    in_jurisdiction = framework.jurisdiction in (profile.jurisdictions or [])
    factors = [
        MatchingFactor(
            factor="jurisdiction",
            weight=0.3,
            matched=in_jurisdiction,
            details=f"Operating in {jurisdiction}" if in_jurisdiction else f"Not operating in {jurisdiction}",
        )
    ]
    if framework.category == "data_protection":
        processes = bool(profile.processes_personal_data)
        factors.append(
            MatchingFactor(
                factor="data_processing",
                weight=0.4,
                matched=processes,
                details="Processes personal data" if processes else "Does not process personal data",
            )
        )
    if framework.category == "ai_governance":
        uses_ai = bool(profile.uses_ai_systems)
        factors.append(
            MatchingFactor(
                factor="ai_usage",
                weight=0.4,
                matched=uses_ai,
                details="Uses AI systems" if uses_ai else "Does not use AI systems",
            )
        )
    return _assessment_from_factors(framework.name, factors)
