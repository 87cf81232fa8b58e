"""Value types shared across the learning pipeline.

JSON columns are never read or written as untyped dicts by the services;
each structured payload has a dataclass here with ``to_dict``/``from_dict``
converters used at the repository boundary.

Structures:
- AssessmentConfig       — per-schedule execution options
- NotificationConfig     — per-schedule notification options
- AssessmentFinding      — per-control outcome of an assessment run
- ExtractedRequirement   — structured requirement carried by a change analysis
- ChangeAnalysis         — analysis of a detected regulatory change
- DetectedChange         — content change observed at a regulatory source
- GenerationContext      — provenance for control generation
- RequirementTraits      — inferred category, type, difficulty and evidence kinds
- GenerationError        — recoverable or fatal generation problem
- SuggestionOutcome, GenerationResult, ImplementationOutcome, ControlMapping,
  LearningMetrics        — service results
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

EntitySize = Literal["micro", "small", "medium", "large", "enterprise"]
Priority = Literal["critical", "high", "medium", "low"]
CheckFrequency = Literal["hourly", "daily", "weekly"]
AssessmentFrequency = Literal["daily", "weekly", "biweekly", "monthly", "quarterly", "annually"]
ComplianceRating = Literal["compliant", "partially_compliant", "non_compliant", "not_applicable"]
UpdateType = Literal["new_framework", "amendment", "guidance", "enforcement", "deadline", "repeal"]
ImpactLevel = Literal["critical", "high", "medium", "low", "informational"]
ControlCategory = Literal["organizational", "people", "physical", "technological"]
ControlType = Literal["preventive", "detective", "corrective", "deterrent"]
Difficulty = Literal["low", "medium", "high", "very_high"]
FeedbackEventType = Literal[
    "rating_override",
    "assessment_correction",
    "false_positive",
    "false_negative",
    "prompt_improvement",
    "evidence_pattern",
]

INDUSTRIES: tuple[str, ...] = (
    "technology",
    "financial_services",
    "healthcare",
    "retail",
    "manufacturing",
    "energy",
    "telecommunications",
    "government",
    "education",
    "transportation",
    "media",
    "pharmaceutical",
    "insurance",
    "real_estate",
    "professional_services",
    "other",
)
JURISDICTIONS: tuple[str, ...] = (
    "eu",
    "us",
    "uk",
    "canada",
    "australia",
    "japan",
    "singapore",
    "brazil",
    "india",
    "china",
    "global",
)
DATA_CATEGORIES: tuple[str, ...] = (
    "personal_data",
    "sensitive_personal_data",
    "health_data",
    "financial_data",
    "biometric_data",
    "children_data",
    "employee_data",
    "customer_data",
    "intellectual_property",
    "trade_secrets",
    "government_data",
    "critical_infrastructure_data",
)
ENTITY_SIZES: tuple[str, ...] = ("micro", "small", "medium", "large", "enterprise")
ASSESSMENT_FREQUENCIES: tuple[str, ...] = (
    "daily",
    "weekly",
    "biweekly",
    "monthly",
    "quarterly",
    "annually",
)
CHECK_FREQUENCIES: tuple[str, ...] = ("hourly", "daily", "weekly")
IMPACT_ORDER: tuple[str, ...] = ("critical", "high", "medium", "low", "informational")


# ---------------------------------------------------------------------------
# Schedule configuration
# ---------------------------------------------------------------------------


@dataclass
class AssessmentConfig:
    """Options controlling one scheduled assessment.

    Attributes:
        include_evidence: Read evidence when rating controls.
        control_subset: Restrict the run to these catalog control ids.
        confidence_threshold: Findings below this are flagged for review.
    """

    include_evidence: bool = True
    control_subset: list[str] | None = None
    confidence_threshold: float = 0.7

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AssessmentConfig":
        data = data or {}
        return cls(
            include_evidence=bool(data.get("include_evidence", True)),
            control_subset=list(data["control_subset"]) if data.get("control_subset") else None,
            confidence_threshold=float(data.get("confidence_threshold", 0.7)),
        )


@dataclass
class NotificationConfig:
    """Who to notify after a scheduled assessment and when.

    Attributes:
        notify_on_completion: Notify after every successful run.
        notify_on_failure: Notify when the run fails.
        notify_on_non_compliance: Notify when any finding is non-compliant.
        email_recipients: Email addresses to notify.
        webhook_url: Optional webhook endpoint.
    """

    notify_on_completion: bool = False
    notify_on_failure: bool = True
    notify_on_non_compliance: bool = True
    email_recipients: list[str] = field(default_factory=list)
    webhook_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NotificationConfig":
        data = data or {}
        return cls(
            notify_on_completion=bool(data.get("notify_on_completion", False)),
            notify_on_failure=bool(data.get("notify_on_failure", True)),
            notify_on_non_compliance=bool(data.get("notify_on_non_compliance", True)),
            email_recipients=list(data.get("email_recipients") or []),
            webhook_url=data.get("webhook_url"),
        )

    @property
    def has_targets(self) -> bool:
        """True when at least one recipient or webhook is configured."""
        return bool(self.email_recipients) or bool(self.webhook_url)


# ---------------------------------------------------------------------------
# Assessment findings
# ---------------------------------------------------------------------------


@dataclass
class AssessmentFinding:
    """Per-control outcome of an assessment run."""

    control_id: str
    control_title: str
    rating: str
    confidence: float
    rationale: str
    recommendations: list[str] = field(default_factory=list)
    requires_review: bool = False
    evidence_reviewed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssessmentFinding":
        return cls(
            control_id=str(data["control_id"]),
            control_title=str(data.get("control_title", "")),
            rating=str(data["rating"]),
            confidence=float(data.get("confidence", 0.0)),
            rationale=str(data.get("rationale", "")),
            recommendations=list(data.get("recommendations") or []),
            requires_review=bool(data.get("requires_review", False)),
            evidence_reviewed=list(data.get("evidence_reviewed") or []),
        )


# ---------------------------------------------------------------------------
# Regulatory change analysis
# ---------------------------------------------------------------------------


@dataclass
class ExtractedRequirement:
    """A structured requirement produced by change analysis."""

    id: str
    title: str
    text: str
    category: str = "organizational"
    control_type: str = "preventive"
    domain: str = "General"
    guidance: str | None = None
    difficulty: str = "medium"
    evidence_types: list[str] = field(default_factory=lambda: ["policy_document"])
    criteria: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedRequirement":
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            text=str(data.get("text", "")),
            category=str(data.get("category") or "organizational"),
            control_type=str(data.get("control_type") or data.get("type") or "preventive"),
            domain=str(data.get("domain") or "General"),
            guidance=data.get("guidance"),
            difficulty=str(data.get("difficulty") or "medium"),
            evidence_types=list(data.get("evidence_types") or ["policy_document"]),
            criteria=list(data.get("criteria") or []),
        )


@dataclass
class ChangeAnalysis:
    """Analysis of a detected regulatory change."""

    update_type: str = "guidance"
    impact_level: str = "medium"
    title: str | None = None
    summary: str | None = None
    framework_id: str | None = None
    recommended_actions: list[str] = field(default_factory=list)
    extracted_requirements: list[ExtractedRequirement] = field(default_factory=list)
    affected_controls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ChangeAnalysis | None":
        if not data:
            return None
        return cls(
            update_type=str(data.get("update_type") or "guidance"),
            impact_level=str(data.get("impact_level") or "medium"),
            title=data.get("title"),
            summary=data.get("summary"),
            framework_id=data.get("framework_id"),
            recommended_actions=list(data.get("recommended_actions") or []),
            extracted_requirements=[
                ExtractedRequirement.from_dict(item) for item in data.get("extracted_requirements") or []
            ],
            affected_controls=list(data.get("affected_controls") or []),
        )


@dataclass
class DetectedChange:
    """A content change observed at a regulatory source."""

    source_id: uuid.UUID
    source_name: str
    url: str
    change_type: str
    detected_at: datetime
    content_hash: str
    previous_hash: str | None
    snippet: str


# ---------------------------------------------------------------------------
# Control generation
# ---------------------------------------------------------------------------


@dataclass
class GenerationContext:
    """Provenance recorded alongside generated controls."""

    source_document: str | None = None
    source_url: str | None = None
    source_update_id: str | None = None
    jurisdiction: str | None = None
    effective_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GenerationContext":
        data = data or {}
        return cls(
            source_document=data.get("source_document"),
            source_url=data.get("source_url"),
            source_update_id=data.get("source_update_id"),
            jurisdiction=data.get("jurisdiction"),
            effective_date=data.get("effective_date"),
        )


@dataclass(frozen=True)
class RequirementTraits:
    """Classification of one obligation statement."""

    category: str
    control_type: str
    difficulty: str
    evidence_types: tuple[str, ...]


@dataclass
class GenerationError:
    """A problem hit while generating controls."""

    message: str
    section: str | None = None
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------


@dataclass
class SuggestionOutcome:
    """Result of accepting or rejecting a framework suggestion."""

    success: bool
    message: str
    framework_id: str | None = None


@dataclass
class GenerationResult:
    """Outcome of one control generation call.

    Attributes:
        status: success, partial (some errors or degraded I/O) or failed.
        controls: Stored GeneratedControl rows.
    """

    run_id: uuid.UUID
    framework_id: str
    status: str
    controls: list[Any] = field(default_factory=list)
    errors: list[GenerationError] = field(default_factory=list)
    processing_time_ms: int = 0


@dataclass
class ImplementationOutcome:
    """Per-batch result of implementing approved controls."""

    implemented: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ControlMapping:
    """A persisted similarity mapping to a catalog control in another framework."""

    source_control_id: str
    target_control_id: str
    target_framework_id: str
    similarity: float
    mapping_type: str


@dataclass
class ControlPerformance:
    """Learning activity for one control."""

    control_id: str
    control_title: str
    feedback_count: int
    confidence_change: float


@dataclass
class LearningMetrics:
    """Aggregate learning-loop metrics, optionally scoped to one tenant."""

    total_feedback: int = 0
    applied_improvements: int = 0
    false_positive_rate: float = 0.0
    false_negative_rate: float = 0.0
    pending_review: int = 0
    average_confidence_gain: float = 0.0
    top_improved_controls: list[ControlPerformance] = field(default_factory=list)
