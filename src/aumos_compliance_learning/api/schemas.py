"""Pydantic request and response schemas for the compliance learning API.

All API inputs and outputs use Pydantic models — never raw dicts.
Response models read ORM rows and service dataclasses via from_attributes.

Resources:
- EntityProfile — profile CRUD and framework discovery
- DiscoveredFramework — candidate frameworks outside the catalog
- RegulatorySource / RegulatoryUpdate — regulatory monitoring
- GeneratedControl — generation, validation and review
- AutoAssessmentSchedule / AutoAssessmentResult — scheduled assessment
- LearningFeedback — human feedback and learning metrics
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aumos_compliance_learning.core.domain import (
    DATA_CATEGORIES,
    INDUSTRIES,
    JURISDICTIONS,
    AssessmentFrequency,
    CheckFrequency,
    ComplianceRating,
    EntitySize,
    FeedbackEventType,
)


class _OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


def _check_vocabulary(values: list[str], allowed: tuple[str, ...], name: str) -> list[str]:
    unknown = [value for value in values if value not in allowed]
    if unknown:
        raise ValueError(f"Unknown {name}: {', '.join(unknown)}")
    return values


# ---------------------------------------------------------------------------
# EntityProfile schemas
# ---------------------------------------------------------------------------


class EntityProfileFields(BaseModel):
    """Profile attributes shared by create and update."""

    entity_name: str | None = Field(default=None, min_length=1, max_length=255)
    industry: str | None = Field(default=None, description="Industry vocabulary value, e.g. financial_services")
    sub_industry: str | None = None
    jurisdictions: list[str] | None = Field(default=None, description="Jurisdiction codes: eu, us, uk, ...")
    entity_size: EntitySize | None = None
    is_publicly_traded: bool | None = None
    processes_personal_data: bool | None = None
    uses_ai_systems: bool | None = None
    is_critical_infrastructure: bool | None = None
    data_categories: list[str] | None = None
    annual_revenue: float | None = Field(default=None, ge=0)
    employee_count: int | None = Field(default=None, ge=0)

    @field_validator("industry")
    @classmethod
    def _known_industry(cls, value: str | None) -> str | None:
        if value is not None:
            _check_vocabulary([value], INDUSTRIES, "industry")
        return value

    @field_validator("jurisdictions")
    @classmethod
    def _known_jurisdictions(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _check_vocabulary(value, JURISDICTIONS, "jurisdiction")

    @field_validator("data_categories")
    @classmethod
    def _known_data_categories(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _check_vocabulary(value, DATA_CATEGORIES, "data category")


class EntityProfileCreateRequest(EntityProfileFields):
    """Request body for creating the tenant's entity profile."""

    entity_name: str = Field(min_length=1, max_length=255)
    industry: str = Field(description="Industry vocabulary value, e.g. financial_services")
    jurisdictions: list[str] = Field(default_factory=list)
    entity_size: EntitySize = "small"
    data_categories: list[str] = Field(default_factory=list)


class EntityProfileUpdateRequest(EntityProfileFields):
    """Partial update; omitted fields are left unchanged."""


class EntityProfileResponse(_OrmModel):
    """Response schema for an entity profile."""

    id: uuid.UUID
    tenant_id: uuid.UUID
    entity_name: str
    industry: str
    sub_industry: str | None
    jurisdictions: list[str]
    entity_size: str
    is_publicly_traded: bool
    processes_personal_data: bool
    uses_ai_systems: bool
    is_critical_infrastructure: bool
    data_categories: list[str]
    applicable_frameworks: list[str]
    annual_revenue: float | None
    employee_count: int | None
    last_profile_update: datetime | None
    last_framework_scan: datetime | None
    created_at: datetime
    updated_at: datetime


class FrameworkSuggestionResponse(_OrmModel):
    """One suggested framework with the reasons it applies."""

    framework_id: str
    framework_name: str
    jurisdiction: str
    category: str
    relevance_score: float
    reasons: list[str]
    is_new: bool = Field(description="True for discovered frameworks not yet in the catalog")
    priority: str
    estimated_controls: int | None = None


class MatchingFactorResponse(_OrmModel):
    factor: str
    weight: float
    matched: bool
    details: str


class RelevanceAssessmentResponse(_OrmModel):
    """Per-factor relevance of one framework for the tenant."""

    framework_name: str
    relevance_score: float
    matching_factors: list[MatchingFactorResponse]
    missing_factors: list[str]
    overall_rationale: str
    recommended_priority: str


class SuggestionDecisionRequest(BaseModel):
    reason: str | None = Field(default=None, description="Optional rejection reason")


class SuggestionOutcomeResponse(_OrmModel):
    success: bool
    message: str
    framework_id: str | None = None


# ---------------------------------------------------------------------------
# DiscoveredFramework schemas
# ---------------------------------------------------------------------------


class DiscoveredFrameworkCreateRequest(BaseModel):
    """Request body for recording a candidate framework."""

    name: str = Field(min_length=1, max_length=255)
    jurisdiction: str
    category: str = Field(min_length=1, max_length=100)
    official_url: str | None = None
    discovery_source: str = "manual"
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    ai_summary: str | None = None
    estimated_controls: int | None = Field(default=None, ge=0)


class DiscoveredFrameworkStatusRequest(BaseModel):
    status: str = Field(description="discovered | analyzing | generating | active | rejected")
    generated_framework_id: str | None = None


class DiscoveredFrameworkResponse(_OrmModel):
    id: uuid.UUID
    name: str
    jurisdiction: str
    category: str
    official_url: str | None
    discovery_source: str
    relevance_score: float
    status: str
    ai_summary: str | None
    estimated_controls: int | None
    generated_framework_id: str | None
    created_at: datetime
    updated_at: datetime


class DiscoveredFrameworkListResponse(BaseModel):
    items: list[DiscoveredFrameworkResponse]
    total: int


# ---------------------------------------------------------------------------
# Regulatory monitoring schemas
# ---------------------------------------------------------------------------


class RegulatorySourceCreateRequest(BaseModel):
    """Request body for registering a regulatory source."""

    name: str = Field(min_length=1, max_length=255)
    source_type: str = "regulator_website"
    url: str = Field(min_length=1, max_length=1000)
    jurisdiction: str
    category: str
    related_frameworks: list[str] = Field(default_factory=list)
    check_frequency: CheckFrequency = "daily"
    content_selectors: list[str] = Field(
        default_factory=list,
        description="CSS selectors narrowing the monitored content; stored for the fetcher",
    )


class RegulatorySourceStatusRequest(BaseModel):
    status: str = Field(description="active | paused | error | retired")


class RegulatorySourceResponse(_OrmModel):
    id: uuid.UUID
    name: str
    source_type: str
    url: str
    jurisdiction: str
    category: str
    related_frameworks: list[str]
    check_frequency: str
    last_checked_at: datetime | None
    last_change_detected_at: datetime | None
    consecutive_failures: int
    is_active: bool
    status: str


class DetectedChangeResponse(_OrmModel):
    source_id: uuid.UUID
    source_name: str
    url: str
    change_type: str
    detected_at: datetime
    content_hash: str
    previous_hash: str | None
    snippet: str


class SourceCheckResponse(BaseModel):
    changes: list[DetectedChangeResponse]
    updates: list["RegulatoryUpdateResponse"]


class ScheduledChecksResponse(BaseModel):
    checked: int
    changes_detected: int
    errors: int


class RegulatoryUpdateResponse(_OrmModel):
    id: uuid.UUID
    source_id: uuid.UUID | None
    framework_id: str | None
    update_type: str
    title: str
    summary: str
    original_url: str | None
    detected_at: datetime
    impact_level: str
    analysis: dict[str, Any] | None
    recommended_actions: list[str]
    generated_controls: list[str]
    controls_implemented: bool
    status: str
    reviewed_by: uuid.UUID | None
    reviewed_at: datetime | None
    review_notes: str | None
    notified_tenants: list[str]


class RegulatoryUpdateStatusRequest(BaseModel):
    status: str = Field(description="pending | analyzed | implementing | implemented | rejected | archived")
    review_notes: str | None = None


class MarkImplementedRequest(BaseModel):
    control_ids: list[str] = Field(default_factory=list, description="Catalog control ids implementing the update")


class NotifiedTenantsResponse(BaseModel):
    tenant_ids: list[uuid.UUID]


# ---------------------------------------------------------------------------
# Control generation schemas
# ---------------------------------------------------------------------------


class GenerationContextRequest(BaseModel):
    source_document: str | None = None
    jurisdiction: str | None = None
    effective_date: str | None = None


class GenerateFromTextRequest(BaseModel):
    framework_id: str = Field(min_length=1, max_length=100)
    framework_name: str = Field(min_length=1, max_length=255)
    text: str
    context: GenerationContextRequest | None = None


class GenerateFromUrlRequest(BaseModel):
    framework_id: str = Field(min_length=1, max_length=100)
    framework_name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1, max_length=1000)
    context: GenerationContextRequest | None = None


class GeneratedControlResponse(_OrmModel):
    id: uuid.UUID
    framework_id: str
    control_id: str
    title: str
    description: str
    category: str
    control_type: str
    domain: str | None
    requirement: str
    guidance: str | None
    implementation_difficulty: str
    evidence_types: list[str]
    assessment_criteria: list[str]
    ai_prompt: str | None
    source_document: str | None
    source_section: str | None
    status: str
    reviewed_by: uuid.UUID | None
    reviewed_at: datetime | None
    review_notes: str | None
    confidence: float
    related_controls: list[str]
    generation_context: dict[str, Any]
    created_at: datetime


class GeneratedControlListResponse(BaseModel):
    items: list[GeneratedControlResponse]
    total: int


class GenerationErrorResponse(_OrmModel):
    message: str
    section: str | None
    recoverable: bool


class GenerationResultResponse(_OrmModel):
    run_id: uuid.UUID
    framework_id: str
    status: str = Field(description="success | partial | failed")
    controls: list[GeneratedControlResponse]
    errors: list[GenerationErrorResponse]
    processing_time_ms: int


class ControlIdsRequest(BaseModel):
    control_ids: list[uuid.UUID] = Field(min_length=1)


class RefineControlsRequest(ControlIdsRequest):
    feedback: str = Field(min_length=1)


class ControlRefinementResponse(_OrmModel):
    control_id: uuid.UUID
    field: str
    original_value: str
    new_value: str
    reason: str


class ValidationIssueResponse(_OrmModel):
    control_id: str
    field: str
    message: str
    severity: str


class ValidationResultResponse(_OrmModel):
    is_valid: bool
    errors: list[ValidationIssueResponse]
    warnings: list[ValidationIssueResponse]
    suggestions: list[str]


class ControlReviewRequest(BaseModel):
    review_notes: str | None = None


class ImplementationOutcomeResponse(_OrmModel):
    implemented: list[str]
    failed: list[str]
    errors: list[str]


class ControlMappingResponse(_OrmModel):
    source_control_id: str
    target_control_id: str
    target_framework_id: str
    similarity: float
    mapping_type: str


# ---------------------------------------------------------------------------
# Assessment schemas
# ---------------------------------------------------------------------------


class AssessmentConfigRequest(BaseModel):
    include_evidence: bool = True
    control_subset: list[str] | None = None
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class NotificationConfigRequest(BaseModel):
    notify_on_completion: bool = False
    notify_on_failure: bool = True
    notify_on_non_compliance: bool = True
    email_recipients: list[str] = Field(default_factory=list)
    webhook_url: str | None = None


class ScheduleCreateRequest(BaseModel):
    """Request body for creating an assessment schedule."""

    framework_id: str = Field(min_length=1, max_length=100)
    frequency: AssessmentFrequency
    assessment_config: AssessmentConfigRequest | None = None
    notification_config: NotificationConfigRequest | None = None
    start_at: datetime | None = Field(default=None, description="First run is one period after this instant")


class ScheduleFrequencyRequest(BaseModel):
    frequency: AssessmentFrequency


class ScheduleActiveRequest(BaseModel):
    is_active: bool


class ScheduleResponse(_OrmModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    framework_id: str
    frequency: str
    next_run_at: datetime
    last_run_at: datetime | None
    last_run_status: str | None
    is_active: bool
    assessment_config: dict[str, Any]
    notification_config: dict[str, Any]
    created_at: datetime


class RunAssessmentRequest(BaseModel):
    assessment_config: AssessmentConfigRequest | None = None


class AssessmentResultResponse(_OrmModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    schedule_id: uuid.UUID | None
    framework_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None
    total_controls: int
    assessed_controls: int
    compliant_count: int
    partially_compliant_count: int
    non_compliant_count: int
    not_applicable_count: int
    overall_score: float
    findings: list[dict[str, Any]]
    error_message: str | None


class ScheduledAssessmentsResponse(BaseModel):
    executed: int
    succeeded: int
    failed: int


# ---------------------------------------------------------------------------
# Learning schemas
# ---------------------------------------------------------------------------


class FeedbackCreateRequest(BaseModel):
    """Request body for submitting feedback on an assessment."""

    control_id: str = Field(min_length=1, max_length=150)
    event_type: FeedbackEventType
    assessment_id: uuid.UUID | None = None
    original_rating: ComplianceRating | None = None
    corrected_rating: ComplianceRating | None = None
    feedback: str | None = None
    improvement_suggestion: str | None = None


class FeedbackResponse(_OrmModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    assessment_id: uuid.UUID | None
    control_id: str
    event_type: str
    original_rating: str | None
    corrected_rating: str | None
    original_rationale: str | None
    feedback: str | None
    improvement_suggestion: str | None
    processed_at: datetime | None
    applied_at: datetime | None
    created_at: datetime


class FeedbackProcessingResponse(BaseModel):
    processed: int
    applied: int


class LearnFromAssessmentResponse(BaseModel):
    patterns: int
    improvements: int


class ControlPerformanceResponse(_OrmModel):
    control_id: str
    control_title: str
    feedback_count: int
    confidence_change: float


class LearningMetricsResponse(_OrmModel):
    total_feedback: int
    applied_improvements: int
    false_positive_rate: float
    false_negative_rate: float
    pending_review: int
    average_confidence_gain: float
    top_improved_controls: list[ControlPerformanceResponse]


class ImprovePromptRequest(BaseModel):
    feedback: str = Field(min_length=1)
    suggestion: str | None = None
    event_type: FeedbackEventType | None = None


class ImprovePromptResponse(BaseModel):
    control_id: str
    prompt: str


SourceCheckResponse.model_rebuild()
