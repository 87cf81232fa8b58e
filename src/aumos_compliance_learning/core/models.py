"""SQLAlchemy ORM models for the compliance learning pipeline.

All models use the `cl_` table prefix. Tenant-scoped models carry tenant_id
via TenantMixin; catalog and monitoring models are process-wide.

Catalog:
- ComplianceFramework   — framework catalog entry (slug primary key)
- CatalogControl        — active control belonging to a catalog framework

Profiling:
- EntityProfile         — one business-characteristics record per tenant
- DiscoveredFramework   — candidate framework not yet in the catalog

Monitoring:
- RegulatorySource      — monitored regulatory endpoint with health counters
- RegulatoryUpdate      — one detected change and its review lifecycle

Generation:
- GeneratedControl      — candidate control synthesized from regulatory text
- ControlCrossReference — similarity mapping between two controls
- GenerationRun         — log of each generation request

Assessment:
- EvidenceItem          — uploaded compliance evidence
- AutoAssessmentSchedule — tenant+framework recurrence
- AutoAssessmentResult  — immutable outcome of one assessment run
- ControlAssessment     — per-control rating history

Learning:
- LearningFeedback      — human correction tied to a control and assessment
- LearningImprovement   — applied improvement, at most one per feedback row
- AssessmentPattern     — evidence pattern observed across assessments
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from aumos_compliance_learning.core.database import Base, TenantMixin, TimestampMixin, utcnow

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ComplianceFramework(Base):
    """A framework in the control catalog.

    Attributes:
        id: Stable slug, e.g. "gdpr" or "iso-27001".
        name: Display name.
        jurisdiction: Primary jurisdiction code.
        category: Framework category, e.g. data_protection.
        is_active: Whether the framework participates in discovery and mapping.
    """

    __tablename__ = "cl_frameworks"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False, default="global")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CatalogControl(TimestampMixin, Base):
    """A control in the catalog.

    Attributes:
        control_id: Human-readable identifier, unique across the catalog.
        framework_id: Owning framework slug.
        evidence_types: Evidence kinds that substantiate this control.
        assessment_criteria: Criteria an assessor checks.
        ai_assessment_prompt: Prompt refined by the learning loop.
    """

    __tablename__ = "cl_controls"

    control_id: Mapped[str] = mapped_column(String(150), nullable=False, unique=True, index=True)
    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="organizational")
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_types: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    assessment_criteria: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    ai_assessment_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)


# ---------------------------------------------------------------------------
# Profiling
# ---------------------------------------------------------------------------


class EntityProfile(TenantMixin, TimestampMixin, Base):
    """Business characteristics of a tenant used by every scoring stage.

    Exactly one row per tenant (unique tenant_id). Removed only when the
    tenant is offboarded.
    """

    __tablename__ = "cl_entity_profiles"
    __table_args__ = (UniqueConstraint("tenant_id", name="uq_cl_entity_profiles_tenant"),)

    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    sub_industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    jurisdictions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    entity_size: Mapped[str] = mapped_column(String(20), nullable=False, default="small")
    is_publicly_traded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processes_personal_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uses_ai_systems: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_critical_infrastructure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    data_categories: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    applicable_frameworks: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    annual_revenue: Mapped[float | None] = mapped_column(Float, nullable=True)
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_profile_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_framework_scan: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    profile_metadata: Mapped[dict] = mapped_column(  # type: ignore[type-arg]
        "metadata", JSONB, nullable=False, default=dict
    )


class DiscoveredFramework(TimestampMixin, Base):
    """A candidate framework that is not yet part of the catalog.

    Status moves forward through discovered → analyzing → generating → active.
    `rejected` can be entered from any state except `active` and is terminal.
    """

    __tablename__ = "cl_discovered_frameworks"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    official_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    discovery_source: Mapped[str] = mapped_column(String(255), nullable=False, default="manual")
    relevance_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="discovered", index=True)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_controls: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generated_framework_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    framework_metadata: Mapped[dict] = mapped_column(  # type: ignore[type-arg]
        "metadata", JSONB, nullable=False, default=dict
    )


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class RegulatorySource(TimestampMixin, Base):
    """A monitored regulatory endpoint.

    Attributes:
        check_frequency: hourly | daily | weekly.
        last_content_hash: SHA-256 of the last successfully fetched content.
        consecutive_failures: Fetch failures since the last success.
        status: active | paused | error | retired. Becomes error once
            consecutive_failures reaches the failure threshold.
    """

    __tablename__ = "cl_regulatory_sources"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False, default="regulator_website")
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    related_frameworks: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    check_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="daily")
    content_selectors: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_change_detected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)


class RegulatoryUpdate(TimestampMixin, Base):
    """One detected regulatory change and its review lifecycle.

    Status: pending → analyzed → implementing → implemented, or rejected / archived.
    controls_implemented is True only when status is implemented.
    """

    __tablename__ = "cl_regulatory_updates"

    source_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    framework_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    update_type: Mapped[str] = mapped_column(String(30), nullable=False, default="guidance")
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    original_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    impact_level: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)  # type: ignore[type-arg]
    recommended_actions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    generated_controls: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    controls_implemented: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    notified_tenants: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class GeneratedControl(TimestampMixin, Base):
    """Candidate control synthesized from regulatory text.

    Status: generated → pending_review → approved | rejected → implemented.
    A control is implemented only from approved. Confidence is written once.
    """

    __tablename__ = "cl_generated_controls"

    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    control_type: Mapped[str] = mapped_column(String(30), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requirement: Mapped[str] = mapped_column(Text, nullable=False)
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    implementation_difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    evidence_types: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    assessment_criteria: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    ai_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_document: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    source_section: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="generated", index=True)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    related_controls: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    generation_context: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)  # type: ignore[type-arg]


class ControlCrossReference(TimestampMixin, Base):
    """Similarity mapping between a generated control and a catalog control."""

    __tablename__ = "cl_control_cross_references"
    __table_args__ = (
        UniqueConstraint("source_control_id", "target_control_id", name="uq_cl_cross_reference_pair"),
    )

    source_control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    target_control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    target_framework_id: Mapped[str] = mapped_column(String(100), nullable=False)
    relationship_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mapping_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    mapped_by: Mapped[str] = mapped_column(String(20), nullable=False, default="auto")


class GenerationRun(TimestampMixin, Base):
    """Request log entry for one generation call."""

    __tablename__ = "cl_generation_runs"

    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_reference: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    controls_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class EvidenceItem(TenantMixin, TimestampMixin, Base):
    """A piece of compliance evidence uploaded by a tenant."""

    __tablename__ = "cl_evidence"

    evidence_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AutoAssessmentSchedule(TenantMixin, TimestampMixin, Base):
    """Recurring automated assessment of one framework for one tenant."""

    __tablename__ = "cl_assessment_schedules"

    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    assessment_config: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)  # type: ignore[type-arg]
    notification_config: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)  # type: ignore[type-arg]
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)


class AutoAssessmentResult(TenantMixin, TimestampMixin, Base):
    """Outcome of one assessment run. Rows are insert-only."""

    __tablename__ = "cl_assessment_results"

    schedule_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    framework_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_controls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assessed_controls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compliant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    partially_compliant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    non_compliant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    not_applicable_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    findings: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)  # type: ignore[type-arg]
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class ControlAssessment(TenantMixin, TimestampMixin, Base):
    """Rating history for one control, one row per assessment run."""

    __tablename__ = "cl_control_assessments"

    control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    assessment_result_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    rating: Mapped[str] = mapped_column(String(30), nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------


class LearningFeedback(TenantMixin, TimestampMixin, Base):
    """A human correction tied to a control and an assessment.

    applied_at is only ever set together with, or after, processed_at.
    """

    __tablename__ = "cl_learning_feedback"

    assessment_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    original_rating: Mapped[str | None] = mapped_column(String(30), nullable=True)
    corrected_rating: Mapped[str | None] = mapped_column(String(30), nullable=True)
    original_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    improvement_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LearningImprovement(TenantMixin, TimestampMixin, Base):
    """An improvement applied from one feedback row. At most one per feedback."""

    __tablename__ = "cl_learning_improvements"
    __table_args__ = (UniqueConstraint("feedback_id", name="uq_cl_learning_improvements_feedback"),)

    feedback_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    suggested_action: Mapped[str] = mapped_column(Text, nullable=False)
    original_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    improved_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)


class AssessmentPattern(TenantMixin, TimestampMixin, Base):
    """Evidence pattern observed for a control across assessment runs."""

    __tablename__ = "cl_assessment_patterns"
    __table_args__ = (
        UniqueConstraint("tenant_id", "control_id", "pattern", name="uq_cl_assessment_patterns_key"),
    )

    control_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    pattern_type: Mapped[str] = mapped_column(String(40), nullable=False, default="evidence")
    pattern: Mapped[str] = mapped_column(String(255), nullable=False)
    rating: Mapped[str] = mapped_column(String(30), nullable=False)
    occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
