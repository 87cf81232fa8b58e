"""Test fixtures for aumos-compliance-learning.

Provides:
- tenant_id / actor_id / mock_tenant: deterministic tenant context
- make_fake_*: ORM-shaped MagicMock factories for every persisted resource
- make_savepoint_repo: AsyncMock repository whose savepoint() is a no-op context
"""

import contextlib
import uuid
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from aumos_compliance_learning.core.tenancy import TenantContext


@pytest.fixture()
def tenant_id() -> uuid.UUID:
    """Return a fixed tenant UUID for consistent test assertions."""
    return uuid.UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture()
def actor_id() -> uuid.UUID:
    """Return a fixed actor UUID for consistent test assertions."""
    return uuid.UUID("00000000-0000-0000-0000-000000000002")


@pytest.fixture()
def mock_tenant(tenant_id: uuid.UUID, actor_id: uuid.UUID) -> TenantContext:
    """Tenant context with deterministic UUIDs."""
    return TenantContext(tenant_id=tenant_id, user_id=actor_id)


def make_savepoint_repo() -> AsyncMock:
    """AsyncMock repository whose savepoint() works as ``async with``."""
    repo = AsyncMock()
    repo.savepoint = MagicMock(side_effect=lambda: contextlib.nullcontext())
    return repo


def _apply(obj: MagicMock, overrides: dict[str, Any]) -> MagicMock:
    for key, value in overrides.items():
        setattr(obj, key, value)
    return obj


def make_fake_profile(tenant_id: uuid.UUID, **overrides: Any) -> MagicMock:
    """Create a fake EntityProfile ORM object.

    Defaults describe a medium EU technology company that processes
    personal data and uses AI systems.
    """
    now = datetime.now(UTC)
    profile = MagicMock()
    profile.id = uuid.uuid4()
    profile.tenant_id = tenant_id
    profile.entity_name = "Acme Analytics"
    profile.industry = "technology"
    profile.sub_industry = None
    profile.jurisdictions = ["eu"]
    profile.entity_size = "medium"
    profile.is_publicly_traded = False
    profile.processes_personal_data = True
    profile.uses_ai_systems = True
    profile.is_critical_infrastructure = False
    profile.data_categories = ["personal_data"]
    profile.applicable_frameworks = []
    profile.annual_revenue = None
    profile.employee_count = 250
    profile.last_profile_update = now
    profile.last_framework_scan = None
    profile.created_at = now
    profile.updated_at = now
    return _apply(profile, overrides)


def make_fake_framework(framework_id: str = "gdpr", name: str = "GDPR", **overrides: Any) -> MagicMock:
    """Create a fake catalog ComplianceFramework."""
    framework = MagicMock()
    framework.id = framework_id
    framework.name = name
    framework.jurisdiction = "eu"
    framework.category = "data_protection"
    framework.description = None
    framework.is_active = True
    return _apply(framework, overrides)


def make_fake_discovered(**overrides: Any) -> MagicMock:
    """Create a fake DiscoveredFramework in status discovered."""
    now = datetime.now(UTC)
    framework = MagicMock()
    framework.id = uuid.uuid4()
    framework.name = "EU Data Act"
    framework.jurisdiction = "eu"
    framework.category = "data_protection"
    framework.official_url = None
    framework.discovery_source = "manual"
    framework.relevance_score = 0.0
    framework.status = "discovered"
    framework.ai_summary = None
    framework.estimated_controls = 40
    framework.generated_framework_id = None
    framework.framework_metadata = {}
    framework.created_at = now
    framework.updated_at = now
    return _apply(framework, overrides)


def make_fake_source(**overrides: Any) -> MagicMock:
    """Create a fake active RegulatorySource with a stored baseline hash."""
    source = MagicMock()
    source.id = uuid.uuid4()
    source.name = "EDPB Guidelines"
    source.source_type = "regulator_website"
    source.url = "https://edpb.example/guidelines"
    source.jurisdiction = "eu"
    source.category = "data_protection"
    source.related_frameworks = ["gdpr"]
    source.check_frequency = "daily"
    source.content_selectors = []
    source.last_checked_at = None
    source.last_change_detected_at = None
    source.last_content_hash = "0" * 64
    source.consecutive_failures = 0
    source.is_active = True
    source.status = "active"
    return _apply(source, overrides)


def make_fake_update(**overrides: Any) -> MagicMock:
    """Create a fake RegulatoryUpdate in status pending."""
    regulatory_update = MagicMock()
    regulatory_update.id = uuid.uuid4()
    regulatory_update.source_id = None
    regulatory_update.framework_id = "gdpr"
    regulatory_update.update_type = "guidance"
    regulatory_update.title = "Content change detected at EDPB Guidelines"
    regulatory_update.summary = "Controllers shall document every transfer impact assessment."
    regulatory_update.original_url = "https://edpb.example/guidelines"
    regulatory_update.detected_at = datetime.now(UTC)
    regulatory_update.impact_level = "medium"
    regulatory_update.analysis = None
    regulatory_update.recommended_actions = []
    regulatory_update.generated_controls = []
    regulatory_update.controls_implemented = False
    regulatory_update.status = "pending"
    regulatory_update.reviewed_by = None
    regulatory_update.reviewed_at = None
    regulatory_update.review_notes = None
    regulatory_update.notified_tenants = []
    return _apply(regulatory_update, overrides)


def make_fake_generated_control(**overrides: Any) -> MagicMock:
    """Create a fake GeneratedControl that passes validation."""
    control = MagicMock()
    control.id = uuid.uuid4()
    control.framework_id = "eu-data-act"
    control.control_id = "EU-DATA-ACT-5-1"
    control.title = "Data holders shall make product data available"
    control.description = (
        "Data holders shall make product data available to users without undue delay and free of charge."
    )
    control.category = "technological"
    control.control_type = "preventive"
    control.domain = "Data access"
    control.requirement = "Article 5"
    control.guidance = None
    control.implementation_difficulty = "high"
    control.evidence_types = ["policy_document"]
    control.assessment_criteria = ["Verify implementation."]
    control.ai_prompt = "Assess data access."
    control.source_document = "EU Data Act"
    control.source_section = "Data access"
    control.status = "generated"
    control.reviewed_by = None
    control.reviewed_at = None
    control.review_notes = None
    control.confidence = 0.8
    control.related_controls = []
    control.generation_context = {}
    control.created_at = datetime.now(UTC)
    return _apply(control, overrides)


def make_fake_catalog_control(**overrides: Any) -> MagicMock:
    """Create a fake active CatalogControl."""
    control = MagicMock()
    control.id = uuid.uuid4()
    control.control_id = "GDPR-32-1"
    control.framework_id = "gdpr"
    control.title = "Security of processing"
    control.description = "Implement appropriate technical measures to ensure security of processing."
    control.category = "technological"
    control.domain = "Security"
    control.guidance = None
    control.evidence_types = ["policy_document"]
    control.assessment_criteria = []
    control.ai_assessment_prompt = "Assess security of processing."
    control.is_active = True
    return _apply(control, overrides)


def make_fake_evidence(verified: bool = True, file_name: str = "policy.pdf") -> MagicMock:
    """Create a fake EvidenceItem."""
    evidence = MagicMock()
    evidence.id = uuid.uuid4()
    evidence.evidence_type = "policy_document"
    evidence.file_name = file_name
    evidence.verified = verified
    evidence.uploaded_at = datetime.now(UTC)
    return evidence


def make_fake_schedule(tenant_id: uuid.UUID, **overrides: Any) -> MagicMock:
    """Create a fake active weekly AutoAssessmentSchedule."""
    now = datetime.now(UTC)
    schedule = MagicMock()
    schedule.id = uuid.uuid4()
    schedule.tenant_id = tenant_id
    schedule.framework_id = "gdpr"
    schedule.frequency = "weekly"
    schedule.next_run_at = now
    schedule.last_run_at = None
    schedule.last_run_status = None
    schedule.is_active = True
    schedule.assessment_config = {}
    schedule.notification_config = {}
    schedule.created_at = now
    return _apply(schedule, overrides)


def make_fake_result(tenant_id: uuid.UUID, **overrides: Any) -> MagicMock:
    """Create a fake completed AutoAssessmentResult."""
    now = datetime.now(UTC)
    result = MagicMock()
    result.id = uuid.uuid4()
    result.tenant_id = tenant_id
    result.schedule_id = None
    result.framework_id = "gdpr"
    result.status = "completed"
    result.started_at = now
    result.completed_at = now
    result.total_controls = 0
    result.assessed_controls = 0
    result.compliant_count = 0
    result.partially_compliant_count = 0
    result.non_compliant_count = 0
    result.not_applicable_count = 0
    result.overall_score = 0.0
    result.findings = []
    result.error_message = None
    return _apply(result, overrides)


def make_fake_feedback(tenant_id: uuid.UUID, **overrides: Any) -> MagicMock:
    """Create a fake unprocessed LearningFeedback row."""
    feedback = MagicMock()
    feedback.id = uuid.uuid4()
    feedback.tenant_id = tenant_id
    feedback.assessment_id = None
    feedback.control_id = "GDPR-32-1"
    feedback.event_type = "false_positive"
    feedback.original_rating = "compliant"
    feedback.corrected_rating = "non_compliant"
    feedback.original_rationale = "3 of 3 evidence items verified."
    feedback.feedback = "Evidence was outdated"
    feedback.improvement_suggestion = None
    feedback.processed_at = None
    feedback.applied_at = None
    feedback.created_at = datetime.now(UTC)
    return _apply(feedback, overrides)
