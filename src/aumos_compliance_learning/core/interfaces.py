"""Abstract interfaces (Protocol classes) for the compliance learning pipeline.

Services depend on these protocols, never on concrete adapters, so every
stage can be tested with mock repositories and collaborators.

Repositories:
- IEntityProfileRepository
- IFrameworkCatalogRepository
- IDiscoveredFrameworkRepository
- IRegulatorySourceRepository
- IRegulatoryUpdateRepository
- IGeneratedControlRepository
- IControlCrossReferenceRepository
- IGenerationRunRepository
- IEvidenceRepository
- IScheduleRepository
- IAssessmentResultRepository
- IControlAssessmentRepository
- IFeedbackRepository
- IImprovementRepository
- IPatternRepository

Collaborators and strategies:
- IContentFetcher     — fetches regulatory source and document content
- IChangeAnalyzer     — optional analysis of detected changes
- TextClassifier      — obligation extraction and classification
- SimilarityScorer    — control-to-control similarity
"""

import uuid
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from aumos_compliance_learning.core.domain import ChangeAnalysis, RequirementTraits
from aumos_compliance_learning.core.models import (
    AutoAssessmentResult,
    AutoAssessmentSchedule,
    CatalogControl,
    ComplianceFramework,
    ControlAssessment,
    ControlCrossReference,
    DiscoveredFramework,
    EntityProfile,
    EvidenceItem,
    GeneratedControl,
    LearningFeedback,
    LearningImprovement,
    RegulatorySource,
    RegulatoryUpdate,
)

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class TextClassifier(Protocol):
    """Finds obligation statements and infers control traits."""

    def extract_requirements(self, text: str) -> list[str]:
        """Return de-duplicated obligation sentences found in the text."""
        ...

    def classify(self, requirement: str) -> RequirementTraits:
        """Infer category, control type, difficulty and evidence kinds."""
        ...


class SimilarityScorer(Protocol):
    """Scores how similar two controls are."""

    def score(self, candidate: Any, existing: Any) -> float:
        """Return a similarity in [0, 1]."""
        ...


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class IContentFetcher(Protocol):
    """Fetches regulatory content over the network."""

    async def fetch(self, url: str) -> str:
        """Fetch text content from a URL.

        Raises:
            ExternalDependencyError: On any transport or HTTP failure.
        """
        ...


class IChangeAnalyzer(Protocol):
    """Analyses a detected regulatory change."""

    async def analyze_change(
        self,
        content: str,
        source_name: str,
        jurisdiction: str,
        category: str,
    ) -> ChangeAnalysis:
        """Classify a change and extract requirements.

        Raises:
            ExternalDependencyError: When the analysis service fails.
        """
        ...


class ISavepointCapable(Protocol):
    """Repository able to open a nested transaction for per-item isolation."""

    def savepoint(self) -> AbstractAsyncContextManager[Any]:
        """Return an async context manager wrapping a SAVEPOINT."""
        ...


# ---------------------------------------------------------------------------
# Profiling
# ---------------------------------------------------------------------------


class IEntityProfileRepository(Protocol):
    """Persistence for EntityProfile (one per tenant)."""

    async def get_by_tenant(self, tenant_id: uuid.UUID) -> EntityProfile | None: ...

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> EntityProfile: ...

    async def update(self, profile: EntityProfile, fields: dict[str, Any]) -> EntityProfile: ...

    async def set_applicable_frameworks(
        self,
        profile: EntityProfile,
        framework_ids: list[str],
        scanned_at: datetime,
    ) -> EntityProfile: ...

    async def delete(self, tenant_id: uuid.UUID) -> bool: ...

    async def list_tenants_with_frameworks(self, framework_ids: list[str]) -> list[uuid.UUID]:
        """Tenants whose applicable frameworks intersect ``framework_ids``."""
        ...


class IFrameworkCatalogRepository(Protocol):
    """Read access to the framework and control catalog plus control upserts."""

    async def get_framework(self, framework_id: str) -> ComplianceFramework | None: ...

    async def list_active_frameworks(self) -> list[ComplianceFramework]: ...

    async def list_active_controls(
        self,
        framework_id: str,
        control_ids: list[str] | None = None,
    ) -> list[CatalogControl]: ...

    async def list_active_controls_outside(self, framework_id: str) -> list[CatalogControl]:
        """Active controls that belong to any framework except ``framework_id``."""
        ...

    async def get_control(self, control_id: str) -> CatalogControl | None: ...

    async def existing_control_ids(self, control_ids: list[str]) -> set[str]: ...

    async def add_control_from_generated(self, control: GeneratedControl) -> CatalogControl: ...

    async def update_control_prompt(self, control: CatalogControl, prompt: str) -> CatalogControl: ...

    async def control_titles(self, control_ids: list[str]) -> dict[str, str]: ...


class IDiscoveredFrameworkRepository(Protocol):
    """Persistence for DiscoveredFramework."""

    async def create(self, fields: dict[str, Any]) -> DiscoveredFramework: ...

    async def get(self, framework_id: uuid.UUID) -> DiscoveredFramework | None: ...

    async def list_all(
        self,
        status: str | None = None,
        jurisdiction: str | None = None,
        min_relevance: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DiscoveredFramework], int]: ...

    async def list_open_candidates(self) -> list[DiscoveredFramework]:
        """Frameworks in discovered or analyzing status, most relevant first."""
        ...

    async def update_status(
        self,
        framework: DiscoveredFramework,
        status: str,
        generated_framework_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DiscoveredFramework: ...


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class IRegulatorySourceRepository(Protocol):
    """Persistence for RegulatorySource, including health bookkeeping."""

    async def create(self, fields: dict[str, Any]) -> RegulatorySource: ...

    async def get(self, source_id: uuid.UUID) -> RegulatorySource | None: ...

    async def list_all(
        self,
        is_active: bool | None = None,
        jurisdiction: str | None = None,
        category: str | None = None,
    ) -> list[RegulatorySource]: ...

    async def list_due(self, now: datetime, limit: int) -> list[RegulatorySource]:
        """Active sources never checked or checked before their frequency window."""
        ...

    async def update_status(self, source: RegulatorySource, status: str) -> RegulatorySource: ...

    async def delete(self, source_id: uuid.UUID) -> bool: ...

    async def record_success(
        self,
        source_id: uuid.UUID,
        content_hash: str,
        checked_at: datetime,
        changed: bool,
    ) -> None: ...

    async def record_failure(self, source_id: uuid.UUID, checked_at: datetime, threshold: int) -> tuple[int, str]:
        """Increment the failure counter in one conditional UPDATE.

        Returns:
            Tuple of (new failure count, resulting status).
        """
        ...


class IRegulatoryUpdateRepository(ISavepointCapable, Protocol):
    """Persistence for RegulatoryUpdate."""

    async def create(self, fields: dict[str, Any]) -> RegulatoryUpdate: ...

    async def get(self, update_id: uuid.UUID) -> RegulatoryUpdate | None: ...

    async def list_all(
        self,
        source_id: uuid.UUID | None = None,
        framework_id: str | None = None,
        status: str | None = None,
        update_type: str | None = None,
        impact_level: str | None = None,
        limit: int = 100,
    ) -> list[RegulatoryUpdate]: ...

    async def list_pending(self, limit: int = 50) -> list[RegulatoryUpdate]:
        """Pending or analyzed updates, most severe impact first."""
        ...

    async def save(self, update: RegulatoryUpdate) -> RegulatoryUpdate: ...


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class IGeneratedControlRepository(Protocol):
    """Persistence for GeneratedControl."""

    async def create_many(self, candidates: list[Any]) -> list[GeneratedControl]: ...

    async def get(self, control_id: uuid.UUID) -> GeneratedControl | None: ...

    async def get_many(self, control_ids: list[uuid.UUID]) -> list[GeneratedControl]: ...

    async def list_all(
        self,
        framework_id: str | None = None,
        status: str | None = None,
        min_confidence: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[GeneratedControl], int]: ...

    async def list_pending_review(self, limit: int = 20) -> list[GeneratedControl]: ...

    async def save(self, control: GeneratedControl) -> GeneratedControl: ...


class IControlCrossReferenceRepository(Protocol):
    """Persistence for ControlCrossReference."""

    async def upsert(
        self,
        source_control_id: str,
        target_control_id: str,
        target_framework_id: str,
        relationship_type: str,
        mapping_confidence: float,
    ) -> ControlCrossReference: ...


class IGenerationRunRepository(Protocol):
    """Request log of generation calls."""

    async def log(
        self,
        run_id: uuid.UUID,
        framework_id: str,
        source_type: str,
        source_reference: str | None,
        status: str,
        controls_generated: int,
        errors: list[dict[str, Any]],
        processing_time_ms: int,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class IEvidenceRepository(Protocol):
    """Read access to tenant evidence."""

    async def list_recent_by_types(
        self,
        tenant_id: uuid.UUID,
        evidence_types: list[str],
        limit: int,
    ) -> list[EvidenceItem]: ...


class IScheduleRepository(ISavepointCapable, Protocol):
    """Persistence for AutoAssessmentSchedule."""

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> AutoAssessmentSchedule: ...

    async def get(
        self,
        schedule_id: uuid.UUID,
        tenant_id: uuid.UUID | None = None,
    ) -> AutoAssessmentSchedule | None: ...

    async def list_all(
        self,
        tenant_id: uuid.UUID,
        framework_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[AutoAssessmentSchedule]: ...

    async def list_due(self, now: datetime, limit: int) -> list[AutoAssessmentSchedule]: ...

    async def save(self, schedule: AutoAssessmentSchedule) -> AutoAssessmentSchedule: ...

    async def delete(self, schedule_id: uuid.UUID, tenant_id: uuid.UUID) -> bool: ...

    async def record_run(
        self,
        schedule_id: uuid.UUID,
        ran_at: datetime,
        status: str,
        next_run_at: datetime,
    ) -> None:
        """Advance next_run_at and record the run status in one UPDATE."""
        ...


class IAssessmentResultRepository(Protocol):
    """Insert-only persistence for AutoAssessmentResult."""

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> AutoAssessmentResult: ...

    async def get(self, result_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> AutoAssessmentResult | None: ...

    async def list_all(
        self,
        tenant_id: uuid.UUID,
        framework_id: str | None = None,
        limit: int = 20,
    ) -> list[AutoAssessmentResult]: ...


class IControlAssessmentRepository(Protocol):
    """Per-control rating history."""

    async def latest(self, tenant_id: uuid.UUID, control_id: str) -> ControlAssessment | None: ...

    async def get(self, assessment_id: uuid.UUID, tenant_id: uuid.UUID) -> ControlAssessment | None: ...

    async def create_many(self, tenant_id: uuid.UUID, rows: list[dict[str, Any]]) -> None: ...

    async def count_review_flags(self, tenant_id: uuid.UUID, control_id: str) -> int: ...


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------


class IFeedbackRepository(ISavepointCapable, Protocol):
    """Persistence for LearningFeedback."""

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> LearningFeedback: ...

    async def list_unprocessed(self, limit: int) -> list[LearningFeedback]:
        """Oldest unprocessed feedback first."""
        ...

    async def mark_processed(self, feedback: LearningFeedback, processed_at: datetime, applied: bool) -> None: ...

    async def has_pending_suggestion(self, tenant_id: uuid.UUID, control_id: str) -> bool: ...

    async def count(
        self,
        tenant_id: uuid.UUID | None = None,
        event_type: str | None = None,
        applied: bool | None = None,
        unprocessed: bool | None = None,
    ) -> int: ...

    async def top_applied_controls(self, tenant_id: uuid.UUID | None, limit: int) -> list[tuple[str, int]]: ...


class IImprovementRepository(Protocol):
    """Applied improvements, at most one per feedback row."""

    async def exists_for_feedback(self, feedback_id: uuid.UUID) -> bool: ...

    async def create(self, fields: dict[str, Any]) -> LearningImprovement: ...

    async def count_for_control(self, control_id: str) -> int: ...


class IPatternRepository(Protocol):
    """Evidence patterns observed across assessments."""

    async def record(
        self,
        tenant_id: uuid.UUID,
        control_id: str,
        pattern: str,
        rating: str,
        seen_at: datetime,
    ) -> None: ...
