"""SQLAlchemy repositories for the compliance learning pipeline.

Each repository implements the corresponding Protocol from core/interfaces.py
and extends BaseRepository from core/database.py.

Repositories:
- EntityProfileRepository         — EntityProfile CRUD and tenant lookup by framework
- FrameworkCatalogRepository      — framework/control catalog reads and control upserts
- DiscoveredFrameworkRepository   — DiscoveredFramework CRUD
- RegulatorySourceRepository      — RegulatorySource CRUD and health bookkeeping
- RegulatoryUpdateRepository      — RegulatoryUpdate CRUD
- GeneratedControlRepository      — GeneratedControl CRUD
- ControlCrossReferenceRepository — cross-reference upserts
- GenerationRunRepository         — generation request log
- EvidenceRepository              — EvidenceItem reads
- ScheduleRepository              — AutoAssessmentSchedule CRUD and run bookkeeping
- AssessmentResultRepository      — insert-only AutoAssessmentResult
- ControlAssessmentRepository     — per-control rating history
- FeedbackRepository              — LearningFeedback CRUD and metric counts
- ImprovementRepository           — LearningImprovement inserts and counts
- PatternRepository               — AssessmentPattern upserts
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from aumos_compliance_learning.core.database import BaseRepository
from aumos_compliance_learning.core.domain import IMPACT_ORDER
from aumos_compliance_learning.core.models import (
    AssessmentPattern,
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
    GenerationRun,
    LearningFeedback,
    LearningImprovement,
    RegulatorySource,
    RegulatoryUpdate,
)
from aumos_compliance_learning.monitoring.change_detection import frequency_window
from aumos_compliance_learning.observability import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Profiling
# ---------------------------------------------------------------------------


class EntityProfileRepository(BaseRepository[EntityProfile]):
    """Repository for EntityProfile, one row per tenant.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, EntityProfile)

    async def get_by_tenant(self, tenant_id: uuid.UUID) -> EntityProfile | None:
        stmt = select(EntityProfile).where(EntityProfile.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> EntityProfile:
        """Persist a new profile for the tenant.

        Args:
            tenant_id: Owning tenant.
            fields: Column values.

        Returns:
            The persisted EntityProfile.
        """
        profile = EntityProfile(tenant_id=tenant_id, **fields)
        profile = await self._save(profile)
        logger.info("Entity profile created", tenant_id=str(tenant_id), profile_id=str(profile.id))
        return profile

    async def update(self, profile: EntityProfile, fields: dict[str, Any]) -> EntityProfile:
        for name, value in fields.items():
            setattr(profile, name, value)
        return await self._save(profile)

    async def set_applicable_frameworks(
        self,
        profile: EntityProfile,
        framework_ids: list[str],
        scanned_at: datetime,
    ) -> EntityProfile:
        profile.applicable_frameworks = list(framework_ids)
        profile.last_framework_scan = scanned_at
        return await self._save(profile)

    async def delete(self, tenant_id: uuid.UUID) -> bool:
        stmt = delete(EntityProfile).where(EntityProfile.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def list_tenants_with_frameworks(self, framework_ids: list[str]) -> list[uuid.UUID]:
        """Tenants whose applicable_frameworks JSONB array shares any element with framework_ids."""
        if not framework_ids:
            return []
        stmt = select(EntityProfile.tenant_id).where(
            or_(*(EntityProfile.applicable_frameworks.contains([fid]) for fid in framework_ids))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class FrameworkCatalogRepository(BaseRepository[CatalogControl]):
    """Catalog reads plus control upserts from implemented generated controls.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, CatalogControl)

    async def get_framework(self, framework_id: str) -> ComplianceFramework | None:
        return await self._session.get(ComplianceFramework, framework_id)

    async def list_active_frameworks(self) -> list[ComplianceFramework]:
        stmt = select(ComplianceFramework).where(ComplianceFramework.is_active.is_(True)).order_by(
            ComplianceFramework.id
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_active_controls(
        self,
        framework_id: str,
        control_ids: list[str] | None = None,
    ) -> list[CatalogControl]:
        """Active controls of a framework, optionally restricted to a subset of control ids."""
        stmt = select(CatalogControl).where(
            CatalogControl.framework_id == framework_id,
            CatalogControl.is_active.is_(True),
        )
        if control_ids:
            stmt = stmt.where(CatalogControl.control_id.in_(control_ids))
        result = await self._session.execute(stmt.order_by(CatalogControl.control_id))
        return list(result.scalars().all())

    async def list_active_controls_outside(self, framework_id: str) -> list[CatalogControl]:
        stmt = select(CatalogControl).where(
            CatalogControl.framework_id != framework_id,
            CatalogControl.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_control(self, control_id: str) -> CatalogControl | None:
        stmt = select(CatalogControl).where(CatalogControl.control_id == control_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def existing_control_ids(self, control_ids: list[str]) -> set[str]:
        if not control_ids:
            return set()
        stmt = select(CatalogControl.control_id).where(CatalogControl.control_id.in_(control_ids))
        result = await self._session.execute(stmt)
        return set(result.scalars().all())

    async def add_control_from_generated(self, control: GeneratedControl) -> CatalogControl:
        """Insert or refresh the catalog control a generated control was approved as.

        Args:
            control: An approved GeneratedControl.

        Returns:
            The catalog control.
        """
        values = {
            "framework_id": control.framework_id,
            "title": control.title,
            "description": control.description,
            "category": control.category,
            "domain": control.domain,
            "guidance": control.guidance,
            "evidence_types": list(control.evidence_types or []),
            "assessment_criteria": list(control.assessment_criteria or []),
            "ai_assessment_prompt": control.ai_prompt,
            "is_active": True,
        }
        stmt = (
            pg_insert(CatalogControl)
            .values(id=uuid.uuid4(), control_id=control.control_id, **values)
            .on_conflict_do_update(index_elements=[CatalogControl.control_id], set_=values)
            .returning(CatalogControl)
        )
        result = await self._session.execute(stmt)
        catalog_control = result.scalar_one()
        logger.info(
            "Catalog control upserted",
            control_id=control.control_id,
            framework_id=control.framework_id,
        )
        return catalog_control

    async def update_control_prompt(self, control: CatalogControl, prompt: str) -> CatalogControl:
        control.ai_assessment_prompt = prompt
        return await self._save(control)

    async def control_titles(self, control_ids: list[str]) -> dict[str, str]:
        if not control_ids:
            return {}
        stmt = select(CatalogControl.control_id, CatalogControl.title).where(
            CatalogControl.control_id.in_(control_ids)
        )
        result = await self._session.execute(stmt)
        return {row.control_id: row.title for row in result.all()}


class DiscoveredFrameworkRepository(BaseRepository[DiscoveredFramework]):
    """Repository for DiscoveredFramework.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, DiscoveredFramework)

    async def create(self, fields: dict[str, Any]) -> DiscoveredFramework:
        framework = await self._save(DiscoveredFramework(**fields))
        logger.info("Discovered framework stored", framework_id=str(framework.id), name=framework.name)
        return framework

    async def get(self, framework_id: uuid.UUID) -> DiscoveredFramework | None:
        return await self._session.get(DiscoveredFramework, framework_id)

    async def list_all(
        self,
        status: str | None = None,
        jurisdiction: str | None = None,
        min_relevance: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DiscoveredFramework], int]:
        """List discovered frameworks, most relevant first.

        Returns:
            Tuple of (page of frameworks, total matching count).
        """
        filters = []
        if status is not None:
            filters.append(DiscoveredFramework.status == status)
        if jurisdiction is not None:
            filters.append(DiscoveredFramework.jurisdiction == jurisdiction)
        if min_relevance is not None:
            filters.append(DiscoveredFramework.relevance_score >= min_relevance)

        count_result = await self._session.execute(
            select(func.count()).select_from(DiscoveredFramework).where(*filters)
        )
        total = count_result.scalar_one()

        stmt = (
            select(DiscoveredFramework)
            .where(*filters)
            .order_by(DiscoveredFramework.relevance_score.desc(), DiscoveredFramework.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all()), total

    async def list_open_candidates(self) -> list[DiscoveredFramework]:
        stmt = (
            select(DiscoveredFramework)
            .where(DiscoveredFramework.status.in_(("discovered", "analyzing")))
            .order_by(DiscoveredFramework.relevance_score.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(
        self,
        framework: DiscoveredFramework,
        status: str,
        generated_framework_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DiscoveredFramework:
        framework.status = status
        if generated_framework_id is not None:
            framework.generated_framework_id = generated_framework_id
        if metadata:
            framework.framework_metadata = {**(framework.framework_metadata or {}), **metadata}
        return await self._save(framework)


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class RegulatorySourceRepository(BaseRepository[RegulatorySource]):
    """Repository for RegulatorySource and its health counters.

    Health updates are single conditional UPDATE statements so concurrent
    checks of the same source cannot lose an increment.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, RegulatorySource)

    async def create(self, fields: dict[str, Any]) -> RegulatorySource:
        source = await self._save(RegulatorySource(**fields))
        logger.info("Regulatory source added", source_id=str(source.id), url=source.url)
        return source

    async def get(self, source_id: uuid.UUID) -> RegulatorySource | None:
        return await self._session.get(RegulatorySource, source_id)

    async def list_all(
        self,
        is_active: bool | None = None,
        jurisdiction: str | None = None,
        category: str | None = None,
    ) -> list[RegulatorySource]:
        stmt = select(RegulatorySource)
        if is_active is not None:
            stmt = stmt.where(RegulatorySource.is_active.is_(is_active))
        if jurisdiction is not None:
            stmt = stmt.where(RegulatorySource.jurisdiction == jurisdiction)
        if category is not None:
            stmt = stmt.where(RegulatorySource.category == category)
        result = await self._session.execute(stmt.order_by(RegulatorySource.name))
        return list(result.scalars().all())

    async def list_due(self, now: datetime, limit: int) -> list[RegulatorySource]:
        """Active sources due for a check, never-checked sources first.

        Args:
            now: Reference time.
            limit: Maximum number of sources returned.

        Returns:
            Due sources ordered by last_checked_at, nulls first.
        """
        due_clauses = [
            RegulatorySource.last_checked_at.is_(None),
            *(
                (RegulatorySource.check_frequency == frequency)
                & (RegulatorySource.last_checked_at < now - frequency_window(frequency))
                for frequency in ("hourly", "daily", "weekly")
            ),
        ]
        stmt = (
            select(RegulatorySource)
            .where(
                RegulatorySource.is_active.is_(True),
                RegulatorySource.status == "active",
                or_(*due_clauses),
            )
            .order_by(RegulatorySource.last_checked_at.asc().nulls_first())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(self, source: RegulatorySource, status: str) -> RegulatorySource:
        source.status = status
        source.is_active = status == "active"
        if source.is_active:
            source.consecutive_failures = 0
        return await self._save(source)

    async def delete(self, source_id: uuid.UUID) -> bool:
        result = await self._session.execute(delete(RegulatorySource).where(RegulatorySource.id == source_id))
        return (result.rowcount or 0) > 0

    async def record_success(
        self,
        source_id: uuid.UUID,
        content_hash: str,
        checked_at: datetime,
        changed: bool,
    ) -> None:
        values: dict[str, Any] = {
            "last_checked_at": checked_at,
            "last_content_hash": content_hash,
            "consecutive_failures": 0,
        }
        if changed:
            values["last_change_detected_at"] = checked_at
        await self._session.execute(
            update(RegulatorySource)
            .where(RegulatorySource.id == source_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def record_failure(self, source_id: uuid.UUID, checked_at: datetime, threshold: int) -> tuple[int, str]:
        """Increment consecutive_failures and flip status to error at the threshold.

        Args:
            source_id: The source that failed.
            checked_at: Time of the failed check.
            threshold: Failure count at which the source enters error.

        Returns:
            Tuple of (new failure count, resulting status).
        """
        stmt = (
            update(RegulatorySource)
            .where(RegulatorySource.id == source_id)
            .values(
                last_checked_at=checked_at,
                consecutive_failures=RegulatorySource.consecutive_failures + 1,
                status=case(
                    (RegulatorySource.consecutive_failures + 1 >= threshold, "error"),
                    else_=RegulatorySource.status,
                ),
            )
            .returning(RegulatorySource.consecutive_failures, RegulatorySource.status)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        row = result.one()
        return row.consecutive_failures, row.status


class RegulatoryUpdateRepository(BaseRepository[RegulatoryUpdate]):
    """Repository for RegulatoryUpdate.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, RegulatoryUpdate)

    async def create(self, fields: dict[str, Any]) -> RegulatoryUpdate:
        regulatory_update = await self._save(RegulatoryUpdate(**fields))
        logger.info(
            "Regulatory update stored",
            update_id=str(regulatory_update.id),
            status=regulatory_update.status,
        )
        return regulatory_update

    async def get(self, update_id: uuid.UUID) -> RegulatoryUpdate | None:
        return await self._session.get(RegulatoryUpdate, update_id)

    async def list_all(
        self,
        source_id: uuid.UUID | None = None,
        framework_id: str | None = None,
        status: str | None = None,
        update_type: str | None = None,
        impact_level: str | None = None,
        limit: int = 100,
    ) -> list[RegulatoryUpdate]:
        stmt = select(RegulatoryUpdate)
        if source_id is not None:
            stmt = stmt.where(RegulatoryUpdate.source_id == source_id)
        if framework_id is not None:
            stmt = stmt.where(RegulatoryUpdate.framework_id == framework_id)
        if status is not None:
            stmt = stmt.where(RegulatoryUpdate.status == status)
        if update_type is not None:
            stmt = stmt.where(RegulatoryUpdate.update_type == update_type)
        if impact_level is not None:
            stmt = stmt.where(RegulatoryUpdate.impact_level == impact_level)
        stmt = stmt.order_by(RegulatoryUpdate.detected_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_pending(self, limit: int = 50) -> list[RegulatoryUpdate]:
        impact_rank = case(
            {level: rank for rank, level in enumerate(IMPACT_ORDER)},
            value=RegulatoryUpdate.impact_level,
            else_=len(IMPACT_ORDER),
        )
        stmt = (
            select(RegulatoryUpdate)
            .where(RegulatoryUpdate.status.in_(("pending", "analyzed")))
            .order_by(impact_rank, RegulatoryUpdate.detected_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, update: RegulatoryUpdate) -> RegulatoryUpdate:
        return await self._save(update)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


_CANDIDATE_FIELDS = (
    "id",
    "framework_id",
    "control_id",
    "title",
    "description",
    "category",
    "control_type",
    "domain",
    "requirement",
    "guidance",
    "implementation_difficulty",
    "evidence_types",
    "assessment_criteria",
    "ai_prompt",
    "source_document",
    "source_section",
    "confidence",
    "generation_context",
)


class GeneratedControlRepository(BaseRepository[GeneratedControl]):
    """Repository for GeneratedControl.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, GeneratedControl)

    async def create_many(self, candidates: list[Any]) -> list[GeneratedControl]:
        """Persist candidates as GeneratedControl rows in status generated.

        Args:
            candidates: ControlCandidate instances.

        Returns:
            The persisted controls, in input order.
        """
        controls = [
            GeneratedControl(status="generated", **{name: getattr(candidate, name) for name in _CANDIDATE_FIELDS})
            for candidate in candidates
        ]
        if not controls:
            return []
        self._session.add_all(controls)
        await self._session.flush()
        return controls

    async def get(self, control_id: uuid.UUID) -> GeneratedControl | None:
        return await self._session.get(GeneratedControl, control_id)

    async def get_many(self, control_ids: list[uuid.UUID]) -> list[GeneratedControl]:
        if not control_ids:
            return []
        result = await self._session.execute(select(GeneratedControl).where(GeneratedControl.id.in_(control_ids)))
        return list(result.scalars().all())

    async def list_all(
        self,
        framework_id: str | None = None,
        status: str | None = None,
        min_confidence: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[GeneratedControl], int]:
        filters = []
        if framework_id is not None:
            filters.append(GeneratedControl.framework_id == framework_id)
        if status is not None:
            filters.append(GeneratedControl.status == status)
        if min_confidence is not None:
            filters.append(GeneratedControl.confidence >= min_confidence)

        count_result = await self._session.execute(select(func.count()).select_from(GeneratedControl).where(*filters))
        stmt = (
            select(GeneratedControl)
            .where(*filters)
            .order_by(GeneratedControl.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all()), count_result.scalar_one()

    async def list_pending_review(self, limit: int = 20) -> list[GeneratedControl]:
        """Controls awaiting review, most confident first then oldest first."""
        stmt = (
            select(GeneratedControl)
            .where(GeneratedControl.status.in_(("generated", "pending_review")))
            .order_by(GeneratedControl.confidence.desc(), GeneratedControl.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, control: GeneratedControl) -> GeneratedControl:
        return await self._save(control)


class ControlCrossReferenceRepository(BaseRepository[ControlCrossReference]):
    """Upserts similarity mappings keyed on (source, target).

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, ControlCrossReference)

    async def upsert(
        self,
        source_control_id: str,
        target_control_id: str,
        target_framework_id: str,
        relationship_type: str,
        mapping_confidence: float,
    ) -> ControlCrossReference:
        values = {
            "target_framework_id": target_framework_id,
            "relationship_type": relationship_type,
            "mapping_confidence": mapping_confidence,
            "mapped_by": "auto",
        }
        stmt = (
            pg_insert(ControlCrossReference)
            .values(
                id=uuid.uuid4(),
                source_control_id=source_control_id,
                target_control_id=target_control_id,
                **values,
            )
            .on_conflict_do_update(constraint="uq_cl_cross_reference_pair", set_=values)
            .returning(ControlCrossReference)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()


class GenerationRunRepository(BaseRepository[GenerationRun]):
    """Request log for generation calls.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, GenerationRun)

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
    ) -> None:
        self._session.add(
            GenerationRun(
                id=run_id,
                framework_id=framework_id,
                source_type=source_type,
                source_reference=source_reference,
                status=status,
                controls_generated=controls_generated,
                errors=errors,
                processing_time_ms=processing_time_ms,
            )
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class EvidenceRepository(BaseRepository[EvidenceItem]):
    """Read access to tenant evidence.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, EvidenceItem)

    async def list_recent_by_types(
        self,
        tenant_id: uuid.UUID,
        evidence_types: list[str],
        limit: int,
    ) -> list[EvidenceItem]:
        if not evidence_types:
            return []
        stmt = (
            select(EvidenceItem)
            .where(EvidenceItem.tenant_id == tenant_id, EvidenceItem.evidence_type.in_(evidence_types))
            .order_by(EvidenceItem.uploaded_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class ScheduleRepository(BaseRepository[AutoAssessmentSchedule]):
    """Repository for AutoAssessmentSchedule.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AutoAssessmentSchedule)

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> AutoAssessmentSchedule:
        schedule = await self._save(AutoAssessmentSchedule(tenant_id=tenant_id, **fields))
        logger.info(
            "Assessment schedule created",
            schedule_id=str(schedule.id),
            tenant_id=str(tenant_id),
            frequency=schedule.frequency,
        )
        return schedule

    async def get(self, schedule_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> AutoAssessmentSchedule | None:
        stmt = select(AutoAssessmentSchedule).where(AutoAssessmentSchedule.id == schedule_id)
        if tenant_id is not None:
            stmt = stmt.where(AutoAssessmentSchedule.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(
        self,
        tenant_id: uuid.UUID,
        framework_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[AutoAssessmentSchedule]:
        stmt = select(AutoAssessmentSchedule).where(AutoAssessmentSchedule.tenant_id == tenant_id)
        if framework_id is not None:
            stmt = stmt.where(AutoAssessmentSchedule.framework_id == framework_id)
        if is_active is not None:
            stmt = stmt.where(AutoAssessmentSchedule.is_active.is_(is_active))
        result = await self._session.execute(stmt.order_by(AutoAssessmentSchedule.next_run_at))
        return list(result.scalars().all())

    async def list_due(self, now: datetime, limit: int) -> list[AutoAssessmentSchedule]:
        stmt = (
            select(AutoAssessmentSchedule)
            .where(AutoAssessmentSchedule.is_active.is_(True), AutoAssessmentSchedule.next_run_at <= now)
            .order_by(AutoAssessmentSchedule.next_run_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, schedule: AutoAssessmentSchedule) -> AutoAssessmentSchedule:
        return await self._save(schedule)

    async def delete(self, schedule_id: uuid.UUID, tenant_id: uuid.UUID) -> bool:
        stmt = delete(AutoAssessmentSchedule).where(
            AutoAssessmentSchedule.id == schedule_id,
            AutoAssessmentSchedule.tenant_id == tenant_id,
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def record_run(
        self,
        schedule_id: uuid.UUID,
        ran_at: datetime,
        status: str,
        next_run_at: datetime,
    ) -> None:
        await self._session.execute(
            update(AutoAssessmentSchedule)
            .where(AutoAssessmentSchedule.id == schedule_id)
            .values(last_run_at=ran_at, last_run_status=status, next_run_at=next_run_at)
            .execution_options(synchronize_session=False)
        )


class AssessmentResultRepository(BaseRepository[AutoAssessmentResult]):
    """Insert-only repository for AutoAssessmentResult.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AutoAssessmentResult)

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> AutoAssessmentResult:
        return await self._save(AutoAssessmentResult(tenant_id=tenant_id, **fields))

    async def get(self, result_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> AutoAssessmentResult | None:
        stmt = select(AutoAssessmentResult).where(AutoAssessmentResult.id == result_id)
        if tenant_id is not None:
            stmt = stmt.where(AutoAssessmentResult.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(
        self,
        tenant_id: uuid.UUID,
        framework_id: str | None = None,
        limit: int = 20,
    ) -> list[AutoAssessmentResult]:
        stmt = select(AutoAssessmentResult).where(AutoAssessmentResult.tenant_id == tenant_id)
        if framework_id is not None:
            stmt = stmt.where(AutoAssessmentResult.framework_id == framework_id)
        stmt = stmt.order_by(AutoAssessmentResult.started_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class ControlAssessmentRepository(BaseRepository[ControlAssessment]):
    """Per-control rating history.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, ControlAssessment)

    async def latest(self, tenant_id: uuid.UUID, control_id: str) -> ControlAssessment | None:
        stmt = (
            select(ControlAssessment)
            .where(ControlAssessment.tenant_id == tenant_id, ControlAssessment.control_id == control_id)
            .order_by(ControlAssessment.assessed_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, assessment_id: uuid.UUID, tenant_id: uuid.UUID) -> ControlAssessment | None:
        stmt = select(ControlAssessment).where(
            ControlAssessment.id == assessment_id,
            ControlAssessment.tenant_id == tenant_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_many(self, tenant_id: uuid.UUID, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        self._session.add_all(ControlAssessment(tenant_id=tenant_id, **row) for row in rows)
        await self._session.flush()

    async def count_review_flags(self, tenant_id: uuid.UUID, control_id: str) -> int:
        stmt = select(func.count()).where(
            ControlAssessment.tenant_id == tenant_id,
            ControlAssessment.control_id == control_id,
            ControlAssessment.requires_review.is_(True),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------


class FeedbackRepository(BaseRepository[LearningFeedback]):
    """Repository for LearningFeedback.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, LearningFeedback)

    async def create(self, tenant_id: uuid.UUID, fields: dict[str, Any]) -> LearningFeedback:
        feedback = await self._save(LearningFeedback(tenant_id=tenant_id, **fields))
        logger.info(
            "Learning feedback recorded",
            feedback_id=str(feedback.id),
            tenant_id=str(tenant_id),
            event_type=feedback.event_type,
        )
        return feedback

    async def list_unprocessed(self, limit: int) -> list[LearningFeedback]:
        stmt = (
            select(LearningFeedback)
            .where(LearningFeedback.processed_at.is_(None))
            .order_by(LearningFeedback.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_processed(self, feedback: LearningFeedback, processed_at: datetime, applied: bool) -> None:
        feedback.processed_at = processed_at
        if applied:
            feedback.applied_at = processed_at
        await self._save(feedback)

    async def has_pending_suggestion(self, tenant_id: uuid.UUID, control_id: str) -> bool:
        stmt = select(func.count()).where(
            LearningFeedback.tenant_id == tenant_id,
            LearningFeedback.control_id == control_id,
            LearningFeedback.event_type == "prompt_improvement",
            LearningFeedback.processed_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def count(
        self,
        tenant_id: uuid.UUID | None = None,
        event_type: str | None = None,
        applied: bool | None = None,
        unprocessed: bool | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(LearningFeedback)
        if tenant_id is not None:
            stmt = stmt.where(LearningFeedback.tenant_id == tenant_id)
        if event_type is not None:
            stmt = stmt.where(LearningFeedback.event_type == event_type)
        if applied is not None:
            column = LearningFeedback.applied_at
            stmt = stmt.where(column.is_not(None) if applied else column.is_(None))
        if unprocessed is not None:
            column = LearningFeedback.processed_at
            stmt = stmt.where(column.is_(None) if unprocessed else column.is_not(None))
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def top_applied_controls(self, tenant_id: uuid.UUID | None, limit: int) -> list[tuple[str, int]]:
        applied_count = func.count(LearningFeedback.id).label("applied_count")
        stmt = select(LearningFeedback.control_id, applied_count).where(LearningFeedback.applied_at.is_not(None))
        if tenant_id is not None:
            stmt = stmt.where(LearningFeedback.tenant_id == tenant_id)
        stmt = stmt.group_by(LearningFeedback.control_id).order_by(applied_count.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return [(row.control_id, row.applied_count) for row in result.all()]


class ImprovementRepository(BaseRepository[LearningImprovement]):
    """Applied improvements. The unique feedback_id constraint backs idempotency.

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, LearningImprovement)

    async def exists_for_feedback(self, feedback_id: uuid.UUID) -> bool:
        stmt = select(func.count()).where(LearningImprovement.feedback_id == feedback_id)
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def create(self, fields: dict[str, Any]) -> LearningImprovement:
        return await self._save(LearningImprovement(**fields))

    async def count_for_control(self, control_id: str) -> int:
        stmt = select(func.count()).where(LearningImprovement.control_id == control_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()


class PatternRepository(BaseRepository[AssessmentPattern]):
    """Evidence patterns keyed on (tenant, control, pattern).

    Args:
        session: The async database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AssessmentPattern)

    async def record(
        self,
        tenant_id: uuid.UUID,
        control_id: str,
        pattern: str,
        rating: str,
        seen_at: datetime,
    ) -> None:
        stmt = (
            pg_insert(AssessmentPattern)
            .values(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                control_id=control_id,
                pattern_type="evidence",
                pattern=pattern,
                rating=rating,
                occurrences=1,
                last_seen_at=seen_at,
            )
            .on_conflict_do_update(
                constraint="uq_cl_assessment_patterns_key",
                set_={
                    "occurrences": AssessmentPattern.occurrences + 1,
                    "rating": rating,
                    "last_seen_at": seen_at,
                },
            )
        )
        await self._session.execute(stmt)
