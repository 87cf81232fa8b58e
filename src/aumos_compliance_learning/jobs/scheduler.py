"""In-process runner for the three batch drivers.

Each driver runs on its own fixed asyncio interval inside a fresh
transactional session. Enable on exactly one replica: the drivers take no
lease, so two runners would process the same due rows.
"""

import asyncio
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from aumos_compliance_learning.adapters.repositories import (
    AssessmentResultRepository,
    ControlAssessmentRepository,
    EntityProfileRepository,
    EvidenceRepository,
    FeedbackRepository,
    FrameworkCatalogRepository,
    ImprovementRepository,
    PatternRepository,
    RegulatorySourceRepository,
    RegulatoryUpdateRepository,
    ScheduleRepository,
)
from aumos_compliance_learning.core.database import session_scope
from aumos_compliance_learning.core.interfaces import IChangeAnalyzer, IContentFetcher
from aumos_compliance_learning.core.services import AssessmentService, LearningService, MonitoringService
from aumos_compliance_learning.observability import get_logger
from aumos_compliance_learning.settings import Settings

logger = get_logger(__name__)

Job = Callable[[AsyncSession], Awaitable[dict[str, int]]]


class LearningJobRunner:
    """Runs source checks, scheduled assessments and feedback processing.

    Args:
        settings: Service settings (intervals and batch bounds).
        fetcher: Shared content fetcher.
        analyzer: Optional change analyzer.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: IContentFetcher,
        analyzer: IChangeAnalyzer | None = None,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._analyzer = analyzer
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Schedule the three interval loops on the running event loop."""
        if self._tasks:
            return
        jobs: list[tuple[str, int, Job]] = [
            ("source_checks", self._settings.source_check_interval_seconds, self.run_source_checks),
            ("scheduled_assessments", self._settings.assessment_interval_seconds, self.run_scheduled_assessments),
            ("feedback_processing", self._settings.feedback_interval_seconds, self.run_feedback_processing),
        ]
        for name, interval, job in jobs:
            self._tasks.append(asyncio.create_task(self._loop(name, interval, job), name=name))
        logger.info("Learning job runner started", jobs=[name for name, _, _ in jobs])

    async def stop(self) -> None:
        """Cancel the loops and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Learning job runner stopped")

    async def _loop(self, name: str, interval_seconds: int, job: Job) -> None:
        while True:
            await self.run_once(name, job)
            await asyncio.sleep(interval_seconds)

    async def run_once(self, name: str, job: Job) -> dict[str, int] | None:
        """Run one job in its own session; failures are logged, never raised."""
        try:
            async with session_scope() as session:
                summary = await job(session)
        except Exception:
            logger.exception("Background job failed", job=name)
            return None
        logger.info("Background job completed", job=name, **summary)
        return summary

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def run_source_checks(self, session: AsyncSession) -> dict[str, int]:
        service = MonitoringService(
            source_repo=RegulatorySourceRepository(session),
            update_repo=RegulatoryUpdateRepository(session),
            profile_repo=EntityProfileRepository(session),
            fetcher=self._fetcher,
            analyzer=self._analyzer,
            failure_threshold=self._settings.source_failure_threshold,
            check_batch_size=self._settings.source_check_batch_size,
        )
        return await service.run_scheduled_checks()

    async def run_scheduled_assessments(self, session: AsyncSession) -> dict[str, int]:
        service = AssessmentService(
            schedule_repo=ScheduleRepository(session),
            result_repo=AssessmentResultRepository(session),
            catalog_repo=FrameworkCatalogRepository(session),
            evidence_repo=EvidenceRepository(session),
            control_assessment_repo=ControlAssessmentRepository(session),
            improvement_repo=ImprovementRepository(session),
            batch_size=self._settings.assessment_batch_size,
        )
        return await service.run_scheduled_assessments()

    async def run_feedback_processing(self, session: AsyncSession) -> dict[str, int]:
        service = LearningService(
            feedback_repo=FeedbackRepository(session),
            improvement_repo=ImprovementRepository(session),
            pattern_repo=PatternRepository(session),
            control_assessment_repo=ControlAssessmentRepository(session),
            result_repo=AssessmentResultRepository(session),
            catalog_repo=FrameworkCatalogRepository(session),
            batch_size=self._settings.feedback_batch_size,
        )
        return await service.process_feedback()
