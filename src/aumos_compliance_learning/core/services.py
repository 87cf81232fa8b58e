"""Core business logic services for the compliance learning pipeline.

Five service classes:
- ProfilingService: Entity profiles, framework discovery and suggestions
- MonitoringService: Regulatory source checks and the regulatory update lifecycle
- ControlGenerationService: Control synthesis, validation, review and implementation
- AssessmentService: Assessment schedules and evidence-based execution
- LearningService: Human feedback capture and the improvement loop

All services are async-first. They accept injected repositories and
collaborators through their constructors and contain no framework code.
The three batch drivers (run_scheduled_checks, run_scheduled_assessments,
process_feedback) isolate each item and never let an exception escape.
"""

import time
import uuid
from datetime import UTC, datetime
from typing import Any

from aumos_compliance_learning.applicability.rules import get_rule
from aumos_compliance_learning.applicability.scorer import (
    FrameworkSuggestion,
    RelevanceAssessment,
    assess_discovered_framework,
    evaluate_applicability,
    priority_for_score,
    relevance_reasons,
    score_discovered_framework,
)
from aumos_compliance_learning.assessment.evaluator import (
    EVIDENCE_SAMPLE_SIZE,
    RatingCounts,
    apply_learning_boost,
    needs_review,
    overall_score,
    rate_evidence,
)
from aumos_compliance_learning.assessment.scheduling import calculate_next_run_time
from aumos_compliance_learning.core.domain import (
    CHECK_FREQUENCIES,
    AssessmentConfig,
    AssessmentFinding,
    ChangeAnalysis,
    ControlMapping,
    ControlPerformance,
    DetectedChange,
    GenerationContext,
    GenerationError,
    GenerationResult,
    ImplementationOutcome,
    LearningMetrics,
    NotificationConfig,
    SuggestionOutcome,
)
from aumos_compliance_learning.core.interfaces import (
    IAssessmentResultRepository,
    IChangeAnalyzer,
    IContentFetcher,
    IControlAssessmentRepository,
    IControlCrossReferenceRepository,
    IDiscoveredFrameworkRepository,
    IEntityProfileRepository,
    IEvidenceRepository,
    IFeedbackRepository,
    IFrameworkCatalogRepository,
    IGeneratedControlRepository,
    IGenerationRunRepository,
    IImprovementRepository,
    IPatternRepository,
    IRegulatorySourceRepository,
    IRegulatoryUpdateRepository,
    IScheduleRepository,
    SimilarityScorer,
    TextClassifier,
)
from aumos_compliance_learning.core.lifecycle import (
    DISCOVERED_FRAMEWORK_TRANSITIONS,
    GENERATED_CONTROL_TRANSITIONS,
    REGULATORY_UPDATE_TRANSITIONS,
    can_transition,
    ensure_transition,
)
from aumos_compliance_learning.core.models import (
    AutoAssessmentResult,
    AutoAssessmentSchedule,
    DiscoveredFramework,
    EntityProfile,
    GeneratedControl,
    LearningFeedback,
    RegulatorySource,
    RegulatoryUpdate,
)
from aumos_compliance_learning.core.tenancy import TenantContext
from aumos_compliance_learning.errors import (
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    ValidationError,
)
from aumos_compliance_learning.generation.segmenter import segment_document
from aumos_compliance_learning.generation.similarity import MAPPING_THRESHOLD, mapping_type_for
from aumos_compliance_learning.generation.synthesis import (
    ControlCandidate,
    ControlRefinement,
    control_from_requirement,
    plan_refinements,
    synthesize_section,
)
from aumos_compliance_learning.generation.validation import ValidationResult, validate_controls
from aumos_compliance_learning.learning.feedback import (
    CONFIDENCE_GAIN_PER_IMPROVEMENT,
    PROMPT_REWRITING_EVENTS,
    REVIEW_FEEDBACK_TEXT,
    REVIEW_SUGGESTION_THRESHOLD,
    classify_feedback,
    evidence_pattern_key,
    generate_improved_prompt,
    review_suggestion_text,
)
from aumos_compliance_learning.monitoring.change_detection import (
    DEFAULT_FAILURE_THRESHOLD,
    SUMMARY_LENGTH,
    change_summary,
    detect_change,
)
from aumos_compliance_learning.observability import get_logger

logger = get_logger(__name__)

_DISCOVERY_THRESHOLD = 0.5
_SOURCE_STATUSES = ("active", "paused", "error", "retired")


def _now() -> datetime:
    return datetime.now(UTC)


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Profiling
# ---------------------------------------------------------------------------


class ProfilingService:
    """Entity profiles and framework discovery.

    Catalog frameworks are scored with their built-in applicability rule;
    discovered frameworks (not yet in the catalog) use the category
    heuristic. Suggestion ids are the catalog slug or the discovered
    framework UUID.

    Args:
        profile_repo: Repository for EntityProfile.
        catalog_repo: Framework and control catalog.
        discovered_repo: Repository for DiscoveredFramework.
    """

    def __init__(
        self,
        profile_repo: IEntityProfileRepository,
        catalog_repo: IFrameworkCatalogRepository,
        discovered_repo: IDiscoveredFrameworkRepository,
    ) -> None:
        self._profile_repo = profile_repo
        self._catalog_repo = catalog_repo
        self._discovered_repo = discovered_repo

    async def create_profile(self, tenant: TenantContext, fields: dict[str, Any]) -> EntityProfile:
        """Create the tenant's entity profile.

        Args:
            tenant: The tenant context.
            fields: Profile attributes.

        Returns:
            The created EntityProfile.

        Raises:
            ConflictError: If the tenant already has a profile.
        """
        if await self._profile_repo.get_by_tenant(tenant.tenant_id) is not None:
            raise ConflictError(f"Entity profile already exists for tenant {tenant.tenant_id}")
        profile = await self._profile_repo.create(
            tenant.tenant_id,
            {**fields, "last_profile_update": _now()},
        )
        logger.info("Entity profile created", tenant_id=str(tenant.tenant_id), industry=profile.industry)
        return profile

    async def get_profile(self, tenant: TenantContext) -> EntityProfile:
        """Return the tenant's profile.

        Raises:
            NotFoundError: If the tenant has no profile.
        """
        profile = await self._profile_repo.get_by_tenant(tenant.tenant_id)
        if profile is None:
            raise NotFoundError(resource="EntityProfile", resource_id=str(tenant.tenant_id))
        return profile

    async def update_profile(self, tenant: TenantContext, fields: dict[str, Any]) -> EntityProfile:
        """Apply a partial update to the tenant's profile.

        Args:
            tenant: The tenant context.
            fields: Attributes to change. Absent keys are left untouched.

        Returns:
            The updated EntityProfile.
        """
        profile = await self.get_profile(tenant)
        profile = await self._profile_repo.update(profile, {**fields, "last_profile_update": _now()})
        logger.info("Entity profile updated", tenant_id=str(tenant.tenant_id), fields=sorted(fields))
        return profile

    async def offboard_tenant(self, tenant: TenantContext) -> None:
        """Remove the tenant's profile.

        Raises:
            NotFoundError: If the tenant has no profile.
        """
        if not await self._profile_repo.delete(tenant.tenant_id):
            raise NotFoundError(resource="EntityProfile", resource_id=str(tenant.tenant_id))
        logger.info("Tenant offboarded", tenant_id=str(tenant.tenant_id))

    async def discover_frameworks(self, tenant: TenantContext) -> list[FrameworkSuggestion]:
        """Score every catalog and discovered framework against the tenant's profile.

        Frameworks scoring at least 0.5 are suggested, most relevant first.
        The suggested ids are stored as the profile's applicable frameworks.

        Args:
            tenant: The tenant context.

        Returns:
            Suggestions sorted by relevance, descending.
        """
        profile = await self.get_profile(tenant)
        suggestions: list[FrameworkSuggestion] = []

        for framework in await self._catalog_repo.list_active_frameworks():
            rule = get_rule(framework.id)
            if rule is None:
                continue
            assessment = evaluate_applicability(profile, rule)
            if assessment.relevance_score >= _DISCOVERY_THRESHOLD:
                suggestions.append(
                    FrameworkSuggestion(
                        framework_id=framework.id,
                        framework_name=framework.name,
                        jurisdiction=framework.jurisdiction,
                        category=framework.category,
                        relevance_score=assessment.relevance_score,
                        reasons=[factor.details for factor in assessment.matching_factors if factor.matched],
                        is_new=False,
                        priority=assessment.recommended_priority,
                    )
                )

        for discovered in await self._discovered_repo.list_open_candidates():
            relevance = score_discovered_framework(profile, discovered)
            if relevance >= _DISCOVERY_THRESHOLD:
                suggestions.append(
                    FrameworkSuggestion(
                        framework_id=str(discovered.id),
                        framework_name=discovered.name,
                        jurisdiction=discovered.jurisdiction,
                        category=discovered.category,
                        relevance_score=relevance,
                        reasons=relevance_reasons(profile, discovered),
                        is_new=True,
                        priority=priority_for_score(relevance),
                        estimated_controls=discovered.estimated_controls,
                    )
                )

        suggestions.sort(key=lambda suggestion: suggestion.relevance_score, reverse=True)
        await self._profile_repo.set_applicable_frameworks(
            profile,
            [suggestion.framework_id for suggestion in suggestions],
            _now(),
        )
        logger.info(
            "Framework discovery completed",
            tenant_id=str(tenant.tenant_id),
            suggestions=len(suggestions),
            new_frameworks=sum(1 for suggestion in suggestions if suggestion.is_new),
        )
        return suggestions

    async def analyze_relevance(self, tenant: TenantContext, framework_id: str) -> RelevanceAssessment:
        """Detailed relevance of one framework for the tenant.

        Args:
            tenant: The tenant context.
            framework_id: Catalog slug or discovered framework UUID.

        Returns:
            RelevanceAssessment with per-factor detail.

        Raises:
            NotFoundError: If neither a ruled catalog framework nor a
                discovered framework matches the id.
        """
        profile = await self.get_profile(tenant)

        framework = await self._catalog_repo.get_framework(framework_id)
        rule = get_rule(framework_id)
        if framework is not None and rule is not None:
            return evaluate_applicability(profile, rule)

        discovered = await self._find_discovered(framework_id)
        if discovered is not None:
            return assess_discovered_framework(profile, discovered)

        raise NotFoundError(resource="Framework", resource_id=framework_id)

    async def add_discovered_framework(self, fields: dict[str, Any]) -> DiscoveredFramework:
        """Record a new candidate framework in status discovered."""
        framework = await self._discovered_repo.create({**fields, "status": "discovered"})
        logger.info(
            "Discovered framework added",
            framework_id=str(framework.id),
            jurisdiction=framework.jurisdiction,
            category=framework.category,
        )
        return framework

    async def get_discovered_framework(self, framework_id: uuid.UUID) -> DiscoveredFramework:
        framework = await self._discovered_repo.get(framework_id)
        if framework is None:
            raise NotFoundError(resource="DiscoveredFramework", resource_id=str(framework_id))
        return framework

    async def list_discovered_frameworks(
        self,
        status: str | None = None,
        jurisdiction: str | None = None,
        min_relevance: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DiscoveredFramework], int]:
        return await self._discovered_repo.list_all(
            status=status,
            jurisdiction=jurisdiction,
            min_relevance=min_relevance,
            limit=limit,
            offset=offset,
        )

    async def update_discovered_framework_status(
        self,
        framework_id: uuid.UUID,
        status: str,
        generated_framework_id: str | None = None,
    ) -> DiscoveredFramework:
        """Move a discovered framework forward in its lifecycle.

        Raises:
            NotFoundError: If the framework does not exist.
            ConflictError: If the transition is not allowed.
        """
        framework = await self.get_discovered_framework(framework_id)
        ensure_transition(DISCOVERED_FRAMEWORK_TRANSITIONS, framework.status, status, "DiscoveredFramework")
        previous = framework.status
        framework = await self._discovered_repo.update_status(
            framework,
            status,
            generated_framework_id=generated_framework_id,
        )
        logger.info(
            "Discovered framework status changed",
            framework_id=str(framework_id),
            from_status=previous,
            to_status=status,
        )
        return framework

    async def accept_suggestion(self, tenant: TenantContext, suggestion_id: str) -> SuggestionOutcome:
        """Accept a suggestion.

        A catalog framework joins the tenant's applicable frameworks. A
        discovered framework is queued for control generation.

        Args:
            tenant: The tenant context.
            suggestion_id: Catalog slug or discovered framework UUID.

        Returns:
            SuggestionOutcome; success is False when nothing matches the id.
        """
        framework = await self._catalog_repo.get_framework(suggestion_id)
        if framework is not None:
            profile = await self.get_profile(tenant)
            if suggestion_id not in (profile.applicable_frameworks or []):
                await self._profile_repo.update(
                    profile,
                    {"applicable_frameworks": [*(profile.applicable_frameworks or []), suggestion_id]},
                )
            logger.info("Framework suggestion accepted", tenant_id=str(tenant.tenant_id), framework_id=suggestion_id)
            return SuggestionOutcome(
                success=True,
                message=f"Framework {framework.name} added to your compliance scope",
                framework_id=suggestion_id,
            )

        discovered = await self._find_discovered(suggestion_id)
        if discovered is not None:
            await self.update_discovered_framework_status(discovered.id, "generating")
            return SuggestionOutcome(
                success=True,
                message=(
                    f"Framework {discovered.name} queued for control generation. "
                    "You will be notified when controls are ready."
                ),
                framework_id=suggestion_id,
            )

        return SuggestionOutcome(success=False, message=f"Suggestion not found: {suggestion_id}")

    async def reject_suggestion(
        self,
        tenant: TenantContext,
        suggestion_id: str,
        reason: str | None = None,
    ) -> SuggestionOutcome:
        """Reject a suggestion.

        A discovered framework moves to rejected with the rejection recorded
        in its metadata. A catalog framework is removed from the tenant's
        applicable frameworks.
        """
        discovered = await self._find_discovered(suggestion_id)
        if discovered is not None:
            ensure_transition(DISCOVERED_FRAMEWORK_TRANSITIONS, discovered.status, "rejected", "DiscoveredFramework")
            await self._discovered_repo.update_status(
                discovered,
                "rejected",
                metadata={
                    "rejected_by": str(tenant.tenant_id),
                    "rejected_at": _now().isoformat(),
                    "rejection_reason": reason,
                },
            )
            logger.info("Discovered framework rejected", tenant_id=str(tenant.tenant_id), framework_id=suggestion_id)
            return SuggestionOutcome(success=True, message=f"Framework {discovered.name} rejected")

        profile = await self.get_profile(tenant)
        current = list(profile.applicable_frameworks or [])
        if suggestion_id in current:
            await self._profile_repo.update(
                profile,
                {"applicable_frameworks": [fid for fid in current if fid != suggestion_id]},
            )
        return SuggestionOutcome(success=True, message="Framework removed from suggestions")

    async def _find_discovered(self, framework_id: str) -> DiscoveredFramework | None:
        parsed = _parse_uuid(framework_id)
        if parsed is None:
            return None
        return await self._discovered_repo.get(parsed)


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class MonitoringService:
    """Regulatory source checks and regulatory update management.

    A failed fetch increments the source's failure counter and flips it to
    error at the threshold, then re-raises to the caller. The scheduled
    driver catches the error and moves on to the next source.

    Args:
        source_repo: Repository for RegulatorySource.
        update_repo: Repository for RegulatoryUpdate.
        profile_repo: Used to find tenants affected by an update.
        fetcher: Content fetcher.
        analyzer: Optional change analyzer. None runs heuristic defaults only.
        failure_threshold: Consecutive failures that put a source in error.
        check_batch_size: Maximum sources checked per scheduled run.
    """

    def __init__(
        self,
        source_repo: IRegulatorySourceRepository,
        update_repo: IRegulatoryUpdateRepository,
        profile_repo: IEntityProfileRepository,
        fetcher: IContentFetcher,
        analyzer: IChangeAnalyzer | None = None,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        check_batch_size: int = 10,
    ) -> None:
        self._source_repo = source_repo
        self._update_repo = update_repo
        self._profile_repo = profile_repo
        self._fetcher = fetcher
        self._analyzer = analyzer
        self._failure_threshold = failure_threshold
        self._check_batch_size = check_batch_size

    # -- Sources --------------------------------------------------------------

    async def add_source(self, fields: dict[str, Any]) -> RegulatorySource:
        """Register a regulatory source to monitor.

        Raises:
            ValidationError: If check_frequency is not hourly, daily or weekly.
        """
        frequency = fields.get("check_frequency", "daily")
        if frequency not in CHECK_FREQUENCIES:
            raise ValidationError(f"Unsupported check frequency: {frequency}", field="check_frequency")
        source = await self._source_repo.create({**fields, "status": "active", "consecutive_failures": 0})
        logger.info("Regulatory source registered", source_id=str(source.id), name=source.name)
        return source

    async def get_source(self, source_id: uuid.UUID) -> RegulatorySource:
        source = await self._source_repo.get(source_id)
        if source is None:
            raise NotFoundError(resource="RegulatorySource", resource_id=str(source_id))
        return source

    async def list_sources(
        self,
        is_active: bool | None = None,
        jurisdiction: str | None = None,
        category: str | None = None,
    ) -> list[RegulatorySource]:
        return await self._source_repo.list_all(is_active=is_active, jurisdiction=jurisdiction, category=category)

    async def update_source_status(self, source_id: uuid.UUID, status: str) -> RegulatorySource:
        """Set a source's status. Reactivating clears its failure counter."""
        if status not in _SOURCE_STATUSES:
            raise ValidationError(f"Unsupported source status: {status}", field="status")
        source = await self.get_source(source_id)
        source = await self._source_repo.update_status(source, status)
        logger.info("Regulatory source status changed", source_id=str(source_id), status=status)
        return source

    async def delete_source(self, source_id: uuid.UUID) -> None:
        if not await self._source_repo.delete(source_id):
            raise NotFoundError(resource="RegulatorySource", resource_id=str(source_id))
        logger.info("Regulatory source deleted", source_id=str(source_id))

    async def check_for_updates(self, source_id: uuid.UUID) -> list[DetectedChange]:
        """Fetch a source and compare its content hash with the stored one.

        Args:
            source_id: The source to check.

        Returns:
            Detected changes; empty when the content is unchanged or this
            was the first (baseline) check.

        Raises:
            NotFoundError: If the source does not exist.
            ExternalDependencyError: If the fetch fails. The failure is
                recorded on the source before re-raising.
        """
        source = await self.get_source(source_id)
        now = _now()
        try:
            content = await self._fetcher.fetch(source.url)
        except ExternalDependencyError as exc:
            failures, status = await self._source_repo.record_failure(source.id, now, self._failure_threshold)
            logger.warning(
                "Regulatory source check failed",
                source_id=str(source.id),
                consecutive_failures=failures,
                status=status,
                error=exc.message,
            )
            raise

        new_hash, change = detect_change(source, content, now)
        await self._source_repo.record_success(source.id, new_hash, now, changed=change is not None)
        logger.info(
            "Regulatory source checked",
            source_id=str(source.id),
            changed=change is not None,
            baseline=source.last_content_hash is None,
        )
        return [change] if change is not None else []

    async def process_detected_change(
        self,
        change: DetectedChange,
        source: RegulatorySource | None = None,
    ) -> RegulatoryUpdate:
        """Create a regulatory update from a detected change.

        When an analyzer is configured its result populates the update,
        which is stored as analyzed. Without one, or when analysis fails,
        the update is stored as pending with type guidance and impact medium.

        Args:
            change: The detected change.
            source: The originating source, looked up when omitted.

        Returns:
            The stored RegulatoryUpdate.
        """
        if source is None:
            source = await self.get_source(change.source_id)

        analysis: ChangeAnalysis | None = None
        if self._analyzer is not None:
            try:
                analysis = await self._analyzer.analyze_change(
                    change.snippet,
                    source.name,
                    source.jurisdiction,
                    source.category,
                )
            except ExternalDependencyError as exc:
                logger.warning(
                    "Change analysis unavailable, storing pending update",
                    source_id=str(source.id),
                    error=exc.message,
                )

        related = list(source.related_frameworks or [])
        fields: dict[str, Any] = {
            "source_id": source.id,
            "framework_id": (analysis.framework_id if analysis else None) or (related[0] if related else None),
            "update_type": analysis.update_type if analysis else "guidance",
            "title": (analysis.title if analysis else None) or change_summary(change.source_name),
            "summary": (analysis.summary if analysis else None) or change.snippet[:SUMMARY_LENGTH],
            "original_url": change.url,
            "detected_at": change.detected_at,
            "impact_level": analysis.impact_level if analysis else "medium",
            "analysis": analysis.to_dict() if analysis else None,
            "recommended_actions": list(analysis.recommended_actions) if analysis else [],
            "status": "analyzed" if analysis else "pending",
        }
        regulatory_update = await self._update_repo.create(fields)
        logger.info(
            "Regulatory update created",
            update_id=str(regulatory_update.id),
            source_id=str(source.id),
            status=regulatory_update.status,
            impact_level=regulatory_update.impact_level,
        )
        return regulatory_update

    async def run_scheduled_checks(self, now: datetime | None = None) -> dict[str, int]:
        """Check up to one batch of due sources.

        Never raises. Every attempted source counts as checked; fetch or
        processing failures are counted in errors.

        Returns:
            Dict with checked, changes_detected and errors.
        """
        now = now or _now()
        checked = changes_detected = errors = 0

        for source in await self._source_repo.list_due(now, self._check_batch_size):
            checked += 1
            try:
                changes = await self.check_for_updates(source.id)
            except ExternalDependencyError:
                errors += 1
                continue
            except Exception:
                logger.exception("Unexpected error checking source", source_id=str(source.id))
                errors += 1
                continue

            for change in changes:
                try:
                    async with self._update_repo.savepoint():
                        await self.process_detected_change(change, source)
                    changes_detected += 1
                except Exception:
                    logger.exception("Failed to process detected change", source_id=str(source.id))
                    errors += 1

        logger.info(
            "Scheduled source checks completed",
            checked=checked,
            changes_detected=changes_detected,
            errors=errors,
        )
        return {"checked": checked, "changes_detected": changes_detected, "errors": errors}

    # -- Updates --------------------------------------------------------------

    async def get_update(self, update_id: uuid.UUID) -> RegulatoryUpdate:
        regulatory_update = await self._update_repo.get(update_id)
        if regulatory_update is None:
            raise NotFoundError(resource="RegulatoryUpdate", resource_id=str(update_id))
        return regulatory_update

    async def list_updates(
        self,
        source_id: uuid.UUID | None = None,
        framework_id: str | None = None,
        status: str | None = None,
        update_type: str | None = None,
        impact_level: str | None = None,
        limit: int = 100,
    ) -> list[RegulatoryUpdate]:
        return await self._update_repo.list_all(
            source_id=source_id,
            framework_id=framework_id,
            status=status,
            update_type=update_type,
            impact_level=impact_level,
            limit=limit,
        )

    async def get_pending_updates(self, limit: int = 50) -> list[RegulatoryUpdate]:
        """Pending and analyzed updates, most severe impact first."""
        return await self._update_repo.list_pending(limit)

    async def analyze_update(self, update_id: uuid.UUID) -> RegulatoryUpdate:
        """Run change analysis on a stored update and mark it analyzed.

        Raises:
            ExternalDependencyError: If no analyzer is configured or analysis fails.
        """
        regulatory_update = await self.get_update(update_id)
        if self._analyzer is None:
            raise ExternalDependencyError("Change analysis service is not configured", dependency="change_analysis")

        source = await self._source_repo.get(regulatory_update.source_id) if regulatory_update.source_id else None
        analysis = await self._analyzer.analyze_change(
            regulatory_update.summary,
            source.name if source else regulatory_update.title,
            source.jurisdiction if source else "global",
            source.category if source else "general",
        )

        regulatory_update.analysis = analysis.to_dict()
        regulatory_update.update_type = analysis.update_type
        regulatory_update.impact_level = analysis.impact_level
        regulatory_update.recommended_actions = list(analysis.recommended_actions)
        if regulatory_update.framework_id is None:
            regulatory_update.framework_id = analysis.framework_id
        if can_transition(REGULATORY_UPDATE_TRANSITIONS, regulatory_update.status, "analyzed"):
            regulatory_update.status = "analyzed"
        regulatory_update = await self._update_repo.save(regulatory_update)
        logger.info("Regulatory update analysed", update_id=str(update_id), impact_level=analysis.impact_level)
        return regulatory_update

    async def update_update_status(
        self,
        update_id: uuid.UUID,
        status: str,
        reviewed_by: uuid.UUID | None = None,
        review_notes: str | None = None,
    ) -> RegulatoryUpdate:
        """Move an update through its review lifecycle.

        Raises:
            ConflictError: If the transition is not allowed.
        """
        regulatory_update = await self.get_update(update_id)
        ensure_transition(REGULATORY_UPDATE_TRANSITIONS, regulatory_update.status, status, "RegulatoryUpdate")
        regulatory_update.status = status
        regulatory_update.reviewed_by = reviewed_by
        regulatory_update.reviewed_at = _now()
        if review_notes is not None:
            regulatory_update.review_notes = review_notes
        regulatory_update.controls_implemented = status == "implemented"
        regulatory_update = await self._update_repo.save(regulatory_update)
        logger.info("Regulatory update status changed", update_id=str(update_id), status=status)
        return regulatory_update

    async def mark_implemented(self, update_id: uuid.UUID, control_ids: list[str]) -> RegulatoryUpdate:
        """Mark an update implemented and link the controls that implement it."""
        regulatory_update = await self.get_update(update_id)
        ensure_transition(REGULATORY_UPDATE_TRANSITIONS, regulatory_update.status, "implemented", "RegulatoryUpdate")
        linked = list(regulatory_update.generated_controls or [])
        linked.extend(control_id for control_id in control_ids if control_id not in linked)
        regulatory_update.generated_controls = linked
        regulatory_update.controls_implemented = True
        regulatory_update.status = "implemented"
        regulatory_update = await self._update_repo.save(regulatory_update)
        logger.info("Regulatory update implemented", update_id=str(update_id), controls=len(control_ids))
        return regulatory_update

    async def notify_affected_tenants(self, update_id: uuid.UUID) -> list[uuid.UUID]:
        """Find tenants whose applicable frameworks the update touches and record them.

        Returns:
            Tenant ids notified.
        """
        regulatory_update = await self.get_update(update_id)
        frameworks: list[str] = []
        if regulatory_update.source_id is not None:
            source = await self._source_repo.get(regulatory_update.source_id)
            if source is not None:
                frameworks.extend(source.related_frameworks or [])
        if regulatory_update.framework_id and regulatory_update.framework_id not in frameworks:
            frameworks.append(regulatory_update.framework_id)

        tenants = await self._profile_repo.list_tenants_with_frameworks(frameworks)
        regulatory_update.notified_tenants = [str(tenant_id) for tenant_id in tenants]
        await self._update_repo.save(regulatory_update)
        logger.info(
            "Tenants notified of regulatory update",
            update_id=str(update_id),
            frameworks=frameworks,
            tenants=len(tenants),
        )
        return tenants


# ---------------------------------------------------------------------------
# Control generation
# ---------------------------------------------------------------------------


class ControlGenerationService:
    """Generation, validation, review and implementation of controls.

    Args:
        generated_repo: Repository for GeneratedControl.
        catalog_repo: Control catalog; target of implemented controls.
        cross_ref_repo: Repository for ControlCrossReference.
        run_repo: Generation request log.
        update_repo: Repository for RegulatoryUpdate.
        fetcher: Content fetcher for URL-based generation.
        classifier: Obligation extraction and classification strategy.
        scorer: Control similarity strategy.
    """

    def __init__(
        self,
        generated_repo: IGeneratedControlRepository,
        catalog_repo: IFrameworkCatalogRepository,
        cross_ref_repo: IControlCrossReferenceRepository,
        run_repo: IGenerationRunRepository,
        update_repo: IRegulatoryUpdateRepository,
        fetcher: IContentFetcher,
        classifier: TextClassifier,
        scorer: SimilarityScorer,
    ) -> None:
        self._generated_repo = generated_repo
        self._catalog_repo = catalog_repo
        self._cross_ref_repo = cross_ref_repo
        self._run_repo = run_repo
        self._update_repo = update_repo
        self._fetcher = fetcher
        self._classifier = classifier
        self._scorer = scorer

    async def generate_controls_from_text(
        self,
        framework_id: str,
        framework_name: str,
        text: str,
        context: GenerationContext | None = None,
        source_type: str = "text",
        source_reference: str | None = None,
    ) -> GenerationResult:
        """Segment a regulatory document and synthesize one control per obligation.

        A failing section is recorded as a recoverable GenerationError and
        the remaining sections are still processed.

        Args:
            framework_id: Target framework slug.
            framework_name: Target framework display name.
            text: Regulatory text.
            context: Provenance stored on each control.
            source_type: text | url | update, recorded in the run log.
            source_reference: URL or update id, recorded in the run log.

        Returns:
            GenerationResult with status success, partial or failed.
        """
        started = time.monotonic()
        run_id = uuid.uuid4()
        errors: list[GenerationError] = []
        candidates: list[ControlCandidate] = []
        context_dict = (context or GenerationContext()).to_dict()

        if not text.strip():
            errors.append(GenerationError("Document contains no text", recoverable=False))
        else:
            for section in segment_document(text):
                try:
                    candidates.extend(
                        synthesize_section(section, framework_id, framework_name, self._classifier, context_dict)
                    )
                except Exception as exc:
                    logger.warning(
                        "Section extraction failed",
                        framework_id=framework_id,
                        section=section.title,
                        error=str(exc),
                    )
                    errors.append(GenerationError(f"Extraction failed: {exc}", section=section.title))

        controls = await self._generated_repo.create_many(candidates)
        return await self._finish_run(
            run_id,
            framework_id,
            source_type,
            source_reference,
            controls,
            errors,
            started,
        )

    async def generate_controls_from_url(
        self,
        framework_id: str,
        framework_name: str,
        url: str,
        context: GenerationContext | None = None,
    ) -> GenerationResult:
        """Fetch a regulatory document and generate controls from it.

        An unreachable document degrades the result to partial with no
        controls instead of raising.
        """
        started = time.monotonic()
        context = context or GenerationContext()
        context.source_url = url
        try:
            text = await self._fetcher.fetch(url)
        except ExternalDependencyError as exc:
            logger.warning("Document fetch failed", framework_id=framework_id, url=url, error=exc.message)
            return await self._finish_run(
                uuid.uuid4(),
                framework_id,
                "url",
                url,
                [],
                [GenerationError(f"Failed to fetch document: {exc.message}")],
                started,
                status="partial",
            )
        return await self.generate_controls_from_text(
            framework_id,
            framework_name,
            text,
            context=context,
            source_type="url",
            source_reference=url,
        )

    async def generate_controls_from_update(self, update_id: uuid.UUID) -> GenerationResult:
        """Generate controls from the extracted requirements of a regulatory update.

        Raises:
            NotFoundError: If the update does not exist.
            ValidationError: If no framework can be determined for the update.
        """
        started = time.monotonic()
        regulatory_update = await self._update_repo.get(update_id)
        if regulatory_update is None:
            raise NotFoundError(resource="RegulatoryUpdate", resource_id=str(update_id))

        analysis = ChangeAnalysis.from_dict(regulatory_update.analysis)
        framework_id = regulatory_update.framework_id or (analysis.framework_id if analysis else None)
        if not framework_id:
            raise ValidationError("Regulatory update is not linked to a framework", field="framework_id")

        context = GenerationContext(
            source_document=regulatory_update.title,
            source_url=regulatory_update.original_url,
            source_update_id=str(regulatory_update.id),
        ).to_dict()
        requirements = analysis.extracted_requirements if analysis else []
        errors: list[GenerationError] = []
        candidates: list[ControlCandidate] = []
        if not requirements:
            errors.append(GenerationError("Update has no extracted requirements", recoverable=False))
        for position, requirement in enumerate(requirements, start=1):
            try:
                candidates.append(
                    control_from_requirement(requirement, framework_id, regulatory_update.title, position, context)
                )
            except ValueError as exc:
                errors.append(GenerationError(str(exc), section=requirement.id or None))

        controls = await self._generated_repo.create_many(candidates)
        if controls:
            regulatory_update.generated_controls = [
                *(regulatory_update.generated_controls or []),
                *(str(control.id) for control in controls),
            ]
            if can_transition(REGULATORY_UPDATE_TRANSITIONS, regulatory_update.status, "analyzed"):
                regulatory_update.status = "analyzed"
            await self._update_repo.save(regulatory_update)

        return await self._finish_run(
            uuid.uuid4(),
            framework_id,
            "update",
            str(update_id),
            controls,
            errors,
            started,
        )

    async def _finish_run(
        self,
        run_id: uuid.UUID,
        framework_id: str,
        source_type: str,
        source_reference: str | None,
        controls: list[GeneratedControl],
        errors: list[GenerationError],
        started: float,
        status: str | None = None,
    ) -> GenerationResult:
        if status is None:
            if not errors:
                status = "success"
            elif controls:
                status = "partial"
            else:
                status = "failed"
        elapsed_ms = int((time.monotonic() - started) * 1000)
        await self._run_repo.log(
            run_id=run_id,
            framework_id=framework_id,
            source_type=source_type,
            source_reference=source_reference,
            status=status,
            controls_generated=len(controls),
            errors=[error.to_dict() for error in errors],
            processing_time_ms=elapsed_ms,
        )
        logger.info(
            "Control generation completed",
            run_id=str(run_id),
            framework_id=framework_id,
            source_type=source_type,
            status=status,
            controls=len(controls),
            errors=len(errors),
        )
        return GenerationResult(
            run_id=run_id,
            framework_id=framework_id,
            status=status,
            controls=controls,
            errors=errors,
            processing_time_ms=elapsed_ms,
        )

    # -- Validation and review ------------------------------------------------

    async def validate_controls(self, control_ids: list[uuid.UUID]) -> ValidationResult:
        """Validate stored generated controls against the catalog."""
        controls = await self._generated_repo.get_many(control_ids)
        existing = await self._catalog_repo.existing_control_ids([control.control_id for control in controls])
        return validate_controls(controls, existing)

    async def refine_controls(self, control_ids: list[uuid.UUID], feedback: str) -> list[ControlRefinement]:
        """Apply reviewer feedback to generated controls.

        Returns:
            The refinements that were applied.
        """
        controls = await self._generated_repo.get_many(control_ids)
        refinements = plan_refinements(controls, feedback)
        by_id = {control.id: control for control in controls}
        for refinement in refinements:
            control = by_id[refinement.control_id]
            setattr(control, refinement.field, refinement.new_value)
            await self._generated_repo.save(control)
        logger.info("Generated controls refined", controls=len(controls), refinements=len(refinements))
        return refinements

    async def get_generated_control(self, control_id: uuid.UUID) -> GeneratedControl:
        control = await self._generated_repo.get(control_id)
        if control is None:
            raise NotFoundError(resource="GeneratedControl", resource_id=str(control_id))
        return control

    async def list_generated_controls(
        self,
        framework_id: str | None = None,
        status: str | None = None,
        min_confidence: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[GeneratedControl], int]:
        return await self._generated_repo.list_all(
            framework_id=framework_id,
            status=status,
            min_confidence=min_confidence,
            limit=limit,
            offset=offset,
        )

    async def get_pending_review_controls(self, limit: int = 20) -> list[GeneratedControl]:
        return await self._generated_repo.list_pending_review(limit)

    async def submit_for_review(self, control_id: uuid.UUID) -> GeneratedControl:
        return await self._transition(control_id, "pending_review")

    async def approve_control(
        self,
        control_id: uuid.UUID,
        reviewed_by: uuid.UUID | None = None,
        review_notes: str | None = None,
    ) -> GeneratedControl:
        return await self._transition(control_id, "approved", reviewed_by, review_notes)

    async def reject_control(
        self,
        control_id: uuid.UUID,
        reviewed_by: uuid.UUID | None = None,
        review_notes: str | None = None,
    ) -> GeneratedControl:
        return await self._transition(control_id, "rejected", reviewed_by, review_notes)

    async def _transition(
        self,
        control_id: uuid.UUID,
        status: str,
        reviewed_by: uuid.UUID | None = None,
        review_notes: str | None = None,
    ) -> GeneratedControl:
        control = await self.get_generated_control(control_id)
        ensure_transition(GENERATED_CONTROL_TRANSITIONS, control.status, status, "GeneratedControl")
        control.status = status
        if status in ("approved", "rejected"):
            control.reviewed_by = reviewed_by
            control.reviewed_at = _now()
            control.review_notes = review_notes
        control = await self._generated_repo.save(control)
        logger.info("Generated control status changed", control_id=str(control_id), status=status)
        return control

    async def implement_controls(
        self,
        control_ids: list[uuid.UUID],
        reviewed_by: uuid.UUID | None = None,
    ) -> ImplementationOutcome:
        """Copy approved controls into the catalog.

        Each id is handled independently: missing, already implemented,
        unapproved or critically invalid controls are reported in the
        outcome and do not stop the others.

        Args:
            control_ids: GeneratedControl ids.
            reviewed_by: Acting reviewer.

        Returns:
            ImplementationOutcome listing implemented and failed ids.
        """
        outcome = ImplementationOutcome()
        for control_id in control_ids:
            ref = str(control_id)
            control = await self._generated_repo.get(control_id)
            if control is None:
                outcome.failed.append(ref)
                outcome.errors.append(f"Control {ref} not found")
                continue
            if control.status == "implemented":
                outcome.failed.append(ref)
                outcome.errors.append(f"Control {control.control_id} is already implemented")
                continue
            if control.status != "approved":
                outcome.failed.append(ref)
                outcome.errors.append(f"Control {control.control_id} must be approved before implementation")
                continue

            existing = await self._catalog_repo.existing_control_ids([control.control_id])
            critical = validate_controls([control], existing).critical_for(ref)
            if critical:
                outcome.failed.append(ref)
                outcome.errors.extend(f"Control {control.control_id}: {issue.message}" for issue in critical)
                continue

            await self._catalog_repo.add_control_from_generated(control)
            control.status = "implemented"
            if reviewed_by is not None:
                control.reviewed_by = reviewed_by
            await self._generated_repo.save(control)
            outcome.implemented.append(ref)

        logger.info(
            "Control implementation completed",
            implemented=len(outcome.implemented),
            failed=len(outcome.failed),
        )
        return outcome

    async def map_to_existing_controls(self, control_id: uuid.UUID) -> list[ControlMapping]:
        """Map a generated control to similar active controls in other frameworks.

        Mappings at or above the threshold are persisted as cross references
        and the target ids recorded as the control's related controls.

        Returns:
            Mappings sorted by similarity, descending.
        """
        control = await self.get_generated_control(control_id)
        mappings: list[ControlMapping] = []
        for existing in await self._catalog_repo.list_active_controls_outside(control.framework_id):
            similarity = self._scorer.score(control, existing)
            if similarity < MAPPING_THRESHOLD:
                continue
            mapping_type = mapping_type_for(similarity)
            await self._cross_ref_repo.upsert(
                control.control_id,
                existing.control_id,
                existing.framework_id,
                mapping_type,
                similarity,
            )
            mappings.append(
                ControlMapping(
                    source_control_id=control.control_id,
                    target_control_id=existing.control_id,
                    target_framework_id=existing.framework_id,
                    similarity=similarity,
                    mapping_type=mapping_type,
                )
            )

        mappings.sort(key=lambda mapping: mapping.similarity, reverse=True)
        control.related_controls = [mapping.target_control_id for mapping in mappings]
        await self._generated_repo.save(control)
        logger.info("Control mapped to catalog", control_id=control.control_id, mappings=len(mappings))
        return mappings


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class AssessmentService:
    """Assessment schedules and evidence-based execution.

    Args:
        schedule_repo: Repository for AutoAssessmentSchedule.
        result_repo: Insert-only repository for AutoAssessmentResult.
        catalog_repo: Framework and control catalog.
        evidence_repo: Tenant evidence.
        control_assessment_repo: Per-control rating history.
        improvement_repo: Applied learning improvements.
        batch_size: Maximum schedules executed per scheduled run.
    """

    def __init__(
        self,
        schedule_repo: IScheduleRepository,
        result_repo: IAssessmentResultRepository,
        catalog_repo: IFrameworkCatalogRepository,
        evidence_repo: IEvidenceRepository,
        control_assessment_repo: IControlAssessmentRepository,
        improvement_repo: IImprovementRepository,
        batch_size: int = 10,
    ) -> None:
        self._schedule_repo = schedule_repo
        self._result_repo = result_repo
        self._catalog_repo = catalog_repo
        self._evidence_repo = evidence_repo
        self._control_assessment_repo = control_assessment_repo
        self._improvement_repo = improvement_repo
        self._batch_size = batch_size

    # -- Schedules ------------------------------------------------------------

    async def create_schedule(
        self,
        tenant: TenantContext,
        framework_id: str,
        frequency: str,
        assessment_config: AssessmentConfig | None = None,
        notification_config: NotificationConfig | None = None,
        start_at: datetime | None = None,
    ) -> AutoAssessmentSchedule:
        """Create a recurring assessment of one framework.

        Raises:
            NotFoundError: If the framework is not in the catalog.
            ValidationError: If the frequency is unsupported.
        """
        if await self._catalog_repo.get_framework(framework_id) is None:
            raise NotFoundError(resource="Framework", resource_id=framework_id)
        next_run_at = calculate_next_run_time(frequency, start_at or _now())
        schedule = await self._schedule_repo.create(
            tenant.tenant_id,
            {
                "framework_id": framework_id,
                "frequency": frequency,
                "next_run_at": next_run_at,
                "is_active": True,
                "assessment_config": (assessment_config or AssessmentConfig()).to_dict(),
                "notification_config": (notification_config or NotificationConfig()).to_dict(),
                "created_by": tenant.user_id,
            },
        )
        logger.info(
            "Assessment schedule created",
            schedule_id=str(schedule.id),
            tenant_id=str(tenant.tenant_id),
            framework_id=framework_id,
            next_run_at=next_run_at.isoformat(),
        )
        return schedule

    async def get_schedule(self, tenant: TenantContext, schedule_id: uuid.UUID) -> AutoAssessmentSchedule:
        schedule = await self._schedule_repo.get(schedule_id, tenant.tenant_id)
        if schedule is None:
            raise NotFoundError(resource="AutoAssessmentSchedule", resource_id=str(schedule_id))
        return schedule

    async def list_schedules(
        self,
        tenant: TenantContext,
        framework_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[AutoAssessmentSchedule]:
        return await self._schedule_repo.list_all(tenant.tenant_id, framework_id=framework_id, is_active=is_active)

    async def update_schedule_frequency(
        self,
        tenant: TenantContext,
        schedule_id: uuid.UUID,
        frequency: str,
    ) -> AutoAssessmentSchedule:
        """Change a schedule's frequency and recompute its next run from now."""
        schedule = await self.get_schedule(tenant, schedule_id)
        schedule.next_run_at = calculate_next_run_time(frequency, _now())
        schedule.frequency = frequency
        schedule = await self._schedule_repo.save(schedule)
        logger.info("Assessment schedule frequency changed", schedule_id=str(schedule_id), frequency=frequency)
        return schedule

    async def set_schedule_active(
        self,
        tenant: TenantContext,
        schedule_id: uuid.UUID,
        is_active: bool,
    ) -> AutoAssessmentSchedule:
        """Pause or resume a schedule. A resumed schedule never runs in the past."""
        schedule = await self.get_schedule(tenant, schedule_id)
        now = _now()
        if is_active and not schedule.is_active and schedule.next_run_at <= now:
            schedule.next_run_at = calculate_next_run_time(schedule.frequency, now)
        schedule.is_active = is_active
        schedule = await self._schedule_repo.save(schedule)
        logger.info("Assessment schedule toggled", schedule_id=str(schedule_id), is_active=is_active)
        return schedule

    async def delete_schedule(self, tenant: TenantContext, schedule_id: uuid.UUID) -> None:
        if not await self._schedule_repo.delete(schedule_id, tenant.tenant_id):
            raise NotFoundError(resource="AutoAssessmentSchedule", resource_id=str(schedule_id))
        logger.info("Assessment schedule deleted", schedule_id=str(schedule_id))

    # -- Execution ------------------------------------------------------------

    async def run_assessment(
        self,
        tenant_id: uuid.UUID,
        framework_id: str,
        schedule_id: uuid.UUID | None = None,
        config: AssessmentConfig | None = None,
    ) -> AutoAssessmentResult:
        """Rate every active control of a framework from the tenant's evidence.

        Args:
            tenant_id: Tenant being assessed.
            framework_id: Framework to assess.
            schedule_id: Originating schedule, if any.
            config: Execution options; control_subset restricts the controls.

        Returns:
            The stored AutoAssessmentResult with status completed.

        Raises:
            NotFoundError: If the framework is not in the catalog.
        """
        config = config or AssessmentConfig()
        started_at = _now()
        if await self._catalog_repo.get_framework(framework_id) is None:
            raise NotFoundError(resource="Framework", resource_id=framework_id)

        controls = await self._catalog_repo.list_active_controls(framework_id, config.control_subset)
        counts = RatingCounts()
        findings: list[AssessmentFinding] = []

        for control in controls:
            prior = await self._control_assessment_repo.latest(tenant_id, control.control_id)
            if config.include_evidence:
                evidence = await self._evidence_repo.list_recent_by_types(
                    tenant_id, list(control.evidence_types or []), EVIDENCE_SAMPLE_SIZE
                )
                verdict = rate_evidence(len(evidence), sum(1 for item in evidence if item.verified))
                improvements = await self._improvement_repo.count_for_control(control.control_id)
                rating = verdict.rating
                confidence = apply_learning_boost(verdict.confidence, improvements)
                rationale = verdict.rationale
                recommendations = list(verdict.recommendations)
                reviewed = [item.file_name for item in evidence]
            else:
                rating = "not_applicable"
                confidence = 0.0
                rationale = "Evidence review disabled for this schedule."
                recommendations = []
                reviewed = []

            counts.add(rating)
            findings.append(
                AssessmentFinding(
                    control_id=control.control_id,
                    control_title=control.title,
                    rating=rating,
                    confidence=confidence,
                    rationale=rationale,
                    recommendations=recommendations,
                    requires_review=needs_review(
                        confidence,
                        rating,
                        prior.rating if prior else None,
                        config.confidence_threshold,
                    ),
                    evidence_reviewed=reviewed,
                )
            )

        completed_at = _now()
        result = await self._result_repo.create(
            tenant_id,
            {
                "schedule_id": schedule_id,
                "framework_id": framework_id,
                "status": "completed",
                "started_at": started_at,
                "completed_at": completed_at,
                "total_controls": len(controls),
                "assessed_controls": counts.assessed,
                "compliant_count": counts.compliant,
                "partially_compliant_count": counts.partially_compliant,
                "non_compliant_count": counts.non_compliant,
                "not_applicable_count": counts.not_applicable,
                "overall_score": overall_score(counts),
                "findings": [finding.to_dict() for finding in findings],
            },
        )
        await self._control_assessment_repo.create_many(
            tenant_id,
            [
                {
                    "control_id": finding.control_id,
                    "assessment_result_id": result.id,
                    "rating": finding.rating,
                    "rationale": finding.rationale,
                    "confidence": finding.confidence,
                    "requires_review": finding.requires_review,
                    "assessed_at": completed_at,
                }
                for finding in findings
            ],
        )
        logger.info(
            "Assessment completed",
            result_id=str(result.id),
            tenant_id=str(tenant_id),
            framework_id=framework_id,
            controls=len(controls),
            overall_score=result.overall_score,
            requires_review=sum(1 for finding in findings if finding.requires_review),
        )
        return result

    async def run_scheduled_assessments(self, now: datetime | None = None) -> dict[str, int]:
        """Execute up to one batch of due schedules.

        Never raises. Every due schedule has next_run_at advanced and its
        last run status recorded, whether the run succeeded or failed. A
        failed run stores a failed result carrying the error message.

        Returns:
            Dict with executed, succeeded and failed.
        """
        now = now or _now()
        executed = succeeded = failed = 0

        for schedule in await self._schedule_repo.list_due(now, self._batch_size):
            executed += 1
            try:
                result = await self._execute_schedule(schedule, now)
                await self._schedule_repo.record_run(
                    schedule.id,
                    now,
                    result.status,
                    calculate_next_run_time(schedule.frequency, now),
                )
            except Exception:
                logger.exception("Scheduled assessment bookkeeping failed", schedule_id=str(schedule.id))
                failed += 1
                continue

            if result.status == "completed":
                succeeded += 1
            else:
                failed += 1
            self._notify(schedule, result)

        logger.info(
            "Scheduled assessments completed",
            executed=executed,
            succeeded=succeeded,
            failed=failed,
        )
        return {"executed": executed, "succeeded": succeeded, "failed": failed}

    async def _execute_schedule(self, schedule: AutoAssessmentSchedule, now: datetime) -> AutoAssessmentResult:
        config = AssessmentConfig.from_dict(schedule.assessment_config)
        try:
            async with self._schedule_repo.savepoint():
                return await self.run_assessment(schedule.tenant_id, schedule.framework_id, schedule.id, config)
        except Exception as exc:
            logger.warning(
                "Scheduled assessment failed",
                schedule_id=str(schedule.id),
                framework_id=schedule.framework_id,
                error=str(exc),
            )
            return await self._result_repo.create(
                schedule.tenant_id,
                {
                    "schedule_id": schedule.id,
                    "framework_id": schedule.framework_id,
                    "status": "failed",
                    "started_at": now,
                    "completed_at": _now(),
                    "error_message": str(exc),
                    "findings": [],
                },
            )

    def _notify(self, schedule: AutoAssessmentSchedule, result: AutoAssessmentResult) -> None:
        config = NotificationConfig.from_dict(schedule.notification_config)
        should_notify = (
            (config.notify_on_completion and result.status == "completed")
            or (config.notify_on_failure and result.status == "failed")
            or (config.notify_on_non_compliance and (result.non_compliant_count or 0) > 0)
        )
        if not should_notify:
            return
        logger.info(
            "Assessment notification due",
            schedule_id=str(schedule.id),
            result_id=str(result.id),
            status=result.status,
            email_recipients=config.email_recipients,
            webhook_configured=config.webhook_url is not None,
            has_targets=config.has_targets,
        )

    # -- Results --------------------------------------------------------------

    async def get_result(self, tenant: TenantContext, result_id: uuid.UUID) -> AutoAssessmentResult:
        result = await self._result_repo.get(result_id, tenant.tenant_id)
        if result is None:
            raise NotFoundError(resource="AutoAssessmentResult", resource_id=str(result_id))
        return result

    async def list_results(
        self,
        tenant: TenantContext,
        framework_id: str | None = None,
        limit: int = 20,
    ) -> list[AutoAssessmentResult]:
        return await self._result_repo.list_all(tenant.tenant_id, framework_id=framework_id, limit=limit)


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------


class LearningService:
    """Feedback capture and the improvement loop.

    Args:
        feedback_repo: Repository for LearningFeedback.
        improvement_repo: Applied improvements, at most one per feedback.
        pattern_repo: Evidence patterns.
        control_assessment_repo: Per-control rating history.
        result_repo: Assessment results.
        catalog_repo: Control catalog, whose prompts are rewritten.
        batch_size: Maximum feedback rows drained per run.
    """

    def __init__(
        self,
        feedback_repo: IFeedbackRepository,
        improvement_repo: IImprovementRepository,
        pattern_repo: IPatternRepository,
        control_assessment_repo: IControlAssessmentRepository,
        result_repo: IAssessmentResultRepository,
        catalog_repo: IFrameworkCatalogRepository,
        batch_size: int = 50,
    ) -> None:
        self._feedback_repo = feedback_repo
        self._improvement_repo = improvement_repo
        self._pattern_repo = pattern_repo
        self._control_assessment_repo = control_assessment_repo
        self._result_repo = result_repo
        self._catalog_repo = catalog_repo
        self._batch_size = batch_size

    async def record_feedback(
        self,
        tenant: TenantContext,
        control_id: str,
        event_type: str,
        assessment_id: uuid.UUID | None = None,
        original_rating: str | None = None,
        corrected_rating: str | None = None,
        feedback: str | None = None,
        improvement_suggestion: str | None = None,
    ) -> LearningFeedback:
        """Store a human correction.

        The rationale of the control's latest assessment is snapshotted
        onto the row so later reassessments cannot rewrite it.
        """
        latest = await self._control_assessment_repo.latest(tenant.tenant_id, control_id)
        return await self._feedback_repo.create(
            tenant.tenant_id,
            {
                "assessment_id": assessment_id,
                "control_id": control_id,
                "event_type": event_type,
                "original_rating": original_rating or (latest.rating if latest else None),
                "corrected_rating": corrected_rating,
                "original_rationale": latest.rationale if latest else None,
                "feedback": feedback,
                "improvement_suggestion": improvement_suggestion,
                "submitted_by": tenant.user_id,
            },
        )

    async def process_feedback(self) -> dict[str, int]:
        """Drain up to one batch of unprocessed feedback, oldest first.

        Each row runs in its own savepoint; a failing row is logged, left
        unprocessed and retried on the next run.

        Returns:
            Dict with processed and applied.
        """
        processed = applied = 0
        for feedback in await self._feedback_repo.list_unprocessed(self._batch_size):
            try:
                async with self._feedback_repo.savepoint():
                    was_applied = await self._process_one(feedback)
            except Exception:
                logger.exception("Feedback processing failed", feedback_id=str(feedback.id))
                continue
            processed += 1
            if was_applied:
                applied += 1

        logger.info("Feedback processing completed", processed=processed, applied=applied)
        return {"processed": processed, "applied": applied}

    async def _process_one(self, feedback: LearningFeedback) -> bool:
        now = _now()
        if await self._improvement_repo.exists_for_feedback(feedback.id):
            await self._feedback_repo.mark_processed(feedback, now, applied=True)
            return False

        decision = classify_feedback(feedback.event_type, feedback.improvement_suggestion)
        if not decision.should_apply:
            await self._feedback_repo.mark_processed(feedback, now, applied=False)
            logger.info(
                "Feedback not applied",
                feedback_id=str(feedback.id),
                event_type=feedback.event_type,
                reason=decision.reason,
            )
            return False

        original_prompt: str | None = None
        improved_prompt: str | None = None
        if feedback.event_type in PROMPT_REWRITING_EVENTS:
            control = await self._catalog_repo.get_control(feedback.control_id)
            if control is not None:
                original_prompt = control.ai_assessment_prompt or ""
                improved_prompt = generate_improved_prompt(
                    original_prompt,
                    feedback.feedback,
                    feedback.improvement_suggestion,
                    feedback.event_type,
                )
                await self._catalog_repo.update_control_prompt(control, improved_prompt)

        if feedback.event_type == "evidence_pattern":
            await self._pattern_repo.record(
                feedback.tenant_id,
                feedback.control_id,
                (feedback.feedback or feedback.control_id)[:255],
                feedback.corrected_rating or feedback.original_rating or "unknown",
                now,
            )

        await self._improvement_repo.create(
            {
                "tenant_id": feedback.tenant_id,
                "feedback_id": feedback.id,
                "control_id": feedback.control_id,
                "event_type": feedback.event_type,
                "reason": decision.reason,
                "suggested_action": decision.suggested_action,
                "original_prompt": original_prompt,
                "improved_prompt": improved_prompt,
            }
        )
        await self._feedback_repo.mark_processed(feedback, now, applied=True)
        logger.info(
            "Feedback applied",
            feedback_id=str(feedback.id),
            control_id=feedback.control_id,
            action=decision.suggested_action,
        )
        return True

    async def learn_from_assessment(self, tenant: TenantContext, result_id: uuid.UUID) -> dict[str, int]:
        """Record evidence patterns and queue prompt suggestions from one result.

        A control whose review flag has fired at least three times gets a
        prompt_improvement feedback row, unless one is already pending.

        Returns:
            Dict with patterns and improvements.
        """
        result = await self._result_repo.get(result_id, tenant.tenant_id)
        if result is None:
            raise NotFoundError(resource="AutoAssessmentResult", resource_id=str(result_id))

        now = _now()
        patterns = improvements = 0
        for finding in (AssessmentFinding.from_dict(item) for item in result.findings or []):
            if finding.evidence_reviewed:
                await self._pattern_repo.record(
                    tenant.tenant_id,
                    finding.control_id,
                    evidence_pattern_key(finding.evidence_reviewed),
                    finding.rating,
                    now,
                )
                patterns += 1

            if not finding.requires_review:
                continue
            flags = await self._control_assessment_repo.count_review_flags(tenant.tenant_id, finding.control_id)
            if flags < REVIEW_SUGGESTION_THRESHOLD:
                continue
            if await self._feedback_repo.has_pending_suggestion(tenant.tenant_id, finding.control_id):
                continue
            await self._feedback_repo.create(
                tenant.tenant_id,
                {
                    "assessment_id": result.id,
                    "control_id": finding.control_id,
                    "event_type": "prompt_improvement",
                    "original_rating": finding.rating,
                    "original_rationale": finding.rationale,
                    "feedback": REVIEW_FEEDBACK_TEXT,
                    "improvement_suggestion": review_suggestion_text(finding.rationale),
                },
            )
            improvements += 1

        logger.info(
            "Learned from assessment",
            result_id=str(result_id),
            patterns=patterns,
            improvements=improvements,
        )
        return {"patterns": patterns, "improvements": improvements}

    async def get_learning_metrics(self, tenant_id: uuid.UUID | None = None) -> LearningMetrics:
        """Aggregate feedback metrics, across all tenants when tenant_id is None."""
        total = await self._feedback_repo.count(tenant_id=tenant_id)
        if total == 0:
            return LearningMetrics()

        applied = await self._feedback_repo.count(tenant_id=tenant_id, applied=True)
        false_positives = await self._feedback_repo.count(tenant_id=tenant_id, event_type="false_positive")
        false_negatives = await self._feedback_repo.count(tenant_id=tenant_id, event_type="false_negative")
        pending = await self._feedback_repo.count(tenant_id=tenant_id, unprocessed=True)

        top = await self._feedback_repo.top_applied_controls(tenant_id, limit=10)
        titles = await self._catalog_repo.control_titles([control_id for control_id, _ in top])
        return LearningMetrics(
            total_feedback=total,
            applied_improvements=applied,
            false_positive_rate=false_positives / total,
            false_negative_rate=false_negatives / total,
            pending_review=pending,
            average_confidence_gain=CONFIDENCE_GAIN_PER_IMPROVEMENT if applied > 0 else 0.0,
            top_improved_controls=[
                ControlPerformance(
                    control_id=control_id,
                    control_title=titles.get(control_id, "Unknown"),
                    feedback_count=count,
                    confidence_change=round(count * CONFIDENCE_GAIN_PER_IMPROVEMENT, 4),
                )
                for control_id, count in top
            ],
        )

    async def improve_control_prompt(
        self,
        control_id: str,
        feedback: str,
        suggestion: str | None = None,
        event_type: str | None = None,
    ) -> str:
        """Rewrite a catalog control's assessment prompt from feedback.

        Returns:
            The new prompt.

        Raises:
            NotFoundError: If the control is not in the catalog.
        """
        control = await self._catalog_repo.get_control(control_id)
        if control is None:
            raise NotFoundError(resource="CatalogControl", resource_id=control_id)
        improved = generate_improved_prompt(control.ai_assessment_prompt or "", feedback, suggestion, event_type)
        await self._catalog_repo.update_control_prompt(control, improved)
        logger.info("Control prompt improved", control_id=control_id)
        return improved
