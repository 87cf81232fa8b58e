"""API router for aumos-compliance-learning.

All endpoints are registered here and included in main.py under the
/api/v1 prefix. Routes are thin — all business logic lives in the
service layer. Request-scoped services are assembled by the dependency
factories below from the DB session and the shared collaborators that
the application lifespan stores on app.state.

Endpoints (under /learning):
- POST/GET/PUT/DELETE /profile                         — Entity profile
- POST    /discover                                    — Framework discovery
- GET     /analyze-relevance/{framework_id}            — Relevance detail
- POST    /suggestions/{id}/accept|reject              — Suggestion decisions
- POST/GET /discovered-frameworks                      — Candidate frameworks
- PATCH   /discovered-frameworks/{id}/status           — Candidate lifecycle
- POST/GET /sources                                    — Regulatory sources
- PATCH   /sources/{id}/status, DELETE /sources/{id}   — Source management
- POST    /sources/{id}/check, /sources/run-scheduled  — Source checks
- GET     /updates, /updates/pending, /updates/{id}    — Regulatory updates
- POST    /updates/{id}/analyze|status|implement|notify
- POST    /updates/{id}/generate-controls              — Generate from update
- POST    /generate-from-text, /generate-from-url      — Control generation
- POST    /validate, /refine, /implement               — Control review
- GET     /generated-controls, /pending-review         — Generated controls
- POST    /generated-controls/{id}/submit|approve|reject
- GET     /generated-controls/{id}/mappings            — Cross-framework mappings
- POST/GET /schedules, PATCH /schedules/{id}/frequency|active
- POST    /run/{framework_id}, /run-scheduled-assessments
- GET     /results, /results/{id}                      — Assessment results
- POST    /feedback, /process-feedback, /learn-from-assessment/{id}
- GET     /metrics, POST /controls/{control_id}/improve-prompt
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from aumos_compliance_learning.adapters.repositories import (
    AssessmentResultRepository,
    ControlAssessmentRepository,
    ControlCrossReferenceRepository,
    DiscoveredFrameworkRepository,
    EntityProfileRepository,
    EvidenceRepository,
    FeedbackRepository,
    FrameworkCatalogRepository,
    GeneratedControlRepository,
    GenerationRunRepository,
    ImprovementRepository,
    PatternRepository,
    RegulatorySourceRepository,
    RegulatoryUpdateRepository,
    ScheduleRepository,
)
from aumos_compliance_learning.api.schemas import (
    AssessmentResultResponse,
    ControlIdsRequest,
    ControlMappingResponse,
    ControlRefinementResponse,
    ControlReviewRequest,
    DetectedChangeResponse,
    DiscoveredFrameworkCreateRequest,
    DiscoveredFrameworkListResponse,
    DiscoveredFrameworkResponse,
    DiscoveredFrameworkStatusRequest,
    EntityProfileCreateRequest,
    EntityProfileResponse,
    EntityProfileUpdateRequest,
    FeedbackCreateRequest,
    FeedbackProcessingResponse,
    FeedbackResponse,
    FrameworkSuggestionResponse,
    GenerateFromTextRequest,
    GenerateFromUrlRequest,
    GeneratedControlListResponse,
    GeneratedControlResponse,
    GenerationContextRequest,
    GenerationResultResponse,
    ImplementationOutcomeResponse,
    ImprovePromptRequest,
    ImprovePromptResponse,
    LearnFromAssessmentResponse,
    LearningMetricsResponse,
    MarkImplementedRequest,
    NotifiedTenantsResponse,
    RefineControlsRequest,
    RegulatorySourceCreateRequest,
    RegulatorySourceResponse,
    RegulatorySourceStatusRequest,
    RegulatoryUpdateResponse,
    RegulatoryUpdateStatusRequest,
    RelevanceAssessmentResponse,
    RunAssessmentRequest,
    ScheduleActiveRequest,
    ScheduleCreateRequest,
    ScheduledAssessmentsResponse,
    ScheduledChecksResponse,
    ScheduleFrequencyRequest,
    ScheduleResponse,
    SourceCheckResponse,
    SuggestionDecisionRequest,
    SuggestionOutcomeResponse,
    ValidationResultResponse,
)
from aumos_compliance_learning.core.database import get_db_session
from aumos_compliance_learning.core.domain import AssessmentConfig, GenerationContext, NotificationConfig
from aumos_compliance_learning.core.services import (
    AssessmentService,
    ControlGenerationService,
    LearningService,
    MonitoringService,
    ProfilingService,
)
from aumos_compliance_learning.core.tenancy import TenantContext, get_current_tenant
from aumos_compliance_learning.errors import ExternalDependencyError
from aumos_compliance_learning.observability import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/learning", tags=["compliance-learning"])

Tenant = Annotated[TenantContext, Depends(get_current_tenant)]
Session = Annotated[AsyncSession, Depends(get_db_session)]


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_profiling_service(session: Session) -> ProfilingService:
    """Construct ProfilingService with injected repositories."""
    return ProfilingService(
        profile_repo=EntityProfileRepository(session),
        catalog_repo=FrameworkCatalogRepository(session),
        discovered_repo=DiscoveredFrameworkRepository(session),
    )


def get_monitoring_service(request: Request, session: Session) -> MonitoringService:
    """Construct MonitoringService with the shared fetcher and optional analyzer.

    Args:
        request: Current request; collaborators come from app.state.
        session: Primary DB session.

    Returns:
        Fully wired MonitoringService instance.
    """
    state = request.app.state
    return MonitoringService(
        source_repo=RegulatorySourceRepository(session),
        update_repo=RegulatoryUpdateRepository(session),
        profile_repo=EntityProfileRepository(session),
        fetcher=state.fetcher,
        analyzer=state.analyzer,
        failure_threshold=state.settings.source_failure_threshold,
        check_batch_size=state.settings.source_check_batch_size,
    )


def get_generation_service(request: Request, session: Session) -> ControlGenerationService:
    """Construct ControlGenerationService with the configured strategies."""
    state = request.app.state
    return ControlGenerationService(
        generated_repo=GeneratedControlRepository(session),
        catalog_repo=FrameworkCatalogRepository(session),
        cross_ref_repo=ControlCrossReferenceRepository(session),
        run_repo=GenerationRunRepository(session),
        update_repo=RegulatoryUpdateRepository(session),
        fetcher=state.fetcher,
        classifier=state.classifier,
        scorer=state.scorer,
    )


def get_assessment_service(request: Request, session: Session) -> AssessmentService:
    return AssessmentService(
        schedule_repo=ScheduleRepository(session),
        result_repo=AssessmentResultRepository(session),
        catalog_repo=FrameworkCatalogRepository(session),
        evidence_repo=EvidenceRepository(session),
        control_assessment_repo=ControlAssessmentRepository(session),
        improvement_repo=ImprovementRepository(session),
        batch_size=request.app.state.settings.assessment_batch_size,
    )


def get_learning_service(request: Request, session: Session) -> LearningService:
    return LearningService(
        feedback_repo=FeedbackRepository(session),
        improvement_repo=ImprovementRepository(session),
        pattern_repo=PatternRepository(session),
        control_assessment_repo=ControlAssessmentRepository(session),
        result_repo=AssessmentResultRepository(session),
        catalog_repo=FrameworkCatalogRepository(session),
        batch_size=request.app.state.settings.feedback_batch_size,
    )


Profiling = Annotated[ProfilingService, Depends(get_profiling_service)]
Monitoring = Annotated[MonitoringService, Depends(get_monitoring_service)]
Generation = Annotated[ControlGenerationService, Depends(get_generation_service)]
Assessment = Annotated[AssessmentService, Depends(get_assessment_service)]
Learning = Annotated[LearningService, Depends(get_learning_service)]


def _context(body: GenerationContextRequest | None) -> GenerationContext:
    return GenerationContext(**body.model_dump()) if body is not None else GenerationContext()


# ---------------------------------------------------------------------------
# Profiling endpoints
# ---------------------------------------------------------------------------


@router.post("/profile", response_model=EntityProfileResponse, status_code=201)
async def create_profile(
    request: EntityProfileCreateRequest,
    tenant: Tenant,
    service: Profiling,
) -> EntityProfileResponse:
    """Create the tenant's entity profile.

    Args:
        request: Profile attributes.
        tenant: Tenant context from the gateway headers.
        service: Injected ProfilingService.

    Returns:
        The created profile.
    """
    logger.info("POST /learning/profile", tenant_id=str(tenant.tenant_id), industry=request.industry)
    profile = await service.create_profile(tenant, request.model_dump(exclude_none=True))
    return EntityProfileResponse.model_validate(profile)


@router.get("/profile", response_model=EntityProfileResponse)
async def get_profile(tenant: Tenant, service: Profiling) -> EntityProfileResponse:
    return EntityProfileResponse.model_validate(await service.get_profile(tenant))


@router.put("/profile", response_model=EntityProfileResponse)
async def update_profile(
    request: EntityProfileUpdateRequest,
    tenant: Tenant,
    service: Profiling,
) -> EntityProfileResponse:
    """Partially update the tenant's profile; omitted fields are unchanged."""
    profile = await service.update_profile(tenant, request.model_dump(exclude_unset=True))
    return EntityProfileResponse.model_validate(profile)


@router.delete("/profile", status_code=204)
async def offboard_tenant(tenant: Tenant, service: Profiling) -> None:
    await service.offboard_tenant(tenant)


@router.post("/discover", response_model=list[FrameworkSuggestionResponse])
async def discover_frameworks(tenant: Tenant, service: Profiling) -> list[FrameworkSuggestionResponse]:
    """Score catalog and discovered frameworks against the tenant's profile.

    Returns:
        Suggestions with relevance at least 0.5, most relevant first.
    """
    suggestions = await service.discover_frameworks(tenant)
    return [FrameworkSuggestionResponse.model_validate(suggestion) for suggestion in suggestions]


@router.get("/analyze-relevance/{framework_id}", response_model=RelevanceAssessmentResponse)
async def analyze_relevance(framework_id: str, tenant: Tenant, service: Profiling) -> RelevanceAssessmentResponse:
    assessment = await service.analyze_relevance(tenant, framework_id)
    return RelevanceAssessmentResponse.model_validate(assessment)


@router.post("/suggestions/{suggestion_id}/accept", response_model=SuggestionOutcomeResponse)
async def accept_suggestion(suggestion_id: str, tenant: Tenant, service: Profiling) -> SuggestionOutcomeResponse:
    return SuggestionOutcomeResponse.model_validate(await service.accept_suggestion(tenant, suggestion_id))


@router.post("/suggestions/{suggestion_id}/reject", response_model=SuggestionOutcomeResponse)
async def reject_suggestion(
    suggestion_id: str,
    tenant: Tenant,
    service: Profiling,
    request: SuggestionDecisionRequest | None = None,
) -> SuggestionOutcomeResponse:
    outcome = await service.reject_suggestion(tenant, suggestion_id, reason=request.reason if request else None)
    return SuggestionOutcomeResponse.model_validate(outcome)


@router.post("/discovered-frameworks", response_model=DiscoveredFrameworkResponse, status_code=201)
async def add_discovered_framework(
    request: DiscoveredFrameworkCreateRequest,
    tenant: Tenant,
    service: Profiling,
) -> DiscoveredFrameworkResponse:
    logger.info("POST /learning/discovered-frameworks", tenant_id=str(tenant.tenant_id), name=request.name)
    framework = await service.add_discovered_framework(request.model_dump())
    return DiscoveredFrameworkResponse.model_validate(framework)


@router.get("/discovered-frameworks", response_model=DiscoveredFrameworkListResponse)
async def list_discovered_frameworks(
    tenant: Tenant,
    service: Profiling,
    status: str | None = Query(default=None),
    jurisdiction: str | None = Query(default=None),
    min_relevance: float | None = Query(default=None, ge=0.0, le=1.0),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> DiscoveredFrameworkListResponse:
    items, total = await service.list_discovered_frameworks(
        status=status,
        jurisdiction=jurisdiction,
        min_relevance=min_relevance,
        limit=limit,
        offset=offset,
    )
    return DiscoveredFrameworkListResponse(
        items=[DiscoveredFrameworkResponse.model_validate(item) for item in items],
        total=total,
    )


@router.patch("/discovered-frameworks/{framework_id}/status", response_model=DiscoveredFrameworkResponse)
async def update_discovered_framework_status(
    framework_id: uuid.UUID,
    request: DiscoveredFrameworkStatusRequest,
    tenant: Tenant,
    service: Profiling,
) -> DiscoveredFrameworkResponse:
    framework = await service.update_discovered_framework_status(
        framework_id,
        request.status,
        generated_framework_id=request.generated_framework_id,
    )
    return DiscoveredFrameworkResponse.model_validate(framework)


# ---------------------------------------------------------------------------
# Regulatory monitoring endpoints
# ---------------------------------------------------------------------------


@router.post("/sources", response_model=RegulatorySourceResponse, status_code=201)
async def add_source(
    request: RegulatorySourceCreateRequest,
    tenant: Tenant,
    service: Monitoring,
) -> RegulatorySourceResponse:
    logger.info("POST /learning/sources", tenant_id=str(tenant.tenant_id), url=request.url)
    return RegulatorySourceResponse.model_validate(await service.add_source(request.model_dump()))


@router.get("/sources", response_model=list[RegulatorySourceResponse])
async def list_sources(
    tenant: Tenant,
    service: Monitoring,
    is_active: bool | None = Query(default=None),
    jurisdiction: str | None = Query(default=None),
    category: str | None = Query(default=None),
) -> list[RegulatorySourceResponse]:
    sources = await service.list_sources(is_active=is_active, jurisdiction=jurisdiction, category=category)
    return [RegulatorySourceResponse.model_validate(source) for source in sources]


@router.patch("/sources/{source_id}/status", response_model=RegulatorySourceResponse)
async def update_source_status(
    source_id: uuid.UUID,
    request: RegulatorySourceStatusRequest,
    tenant: Tenant,
    service: Monitoring,
) -> RegulatorySourceResponse:
    return RegulatorySourceResponse.model_validate(await service.update_source_status(source_id, request.status))


@router.delete("/sources/{source_id}", status_code=204)
async def delete_source(source_id: uuid.UUID, tenant: Tenant, service: Monitoring) -> None:
    await service.delete_source(source_id)


@router.post("/sources/run-scheduled", response_model=ScheduledChecksResponse)
async def run_scheduled_checks(tenant: Tenant, service: Monitoring) -> ScheduledChecksResponse:
    """Check one batch of due regulatory sources."""
    return ScheduledChecksResponse(**await service.run_scheduled_checks())


@router.post("/sources/{source_id}/check", response_model=SourceCheckResponse)
async def check_source(
    source_id: uuid.UUID,
    tenant: Tenant,
    service: Monitoring,
    session: Session,
) -> SourceCheckResponse:
    """Check one source now and create an update for any detected change.

    A failed fetch still commits the source's failure counter and status
    before the error response is returned.

    Args:
        source_id: The source UUID.
        tenant: Tenant context from the gateway headers.
        service: Injected MonitoringService.
        session: Request session shared with the service.

    Returns:
        Detected changes and the updates created for them.
    """
    try:
        changes = await service.check_for_updates(source_id)
    except ExternalDependencyError:
        await session.commit()
        raise
    updates = [await service.process_detected_change(change) for change in changes]
    return SourceCheckResponse(
        changes=[DetectedChangeResponse.model_validate(change) for change in changes],
        updates=[RegulatoryUpdateResponse.model_validate(update) for update in updates],
    )


@router.get("/updates", response_model=list[RegulatoryUpdateResponse])
async def list_updates(
    tenant: Tenant,
    service: Monitoring,
    source_id: uuid.UUID | None = Query(default=None),
    framework_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    update_type: str | None = Query(default=None),
    impact_level: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
) -> list[RegulatoryUpdateResponse]:
    updates = await service.list_updates(
        source_id=source_id,
        framework_id=framework_id,
        status=status,
        update_type=update_type,
        impact_level=impact_level,
        limit=limit,
    )
    return [RegulatoryUpdateResponse.model_validate(update) for update in updates]


@router.get("/updates/pending", response_model=list[RegulatoryUpdateResponse])
async def get_pending_updates(
    tenant: Tenant,
    service: Monitoring,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[RegulatoryUpdateResponse]:
    """Pending and analyzed updates, most severe impact first."""
    return [RegulatoryUpdateResponse.model_validate(update) for update in await service.get_pending_updates(limit)]


@router.get("/updates/{update_id}", response_model=RegulatoryUpdateResponse)
async def get_update(update_id: uuid.UUID, tenant: Tenant, service: Monitoring) -> RegulatoryUpdateResponse:
    return RegulatoryUpdateResponse.model_validate(await service.get_update(update_id))


@router.post("/updates/{update_id}/analyze", response_model=RegulatoryUpdateResponse)
async def analyze_update(update_id: uuid.UUID, tenant: Tenant, service: Monitoring) -> RegulatoryUpdateResponse:
    return RegulatoryUpdateResponse.model_validate(await service.analyze_update(update_id))


@router.post("/updates/{update_id}/status", response_model=RegulatoryUpdateResponse)
async def update_update_status(
    update_id: uuid.UUID,
    request: RegulatoryUpdateStatusRequest,
    tenant: Tenant,
    service: Monitoring,
) -> RegulatoryUpdateResponse:
    regulatory_update = await service.update_update_status(
        update_id,
        request.status,
        reviewed_by=tenant.user_id,
        review_notes=request.review_notes,
    )
    return RegulatoryUpdateResponse.model_validate(regulatory_update)


@router.post("/updates/{update_id}/implement", response_model=RegulatoryUpdateResponse)
async def mark_update_implemented(
    update_id: uuid.UUID,
    request: MarkImplementedRequest,
    tenant: Tenant,
    service: Monitoring,
) -> RegulatoryUpdateResponse:
    return RegulatoryUpdateResponse.model_validate(await service.mark_implemented(update_id, request.control_ids))


@router.post("/updates/{update_id}/notify", response_model=NotifiedTenantsResponse)
async def notify_affected_tenants(
    update_id: uuid.UUID,
    tenant: Tenant,
    service: Monitoring,
) -> NotifiedTenantsResponse:
    return NotifiedTenantsResponse(tenant_ids=await service.notify_affected_tenants(update_id))


# ---------------------------------------------------------------------------
# Control generation endpoints
# ---------------------------------------------------------------------------


@router.post("/generate-from-text", response_model=GenerationResultResponse)
async def generate_from_text(
    request: GenerateFromTextRequest,
    tenant: Tenant,
    service: Generation,
) -> GenerationResultResponse:
    """Generate controls from pasted regulatory text.

    Args:
        request: Target framework and the regulatory text.
        tenant: Tenant context from the gateway headers.
        service: Injected ControlGenerationService.

    Returns:
        Generation result; status is success, partial or failed.
    """
    logger.info("POST /learning/generate-from-text", tenant_id=str(tenant.tenant_id), framework_id=request.framework_id)
    result = await service.generate_controls_from_text(
        request.framework_id,
        request.framework_name,
        request.text,
        context=_context(request.context),
    )
    return GenerationResultResponse.model_validate(result)


@router.post("/generate-from-url", response_model=GenerationResultResponse)
async def generate_from_url(
    request: GenerateFromUrlRequest,
    tenant: Tenant,
    service: Generation,
) -> GenerationResultResponse:
    result = await service.generate_controls_from_url(
        request.framework_id,
        request.framework_name,
        request.url,
        context=_context(request.context),
    )
    return GenerationResultResponse.model_validate(result)


@router.post("/updates/{update_id}/generate-controls", response_model=GenerationResultResponse)
async def generate_from_update(update_id: uuid.UUID, tenant: Tenant, service: Generation) -> GenerationResultResponse:
    return GenerationResultResponse.model_validate(await service.generate_controls_from_update(update_id))


@router.post("/validate", response_model=ValidationResultResponse)
async def validate_controls(
    request: ControlIdsRequest,
    tenant: Tenant,
    service: Generation,
) -> ValidationResultResponse:
    return ValidationResultResponse.model_validate(await service.validate_controls(request.control_ids))


@router.post("/refine", response_model=list[ControlRefinementResponse])
async def refine_controls(
    request: RefineControlsRequest,
    tenant: Tenant,
    service: Generation,
) -> list[ControlRefinementResponse]:
    refinements = await service.refine_controls(request.control_ids, request.feedback)
    return [ControlRefinementResponse.model_validate(refinement) for refinement in refinements]


@router.get("/generated-controls", response_model=GeneratedControlListResponse)
async def list_generated_controls(
    tenant: Tenant,
    service: Generation,
    framework_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    min_confidence: float | None = Query(default=None, ge=0.0, le=1.0),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> GeneratedControlListResponse:
    items, total = await service.list_generated_controls(
        framework_id=framework_id,
        status=status,
        min_confidence=min_confidence,
        limit=limit,
        offset=offset,
    )
    return GeneratedControlListResponse(
        items=[GeneratedControlResponse.model_validate(item) for item in items],
        total=total,
    )


@router.get("/pending-review", response_model=list[GeneratedControlResponse])
async def get_pending_review_controls(
    tenant: Tenant,
    service: Generation,
    limit: int = Query(default=20, ge=1, le=100),
) -> list[GeneratedControlResponse]:
    """Generated controls awaiting review, most confident first."""
    controls = await service.get_pending_review_controls(limit)
    return [GeneratedControlResponse.model_validate(control) for control in controls]


@router.get("/generated-controls/{control_id}", response_model=GeneratedControlResponse)
async def get_generated_control(control_id: uuid.UUID, tenant: Tenant, service: Generation) -> GeneratedControlResponse:
    return GeneratedControlResponse.model_validate(await service.get_generated_control(control_id))


@router.post("/generated-controls/{control_id}/submit", response_model=GeneratedControlResponse)
async def submit_for_review(control_id: uuid.UUID, tenant: Tenant, service: Generation) -> GeneratedControlResponse:
    return GeneratedControlResponse.model_validate(await service.submit_for_review(control_id))


@router.post("/generated-controls/{control_id}/approve", response_model=GeneratedControlResponse)
async def approve_control(
    control_id: uuid.UUID,
    tenant: Tenant,
    service: Generation,
    request: ControlReviewRequest | None = None,
) -> GeneratedControlResponse:
    control = await service.approve_control(
        control_id,
        reviewed_by=tenant.user_id,
        review_notes=request.review_notes if request else None,
    )
    return GeneratedControlResponse.model_validate(control)


@router.post("/generated-controls/{control_id}/reject", response_model=GeneratedControlResponse)
async def reject_control(
    control_id: uuid.UUID,
    tenant: Tenant,
    service: Generation,
    request: ControlReviewRequest | None = None,
) -> GeneratedControlResponse:
    control = await service.reject_control(
        control_id,
        reviewed_by=tenant.user_id,
        review_notes=request.review_notes if request else None,
    )
    return GeneratedControlResponse.model_validate(control)


@router.post("/implement", response_model=ImplementationOutcomeResponse)
async def implement_controls(
    request: ControlIdsRequest,
    tenant: Tenant,
    service: Generation,
) -> ImplementationOutcomeResponse:
    """Copy approved generated controls into the catalog.

    Each id succeeds or fails independently; failures are listed with a reason.
    """
    outcome = await service.implement_controls(request.control_ids, reviewed_by=tenant.user_id)
    return ImplementationOutcomeResponse.model_validate(outcome)


@router.get("/generated-controls/{control_id}/mappings", response_model=list[ControlMappingResponse])
async def map_to_existing_controls(
    control_id: uuid.UUID,
    tenant: Tenant,
    service: Generation,
) -> list[ControlMappingResponse]:
    mappings = await service.map_to_existing_controls(control_id)
    return [ControlMappingResponse.model_validate(mapping) for mapping in mappings]


# ---------------------------------------------------------------------------
# Assessment endpoints
# ---------------------------------------------------------------------------


@router.post("/schedules", response_model=ScheduleResponse, status_code=201)
async def create_schedule(request: ScheduleCreateRequest, tenant: Tenant, service: Assessment) -> ScheduleResponse:
    """Create a recurring assessment schedule for one framework."""
    schedule = await service.create_schedule(
        tenant,
        request.framework_id,
        request.frequency,
        assessment_config=(
            AssessmentConfig.from_dict(request.assessment_config.model_dump()) if request.assessment_config else None
        ),
        notification_config=(
            NotificationConfig.from_dict(request.notification_config.model_dump())
            if request.notification_config
            else None
        ),
        start_at=request.start_at,
    )
    return ScheduleResponse.model_validate(schedule)


@router.get("/schedules", response_model=list[ScheduleResponse])
async def list_schedules(
    tenant: Tenant,
    service: Assessment,
    framework_id: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
) -> list[ScheduleResponse]:
    schedules = await service.list_schedules(tenant, framework_id=framework_id, is_active=is_active)
    return [ScheduleResponse.model_validate(schedule) for schedule in schedules]


@router.get("/schedules/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(schedule_id: uuid.UUID, tenant: Tenant, service: Assessment) -> ScheduleResponse:
    return ScheduleResponse.model_validate(await service.get_schedule(tenant, schedule_id))


@router.patch("/schedules/{schedule_id}/frequency", response_model=ScheduleResponse)
async def update_schedule_frequency(
    schedule_id: uuid.UUID,
    request: ScheduleFrequencyRequest,
    tenant: Tenant,
    service: Assessment,
) -> ScheduleResponse:
    schedule = await service.update_schedule_frequency(tenant, schedule_id, request.frequency)
    return ScheduleResponse.model_validate(schedule)


@router.patch("/schedules/{schedule_id}/active", response_model=ScheduleResponse)
async def set_schedule_active(
    schedule_id: uuid.UUID,
    request: ScheduleActiveRequest,
    tenant: Tenant,
    service: Assessment,
) -> ScheduleResponse:
    return ScheduleResponse.model_validate(await service.set_schedule_active(tenant, schedule_id, request.is_active))


@router.delete("/schedules/{schedule_id}", status_code=204)
async def delete_schedule(schedule_id: uuid.UUID, tenant: Tenant, service: Assessment) -> None:
    await service.delete_schedule(tenant, schedule_id)


@router.post("/run/{framework_id}", response_model=AssessmentResultResponse)
async def run_assessment(
    framework_id: str,
    tenant: Tenant,
    service: Assessment,
    request: RunAssessmentRequest | None = None,
) -> AssessmentResultResponse:
    """Run an on-demand assessment of one framework for the tenant."""
    config = None
    if request is not None and request.assessment_config is not None:
        config = AssessmentConfig.from_dict(request.assessment_config.model_dump())
    result = await service.run_assessment(tenant.tenant_id, framework_id, config=config)
    return AssessmentResultResponse.model_validate(result)


@router.post("/run-scheduled-assessments", response_model=ScheduledAssessmentsResponse)
async def run_scheduled_assessments(tenant: Tenant, service: Assessment) -> ScheduledAssessmentsResponse:
    return ScheduledAssessmentsResponse(**await service.run_scheduled_assessments())


@router.get("/results", response_model=list[AssessmentResultResponse])
async def list_results(
    tenant: Tenant,
    service: Assessment,
    framework_id: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
) -> list[AssessmentResultResponse]:
    results = await service.list_results(tenant, framework_id=framework_id, limit=limit)
    return [AssessmentResultResponse.model_validate(result) for result in results]


@router.get("/results/{result_id}", response_model=AssessmentResultResponse)
async def get_result(result_id: uuid.UUID, tenant: Tenant, service: Assessment) -> AssessmentResultResponse:
    return AssessmentResultResponse.model_validate(await service.get_result(tenant, result_id))


# ---------------------------------------------------------------------------
# Learning endpoints
# ---------------------------------------------------------------------------


@router.post("/feedback", response_model=FeedbackResponse, status_code=201)
async def record_feedback(request: FeedbackCreateRequest, tenant: Tenant, service: Learning) -> FeedbackResponse:
    """Record a human correction of an assessment.

    Args:
        request: Feedback payload.
        tenant: Tenant context from the gateway headers.
        service: Injected LearningService.

    Returns:
        The stored feedback row, unprocessed.
    """
    logger.info(
        "POST /learning/feedback",
        tenant_id=str(tenant.tenant_id),
        control_id=request.control_id,
        event_type=request.event_type,
    )
    feedback = await service.record_feedback(tenant, **request.model_dump())
    return FeedbackResponse.model_validate(feedback)


@router.post("/process-feedback", response_model=FeedbackProcessingResponse)
async def process_feedback(tenant: Tenant, service: Learning) -> FeedbackProcessingResponse:
    return FeedbackProcessingResponse(**await service.process_feedback())


@router.post("/learn-from-assessment/{result_id}", response_model=LearnFromAssessmentResponse)
async def learn_from_assessment(
    result_id: uuid.UUID,
    tenant: Tenant,
    service: Learning,
) -> LearnFromAssessmentResponse:
    return LearnFromAssessmentResponse(**await service.learn_from_assessment(tenant, result_id))


@router.get("/metrics", response_model=LearningMetricsResponse)
async def get_learning_metrics(
    tenant: Tenant,
    service: Learning,
    all_tenants: bool = Query(default=False, description="Aggregate across every tenant"),
) -> LearningMetricsResponse:
    metrics = await service.get_learning_metrics(None if all_tenants else tenant.tenant_id)
    return LearningMetricsResponse.model_validate(metrics)


@router.post("/controls/{control_id}/improve-prompt", response_model=ImprovePromptResponse)
async def improve_control_prompt(
    control_id: str,
    request: ImprovePromptRequest,
    tenant: Tenant,
    service: Learning,
) -> ImprovePromptResponse:
    prompt = await service.improve_control_prompt(
        control_id,
        request.feedback,
        suggestion=request.suggestion,
        event_type=request.event_type,
    )
    return ImprovePromptResponse(control_id=control_id, prompt=prompt)
