"""AumOS Compliance Learning service entry point.

Initializes the FastAPI application with:
- Primary database for profiles, sources, controls, assessments and feedback
- Shared HTTP source fetcher and the optional change-analysis client
- Heuristic text classifier and similarity scorer strategies
- The in-process job runner for the batch drivers (when enabled)
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from aumos_compliance_learning.adapters.analysis_client import ChangeAnalysisClient
from aumos_compliance_learning.adapters.source_fetcher import HttpSourceFetcher
from aumos_compliance_learning.api.router import router
from aumos_compliance_learning.core.database import close_database, init_database
from aumos_compliance_learning.errors import ComplianceError
from aumos_compliance_learning.generation.classifier import KeywordTextClassifier
from aumos_compliance_learning.generation.similarity import TokenOverlapSimilarityScorer
from aumos_compliance_learning.jobs.scheduler import LearningJobRunner
from aumos_compliance_learning.observability import configure_logging, get_logger
from aumos_compliance_learning.settings import Settings

logger = get_logger(__name__)

settings = Settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Builds every shared collaborator once and stores it on app.state for
    the dependency factories. Starts the job runner when the scheduler is
    enabled on this replica.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    configure_logging(settings.log_level, settings.log_json)

    # Startup: primary database
    logger.info("Initializing primary database", service=settings.service_name)
    init_database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        echo=settings.db_echo,
    )

    # Startup: external collaborators
    fetcher = HttpSourceFetcher(
        timeout_seconds=settings.fetch_timeout_seconds,
        user_agent=settings.fetch_user_agent,
    )
    analyzer = (
        ChangeAnalysisClient(settings.analysis_url, timeout_seconds=settings.analysis_timeout_seconds)
        if settings.analysis_url
        else None
    )
    if analyzer is None:
        logger.warning("No change-analysis service configured — detected changes are stored as pending")

    app.state.settings = settings
    app.state.fetcher = fetcher
    app.state.analyzer = analyzer
    app.state.classifier = KeywordTextClassifier()
    app.state.scorer = TokenOverlapSimilarityScorer()

    runner = LearningJobRunner(settings, fetcher, analyzer)
    if settings.scheduler_enabled:
        runner.start()
    app.state.job_runner = runner

    logger.info("Compliance learning startup complete", scheduler_enabled=settings.scheduler_enabled)

    yield

    # Shutdown
    logger.info("Shutting down compliance learning")
    await runner.stop()
    await close_database()
    logger.info("Compliance learning shutdown complete")


async def compliance_error_handler(request: Request, exc: ComplianceError) -> JSONResponse:
    """Render a ComplianceError as its JSON body with the mapped HTTP status."""
    if exc.http_status >= 500:
        logger.warning("Request failed", path=request.url.path, error_code=exc.error_code, error=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app() -> FastAPI:
    """Build the FastAPI application.

    Returns:
        Application with the learning router mounted under /api/v1.
    """
    application = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    application.add_exception_handler(ComplianceError, compliance_error_handler)  # type: ignore[arg-type]

    @application.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.service_name}

    application.include_router(router, prefix="/api/v1")
    return application


app: FastAPI = create_app()
