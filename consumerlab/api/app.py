"""
ConsumerLab FastAPI Application.

REST API for synthetic panel recruitment and concept preference analysis.
Both workloads run as background jobs: submit returns a job id at once and
clients poll until the job completes or fails.

Features:
- Job submission and polling endpoints
- Job cancellation
- Demographic-filtered summaries
- API key authentication
- Rate limiting
- Health check endpoint
- Automatic OpenAPI documentation
"""

# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import logging
from typing import Optional
from datetime import datetime

from fastapi import FastAPI, HTTPException, Depends, Query, Request, status
from fastapi.security import APIKeyHeader
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .. import __version__
from ..core.config import Config
from ..core.exceptions import (
    ConsumerLabError,
    InvalidInputError,
    JobNotFoundError,
    NoDataError,
)
from ..core.observability import setup_logfire
from ..services.aggregation_service import AggregationService
from ..services.job_service import JobService
from ..services.models import JobKind, JobStatus
from .models import (
    AnalysisRequest,
    ErrorResponse,
    HealthResponse,
    JobCancelResponse,
    JobSubmitResponse,
    ProfileGenerationRequest,
    SummaryRequest,
    SummaryResponse,
)

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI Application Setup
# ============================================================================

app = FastAPI(
    title="ConsumerLab API",
    description="Synthetic consumer panels and product concept preference analysis",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ============================================================================
# CORS Configuration
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# Rate Limiting
# ============================================================================

limiter = Limiter(key_func=get_remote_address, enabled=Config.RATE_LIMIT_ENABLED)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ============================================================================
# Dependencies
# ============================================================================

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

_job_service: Optional[JobService] = None
_aggregation = AggregationService()


def get_job_service() -> JobService:
    """Shared JobService for the process (created on first use)."""
    global _job_service
    if _job_service is None:
        _job_service = JobService()
    return _job_service


def get_aggregation_service() -> AggregationService:
    return _aggregation


async def verify_api_key(api_key: Optional[str] = Depends(API_KEY_HEADER)):
    """
    Verify API key from request header.

    Checks against CONSUMERLAB_API_KEY. If not set, allows all requests
    (development mode).

    Raises:
        HTTPException: If API key is invalid or missing
    """
    expected_key = Config.CONSUMERLAB_API_KEY

    # Development mode - no API key required
    if not expected_key:
        return True

    if not api_key:
        logger.warning("API key missing from request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Provide via X-API-Key header."
        )

    if api_key != expected_key:
        logger.warning(f"Invalid API key attempt: {api_key[:10]}...")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )

    return True


def poll_response(service: JobService, job_id: Optional[str], kind: JobKind) -> JSONResponse:
    """Flattened poll body; a failed job is reported with HTTP 500."""
    if not job_id:
        raise InvalidInputError("Job ID is required")

    view = service.poll(job_id, kind=kind)
    status_code = 500 if view.status == JobStatus.FAILED else 200
    return JSONResponse(status_code=status_code, content=view.to_response())


JOB_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Unauthorized - Invalid API key"},
    429: {"model": ErrorResponse, "description": "Too many requests"},
}

POLL_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing jobId"},
    404: {"model": ErrorResponse, "description": "Unknown or expired job"},
    500: {"description": "Job failed; body is {status: failed, error}"},
}


# ============================================================================
# Health Check Endpoint
# ============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint"
)
async def health_check():
    """
    Check API health and service status.

    The completion provider is reported as `mock_only` when no gateway key
    is configured; jobs still complete through deterministic fallback.
    """
    services = {
        "completion_provider": "configured" if Config.LLM_API_KEY else "mock_only",
        "job_store": "available",
        "mock_data": "forced" if Config.USE_MOCK_DATA else (
            "fallback" if Config.FALLBACK_TO_MOCK_DATA else "disabled"
        ),
    }

    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=datetime.now(),
        services=services
    )


# ============================================================================
# Profile Generation Endpoints
# ============================================================================

@app.post(
    "/api/profiles/generate",
    response_model=JobSubmitResponse,
    response_model_by_alias=True,
    responses=JOB_RESPONSES,
    tags=["Profiles"],
    summary="Start generating a synthetic consumer panel"
)
@limiter.limit(Config.RATE_LIMIT_SUBMIT)
async def submit_profile_generation(
    request: Request,
    payload: ProfileGenerationRequest,
    authenticated: bool = Depends(verify_api_key),
    service: JobService = Depends(get_job_service)
):
    """
    Recruit a persona panel matching the demographic constraints.

    Every demographic category list must be non-empty. Generation runs in
    chunks in the background; poll `GET /api/profiles/generate?jobId=...`.
    """
    job_id = service.submit_profile_generation(payload.demographics, payload.count)
    return JobSubmitResponse(
        job_id=job_id,
        status=JobStatus.PROCESSING,
        message="Profile generation started. Use the jobId to check status."
    )


@app.get(
    "/api/profiles/generate",
    responses=POLL_RESPONSES,
    tags=["Profiles"],
    summary="Poll a profile generation job"
)
async def poll_profile_generation(
    job_id: Optional[str] = Query(None, alias="jobId"),
    authenticated: bool = Depends(verify_api_key),
    service: JobService = Depends(get_job_service)
):
    """
    Returns `{status: processing}`, `{status: completed, profiles, count}`
    or `{status: failed, error}`.
    """
    return poll_response(service, job_id, JobKind.PROFILES)


# ============================================================================
# Preference Analysis Endpoints
# ============================================================================

@app.post(
    "/api/analyze",
    response_model=JobSubmitResponse,
    response_model_by_alias=True,
    responses=JOB_RESPONSES,
    tags=["Analysis"],
    summary="Start scoring concepts against a panel"
)
@limiter.limit(Config.RATE_LIMIT_SUBMIT)
async def submit_analysis(
    request: Request,
    payload: AnalysisRequest,
    authenticated: bool = Depends(verify_api_key),
    service: JobService = Depends(get_job_service)
):
    """
    Score every persona against every concept.

    Both lists must be non-empty. Poll `GET /api/analyze?jobId=...`.
    """
    job_id = service.submit_analysis(payload.profiles, payload.concepts)
    return JobSubmitResponse(
        job_id=job_id,
        status=JobStatus.PROCESSING,
        message="Analysis started. Use the jobId to check status."
    )


@app.get(
    "/api/analyze",
    responses=POLL_RESPONSES,
    tags=["Analysis"],
    summary="Poll a preference analysis job"
)
async def poll_analysis(
    job_id: Optional[str] = Query(None, alias="jobId"),
    authenticated: bool = Depends(verify_api_key),
    service: JobService = Depends(get_job_service)
):
    """
    Returns `{status: completed, analyses, summary, totalAnalyses}` once done.
    """
    return poll_response(service, job_id, JobKind.ANALYSIS)


@app.post(
    "/api/analyze/summary",
    response_model=SummaryResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse, "description": "No records match the filters"}},
    tags=["Analysis"],
    summary="Summary over a demographic subset"
)
async def filtered_summary(
    payload: SummaryRequest,
    authenticated: bool = Depends(verify_api_key),
    aggregation: AggregationService = Depends(get_aggregation_service)
):
    """
    Recompute averages, top concept and concept ranking for the personas
    matching `filters`. Empty filter lists do not constrain.
    """
    result = aggregation.filtered_summary(
        payload.profiles,
        payload.concepts,
        payload.analyses,
        payload.filters,
        payload.insights,
    )
    return SummaryResponse.model_validate(result.model_dump())


# ============================================================================
# Job Control
# ============================================================================

@app.delete(
    "/api/jobs/{job_id}",
    response_model=JobCancelResponse,
    response_model_by_alias=True,
    responses={404: {"model": ErrorResponse, "description": "Unknown or expired job"}},
    tags=["Jobs"],
    summary="Cancel a running job"
)
async def cancel_job(
    job_id: str,
    authenticated: bool = Depends(verify_api_key),
    service: JobService = Depends(get_job_service)
):
    """
    Stop a job at its next provider call. The job then reports
    `{status: failed, error: "Job cancelled"}`.
    """
    return JobCancelResponse(job_id=job_id, cancelled=service.cancel(job_id))


# ============================================================================
# Error Handlers
# ============================================================================

def _error_content(error: str, detail: Optional[str] = None) -> dict:
    return ErrorResponse(
        error=error,
        detail=detail,
        timestamp=datetime.now()
    ).model_dump(mode="json")


@app.exception_handler(ConsumerLabError)
async def consumerlab_exception_handler(request: Request, exc: ConsumerLabError):
    """Map domain errors to HTTP status codes."""
    if isinstance(exc, JobNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (InvalidInputError, NoDataError)):
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        logger.error(f"Unhandled service error: {exc}", exc_info=True)
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return JSONResponse(
        status_code=status_code,
        content=_error_content(str(exc), type(exc).__name__)
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(str(exc.detail), str(exc))
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_error_content("Internal server error", str(exc))
    )


# ============================================================================
# Startup/Shutdown Events
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Configure tracing and start the job expiry sweeper."""
    setup_logfire()
    get_job_service().start_sweeper()

    logger.info("="*60)
    logger.info("ConsumerLab API Starting...")
    logger.info(f"API Version: {__version__}")
    logger.info(f"Docs available at: /docs")
    logger.info(f"Auth mode: {'Production (API key required)' if Config.CONSUMERLAB_API_KEY else 'Development (no auth)'}")
    logger.info(f"Mock data: use={Config.USE_MOCK_DATA}, fallback={Config.FALLBACK_TO_MOCK_DATA}")
    logger.info(f"Job TTL: {Config.JOB_TTL_SECONDS}s (sweep every {Config.JOB_SWEEP_INTERVAL_SECONDS}s)")
    logger.info("="*60)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop outstanding jobs and the sweeper."""
    logger.info("ConsumerLab API Shutting down...")
    if _job_service is not None:
        await _job_service.shutdown()


# ============================================================================
# Root Endpoint
# ============================================================================

@app.get("/", tags=["System"])
async def root():
    """
    API root endpoint with basic information.
    """
    return {
        "name": "ConsumerLab API",
        "version": __version__,
        "description": "Synthetic consumer panels and product concept preference analysis",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "profile_generation": "/api/profiles/generate",
            "preference_analysis": "/api/analyze",
            "filtered_summary": "/api/analyze/summary",
            "job_cancellation": "/api/jobs/{jobId}"
        }
    }
