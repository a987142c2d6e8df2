"""
OncoVoice Engine - FastAPI Main Application
"""

import asyncio
import os
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from oncovoice.config import PACKAGE_DIR, settings
from oncovoice.core.exceptions import OncoVoiceError, ValidationError
from oncovoice.core.logging import setup_logging, get_logger, audit_logger, bind_request_context, clear_request_context
from oncovoice.core.security import get_bearer_token, security_manager
from oncovoice.dependencies import ServiceContainer, get_services
from oncovoice.models.requests import AnalyzeRequest, TranscribeRequest, UploadTokenRequest
from oncovoice.models.responses import (
    AnalyzeResponse, BlobUploadResponse, ClientConfigResponse, ErrorResponse,
    HealthCheckResponse, RateLimitResponse, ResultsResponse, SessionInfo,
    SessionsResponse, TeamInfo, TeamResultResponse, TeamsResponse,
    TeamResult, TranscribeResponse, UploadResponse, UploadTokenResponse,
)
from oncovoice.services.analysis_pipeline import AnalysisJob
from oncovoice.services.audio_processor import GENERIC_CONTENT_TYPES, AudioProcessor
from oncovoice.services.blob_store import timestamp_ms, unique_suffix

# Initialize logging
setup_logging()
logger = get_logger(__name__)

# Prometheus metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration')
analysis_jobs = Counter('analysis_jobs_total', 'Finished analysis jobs', ['status'])
analysis_duration = Histogram('analysis_job_duration_seconds', 'Time from acceptance to final record')

# Rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
RATE_LIMIT = f"{settings.rate_limit_requests} per {settings.rate_limit_window} seconds"

STARTED_AT = time.time()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    415: {"model": ErrorResponse},
    429: {"model": RateLimitResponse},
    500: {"model": ErrorResponse},
}

router = APIRouter()


async def record_completion(job: AnalysisJob, record: TeamResult) -> None:
    """Acknowledges a finished analysis job."""
    analysis_jobs.labels(status=record.status.value).inc()
    analysis_duration.observe(time.monotonic() - job.enqueued_at)
    logger.info(f"[{job.request_id}] Analysis for team {record.team_id} finished with status {record.status.value}")


def _error_payload(request: Request, error: str, message: str, details=None) -> dict:
    return jsonable_encoder(
        ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=getattr(request.state, "request_id", None),
            timestamp=datetime.now(timezone.utc),
        )
    )


def build_upload_pathname(team_id: int, filename: str) -> str:
    """Unique blob pathname for a direct upload: team-{id}-{name}-{ms}-{suffix}.{ext}"""
    name = os.path.basename(filename.replace("\\", "/")).strip() or "upload"
    base, ext = os.path.splitext(name)
    ext = ext.lstrip(".").lower() or "bin"
    return f"team-{team_id}-{base or 'upload'}-{timestamp_ms()}-{unique_suffix()}.{ext}"


# --- Middleware ---

async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    if "Strict-Transport-Security" not in response.headers:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    if "X-Content-Type-Options" not in response.headers:
        response.headers["X-Content-Type-Options"] = "nosniff"
    if "X-Frame-Options" not in response.headers:
        response.headers["X-Frame-Options"] = "DENY"
    # 'unsafe-inline' is needed for the styles and scripts in index.html.
    if "Content-Security-Policy" not in response.headers:
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "style-src 'self' 'unsafe-inline'; "
            "script-src 'self' 'unsafe-inline'; "
            "media-src 'self' https: http:; "
            "object-src 'none'"
        )
    return response


async def track_requests(request: Request, call_next):
    """Request tracking and Prometheus metrics"""

    start_time = time.time()
    request_id = security_manager.generate_request_id()

    request.state.request_id = request_id
    request.state.start_time = start_time
    clear_request_context()
    bind_request_context(request_id=request_id)

    try:
        response = await call_next(request)
    except Exception as e:
        request_count.labels(method=request.method, endpoint=request.url.path, status=500).inc()
        logger.error(f"Request {request_id} failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_payload(request, "internal_server_error", "An internal error occurred"),
            headers={"X-Request-ID": request_id},
        )

    duration = time.time() - start_time
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    request_count.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    request_duration.observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Processing-Time"] = f"{duration:.3f}s"

    if endpoint.startswith("/v1/"):
        audit_logger.log_api_request(
            request_id=request_id,
            endpoint=endpoint,
            method=request.method,
            status_code=response.status_code,
            duration_ms=int(duration * 1000),
            user_agent=request.headers.get("user-agent"),
            ip_address=request.client.host if request.client else None,
        )
    return response


# --- Exception handlers ---

async def oncovoice_error_handler(request: Request, exc: OncoVoiceError):
    level = logger.error if exc.status_code >= 500 else logger.warning
    level(f"Request {getattr(request.state, 'request_id', 'unknown')} failed: {exc.error_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(request, exc.error_code, exc.message, exc.details or None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed fields are client errors (400)."""
    errors = jsonable_encoder(exc.errors(), exclude={"ctx", "input", "url"})
    fields = [".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")) for err in errors]
    message = "Missing or invalid fields: " + ", ".join(f for f in fields if f) if fields else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_payload(request, "validation_error", message, {"errors": errors}),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom rate limit error handler"""
    response = RateLimitResponse(
        message="Too many requests. Please try again later.",
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=jsonable_encoder(response),
        headers={"Retry-After": str(settings.rate_limit_window)},
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    request_id = getattr(request.state, 'request_id', 'unknown')

    logger.error(f"Unhandled error in request {request_id}: {exc}")
    audit_logger.log_error(
        request_id=request_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
        stack_trace=traceback.format_exc(),
    )

    return JSONResponse(
        status_code=500,
        content=_error_payload(request, "internal_server_error", "An unexpected error occurred"),
        headers={"X-Request-ID": request_id},
    )


# --- Health & monitoring ---

@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Service health check"""
    return HealthCheckResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=settings.api_version,
        uptime_seconds=int(time.time() - STARTED_AT),
    )


@router.get("/ready")
async def readiness_check(services: ServiceContainer = Depends(get_services)):
    """
    Checks if the service and its dependencies are ready to accept traffic.
    Returns 200 OK if all checks pass, otherwise 503 Service Unavailable.
    """
    store_ok, blobs_ok = await asyncio.gather(
        services.result_store.ping(),
        services.blob_store.is_writable(),
    )
    details = {
        "result_store": {"status": "ok" if store_ok else "error"},
        "blob_store": {"status": "ok" if blobs_ok else "error"},
        "analysis_worker": {"status": "ok" if services.worker.running else "error", "pending": services.worker.pending},
    }
    all_ok = all(check["status"] == "ok" for check in details.values())

    response_data = {
        "status": "ready" if all_ok else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.api_version,
        "details": details,
    }
    if all_ok:
        return JSONResponse(status_code=status.HTTP_200_OK, content=response_data)
    logger.warning(f"Readiness check failed: {details}")
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=response_data)


@router.get("/metrics")
async def metrics():
    """Prometheus metrics"""
    if not settings.enable_metrics:
        return JSONResponse(status_code=404, content={"detail": "Metrics disabled"})
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# --- Event configuration ---

@router.get("/v1/config", response_model=ClientConfigResponse)
async def client_config(services: ServiceContainer = Depends(get_services)):
    return ClientConfigResponse(
        app_name=services.event_config.app_name,
        refresh_interval_seconds=settings.dashboard_refresh_interval,
        fast_refresh_interval_seconds=settings.dashboard_fast_refresh_interval,
        max_audio_size_mb=settings.max_audio_size_mb,
        supported_audio_formats=services.audio_processor.supported_formats,
    )


@router.get("/v1/sessions", response_model=SessionsResponse)
async def list_sessions(services: ServiceContainer = Depends(get_services)):
    return SessionsResponse(
        sessions=[SessionInfo(**session.model_dump()) for session in services.event_config.sessions]
    )


@router.get("/v1/teams", response_model=TeamsResponse)
async def list_teams(
    session_id: Optional[int] = Query(None),
    services: ServiceContainer = Depends(get_services),
):
    config = services.event_config
    teams = config.teams_for_session(session_id) if session_id is not None else config.teams
    return TeamsResponse(
        teams=[TeamInfo(**team.model_dump(), has_document=config.has_document(team.id)) for team in teams]
    )


# --- Upload ---

@router.post("/v1/upload", response_model=UploadResponse, responses=ERROR_RESPONSES)
@limiter.limit(RATE_LIMIT)
async def upload_audio(
    request: Request,
    audio: UploadFile = File(...),
    team_id: int = Form(...),
    services: ServiceContainer = Depends(get_services),
):
    """Stores a browser-submitted recording and returns its URL."""
    request_id = request.state.request_id
    team = services.event_config.get_team(team_id)

    audio_data = await audio.read()
    content_type = services.audio_processor.validate(audio_data, audio.content_type, audio.filename)

    ext = AudioProcessor.extension_for(content_type, audio.filename)
    pathname = f"team-{team.id}-audio-{timestamp_ms()}-{unique_suffix()}.{ext}"
    blob = await services.blob_store.put(pathname, audio_data, content_type)

    metadata = await asyncio.to_thread(AudioProcessor.extract_metadata, audio_data)
    audit_logger.log_audio_processing(
        request_id=request_id,
        team_id=team.id,
        audio_size_bytes=blob.size,
        content_type=content_type,
        audio_duration=metadata.get("duration_seconds"),
        bitrate=metadata.get("bitrate"),
    )

    return UploadResponse(
        audio_url=blob.url,
        pathname=blob.pathname,
        content_type=content_type,
        size=blob.size,
        filename=audio.filename,
    )


@router.post("/v1/upload-token", response_model=UploadTokenResponse, responses=ERROR_RESPONSES)
@limiter.limit(RATE_LIMIT)
async def issue_upload_token(
    request: Request,
    payload: UploadTokenRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Issues a signed token for a direct browser-to-storage upload."""
    team = services.event_config.get_team(payload.team_id)
    pathname = build_upload_pathname(team.id, payload.filename)
    token, expires_at = security_manager.create_upload_token(pathname, team.id)
    logger.info(f"Generating upload token for: {pathname}")
    return UploadTokenResponse(
        pathname=pathname,
        token=token,
        upload_url=str(request.url_for("upload_blob", pathname=pathname)),
        expires_at=expires_at,
    )


@router.put("/v1/blob/{pathname:path}", response_model=BlobUploadResponse, responses=ERROR_RESPONSES)
async def upload_blob(
    pathname: str,
    request: Request,
    services: ServiceContainer = Depends(get_services),
):
    """Receives a direct upload authorized by an upload token."""
    security_manager.verify_upload_token(get_bearer_token(request), pathname)

    data = await request.body()
    content_type = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    if content_type in GENERIC_CONTENT_TYPES:
        content_type = AudioProcessor.detect_content_type(data, pathname)
    processor = (
        services.document_processor
        if content_type in services.document_processor.supported_formats
        else services.audio_processor
    )
    content_type = processor.validate(data, content_type, pathname)

    blob = await services.blob_store.put(pathname, data, content_type)
    logger.info(f"Upload completed: {blob.url}")
    return BlobUploadResponse(url=blob.url, pathname=blob.pathname, content_type=content_type, size=blob.size)


# --- Pipeline ---

@router.post("/v1/transcribe", response_model=TranscribeResponse, responses=ERROR_RESPONSES)
@limiter.limit(RATE_LIMIT)
async def transcribe(
    request: Request,
    payload: TranscribeRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Transcribes a stored recording synchronously."""
    request_id = request.state.request_id
    logger.info(f"[{request_id}] Transcribe called: {payload.audio_url}")
    transcript = await services.stt_service.transcribe(
        payload.audio_url,
        content_type=payload.content_type,
        filename=payload.filename,
        request_id=request_id,
    )
    return TranscribeResponse(transcript=transcript)


@router.post(
    "/v1/analyze",
    response_model=AnalyzeResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RATE_LIMIT)
async def analyze(
    request: Request,
    payload: AnalyzeRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Records the team as "processing" and queues the analysis. Completion is
    observable only through the results endpoints.
    """
    transcript = payload.transcript.strip()
    if not transcript:
        raise ValidationError("Transcript is empty", field="transcript")

    job = await services.worker.submit(
        payload.team_id,
        transcript,
        audio_url=payload.audio_url,
        request_id=request.state.request_id,
    )
    return AnalyzeResponse(team_id=job.team.id, submission_id=job.submission_id)


# --- Results ---

@router.get("/v1/results", response_model=ResultsResponse)
async def get_results(services: ServiceContainer = Depends(get_services)):
    results = await services.result_store.list(services.event_config.team_ids())
    return ResultsResponse(results=results)


@router.get("/v1/results/{team_id}", response_model=TeamResultResponse, responses=ERROR_RESPONSES)
async def get_team_result(team_id: int, services: ServiceContainer = Depends(get_services)):
    team = services.event_config.get_team(team_id)
    return TeamResultResponse(result=await services.result_store.get(team.id))


@router.get("/", include_in_schema=False)
async def read_index():
    """Serves the dashboard."""
    if not settings.enable_dashboard:
        return JSONResponse(status_code=404, content={"detail": "Dashboard disabled"})
    return FileResponse(PACKAGE_DIR / "static" / "index.html")


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Builds the application. Services are built during startup unless a
    pre-built container is passed in.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 OncoVoice Engine starting...")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"API Version: {settings.api_version}")

        if app.state.services is None:
            app.state.services = ServiceContainer.build(settings, on_complete=record_completion)
        await app.state.services.start()

        yield

        logger.info("🛑 OncoVoice Engine shutting down...")
        await app.state.services.shutdown()

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url="/redoc" if settings.environment == "development" else None,
        debug=settings.debug,
    )
    app.state.services = services

    # Stored blobs are served from the path of the public base URL
    if services is not None:
        storage_dir, public_base_url = services.blob_store.storage_dir, services.blob_store.public_base_url
    else:
        storage_dir, public_base_url = settings.blob_storage_dir, settings.blob_public_base_url
    blob_mount = urlparse(public_base_url).path.rstrip("/")
    if blob_mount:
        os.makedirs(storage_dir, exist_ok=True)
        app.mount(blob_mount, StaticFiles(directory=storage_dir), name="blobs")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.middleware("http")(add_security_headers)
    app.middleware("http")(track_requests)

    app.add_exception_handler(OncoVoiceError, oncovoice_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oncovoice.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development"
    )
