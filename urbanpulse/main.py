from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
import logging

from . import auth
from .config import get_settings
from .database import init_db
from .dependencies import ReportServices, get_services
from .errors import (
    InvalidState,
    NotFound,
    PersistenceFailed,
    ReportError,
    UploadFailed,
    ValidationError,
)
from .observability import (
    setup_logging,
    setup_metrics_middleware,
    get_health_check,
    metrics_endpoint,
    record_report_counts,
)
from .routes import live as live_routes
from .routes import reports as reports_routes

# Setup observability
setup_logging()

logger = logging.getLogger("urbanpulse")

settings = get_settings()

app = FastAPI(title="UrbanPulse Reports API")

setup_metrics_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev; restrict in prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(settings.allowed_hosts) or ["*"])

app.include_router(reports_routes.router)
app.include_router(live_routes.router)

# Serve locally stored media (development fallback for S3)
if settings.storage_provider == "local":
    settings.local_storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/storage", StaticFiles(directory=str(settings.local_storage_dir)), name="storage")


def _status_for(exc: ReportError) -> int:
    if isinstance(exc, ValidationError):
        return 403 if exc.permission else 400
    if isinstance(exc, InvalidState):
        return 409
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, UploadFailed):
        return 502
    if isinstance(exc, PersistenceFailed):
        return 503
    return 500


@app.exception_handler(ReportError)
async def report_error_handler(request: Request, exc: ReportError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error": exc.kind})


@app.on_event("startup")
async def on_startup():
    await init_db()
    logger.info("UrbanPulse started (env=%s, storage=%s)", settings.environment, settings.storage_provider)


@app.on_event("shutdown")
async def on_shutdown():
    # Only tear down services that were actually built.
    if get_services.cache_info().currsize:
        await get_services().aclose()
    logger.info("UrbanPulse shut down")


@app.post("/auth/session", response_model=auth.Token)
async def create_session(request: auth.SessionRequest) -> auth.Token:
    return auth.issue_session(request)


@app.get("/health")
def health(services: ReportServices = Depends(get_services)):
    """Health check endpoint."""
    return get_health_check(services.live_views)


@app.get("/metrics")
async def metrics(request: Request, services: ReportServices = Depends(get_services)) -> Response:
    """Prometheus metrics endpoint."""
    record_report_counts(await services.store.count_by_status())
    return metrics_endpoint(request)
