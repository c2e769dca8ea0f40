"""
FastAPI main application entry point.

Serves the notification API under /api/notifications and, when
SCHEDULER_ENABLED is true, runs the reminder/notification poll loop in
the same process. Deployments that prefer cron call process_jobs.py or
the /api/notifications/process-* endpoints instead.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import get_settings
from database import close_db, connect_db, get_database
from notifications import build_services
from notifications.errors import NotFoundError, NotificationError, PersistenceError
from notifications.scheduler import NotificationScheduler
from routers import notifications, reminders

# ============================================================
# Logging Configuration
# ============================================================
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


# ============================================================
# Application Lifespan (startup/shutdown)
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    logger.info("Starting up notification service...")

    _settings = get_settings()
    if _settings.jwt_secret_key == "your-super-secret-key-change-in-production":
        logger.warning(
            "JWT_SECRET_KEY is still the default! Set the auth service's "
            "signing key in .env"
        )
    if not _settings.internal_api_key:
        logger.warning("INTERNAL_API_KEY is not set, system endpoints will reject every call")
    if not _settings.smtp_configured:
        logger.warning("SMTP credentials missing, EMAIL deliveries will fail")

    logger.info(f"CORS origins: {_settings.cors_origins_list}")

    db = await connect_db()

    scheduler = None
    if _settings.scheduler_enabled:
        scheduler = NotificationScheduler(
            build_services(db, _settings).processor,
            interval_seconds=_settings.scheduler_interval_seconds,
            cleanup_interval_hours=_settings.cleanup_interval_hours,
            retention_days=_settings.job_retention_days,
        )
        scheduler.start()

    yield  # Application runs here

    logger.info("Shutting down notification service...")
    if scheduler:
        await scheduler.stop()
    await close_db()


# ============================================================
# Create FastAPI Application
# ============================================================
app = FastAPI(
    title="CareNotify API",
    description="Notification delivery and appointment reminder scheduling",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# Error handlers: engine exceptions → HTTP status codes
# ============================================================
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Storage error"})


@app.exception_handler(NotificationError)
async def notification_error_handler(request: Request, exc: NotificationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    if isinstance(exc, ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(include_url=False, include_context=False)},
        )
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ============================================================
# API Routes: all mounted under /api prefix
# ============================================================
app.include_router(notifications.router, prefix="/api", tags=["Notifications"])
app.include_router(reminders.router, prefix="/api", tags=["Reminders"])


# ============================================================
# Health Check Endpoints (under /api for consistency)
# ============================================================
@app.get("/api/health")
async def health_check() -> dict:
    """Liveness probe: confirms the process is running."""
    return {"status": "healthy", "version": APP_VERSION}


@app.get("/api/health/ready")
async def readiness_check():
    """Readiness probe: verifies the document store answers."""
    checks: dict = {}
    try:
        await get_database().command("ping")
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    checks["email"] = "configured" if get_settings().smtp_configured else "not configured"

    if checks["database"] != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}


# ============================================================
# Run with Uvicorn (for development)
# ============================================================
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
