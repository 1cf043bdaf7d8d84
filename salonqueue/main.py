"""
Salon Queue API
Walk-in queues, appointments, expert assignment and delay tracking.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from datetime import datetime, timezone
from typing import List, Tuple
import logging

from salonqueue.core.config import settings
from salonqueue.core.database import engine, Base, check_database_connection
from salonqueue.routers import queue, public, appointment, provider
from salonqueue.services import rejections
import salonqueue.models  # noqa: F401  registers every table on Base.metadata

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.log_format
)
logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]


def _cors_settings() -> Tuple[List[str], bool]:
    """Origins from API_CORS_ORIGINS on top of the local dev servers; "*" disables credentials."""
    raw = (settings.API_CORS_ORIGINS or "").strip()
    if raw == "*":
        return ["*"], False
    extra = [o.strip() for o in raw.split(",") if o.strip()]
    return DEFAULT_ORIGINS + extra, True


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Walk-in queues and appointments for salons: tickets, expert assignment, delay tracking",
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

cors_origins, cors_credentials = _cors_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError):
    """The database timed out or went away mid-request; the caller may retry."""
    logger.error(f"[Store] {request.method} {request.url.path} failed: {exc}")
    rejection = rejections.unavailable("store_unavailable", "The service is busy right now. Please try again.")
    return JSONResponse(status_code=rejection.http_status, content={"detail": rejection.to_detail()})


@app.get("/", tags=["Root"])
def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "documentation": None if settings.is_production else "/docs",
        "endpoints": {
            "health": "/health",
            "queues": "/api/queues",
            "public": "/api/public",
            "appointments": "/api/appointments",
            "providers": "/api/providers",
        },
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness probe; does not touch the database."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/health", tags=["Health"])
def api_health():
    """Readiness probe including a database round trip"""
    database_ok = check_database_connection()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "ok" if database_ok else "unreachable",
        "version": settings.app_version,
    }


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.ENVIRONMENT})")
    logger.info(f"Business timezone {settings.business_timezone}, closing buffer "
                f"{settings.closing_buffer_minutes} min, delay alerts from "
                f"{settings.delay_alert_threshold_minutes} min")
    logger.info(f"Notifications over {settings.notification_channel} "
                f"({'live' if settings.twilio_enabled else 'mock'})")

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        logger.warning("Continuing without table creation; requests touching the database may fail")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.app_name}")


app.include_router(queue.router)  # Staff queue operations
app.include_router(public.router)  # Guest join, status and display board
app.include_router(appointment.router)  # Appointment booking and lifecycle
app.include_router(provider.router)  # Expert availability and delays
