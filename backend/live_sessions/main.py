# backend/live_sessions/main.py
"""
FastAPI application for the live sessions engine.

Mounts the v1 routers under /api/v1, maps domain exceptions that escape a
route onto their HTTP status, and exposes Prometheus metrics.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .core.config import is_running_tests, settings
from .core.exceptions import DomainException
from .database import SessionLocal, init_db
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import availability, booking_requests, live_sessions, payouts

API_TITLE = "Live Sessions API"
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info("%s starting up...", API_TITLE)
    logger.info(
        "Environment: %s (payments=%s, video=%s)",
        settings.environment,
        settings.payment_provider,
        settings.video_provider,
    )
    if settings.is_production and settings.payment_provider == "fake":
        logger.warning("Fake payment gateway configured in production")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")
    elif settings.is_sqlite:
        init_db()

    yield

    logger.info("%s shutting down...", API_TITLE)


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Domain errors raised outside a route's own try/except."""
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")

api_v1.include_router(availability.router, prefix="/availability")
api_v1.include_router(booking_requests.router, prefix="/booking-requests")
api_v1.include_router(live_sessions.router, prefix="/live-sessions")
api_v1.include_router(payouts.router, prefix="/payouts")

app.include_router(api_v1)


@app.get("/health")
def health_check() -> Dict[str, str]:
    """Liveness plus a database round trip."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error("Health check database probe failed: %s", e)
        database = "unavailable"
    finally:
        db.close()
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": API_TITLE,
        "version": API_VERSION,
        "environment": settings.environment,
        "database": database,
    }


@app.get("/metrics/prometheus", include_in_schema=False)
def prometheus_endpoint() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
