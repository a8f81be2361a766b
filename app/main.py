"""
Payment Pulse — multi-tenant payment analytics API

FastAPI application serving metrics and trends under /api/analytics/*,
payment writes under /api/payments and the simulator under /api/simulator/*.
The Socket.IO gateway for live payment events is mounted on the same ASGI
app at settings.ws_path.

Run with: uvicorn app.main:asgi_app
"""

import logging
import sys
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.errors import PaymentPulseError
from app.routers import analytics
from app.routers import payments as payments_router
from app.routers import simulator as simulator_router
from app.services.payments.events import get_event_bus
from app.services.payments.gateway import get_gateway
from app.services.payments.simulator import get_simulator

# =============================================================================
# LOGGING
# =============================================================================

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """Application lifespan handler."""
    logger.info("Starting %s in %s mode", settings.app_name, settings.environment)
    unsubscribe = get_gateway().attach(get_event_bus())
    logger.info("WebSocket gateway listening at %s", settings.ws_path)
    yield
    logger.info("Shutting down %s", settings.app_name)
    stopped = await get_simulator().stop_all()
    if stopped:
        logger.info("Stopped %d running simulations", stopped)
    unsubscribe()
    from app.services.supabase import close_supabase

    await close_supabase()


# =============================================================================
# APP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Payment Pulse — tenant payment analytics and live event stream",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# =============================================================================
# MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["X-Tenant-Id", "Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Log all requests for debugging."""
    logger.debug("%s %s", request.method, request.url.path)
    response = await call_next(request)
    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


@app.exception_handler(PaymentPulseError)
async def payment_pulse_exception_handler(
    request: Request, exc: PaymentPulseError
) -> JSONResponse:
    """Render domain errors with their status code."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(payments_router.router, prefix="/api/payments", tags=["Payments"])
app.include_router(
    simulator_router.router, prefix="/api/simulator", tags=["Simulator"]
)


# =============================================================================
# ROOT / HEALTH
# =============================================================================


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": settings.app_name, "status": "ok"}


@app.get("/health")
async def health() -> dict:
    """Health check with live connection counts."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "connections": get_gateway().connection_stats(),
    }


# =============================================================================
# ASGI ENTRYPOINT (HTTP + Socket.IO)
# =============================================================================

asgi_app = socketio.ASGIApp(
    get_gateway().sio,
    other_asgi_app=app,
    socketio_path=settings.ws_path.strip("/"),
)
