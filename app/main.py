# app/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, all routers, and the
background outbox / stale-visit sweeps.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import locations, events, visits, health
from app.database import SessionLocal, create_tables
from app.config import settings
from app.services.background_jobs import start_background_jobs
from app.services.config_store import ConfigProvider
from app.services.location_processor import LocationProcessor
from app.services.notification_dispatcher import NotificationDispatcher
from app.utils.logger import get_logger
import time

logger = get_logger(__name__)

app = FastAPI(
    title="Field Geofence Tracking API",
    description="GPS ping ingestion, branch visit detection and Telegram alerts.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for read endpoints.
    The ping webhook (/api/v1/locations) is excluded — phones don't send keys.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/locations", "/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        if request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(locations.router, prefix="/api/v1", tags=["📍 Location Pings"])
app.include_router(events.router,    prefix="/api/v1", tags=["🎯 Geofence Events"])
app.include_router(visits.router,    prefix="/api/v1", tags=["🏢 Visits"])
app.include_router(health.router,    prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Geofence backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")

    config_provider = ConfigProvider(SessionLocal)
    dispatcher = NotificationDispatcher(SessionLocal)
    app.state.location_processor = LocationProcessor(SessionLocal, config_provider, dispatcher)
    app.state.background_tasks = start_background_jobs(dispatcher, config_provider)

    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("⚠️  TELEGRAM_BOT_TOKEN not set — events will stay pending/failed")
    logger.info(f"🏢 Active zones: {len(config_provider.zones())}")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_HOST}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Geofence backend shutting down...")
    for task in getattr(app.state, "background_tasks", []):
        task.cancel()
