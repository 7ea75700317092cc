"""
Listing Import Portal — Main Application

FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import structlog

from config import settings, check_connection, reset_connection

# Configure structured logging
logging.basicConfig(format="%(message)s", level=getattr(logging, settings.log_level))

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if settings.is_production
            else structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

from services.extraction_client import ExtractionClient
from services.live_sync_service import LiveSyncSubscriber
from services.post_store import PostStore
from services.remote_store import SupabaseRemoteStore

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: Build the post store, load the working set, start live sync
    Shutdown: Stop live sync, finish pending saves, release clients
    """
    # Startup
    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug,
        operator_configured=bool(settings.operator_id)
    )

    remote = SupabaseRemoteStore()
    extractor = ExtractionClient()
    store = PostStore(remote=remote, extractor=extractor, owner_id=settings.operator_id)
    app.state.post_store = store
    app.state.live_sync = None

    try:
        await store.hydrate()
    except Exception as e:
        logger.error(
            "initial_hydrate_failed",
            error=str(e),
            error_type=type(e).__name__
        )

    if settings.realtime_configured:
        live_sync = LiveSyncSubscriber(store, remote)
        await live_sync.start()
        app.state.live_sync = live_sync
    else:
        logger.warning("live_sync_disabled", reason="operator_id not set")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if app.state.live_sync is not None:
        await app.state.live_sync.stop()
    await store.drain()
    await store.close()
    await extractor.aclose()
    reset_connection()


# Create FastAPI app
app = FastAPI(
    title="Listing Import Portal",
    description="Import, AI extraction, review and pricing of vehicle listings",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================
# ROUTES
# ===================

@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
        Basic health status, database connection and live sync state
    """
    db_status = await check_connection()
    live_sync = getattr(request.app.state, "live_sync", None)

    return {
        "status": "healthy" if db_status["status"] == "healthy" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "database": db_status,
        "live_sync": {
            "enabled": live_sync is not None,
            "online": bool(live_sync and live_sync.online),
        }
    }


@app.get("/")
async def root():
    """
    Root endpoint.

    Returns:
        API information and available endpoints
    """
    return {
        "name": "Listing Import Portal API",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "health": "/health",
        "endpoints": {
            "posts": "/api/posts",
            "sync": "/api/sync",
        }
    }


# ===================
# ERROR HANDLERS
# ===================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.

    Catches unhandled exceptions and returns standard error format.
    """
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.debug else None,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


# ===================
# INCLUDE ROUTERS
# ===================
from routes.posts import router as posts_router
from routes.sync import router as sync_router

app.include_router(posts_router, prefix="/api/posts", tags=["Posts"])
app.include_router(sync_router, prefix="/api/sync", tags=["Sync"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
