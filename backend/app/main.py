"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8080

Or from the project root:
    python -m uvicorn backend.app.main:app --reload

Or with HOST, PORT and RELOAD taken from settings:
    python -m backend.app.main

Workers run inside this process when RUN_WORKER_IN_PROCESS is true; set it
to false and start ``python -m backend.app.worker`` separately to scale
dispatch independently of the API.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Push subsystem ──
from backend.app.push.runtime import PushRuntime
from backend.app.api.v1.push import router as push_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(runtime: Optional[PushRuntime] = None, start_workers: Optional[bool] = None) -> FastAPI:
    """
    Build the application.

    ``runtime`` lets tests inject a prepared PushRuntime; by default one is
    built from settings during startup.
    """
    if start_workers is None:
        start_workers = settings.RUN_WORKER_IN_PROCESS

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        push_runtime = runtime or PushRuntime.from_settings(settings)
        app.state.push_runtime = push_runtime
        if start_workers:
            push_runtime.start_workers()
        yield
        await push_runtime.shutdown()
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Schedules exactly one deferred Web Push notification per "
            "subscription. Rescheduling replaces the pending notification, "
            "cancelling removes it, and workers dispatch due jobs from a "
            "Redis-backed delayed queue."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(push_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "capability": app.state.push_runtime.capability.to_dict(),
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — queue, VAPID config, workers."""
        report = await run_health_check(app.state.push_runtime)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(app.state.push_runtime)
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
