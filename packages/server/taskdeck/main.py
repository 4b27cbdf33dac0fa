"""
Taskdeck API Server

Entry point for the FastAPI application.
"""

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskdeck.api.v1 import router as api_v1_router
from taskdeck.core.config import get_settings
from taskdeck.core.connections import ConnectionRegistry
from taskdeck.core.logging import configure_logging
from taskdeck.core.middleware import CSRFMiddleware, SecurityHeadersMiddleware
from taskdeck.core.redis import close_redis

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Taskdeck",
        description="Multi-tenant task tracking with real-time notifications.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # One registry per application; sockets accepted by this process only
    app.state.registry = ConnectionRegistry()

    # Middleware (order matters, outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-CSRF-Token"],
    )

    app.include_router(api_v1_router, prefix="/api")

    @app.get("/api/health", tags=["System"])
    async def health_check():
        """Liveness probe with the number of live real-time connections."""
        return {"status": "ok", "connections": app.state.registry.count()}

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        app.state.registry.start_reaper(
            settings.ws_reaper_interval_seconds,
            settings.ws_heartbeat_timeout_seconds,
        )
        log.info("Taskdeck starting", debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Taskdeck shutting down", connections=app.state.registry.count())
        await app.state.registry.close_all()
        await close_redis()

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run(
        "taskdeck.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
