"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from taskhub.ai.service import build_prioritizer
from taskhub.api import router as api_router
from taskhub.api.v1.websocket import ConnectionManager
from taskhub.config import Settings, get_settings
from taskhub.db.session import async_session_factory, close_db, init_db
from taskhub.exceptions import TaskhubError
from taskhub.logging_config import configure_logging
from taskhub.middleware.logging import LoggingMiddleware
from taskhub.middleware.request_id import RequestIDMiddleware
from taskhub.services.events import ALL_EVENTS, EventDispatcher

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    settings: Settings = app.state.settings
    logger.info("taskhub_starting", version=settings.app_version, environment=settings.environment)
    await init_db()
    logger.info("database_initialized")

    yield

    logger.info("taskhub_stopping")
    await app.state.events.drain()
    await close_db()
    logger.info("database_closed")


async def taskhub_error_handler(request: Request, exc: TaskhubError) -> ORJSONResponse:
    """Render domain errors as ``{"success": false, "error": {...}}``."""
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "request_rejected",
        error_code=exc.code,
        error=exc.message,
        status_code=exc.status_code,
    )
    error: dict = {"code": exc.code, "message": exc.message}
    field = getattr(exc, "field", None)
    if field:
        error["field"] = field
    return ORJSONResponse(status_code=exc.status_code, content={"success": False, "error": error})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-tenant project and task management API",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Application-scoped collaborators, built explicitly and read by dependencies
    app.state.settings = settings
    app.state.session_factory = async_session_factory
    app.state.events = EventDispatcher()
    app.state.prioritizer = build_prioritizer(settings)
    app.state.connections = ConnectionManager()
    app.state.events.subscribe(ALL_EVENTS, app.state.connections.handle_event)

    app.add_exception_handler(TaskhubError, taskhub_error_handler)

    # Add middleware (order matters - last added is first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    # Trust proxy headers (X-Forwarded-Proto, X-Forwarded-For) from the load balancer
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    app.include_router(api_router, prefix=settings.api_prefix)

    return app


app = create_app()
