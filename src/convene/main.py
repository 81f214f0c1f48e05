"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS,
Sentry, lifespan events for database initialization and service wiring,
and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.convene.api.errors import register_exception_handlers
from src.convene.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.convene.api.v1.router import router as v1_router
from src.convene.config import get_settings
from src.convene.core.database import close_db, get_session_factory, init_db
from src.convene.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.convene.meetings.admission import ParticipantAdmissionController
from src.convene.meetings.lifecycle import MeetingLifecycleManager
from src.convene.meetings.queries import MeetingQueryService
from src.convene.meetings.repository import MeetingRepository
from src.convene.meetings.sessions import SessionIssuer
from src.convene.users.repository import UserRepository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Repositories and meeting services ──────────────────────────────
    session_factory = get_session_factory()

    meeting_repo = MeetingRepository(session_factory=session_factory)
    user_repo = UserRepository(session_factory=session_factory)
    session_issuer = SessionIssuer(
        session_factory=session_factory,
        ttl=timedelta(minutes=settings.SESSION_TOKEN_TTL_MINUTES),
    )

    app.state.user_repository = user_repo
    app.state.session_issuer = session_issuer
    app.state.lifecycle_manager = MeetingLifecycleManager(
        repository=meeting_repo,
        default_max_capacity=settings.DEFAULT_MAX_CAPACITY,
    )
    app.state.admission_controller = ParticipantAdmissionController(
        repository=meeting_repo,
        session_issuer=session_issuer,
    )
    app.state.query_service = MeetingQueryService(
        repository=meeting_repo,
        user_repository=user_repo,
    )
    log.info(
        "app.services_initialized",
        environment=settings.ENVIRONMENT.value,
        default_max_capacity=settings.DEFAULT_MAX_CAPACITY,
    )

    yield

    await close_db()
    log.info("app.shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Convene API",
        version="0.1.0",
        description="Meeting lifecycle and participant admission service",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    # Include v1 API router (health, auth, meetings, sessions)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
