"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, Sentry,
lifespan events for database and dispatch runtime initialization, and the
v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.engage_sync.config import get_settings
from src.engage_sync.core.database import close_db, get_session_factory, init_db
from src.engage_sync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.engage_sync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.engage_sync.api.v1.router import router as v1_router
from src.engage_sync.sync.audit import AuditWriter
from src.engage_sync.sync.delivery import DeliveryClient
from src.engage_sync.sync.orchestrator import DispatchOrchestrator
from src.engage_sync.sync.repository import AuditLogRepository, SyncConfigRepository
from src.engage_sync.sync.resolver import MappingResolver
from src.engage_sync.sync.worker import DispatchWorkerPool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the dispatch runtime; tear down on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Sync pipeline wiring ────────────────────────────────────────────
    session_factory = get_session_factory()
    config_repository = SyncConfigRepository(session_factory)
    audit_repository = AuditLogRepository(session_factory)

    worker_pool = DispatchWorkerPool(
        max_workers=settings.DISPATCH_WORKERS,
        max_queue_size=settings.DISPATCH_QUEUE_SIZE,
    )
    worker_pool.start()

    app.state.config_repository = config_repository
    app.state.audit_repository = audit_repository
    app.state.worker_pool = worker_pool
    app.state.orchestrator = DispatchOrchestrator(
        resolver=MappingResolver(config_repository),
        delivery=DeliveryClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS),
        audit_writer=AuditWriter(
            audit_repository, max_text_length=settings.AUDIT_TEXT_MAX_LENGTH
        ),
        pool=worker_pool,
    )
    log.info(
        "sync.pipeline_initialized",
        workers=settings.DISPATCH_WORKERS,
        queue_size=settings.DISPATCH_QUEUE_SIZE,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    # In-flight sends finish within one delivery timeout
    await worker_pool.stop(timeout=settings.DELIVERY_TIMEOUT_SECONDS)
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Engage Sync API",
        version="0.1.0",
        description="CRM record synchronization to the customer-engagement platform",
        lifespan=lifespan,
    )

    # Logging middleware (logs all requests with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
