"""Request correlation and structlog configuration.

Every request runs with a request id bound into structlog's contextvars, so
resolver, delivery, audit and dispatch events carry it without threading it
through call signatures. A caller-supplied X-Request-ID (the CRM host's
change-capture hook, say) is reused; otherwise one is generated. The id is
echoed back on the response.

Dispatch batches run on worker tasks, outside the request; the orchestrator
re-binds the captured context there.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.engage_sync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Liveness checks and scrapes would drown the sync events
_QUIET_PATHS = frozenset({"/health", "/metrics"})

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def configure_structlog() -> None:
    """Configure structlog: JSON in production, console output elsewhere."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def resolve_request_id(request: Request) -> str:
    """Reuse a well-formed inbound request id, or mint a new one."""
    inbound = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if _REQUEST_ID_RE.match(inbound):
        return inbound
    return str(uuid.uuid4())


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds the request id for the duration of a request and logs its outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request)
        path = request.url.path
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("http.request_failed", method=request.method, path=path)
            structlog.contextvars.clear_contextvars()
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        if response.status_code >= 500:
            log_method = logger.error
        elif response.status_code >= 400:
            log_method = logger.warning
        elif path in _QUIET_PATHS:
            log_method = logger.debug
        else:
            log_method = logger.info
        log_method(
            "http.request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        structlog.contextvars.clear_contextvars()
        return response
