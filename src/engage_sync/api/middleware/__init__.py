"""API middleware package."""

from src.engage_sync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
