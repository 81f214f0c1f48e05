"""API middleware package."""

from src.convene.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
