"""Middleware package exports."""

from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.logging import LoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "LoggingMiddleware",
    "RateLimitMiddleware",
]
