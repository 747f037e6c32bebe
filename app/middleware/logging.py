"""Structured request logging middleware with credential redaction."""

from __future__ import annotations

from time import perf_counter
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.request_meta import extract_client_ip

SENSITIVE_KEYS = {
    "authorization",
    "cookie",
    "refresh_token",
    "session_id",
    "set-cookie",
    "token",
    "x-service-key",
}
REDACTED = "***REDACTED***"

logger = structlog.get_logger(__name__)


def _is_sensitive_key(key: str) -> bool:
    """Return True when key likely carries credential material."""
    normalized = key.lower().replace("-", "_")
    if normalized in SENSITIVE_KEYS or key.lower() in SENSITIVE_KEYS:
        return True
    return "token" in normalized or "session" in normalized or "key" in normalized


def _redact_mapping(values: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive values from a dictionary."""
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if _is_sensitive_key(key):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = _redact_mapping(value)
        else:
            redacted[key] = value
    return redacted


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured log per request with redacted metadata."""

    async def dispatch(self, request: Request, call_next) -> Response:
        """Log completion metadata for each request."""
        start = perf_counter()
        query_params = _redact_mapping(dict(request.query_params))
        cookie_names = sorted(request.cookies)
        client_ip = extract_client_ip(request) or "unknown"

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                method=request.method,
                path=request.url.path,
                query_params=query_params,
                cookies=cookie_names,
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                client_ip=client_ip,
                user_agent=request.headers.get("user-agent", ""),
            )
            raise

        event_logger = logger.warning if response.status_code >= 400 else logger.info
        event_logger(
            "request_completed",
            method=request.method,
            path=request.url.path,
            query_params=query_params,
            cookies=cookie_names,
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            client_ip=client_ip,
            user_agent=request.headers.get("user-agent", ""),
        )
        return response
