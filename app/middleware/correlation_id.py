"""Correlation ID middleware."""

from __future__ import annotations

import re
from uuid import uuid4

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

CORRELATION_ID_HEADER = "X-Correlation-ID"
_CONTEXT_KEYS = ("correlation_id", "request_path")
_ALLOWED_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_correlation_id(raw_value: str | None) -> str:
    """Accept a caller-supplied correlation ID only when it is a short plain token."""
    candidate = (raw_value or "").strip()
    if candidate and _ALLOWED_ID.match(candidate):
        return candidate
    return str(uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach a request correlation ID and bind it to structlog context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        """Bind correlation context for the current request lifecycle."""
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        request.state.correlation_id = correlation_id
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            request_path=request.url.path,
        )

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars(*_CONTEXT_KEYS)

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
