"""Global exception handlers enforcing the API error shape."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.request_meta import extract_client_ip
from app.core.sessions import SessionAuthError

VALID_ERROR_CODES = {
    "no_session",
    "invalid_session",
    "session_expired",
    "session_revoked",
    "refresh_token_expired",
    "invalid_token",
    "token_expired",
    "invalid_service_key",
    "forbidden",
    "not_found",
    "invalid_request",
    "rate_limited",
    "service_unavailable",
    "internal_error",
}

_DEFAULT_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "invalid_request",
    401: "no_session",
    403: "forbidden",
    404: "not_found",
    405: "invalid_request",
    422: "invalid_request",
    429: "rate_limited",
    503: "service_unavailable",
}

_AUTH_PATH_PREFIXES = ("/api/auth", "/api/devices", "/api/admin")

logger = structlog.get_logger(__name__)


def error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    """Build the standard JSON error payload."""
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def _resolve_error_code(status_code: int, raw_code: str | None) -> str:
    """Resolve a valid machine-readable error code."""
    if raw_code in VALID_ERROR_CODES:
        return raw_code
    return _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "internal_error")


def _extract_detail_and_code(detail: Any) -> tuple[str, str | None]:
    """Normalize exception detail payload into message and optional code."""
    if isinstance(detail, dict):
        raw_detail = detail.get("detail", "Request failed.")
        raw_code = detail.get("code")
        return str(raw_detail), str(raw_code) if raw_code is not None else None
    if isinstance(detail, str):
        return detail, None
    return "Request failed.", None


def _sanitize_detail(detail: str, status_code: int, environment: str) -> str:
    """Hide internal failure details outside development."""
    if environment != "development" and status_code >= 500:
        return "Internal server error."
    return detail


def _log_auth_failure(request: Request, status_code: int, detail: str, code: str) -> None:
    """Emit a WARNING log for 4xx responses on session and device paths."""
    if status_code < 400 or status_code >= 500:
        return
    if not request.url.path.startswith(_AUTH_PATH_PREFIXES):
        return

    correlation_id = getattr(
        request.state,
        "correlation_id",
        request.headers.get("x-correlation-id", "unknown"),
    )
    session_state = getattr(request.state, "session", None)
    logger.warning(
        "auth_failure",
        correlation_id=correlation_id,
        event_type="auth_failure",
        user_id=getattr(session_state, "user_id", None),
        ip_address=extract_client_ip(request) or "unknown",
        success=False,
        status_code=status_code,
        code=code,
        detail=detail,
        path=request.url.path,
        method=request.method,
    )


def register_exception_handlers(app: FastAPI, environment: str) -> None:
    """Register global exception handlers enforcing the error shape."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to the error payload."""
        raw_detail, raw_code = _extract_detail_and_code(exc.detail)
        code = _resolve_error_code(exc.status_code, raw_code)
        detail = _sanitize_detail(raw_detail, exc.status_code, environment)
        _log_auth_failure(request=request, status_code=exc.status_code, detail=detail, code=code)
        response = error_response(status_code=exc.status_code, detail=detail, code=code)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(SessionAuthError)
    async def handle_session_auth_error(request: Request, exc: SessionAuthError) -> JSONResponse:
        """Render session failures and flush any cookie clearing they staged."""
        code = _resolve_error_code(exc.status_code, exc.code)
        _log_auth_failure(request=request, status_code=exc.status_code, detail=exc.detail, code=code)
        response = error_response(status_code=exc.status_code, detail=exc.detail, code=code)
        if exc.cookies is not None:
            exc.cookies.apply_to(response)
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to the error payload."""
        detail = "Invalid request payload."
        if environment == "development":
            errors = exc.errors()
            if errors:
                detail = f"Invalid request payload: {errors[0].get('msg', 'validation error')}."
        code = "invalid_request"
        _log_auth_failure(request=request, status_code=422, detail=detail, code=code)
        return error_response(status_code=422, detail=detail, code=code)

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors behind the error payload."""
        correlation_id = getattr(
            request.state,
            "correlation_id",
            request.headers.get("x-correlation-id", "unknown"),
        )
        logger.error(
            "unhandled_exception",
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        detail = _sanitize_detail(str(exc), 500, environment)
        return error_response(status_code=500, detail=detail, code="internal_error")
