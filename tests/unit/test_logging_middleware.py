"""Unit tests for logging middleware credential redaction."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient

from app.middleware import logging as logging_module
from app.middleware.logging import REDACTED, LoggingMiddleware


class _CaptureLogger:
    """Capture structlog-like logger calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, event: str, **kwargs: Any) -> None:
        """Capture info-level calls."""
        self.calls.append(("info", event, kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        """Capture warning-level calls."""
        self.calls.append(("warning", event, kwargs))

    def exception(self, event: str, **kwargs: Any) -> None:
        """Capture exception-level calls."""
        self.calls.append(("exception", event, kwargs))


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)

    @app.get("/ok")
    async def ok() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/missing")
    async def missing() -> dict[str, bool]:
        raise HTTPException(status_code=404, detail="nope")

    return app


@pytest.mark.asyncio
async def test_logging_middleware_redacts_token_query_values(monkeypatch) -> None:
    """Request logs never contain raw token or session query parameter values."""
    capture = _CaptureLogger()
    monkeypatch.setattr(logging_module, "logger", capture)

    async with AsyncClient(
        transport=ASGITransport(app=_app()),
        base_url="http://testserver",
    ) as client:
        response = await client.get(
            "/ok",
            params={"refresh_token": "refresh-secret", "session_id": "sid-secret", "page": "2"},
        )

    assert response.status_code == 200
    assert len(capture.calls) == 1
    level, event, payload = capture.calls[0]
    assert level == "info"
    assert event == "request_completed"
    assert payload["query_params"]["refresh_token"] == REDACTED
    assert payload["query_params"]["session_id"] == REDACTED
    assert payload["query_params"]["page"] == "2"

    serialized = str(payload)
    assert "refresh-secret" not in serialized
    assert "sid-secret" not in serialized


@pytest.mark.asyncio
async def test_logging_middleware_logs_cookie_names_only(monkeypatch) -> None:
    """Cookie values stay out of request logs; client errors log at warning."""
    capture = _CaptureLogger()
    monkeypatch.setattr(logging_module, "logger", capture)

    async with AsyncClient(
        transport=ASGITransport(app=_app()),
        base_url="http://testserver",
        cookies={"session_id": "cookie-session-value", "refresh_token": "cookie-refresh-value"},
    ) as client:
        response = await client.get("/missing", headers={"x-forwarded-for": "198.51.100.20"})

    assert response.status_code == 404
    level, event, payload = capture.calls[0]
    assert level == "warning"
    assert event == "request_completed"
    assert payload["cookies"] == ["refresh_token", "session_id"]
    assert payload["client_ip"] == "198.51.100.20"
    serialized = str(payload)
    assert "cookie-session-value" not in serialized
    assert "cookie-refresh-value" not in serialized
