"""Unit tests for session cookie staging."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from starlette.responses import Response

from app.core.cookies import CookieManager, RequestCookieJar


def _headers(response: Response) -> list[str]:
    return [
        value.decode("latin-1") for key, value in response.raw_headers if key == b"set-cookie"
    ]


def test_cookie_manager_reads_incoming_cookies() -> None:
    """Incoming cookie values are visible until a mutation is staged."""
    manager = CookieManager(
        RequestCookieJar({"session_id": "sid", "refresh_token": "rt"}), secure=False
    )

    assert manager.get_session_token() == "sid"
    assert manager.get_refresh_token() == "rt"


def test_empty_cookie_values_read_as_missing() -> None:
    """An empty cookie is treated as absent."""
    manager = CookieManager(RequestCookieJar({"session_id": ""}), secure=False)

    assert manager.get_session_token() is None


def test_staged_writes_shadow_incoming_values() -> None:
    """Reads after a write or clear reflect the staged state."""
    manager = CookieManager(RequestCookieJar({"session_id": "old"}), secure=False)
    expires = datetime.now(UTC) + timedelta(hours=1)

    manager.set_session_token("new", expires)
    assert manager.get_session_token() == "new"

    manager.clear_session_cookies()
    assert manager.get_session_token() is None
    assert manager.get_refresh_token() is None


def test_apply_writes_secure_httponly_cookies() -> None:
    """Set-Cookie headers carry the configured attributes."""
    manager = CookieManager(
        RequestCookieJar({}),
        secure=True,
        session_cookie_name="sid",
        refresh_cookie_name="rt",
    )
    expires = datetime.now(UTC) + timedelta(hours=1)
    manager.set_session_token("session-value", expires)
    manager.set_refresh_token("refresh-value", expires)
    response = Response()

    manager.apply_to(response)

    session_header, refresh_header = _headers(response)
    assert session_header.startswith("sid=session-value")
    assert "SameSite=lax" in session_header
    assert refresh_header.startswith("rt=refresh-value")
    assert "SameSite=strict" in refresh_header
    for header in (session_header, refresh_header):
        assert "HttpOnly" in header
        assert "Secure" in header
        assert "Path=/" in header


def test_apply_clears_both_cookies() -> None:
    """Clearing emits an expired Set-Cookie for each cookie."""
    manager = CookieManager(RequestCookieJar({"session_id": "sid"}), secure=False)
    manager.clear_session_cookies()
    response = Response()

    manager.apply_to(response)

    headers = _headers(response)
    assert [header.split("=", 1)[0] for header in headers] == ["session_id", "refresh_token"]
    assert all("Max-Age=0" in header for header in headers)
    assert all("Secure" not in header for header in headers)
