"""Async HTTP client for the session service endpoints."""

from __future__ import annotations

from typing import Any

import httpx

from sdk.exceptions import SessionServiceResponseError, SessionServiceUnavailableError
from sdk.types import ROLE_RANK, CreatedSession, SessionStatus, SessionView

DEFAULT_TIMEOUT = httpx.Timeout(connect=2.0, read=5.0, write=5.0, pool=5.0)
SERVICE_KEY_HEADER = "X-Service-Key"


class SessionClient:
    """Async client for polling, creating and revoking sessions."""

    def __init__(
        self,
        base_url: str,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.AsyncClient | None = None,
        session_cookie_name: str = "session_id",
        service_key: str | None = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or DEFAULT_TIMEOUT,
        )
        self._session_cookie_name = session_cookie_name
        self._service_key = service_key

    async def fetch_session(self, session_id: str | None = None) -> SessionStatus:
        """Ask the service whether a session cookie is valid.

        Without ``session_id`` the client's own cookie jar is sent.
        """
        response = await self._request(
            "GET", "/api/auth/session", headers=self._cookie_header(session_id)
        )
        payload = self._json_object(response)
        valid = payload.get("valid")
        if not isinstance(valid, bool):
            raise SessionServiceResponseError(
                "Invalid session status payload.", response.status_code
            )
        if not valid:
            return {"valid": False, "session": None, "role": None}

        session = payload.get("session")
        role = payload.get("role")
        if not isinstance(session, dict) or role not in ROLE_RANK:
            raise SessionServiceResponseError(
                "Invalid session status payload.", response.status_code
            )
        view: SessionView = {
            "id": str(session.get("id", "")),
            "user_id": str(session.get("user_id", "")),
            "role": role,
            "device_id": str(session.get("device_id", "")),
            "expires_at": str(session.get("expires_at", "")),
        }
        return {"valid": True, "session": view, "role": role}

    async def logout(self, session_id: str | None = None) -> None:
        """Revoke the session; succeeds when there is none."""
        await self._request("POST", "/api/auth/logout", headers=self._cookie_header(session_id))

    async def create_session(
        self,
        user_id: str,
        role: str,
        device_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        platform: str | None = None,
        location: str | None = None,
    ) -> CreatedSession:
        """Open a session for an already authenticated principal."""
        if not self._service_key:
            raise SessionServiceResponseError("A service key is required to create sessions.")
        body: dict[str, Any] = {"user_id": user_id, "role": role}
        optional = {
            "device_id": device_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "platform": platform,
            "location": location,
        }
        body.update({key: value for key, value in optional.items() if value is not None})
        response = await self._request(
            "POST",
            "/api/auth/session/create",
            json=body,
            headers={SERVICE_KEY_HEADER: self._service_key},
        )
        payload = self._json_object(response)
        session_id = payload.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise SessionServiceResponseError(
                "Invalid session creation payload.", response.status_code
            )
        previous = payload.get("previous_device_id")
        return {
            "session_id": session_id,
            "device_id": str(payload.get("device_id", "")),
            "expires_at": str(payload.get("expires_at", "")),
            "previous_device_id": str(previous) if previous is not None else None,
            "message": str(payload.get("message", "")),
            "cookies": dict(response.cookies.items()),
        }

    async def aclose(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> SessionClient:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        del exc_type, exc, tb
        await self.aclose()

    def _cookie_header(self, session_id: str | None) -> dict[str, str] | None:
        """Build an explicit Cookie header for a forwarded session id."""
        if not session_id:
            return None
        return {"Cookie": f"{self._session_cookie_name}={session_id}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Execute request and normalize upstream failures."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise SessionServiceUnavailableError("Session service unavailable.") from exc

        if response.status_code >= 500:
            raise SessionServiceUnavailableError("Session service unavailable.")
        if response.status_code >= 400:
            code: str | None = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("code"), str):
                code = body["code"]
            raise SessionServiceResponseError(
                f"Session service request failed with status {response.status_code}.",
                response.status_code,
                code,
            )
        return response

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        """Return response JSON as object."""
        try:
            payload = response.json()
        except ValueError as exc:
            raise SessionServiceResponseError(
                "Session service returned invalid JSON.", response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise SessionServiceResponseError(
                "Session service returned invalid JSON object.", response.status_code
            )
        return payload
