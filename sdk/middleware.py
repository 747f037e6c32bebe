"""Session authentication middleware for consuming services."""

from __future__ import annotations

from hashlib import sha256

from cachetools import TTLCache
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from sdk.client import SessionClient
from sdk.exceptions import SessionServiceResponseError, SessionServiceUnavailableError
from sdk.types import SessionIdentity


def _error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    """Build SDK auth error response payload."""
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Check the session cookie with the session service and cache outcomes.

    Cache keys are SHA-256 digests of the session id, so raw ids never sit in
    memory longer than the request. Service outages fail closed with 503.
    """

    def __init__(
        self,
        app,
        session_base_url: str,
        session_client: SessionClient | None = None,
        session_cookie_name: str = "session_id",
        cache_maxsize: int = 10000,
        valid_ttl_seconds: int = 30,
        invalid_ttl_seconds: int = 10,
        exempt_paths: tuple[str, ...] = (),
    ) -> None:
        super().__init__(app)
        self._client = session_client or SessionClient(
            base_url=session_base_url, session_cookie_name=session_cookie_name
        )
        self._cookie_name = session_cookie_name
        self._valid_cache: TTLCache[str, SessionIdentity] = TTLCache(
            maxsize=cache_maxsize, ttl=valid_ttl_seconds
        )
        self._invalid_cache: TTLCache[str, bool] = TTLCache(
            maxsize=cache_maxsize, ttl=invalid_ttl_seconds
        )
        self._exempt_paths = exempt_paths

    async def dispatch(self, request: Request, call_next) -> Response:
        """Resolve the session identity and inject it into request state."""
        if self._exempt_paths and request.url.path.startswith(self._exempt_paths):
            return await call_next(request)

        session_id = request.cookies.get(self._cookie_name, "").strip()
        if not session_id:
            return _error_response(401, "Not authenticated.", "no_session")

        cache_key = sha256(session_id.encode("utf-8")).hexdigest()
        cached_identity = self._valid_cache.get(cache_key)
        if cached_identity is not None:
            request.state.user = cached_identity
            return await call_next(request)
        if cache_key in self._invalid_cache:
            return _error_response(401, "Not authenticated.", "invalid_session")

        try:
            status = await self._client.fetch_session(session_id)
        except (SessionServiceUnavailableError, SessionServiceResponseError):
            return _error_response(503, "Session service unavailable.", "service_unavailable")

        session = status["session"]
        if not status["valid"] or session is None or status["role"] is None:
            self._invalid_cache[cache_key] = True
            return _error_response(401, "Not authenticated.", "invalid_session")

        identity: SessionIdentity = {
            "type": "session",
            "user_id": session["user_id"],
            "role": status["role"],
            "device_id": session["device_id"],
            "session_id": session["id"],
            "expires_at": session["expires_at"],
        }
        self._valid_cache[cache_key] = identity
        request.state.user = identity
        return await call_next(request)
