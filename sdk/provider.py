"""Client-side mirror of server session validity."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable

from sdk.client import SessionClient
from sdk.exceptions import SDKError
from sdk.types import SessionView, role_rank

LogoutCallback = Callable[[], Awaitable[None] | None]


class SessionProvider:
    """Track whether the current browser session is authenticated.

    State only ever comes from the session service: a failed or malformed
    check leaves the provider unauthenticated rather than keeping stale state.
    """

    def __init__(
        self,
        client: SessionClient,
        initial_session: SessionView | None = None,
        initial_role: str | None = None,
        on_logout: LogoutCallback | None = None,
    ) -> None:
        self._client = client
        self._session = initial_session
        self._role = initial_role if initial_session is not None else None
        self._authenticated = initial_session is not None
        self._loading = False
        self._on_logout = on_logout
        self._lock = asyncio.Lock()

    @property
    def session(self) -> SessionView | None:
        """Current session projection."""
        return self._session

    @property
    def role(self) -> str | None:
        """Current session role."""
        return self._role

    @property
    def loading(self) -> bool:
        """True while a session check is in flight."""
        return self._loading

    @property
    def authenticated(self) -> bool:
        """True when the last check found a valid session."""
        return self._authenticated

    async def check_session(self, session_id: str | None = None) -> bool:
        """Refresh state from the service and return ``authenticated``."""
        async with self._lock:
            self._loading = True
            try:
                status = await self._client.fetch_session(session_id)
            except SDKError:
                self._clear()
            else:
                if status["valid"] and status["session"] is not None:
                    self._session = status["session"]
                    self._role = status["role"]
                    self._authenticated = True
                else:
                    self._clear()
            finally:
                self._loading = False
            return self._authenticated

    async def logout(self, session_id: str | None = None) -> bool:
        """Revoke the session; local state is kept when the service is unreachable."""
        try:
            await self._client.logout(session_id)
        except SDKError:
            return False
        self._clear()
        if self._on_logout is not None:
            result = self._on_logout()
            if inspect.isawaitable(result):
                await result
        return True

    def has_role(self, required_role: str) -> bool:
        """Return True when the session role equals ``required_role``."""
        return self._role is not None and self._role == required_role

    def can_access(self, required_roles: Iterable[str]) -> bool:
        """Return True when the session role is one of ``required_roles``."""
        return self._role is not None and self._role in set(required_roles)

    def has_role_or_higher(self, required_role: str) -> bool:
        """Compare the session role to ``required_role`` by privilege rank."""
        current = role_rank(self._role)
        required = role_rank(required_role)
        if current is None or required is None:
            return False
        return current >= required

    def _clear(self) -> None:
        self._session = None
        self._role = None
        self._authenticated = False
