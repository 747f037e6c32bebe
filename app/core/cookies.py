"""Secure session cookie access bound to an explicit request context."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol

from starlette.requests import Request
from starlette.responses import Response

SameSite = Literal["lax", "strict"]


class CookieJar(Protocol):
    """Read incoming cookies and stage outgoing cookie mutations."""

    def get(self, name: str) -> str | None: ...

    def set(
        self,
        name: str,
        value: str,
        expires: datetime,
        same_site: SameSite,
        secure: bool,
    ) -> None: ...

    def delete(self, name: str, same_site: SameSite, secure: bool) -> None: ...

    def apply_to(self, response: Response) -> None: ...


@dataclass(frozen=True)
class CookieOperation:
    """One staged Set-Cookie mutation."""

    name: str
    value: str | None
    expires: datetime | None
    same_site: SameSite
    secure: bool


class RequestCookieJar:
    """Cookie jar reading from a request and writing to any outgoing response.

    Writes are staged so the caller chooses which response carries them,
    including error responses built after the session operation returned.
    """

    def __init__(self, incoming: Mapping[str, str]) -> None:
        self._incoming = dict(incoming)
        self._operations: list[CookieOperation] = []

    @classmethod
    def from_request(cls, request: Request) -> RequestCookieJar:
        """Build a jar from the request's Cookie header."""
        return cls(request.cookies)

    @property
    def operations(self) -> list[CookieOperation]:
        """Staged mutations in call order."""
        return list(self._operations)

    def get(self, name: str) -> str | None:
        """Return the incoming cookie value, honouring staged mutations."""
        for operation in reversed(self._operations):
            if operation.name == name:
                return operation.value
        value = self._incoming.get(name)
        return value or None

    def set(
        self,
        name: str,
        value: str,
        expires: datetime,
        same_site: SameSite,
        secure: bool,
    ) -> None:
        """Stage a cookie write."""
        self._operations.append(
            CookieOperation(
                name=name, value=value, expires=expires, same_site=same_site, secure=secure
            )
        )

    def delete(self, name: str, same_site: SameSite, secure: bool) -> None:
        """Stage a cookie deletion."""
        self._operations.append(
            CookieOperation(name=name, value=None, expires=None, same_site=same_site, secure=secure)
        )

    def apply_to(self, response: Response) -> None:
        """Write every staged mutation onto ``response`` headers."""
        for operation in self._operations:
            if operation.value is None:
                response.delete_cookie(
                    operation.name,
                    path="/",
                    secure=operation.secure,
                    httponly=True,
                    samesite=operation.same_site,
                )
                continue
            response.set_cookie(
                operation.name,
                operation.value,
                expires=operation.expires,
                path="/",
                secure=operation.secure,
                httponly=True,
                samesite=operation.same_site,
            )


class CookieManager:
    """Get, set and clear the session-id and refresh-token cookies."""

    def __init__(
        self,
        jar: CookieJar,
        secure: bool,
        session_cookie_name: str = "session_id",
        refresh_cookie_name: str = "refresh_token",
        session_same_site: SameSite = "lax",
        refresh_same_site: SameSite = "strict",
    ) -> None:
        self._jar = jar
        self._secure = secure
        self._session_cookie_name = session_cookie_name
        self._refresh_cookie_name = refresh_cookie_name
        self._session_same_site = session_same_site
        self._refresh_same_site = refresh_same_site

    @property
    def jar(self) -> CookieJar:
        """Underlying cookie jar."""
        return self._jar

    def get_session_token(self) -> str | None:
        """Return the session-id cookie value."""
        return self._jar.get(self._session_cookie_name)

    def get_refresh_token(self) -> str | None:
        """Return the raw refresh-token cookie value."""
        return self._jar.get(self._refresh_cookie_name)

    def set_session_token(self, session_id: str, expires_at: datetime) -> None:
        """Write the session-id cookie expiring with the session."""
        self._jar.set(
            self._session_cookie_name,
            session_id,
            expires=expires_at,
            same_site=self._session_same_site,
            secure=self._secure,
        )

    def set_refresh_token(self, refresh_token: str, expires_at: datetime) -> None:
        """Write the refresh-token cookie expiring with the refresh window."""
        self._jar.set(
            self._refresh_cookie_name,
            refresh_token,
            expires=expires_at,
            same_site=self._refresh_same_site,
            secure=self._secure,
        )

    def clear_session_cookies(self) -> None:
        """Delete both session cookies."""
        self._jar.delete(
            self._session_cookie_name, same_site=self._session_same_site, secure=self._secure
        )
        self._jar.delete(
            self._refresh_cookie_name, same_site=self._refresh_same_site, secure=self._secure
        )

    def apply_to(self, response: Response) -> None:
        """Flush staged cookie mutations onto ``response``."""
        self._jar.apply_to(response)
