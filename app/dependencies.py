"""Shared FastAPI dependency helpers."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.cookies import CookieManager, RequestCookieJar
from app.core.roles import Role
from app.core.sessions import (
    INTERNAL_ERROR,
    SessionAuthError,
    SessionData,
    SessionManager,
    get_session_manager,
)
from app.db.session import get_db_session


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped async database session dependency."""
    async for session in get_db_session():
        yield session


def get_cookie_manager(request: Request) -> CookieManager:
    """Bind a cookie manager to the incoming request's cookies."""
    settings = get_settings()
    return CookieManager(
        RequestCookieJar.from_request(request),
        secure=settings.secure_cookies,
        session_cookie_name=settings.session.session_cookie_name,
        refresh_cookie_name=settings.session.refresh_cookie_name,
        session_same_site=settings.session.session_cookie_same_site,
        refresh_same_site=settings.session.refresh_cookie_same_site,
    )


async def require_session(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    cookies: Annotated[CookieManager, Depends(get_cookie_manager)],
    session_manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> SessionData:
    """Resolve the caller's valid session or fail with 401."""
    result = await session_manager.validate_session(db_session, cookies)
    if not result.valid or result.session is None:
        status_code = 503 if result.code == INTERNAL_ERROR else 401
        raise SessionAuthError(
            detail=result.error or "Not authenticated.",
            code=result.code or "no_session",
            status_code=status_code,
            cookies=cookies,
        )
    request.state.session = result.session
    return result.session


async def require_admin_session(
    session: Annotated[SessionData, Depends(require_session)],
) -> SessionData:
    """Resolve the caller's session and require the admin role."""
    if session.role is not Role.ADMIN:
        raise SessionAuthError(
            detail="Admin role required.",
            code="forbidden",
            status_code=403,
        )
    return session


async def require_service_key(
    x_service_key: Annotated[str | None, Header(alias="X-Service-Key")] = None,
) -> None:
    """Require the shared key of trusted callers creating sessions."""
    expected = get_settings().session.create_api_key.get_secret_value()
    if not x_service_key or not hmac.compare_digest(x_service_key, expected):
        raise SessionAuthError(
            detail="Invalid service key.",
            code="invalid_service_key",
            status_code=401,
        )
