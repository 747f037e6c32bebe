"""Cookie-bound session lifecycle with rotating refresh tokens."""

from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from hashlib import sha256
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import SessionSettings, get_settings
from app.core.cookies import CookieManager
from app.core.request_meta import coerce_ip, parse_uuid
from app.core.roles import Role
from app.models.session import UserSession

logger = structlog.get_logger(__name__)

NO_SESSION = "no_session"
INVALID_SESSION = "invalid_session"
SESSION_EXPIRED = "session_expired"
SESSION_REVOKED = "session_revoked"
REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
INTERNAL_ERROR = "internal_error"


class SessionAuthError(Exception):
    """Raised by request dependencies when the session cookie is not acceptable."""

    def __init__(
        self,
        detail: str,
        code: str,
        status_code: int,
        cookies: CookieManager | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.cookies = cookies


@dataclass(frozen=True)
class SessionData:
    """Snapshot of a stored session row."""

    id: str
    user_id: str
    role: Role
    device_id: str
    expires_at: datetime
    refresh_token_hash: str
    revoked: bool
    created_at: datetime | None = None
    parent_session_id: str | None = None

    @property
    def user_uuid(self) -> UUID:
        """User id as a UUID."""
        return UUID(self.user_id)

    @classmethod
    def from_row(cls, row: UserSession) -> SessionData:
        """Build a snapshot from an ORM row."""
        return cls(
            id=str(row.id),
            user_id=str(row.user_id),
            role=row.role,
            device_id=row.device_fingerprint,
            expires_at=row.expires_at,
            refresh_token_hash=row.refresh_token_hash,
            revoked=row.revoked,
            created_at=row.created_at,
            parent_session_id=str(row.parent_session_id) if row.parent_session_id else None,
        )


@dataclass(frozen=True)
class CreateSessionResult:
    """Outcome of session creation."""

    success: bool
    session_id: str = ""
    refresh_token: str = ""
    expires_at: datetime | None = None
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class ValidateSessionResult:
    """Outcome of session cookie validation."""

    valid: bool
    session: SessionData | None = None
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class RefreshSessionResult:
    """Outcome of refresh token rotation."""

    success: bool
    new_session_id: str = ""
    new_refresh_token: str = ""
    session: SessionData | None = None
    error: str | None = None
    code: str | None = None


class SessionManager:
    """Create, validate, rotate and revoke cookie-bound sessions.

    Every operation receives the database session and the cookie manager for
    the current request explicitly. Refresh rotation claims the parent row
    with a conditional update keyed on its generation, so two concurrent
    refreshes with the same token produce at most one child session.
    """

    def __init__(
        self,
        customer_ttl_hours: int = 6,
        staff_ttl_hours: int = 12,
        admin_ttl_hours: int = 24,
        refresh_window_days: int = 7,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._ttl_by_role = {
            Role.ADMIN: timedelta(hours=admin_ttl_hours),
            Role.STAFF: timedelta(hours=staff_ttl_hours),
        }
        self._default_ttl = timedelta(hours=customer_ttl_hours)
        self._refresh_window = timedelta(days=refresh_window_days)
        self._now = now or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(cls, settings: SessionSettings) -> SessionManager:
        """Build a manager from session settings."""
        return cls(
            customer_ttl_hours=settings.customer_ttl_hours,
            staff_ttl_hours=settings.staff_ttl_hours,
            admin_ttl_hours=settings.admin_ttl_hours,
            refresh_window_days=settings.refresh_window_days,
        )

    @property
    def refresh_window(self) -> timedelta:
        """Maximum age of a refresh chain."""
        return self._refresh_window

    def session_ttl(self, role: Role) -> timedelta:
        """Return the session lifetime for ``role``."""
        return self._ttl_by_role.get(role, self._default_ttl)

    async def create_session(
        self,
        db_session: AsyncSession,
        cookies: CookieManager,
        user_id: UUID,
        role: Role,
        device_fingerprint: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        tenant_id: UUID | None = None,
    ) -> CreateSessionResult:
        """Persist a new session and set both session cookies."""
        now = self._now()
        refresh_token = self._generate_refresh_token()
        expires_at = now + self.session_ttl(role)
        row = UserSession(
            id=uuid4(),
            user_id=user_id,
            role=role,
            device_fingerprint=device_fingerprint,
            ip_address=coerce_ip(ip_address),
            user_agent=user_agent,
            expires_at=expires_at,
            refresh_token_hash=self._hash_token(refresh_token),
            revoked=False,
            revoked_at=None,
            parent_session_id=None,
            chain_started_at=now,
            generation=0,
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
        )
        try:
            await self._insert_session(db_session, row)
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error("session_create_failed", user_id=str(user_id), error=str(exc))
            return CreateSessionResult(
                success=False, error="Failed to create session", code=INTERNAL_ERROR
            )

        cookies.set_session_token(str(row.id), expires_at)
        cookies.set_refresh_token(refresh_token, now + self._refresh_window)
        logger.info(
            "session_created",
            session_id=str(row.id),
            user_id=str(user_id),
            role=role.value,
        )
        return CreateSessionResult(
            success=True,
            session_id=str(row.id),
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    async def validate_session(
        self,
        db_session: AsyncSession,
        cookies: CookieManager,
    ) -> ValidateSessionResult:
        """Validate the session-id cookie against stored state."""
        raw_session_id = cookies.get_session_token()
        if not raw_session_id:
            return ValidateSessionResult(
                valid=False, error="No session cookie found", code=NO_SESSION
            )

        session_id = parse_uuid(raw_session_id)
        if session_id is None:
            return ValidateSessionResult(valid=False, error="Session not found", code=INVALID_SESSION)

        try:
            row = await self._fetch_session_by_id(db_session, session_id)
        except SQLAlchemyError as exc:
            logger.error("session_lookup_failed", session_id=str(session_id), error=str(exc))
            return ValidateSessionResult(
                valid=False, error="Internal server error", code=INTERNAL_ERROR
            )

        if row is None:
            return ValidateSessionResult(valid=False, error="Session not found", code=INVALID_SESSION)
        if row.revoked:
            cookies.clear_session_cookies()
            return ValidateSessionResult(valid=False, error="Session revoked", code=SESSION_REVOKED)
        if row.expires_at <= self._now():
            cookies.clear_session_cookies()
            return ValidateSessionResult(valid=False, error="Session expired", code=SESSION_EXPIRED)
        return ValidateSessionResult(valid=True, session=SessionData.from_row(row))

    async def refresh_session(
        self,
        db_session: AsyncSession,
        cookies: CookieManager,
    ) -> RefreshSessionResult:
        """Rotate the refresh token into a new child session."""
        raw_refresh_token = cookies.get_refresh_token()
        if not raw_refresh_token:
            return RefreshSessionResult(
                success=False, error="No refresh token found", code=NO_SESSION
            )

        refresh_hash = self._hash_token(raw_refresh_token)
        try:
            parent = await self._fetch_active_session_by_refresh_hash(db_session, refresh_hash)
        except SQLAlchemyError as exc:
            logger.error("session_refresh_lookup_failed", error=str(exc))
            return RefreshSessionResult(
                success=False, error="Internal server error", code=INTERNAL_ERROR
            )

        if parent is None:
            cookies.clear_session_cookies()
            return RefreshSessionResult(
                success=False, error="Invalid refresh token", code=INVALID_SESSION
            )

        now = self._now()
        refresh_deadline = parent.chain_started_at + self._refresh_window
        if now > refresh_deadline:
            cookies.clear_session_cookies()
            logger.info("session_refresh_window_elapsed", session_id=str(parent.id))
            return RefreshSessionResult(
                success=False, error="Refresh token expired", code=REFRESH_TOKEN_EXPIRED
            )

        new_refresh_token = self._generate_refresh_token()
        expires_at = now + self.session_ttl(parent.role)
        child = UserSession(
            id=uuid4(),
            user_id=parent.user_id,
            role=parent.role,
            device_fingerprint=parent.device_fingerprint,
            ip_address=parent.ip_address,
            user_agent=parent.user_agent,
            expires_at=expires_at,
            refresh_token_hash=self._hash_token(new_refresh_token),
            revoked=False,
            revoked_at=None,
            parent_session_id=parent.id,
            chain_started_at=parent.chain_started_at,
            generation=0,
            created_at=now,
            updated_at=now,
            tenant_id=parent.tenant_id,
        )
        try:
            claimed = await self._claim_for_rotation(db_session, parent, now)
            if not claimed:
                await db_session.rollback()
                cookies.clear_session_cookies()
                logger.warning("session_refresh_replay_rejected", session_id=str(parent.id))
                return RefreshSessionResult(
                    success=False, error="Invalid refresh token", code=INVALID_SESSION
                )
            await self._insert_session(db_session, child)
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error("session_refresh_failed", session_id=str(parent.id), error=str(exc))
            return RefreshSessionResult(
                success=False, error="Failed to refresh session", code=INTERNAL_ERROR
            )

        cookies.set_session_token(str(child.id), expires_at)
        cookies.set_refresh_token(new_refresh_token, refresh_deadline)
        logger.info(
            "session_refreshed",
            parent_session_id=str(parent.id),
            session_id=str(child.id),
            user_id=str(parent.user_id),
        )
        return RefreshSessionResult(
            success=True,
            new_session_id=str(child.id),
            new_refresh_token=new_refresh_token,
            session=SessionData.from_row(child),
        )

    async def revoke_session(
        self,
        db_session: AsyncSession,
        cookies: CookieManager,
        session_id: str | None = None,
    ) -> bool:
        """Revoke a session and clear cookies; revoking twice is harmless."""
        target = parse_uuid(session_id or cookies.get_session_token())
        if target is not None:
            try:
                await self._revoke_session_by_id(db_session, target, self._now())
                await db_session.commit()
            except SQLAlchemyError as exc:
                await db_session.rollback()
                logger.error("session_revoke_failed", session_id=str(target), error=str(exc))
            else:
                logger.info("session_revoked", session_id=str(target))
        cookies.clear_session_cookies()
        return True

    async def get_session_data(
        self,
        db_session: AsyncSession,
        cookies: CookieManager,
    ) -> SessionData | None:
        """Return the stored session named by the cookie without validating it."""
        session_id = parse_uuid(cookies.get_session_token())
        if session_id is None:
            return None
        try:
            row = await self._fetch_session_by_id(db_session, session_id)
        except SQLAlchemyError as exc:
            logger.error("session_lookup_failed", session_id=str(session_id), error=str(exc))
            return None
        return SessionData.from_row(row) if row is not None else None

    async def load_session(
        self,
        db_session: AsyncSession,
        session_id: str | UUID,
    ) -> SessionData | None:
        """Look up a session by id; database errors propagate to the caller."""
        parsed = parse_uuid(session_id)
        if parsed is None:
            return None
        row = await self._fetch_session_by_id(db_session, parsed)
        return SessionData.from_row(row) if row is not None else None

    async def _insert_session(self, db_session: AsyncSession, row: UserSession) -> None:
        """Stage a session row and flush it."""
        db_session.add(row)
        await db_session.flush()

    async def _fetch_session_by_id(
        self,
        db_session: AsyncSession,
        session_id: UUID,
    ) -> UserSession | None:
        """Fetch a session row by primary key."""
        result = await db_session.execute(select(UserSession).where(UserSession.id == session_id))
        return result.scalar_one_or_none()

    async def _fetch_active_session_by_refresh_hash(
        self,
        db_session: AsyncSession,
        refresh_token_hash: str,
    ) -> UserSession | None:
        """Fetch the non-revoked session owning a refresh token hash."""
        result = await db_session.execute(
            select(UserSession).where(
                UserSession.refresh_token_hash == refresh_token_hash,
                UserSession.revoked.is_(False),
            )
        )
        return result.scalar_one_or_none()

    async def _claim_for_rotation(
        self,
        db_session: AsyncSession,
        row: UserSession,
        now: datetime,
    ) -> bool:
        """Revoke ``row`` only if no concurrent refresh already did."""
        result = await db_session.execute(
            update(UserSession)
            .where(
                UserSession.id == row.id,
                UserSession.revoked.is_(False),
                UserSession.generation == row.generation,
            )
            .values(
                revoked=True,
                revoked_at=now,
                updated_at=now,
                generation=UserSession.generation + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _revoke_session_by_id(
        self,
        db_session: AsyncSession,
        session_id: UUID,
        now: datetime,
    ) -> None:
        """Mark one session revoked if it is still active."""
        await db_session.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.revoked.is_(False))
            .values(revoked=True, revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _generate_refresh_token() -> str:
        """Generate 256 bits of refresh token entropy."""
        return secrets.token_hex(32)

    @staticmethod
    def _hash_token(raw_token: str) -> str:
        """Hash a refresh token for storage and lookup."""
        return sha256(raw_token.encode("utf-8")).hexdigest()


@lru_cache
def get_session_manager() -> SessionManager:
    """Create and cache the session manager dependency."""
    return SessionManager.from_settings(get_settings().session)
