"""Composite bearer-token, session and device check."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.roles import Role
from app.core.sessions import SessionManager, get_session_manager
from app.core.tokens import SessionTokenService, TokenValidationError, get_session_token_service
from app.services.device_control import DeviceControlService, get_device_control_service

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SessionValidation:
    """Fixed-shape validation outcome; every field is zeroed on failure."""

    user_id: str = ""
    role: Role | None = None
    device_id: str = ""
    session_id: str = ""
    issued_at: int = 0
    expires_at: int = 0
    is_valid: bool = False
    device_valid: bool = False


INVALID_SESSION_VALIDATION = SessionValidation()


class SessionValidator:
    """Verify a session bearer token against stored session and device state.

    ``validate`` never raises: every failure, including a database outage,
    returns ``INVALID_SESSION_VALIDATION``.
    """

    def __init__(
        self,
        token_service: SessionTokenService,
        session_manager: SessionManager,
        device_control: DeviceControlService,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._token_service = token_service
        self._session_manager = session_manager
        self._device_control = device_control
        self._now = now or (lambda: datetime.now(UTC))

    async def validate(
        self,
        db_session: AsyncSession,
        token: str | None,
        device_id: str | None,
    ) -> SessionValidation:
        """Return the validation outcome for ``token`` presented by ``device_id``."""
        try:
            return await self._validate(db_session, token, device_id)
        except Exception as exc:
            logger.error("session_validation_error", error=str(exc))
            return INVALID_SESSION_VALIDATION

    async def _validate(
        self,
        db_session: AsyncSession,
        token: str | None,
        device_id: str | None,
    ) -> SessionValidation:
        if not token or not device_id:
            return INVALID_SESSION_VALIDATION
        try:
            payload = self._token_service.verify(token)
        except TokenValidationError as exc:
            logger.info("session_validation_rejected", reason=exc.code)
            return INVALID_SESSION_VALIDATION

        session = await self._session_manager.load_session(db_session, payload.session_id)
        if session is None or session.user_id != payload.user_id:
            logger.info("session_validation_rejected", reason="session_not_found")
            return INVALID_SESSION_VALIDATION
        if session.revoked:
            logger.info("session_validation_rejected", reason="session_revoked")
            return INVALID_SESSION_VALIDATION
        if session.expires_at <= self._now():
            logger.info("session_validation_rejected", reason="session_expired")
            return INVALID_SESSION_VALIDATION
        if device_id != payload.device_id or session.device_id != payload.device_id:
            logger.warning(
                "session_validation_rejected",
                reason="device_mismatch",
                session_id=session.id,
            )
            return INVALID_SESSION_VALIDATION

        device_valid = await self._device_control.is_device_authorized(
            db_session,
            user_id=session.user_uuid,
            device_id=device_id,
            role=session.role,
        )
        return SessionValidation(
            user_id=session.user_id,
            role=session.role,
            device_id=device_id,
            session_id=session.id,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            is_valid=True,
            device_valid=device_valid,
        )


@lru_cache
def get_session_validator() -> SessionValidator:
    """Create and cache the session validator dependency."""
    return SessionValidator(
        token_service=get_session_token_service(),
        session_manager=get_session_manager(),
        device_control=get_device_control_service(),
    )
