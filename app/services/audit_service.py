"""Action log for session, device and admin operations."""

from __future__ import annotations

from functools import lru_cache
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import structlog
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.request_meta import extract_client_ip, parse_uuid
from app.db.session import get_session_factory
from app.models.audit_event import AuditActorType, AuditEvent

logger = structlog.get_logger(__name__)

_REDACTED = "***REDACTED***"
_SENSITIVE_KEY_PARTS = (
    "authorization",
    "cookie",
    "refresh",
    "secret",
    "service_key",
    "session_id",
    "token",
)


def _is_sensitive_key(key: str) -> bool:
    """Return True when a metadata key likely carries a credential."""
    normalized = key.strip().lower().replace("-", "_")
    return any(part in normalized for part in _SENSITIVE_KEY_PARTS)


def _correlation_uuid(request: Request | None) -> UUID | None:
    """Resolve the request correlation ID into UUID form for storage."""
    if request is None:
        return None
    raw_value = getattr(request.state, "correlation_id", None) or request.headers.get(
        "x-correlation-id"
    )
    if not raw_value:
        return None
    text = str(raw_value).strip()
    return parse_uuid(text) or uuid5(NAMESPACE_URL, text)


def _sanitize_metadata_value(value: Any) -> Any:
    """Coerce metadata values to JSON-safe primitives."""
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, dict):
        return _sanitize_metadata(value)
    if isinstance(value, list | tuple):
        return [_sanitize_metadata_value(item) for item in value]
    return str(value)


def _sanitize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Redact credential-bearing keys from metadata."""
    if metadata is None:
        return None
    sanitized: dict[str, Any] = {}
    for key, value in metadata.items():
        if _is_sensitive_key(key):
            sanitized[key] = _REDACTED
            continue
        sanitized[key] = _sanitize_metadata_value(value)
    return sanitized or None


class AuditService:
    """Build and persist append-only action log entries."""

    def build_event(
        self,
        event_type: str,
        actor_type: AuditActorType | str,
        success: bool,
        request: Request | None = None,
        actor_id: str | UUID | None = None,
        target_id: str | UUID | None = None,
        target_type: str | None = None,
        device_id: str | None = None,
        failure_reason: str | None = None,
        metadata: dict[str, Any] | None = None,
        tenant_id: UUID | None = None,
    ) -> AuditEvent:
        """Return an unsaved action log row."""
        try:
            normalized_actor_type = AuditActorType(actor_type)
        except ValueError:
            normalized_actor_type = AuditActorType.SYSTEM

        return AuditEvent(
            event_type=event_type.strip(),
            actor_id=parse_uuid(actor_id),
            actor_type=normalized_actor_type,
            target_id=parse_uuid(target_id),
            target_type=target_type.strip() if target_type else None,
            device_id=device_id,
            ip_address=extract_client_ip(request) if request is not None else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
            correlation_id=_correlation_uuid(request),
            success=success,
            failure_reason=failure_reason.strip() if failure_reason else None,
            event_metadata=_sanitize_metadata(metadata),
            tenant_id=tenant_id,
        )

    async def record(
        self,
        db: AsyncSession,
        event_type: str,
        actor_type: AuditActorType | str,
        success: bool,
        request: Request | None = None,
        actor_id: str | UUID | None = None,
        target_id: str | UUID | None = None,
        target_type: str | None = None,
        device_id: str | None = None,
        failure_reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Write one entry in its own transaction; write failures are only logged."""
        event = self.build_event(
            event_type=event_type,
            actor_type=actor_type,
            success=success,
            request=request,
            actor_id=actor_id,
            target_id=target_id,
            target_type=target_type,
            device_id=device_id,
            failure_reason=failure_reason,
            metadata=metadata,
        )
        try:
            if isinstance(db, AsyncSession):
                session_factory = get_session_factory()
                async with session_factory() as audit_db:
                    audit_db.add(event)
                    await audit_db.commit()
            else:
                db.add(event)
                await db.commit()
        except SQLAlchemyError as exc:
            if not isinstance(db, AsyncSession):
                await db.rollback()
            logger.error(
                "audit_write_failed",
                event_type=event_type,
                actor_type=event.actor_type.value,
                success=success,
                error=str(exc),
            )


@lru_cache
def get_audit_service() -> AuditService:
    """Create and cache audit service dependency."""
    return AuditService()
