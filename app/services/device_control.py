"""Device registration and single-device enforcement."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.fingerprint import DeviceInfo, generate_device_fingerprint
from app.core.request_meta import coerce_ip
from app.core.roles import Role
from app.models.audit_event import AuditActorType, AuditEvent
from app.models.device import Device
from app.models.device_conflict import DeviceConflict
from app.models.session import UserSession
from app.services.audit_service import AuditService, get_audit_service

logger = structlog.get_logger(__name__)

FORCE_LOGOUT_EVENT = "device.force_logout"
CONFLICT_NOT_FOUND = "Conflict not found"


@dataclass(frozen=True)
class DeviceControlResult:
    """Outcome of a device registration."""

    success: bool
    message: str
    new_device_id: str
    previous_device_id: str | None = None


@dataclass(frozen=True)
class DeviceConflictResolution:
    """Outcome of an admin conflict resolution."""

    conflict_id: str
    resolved: bool
    resolution_notes: str | None = None


class DeviceControlService:
    """Register devices and enforce the single-device policy per role.

    A takeover (conflict log, session invalidation, device deactivation and
    registration of the new device) is one transaction: any failing step
    rolls every step back and the caller sees ``success=False``.
    """

    def __init__(
        self,
        audit_service: AuditService | None = None,
        fingerprint_factory: Callable[[DeviceInfo | None], str] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._audit = audit_service or AuditService()
        self._fingerprint_factory = fingerprint_factory or generate_device_fingerprint
        self._now = now or (lambda: datetime.now(UTC))

    async def register_device_for_user(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        role: Role,
        device_info: DeviceInfo | None = None,
        device_id: str | None = None,
        tenant_id: UUID | None = None,
        commit: bool = True,
    ) -> DeviceControlResult:
        """Register a device, evicting the previous one for single-device roles.

        With ``commit=False`` the writes are only flushed and the per-user lock
        stays held, so the caller can commit them together with the session it
        opens for the device. A failure is still rolled back here.
        """
        new_device_id = device_id or self._fingerprint_factory(device_info)
        previous_device_id: str | None = None
        try:
            await self._lock_user_devices(db_session, user_id)
            if role.single_device:
                active_devices = await self._fetch_active_devices(db_session, user_id)
                old_device_ids = [device.id for device in active_devices if device.id != new_device_id]
                if old_device_ids:
                    previous_device_id = old_device_ids[0]
                    await self._insert_conflict(
                        db_session,
                        DeviceConflict(
                            user_id=user_id,
                            new_device_id=new_device_id,
                            old_device_ids=old_device_ids,
                            role=role,
                            timestamp=self._now(),
                            resolved=False,
                            tenant_id=tenant_id,
                        ),
                    )
                    logger.info(
                        "device_conflict_logged",
                        user_id=str(user_id),
                        new_device_id=new_device_id,
                        old_device_ids=old_device_ids,
                        role=role.value,
                    )
                    await self._revoke_user_sessions(
                        db_session, user_id, keep_device_id=new_device_id, now=self._now()
                    )
                    await self._deactivate_user_devices(
                        db_session, user_id, keep_device_id=new_device_id, now=self._now()
                    )

            now = self._now()
            existing = (
                await self._fetch_device(db_session, user_id, new_device_id) if device_id else None
            )
            if existing is not None:
                await self._reactivate_device(db_session, user_id, new_device_id, now)
            else:
                info = device_info or DeviceInfo()
                await self._insert_device(
                    db_session,
                    Device(
                        id=new_device_id,
                        user_id=user_id,
                        role=role,
                        user_agent=info.user_agent,
                        platform=info.platform,
                        ip_address=coerce_ip(info.ip_address),
                        location=info.location,
                        is_active=True,
                        first_used=now,
                        last_active=now,
                        created_at=now,
                        updated_at=now,
                        tenant_id=tenant_id,
                    ),
                )
            if commit:
                await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error(
                "device_registration_failed",
                user_id=str(user_id),
                device_id=new_device_id,
                role=role.value,
                error=str(exc),
            )
            return DeviceControlResult(
                success=False,
                message="Failed to register new device",
                new_device_id=new_device_id,
            )

        if previous_device_id is not None:
            logger.info(
                "device_takeover_completed",
                user_id=str(user_id),
                new_device_id=new_device_id,
                previous_device_id=previous_device_id,
            )
            return DeviceControlResult(
                success=True,
                message=(
                    f"New device registered. Previous device {previous_device_id} "
                    "has been logged out."
                ),
                new_device_id=new_device_id,
                previous_device_id=previous_device_id,
            )
        logger.info("device_registered", user_id=str(user_id), device_id=new_device_id)
        return DeviceControlResult(
            success=True,
            message="Device registered successfully",
            new_device_id=new_device_id,
        )

    async def is_device_authorized(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        device_id: str,
        role: Role,
    ) -> bool:
        """Return whether ``device_id`` may act for ``user_id`` under ``role``."""
        if role is Role.CUSTOMER:
            return True
        try:
            if role.single_device:
                active_devices = await self._fetch_active_devices(db_session, user_id)
                return len(active_devices) == 1 and active_devices[0].id == device_id
            device = await self._fetch_device(db_session, user_id, device_id)
        except SQLAlchemyError as exc:
            logger.error(
                "device_authorization_check_failed",
                user_id=str(user_id),
                device_id=device_id,
                error=str(exc),
            )
            return False
        return device is not None and device.is_active

    async def force_logout_user(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        admin_id: UUID,
        reason: str = "Admin action",
    ) -> bool:
        """Revoke every session and device of a user and log the admin action."""
        now = self._now()
        try:
            revoked = await self._revoke_user_sessions(db_session, user_id, None, now)
            deactivated = await self._deactivate_user_devices(db_session, user_id, None, now)
            await self._insert_audit_event(
                db_session,
                self._audit.build_event(
                    event_type=FORCE_LOGOUT_EVENT,
                    actor_type=AuditActorType.ADMIN,
                    success=True,
                    actor_id=admin_id,
                    target_id=user_id,
                    target_type="user",
                    metadata={
                        "reason": reason,
                        "sessions_revoked": revoked,
                        "devices_deactivated": deactivated,
                    },
                ),
            )
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error(
                "force_logout_failed",
                user_id=str(user_id),
                admin_id=str(admin_id),
                error=str(exc),
            )
            return False

        logger.info(
            "user_force_logged_out",
            user_id=str(user_id),
            admin_id=str(admin_id),
            sessions_revoked=revoked,
            devices_deactivated=deactivated,
        )
        return True

    async def resolve_device_conflict(
        self,
        db_session: AsyncSession,
        conflict_id: UUID,
        admin_id: UUID,
        resolution_notes: str,
    ) -> DeviceConflictResolution:
        """Mark a conflict resolved; sessions and devices are left untouched."""
        try:
            updated = await self._mark_conflict_resolved(
                db_session, conflict_id, admin_id, resolution_notes, self._now()
            )
            if updated == 0:
                await db_session.rollback()
                return DeviceConflictResolution(
                    conflict_id=str(conflict_id),
                    resolved=False,
                    resolution_notes=CONFLICT_NOT_FOUND,
                )
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error("device_conflict_resolve_failed", conflict_id=str(conflict_id), error=str(exc))
            return DeviceConflictResolution(
                conflict_id=str(conflict_id),
                resolved=False,
                resolution_notes="Error resolving conflict",
            )

        logger.info(
            "device_conflict_resolved", conflict_id=str(conflict_id), admin_id=str(admin_id)
        )
        return DeviceConflictResolution(
            conflict_id=str(conflict_id),
            resolved=True,
            resolution_notes=resolution_notes,
        )

    async def get_active_devices_for_user(
        self,
        db_session: AsyncSession,
        user_id: UUID,
    ) -> list[Device]:
        """Return the user's active devices, empty on lookup failure."""
        try:
            return await self._fetch_active_devices(db_session, user_id)
        except SQLAlchemyError as exc:
            logger.error("active_devices_lookup_failed", user_id=str(user_id), error=str(exc))
            return []

    async def invalidate_all_user_sessions(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        keep_device_id: str | None = None,
    ) -> bool:
        """Revoke the user's sessions except those bound to ``keep_device_id``."""
        try:
            await self._revoke_user_sessions(db_session, user_id, keep_device_id, self._now())
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error("session_invalidation_failed", user_id=str(user_id), error=str(exc))
            return False
        return True

    async def deactivate_all_user_devices(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        keep_device_id: str | None = None,
    ) -> bool:
        """Deactivate the user's devices except ``keep_device_id``."""
        try:
            await self._deactivate_user_devices(db_session, user_id, keep_device_id, self._now())
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error("device_deactivation_failed", user_id=str(user_id), error=str(exc))
            return False
        return True

    async def get_pending_device_conflicts(self, db_session: AsyncSession) -> list[DeviceConflict]:
        """Return unresolved conflicts awaiting admin attention, oldest first."""
        try:
            return await self._fetch_conflicts(db_session, resolved=False)
        except SQLAlchemyError as exc:
            logger.error("pending_conflicts_lookup_failed", error=str(exc))
            return []

    async def get_device_conflicts_for_user(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        limit: int = 10,
    ) -> list[DeviceConflict]:
        """Return the user's most recent conflicts, newest first."""
        try:
            return await self._fetch_conflicts(db_session, user_id=user_id, limit=limit)
        except SQLAlchemyError as exc:
            logger.error("user_conflicts_lookup_failed", user_id=str(user_id), error=str(exc))
            return []

    async def update_device_activity(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        device_id: str,
    ) -> bool:
        """Record a heartbeat for one of the user's devices."""
        try:
            updated = await self._touch_device(db_session, user_id, device_id, self._now())
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            logger.error(
                "device_activity_update_failed",
                user_id=str(user_id),
                device_id=device_id,
                error=str(exc),
            )
            return False
        return updated > 0

    async def is_user_device_locked(self, db_session: AsyncSession, user_id: UUID) -> bool:
        """Return True when the user has neither a live session nor an active device."""
        try:
            sessions = await self._count_live_sessions(db_session, user_id, self._now())
            devices = len(await self._fetch_active_devices(db_session, user_id))
        except SQLAlchemyError as exc:
            logger.error("device_lock_check_failed", user_id=str(user_id), error=str(exc))
            return False
        return sessions == 0 and devices == 0

    async def _lock_user_devices(self, db_session: AsyncSession, user_id: UUID) -> None:
        """Serialize registrations for one user until the transaction ends."""
        await db_session.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(str(user_id))))
        )

    async def _fetch_active_devices(
        self,
        db_session: AsyncSession,
        user_id: UUID,
    ) -> list[Device]:
        """Fetch active devices ordered by most recent activity."""
        result = await db_session.execute(
            select(Device)
            .where(Device.user_id == user_id, Device.is_active.is_(True))
            .order_by(Device.last_active.desc())
        )
        return list(result.scalars().all())

    async def _fetch_device(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        device_id: str,
    ) -> Device | None:
        """Fetch one device owned by the user."""
        result = await db_session.execute(
            select(Device).where(Device.id == device_id, Device.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _insert_device(self, db_session: AsyncSession, device: Device) -> None:
        """Stage a device row and flush it."""
        db_session.add(device)
        await db_session.flush()

    async def _insert_conflict(self, db_session: AsyncSession, conflict: DeviceConflict) -> None:
        """Stage a conflict row and flush it ahead of the takeover writes."""
        db_session.add(conflict)
        await db_session.flush()

    async def _insert_audit_event(self, db_session: AsyncSession, event: AuditEvent) -> None:
        """Stage an action log row."""
        db_session.add(event)
        await db_session.flush()

    async def _revoke_user_sessions(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        keep_device_id: str | None,
        now: datetime,
    ) -> int:
        """Revoke active sessions, sparing those bound to ``keep_device_id``."""
        statement = update(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.revoked.is_(False),
        )
        if keep_device_id is not None:
            statement = statement.where(UserSession.device_fingerprint != keep_device_id)
        result = await db_session.execute(
            statement.values(revoked=True, revoked_at=now, updated_at=now).execution_options(
                synchronize_session=False
            )
        )
        return result.rowcount

    async def _deactivate_user_devices(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        keep_device_id: str | None,
        now: datetime,
    ) -> int:
        """Deactivate active devices, sparing ``keep_device_id``."""
        statement = update(Device).where(Device.user_id == user_id, Device.is_active.is_(True))
        if keep_device_id is not None:
            statement = statement.where(Device.id != keep_device_id)
        result = await db_session.execute(
            statement.values(is_active=False, last_active=now, updated_at=now).execution_options(
                synchronize_session=False
            )
        )
        return result.rowcount

    async def _reactivate_device(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        device_id: str,
        now: datetime,
    ) -> None:
        """Mark a known device active again."""
        await db_session.execute(
            update(Device)
            .where(Device.id == device_id, Device.user_id == user_id)
            .values(is_active=True, last_active=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def _touch_device(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        device_id: str,
        now: datetime,
    ) -> int:
        """Bump ``last_active`` on one device."""
        result = await db_session.execute(
            update(Device)
            .where(Device.id == device_id, Device.user_id == user_id)
            .values(last_active=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _mark_conflict_resolved(
        self,
        db_session: AsyncSession,
        conflict_id: UUID,
        admin_id: UUID,
        resolution_notes: str,
        now: datetime,
    ) -> int:
        """Set resolution attribution on one conflict."""
        result = await db_session.execute(
            update(DeviceConflict)
            .where(DeviceConflict.id == conflict_id)
            .values(
                resolved=True,
                resolution_notes=resolution_notes,
                admin_resolved_by=admin_id,
                admin_resolved_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _fetch_conflicts(
        self,
        db_session: AsyncSession,
        user_id: UUID | None = None,
        resolved: bool | None = None,
        limit: int | None = None,
    ) -> list[DeviceConflict]:
        """Fetch conflicts; per-user listings are newest first."""
        statement = select(DeviceConflict)
        if user_id is not None:
            statement = statement.where(DeviceConflict.user_id == user_id).order_by(
                DeviceConflict.timestamp.desc()
            )
        else:
            statement = statement.order_by(DeviceConflict.timestamp.asc())
        if resolved is not None:
            statement = statement.where(DeviceConflict.resolved.is_(resolved))
        if limit is not None:
            statement = statement.limit(limit)
        result = await db_session.execute(statement)
        return list(result.scalars().all())

    async def _count_live_sessions(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        now: datetime,
    ) -> int:
        """Count sessions that are neither revoked nor expired."""
        result = await db_session.execute(
            select(func.count())
            .select_from(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.revoked.is_(False),
                UserSession.expires_at > now,
            )
        )
        return int(result.scalar_one())


@lru_cache
def get_device_control_service() -> DeviceControlService:
    """Create and cache the device control service dependency."""
    return DeviceControlService(audit_service=get_audit_service())
