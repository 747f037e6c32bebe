"""Device routes for the current session and for admins."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.sessions import SessionData
from app.dependencies import get_database_session, require_admin_session, require_session
from app.error_handlers import error_response
from app.schemas.device import (
    DeviceAuthorizationResponse,
    DeviceConflictResponse,
    DeviceResponse,
    ForceLogoutRequest,
    ForceLogoutResponse,
    HeartbeatResponse,
    ResolveConflictRequest,
    ResolveConflictResponse,
    UserDevicesResponse,
)
from app.services.device_control import (
    CONFLICT_NOT_FOUND,
    DeviceControlService,
    get_device_control_service,
)

router = APIRouter(prefix="/api/devices", tags=["devices"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    session: Annotated[SessionData, Depends(require_session)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
) -> HeartbeatResponse:
    """Record activity for the current session's device."""
    updated = await device_control.update_device_activity(
        db_session, user_id=session.user_uuid, device_id=session.device_id
    )
    return HeartbeatResponse(device_id=session.device_id, updated=updated)


@router.get("/authorized", response_model=DeviceAuthorizationResponse)
async def device_authorized(
    session: Annotated[SessionData, Depends(require_session)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
) -> DeviceAuthorizationResponse:
    """Report whether the current session's device is still allowed."""
    authorized = await device_control.is_device_authorized(
        db_session,
        user_id=session.user_uuid,
        device_id=session.device_id,
        role=session.role,
    )
    return DeviceAuthorizationResponse(device_id=session.device_id, authorized=authorized)


@admin_router.get("/devices/{user_id}", response_model=UserDevicesResponse)
async def get_user_devices(
    user_id: UUID,
    _: Annotated[SessionData, Depends(require_admin_session)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
) -> UserDevicesResponse:
    """List a user's active devices and recent conflicts."""
    devices = await device_control.get_active_devices_for_user(db_session, user_id)
    conflicts = await device_control.get_device_conflicts_for_user(db_session, user_id)
    locked = await device_control.is_user_device_locked(db_session, user_id)
    return UserDevicesResponse(
        user_id=user_id,
        active_devices=[DeviceResponse.model_validate(device) for device in devices],
        recent_conflicts=[DeviceConflictResponse.model_validate(item) for item in conflicts],
        locked=locked,
    )


@admin_router.post("/devices/{user_id}/force-logout", response_model=ForceLogoutResponse)
async def force_logout(
    user_id: UUID,
    payload: ForceLogoutRequest,
    admin: Annotated[SessionData, Depends(require_admin_session)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
):
    """Log a user out of every session and device."""
    logged_out = await device_control.force_logout_user(
        db_session, user_id=user_id, admin_id=admin.user_uuid, reason=payload.reason
    )
    if not logged_out:
        return error_response(status_code=500, detail="Force logout failed.", code="internal_error")
    return ForceLogoutResponse(user_id=user_id, logged_out=True)


@admin_router.get("/device-conflicts", response_model=list[DeviceConflictResponse])
async def list_pending_conflicts(
    _: Annotated[SessionData, Depends(require_admin_session)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
) -> list[DeviceConflictResponse]:
    """List unresolved device conflicts."""
    conflicts = await device_control.get_pending_device_conflicts(db_session)
    return [DeviceConflictResponse.model_validate(item) for item in conflicts]


@admin_router.post(
    "/device-conflicts/{conflict_id}/resolve",
    response_model=ResolveConflictResponse,
)
async def resolve_conflict(
    conflict_id: UUID,
    payload: ResolveConflictRequest,
    admin: Annotated[SessionData, Depends(require_admin_session)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
):
    """Acknowledge a device conflict."""
    resolution = await device_control.resolve_device_conflict(
        db_session,
        conflict_id=conflict_id,
        admin_id=admin.user_uuid,
        resolution_notes=payload.resolution_notes,
    )
    if not resolution.resolved:
        if resolution.resolution_notes == CONFLICT_NOT_FOUND:
            return error_response(status_code=404, detail=CONFLICT_NOT_FOUND, code="not_found")
        return error_response(
            status_code=500, detail="Conflict resolution failed.", code="internal_error"
        )
    return ResolveConflictResponse(
        conflict_id=resolution.conflict_id,
        resolved=True,
        resolution_notes=resolution.resolution_notes,
    )
