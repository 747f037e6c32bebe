"""Device and device-conflict schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.roles import Role


class DeviceResponse(BaseModel):
    """Registered device."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: UUID
    role: Role
    user_agent: str | None = None
    platform: str | None = None
    location: str | None = None
    is_active: bool
    first_used: datetime
    last_active: datetime


class DeviceConflictResponse(BaseModel):
    """Recorded single-device takeover."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    new_device_id: str
    old_device_ids: list[str]
    role: Role
    timestamp: datetime
    resolved: bool
    resolution_notes: str | None = None
    admin_resolved_by: UUID | None = None
    admin_resolved_at: datetime | None = None


class UserDevicesResponse(BaseModel):
    """Admin view of a user's devices and recent conflicts."""

    user_id: UUID
    active_devices: list[DeviceResponse]
    recent_conflicts: list[DeviceConflictResponse]
    locked: bool


class ForceLogoutRequest(BaseModel):
    """Admin force-logout payload."""

    reason: str = Field(default="Admin action", min_length=1, max_length=500)


class ForceLogoutResponse(BaseModel):
    """Force-logout outcome."""

    user_id: UUID
    logged_out: bool


class ResolveConflictRequest(BaseModel):
    """Admin conflict resolution payload."""

    resolution_notes: str = Field(min_length=1, max_length=2000)


class ResolveConflictResponse(BaseModel):
    """Conflict resolution outcome."""

    conflict_id: str
    resolved: bool
    resolution_notes: str | None = None


class DeviceAuthorizationResponse(BaseModel):
    """Whether the current session's device may act for its user."""

    device_id: str
    authorized: bool


class HeartbeatResponse(BaseModel):
    """Device heartbeat outcome."""

    device_id: str
    updated: bool
