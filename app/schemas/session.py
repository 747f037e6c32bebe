"""Session request and response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.roles import Role


class SessionView(BaseModel):
    """Client-visible projection of a session; never carries the refresh hash."""

    id: str
    user_id: str
    role: Role
    device_id: str
    expires_at: datetime


class SessionStatusResponse(BaseModel):
    """Polled session status."""

    valid: bool
    session: SessionView | None = None
    role: Role | None = None


class CreateSessionRequest(BaseModel):
    """Service call creating a session for an authenticated principal."""

    user_id: UUID
    role: Role
    device_id: str | None = Field(default=None, min_length=16, max_length=128)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=512)
    platform: str | None = Field(default=None, max_length=128)
    location: str | None = Field(default=None, max_length=255)
    language: str | None = Field(default=None, max_length=32)
    tenant_id: UUID | None = None


class CreateSessionResponse(BaseModel):
    """Created session and device registration outcome."""

    session_id: str
    device_id: str
    expires_at: datetime
    previous_device_id: str | None = None
    message: str


class RefreshSessionResponse(BaseModel):
    """Rotated session."""

    session_id: str
    expires_at: datetime


class SessionTokenResponse(BaseModel):
    """Short-lived bearer token bound to the current session and device."""

    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class SessionVerificationResponse(BaseModel):
    """Fixed-shape bearer verification outcome."""

    user_id: str
    role: Role | None
    device_id: str
    session_id: str
    issued_at: int
    expires_at: int
    is_valid: bool
    device_valid: bool
