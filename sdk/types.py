"""SDK data contract types."""

from __future__ import annotations

from typing import Literal, TypedDict

RoleName = Literal["customer", "transporter", "technician", "staff", "admin"]

ROLE_RANK: dict[str, int] = {
    "customer": 0,
    "transporter": 10,
    "technician": 20,
    "staff": 30,
    "admin": 40,
}

ErrorCode = Literal[
    "no_session",
    "invalid_session",
    "session_expired",
    "session_revoked",
    "refresh_token_expired",
    "invalid_token",
    "token_expired",
    "invalid_service_key",
    "forbidden",
    "rate_limited",
    "service_unavailable",
    "internal_error",
]


class SessionView(TypedDict):
    """Client-visible session projection returned by the session service."""

    id: str
    user_id: str
    role: RoleName
    device_id: str
    expires_at: str


class SessionStatus(TypedDict):
    """Polled session status payload."""

    valid: bool
    session: SessionView | None
    role: RoleName | None


class SessionIdentity(TypedDict):
    """Authenticated session identity injected into request state."""

    type: Literal["session"]
    user_id: str
    role: RoleName
    device_id: str
    session_id: str
    expires_at: str


class CreatedSession(TypedDict):
    """Session creation payload with the cookies the service set."""

    session_id: str
    device_id: str
    expires_at: str
    previous_device_id: str | None
    message: str
    cookies: dict[str, str]


def role_rank(role: str | None) -> int | None:
    """Return the privilege rank of ``role`` or None when unknown."""
    if role is None:
        return None
    return ROLE_RANK.get(role)
