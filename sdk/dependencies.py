"""FastAPI dependencies for role-aware authorization checks."""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from sdk.types import SessionIdentity, role_rank


def get_current_user(request: Request) -> SessionIdentity:
    """Return the session identity set by SDK middleware."""
    user = getattr(request.state, "user", None)
    if not isinstance(user, dict) or user.get("type") != "session":
        raise HTTPException(
            status_code=401, detail={"detail": "Not authenticated.", "code": "no_session"}
        )
    return user  # type: ignore[return-value]


def require_role(*roles: str) -> Callable[[SessionIdentity], SessionIdentity]:
    """Require that the session role is one of the allowed roles."""

    def checker(user: Annotated[SessionIdentity, Depends(get_current_user)]) -> SessionIdentity:
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=403, detail={"detail": "Insufficient role.", "code": "forbidden"}
            )
        return user

    return checker


def require_role_or_higher(role: str) -> Callable[[SessionIdentity], SessionIdentity]:
    """Require a session role ranked at least as high as ``role``."""
    required = role_rank(role)
    if required is None:
        raise ValueError(f"Unknown role: {role}")

    def checker(user: Annotated[SessionIdentity, Depends(get_current_user)]) -> SessionIdentity:
        current = role_rank(user.get("role"))
        if current is None or current < required:
            raise HTTPException(
                status_code=403, detail={"detail": "Insufficient role.", "code": "forbidden"}
            )
        return user

    return checker
