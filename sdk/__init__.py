"""Public SDK exports."""

from sdk.client import SessionClient
from sdk.dependencies import get_current_user, require_role, require_role_or_higher
from sdk.middleware import SessionAuthMiddleware
from sdk.provider import SessionProvider

__all__ = [
    "SessionAuthMiddleware",
    "SessionClient",
    "SessionProvider",
    "get_current_user",
    "require_role",
    "require_role_or_higher",
]
