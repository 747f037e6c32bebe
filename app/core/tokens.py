"""Session bearer token issuance and verification."""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from uuid import uuid4

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from app.config import get_settings
from app.core.roles import Role, parse_role

JWT_ALGORITHM = "RS256"
SESSION_TOKEN_TYPE = "session"


class TokenValidationError(Exception):
    """Raised when a session bearer token fails verification."""

    def __init__(self, detail: str, code: str) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


@dataclass(frozen=True)
class TokenPayload:
    """Verified session token claims."""

    user_id: str
    role: Role
    device_id: str
    session_id: str
    issued_at: int
    expires_at: int


class SessionTokenService:
    """Sign and verify RS256 tokens that bind a user to a session and device."""

    def __init__(
        self,
        private_key_pem: str,
        public_key_pem: str,
        ttl_seconds: int,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._private_key_pem = private_key_pem
        self._public_key_pem = public_key_pem
        self._ttl_seconds = ttl_seconds
        self._now = now or (lambda: datetime.now(UTC))
        self._kid = self._calculate_kid(public_key_pem)

    @property
    def ttl_seconds(self) -> int:
        """Maximum token lifetime."""
        return self._ttl_seconds

    def issue(
        self,
        user_id: str,
        role: Role,
        session_id: str,
        device_id: str,
        not_after: datetime | None = None,
    ) -> str:
        """Issue a token that never outlives ``not_after`` (the session expiry)."""
        issued_at = self._now()
        expires_at = issued_at + timedelta(seconds=self._ttl_seconds)
        if not_after is not None and not_after < expires_at:
            expires_at = not_after
        payload = {
            "jti": str(uuid4()),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "sub": user_id,
            "type": SESSION_TOKEN_TYPE,
            "role": role.value,
            "sid": session_id,
            "did": device_id,
        }
        return jwt.encode(
            payload,
            self._private_key_pem,
            algorithm=JWT_ALGORITHM,
            headers={"kid": self._kid},
        )

    def verify(self, token: str) -> TokenPayload:
        """Verify signature, lifetime and required session claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenValidationError("Invalid token.", "invalid_token") from exc
        algorithm = str(header.get("alg", ""))
        if not hmac.compare_digest(algorithm, JWT_ALGORITHM):
            raise TokenValidationError("Invalid token algorithm.", "invalid_token")

        try:
            claims = jwt.decode(
                token,
                self._public_key_pem,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_aud": False,
                    "require_jti": True,
                    "require_iat": True,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except ExpiredSignatureError as exc:
            raise TokenValidationError("Token has expired.", "token_expired") from exc
        except JWTError as exc:
            raise TokenValidationError("Invalid token.", "invalid_token") from exc

        if not hmac.compare_digest(str(claims.get("type", "")), SESSION_TOKEN_TYPE):
            raise TokenValidationError("Invalid token type.", "invalid_token")
        role = parse_role(claims.get("role"))
        session_id = claims.get("sid")
        device_id = claims.get("did")
        if role is None or not isinstance(session_id, str) or not isinstance(device_id, str):
            raise TokenValidationError("Invalid token claims.", "invalid_token")
        return TokenPayload(
            user_id=str(claims["sub"]),
            role=role,
            device_id=device_id,
            session_id=session_id,
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
        )

    @staticmethod
    def _calculate_kid(public_key_pem: str) -> str:
        """Derive a deterministic key ID from the public key."""
        digest = hashlib.sha256(public_key_pem.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest[:16]).rstrip(b"=").decode("ascii")


@lru_cache
def get_session_token_service() -> SessionTokenService:
    """Build and cache the token service from application settings."""
    settings = get_settings()
    return SessionTokenService(
        private_key_pem=settings.jwt.private_key_pem.get_secret_value(),
        public_key_pem=settings.jwt.public_key_pem.get_secret_value(),
        ttl_seconds=settings.jwt.session_token_ttl_seconds,
    )
