"""SDK exception hierarchy."""

from __future__ import annotations


class SDKError(Exception):
    """Base class for all SDK-specific exceptions."""


class SessionServiceUnavailableError(SDKError):
    """Raised when the session service is temporarily unreachable."""


class SessionServiceResponseError(SDKError):
    """Raised when the session service returns malformed or unexpected data."""

    def __init__(self, detail: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.code = code
