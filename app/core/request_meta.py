"""Helpers for client metadata carried on requests."""

from __future__ import annotations

import ipaddress
from uuid import UUID

from starlette.requests import Request


def coerce_ip(value: str | None) -> str | None:
    """Normalize an IP address string, returning None when it is not one."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def extract_client_ip(request: Request) -> str | None:
    """Extract canonical client IP from forwarding headers or peer address."""
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        parsed = coerce_ip(forwarded_for.split(",")[0])
        if parsed is not None:
            return parsed
    client = request.client
    if client is None:
        return None
    return coerce_ip(client.host)


def parse_uuid(value: str | UUID | None) -> UUID | None:
    """Parse a UUID, returning None for anything malformed."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(value.strip())
    except ValueError:
        return None
