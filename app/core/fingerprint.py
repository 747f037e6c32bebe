"""Device fingerprint generation."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from hashlib import sha256


@dataclass(frozen=True)
class DeviceInfo:
    """Client-reported details recorded with a device registration."""

    user_agent: str | None = None
    platform: str | None = None
    ip_address: str | None = None
    location: str | None = None
    language: str | None = None


def generate_device_fingerprint(device_info: DeviceInfo | None = None) -> str:
    """Return a new opaque device identifier.

    The identifier mixes the client details with the current time and a random
    nonce, so two registrations from an identical browser still differ.
    """
    info = device_info or DeviceInfo()
    composite = "-".join(
        (
            info.user_agent or "server",
            info.platform or "server",
            info.language or "en",
            str(time.time_ns()),
            secrets.token_hex(16),
        )
    )
    return sha256(composite.encode("utf-8")).hexdigest()
