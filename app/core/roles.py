"""Platform roles, their ordering, and role-scoped policies."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Roles a session principal can hold."""

    CUSTOMER = "customer"
    TRANSPORTER = "transporter"
    TECHNICIAN = "technician"
    STAFF = "staff"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        """Privilege rank; higher means more privileged."""
        return _ROLE_RANK[self]

    def at_least(self, other: Role) -> bool:
        """Return True when this role is as privileged as ``other`` or more."""
        return self.rank >= other.rank

    @property
    def single_device(self) -> bool:
        """Return True when the role may hold only one active device."""
        return self in SINGLE_DEVICE_ROLES


_ROLE_RANK: dict[Role, int] = {
    Role.CUSTOMER: 0,
    Role.TRANSPORTER: 10,
    Role.TECHNICIAN: 20,
    Role.STAFF: 30,
    Role.ADMIN: 40,
}

SINGLE_DEVICE_ROLES = frozenset({Role.TECHNICIAN, Role.TRANSPORTER})

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(
        {
            "tickets.read.all",
            "tickets.write.all",
            "users.manage",
            "reports.view",
            "settings.manage",
            "devices.manage",
            "profiles.read.all",
            "profiles.write.all",
        }
    ),
    Role.STAFF: frozenset(
        {
            "tickets.read.all",
            "tickets.write.all",
            "users.manage",
            "reports.view",
            "profiles.read.all",
            "profiles.write.all",
        }
    ),
    Role.TECHNICIAN: frozenset(
        {
            "tickets.read.own",
            "tickets.write.own",
            "customers.read.own",
            "parts.request",
            "location.update",
        }
    ),
    Role.TRANSPORTER: frozenset(
        {
            "tickets.read.transport",
            "tickets.update.transport",
            "location.update",
        }
    ),
    Role.CUSTOMER: frozenset(
        {
            "tickets.read.own",
            "tickets.create",
            "profile.read.own",
            "profile.update.own",
        }
    ),
}


def parse_role(value: str | Role | None) -> Role | None:
    """Coerce a raw role value, returning None for unknown roles."""
    if isinstance(value, Role):
        return value
    if not value:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def has_permission(role: str | Role | None, permission: str) -> bool:
    """Return True when the role grants ``permission``."""
    resolved = parse_role(role)
    if resolved is None:
        return False
    return permission in ROLE_PERMISSIONS[resolved]


def has_role_or_higher(role: str | Role | None, required: str | Role) -> bool:
    """Compare roles by explicit rank rather than list position."""
    resolved = parse_role(role)
    required_role = parse_role(required)
    if resolved is None or required_role is None:
        return False
    return resolved.at_least(required_role)
