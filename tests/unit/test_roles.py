"""Unit tests for role ranking and role-scoped policies."""

from __future__ import annotations

import pytest

from app.core.roles import (
    SINGLE_DEVICE_ROLES,
    Role,
    has_permission,
    has_role_or_higher,
    parse_role,
)


def test_role_rank_is_explicit_and_ordered() -> None:
    """Ranks increase from customer to admin."""
    ordered = [Role.CUSTOMER, Role.TRANSPORTER, Role.TECHNICIAN, Role.STAFF, Role.ADMIN]

    assert sorted(Role, key=lambda role: role.rank) == ordered
    assert Role.ADMIN.at_least(Role.STAFF)
    assert not Role.TRANSPORTER.at_least(Role.TECHNICIAN)


def test_single_device_roles() -> None:
    """Only field roles are limited to one device."""
    assert SINGLE_DEVICE_ROLES == {Role.TECHNICIAN, Role.TRANSPORTER}
    assert Role.TECHNICIAN.single_device
    assert not Role.ADMIN.single_device
    assert not Role.CUSTOMER.single_device


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("admin", Role.ADMIN), (" Staff ", Role.STAFF), (Role.CUSTOMER, Role.CUSTOMER), ("root", None), (None, None), ("", None)],
)
def test_parse_role(raw, expected) -> None:
    """Role parsing is case-insensitive and rejects unknown names."""
    assert parse_role(raw) is expected


@pytest.mark.parametrize(
    ("role", "required", "expected"),
    [
        ("admin", "staff", True),
        ("staff", "staff", True),
        ("technician", "staff", False),
        ("technician", "transporter", True),
        ("customer", "customer", True),
        ("unknown", "customer", False),
        ("admin", "unknown", False),
    ],
)
def test_has_role_or_higher(role: str, required: str, expected: bool) -> None:
    """Role comparison follows rank, not declaration order."""
    assert has_role_or_higher(role, required) is expected


def test_has_permission() -> None:
    """Permissions are looked up per role."""
    assert has_permission("admin", "devices.manage")
    assert not has_permission("staff", "devices.manage")
    assert has_permission(Role.TECHNICIAN, "parts.request")
    assert not has_permission(None, "tickets.create")
