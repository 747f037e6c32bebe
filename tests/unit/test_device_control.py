"""Unit tests for device registration and single-device enforcement."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from session_fakes import (
    FakeClock,
    FakeUnitOfWork,
    InMemoryDeviceControlService,
    InMemorySessionManager,
    make_cookies,
)

from app.core.fingerprint import DeviceInfo
from app.core.roles import Role
from app.models.audit_event import AuditActorType
from app.services.device_control import CONFLICT_NOT_FOUND, FORCE_LOGOUT_EVENT


def _service(clock: FakeClock) -> InMemoryDeviceControlService:
    return InMemoryDeviceControlService(now=clock)


async def _login(clock, db, user_id, role: Role, device_id: str):
    """Register a device and open a session on it, like the create endpoint."""
    service = _service(clock)
    registration = await service.register_device_for_user(
        db, user_id, role, device_id=device_id  # type: ignore[arg-type]
    )
    assert registration.success is True
    session = await InMemorySessionManager(now=clock).create_session(
        db,  # type: ignore[arg-type]
        make_cookies(),
        user_id=user_id,
        role=role,
        device_fingerprint=device_id,
    )
    assert session.success is True
    return registration, session


@pytest.mark.asyncio
async def test_register_first_device_for_single_device_role() -> None:
    """A technician's first device registers without a conflict."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()

    result = await _service(clock).register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-a"  # type: ignore[arg-type]
    )

    assert result.success is True
    assert result.message == "Device registered successfully"
    assert result.new_device_id == "device-a"
    assert result.previous_device_id is None
    assert db.database.conflicts == {}
    assert [device.id for device in db.database.active_devices(user_id)] == ["device-a"]
    assert db.commit_count == 1


@pytest.mark.asyncio
async def test_technician_takeover_evicts_previous_device() -> None:
    """Logging in on a second device revokes the first device's sessions."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    _, old_session = await _login(clock, db, user_id, Role.TECHNICIAN, "device-a")

    result = await _service(clock).register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-b"  # type: ignore[arg-type]
    )

    assert result.success is True
    assert result.new_device_id == "device-b"
    assert result.previous_device_id == "device-a"
    assert result.message == (
        "New device registered. Previous device device-a has been logged out."
    )

    active = db.database.active_devices(user_id)
    assert [device.id for device in active] == ["device-b"]
    assert db.database.device(user_id, "device-a").is_active is False

    old_row = next(
        row for row in db.database.sessions.values() if str(row.id) == old_session.session_id
    )
    assert old_row.revoked is True

    conflicts = list(db.database.conflicts.values())
    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.user_id == user_id
    assert conflict.new_device_id == "device-b"
    assert conflict.old_device_ids == ["device-a"]
    assert conflict.role is Role.TECHNICIAN
    assert conflict.resolved is False
    assert conflict.timestamp < old_row.revoked_at


@pytest.mark.asyncio
async def test_takeover_logs_conflict_before_other_writes() -> None:
    """The user lock comes first, then the conflict row, then the takeover writes."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    await _login(clock, db, user_id, Role.TRANSPORTER, "device-a")
    db.database.writes.clear()

    await _service(clock).register_device_for_user(
        db, user_id, Role.TRANSPORTER, device_id="device-b"  # type: ignore[arg-type]
    )

    kinds = [entry.split(":", 1)[0] for entry in db.database.writes]
    assert kinds == [
        "lock_devices",
        "insert_conflict",
        "revoke_sessions",
        "deactivate_devices",
        "insert_device",
    ]


@pytest.mark.asyncio
async def test_takeover_failure_rolls_back_every_step() -> None:
    """A failed device insert leaves the previous device and session intact."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    _, old_session = await _login(clock, db, user_id, Role.TECHNICIAN, "device-a")
    db.fail_on.add("insert_device")

    result = await _service(clock).register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-b"  # type: ignore[arg-type]
    )

    assert result.success is False
    assert result.message == "Failed to register new device"
    assert db.rollback_count == 1
    assert db.database.conflicts == {}
    assert [device.id for device in db.database.active_devices(user_id)] == ["device-a"]
    old_row = next(
        row for row in db.database.sessions.values() if str(row.id) == old_session.session_id
    )
    assert old_row.revoked is False


@pytest.mark.asyncio
async def test_shared_device_id_registers_for_each_user() -> None:
    """Two accounts on one browser each get their own device row."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    first_user, second_user = uuid4(), uuid4()
    service = _service(clock)

    first = await service.register_device_for_user(
        db, first_user, Role.CUSTOMER, device_id="browser-device-0000000001"  # type: ignore[arg-type]
    )
    second = await service.register_device_for_user(
        db, second_user, Role.TECHNICIAN, device_id="browser-device-0000000001"  # type: ignore[arg-type]
    )

    assert first.success is True
    assert second.success is True
    assert second.previous_device_id is None
    assert db.database.device(first_user, "browser-device-0000000001").is_active is True
    assert db.database.device(second_user, "browser-device-0000000001").role is Role.TECHNICIAN
    assert db.database.conflicts == {}


@pytest.mark.asyncio
async def test_registration_lock_failure_reports_failure() -> None:
    """Nothing is written when the per-user lock cannot be taken."""
    db = FakeUnitOfWork()
    db.fail_on.add("lock_devices")
    user_id = uuid4()

    result = await _service(FakeClock()).register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-a"  # type: ignore[arg-type]
    )

    assert result.success is False
    assert db.database.devices == {}
    assert db.rollback_count == 1


@pytest.mark.asyncio
async def test_uncommitted_takeover_rolls_back_with_failed_session() -> None:
    """A deferred registration is undone when the session insert fails."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    _, old_session = await _login(clock, db, user_id, Role.TECHNICIAN, "device-a")
    commits_before = db.commit_count

    registration = await _service(clock).register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-b", commit=False  # type: ignore[arg-type]
    )
    assert registration.success is True
    assert db.commit_count == commits_before

    db.fail_on.add("insert_session")
    created = await InMemorySessionManager(now=clock).create_session(
        db,  # type: ignore[arg-type]
        make_cookies(),
        user_id=user_id,
        role=Role.TECHNICIAN,
        device_fingerprint="device-b",
    )

    assert created.success is False
    assert [device.id for device in db.database.active_devices(user_id)] == ["device-a"]
    assert db.database.device(user_id, "device-b") is None
    assert db.database.conflicts == {}
    old_row = next(
        row for row in db.database.sessions.values() if str(row.id) == old_session.session_id
    )
    assert old_row.revoked is False


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [Role.CUSTOMER, Role.STAFF, Role.ADMIN])
async def test_multi_device_roles_keep_existing_devices(role: Role) -> None:
    """Roles without the single-device policy accumulate active devices."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    await _login(clock, db, user_id, role, "device-a")

    result = await _service(clock).register_device_for_user(
        db, user_id, role, device_id="device-b"  # type: ignore[arg-type]
    )

    assert result.success is True
    assert result.previous_device_id is None
    assert {device.id for device in db.database.active_devices(user_id)} == {
        "device-a",
        "device-b",
    }
    assert all(not row.revoked for row in db.database.sessions.values())
    assert db.database.conflicts == {}


@pytest.mark.asyncio
async def test_reregistering_same_device_reactivates_without_conflict() -> None:
    """A known device id is reactivated rather than inserted again."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)
    await _login(clock, db, user_id, Role.TECHNICIAN, "device-a")
    await service.register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-b"  # type: ignore[arg-type]
    )

    result = await service.register_device_for_user(
        db, user_id, Role.TECHNICIAN, device_id="device-a"  # type: ignore[arg-type]
    )

    assert result.success is True
    assert result.previous_device_id == "device-b"
    assert [device.id for device in db.database.active_devices(user_id)] == ["device-a"]
    assert len(db.database.devices) == 2
    assert len(db.database.conflicts) == 2


@pytest.mark.asyncio
async def test_register_device_generates_fingerprint_when_id_missing() -> None:
    """Without an explicit id the fingerprint factory names the device."""
    seen: list[DeviceInfo | None] = []

    def fingerprint(info: DeviceInfo | None) -> str:
        seen.append(info)
        return "generated-device"

    db = FakeUnitOfWork()
    info = DeviceInfo(user_agent="pytest", platform="linux", ip_address="198.51.100.4")
    service = InMemoryDeviceControlService(fingerprint_factory=fingerprint, now=FakeClock())

    user_id = uuid4()
    result = await service.register_device_for_user(db, user_id, Role.STAFF, device_info=info)  # type: ignore[arg-type]

    assert result.new_device_id == "generated-device"
    assert seen == [info]
    stored = db.database.device(user_id, "generated-device")
    assert stored.platform == "linux"
    assert stored.ip_address == "198.51.100.4"


@pytest.mark.asyncio
async def test_single_device_invariant_after_repeated_takeovers() -> None:
    """However many devices a technician rotates through, one stays active."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)

    for index in range(5):
        result = await service.register_device_for_user(
            db, user_id, Role.TECHNICIAN, device_id=f"device-{index}"  # type: ignore[arg-type]
        )
        assert result.success is True
        active = db.database.active_devices(user_id)
        assert [device.id for device in active] == [f"device-{index}"]

    assert len(db.database.conflicts) == 4


@pytest.mark.asyncio
async def test_is_device_authorized_customer_always_true() -> None:
    """Customer devices are never restricted, even unknown ones."""
    db = FakeUnitOfWork()
    db.fail_on.add("fetch_devices")

    authorized = await _service(FakeClock()).is_device_authorized(
        db, uuid4(), "anything", Role.CUSTOMER  # type: ignore[arg-type]
    )

    assert authorized is True


@pytest.mark.asyncio
async def test_is_device_authorized_single_device_roles() -> None:
    """Technicians are authorized only on their one active device."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)
    await service.register_device_for_user(db, user_id, Role.TECHNICIAN, device_id="device-a")  # type: ignore[arg-type]
    await service.register_device_for_user(db, user_id, Role.TECHNICIAN, device_id="device-b")  # type: ignore[arg-type]

    assert await service.is_device_authorized(db, user_id, "device-b", Role.TECHNICIAN) is True  # type: ignore[arg-type]
    assert await service.is_device_authorized(db, user_id, "device-a", Role.TECHNICIAN) is False  # type: ignore[arg-type]
    assert await service.is_device_authorized(db, uuid4(), "device-b", Role.TECHNICIAN) is False  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_is_device_authorized_multi_device_roles_need_active_device() -> None:
    """Staff devices must exist and be active."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)
    await service.register_device_for_user(db, user_id, Role.STAFF, device_id="device-a")  # type: ignore[arg-type]

    assert await service.is_device_authorized(db, user_id, "device-a", Role.STAFF) is True  # type: ignore[arg-type]
    assert await service.is_device_authorized(db, user_id, "unknown", Role.STAFF) is False  # type: ignore[arg-type]

    await service.deactivate_all_user_devices(db, user_id)  # type: ignore[arg-type]
    assert await service.is_device_authorized(db, user_id, "device-a", Role.STAFF) is False  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_is_device_authorized_fails_closed_on_database_error() -> None:
    """Lookup failures deny the device."""
    db = FakeUnitOfWork()
    db.fail_on.add("fetch_devices")

    authorized = await _service(FakeClock()).is_device_authorized(
        db, uuid4(), "device-a", Role.ADMIN  # type: ignore[arg-type]
    )

    assert authorized is False


@pytest.mark.asyncio
async def test_force_logout_revokes_everything_and_records_event() -> None:
    """Force logout revokes all sessions, deactivates all devices and logs the admin."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    admin_id = uuid4()
    await _login(clock, db, user_id, Role.STAFF, "device-a")
    await _login(clock, db, user_id, Role.STAFF, "device-b")

    done = await _service(clock).force_logout_user(
        db, user_id, admin_id, reason="Lost phone"  # type: ignore[arg-type]
    )

    assert done is True
    assert all(row.revoked for row in db.database.sessions_for(user_id))
    assert db.database.active_devices(user_id) == []
    assert len(db.database.audit_events) == 1
    event = db.database.audit_events[0]
    assert event.event_type == FORCE_LOGOUT_EVENT
    assert event.actor_type is AuditActorType.ADMIN
    assert event.actor_id == admin_id
    assert event.target_id == user_id
    assert event.event_metadata == {
        "reason": "Lost phone",
        "sessions_revoked": 2,
        "devices_deactivated": 2,
    }


@pytest.mark.asyncio
async def test_force_logout_failure_rolls_back() -> None:
    """If the audit write fails nothing is revoked."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    await _login(clock, db, user_id, Role.STAFF, "device-a")
    db.fail_on.add("insert_audit_event")

    done = await _service(clock).force_logout_user(db, user_id, uuid4())  # type: ignore[arg-type]

    assert done is False
    assert db.rollback_count == 1
    assert not any(row.revoked for row in db.database.sessions_for(user_id))
    assert len(db.database.active_devices(user_id)) == 1


@pytest.mark.asyncio
async def test_resolve_device_conflict_records_admin() -> None:
    """Resolution stores notes and attribution without touching sessions."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    admin_id = uuid4()
    service = _service(clock)
    await _login(clock, db, user_id, Role.TECHNICIAN, "device-a")
    await _login(clock, db, user_id, Role.TECHNICIAN, "device-b")
    conflict_id = next(iter(db.database.conflicts))
    sessions_before = {row.id: row.revoked for row in db.database.sessions.values()}

    resolution = await service.resolve_device_conflict(
        db, conflict_id, admin_id, "Confirmed replacement handset"  # type: ignore[arg-type]
    )

    assert resolution.resolved is True
    assert resolution.conflict_id == str(conflict_id)
    assert resolution.resolution_notes == "Confirmed replacement handset"
    stored = db.database.conflicts[conflict_id]
    assert stored.resolved is True
    assert stored.admin_resolved_by == admin_id
    assert stored.admin_resolved_at is not None
    assert {row.id: row.revoked for row in db.database.sessions.values()} == sessions_before


@pytest.mark.asyncio
async def test_resolve_unknown_conflict() -> None:
    """Unknown conflict ids are reported as not found."""
    db = FakeUnitOfWork()

    resolution = await _service(FakeClock()).resolve_device_conflict(
        db, uuid4(), uuid4(), "notes"  # type: ignore[arg-type]
    )

    assert resolution.resolved is False
    assert resolution.resolution_notes == CONFLICT_NOT_FOUND
    assert db.commit_count == 0


@pytest.mark.asyncio
async def test_resolve_conflict_database_error() -> None:
    """Storage errors are reported as a failed resolution."""
    db = FakeUnitOfWork()
    db.fail_on.add("resolve_conflict")

    resolution = await _service(FakeClock()).resolve_device_conflict(
        db, uuid4(), uuid4(), "notes"  # type: ignore[arg-type]
    )

    assert resolution.resolved is False
    assert resolution.resolution_notes == "Error resolving conflict"
    assert db.rollback_count == 1


@pytest.mark.asyncio
async def test_conflict_listings() -> None:
    """Pending conflicts are oldest first; per-user listings newest first and limited."""
    clock = FakeClock(step=timedelta(milliseconds=1))
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)
    for index in range(4):
        await service.register_device_for_user(
            db, user_id, Role.TECHNICIAN, device_id=f"device-{index}"  # type: ignore[arg-type]
        )
    oldest = min(db.database.conflicts.values(), key=lambda c: c.timestamp)
    await service.resolve_device_conflict(db, oldest.id, uuid4(), "ok")  # type: ignore[arg-type]

    pending = await service.get_pending_device_conflicts(db)  # type: ignore[arg-type]
    recent = await service.get_device_conflicts_for_user(db, user_id, limit=2)  # type: ignore[arg-type]

    assert [c.new_device_id for c in pending] == ["device-2", "device-3"]
    assert [c.new_device_id for c in recent] == ["device-3", "device-2"]


@pytest.mark.asyncio
async def test_listing_failures_return_empty() -> None:
    """Read helpers degrade to empty results on storage errors."""
    db = FakeUnitOfWork()
    db.fail_on.update({"fetch_conflicts", "fetch_devices"})
    service = _service(FakeClock())

    assert await service.get_pending_device_conflicts(db) == []  # type: ignore[arg-type]
    assert await service.get_device_conflicts_for_user(db, uuid4()) == []  # type: ignore[arg-type]
    assert await service.get_active_devices_for_user(db, uuid4()) == []  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_invalidate_sessions_can_spare_one_device() -> None:
    """Session invalidation keeps sessions bound to the spared device."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    await _login(clock, db, user_id, Role.STAFF, "device-a")
    await _login(clock, db, user_id, Role.STAFF, "device-b")

    done = await _service(clock).invalidate_all_user_sessions(
        db, user_id, keep_device_id="device-b"  # type: ignore[arg-type]
    )

    assert done is True
    revoked = {row.device_fingerprint: row.revoked for row in db.database.sessions_for(user_id)}
    assert revoked == {"device-a": True, "device-b": False}


@pytest.mark.asyncio
async def test_update_device_activity() -> None:
    """Heartbeats bump last_active on known devices only."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)
    await service.register_device_for_user(db, user_id, Role.STAFF, device_id="device-a")  # type: ignore[arg-type]

    clock.advance(timedelta(minutes=5))
    assert await service.update_device_activity(db, user_id, "device-a") is True  # type: ignore[arg-type]
    assert db.database.device(user_id, "device-a").last_active == clock.current
    assert await service.update_device_activity(db, user_id, "unknown") is False  # type: ignore[arg-type]

    db.fail_on.add("touch_device")
    assert await service.update_device_activity(db, user_id, "device-a") is False  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_is_user_device_locked() -> None:
    """A user is locked out only after every session and device is gone."""
    clock = FakeClock()
    db = FakeUnitOfWork()
    user_id = uuid4()
    service = _service(clock)
    await _login(clock, db, user_id, Role.TECHNICIAN, "device-a")

    assert await service.is_user_device_locked(db, user_id) is False  # type: ignore[arg-type]

    await service.force_logout_user(db, user_id, uuid4())  # type: ignore[arg-type]

    assert await service.is_user_device_locked(db, user_id) is True  # type: ignore[arg-type]
