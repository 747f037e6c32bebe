"""ORM model exports."""

from app.models.audit_event import AuditActorType, AuditEvent
from app.models.device import Device
from app.models.device_conflict import DeviceConflict
from app.models.session import UserSession

__all__ = [
    "AuditActorType",
    "AuditEvent",
    "Device",
    "DeviceConflict",
    "UserSession",
]
