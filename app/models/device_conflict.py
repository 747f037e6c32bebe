"""Device conflict audit ORM model."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.roles import Role
from app.db.base import Base, TimestampTenantMixin
from app.models.session import role_enum


class DeviceConflict(Base, TimestampTenantMixin):
    """Record of a single-device takeover, written before the takeover applies."""

    __tablename__ = "device_conflicts"
    __table_args__ = (
        Index("ix_device_conflicts_user_id_timestamp", "user_id", "timestamp"),
        Index("ix_device_conflicts_resolved", "resolved"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    new_device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    old_device_ids: Mapped[list[str]] = mapped_column(ARRAY(String(128)), nullable=False)
    role: Mapped[Role] = mapped_column(role_enum(), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_resolved_by: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    admin_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
