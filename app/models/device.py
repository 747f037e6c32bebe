"""Device ORM model."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import INET
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.roles import Role
from app.db.base import Base, TimestampTenantMixin
from app.models.session import role_enum


class Device(Base, TimestampTenantMixin):
    """Browser or handset bound to a user; deactivated, never deleted.

    Keyed per user so one shared browser can hold a row for each account.
    """

    __tablename__ = "devices"
    __table_args__ = (Index("ix_devices_user_id_is_active", "user_id", "is_active"),)

    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    role: Mapped[Role] = mapped_column(role_enum(), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    first_used: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
