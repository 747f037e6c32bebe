"""Session, device, device conflict and action log schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

_ROLE_VALUES = ("customer", "transporter", "technician", "staff", "admin")


def _timestamp_columns() -> list[sa.Column]:
    """Shared created/updated/tenant columns."""
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=True),
    ]


def upgrade() -> None:
    """Create session, device, conflict and action log tables."""
    user_role = postgresql.ENUM(*_ROLE_VALUES, name="user_role", create_type=False)
    user_role.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "user_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("device_fingerprint", sa.String(length=128), nullable=False),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("refresh_token_hash", sa.String(length=64), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("parent_session_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("chain_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="0"),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_user_sessions"),
        sa.UniqueConstraint("refresh_token_hash", name="uq_user_sessions_refresh_token_hash"),
    )
    op.create_index(
        "ix_user_sessions_user_id_revoked", "user_sessions", ["user_id", "revoked"], unique=False
    )
    op.create_index(
        "ix_user_sessions_parent_session_id",
        "user_sessions",
        ["parent_session_id"],
        unique=False,
    )

    op.create_table(
        "devices",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("platform", sa.String(length=128), nullable=True),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("first_used", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("user_id", "id", name="pk_devices"),
    )
    op.create_index(
        "ix_devices_user_id_is_active", "devices", ["user_id", "is_active"], unique=False
    )

    op.create_table(
        "device_conflicts",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("new_device_id", sa.String(length=128), nullable=False),
        sa.Column("old_device_ids", postgresql.ARRAY(sa.String(length=128)), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("admin_resolved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("admin_resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_device_conflicts"),
    )
    op.create_index(
        "ix_device_conflicts_user_id_timestamp",
        "device_conflicts",
        ["user_id", "timestamp"],
        unique=False,
    )
    op.create_index(
        "ix_device_conflicts_resolved", "device_conflicts", ["resolved"], unique=False
    )

    op.create_table(
        "audit_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "actor_type",
            sa.Enum("user", "admin", "service", "system", name="audit_actor_type"),
            nullable=False,
        ),
        sa.Column("target_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("target_type", sa.String(length=128), nullable=True),
        sa.Column("device_id", sa.String(length=128), nullable=True),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("correlation_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_events"),
    )
    op.create_index(
        "ix_audit_events_event_type_created_at",
        "audit_events",
        ["event_type", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_audit_events_actor_id_created_at",
        "audit_events",
        ["actor_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_audit_events_target_id_created_at",
        "audit_events",
        ["target_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_audit_events_device_id_created_at",
        "audit_events",
        ["device_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_index("ix_audit_events_device_id_created_at", table_name="audit_events")
    op.drop_index("ix_audit_events_target_id_created_at", table_name="audit_events")
    op.drop_index("ix_audit_events_actor_id_created_at", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type_created_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_device_conflicts_resolved", table_name="device_conflicts")
    op.drop_index("ix_device_conflicts_user_id_timestamp", table_name="device_conflicts")
    op.drop_table("device_conflicts")
    op.drop_index("ix_devices_user_id_is_active", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_user_sessions_parent_session_id", table_name="user_sessions")
    op.drop_index("ix_user_sessions_user_id_revoked", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.execute("DROP TYPE IF EXISTS audit_actor_type")
    op.execute("DROP TYPE IF EXISTS user_role")
