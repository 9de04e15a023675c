"""Create core tables

Revision ID: 3f9c1a7e2b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates:
- tenants: customer accounts looked up by the tenant resolver
- event_store: durable domain events with delivery lifecycle
- event_consumers: per-consumer idempotency records
- audit_events: tenant-owned audit trail
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f9c1a7e2b10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ==========================================================================
    # Tenants
    # ==========================================================================
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "status",
            sa.String(32),
            nullable=False,
            server_default="active",
            comment="active, suspended or cancelled",
        ),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    # ==========================================================================
    # Event store
    # ==========================================================================
    op.create_table(
        "event_store",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Uuid(),
            nullable=True,
            comment="Owning tenant; NULL for platform-level events",
        ),
        sa.Column("event_name", sa.String(255), nullable=False),
        sa.Column("aggregate_type", sa.String(255), nullable=True),
        sa.Column("aggregate_id", sa.String(255), nullable=True),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("retries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_event_store_event_name", "event_store", ["event_name"])
    op.create_index("idx_event_store_pending", "event_store", ["status", "occurred_at"])
    op.create_index(
        "idx_event_store_retry", "event_store", ["status", "retries", "next_attempt_at"]
    )
    op.create_index("idx_event_store_tenant_id", "event_store", ["tenant_id"])

    # ==========================================================================
    # Consumer idempotency
    # ==========================================================================
    op.create_table(
        "event_consumers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("consumer_name", sa.String(255), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "event_id", "consumer_name", name="uq_event_consumers_event_consumer"
        ),
    )

    # ==========================================================================
    # Audit trail
    # ==========================================================================
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("action", sa.String(255), nullable=False),
        sa.Column("resource", sa.String(255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="success"),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_timestamp", "audit_events", ["timestamp"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("event_consumers")
    op.drop_table("event_store")
    op.drop_table("tenants")
