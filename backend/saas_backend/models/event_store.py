"""
Event store and consumer idempotency tables.

event_store holds one row per domain event with its delivery lifecycle.
event_consumers records which consumer already applied which event, so a
retried event does not re-run consumers that succeeded earlier.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from saas_backend.core.database import Base, utcnow


class EventStatus(str, enum.Enum):
    """Delivery status of a stored event."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


# JSONB on PostgreSQL, plain JSON elsewhere
PayloadType = JSON().with_variant(JSONB(), "postgresql")


class StoredEventRecord(Base):
    """
    A durable domain event row.

    Timestamps:
        occurred_at: when the event happened (publisher clock)
        processed_at: when the event was successfully processed
        last_attempt_at: when the last failed attempt finished
        next_attempt_at: earliest time a failed event may be claimed again
        claimed_at: when the row last entered 'processing'
    """

    __tablename__ = "event_store"
    __table_args__ = (
        Index("idx_event_store_pending", "status", "occurred_at"),
        Index("idx_event_store_retry", "status", "retries", "next_attempt_at"),
        Index("idx_event_store_tenant_id", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
        comment="Owning tenant; NULL for platform-level events",
    )
    event_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    aggregate_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    aggregate_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(PayloadType, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EventStatus.PENDING.value
    )
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<StoredEvent {self.event_name} {self.id} status={self.status} retries={self.retries}>"


class EventConsumerRecord(Base):
    """Marks that a consumer has applied an event's side effects."""

    __tablename__ = "event_consumers"
    __table_args__ = (
        UniqueConstraint("event_id", "consumer_name", name="uq_event_consumers_event_consumer"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    consumer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
