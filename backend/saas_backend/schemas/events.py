"""
Pydantic schemas for domain events.

DomainEvent is what publishers hand to the bus and what consumers receive.
StoredEventCreate is the insert shape accepted by the event store and
StoredEvent is the read model of an event_store row.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


SYSTEM_USER = "system"
META_KEY = "_meta"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; every stored timestamp is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CoreEvents(str, Enum):
    """Platform event names published by the core domain."""

    TENANT_CREATED = "core.tenant.created"
    TENANT_UPDATED = "core.tenant.updated"
    TENANT_DELETED = "core.tenant.deleted"
    TENANT_USER_CREATED = "core.tenant_user.created"
    TENANT_USER_UPDATED = "core.tenant_user.updated"
    TENANT_USER_DELETED = "core.tenant_user.deleted"
    PLAN_CHANGED = "core.plan.changed"
    MODULE_ACTIVATED = "core.module.activated"
    MODULE_DEACTIVATED = "core.module.deactivated"
    PERMISSION_GRANTED = "core.permission.granted"
    PERMISSION_REVOKED = "core.permission.revoked"
    SAAS_ADMIN_LOGIN = "core.saas_admin.login"
    TENANT_USER_LOGIN = "core.tenant_user.login"


class DomainEvent(BaseModel):
    """
    An immutable fact produced by domain code.

    Attributes:
        id: Unique event id; also the primary key of the stored row
        type: Event name used to route to consumers
        tenant_id: Owning tenant, None for platform-level events
        user_id: Actor that caused the event
        timestamp: When the event occurred (UTC)
        data: Event payload
        aggregate_type: Optional aggregate kind, e.g. "tenant"
        aggregate_id: Optional aggregate id; derived from data when omitted
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    type: str
    tenant_id: Optional[UUID] = None
    user_id: str = SYSTEM_USER
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)
    aggregate_type: Optional[str] = None
    aggregate_id: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def resolved_aggregate_id(self) -> Optional[str]:
        """Explicit aggregate id, else data["id"], else data["aggregate_id"]."""
        if self.aggregate_id is not None:
            return self.aggregate_id
        for key in ("id", "aggregate_id"):
            value = self.data.get(key)
            if value is not None:
                return str(value)
        return None


class StoredEventCreate(BaseModel):
    """Fields supplied when appending an event to the store."""

    id: UUID = Field(default_factory=uuid4)
    tenant_id: Optional[UUID] = None
    event_name: str
    aggregate_type: Optional[str] = None
    aggregate_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_domain_event(cls, event: DomainEvent) -> "StoredEventCreate":
        """
        Build the store row for a domain event.

        The payload is the event data plus a "_meta" envelope carrying the
        actor, the event timestamp and the event id.
        """
        data = event.model_dump(mode="json")["data"]
        payload = {
            **data,
            META_KEY: {
                "user_id": event.user_id,
                "timestamp": event.timestamp.isoformat(),
                "event_id": str(event.id),
            },
        }
        return cls(
            id=event.id,
            tenant_id=event.tenant_id,
            event_name=event.type,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.resolved_aggregate_id(),
            payload=payload,
            occurred_at=event.timestamp,
        )


class StoredEvent(BaseModel):
    """Read model of an event_store row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: Optional[UUID] = None
    event_name: str
    aggregate_type: Optional[str] = None
    aggregate_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    occurred_at: datetime
    processed_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    status: str
    retries: int = 0
    last_error: Optional[str] = None

    @field_validator(
        "occurred_at",
        "processed_at",
        "last_attempt_at",
        "next_attempt_at",
        "claimed_at",
    )
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def user_id(self) -> str:
        meta = self.payload.get(META_KEY) or {}
        return meta.get("user_id") or SYSTEM_USER

    def is_dead_lettered(self, max_retries: int) -> bool:
        return self.status == "failed" and self.retries >= max_retries

    def to_domain_event(self) -> DomainEvent:
        """Rebuild the event handed to consumers; data keeps the "_meta" envelope."""
        return DomainEvent(
            id=self.id,
            type=self.event_name,
            tenant_id=self.tenant_id,
            user_id=self.user_id,
            timestamp=self.occurred_at,
            data=dict(self.payload),
            aggregate_type=self.aggregate_type,
            aggregate_id=self.aggregate_id,
        )
