"""
Audit trail.

AuditLogger writes and reads audit_events through a tenant-scoped storage
client, so a tenant only ever sees its own audit trail. AuditTrailConsumer
is the event consumer that records one audit entry per core domain event.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saas_backend.events.bus import ReliableEventBus
from saas_backend.models.audit_event import AuditEvent
from saas_backend.schemas.events import META_KEY, CoreEvents, DomainEvent
from saas_backend.storage.client import StorageClient
from saas_backend.storage.tenant_scope import TenantScopeRegistry, create_scoped_client

logger = logging.getLogger(__name__)


class AuditLogger:
    """Audit trail access through a storage client."""

    def __init__(self, client: StorageClient):
        self.client = client

    async def log(
        self,
        action: str,
        resource: str,
        *,
        user_id: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        status: str = "success",
        details: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        event_id: Any = None,
    ) -> AuditEvent:
        """
        Record an audited action.

        The tenant is taken from the current context by the scoped client;
        without one the entry is a platform-level record.
        """
        data: dict[str, Any] = {
            "user_id": user_id,
            "action": action,
            "resource": resource,
            "old_value": old_value,
            "new_value": new_value,
            "status": status,
            "details": details or {},
        }
        if timestamp is not None:
            data["timestamp"] = timestamp
        if event_id is not None:
            data["id"] = event_id
        return await self.client.create(AuditEvent, data)

    async def get_events(
        self, user_id: Optional[str] = None, limit: int = 100
    ) -> list[AuditEvent]:
        """Most recent entries first, optionally for one user."""
        where = {"user_id": user_id} if user_id else {}
        return await self.client.find_many(
            AuditEvent, where, order_by={"timestamp": "desc"}, limit=limit
        )

    async def get_events_by_action(
        self, action: str, limit: Optional[int] = None
    ) -> list[AuditEvent]:
        return await self.client.find_many(
            AuditEvent, {"action": action}, order_by={"timestamp": "desc"}, limit=limit
        )


class AuditTrailConsumer:
    """
    Records core domain events in the audit trail.

    Runs inside the event's tenant context (set by the dispatcher), so each
    entry lands in the tenant that owns the event. The audit row reuses the
    event id, which makes a repeated delivery a no-op.
    """

    name = "audit-trail"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: TenantScopeRegistry,
        allow_bypass: bool = True,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._allow_bypass = allow_bypass

    def subscribe(self, bus: ReliableEventBus) -> None:
        for event_type in CoreEvents:
            bus.subscribe(event_type.value, self, name=self.name)

    async def handle(self, event: DomainEvent) -> None:
        data = {key: value for key, value in event.data.items() if key != META_KEY}
        # Platform events have no tenant; their entry is a platform-level
        # record written through the logged bypass even in strict mode
        allow_bypass = self._allow_bypass or event.tenant_id is None
        async with self._session_factory() as session:
            client = create_scoped_client(session, self._registry, allow_bypass=allow_bypass)
            try:
                await AuditLogger(client).log(
                    action=event.type,
                    resource=event.aggregate_type or event.type.split(".")[1],
                    user_id=event.user_id,
                    new_value=data,
                    details={
                        "event_id": str(event.id),
                        "aggregate_id": event.aggregate_id,
                    },
                    timestamp=event.timestamp,
                    event_id=event.id,
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(
                    "Audit entry for event already recorded",
                    extra={"event_id": str(event.id)},
                )
