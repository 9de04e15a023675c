"""
Per-consumer idempotency records.

A record (event_id, consumer_name) is written after the consumer's handler
returns successfully. When a failed event is retried, consumers that already
have a record are skipped.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saas_backend.models.event_store import EventConsumerRecord

logger = logging.getLogger(__name__)


class ConsumerIdempotencyStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def is_processed(self, event_id: UUID, consumer_name: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EventConsumerRecord.id).where(
                    EventConsumerRecord.event_id == event_id,
                    EventConsumerRecord.consumer_name == consumer_name,
                )
            )
            return result.first() is not None

    async def mark_processed(self, event_id: UUID, consumer_name: str) -> None:
        """Write the record; an existing record for the pair is left as is."""
        try:
            async with self._session_factory() as session:
                session.add(EventConsumerRecord(event_id=event_id, consumer_name=consumer_name))
                await session.commit()
        except IntegrityError:
            logger.debug(
                "Idempotency record already exists",
                extra={"event_id": str(event_id), "consumer": consumer_name},
            )
