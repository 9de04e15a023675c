"""
Durable event store.

Every published domain event becomes one event_store row. The dispatcher
drives the row through its lifecycle:

    pending -> processing -> processed
    pending | failed -> processing -> failed

Each transition into 'failed' counts one attempt. Once retries reaches
max_retries the row is dead-lettered: it stays in the table but is never
picked up again.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saas_backend.core.database import utcnow
from saas_backend.events.exceptions import (
    DuplicateEventError,
    EventNotFoundError,
    PersistenceFailureError,
)
from saas_backend.models.event_store import EventStatus, StoredEventRecord
from saas_backend.schemas.events import StoredEvent, StoredEventCreate

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class EventStore:
    """
    Repository for stored events.

    Each method opens its own short session and commits before returning,
    so a transition is visible to other dispatcher instances immediately.

    Attributes:
        max_retries: Attempts after which an event is dead-lettered
        backoff_base_seconds: Base of the exponential retry delay
        clock: Returns the current UTC time; replaceable in tests
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = 5,
        backoff_base_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.clock = clock

    def backoff_delay(self, retries: int) -> timedelta:
        """Delay before the next attempt after ``retries`` failed attempts."""
        return timedelta(seconds=self.backoff_base_seconds * (2 ** retries))

    async def append(self, event: StoredEventCreate) -> StoredEvent:
        """
        Insert a new pending event.

        Raises:
            DuplicateEventError: If an event with the same id already exists
            PersistenceFailureError: If the store cannot be written
        """
        record = StoredEventRecord(
            id=event.id,
            tenant_id=event.tenant_id,
            event_name=event.event_name,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            payload=event.payload,
            version=1,
            occurred_at=event.occurred_at,
            status=EventStatus.PENDING.value,
            retries=0,
        )
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except IntegrityError as e:
            raise DuplicateEventError(event.id, cause=e) from e
        except SQLAlchemyError as e:
            raise PersistenceFailureError(f"Failed to append event {event.id}", cause=e) from e

        logger.debug(
            "Event appended",
            extra={
                "event_id": str(event.id),
                "event_name": event.event_name,
                "tenant_id": str(event.tenant_id) if event.tenant_id else None,
            },
        )
        return StoredEvent.model_validate(record)

    async def get(self, event_id: UUID) -> Optional[StoredEvent]:
        async with self._session_factory() as session:
            record = await session.get(StoredEventRecord, event_id)
            return StoredEvent.model_validate(record) if record else None

    async def mark_processing(self, event_id: UUID) -> bool:
        """
        Claim an event for processing.

        The transition is a single conditional UPDATE, so when several
        dispatchers race for the same row exactly one of them wins.

        Returns:
            True if this call claimed the event, False if it was not claimable
        """
        now = self.clock()
        stmt = (
            update(StoredEventRecord)
            .where(
                StoredEventRecord.id == event_id,
                or_(
                    StoredEventRecord.status == EventStatus.PENDING.value,
                    and_(
                        StoredEventRecord.status == EventStatus.FAILED.value,
                        StoredEventRecord.retries < self.max_retries,
                    ),
                ),
            )
            .values(status=EventStatus.PROCESSING.value, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        claimed = result.rowcount == 1
        if not claimed:
            logger.debug("Event not claimable", extra={"event_id": str(event_id)})
        return claimed

    async def mark_processed(self, event_id: UUID) -> None:
        now = self.clock()
        stmt = (
            update(StoredEventRecord)
            .where(
                StoredEventRecord.id == event_id,
                StoredEventRecord.status == EventStatus.PROCESSING.value,
            )
            .values(status=EventStatus.PROCESSED.value, processed_at=now, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount != 1:
            logger.warning(
                "mark_processed on event that is not processing",
                extra={"event_id": str(event_id)},
            )

    async def mark_failed(self, event_id: UUID, error: Optional[str] = None) -> StoredEvent:
        """
        Record a failed attempt.

        Increments retries, stamps last_attempt_at and schedules
        next_attempt_at = last_attempt_at + base * 2 ** retries.

        Raises:
            EventNotFoundError: If the event does not exist
        """
        now = self.clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredEventRecord)
                .where(StoredEventRecord.id == event_id)
                .with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                raise EventNotFoundError(event_id)
            if record.status == EventStatus.PROCESSED.value:
                logger.warning(
                    "mark_failed on processed event ignored",
                    extra={"event_id": str(event_id)},
                )
                return StoredEvent.model_validate(record)

            self._fail(record, now, error)
            await session.commit()
            return StoredEvent.model_validate(record)

    def _fail(self, record: StoredEventRecord, now: datetime, error: Optional[str]) -> None:
        record.retries += 1
        record.status = EventStatus.FAILED.value
        record.last_attempt_at = now
        record.next_attempt_at = now + self.backoff_delay(record.retries)
        record.claimed_at = None
        record.last_error = error[:MAX_ERROR_LENGTH] if error else None

    async def get_pending_batch(self, limit: int) -> list[StoredEvent]:
        """
        Fetch up to ``limit`` events that are ready to run.

        Pending events come first, oldest occurred_at first. Remaining slots
        are filled with failed events that still have retries left and whose
        backoff has elapsed, least recently attempted first.
        """
        now = self.clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredEventRecord)
                .where(StoredEventRecord.status == EventStatus.PENDING.value)
                .order_by(StoredEventRecord.occurred_at.asc())
                .limit(limit)
            )
            records = list(result.scalars().all())

            remaining = limit - len(records)
            if remaining > 0:
                result = await session.execute(
                    select(StoredEventRecord)
                    .where(
                        StoredEventRecord.status == EventStatus.FAILED.value,
                        StoredEventRecord.retries < self.max_retries,
                        or_(
                            StoredEventRecord.next_attempt_at.is_(None),
                            StoredEventRecord.next_attempt_at <= now,
                        ),
                    )
                    .order_by(StoredEventRecord.last_attempt_at.asc())
                    .limit(remaining)
                )
                records.extend(result.scalars().all())

        return [StoredEvent.model_validate(record) for record in records]

    async def get_dead_letters(self, limit: int = 100) -> list[StoredEvent]:
        """Failed events that exhausted their retries, most recent first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredEventRecord)
                .where(
                    StoredEventRecord.status == EventStatus.FAILED.value,
                    StoredEventRecord.retries >= self.max_retries,
                )
                .order_by(StoredEventRecord.last_attempt_at.desc())
                .limit(limit)
            )
            return [StoredEvent.model_validate(record) for record in result.scalars().all()]

    async def fail_stale_claims(self, older_than_seconds: float) -> int:
        """
        Move abandoned 'processing' rows to 'failed'.

        A row whose claim is older than the threshold belonged to a worker
        that died mid-flight. The expired claim counts as one attempt.

        Returns:
            Number of rows recovered
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=older_than_seconds)
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredEventRecord)
                .where(
                    StoredEventRecord.status == EventStatus.PROCESSING.value,
                    StoredEventRecord.claimed_at < cutoff,
                )
                .with_for_update(skip_locked=True)
            )
            records = result.scalars().all()
            for record in records:
                self._fail(record, now, "processing claim expired")
            await session.commit()

        if records:
            logger.warning(
                "Recovered stale event claims",
                extra={
                    "count": len(records),
                    "event_ids": [str(record.id) for record in records],
                },
            )
        return len(records)
