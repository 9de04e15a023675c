"""
Tests for the durable event store lifecycle.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from saas_backend.events.exceptions import DuplicateEventError, EventNotFoundError
from saas_backend.events.store import EventStore
from saas_backend.schemas.events import StoredEventCreate


@pytest.fixture
def store(session_factory, clock) -> EventStore:
    return EventStore(session_factory, max_retries=5, backoff_base_seconds=1.0, clock=clock)


def new_event(clock, offset_seconds: float = 0, **kwargs) -> StoredEventCreate:
    return StoredEventCreate(
        event_name=kwargs.pop("event_name", "core.tenant.updated"),
        tenant_id=kwargs.pop("tenant_id", uuid4()),
        payload=kwargs.pop("payload", {"id": "t-1"}),
        occurred_at=clock.now + timedelta(seconds=offset_seconds),
        **kwargs,
    )


class TestAppend:
    @pytest.mark.asyncio
    async def test_append_creates_pending_row(self, store, clock):
        event = new_event(clock)

        stored = await store.append(event)

        assert stored.id == event.id
        assert stored.status == "pending"
        assert stored.retries == 0
        assert stored.version == 1
        assert stored.processed_at is None
        assert stored.occurred_at == event.occurred_at

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store, clock):
        event = new_event(clock)
        await store.append(event)

        with pytest.raises(DuplicateEventError):
            await store.append(event)

    @pytest.mark.asyncio
    async def test_platform_event_without_tenant(self, store, clock):
        stored = await store.append(new_event(clock, tenant_id=None, event_name="core.plan.changed"))

        assert stored.tenant_id is None


class TestClaiming:
    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, store, clock):
        event = await store.append(new_event(clock))

        assert await store.mark_processing(event.id) is True
        assert await store.mark_processing(event.id) is False

        stored = await store.get(event.id)
        assert stored.status == "processing"
        assert stored.claimed_at == clock.now

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store, clock):
        event = await store.append(new_event(clock))

        results = await asyncio.gather(*(store.mark_processing(event.id) for _ in range(4)))

        assert sorted(results) == [False, False, False, True]

    @pytest.mark.asyncio
    async def test_processed_event_cannot_be_claimed(self, store, clock):
        event = await store.append(new_event(clock))
        await store.mark_processing(event.id)
        await store.mark_processed(event.id)

        assert await store.mark_processing(event.id) is False
        stored = await store.get(event.id)
        assert stored.status == "processed"
        assert stored.processed_at == clock.now

    @pytest.mark.asyncio
    async def test_unknown_event_not_claimable(self, store):
        assert await store.mark_processing(uuid4()) is False


class TestFailure:
    @pytest.mark.asyncio
    async def test_mark_failed_schedules_backoff(self, store, clock):
        event = await store.append(new_event(clock))
        await store.mark_processing(event.id)

        failed = await store.mark_failed(event.id, "boom")

        assert failed.status == "failed"
        assert failed.retries == 1
        assert failed.last_error == "boom"
        assert failed.last_attempt_at == clock.now
        assert failed.next_attempt_at == clock.now + timedelta(seconds=2)
        assert failed.processed_at is None

    @pytest.mark.asyncio
    async def test_backoff_doubles_per_attempt(self, store, clock):
        event = await store.append(new_event(clock))
        delays = []
        for _ in range(3):
            await store.mark_processing(event.id)
            failed = await store.mark_failed(event.id)
            delays.append((failed.next_attempt_at - failed.last_attempt_at).total_seconds())
            clock.advance(60)

        assert delays == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_mark_failed_does_not_touch_processed(self, store, clock):
        event = await store.append(new_event(clock))
        await store.mark_processing(event.id)
        await store.mark_processed(event.id)

        result = await store.mark_failed(event.id, "late")

        assert result.status == "processed"
        assert result.retries == 0

    @pytest.mark.asyncio
    async def test_mark_failed_unknown_event(self, store):
        with pytest.raises(EventNotFoundError):
            await store.mark_failed(uuid4())

    @pytest.mark.asyncio
    async def test_exhausted_event_is_dead_lettered(self, store, clock):
        event = await store.append(new_event(clock))
        for _ in range(5):
            assert await store.mark_processing(event.id)
            await store.mark_failed(event.id, "boom")
            clock.advance(3600)

        assert await store.mark_processing(event.id) is False
        assert await store.get_pending_batch(10) == []
        dead = await store.get_dead_letters()
        assert [e.id for e in dead] == [event.id]
        assert dead[0].is_dead_lettered(store.max_retries)


class TestPendingBatch:
    @pytest.mark.asyncio
    async def test_pending_ordered_by_occurrence(self, store, clock):
        late = await store.append(new_event(clock, offset_seconds=10))
        early = await store.append(new_event(clock, offset_seconds=-10))

        batch = await store.get_pending_batch(10)

        assert [e.id for e in batch] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_failed_event_waits_for_backoff(self, store, clock):
        event = await store.append(new_event(clock))
        await store.mark_processing(event.id)
        await store.mark_failed(event.id)

        assert await store.get_pending_batch(10) == []

        clock.advance(1.5)
        assert await store.get_pending_batch(10) == []

        clock.advance(0.5)
        assert [e.id for e in await store.get_pending_batch(10)] == [event.id]

    @pytest.mark.asyncio
    async def test_pending_first_then_retries_by_last_attempt(self, store, clock):
        first_failed = await store.append(new_event(clock, offset_seconds=-100))
        second_failed = await store.append(new_event(clock, offset_seconds=-90))
        for event in (first_failed, second_failed):
            await store.mark_processing(event.id)
            await store.mark_failed(event.id)
            clock.advance(1)
        pending = await store.append(new_event(clock))
        clock.advance(60)

        batch = await store.get_pending_batch(10)
        limited = await store.get_pending_batch(2)

        assert [e.id for e in batch] == [pending.id, first_failed.id, second_failed.id]
        assert [e.id for e in limited] == [pending.id, first_failed.id]

    @pytest.mark.asyncio
    async def test_processing_and_processed_excluded(self, store, clock):
        in_flight = await store.append(new_event(clock))
        done = await store.append(new_event(clock))
        await store.mark_processing(in_flight.id)
        await store.mark_processing(done.id)
        await store.mark_processed(done.id)

        assert await store.get_pending_batch(10) == []


class TestStaleClaims:
    @pytest.mark.asyncio
    async def test_stale_processing_rows_are_failed(self, store, clock):
        stale = await store.append(new_event(clock))
        await store.mark_processing(stale.id)
        clock.advance(200)
        fresh = await store.append(new_event(clock))
        await store.mark_processing(fresh.id)
        clock.advance(150)

        recovered = await store.fail_stale_claims(older_than_seconds=300)

        assert recovered == 1
        stale_row = await store.get(stale.id)
        assert stale_row.status == "failed"
        assert stale_row.retries == 1
        assert stale_row.last_error == "processing claim expired"
        assert (await store.get(fresh.id)).status == "processing"
