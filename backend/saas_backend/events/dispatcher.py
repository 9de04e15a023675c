"""
Event dispatcher.

Background loop that polls the EventStore and drives registered consumers
with at-least-once semantics:

- an event is claimed with a conditional transition, so concurrent
  dispatchers never process the same row at the same time;
- events of one batch run concurrently, consumers of one event run one
  after another in registration order;
- a consumer that already has an idempotency record for the event is
  skipped, so retries only re-run consumers that did not finish;
- a consumer that raises or exceeds the handler timeout fails the event,
  which is retried with exponential backoff until it is dead-lettered.

Consumers run inside the event's tenant context, so their storage calls are
scoped to the tenant the event belongs to.
"""

import asyncio
import logging
import time
from typing import Optional

from saas_backend.core.context import tenant_scope
from saas_backend.events.bus import RegisteredConsumer, ReliableEventBus
from saas_backend.events.exceptions import (
    EventHandlerError,
    HandlerFailureError,
    HandlerTimeoutError,
)
from saas_backend.events.idempotency import ConsumerIdempotencyStore
from saas_backend.events.store import EventStore
from saas_backend.observability import (
    event_handler_duration_seconds,
    events_dead_lettered_total,
    events_failed_total,
    events_processed_total,
    tracer,
)
from saas_backend.schemas.events import DomainEvent, StoredEvent

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Polls the event store and delivers events to consumers.

    Example:
        dispatcher = EventDispatcher(store, bus, idempotency)
        await dispatcher.start()

        # On shutdown
        await dispatcher.stop()
    """

    def __init__(
        self,
        store: EventStore,
        bus: ReliableEventBus,
        idempotency: ConsumerIdempotencyStore,
        batch_size: int = 10,
        handler_timeout: float = 3.0,
        idle_interval: float = 1.0,
        claim_timeout: float = 300.0,
    ):
        """
        Args:
            store: Durable event store
            bus: Bus holding the consumer registrations and fallback queue
            idempotency: Per-consumer idempotency records
            batch_size: Maximum events claimed per iteration
            handler_timeout: Seconds to wait for one consumer
            idle_interval: Seconds to sleep when no event is ready
            claim_timeout: Seconds after which a 'processing' row is
                considered abandoned
        """
        self.store = store
        self.bus = bus
        self.idempotency = idempotency
        self.batch_size = batch_size
        self.handler_timeout = handler_timeout
        self.idle_interval = idle_interval
        self.claim_timeout = claim_timeout
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            logger.warning("Event dispatcher already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Event dispatcher started",
            extra={
                "batch_size": self.batch_size,
                "handler_timeout": self.handler_timeout,
                "idle_interval": self.idle_interval,
            },
        )

    async def stop(self) -> None:
        """Stop the loop, letting the current iteration finish if it can."""
        if not self._running:
            return

        self._running = False
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Event dispatcher stop timed out, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("Event dispatcher stopped")

    async def _run(self) -> None:
        while self._running:
            claimed = 0
            try:
                claimed = await self.run_once()
            except Exception as e:
                logger.error(
                    "Error in event dispatcher",
                    extra={"error": str(e)},
                    exc_info=True,
                )

            if claimed == 0 and self._running:
                await asyncio.sleep(self.idle_interval)
            else:
                await asyncio.sleep(0)

    async def run_once(self) -> int:
        """
        Run a single dispatch iteration.

        Returns:
            Number of events this iteration claimed
        """
        await self.bus.flush_fallback()
        await self.store.fail_stale_claims(self.claim_timeout)

        batch = await self.store.get_pending_batch(self.batch_size)
        if not batch:
            return 0

        results = await asyncio.gather(
            *(self._process_event(event) for event in batch),
            return_exceptions=True,
        )

        claimed = 0
        for event, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error processing event",
                    extra={"event_id": str(event.id), "error": str(result)},
                    exc_info=result,
                )
            elif result:
                claimed += 1

        logger.debug(
            "Dispatch iteration finished",
            extra={"batch": len(batch), "claimed": claimed},
        )
        return claimed

    async def _process_event(self, event: StoredEvent) -> bool:
        if not await self.store.mark_processing(event.id):
            return False

        consumers = self.bus.get_consumers(event.event_name)
        if not consumers:
            await self.store.mark_processed(event.id)
            self.bus.record_processed()
            events_processed_total.labels(event_name=event.event_name).inc()
            return True

        domain_event = event.to_domain_event()

        with tracer.start_as_current_span("event.process") as span:
            span.set_attribute("event.id", str(event.id))
            span.set_attribute("event.name", event.event_name)
            span.set_attribute("event.retries", event.retries)
            if event.tenant_id:
                span.set_attribute("tenant.id", str(event.tenant_id))

            try:
                for consumer in consumers:
                    await self._run_consumer(consumer, domain_event)
            except Exception as e:
                span.record_exception(e)
                await self._handle_failure(event, e)
                return True

        await self.store.mark_processed(event.id)
        self.bus.record_processed()
        events_processed_total.labels(event_name=event.event_name).inc()
        return True

    async def _run_consumer(self, consumer: RegisteredConsumer, event: DomainEvent) -> None:
        if await self.idempotency.is_processed(event.id, consumer.name):
            logger.debug(
                "Consumer already processed event, skipping",
                extra={"event_id": str(event.id), "consumer": consumer.name},
            )
            return

        started = time.perf_counter()
        # The task copies the context at creation, so it keeps the tenant
        # scope even if it outlives the timeout below.
        with tenant_scope(event.tenant_id, event.user_id):
            task = asyncio.ensure_future(consumer(event))
        task.add_done_callback(_consume_task_result)

        done, _ = await asyncio.wait({task}, timeout=self.handler_timeout)
        event_handler_duration_seconds.labels(consumer=consumer.name).observe(
            time.perf_counter() - started
        )

        if task not in done:
            raise HandlerTimeoutError(
                f"Consumer '{consumer.name}' timed out after {self.handler_timeout}s",
                consumer_name=consumer.name,
            )

        error = task.exception()
        if error is not None:
            raise HandlerFailureError(
                f"Consumer '{consumer.name}' failed: {error}",
                consumer_name=consumer.name,
                cause=error,
            ) from error

        await self.idempotency.mark_processed(event.id, consumer.name)

    async def _handle_failure(self, event: StoredEvent, error: Exception) -> None:
        if isinstance(error, HandlerTimeoutError):
            reason = "timeout"
        elif isinstance(error, EventHandlerError):
            reason = "handler_error"
        else:
            reason = "internal_error"

        failed = await self.store.mark_failed(event.id, str(error))
        self.bus.record_failed()
        events_failed_total.labels(event_name=event.event_name, reason=reason).inc()

        log_extra = {
            "event_id": str(event.id),
            "event_name": event.event_name,
            "tenant_id": str(event.tenant_id) if event.tenant_id else None,
            "consumer": getattr(error, "consumer_name", None),
            "retries": failed.retries,
            "error": str(error),
        }

        if failed.is_dead_lettered(self.store.max_retries):
            events_dead_lettered_total.labels(event_name=event.event_name).inc()
            logger.error("Event dead-lettered after max retries", extra=log_extra)
        else:
            logger.warning(
                "Event processing failed, will retry",
                extra={**log_extra, "next_attempt_at": str(failed.next_attempt_at)},
            )


def _consume_task_result(task: "asyncio.Future") -> None:
    # Retrieve late exceptions of timed-out handlers so they are logged
    # instead of reported as never retrieved.
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("Consumer task finished with error", extra={"error": str(error)})
