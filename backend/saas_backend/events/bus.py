"""
Reliable event bus.

publish() never delivers to consumers directly: it appends the event to the
EventStore and the EventDispatcher delivers it later. When the store cannot
be written, the event is kept in an in-process fallback queue and appended
again on the next flush_fallback().

The fallback queue lives in process memory only. Events still queued when
the process exits are lost; the fallback_queued and flushed counters make
that window observable.
"""

import inspect
import logging
from collections import deque
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Iterable, Union

from saas_backend.events.exceptions import DuplicateEventError
from saas_backend.events.store import EventStore
from saas_backend.observability import event_bus_events_total, event_fallback_queue_size
from saas_backend.schemas.events import DomainEvent, StoredEventCreate

logger = logging.getLogger(__name__)

HandlerFunc = Callable[[DomainEvent], Awaitable[Any]]
EventHandler = Union[HandlerFunc, Any]


@dataclass
class EventBusMetrics:
    """Process-local counters, mirrored to Prometheus."""

    published: int = 0
    persisted: int = 0
    persist_failed: int = 0
    fallback_queued: int = 0
    flushed: int = 0
    processed: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RegisteredConsumer:
    """
    A handler registered for an event type.

    The name is the consumer's stable identity for idempotency records, so
    it must not change between deployments.
    """

    name: str
    handler: EventHandler

    async def __call__(self, event: DomainEvent) -> Any:
        handle = getattr(self.handler, "handle", self.handler)
        result = handle(event)
        if inspect.isawaitable(result):
            return await result
        return result


class ReliableEventBus:
    """
    Durable publish/subscribe facade.

    Example:
        >>> bus = ReliableEventBus(store)
        >>> bus.subscribe("core.tenant.created", audit.handle, name="audit-trail")
        >>> await bus.publish(DomainEvent(type="core.tenant.created", ...))
    """

    def __init__(self, store: EventStore):
        self._store = store
        self._consumers: dict[str, list[RegisteredConsumer]] = {}
        self._fallback: deque[StoredEventCreate] = deque()
        self.metrics = EventBusMetrics()

    def _count(self, counter: str, amount: int = 1) -> None:
        setattr(self.metrics, counter, getattr(self.metrics, counter) + amount)
        event_bus_events_total.labels(counter=counter).inc(amount)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, event_type: str, handler: EventHandler, name: str) -> None:
        """
        Register a consumer for an event type.

        Registering the same handler for the same type again is a no-op.
        Consumers run in registration order.

        Raises:
            ValueError: If the name is already used by another handler of
                the same event type
        """
        consumers = self._consumers.setdefault(event_type, [])
        for consumer in consumers:
            if consumer.handler == handler:
                return
            if consumer.name == name:
                raise ValueError(
                    f"Consumer name '{name}' already registered for '{event_type}'"
                )
        consumers.append(RegisteredConsumer(name=name, handler=handler))
        logger.info(
            "Consumer subscribed",
            extra={"event_type": event_type, "consumer": name},
        )

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        consumers = self._consumers.get(event_type, [])
        for consumer in consumers:
            if consumer.handler == handler:
                consumers.remove(consumer)
                return True
        return False

    def get_consumers(self, event_type: str) -> list[RegisteredConsumer]:
        return list(self._consumers.get(event_type, []))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, event: DomainEvent) -> bool:
        """
        Persist an event for asynchronous delivery.

        Persistence failures are absorbed: the event goes to the fallback
        queue and the publisher is not interrupted.

        Returns:
            True if the event is in the store (including an earlier publish
            of the same id), False if it was queued
        """
        self._count("published")
        stored = StoredEventCreate.from_domain_event(event)
        try:
            await self._store.append(stored)
        except DuplicateEventError:
            logger.info("Event already stored", extra={"event_id": str(event.id)})
            self._count("persisted")
            return True
        except Exception as e:
            self._count("persist_failed")
            self._enqueue(stored)
            logger.error(
                "Event persistence failed, queued in fallback",
                extra={
                    "event_id": str(event.id),
                    "event_type": event.type,
                    "error": str(e),
                    "fallback_size": len(self._fallback),
                },
            )
            return False

        self._count("persisted")
        return True

    async def publish_many(self, events: Iterable[DomainEvent]) -> int:
        """Publish events in order; returns how many reached the store."""
        persisted = 0
        for event in events:
            if await self.publish(event):
                persisted += 1
        return persisted

    def _enqueue(self, stored: StoredEventCreate) -> None:
        self._fallback.append(stored)
        self._count("fallback_queued")
        event_fallback_queue_size.set(len(self._fallback))

    @property
    def fallback_size(self) -> int:
        return len(self._fallback)

    async def flush_fallback(self) -> int:
        """
        Retry appending queued events, oldest first.

        An event that turns out to be stored already counts as persisted.
        On the first other failure the event is put back at the head of the
        queue and flushing stops until the next call.

        Returns:
            Number of events that left the queue
        """
        flushed = 0
        while self._fallback:
            stored = self._fallback.popleft()
            try:
                await self._store.append(stored)
            except DuplicateEventError:
                logger.info(
                    "Fallback event already stored",
                    extra={"event_id": str(stored.id)},
                )
            except Exception as e:
                self._fallback.appendleft(stored)
                logger.warning(
                    "Fallback flush interrupted",
                    extra={
                        "event_id": str(stored.id),
                        "error": str(e),
                        "fallback_size": len(self._fallback),
                    },
                )
                break

            flushed += 1
            self._count("flushed")
            self._count("persisted")

        event_fallback_queue_size.set(len(self._fallback))
        if flushed:
            logger.info(
                "Flushed fallback events",
                extra={"count": flushed, "fallback_size": len(self._fallback)},
            )
        return flushed

    # ------------------------------------------------------------------
    # Delivery outcomes, reported by the dispatcher
    # ------------------------------------------------------------------

    def record_processed(self) -> None:
        self._count("processed")

    def record_failed(self) -> None:
        self._count("failed")
