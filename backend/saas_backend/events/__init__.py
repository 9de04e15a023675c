"""
Reliable event delivery.

ReliableEventBus persists published events to the EventStore, and
EventDispatcher delivers them to consumers with retries and per-consumer
idempotency.
"""

from saas_backend.events.bus import EventBusMetrics, RegisteredConsumer, ReliableEventBus
from saas_backend.events.dispatcher import EventDispatcher
from saas_backend.events.exceptions import (
    DuplicateEventError,
    EventError,
    EventHandlerError,
    EventNotFoundError,
    HandlerFailureError,
    HandlerTimeoutError,
    PersistenceFailureError,
)
from saas_backend.events.idempotency import ConsumerIdempotencyStore
from saas_backend.events.store import EventStore

__all__ = [
    "ConsumerIdempotencyStore",
    "DuplicateEventError",
    "EventBusMetrics",
    "EventDispatcher",
    "EventError",
    "EventHandlerError",
    "EventNotFoundError",
    "EventStore",
    "HandlerFailureError",
    "HandlerTimeoutError",
    "PersistenceFailureError",
    "RegisteredConsumer",
    "ReliableEventBus",
]
