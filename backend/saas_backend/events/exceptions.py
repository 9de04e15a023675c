"""
Exceptions for the event pipeline.

Persistence failures on publish are absorbed by the bus fallback queue and
handler failures by dispatcher retries; these types exist so each layer can
tell the failure modes apart.
"""

from uuid import UUID


class EventError(Exception):
    """Base exception for all event pipeline errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class PersistenceFailureError(EventError):
    """Raised when the event store cannot be written or read."""

    pass


class DuplicateEventError(EventError):
    """Raised when appending an event whose id is already stored."""

    def __init__(self, event_id: UUID, cause: Exception | None = None):
        super().__init__(f"Event {event_id} is already stored", cause)
        self.event_id = event_id


class EventNotFoundError(EventError):
    """Raised when a lifecycle transition targets an unknown event id."""

    def __init__(self, event_id: UUID):
        super().__init__(f"Event {event_id} does not exist")
        self.event_id = event_id


class EventHandlerError(EventError):
    """Base exception for consumer failures.

    Raising one aborts the remaining consumers of the event and marks the
    event failed.
    """

    def __init__(self, message: str, consumer_name: str, cause: Exception | None = None):
        super().__init__(message, cause)
        self.consumer_name = consumer_name


class HandlerTimeoutError(EventHandlerError):
    """Raised when a consumer does not finish within the handler timeout.

    The handler itself keeps running; only the dispatcher stops waiting.
    """

    pass


class HandlerFailureError(EventHandlerError):
    """Raised when a consumer raises an exception."""

    pass
