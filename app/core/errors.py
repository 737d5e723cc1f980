from typing import Any, Dict, Optional
from uuid import UUID


class EventStoreError(Exception):
    """Base class for every error raised by the event store and the outbox."""
    code: str = "event_store_error"

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details


# ----------- Append-time errors (fatal, abort the caller's transaction) -----------

class UnregisteredEventError(EventStoreError):
    code = "unregistered_event"

    def __init__(self, event_class: type) -> None:
        super().__init__(
            f"Event class {event_class.__name__} is not registered with the event registry.",
            details={"event_class": event_class.__name__},
        )
        self.event_class = event_class


class SerializationError(EventStoreError):
    code = "serialization_error"


class PersistenceError(EventStoreError):
    code = "persistence_error"


# ----------- Dispatch-time errors (recorded on the event row, never fatal) -----------

class PublishError(EventStoreError):
    code = "publish_error"


class PublishTransientError(PublishError):
    """Network or broker failure; the event is retried on a later cycle."""
    code = "publish_transient_error"


class PublishTimeoutError(PublishError):
    code = "publish_timeout"

    def __init__(self, event_id: UUID, timeout: float) -> None:
        super().__init__(
            f"Publishing event {event_id} did not finish within {timeout}s",
            details={"event_id": str(event_id), "timeout": timeout},
        )


class ExhaustedRetryError(PublishError):
    """Describes an event that reached max attempts. It is logged, not raised."""
    code = "exhausted_retries"

    def __init__(self, event_id: UUID, attempts: int, last_error: Optional[str]) -> None:
        super().__init__(
            f"Event {event_id} dead-lettered after {attempts} failed attempts: {last_error}",
            details={"event_id": str(event_id), "attempts": attempts, "last_error": last_error},
        )
