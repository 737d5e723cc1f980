import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Protocol

log = logging.getLogger("app.events.message_bus")

Handler = Callable[[Dict[str, Any], str], Awaitable[None]]


class MessageBus(Protocol):
    """
    The external broker the dispatcher publishes to.

    publish() returns normally on success. Any exception (conventionally
    PublishTransientError) is recorded as a failed attempt and retried later.
    """

    async def publish(self, event_type: str, payload: bytes, correlation_id: str) -> None:
        ...


@dataclass(frozen=True)
class PublishedMessage:
    event_type: str
    payload: bytes
    correlation_id: str

    def json(self) -> Dict[str, Any]:
        return json.loads(self.payload.decode("utf-8"))


class LocalMessageBus:
    """
    In-process bus that routes each message to the handlers subscribed to its
    event type. It stands in for Kafka/RabbitMQ when running a single service
    and keeps a log of everything delivered.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self.published: List[PublishedMessage] = []

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type].append(handler)
        log.debug(f"Handler {handler.__name__} subscribed to {event_type}")

    async def publish(self, event_type: str, payload: bytes, correlation_id: str) -> None:
        handlers = self._handlers.get(event_type, [])
        if handlers:
            body = json.loads(payload.decode("utf-8"))
            for handler in handlers:
                # A handler exception propagates so the dispatcher records a failed attempt
                await handler(body, correlation_id)
        else:
            log.info(f"No subscriber for {event_type} (correlation {correlation_id}), message accepted")

        self.published.append(PublishedMessage(event_type, payload, correlation_id))
