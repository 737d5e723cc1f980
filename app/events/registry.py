import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type, TypeVar

from app.core.errors import UnregisteredEventError
from app.events.base import DomainEvent

log = logging.getLogger("app.events.registry")

E = TypeVar("E", bound=Type[DomainEvent])


@dataclass(frozen=True)
class EventDescriptor:
    """Static metadata for one event class."""
    event_type: str
    should_publish: bool


class EventRegistry:
    """
    Explicit mapping from event class to its descriptor.

    Every event passed to EventStore.append must be registered here; the
    descriptor decides once, at append time, whether the row enters the outbox.
    """

    def __init__(self) -> None:
        self._by_class: Dict[Type[DomainEvent], EventDescriptor] = {}
        self._by_name: Dict[str, Type[DomainEvent]] = {}

    def register(
        self,
        event_class: Type[DomainEvent],
        *,
        publishable: bool,
        event_type: Optional[str] = None,
    ) -> EventDescriptor:
        name = event_type or event_class.__name__
        existing = self._by_name.get(name)
        if existing is not None and existing is not event_class:
            raise ValueError(
                f"Event type '{name}' is already registered by {existing.__module__}.{existing.__name__}"
            )

        descriptor = EventDescriptor(event_type=name, should_publish=publishable)
        self._by_class[event_class] = descriptor
        self._by_name[name] = event_class
        log.debug(f"Registered event type {name} (publishable={publishable})")
        return descriptor

    def event(self, *, publishable: bool, event_type: Optional[str] = None) -> Callable[[E], E]:
        """Class decorator form of register()."""
        def decorator(event_class: E) -> E:
            self.register(event_class, publishable=publishable, event_type=event_type)
            return event_class
        return decorator

    def describe(self, event: DomainEvent) -> EventDescriptor:
        descriptor = self._by_class.get(type(event))
        if descriptor is None:
            raise UnregisteredEventError(type(event))
        return descriptor

    def event_class_for(self, event_type: str) -> Optional[Type[DomainEvent]]:
        return self._by_name.get(event_type)

    def publishable_event_types(self) -> List[str]:
        return sorted(d.event_type for d in self._by_class.values() if d.should_publish)

    def __contains__(self, event_class: object) -> bool:
        return event_class in self._by_class

    def __len__(self) -> int:
        return len(self._by_class)


# Application-wide registry; event modules register into it at import time
event_registry = EventRegistry()
