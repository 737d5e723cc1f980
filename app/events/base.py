from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DomainEvent(BaseModel):
    """
    Base class for every fact recorded in the event store.

    Events are immutable value objects. They are serialized with camelCase keys
    (e.g. 'orderId') so stored payloads match what external consumers read off the bus.
    Whether an event is published is declared in the EventRegistry, not on the class.
    """
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )
