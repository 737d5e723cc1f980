import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional
from uuid import UUID

from tortoise import timezone
from tortoise.exceptions import BaseORMException

from app.core.errors import PersistenceError, SerializationError
from app.events.base import DomainEvent
from app.events.registry import EventRegistry, event_registry
from app.models.event_record import EventRecord

log = logging.getLogger("app.events.event_store")


@dataclass(frozen=True)
class ActorContext:
    """Who triggered an event, recorded for the audit trail."""
    actor_id: Optional[UUID] = None
    actor_name: Optional[str] = None
    source_address: Optional[str] = None


class EventStore:
    """
    Appends domain events to the domain_events table and reads them back for audit.

    append() never opens, commits or rolls back a transaction. The caller passes
    the connection of its own `in_transaction()` block so the event row commits
    or rolls back together with the business state it describes.
    """

    def __init__(self, registry: EventRegistry = event_registry) -> None:
        self.registry = registry

    async def append(
        self,
        event: DomainEvent,
        tenant_id: UUID,
        aggregate_type: str,
        aggregate_id: UUID,
        *,
        conn: Any,
        actor: Optional[ActorContext] = None,
        correlation_id: Optional[str] = None,
    ) -> EventRecord:
        descriptor = self.registry.describe(event)

        try:
            payload = event.model_dump_json(by_alias=True)
        except (TypeError, ValueError) as e:
            raise SerializationError(
                f"Could not serialize {descriptor.event_type} for {aggregate_type} {aggregate_id}: {e}",
                details={"event_type": descriptor.event_type, "aggregate_id": str(aggregate_id)},
            ) from e

        actor = actor or ActorContext()
        try:
            record = await EventRecord.create(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                aggregate_type=aggregate_type,
                aggregate_id=aggregate_id,
                event_type=descriptor.event_type,
                payload=payload,
                occurred_at=timezone.now(),
                actor_id=actor.actor_id,
                actor_name=actor.actor_name,
                source_address=actor.source_address,
                correlation_id=correlation_id or str(aggregate_id),
                conversation_id=uuid.uuid4(),
                should_publish=descriptor.should_publish,
                published_at=None,
                publish_attempts=0,
                version=1,
                using_db=conn,
            )
        except BaseORMException as e:
            raise PersistenceError(
                f"Could not store {descriptor.event_type} for {aggregate_type} {aggregate_id}: {e}",
                details={"event_type": descriptor.event_type, "aggregate_id": str(aggregate_id)},
            ) from e

        log.debug(
            f"Appended {record.event_type} {record.id} for {aggregate_type} {aggregate_id} "
            f"(publish={record.should_publish})"
        )
        return record

    async def get_by_aggregate(self, aggregate_id: UUID, limit: Optional[int] = None) -> List[EventRecord]:
        """History of one aggregate, newest first."""
        query = EventRecord.filter(aggregate_id=aggregate_id).order_by("-occurred_at")
        if limit is not None:
            query = query.limit(limit)
        return await query

    async def get_by_tenant(self, tenant_id: UUID, limit: Optional[int] = None) -> List[EventRecord]:
        """History of one tenant, newest first."""
        query = EventRecord.filter(tenant_id=tenant_id).order_by("-occurred_at")
        if limit is not None:
            query = query.limit(limit)
        return await query

    async def get_by_correlation(self, correlation_id: str, limit: Optional[int] = None) -> List[EventRecord]:
        """Every event sharing a correlation id, in the order they happened."""
        query = EventRecord.filter(correlation_id=correlation_id).order_by("occurred_at")
        if limit is not None:
            query = query.limit(limit)
        return await query
