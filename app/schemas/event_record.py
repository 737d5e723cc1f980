from datetime import datetime
import json
from typing import Any, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict

from app.models.event_record import EventRecord


class EventRecordResponse(BaseModel):
    """Audit view of one stored event, including its outbox state."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    aggregate_type: str
    aggregate_id: uuid.UUID
    event_type: str
    payload: Any
    occurred_at: datetime
    actor_id: Optional[uuid.UUID] = None
    actor_name: Optional[str] = None
    source_address: Optional[str] = None
    correlation_id: str
    conversation_id: uuid.UUID
    should_publish: bool
    published_at: Optional[datetime] = None
    publish_attempts: int
    last_publish_error: Optional[str] = None
    dead_lettered_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: EventRecord) -> "EventRecordResponse":
        response = cls.model_validate(record)
        # Stored as text; return it as a JSON document
        response.payload = json.loads(record.payload)
        return response


class OutboxStatsResponse(BaseModel):
    pending: int
    in_flight: int
    published: int
    dead_lettered: int
    audit_only: int


def serialize_records(records: List[EventRecord]) -> List[dict]:
    return [EventRecordResponse.from_record(r).model_dump(mode="json") for r in records]
