from fastapi import APIRouter, Query
from app.events.outbox_repository import OutboxRepository
from app.schemas.event_record import OutboxStatsResponse, serialize_records
from app.schemas.response import SuccessResponse
from typing import Optional
from uuid import UUID

router = APIRouter()

outbox_repository = OutboxRepository()


@router.get("/stats", response_model=SuccessResponse)
async def get_outbox_stats():
    """Counts of pending, in-flight, published, dead-lettered and audit-only events."""
    stats = await outbox_repository.stats()
    return SuccessResponse(data=OutboxStatsResponse(**stats.as_dict()).model_dump())


@router.get("/dead-letters", response_model=SuccessResponse)
async def get_dead_letters(
    tenant_id: Optional[UUID] = None,
    limit: Optional[int] = Query(None, ge=1, le=1000),
):
    """Events that exhausted their publish attempts and need manual attention."""
    records = await outbox_repository.get_dead_lettered(tenant_id=tenant_id, limit=limit)
    return SuccessResponse(data=serialize_records(records))
