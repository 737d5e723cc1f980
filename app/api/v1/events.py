from fastapi import APIRouter, Query
from app.events.event_store import EventStore
from app.schemas.event_record import serialize_records
from app.schemas.response import SuccessResponse
from typing import Optional
from uuid import UUID

router = APIRouter()

event_store = EventStore()


@router.get("/aggregates/{aggregate_id}", response_model=SuccessResponse)
async def get_aggregate_events(aggregate_id: UUID, limit: Optional[int] = Query(None, ge=1, le=1000)):
    """History of one aggregate, newest first."""
    records = await event_store.get_by_aggregate(aggregate_id, limit=limit)
    return SuccessResponse(data=serialize_records(records))

@router.get("/tenants/{tenant_id}", response_model=SuccessResponse)
async def get_tenant_events(tenant_id: UUID, limit: Optional[int] = Query(None, ge=1, le=1000)):
    """Every event of one tenant, newest first."""
    records = await event_store.get_by_tenant(tenant_id, limit=limit)
    return SuccessResponse(data=serialize_records(records))

@router.get("/correlations/{correlation_id}", response_model=SuccessResponse)
async def get_correlated_events(correlation_id: str, limit: Optional[int] = Query(None, ge=1, le=1000)):
    """Events sharing a correlation id, oldest first."""
    records = await event_store.get_by_correlation(correlation_id, limit=limit)
    return SuccessResponse(data=serialize_records(records))
