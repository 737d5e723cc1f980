import os

# Must be set before app.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("RUN_DISPATCHER", "false")

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from tortoise.transactions import in_transaction

from app.core.db import close_db, init_db
from app.events.event_store import EventStore
from app.models.event_record import EventRecord

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test."""
    await init_db("sqlite://:memory:")
    yield
    await close_db()


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def event_store():
    return EventStore()


@pytest.fixture
def append_event(db, event_store, tenant_id):
    """Appends one event in its own committed transaction, optionally pinning occurred_at."""
    async def _append(event, aggregate_id=None, minutes=None, **kwargs):
        aggregate_id = aggregate_id or getattr(event, "order_id", None) or uuid4()
        async with in_transaction() as conn:
            record = await event_store.append(event, tenant_id, "Order", aggregate_id, conn=conn, **kwargs)
        if minutes is not None:
            occurred_at = BASE_TIME + timedelta(minutes=minutes)
            await EventRecord.filter(id=record.id).update(occurred_at=occurred_at)
            record.occurred_at = occurred_at
        return record
    return _append
