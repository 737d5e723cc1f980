import asyncio
from uuid import uuid4

import pytest
from tortoise.transactions import in_transaction

from app.consumers.outbox_dispatcher import DispatcherState, OutboxDispatcher
from app.events.message_bus import LocalMessageBus
from app.events.outbox_repository import OutboxRepository
from app.models.event_record import EventRecord
from app.testing.testing_mocks import FailingMessageBus, SelectiveFailingBus, SlowMessageBus
from factories import comment_added, order_created, payment_processed


@pytest.fixture
def repository():
    return OutboxRepository(max_attempts=3, claim_timeout=60)


def make_dispatcher(repository, bus, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("publish_timeout", 1.0)
    return OutboxDispatcher(repository, bus, **kwargs)


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_invalid_settings_are_rejected(repository):
    with pytest.raises(ValueError):
        OutboxDispatcher(repository, LocalMessageBus(), batch_size=0)
    with pytest.raises(ValueError):
        OutboxDispatcher(repository, LocalMessageBus(), worker_count=0)
    with pytest.raises(ValueError):
        OutboxDispatcher(repository, LocalMessageBus(), publish_timeout=0)
    with pytest.raises(ValueError):
        # The lease must outlive a single publish
        OutboxDispatcher(OutboxRepository(claim_timeout=5), LocalMessageBus(), publish_timeout=5)


@pytest.mark.asyncio
async def test_only_publishable_events_reach_the_bus(db, event_store, tenant_id, repository):
    order_id = uuid4()
    async with in_transaction() as conn:
        await event_store.append(order_created(order_id), tenant_id, "Order", order_id, conn=conn)
        comment = await event_store.append(comment_added(order_id), tenant_id, "Order", order_id, conn=conn)

    bus = LocalMessageBus()
    dispatcher = make_dispatcher(repository, bus)

    report = await dispatcher.dispatch_once()
    await dispatcher.dispatch_once()

    assert report.claimed == 1
    assert report.published == 1
    assert [m.event_type for m in bus.published] == ["OrderCreated"]
    assert bus.published[0].correlation_id == str(order_id)
    assert bus.published[0].json()["orderId"] == str(order_id)
    assert (await EventRecord.get(id=comment.id)).published_at is None


@pytest.mark.asyncio
async def test_failing_bus_exhausts_attempts_then_stops_selecting(append_event, repository):
    record = await append_event(order_created())
    bus = FailingMessageBus()
    dispatcher = make_dispatcher(repository, bus)

    reports = [await dispatcher.dispatch_once() for _ in range(3)]

    stored = await EventRecord.get(id=record.id)
    assert stored.publish_attempts == 3
    assert stored.published_at is None
    assert stored.last_publish_error == "PublishTransientError: broker unavailable (call 3)"
    assert stored.dead_lettered_at is not None
    assert [r.failed for r in reports] == [1, 1, 1]
    assert reports[-1].dead_lettered == 1

    fourth = await dispatcher.dispatch_once()
    assert fourth.claimed == 0
    assert len(bus.calls) == 3


@pytest.mark.asyncio
async def test_two_dispatchers_publish_a_row_at_most_once(append_event):
    await append_event(order_created())
    bus = SlowMessageBus(delay=0.05)
    first = make_dispatcher(OutboxRepository(max_attempts=3), bus, dispatcher_id="d-1")
    second = make_dispatcher(OutboxRepository(max_attempts=3), bus, dispatcher_id="d-2")

    reports = await asyncio.gather(first.dispatch_once(), second.dispatch_once())

    assert len(bus.published) == 1
    assert sum(r.claimed for r in reports) == 1


@pytest.mark.asyncio
async def test_many_dispatchers_publish_every_event_exactly_once(append_event, repository):
    records = [await append_event(order_created(), minutes=i) for i in range(20)]
    bus = LocalMessageBus()
    dispatchers = [
        make_dispatcher(repository, bus, batch_size=5, worker_count=2, dispatcher_id=f"d-{i}")
        for i in range(3)
    ]

    for _ in range(6):
        await asyncio.gather(*(d.dispatch_once() for d in dispatchers))

    published_ids = [m.json()["orderId"] for m in bus.published]
    assert len(published_ids) == 20
    assert len(set(published_ids)) == 20
    assert await EventRecord.filter(id__in=[r.id for r in records], published_at__isnull=True).count() == 0


@pytest.mark.asyncio
async def test_batch_outliving_its_lease_is_not_published_twice(append_event):
    """
    One worker publishes three slow events, so the batch takes longer than the lease.
    A second dispatcher polling after the original leases expired must not redeliver them.
    """
    for minute in range(3):
        await append_event(order_created(), minutes=minute)
    bus = SlowMessageBus(delay=0.3)
    first = make_dispatcher(
        OutboxRepository(max_attempts=3, claim_timeout=0.5),
        bus,
        batch_size=3,
        worker_count=1,
        publish_timeout=0.4,
        dispatcher_id="d-1",
    )
    second = make_dispatcher(
        OutboxRepository(max_attempts=3, claim_timeout=0.5),
        bus,
        batch_size=3,
        publish_timeout=0.4,
        dispatcher_id="d-2",
    )

    async def late_dispatch():
        await asyncio.sleep(0.65)
        return await second.dispatch_once()

    await asyncio.gather(first.dispatch_once(), late_dispatch())
    # Anything the first dispatcher gave up on is picked up here
    await second.dispatch_once()

    published_ids = [m.json()["orderId"] for m in bus.published]
    assert len(published_ids) == 3
    assert len(set(published_ids)) == 3
    assert await EventRecord.filter(published_at__isnull=True).count() == 0


@pytest.mark.asyncio
async def test_event_reclaimed_mid_batch_is_skipped(append_event, repository):
    first_event = await append_event(order_created(), minutes=1)
    second_event = await append_event(order_created(), minutes=2)
    bus = LocalMessageBus()
    dispatcher = make_dispatcher(repository, bus, worker_count=1, dispatcher_id="d-1")

    async def take_over_second_event(body, correlation_id):
        # Simulates d-2 reclaiming the second event while d-1 publishes the first
        await EventRecord.filter(id=second_event.id).update(claimed_by="d-2", version=99)

    bus.subscribe("OrderCreated", take_over_second_event)

    report = await dispatcher.dispatch_once()

    assert (report.claimed, report.published, report.lost) == (2, 1, 1)
    assert [m.json()["orderId"] for m in bus.published] == [str(first_event.aggregate_id)]
    stored = await EventRecord.get(id=second_event.id)
    assert stored.claimed_by == "d-2"
    assert stored.published_at is None


@pytest.mark.asyncio
async def test_one_failure_does_not_abort_the_batch(append_event, repository):
    created = await append_event(order_created(), minutes=1)
    payment = await append_event(payment_processed(), minutes=2)
    later = await append_event(order_created(), minutes=3)
    bus = SelectiveFailingBus({"PaymentProcessed"})

    report = await make_dispatcher(repository, bus).dispatch_once()

    assert (report.claimed, report.published, report.failed) == (3, 2, 1)
    assert (await EventRecord.get(id=created.id)).published_at is not None
    assert (await EventRecord.get(id=later.id)).published_at is not None
    failed = await EventRecord.get(id=payment.id)
    assert failed.published_at is None
    assert failed.publish_attempts == 1
    assert failed.last_publish_error == "PublishTransientError: PaymentProcessed rejected by broker"


@pytest.mark.asyncio
async def test_publish_timeout_counts_as_failure(append_event, repository):
    record = await append_event(order_created())
    bus = SlowMessageBus(delay=1.0)

    report = await make_dispatcher(repository, bus, publish_timeout=0.05).dispatch_once()

    stored = await EventRecord.get(id=record.id)
    assert report.failed == 1
    assert stored.publish_attempts == 1
    assert stored.last_publish_error.startswith("PublishTimeoutError:")
    assert bus.published == []


@pytest.mark.asyncio
async def test_handler_error_is_recorded(append_event, repository):
    record = await append_event(order_created())
    bus = LocalMessageBus()

    async def broken_handler(body, correlation_id):
        raise RuntimeError("consumer crashed")

    bus.subscribe("OrderCreated", broken_handler)

    await make_dispatcher(repository, bus).dispatch_once()

    stored = await EventRecord.get(id=record.id)
    assert stored.last_publish_error == "RuntimeError: consumer crashed"
    assert stored.published_at is None


@pytest.mark.asyncio
async def test_recording_failure_keeps_the_loop_alive(append_event, repository, monkeypatch):
    await append_event(order_created())
    bus = LocalMessageBus()
    dispatcher = make_dispatcher(repository, bus)

    async def broken_mark_published(event_id, claimed_by=None):
        raise ConnectionError("database went away")

    monkeypatch.setattr(repository, "mark_published", broken_mark_published)

    report = await dispatcher.dispatch_once()

    assert report.claimed == 1
    assert report.published == 0
    assert dispatcher.state == DispatcherState.IDLE


@pytest.mark.asyncio
async def test_run_forever_publishes_and_stops(append_event, repository):
    record = await append_event(order_created())
    bus = LocalMessageBus()
    dispatcher = make_dispatcher(repository, bus)

    dispatcher.start()
    assert dispatcher.running

    async def published():
        return (await EventRecord.get(id=record.id)).published_at is not None

    await wait_until(published)
    await dispatcher.stop(timeout=2.0)

    assert not dispatcher.running
    assert dispatcher.state == DispatcherState.STOPPED
    assert len(bus.published) == 1


@pytest.mark.asyncio
async def test_stop_lets_the_in_flight_batch_finish(append_event, repository):
    record = await append_event(order_created())
    started = asyncio.Event()
    bus = SlowMessageBus(delay=0.2, started=started)
    dispatcher = make_dispatcher(repository, bus)

    dispatcher.start()
    await asyncio.wait_for(started.wait(), timeout=2.0)
    await dispatcher.stop(timeout=5.0)

    stored = await EventRecord.get(id=record.id)
    assert stored.published_at is not None
    assert stored.claimed_until is None
    assert dispatcher.state == DispatcherState.STOPPED


@pytest.mark.asyncio
async def test_stop_cancels_after_grace_period(append_event, repository):
    record = await append_event(order_created())
    started = asyncio.Event()
    bus = SlowMessageBus(delay=5.0, started=started)
    dispatcher = make_dispatcher(repository, bus, publish_timeout=10.0)

    dispatcher.start()
    await asyncio.wait_for(started.wait(), timeout=2.0)
    await dispatcher.stop(timeout=0.05)

    stored = await EventRecord.get(id=record.id)
    assert not dispatcher.running
    assert stored.published_at is None
    # Still leased; another dispatcher takes it over once the lease expires
    assert stored.claimed_until is not None
