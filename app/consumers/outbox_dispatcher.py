"""
Background dispatcher that publishes outbox events to the message bus.

Each cycle walks IDLE -> CLAIMING -> PUBLISHING -> RECORDING -> IDLE:
1. Claims up to batch_size pending events (atomic per row, safe with several dispatchers)
2. Renews each event's lease, then publishes it with a bounded timeout
3. Records the outcome of each event on its own (mark_published / mark_failed)

The lease is renewed per event because events late in a batch may wait longer than
claim_timeout for their turn. An event reclaimed by another dispatcher in the meantime
is skipped.

Delivery is at-least-once: an event whose outcome could not be recorded is
claimed again once its lease expires.
"""
import asyncio
import contextlib
import logging
import signal
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core.config import (
    BATCH_SIZE,
    CLAIM_TIMEOUT,
    DISPATCHER_WORKERS,
    MAX_ATTEMPTS,
    POLLING_INTERVAL,
    PUBLISH_TIMEOUT,
    SHUTDOWN_TIMEOUT,
)
from app.core.db import close_db, init_db
from app.core.errors import PublishTimeoutError
from app.core.logging_config import configure_logging
from app.events.message_bus import LocalMessageBus, MessageBus
from app.events.outbox_repository import OutboxRepository
from app.models.event_record import EventRecord

log = logging.getLogger("app.consumers.outbox_dispatcher")


class DispatcherState(str, Enum):
    IDLE = "IDLE"
    CLAIMING = "CLAIMING"
    PUBLISHING = "PUBLISHING"
    RECORDING = "RECORDING"
    STOPPED = "STOPPED"


@dataclass
class DispatchReport:
    """Outcome counts of one dispatch cycle."""
    claimed: int = 0
    published: int = 0
    failed: int = 0
    dead_lettered: int = 0
    lost: int = 0


class OutboxDispatcher:
    def __init__(
        self,
        repository: OutboxRepository,
        bus: MessageBus,
        *,
        batch_size: int = BATCH_SIZE,
        poll_interval: float = POLLING_INTERVAL,
        publish_timeout: float = PUBLISH_TIMEOUT,
        worker_count: int = DISPATCHER_WORKERS,
        dispatcher_id: Optional[str] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        if publish_timeout <= 0:
            raise ValueError("publish_timeout must be positive")
        if repository.claim_timeout <= publish_timeout:
            raise ValueError(
                f"claim_timeout ({repository.claim_timeout}s) must exceed publish_timeout ({publish_timeout}s)"
            )

        self.repository = repository
        self.bus = bus
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.publish_timeout = publish_timeout
        self.worker_count = worker_count
        self.dispatcher_id = dispatcher_id or f"dispatcher-{uuid.uuid4().hex[:8]}"

        self.state = DispatcherState.IDLE
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ----------- One cycle -----------

    async def dispatch_once(self) -> DispatchReport:
        """Claims one batch and resolves every event in it."""
        report = DispatchReport()
        self.state = DispatcherState.CLAIMING
        try:
            events = await self.repository.claim_pending(self.batch_size, self.dispatcher_id)
            report.claimed = len(events)
            if not events:
                return report

            # Claimed events are handed to the publish workers through a queue
            queue: asyncio.Queue = asyncio.Queue()
            for event in events:
                queue.put_nowait(event)

            self.state = DispatcherState.PUBLISHING
            workers = min(self.worker_count, len(events))
            await asyncio.gather(*(self._publish_worker(queue, report) for _ in range(workers)))
        finally:
            self.state = DispatcherState.IDLE

        log.info(
            f"{self.dispatcher_id}: claimed={report.claimed} published={report.published} "
            f"failed={report.failed} dead_lettered={report.dead_lettered} lost={report.lost}"
        )
        return report

    async def _publish_worker(self, queue: asyncio.Queue, report: DispatchReport) -> None:
        while True:
            try:
                event = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._dispatch_event(event, report)

    async def _dispatch_event(self, event: EventRecord, report: DispatchReport) -> None:
        # The lease taken at claim time may have run out while earlier events published
        try:
            renewed = await self.repository.renew_claim(event, self.dispatcher_id)
        except Exception:
            log.exception(f"Could not renew the claim on {event}, leaving it for a later cycle")
            renewed = False
        if not renewed:
            report.lost += 1
            return

        error = await self._publish(event)

        self.state = DispatcherState.RECORDING
        try:
            if error is None:
                if await self.repository.mark_published(event.id, claimed_by=self.dispatcher_id):
                    report.published += 1
                else:
                    log.warning(f"{event} was published but its claim had been taken over")
            else:
                report.failed += 1
                updated = await self.repository.mark_failed(event.id, error, claimed_by=self.dispatcher_id)
                if updated is not None and updated.is_dead_lettered:
                    report.dead_lettered += 1
        except Exception:
            # Lease expiry makes the event claimable again, so it is retried
            log.exception(f"Could not record the publish outcome of {event}")

    async def _publish(self, event: EventRecord) -> Optional[str]:
        """Returns None on success, otherwise the error text to store on the row."""
        try:
            await asyncio.wait_for(
                self.bus.publish(event.event_type, event.payload_bytes, event.correlation_id),
                timeout=self.publish_timeout,
            )
        except asyncio.TimeoutError:
            exc = PublishTimeoutError(event.id, self.publish_timeout)
            log.warning(f"Publishing {event} timed out (attempt {event.publish_attempts + 1})")
            return f"{type(exc).__name__}: {exc}"
        except Exception as exc:
            log.warning(f"Publishing {event} failed (attempt {event.publish_attempts + 1}): {exc}")
            return f"{type(exc).__name__}: {exc}"

        log.debug(f"Published {event} (correlation {event.correlation_id})")
        return None

    # ----------- Loop & lifecycle -----------

    async def run_forever(self) -> None:
        """Dispatches until stop() is requested. The in-flight batch always finishes."""
        log.info(f"--- Outbox Dispatcher {self.dispatcher_id} Started ---")
        while not self._stop_event.is_set():
            try:
                report = await self.dispatch_once()
            except Exception:
                log.exception(f"{self.dispatcher_id}: dispatch cycle failed")
                report = None

            # A full, clean batch means more work is probably waiting
            if report is not None and report.claimed >= self.batch_size and report.failed == 0:
                await asyncio.sleep(0)
                continue

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)

        self.state = DispatcherState.STOPPED
        log.info(f"--- Outbox Dispatcher {self.dispatcher_id} Stopped ---")

    def start(self) -> asyncio.Task:
        if self.running:
            log.warning(f"{self.dispatcher_id} already running")
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever())
        return self._task

    def request_stop(self) -> None:
        """Stops claiming new batches; safe to call from a signal handler."""
        self._stop_event.set()

    async def stop(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        self.request_stop()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning(f"{self.dispatcher_id} did not finish its batch within {timeout}s, cancelling")
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self.state = DispatcherState.STOPPED
        self._task = None


def build_dispatcher(bus: MessageBus, **overrides) -> OutboxDispatcher:
    """Creates a dispatcher configured from app.core.config."""
    repository = OutboxRepository(max_attempts=MAX_ATTEMPTS, claim_timeout=CLAIM_TIMEOUT)
    return OutboxDispatcher(repository, bus, **overrides)


async def start_outbox_dispatcher():
    """Main loop for the standalone dispatcher service."""
    configure_logging()
    await init_db()
    dispatcher = build_dispatcher(LocalMessageBus())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, dispatcher.request_stop)

    try:
        await dispatcher.run_forever()
    finally:
        await close_db()


if __name__ == "__main__":
    try:
        asyncio.run(start_outbox_dispatcher())
    except KeyboardInterrupt:
        log.info("Dispatcher service stopped.")
