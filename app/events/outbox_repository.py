import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Dict, List, Optional
from uuid import UUID

from tortoise import timezone
from tortoise.expressions import F, Q
from tortoise.transactions import in_transaction

from app.core.config import CLAIM_TIMEOUT, MAX_ATTEMPTS
from app.core.errors import ExhaustedRetryError
from app.models.event_record import EventRecord

log = logging.getLogger("app.events.outbox_repository")


@dataclass(frozen=True)
class OutboxStats:
    pending: int
    in_flight: int
    published: int
    dead_lettered: int
    audit_only: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class OutboxRepository:
    """
    Outbox-scoped reads and writes over the domain_events table.

    claim_pending, mark_published and mark_failed are each their own atomic unit,
    so one event's outcome is durable regardless of what happens to the rest of the batch.
    """

    def __init__(self, max_attempts: int = MAX_ATTEMPTS, claim_timeout: float = CLAIM_TIMEOUT) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if claim_timeout <= 0:
            raise ValueError("claim_timeout must be positive")
        self.max_attempts = max_attempts
        self.claim_timeout = claim_timeout

    @staticmethod
    def _lease_free(now) -> Q:
        return Q(claimed_until__isnull=True) | Q(claimed_until__lt=now)

    def _unpublished(self):
        return EventRecord.filter(
            should_publish=True,
            published_at__isnull=True,
            publish_attempts__lt=self.max_attempts,
        )

    async def claim_pending(self, batch_size: int, claimed_by: str) -> List[EventRecord]:
        """
        Reserves up to batch_size pending events for the caller, oldest first.

        Each candidate is taken with a conditional UPDATE on (id, version, free lease).
        A row another dispatcher claimed in between matches zero rows and is skipped,
        so a row is never held by two dispatchers at once.
        """
        if batch_size <= 0:
            return []

        now = timezone.now()
        candidates = await (
            self._unpublished()
            .filter(self._lease_free(now))
            .order_by("occurred_at")
            .limit(batch_size)
        )
        if not candidates:
            return []

        lease_until = now + timedelta(seconds=self.claim_timeout)
        claimed = []
        for record in candidates:
            updated = await EventRecord.filter(
                self._lease_free(now),
                id=record.id,
                version=record.version,
                published_at__isnull=True,
            ).update(
                version=record.version + 1,
                claimed_until=lease_until,
                claimed_by=claimed_by,
            )
            if updated == 1:
                record.version += 1
                record.claimed_until = lease_until
                record.claimed_by = claimed_by
                claimed.append(record)
            else:
                log.debug(f"Event {record.id} was claimed by another dispatcher, skipping")

        log.debug(f"{claimed_by} claimed {len(claimed)} of {len(candidates)} candidate events")
        return claimed

    async def renew_claim(self, record: EventRecord, claimed_by: str) -> bool:
        """
        Restarts the lease of one claimed event right before it is published.

        Matches only while the row still carries the version and owner of our claim.
        False means another dispatcher reclaimed it after our lease ran out, and the
        caller must not publish it.
        """
        lease_until = timezone.now() + timedelta(seconds=self.claim_timeout)
        updated = await EventRecord.filter(
            id=record.id,
            version=record.version,
            claimed_by=claimed_by,
            published_at__isnull=True,
        ).update(
            version=record.version + 1,
            claimed_until=lease_until,
        )
        if updated != 1:
            log.info(f"{claimed_by} lost its claim on event {record.id}")
            return False

        record.version += 1
        record.claimed_until = lease_until
        return True

    async def mark_published(self, event_id: UUID, claimed_by: Optional[str] = None) -> bool:
        """
        Sets published_at once. Returns False when the row was already published,
        is audit-only, or does not exist; none of those change any state.

        With claimed_by, the write only applies while that dispatcher still holds the row.
        """
        query = EventRecord.filter(
            id=event_id,
            should_publish=True,
            published_at__isnull=True,
        )
        if claimed_by is not None:
            query = query.filter(claimed_by=claimed_by)
        updated = await query.update(
            published_at=timezone.now(),
            claimed_until=None,
            claimed_by=None,
            version=F("version") + 1,
        )
        return updated == 1

    async def mark_failed(
        self, event_id: UUID, error_message: str, claimed_by: Optional[str] = None
    ) -> Optional[EventRecord]:
        """
        Counts one failed attempt and stores its error. The event is dead-lettered
        in the same transaction when it reaches max_attempts.

        Published rows are left alone. With claimed_by, a dispatcher whose claim was
        taken over cannot clear the new owner's lease.
        """
        async with in_transaction() as conn:
            query = EventRecord.filter(id=event_id, should_publish=True, published_at__isnull=True)
            if claimed_by is not None:
                query = query.filter(claimed_by=claimed_by)
            updated = await query.using_db(conn).update(
                publish_attempts=F("publish_attempts") + 1,
                last_publish_error=error_message,
                claimed_until=None,
                claimed_by=None,
                version=F("version") + 1,
            )
            if not updated:
                log.warning(f"mark_failed: no unpublished event {event_id} held by {claimed_by or 'anyone'}")
                return None

            record = await EventRecord.get(id=event_id).using_db(conn)
            if (
                record.publish_attempts >= self.max_attempts
                and record.published_at is None
                and record.dead_lettered_at is None
            ):
                record.dead_lettered_at = timezone.now()
                await record.save(update_fields=["dead_lettered_at"], using_db=conn)
                log.error(str(ExhaustedRetryError(record.id, record.publish_attempts, error_message)))

        return record

    async def get_dead_lettered(self, tenant_id: Optional[UUID] = None, limit: Optional[int] = None) -> List[EventRecord]:
        query = EventRecord.filter(dead_lettered_at__isnull=False)
        if tenant_id is not None:
            query = query.filter(tenant_id=tenant_id)
        query = query.order_by("-dead_lettered_at")
        if limit is not None:
            query = query.limit(limit)
        return await query

    async def stats(self) -> OutboxStats:
        now = timezone.now()
        return OutboxStats(
            pending=await self._unpublished().filter(self._lease_free(now)).count(),
            in_flight=await self._unpublished().filter(claimed_until__gte=now).count(),
            published=await EventRecord.filter(published_at__isnull=False).count(),
            dead_lettered=await EventRecord.filter(dead_lettered_at__isnull=False).count(),
            audit_only=await EventRecord.filter(should_publish=False).count(),
        )
