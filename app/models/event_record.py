from tortoise import fields, models
import uuid


class EventRecord(models.Model):
    """
    One row per domain event. The table is both the audit trail and the outbox:
    rows with should_publish=True are picked up by the OutboxDispatcher.

    Only the outbox-control fields (published_at, publish_attempts, last_publish_error,
    version, claimed_until, claimed_by, dead_lettered_at) change after the insert commits.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tenant_id = fields.UUIDField()
    aggregate_type = fields.CharField(max_length=200) # e.g., 'Order'
    aggregate_id = fields.UUIDField()
    event_type = fields.CharField(max_length=200) # e.g., 'OrderCreated'
    payload = fields.TextField() # Serialized JSON, immutable after write
    occurred_at = fields.DatetimeField()

    # Audit context
    actor_id = fields.UUIDField(null=True)
    actor_name = fields.CharField(max_length=200, null=True)
    source_address = fields.CharField(max_length=45, null=True) # IPv6 max length
    correlation_id = fields.CharField(max_length=100)
    conversation_id = fields.UUIDField(default=uuid.uuid4)

    # Outbox control
    should_publish = fields.BooleanField(default=False)
    published_at = fields.DatetimeField(null=True)
    publish_attempts = fields.IntField(default=0)
    last_publish_error = fields.TextField(null=True)
    dead_lettered_at = fields.DatetimeField(null=True)

    # Claim lease, bumped by every conditional update
    version = fields.IntField(default=1)
    claimed_until = fields.DatetimeField(null=True)
    claimed_by = fields.CharField(max_length=64, null=True)

    class Meta:
        table = "domain_events"
        indexes = [
            ("tenant_id", "occurred_at"),     # Tenant audit history
            ("aggregate_id", "occurred_at"),  # Aggregate audit history
            ("correlation_id",),              # Tracing across aggregates
            ("should_publish", "published_at", "publish_attempts", "occurred_at"),  # Outbox claim
        ]

    @property
    def payload_bytes(self) -> bytes:
        return self.payload.encode("utf-8")

    @property
    def is_dead_lettered(self) -> bool:
        return self.dead_lettered_at is not None

    def __str__(self) -> str:
        return f"{self.event_type}({self.id})"
