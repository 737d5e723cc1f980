from enum import Enum
from tortoise import fields, models
import uuid


class OrderStatus(str, Enum):
    CREATED = "CREATED"  # Initial state, OrderCreated emitted
    PAID = "PAID"        # PaymentProcessed emitted
    CANCELLED = "CANCELLED"


class Order(models.Model):
    """Demo aggregate whose state changes are recorded in the event store."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tenant_id = fields.UUIDField()
    customer_id = fields.CharField(max_length=64)
    status = fields.CharEnumField(OrderStatus, default=OrderStatus.CREATED)
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    comment_count = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "orders"
        indexes = [
            ("tenant_id",),              # Tenant order queries
            ("status",),                 # Payment state lookups
            ("tenant_id", "created_at"), # Composite: tenant with time
        ]
