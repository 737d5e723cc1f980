from decimal import Decimal
from typing import Optional
from uuid import UUID

from app.events.base import DomainEvent
from app.events.registry import event_registry


@event_registry.event(publishable=True)
class OrderCreated(DomainEvent):
    order_id: UUID
    customer_id: str
    total_amount: Decimal


@event_registry.event(publishable=False)
class OrderCommentAdded(DomainEvent):
    """Audit-only: kept in the event log, never sent to the bus."""
    order_id: UUID
    comment: str


@event_registry.event(publishable=True)
class PaymentProcessed(DomainEvent):
    order_id: UUID
    amount: Decimal
    payment_reference: Optional[str] = None
