from tortoise.transactions import in_transaction
from typing import Optional
from decimal import Decimal
from app.models.order import Order, OrderStatus
from app.events.event_store import ActorContext, EventStore
from app.events.order_events import OrderCommentAdded, OrderCreated, PaymentProcessed
from uuid import UUID

AGGREGATE_TYPE = "Order"

event_store = EventStore()


async def create_order(
    tenant_id: UUID,
    customer_id: str,
    total_amount: Decimal,
    actor: Optional[ActorContext] = None,
    correlation_id: Optional[str] = None,
) -> Order:
    """
    Creates the Order and its OrderCreated event atomically.
    The event is published to the bus later by the outbox dispatcher.
    """
    if total_amount <= 0:
        raise ValueError("Order total must be positive.")

    async with in_transaction() as conn:
        order = await Order.create(
            tenant_id=tenant_id,
            customer_id=customer_id,
            status=OrderStatus.CREATED,
            total_amount=total_amount,
            using_db=conn,
        )

        # Same transaction as the insert above
        await event_store.append(
            OrderCreated(order_id=order.id, customer_id=customer_id, total_amount=total_amount),
            tenant_id,
            AGGREGATE_TYPE,
            order.id,
            conn=conn,
            actor=actor,
            correlation_id=correlation_id,
        )

    return order


async def add_comment(
    order_id: UUID,
    comment: str,
    actor: Optional[ActorContext] = None,
    correlation_id: Optional[str] = None,
) -> Order:
    """Records a comment on the order. Audit only: the event never reaches the bus."""
    if not comment.strip():
        raise ValueError("Comment must not be empty.")

    async with in_transaction() as conn:
        order = await Order.get_or_none(id=order_id).using_db(conn)
        if not order:
            raise ValueError("Order not found")

        order.comment_count += 1
        await order.save(update_fields=["comment_count", "updated_at"], using_db=conn)

        await event_store.append(
            OrderCommentAdded(order_id=order.id, comment=comment),
            order.tenant_id,
            AGGREGATE_TYPE,
            order.id,
            conn=conn,
            actor=actor,
            correlation_id=correlation_id,
        )

    return order


async def process_payment(
    order_id: UUID,
    amount: Decimal,
    payment_reference: Optional[str] = None,
    actor: Optional[ActorContext] = None,
    correlation_id: Optional[str] = None,
) -> Order:
    """
    Marks the order as paid and emits PaymentProcessed.
    Any validation failure rolls back both the status change and the event.
    """
    async with in_transaction() as conn:
        order = await Order.get_or_none(id=order_id).using_db(conn)
        if not order:
            raise ValueError("Order not found")

        # Block payments for orders that are already final
        if order.status != OrderStatus.CREATED:
            raise ValueError(f"Order is already in a final state: {order.status.value}. Payment rejected.")
        if amount != order.total_amount:
            raise ValueError(f"Payment amount {amount} does not match order total {order.total_amount}.")

        order.status = OrderStatus.PAID
        await order.save(update_fields=["status", "updated_at"], using_db=conn)

        await event_store.append(
            PaymentProcessed(order_id=order.id, amount=amount, payment_reference=payment_reference),
            order.tenant_id,
            AGGREGATE_TYPE,
            order.id,
            conn=conn,
            actor=actor,
            correlation_id=correlation_id,
        )

    return order


async def get_order_by_id(order_id: UUID) -> Optional[Order]:
    return await Order.get_or_none(id=order_id)
