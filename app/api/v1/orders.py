import logging
from fastapi import APIRouter, Header, HTTPException, Request, status
from app.core.errors import EventStoreError
from app.events.event_store import ActorContext
from app.schemas.response import SuccessResponse
from app.services.order_service import add_comment, create_order, get_order_by_id, process_payment
from app.schemas.order import CommentRequest, OrderRequest, OrderResponse, PaymentRequest
from app.models.order import Order
from typing import Optional
from uuid import UUID

router = APIRouter()
log = logging.getLogger("app.api.orders")


def _actor(request: Request, user_id: Optional[UUID], user_name: Optional[str]) -> ActorContext:
    """Audit context for the events this request appends."""
    return ActorContext(
        actor_id=user_id,
        actor_name=user_name,
        source_address=request.client.host if request.client else None,
    )


def _order_data(order: Order, message: str) -> dict:
    return OrderResponse(
        order_id=order.id,
        tenant_id=order.tenant_id,
        status=order.status,
        total_amount=order.total_amount,
        comment_count=order.comment_count,
        message=message,
    ).model_dump(mode="json")


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(
    request_data: OrderRequest,
    request: Request,
    x_user_id: Optional[UUID] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_correlation_id: Optional[str] = Header(None),
):
    """Creates an order. OrderCreated is stored in the same transaction and published asynchronously."""
    try:
        order = await create_order(
            tenant_id=request_data.tenant_id,
            customer_id=request_data.customer_id,
            total_amount=request_data.total_amount,
            actor=_actor(request, x_user_id, x_user_name),
            correlation_id=x_correlation_id,
        )
        log.info(f"Order {order.id} created for tenant {order.tenant_id}.")
        return SuccessResponse(data=_order_data(order, "Order created. OrderCreated queued for publishing."))
    except ValueError as e:
        log.error(f"Value error creating order: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except EventStoreError:
        raise
    except Exception as e:
        log.error(f"Error creating order: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create order.")


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID):
    """Fetches the current state of an order."""
    order = await get_order_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return SuccessResponse(data=_order_data(order, "Order found."))


@router.post("/{order_id}/comments", response_model=SuccessResponse)
async def add_comment_endpoint(
    order_id: UUID,
    payload: CommentRequest,
    request: Request,
    x_user_id: Optional[UUID] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_correlation_id: Optional[str] = Header(None),
):
    """Adds a comment. OrderCommentAdded is audit-only and never published."""
    try:
        order = await add_comment(
            order_id,
            payload.comment,
            actor=_actor(request, x_user_id, x_user_name),
            correlation_id=x_correlation_id,
        )
        return SuccessResponse(data=_order_data(order, "Comment recorded."))
    except ValueError as e:
        log.error(f"Value error adding comment: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except EventStoreError:
        raise
    except Exception as e:
        log.error(f"Error adding comment: {e}")
        raise HTTPException(status_code=500, detail="Server failed to add comment.")


@router.post("/{order_id}/payments", response_model=SuccessResponse)
async def process_payment_endpoint(
    order_id: UUID,
    payload: PaymentRequest,
    request: Request,
    x_user_id: Optional[UUID] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_correlation_id: Optional[str] = Header(None),
):
    """Pays the order. PaymentProcessed is published asynchronously."""
    try:
        order = await process_payment(
            order_id,
            payload.amount,
            payment_reference=payload.payment_reference,
            actor=_actor(request, x_user_id, x_user_name),
            correlation_id=x_correlation_id,
        )
        return SuccessResponse(data=_order_data(order, "Payment processed. PaymentProcessed queued for publishing."))
    except ValueError as e:
        log.error(f"Value error processing payment: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except EventStoreError:
        raise
    except Exception as e:
        log.error(f"Error processing payment: {e}")
        raise HTTPException(status_code=500, detail="Server failed to process payment.")
