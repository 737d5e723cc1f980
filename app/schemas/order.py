from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal
import uuid

from app.models.order import OrderStatus


class OrderRequest(BaseModel):
    """Schema for the order creation request body."""
    tenant_id: uuid.UUID
    customer_id: str = Field(..., min_length=1, max_length=64)
    total_amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)


class CommentRequest(BaseModel):
    comment: str = Field(..., min_length=1, max_length=2000)


class PaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payment_reference: Optional[str] = Field(None, max_length=128)


class OrderResponse(BaseModel):
    """Order state after a command; the matching event is already in the outbox."""
    order_id: uuid.UUID
    tenant_id: uuid.UUID
    status: OrderStatus
    total_amount: Decimal
    comment_count: int
    message: str
