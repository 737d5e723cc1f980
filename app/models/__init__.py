# app/models/__init__.py
from .event_record import EventRecord
from .order import Order, OrderStatus

# Export all models
__all__ = [
    "EventRecord",
    "Order",
    "OrderStatus",
]
