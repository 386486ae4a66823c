"""
Pydantic message schemas shared across all services.
All messages extend EventBase which carries correlation/tracing metadata.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from shared.orders import Order, OrderLine, OrderStatus, OrderType, Priority, utcnow

ORDER_CONFIRMED = "ORDER_CONFIRMED"
ORDER_FAILED = "ORDER_FAILED"

_SUBJECTS = {
    ORDER_CONFIRMED: "Order Confirmed",
    ORDER_FAILED: "Order Failed",
}


class EventBase(BaseModel):
    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_version: int = 1
    correlation_id: str = "unknown"  # carries X-Request-ID from the HTTP layer
    occurred_at: datetime = Field(default_factory=utcnow)

    model_config = {"extra": "ignore"}


class OrderWorkItem(EventBase):
    """Queue payload: snapshot of a PENDING order plus routing tags."""

    order_id: str
    customer_id: str
    customer_email: str
    items: list[OrderLine]
    total_amount: Decimal
    status: OrderStatus
    created_at: datetime
    order_type: OrderType
    priority: Priority

    @classmethod
    def from_order(
        cls,
        order: Order,
        order_type: OrderType,
        priority: Priority,
        correlation_id: str = "unknown",
    ) -> "OrderWorkItem":
        return cls(
            correlation_id=correlation_id,
            order_id=order.order_id,
            customer_id=order.customer_id,
            customer_email=order.customer_email,
            items=order.items,
            total_amount=order.total_amount,
            status=order.status,
            created_at=order.created_at,
            order_type=order_type,
            priority=priority,
        )

    def attributes(self) -> dict[str, str]:
        return {"orderType": self.order_type.value, "priority": self.priority.value}


class OrderLifecycleEvent(EventBase):
    """Published once an order reaches a terminal state."""

    event_type: str  # ORDER_CONFIRMED | ORDER_FAILED | ...
    order_id: str
    status: str
    total_amount: Decimal | None = None
    payment_id: str | None = None
    customer_id: str | None = None
    customer_email: str | None = None
    reason: str | None = None
    subject: str | None = None

    @classmethod
    def for_order(cls, order: Order, correlation_id: str = "unknown") -> "OrderLifecycleEvent":
        event_type = ORDER_CONFIRMED if order.status == OrderStatus.CONFIRMED else ORDER_FAILED
        return cls(
            correlation_id=correlation_id,
            event_type=event_type,
            order_id=order.order_id,
            status=order.status.value,
            total_amount=order.total_amount,
            payment_id=order.payment_id,
            customer_id=order.customer_id,
            customer_email=order.customer_email,
            reason=order.failure_reason,
            subject=_SUBJECTS[event_type],
        )

    def attributes(self) -> dict[str, str]:
        return {"eventType": self.event_type}
