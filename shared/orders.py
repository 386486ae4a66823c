"""
Order domain model. The Order Store is the single source of truth for these;
queue and topic payloads are snapshots built from them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CONFIRMED, OrderStatus.FAILED)


class OrderType(str, Enum):
    STANDARD = "STANDARD"
    BULK = "BULK"


class Priority(str, Enum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"


# Allowed forward transitions; terminal states have none.
_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.FAILED}),
    OrderStatus.CONFIRMED: frozenset(),
    OrderStatus.FAILED: frozenset(),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in _TRANSITIONS[current]


def statuses_leading_to(new: OrderStatus) -> list[OrderStatus]:
    return [status for status in OrderStatus if can_transition(status, new)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderLine(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def calculate_total(lines: Iterable[OrderLine]) -> Decimal:
    """Exact decimal sum of line subtotals."""
    return sum((line.subtotal for line in lines), Decimal("0"))


class OrderMetadata(BaseModel):
    user_agent: str = "unknown"
    source_ip: str = "unknown"


class Order(BaseModel):
    order_id: str
    customer_id: str
    customer_email: str
    items: list[OrderLine]
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: OrderMetadata = Field(default_factory=OrderMetadata)
