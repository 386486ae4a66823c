from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from shared.orders import Order, OrderStatus

# Request fields are optional at the schema level so that missing values are
# reported by the order validator with a business message instead of a 422.


class OrderItemCreate(BaseModel):
    product_id: str | None = None
    quantity: int | None = None
    price: Decimal | None = None


class OrderCreate(BaseModel):
    items: list[OrderItemCreate] | None = None


class OrderAccepted(BaseModel):
    order_id: str
    status: OrderStatus
    total_amount: Decimal
    message: str = "Order received and processing"
    estimated_processing_time: str = "2-5 minutes"


class OrderItemResponse(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderResponse(BaseModel):
    order_id: str
    customer_id: str
    customer_email: str
    status: OrderStatus
    total_amount: Decimal
    payment_id: str | None
    failure_reason: str | None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse]

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            order_id=order.order_id,
            customer_id=order.customer_id,
            customer_email=order.customer_email,
            status=order.status,
            total_amount=order.total_amount,
            payment_id=order.payment_id,
            failure_reason=order.failure_reason,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[
                OrderItemResponse(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal,
                )
                for line in order.items
            ],
        )


class ErrorResponse(BaseModel):
    error: str
