"""
Order Validator: structural and business-limit checks run before any order
is persisted or enqueued. Checks run in a fixed order so the first violation
always yields the same message.
"""

from decimal import Decimal

from order_api.schemas.order import OrderCreate
from shared.errors import OrderValidationError
from shared.orders import OrderLine, calculate_total

DEFAULT_MAX_TOTAL = Decimal("10000")
DEFAULT_MAX_QUANTITY = 100


def to_order_lines(request: OrderCreate) -> list[OrderLine]:
    return [
        OrderLine(product_id=item.product_id, quantity=item.quantity, unit_price=item.price)
        for item in request.items or []
    ]


def validate_order_request(
    request: OrderCreate,
    max_total: Decimal = DEFAULT_MAX_TOTAL,
    max_quantity: int = DEFAULT_MAX_QUANTITY,
) -> None:
    if not request.items:
        raise OrderValidationError("items array is required and must not be empty")

    for item in request.items:
        if not item.product_id or item.quantity is None or item.price is None:
            raise OrderValidationError("Each item must have product_id, quantity, and price")
        if item.quantity <= 0 or item.price <= 0:
            raise OrderValidationError("Quantity and price must be positive numbers")
        if item.price.normalize().as_tuple().exponent < -2:
            raise OrderValidationError("Price must have at most 2 decimal places")
        if item.quantity > max_quantity:
            raise OrderValidationError(f"Maximum quantity per item is {max_quantity}")

    if calculate_total(to_order_lines(request)) > max_total:
        raise OrderValidationError(f"Order total exceeds maximum limit of {max_total:,}")
