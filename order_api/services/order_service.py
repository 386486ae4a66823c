import logging
import uuid
from datetime import datetime
from decimal import Decimal

from order_api.config import Settings
from order_api.metrics import ORDER_VALUE, ORDERS_SUBMITTED
from order_api.schemas.order import OrderCreate
from order_api.services.identity import NormalizedIdentity
from order_api.services.validation import to_order_lines, validate_order_request
from shared.errors import OrderValidationError, PersistenceError, QueueError
from shared.events import OrderWorkItem
from shared.messaging import WorkQueue
from shared.orders import (
    Order,
    OrderMetadata,
    OrderStatus,
    OrderType,
    Priority,
    calculate_total,
    utcnow,
)
from shared.store import OrderStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def classify(
    order: Order,
    bulk_item_threshold: int = 5,
    high_priority_amount: Decimal = Decimal("1000"),
) -> tuple[OrderType, Priority]:
    order_type = OrderType.BULK if len(order.items) > bulk_item_threshold else OrderType.STANDARD
    priority = Priority.HIGH if order.total_amount > high_priority_amount else Priority.NORMAL
    return order_type, priority


def build_order(
    request: OrderCreate,
    identity: NormalizedIdentity,
    metadata: OrderMetadata | None = None,
    now: datetime | None = None,
) -> Order:
    """Build a PENDING order from an already validated request."""
    now = now or utcnow()
    lines = to_order_lines(request)
    return Order(
        order_id=str(uuid.uuid4()),
        customer_id=identity.user_id,
        customer_email=identity.email,
        items=lines,
        total_amount=calculate_total(lines),
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
        metadata=metadata or OrderMetadata(),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class IntakeCoordinator:
    """Validates, persists and enqueues new orders."""

    def __init__(self, store: OrderStore, queue: WorkQueue, settings: Settings) -> None:
        self._store = store
        self._queue = queue
        self._settings = settings

    async def get_order(self, order_id: str) -> Order:
        return await self._store.get(order_id)

    async def enqueue(self, order: Order, correlation_id: str = "unknown") -> OrderWorkItem:
        order_type, priority = classify(
            order,
            bulk_item_threshold=self._settings.bulk_item_threshold,
            high_priority_amount=self._settings.high_priority_amount,
        )
        item = OrderWorkItem.from_order(order, order_type, priority, correlation_id)
        await self._queue.enqueue(item, item.attributes())
        return item

    async def submit(
        self,
        request: OrderCreate,
        identity: NormalizedIdentity,
        metadata: OrderMetadata | None = None,
        correlation_id: str = "unknown",
    ) -> Order:
        # 1. Validate. No side effects on failure
        try:
            validate_order_request(
                request,
                max_total=self._settings.max_order_total,
                max_quantity=self._settings.max_item_quantity,
            )
        except OrderValidationError as exc:
            ORDERS_SUBMITTED.labels("rejected").inc()
            logger.info(
                "Order rejected",
                extra={"request_id": correlation_id, "customer_id": identity.user_id, "error": str(exc)},
            )
            raise

        # 2. Build the PENDING order
        order = build_order(request, identity, metadata)

        # 3. Persist (create-only). Nothing is enqueued if this fails.
        try:
            await self._store.create(order)
        except Exception as exc:
            ORDERS_SUBMITTED.labels("persistence_error").inc()
            logger.error(
                "Failed to persist order",
                extra={"order_id": order.order_id, "request_id": correlation_id, "error": str(exc)},
            )
            raise PersistenceError("Order could not be stored") from exc

        logger.info(
            "Order persisted, enqueueing work item",
            extra={
                "order_id": order.order_id,
                "request_id": correlation_id,
                "amount": str(order.total_amount),
                "item_count": len(order.items),
            },
        )

        # 4. Enqueue. A failure here leaves a PENDING order without a work item;
        #    the reconciliation sweep picks it up.
        try:
            item = await self.enqueue(order, correlation_id)
        except Exception as exc:
            ORDERS_SUBMITTED.labels("queue_error").inc()
            logger.error(
                "Enqueue failed after persist, order left PENDING for reconciliation",
                extra={"order_id": order.order_id, "request_id": correlation_id, "error": str(exc)},
            )
            raise QueueError("Order could not be queued for processing") from exc

        ORDERS_SUBMITTED.labels("accepted").inc()
        ORDER_VALUE.observe(float(order.total_amount))
        logger.info(
            "Order accepted",
            extra={
                "order_id": order.order_id,
                "request_id": correlation_id,
                "customer_email": order.customer_email,
                "order_type": item.order_type.value,
                "priority": item.priority.value,
            },
        )

        # 5. Return immediately. Payment is async, status stays PENDING
        return order
