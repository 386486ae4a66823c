"""
Reconciliation sweep for orders that were stored but never enqueued.

Re-enqueueing is safe because the processor treats a work item for an
already terminal order as a no-op.
"""

import logging
from datetime import datetime, timedelta

from order_api.metrics import ORDERS_REQUEUED
from order_api.services.order_service import IntakeCoordinator
from shared.orders import OrderStatus, utcnow
from shared.store import OrderStore

logger = logging.getLogger(__name__)


async def requeue_stale_orders(
    store: OrderStore,
    coordinator: IntakeCoordinator,
    older_than: timedelta,
    now: datetime | None = None,
) -> list[str]:
    cutoff = (now or utcnow()) - older_than
    stale = await store.list_by_status(OrderStatus.PENDING, updated_before=cutoff)
    requeued: list[str] = []

    for order in stale:
        try:
            await coordinator.enqueue(order, correlation_id=f"reconcile-{order.order_id}")
        except Exception as exc:
            logger.error(
                "Reconciliation enqueue failed",
                extra={"order_id": order.order_id, "error": str(exc)},
            )
            continue
        requeued.append(order.order_id)
        ORDERS_REQUEUED.inc()

    logger.info(
        "Reconciliation sweep finished",
        extra={"stale": len(stale), "requeued": len(requeued), "cutoff": cutoff.isoformat()},
    )
    return requeued
