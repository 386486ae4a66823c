"""
Tests for the sweep that re-enqueues orders stranded in PENDING.
"""
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from order_api.services.reconciliation import requeue_stale_orders
from order_processor.payment_processor import AlwaysApprovePolicy, PaymentSimulator
from order_processor.processor import BatchOrderProcessor
from shared.orders import Order, OrderLine, OrderStatus, utcnow

pytestmark = pytest.mark.unit


def _order(order_id: str, status: OrderStatus, age: timedelta) -> Order:
    stamp = utcnow() - age
    return Order(
        order_id=order_id,
        customer_id="user-123",
        customer_email="test@example.com",
        items=[OrderLine(product_id="P1", quantity=1, unit_price=Decimal("10"))],
        total_amount=Decimal("10"),
        status=status,
        created_at=stamp,
        updated_at=stamp,
    )


async def test_requeues_only_stale_pending_orders(store, queue, coordinator) -> None:
    await store.create(_order("stale", OrderStatus.PENDING, timedelta(hours=1)))
    await store.create(_order("fresh", OrderStatus.PENDING, timedelta(seconds=5)))
    await store.create(_order("done", OrderStatus.CONFIRMED, timedelta(hours=1)))

    requeued = await requeue_stale_orders(store, coordinator, older_than=timedelta(minutes=10))

    assert requeued == ["stale"]
    [message] = queue.messages
    body = json.loads(message.body)
    assert body["order_id"] == "stale"
    assert body["correlation_id"] == "reconcile-stale"
    assert message.attributes == {"orderType": "STANDARD", "priority": "NORMAL"}


async def test_enqueue_failure_skips_to_next_order(store, queue, coordinator) -> None:
    await store.create(_order("a", OrderStatus.PENDING, timedelta(hours=2)))
    await store.create(_order("b", OrderStatus.PENDING, timedelta(hours=1)))
    queue.enqueue = AsyncMock(side_effect=[RuntimeError("broker unavailable"), None])

    requeued = await requeue_stale_orders(store, coordinator, older_than=timedelta(minutes=10))

    assert len(requeued) == 1
    assert queue.enqueue.await_count == 2


async def test_nothing_to_do(store, queue, coordinator) -> None:
    requeued = await requeue_stale_orders(store, coordinator, older_than=timedelta(minutes=10))
    assert requeued == []
    assert queue.messages == []


async def test_settled_orders_are_not_requeued(
    store, queue, topic, coordinator, approving_processor, make_request, identity
) -> None:
    order = await coordinator.submit(make_request(("P1", 1, "10")), identity)
    await approving_processor.process_batch(queue.drain())

    requeued = await requeue_stale_orders(
        store, coordinator, older_than=timedelta(minutes=10), now=utcnow() + timedelta(hours=1)
    )

    assert requeued == []
    assert (await store.get(order.order_id)).status == OrderStatus.CONFIRMED


async def test_requeued_copy_of_settled_order_charges_once(
    store, queue, topic, coordinator, make_request, identity
) -> None:
    payments = PaymentSimulator(AlwaysApprovePolicy())
    payments.charge = AsyncMock(wraps=payments.charge)
    processor = BatchOrderProcessor(store, payments, topic)

    order = await coordinator.submit(make_request(("P1", 1, "10")), identity)
    requeued = await requeue_stale_orders(
        store, coordinator, older_than=timedelta(minutes=10), now=utcnow() + timedelta(hours=1)
    )
    assert requeued == [order.order_id]

    original, copy = queue.drain()
    first = await processor.process_batch([original])
    second = await processor.process_batch([copy])

    assert first.processed == 1
    assert second.processed == 1
    assert payments.charge.await_count == 1
    assert {e.payment_id for e in topic.events} == {(await store.get(order.order_id)).payment_id}
