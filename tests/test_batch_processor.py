"""
Tests for the batch order processor: settlement, idempotency and per-item
failure isolation.
"""
import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from order_processor.payment_processor import (
    AlwaysApprovePolicy,
    AlwaysDeclinePolicy,
    PaymentSimulator,
)
from order_processor.processor import (
    FAILURE_DECLINED,
    FAILURE_ERROR,
    FAILURE_PARSE,
    FAILURE_TIMEOUT,
    BatchOrderProcessor,
    BatchProcessingError,
)
from shared.events import ORDER_CONFIRMED, ORDER_FAILED
from shared.messaging import QueueMessage
from shared.orders import OrderStatus

pytestmark = pytest.mark.unit


async def _submit(coordinator, queue, make_request, identity, *items) -> tuple[str, QueueMessage]:
    order = await coordinator.submit(make_request(*(items or [("P1", 1, "10.00")])), identity)
    return order.order_id, queue.drain()[0]


class TestSettlement:
    async def test_confirms_order_and_publishes_event(
        self, coordinator, queue, store, topic, approving_processor, make_request, identity
    ) -> None:
        order_id, message = await _submit(
            coordinator, queue, make_request, identity, ("P1", 2, "25.50"), ("P2", 1, "49.99")
        )

        result = await approving_processor.process_batch([message])

        assert result.processed == 1
        assert result.failed == 0
        assert result.processed_order_ids == [order_id]

        order = await store.get(order_id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_id.startswith("PAY-")
        assert order.total_amount == Decimal("100.99")

        [event] = topic.events
        assert event.event_type == ORDER_CONFIRMED
        assert event.order_id == order_id
        assert event.payment_id == order.payment_id
        assert event.total_amount == Decimal("100.99")
        assert event.customer_email == "test@example.com"
        assert topic.messages[0].attributes == {"eventType": ORDER_CONFIRMED}

    async def test_correlation_id_is_carried(
        self, coordinator, queue, topic, approving_processor, make_request, identity
    ) -> None:
        await coordinator.submit(make_request(("P1", 1, "5")), identity, correlation_id="req-77")
        await approving_processor.process_batch(queue.drain())
        assert topic.events[0].correlation_id == "req-77"

    async def test_decline_marks_order_failed(
        self, coordinator, queue, store, topic, make_request, identity
    ) -> None:
        processor = BatchOrderProcessor(store, PaymentSimulator(AlwaysDeclinePolicy()), topic)
        order_id, message = await _submit(coordinator, queue, make_request, identity)

        result = await processor.process_batch([message])

        assert result.failed == 1
        assert result.failures[0].kind == FAILURE_DECLINED
        assert result.failures[0].order_id == order_id

        order = await store.get(order_id)
        assert order.status == OrderStatus.FAILED
        assert order.payment_id is None
        assert "Insufficient funds" in order.failure_reason

        [event] = topic.events
        assert event.event_type == ORDER_FAILED
        assert "Insufficient funds" in event.reason

    async def test_item_timeout_marks_order_failed(
        self, coordinator, queue, store, topic, make_request, identity
    ) -> None:
        slow = PaymentSimulator(AlwaysApprovePolicy(), min_latency=0.5, max_latency=0.5)
        processor = BatchOrderProcessor(store, slow, topic, item_timeout=0.05)
        order_id, message = await _submit(coordinator, queue, make_request, identity)

        result = await processor.process_batch([message])

        assert result.failures[0].kind == FAILURE_TIMEOUT
        order = await store.get(order_id)
        assert order.status == OrderStatus.FAILED
        assert "exceeded" in order.failure_reason

    async def test_unknown_order(self, approving_processor, store, topic, coordinator, queue, make_request, identity) -> None:
        _, message = await _submit(coordinator, queue, make_request, identity)
        body = json.loads(message.body)
        body["order_id"] = "missing-order"
        orphan = QueueMessage(body=json.dumps(body), message_id="m-orphan")

        result = await approving_processor.process_batch([orphan])

        assert result.failed == 1
        assert result.failures[0].kind == FAILURE_ERROR
        assert result.failures[0].order_id == "missing-order"
        assert topic.messages == []


class TestIdempotency:
    async def test_redelivery_does_not_charge_twice(
        self, coordinator, queue, store, topic, make_request, identity
    ) -> None:
        payments = PaymentSimulator(AlwaysApprovePolicy())
        payments.charge = AsyncMock(wraps=payments.charge)
        processor = BatchOrderProcessor(store, payments, topic)
        order_id, message = await _submit(coordinator, queue, make_request, identity)

        await processor.process_batch([message])
        first = await store.get(order_id)
        result = await processor.process_batch([message])
        second = await store.get(order_id)

        assert result.processed == 1
        assert payments.charge.await_count == 1
        assert second.status == OrderStatus.CONFIRMED
        assert second.payment_id == first.payment_id
        assert second.updated_at == first.updated_at

    async def test_redelivery_of_failed_order_is_a_no_op(
        self, coordinator, queue, store, topic, make_request, identity
    ) -> None:
        order_id, message = await _submit(coordinator, queue, make_request, identity)
        declining = BatchOrderProcessor(store, PaymentSimulator(AlwaysDeclinePolicy()), topic)
        await declining.process_batch([message])

        payments = PaymentSimulator(AlwaysApprovePolicy())
        payments.charge = AsyncMock(wraps=payments.charge)
        approving = BatchOrderProcessor(store, payments, topic)
        result = await approving.process_batch([message])

        assert result.processed == 1
        payments.charge.assert_not_awaited()
        assert (await store.get(order_id)).status == OrderStatus.FAILED

    async def test_concurrent_duplicates_converge(
        self, coordinator, queue, store, topic, make_request, identity
    ) -> None:
        # Equal latency makes both copies read PENDING before either writes.
        payments = PaymentSimulator(AlwaysApprovePolicy(), min_latency=0.02, max_latency=0.02, timeout=1.0)
        processor = BatchOrderProcessor(store, payments, topic)
        order_id, message = await _submit(coordinator, queue, make_request, identity)
        duplicate = QueueMessage(body=message.body, attributes=message.attributes)

        first, second = await asyncio.gather(
            processor.process_batch([message]),
            processor.process_batch([duplicate]),
        )

        assert first.processed == 1
        assert second.processed == 1
        order = await store.get(order_id)
        assert order.status == OrderStatus.CONFIRMED
        assert [e.event_type for e in topic.events] == [ORDER_CONFIRMED]
        assert topic.events[0].payment_id == order.payment_id


class TestPartialFailure:
    async def test_malformed_item_does_not_affect_siblings(
        self, coordinator, queue, store, approving_processor, make_request, identity
    ) -> None:
        order_ids = []
        for i in range(3):
            order = await coordinator.submit(make_request((f"P{i}", 1, "10")), identity)
            order_ids.append(order.order_id)
        messages = queue.drain()
        messages.insert(1, QueueMessage(body="not json", message_id="m-bad"))

        result = await approving_processor.process_batch(messages)

        assert result.processed == 3
        assert result.failed == 1
        assert result.item_failures() == ["m-bad"]
        assert result.failures[0].kind == FAILURE_PARSE
        assert result.failures[0].order_id is None
        for order_id in order_ids:
            assert (await store.get(order_id)).status == OrderStatus.CONFIRMED

    async def test_publish_failure_keeps_order_confirmed(
        self, coordinator, queue, store, topic, make_request, identity
    ) -> None:
        payments = PaymentSimulator(AlwaysApprovePolicy())
        payments.charge = AsyncMock(wraps=payments.charge)
        processor = BatchOrderProcessor(store, payments, topic)
        order_id, message = await _submit(coordinator, queue, make_request, identity)

        original_publish = topic.publish
        topic.publish = AsyncMock(side_effect=RuntimeError("topic unavailable"))
        result = await processor.process_batch([message])

        assert result.failed == 1
        assert result.failures[0].kind == FAILURE_ERROR
        assert "topic unavailable" in result.failures[0].error
        order = await store.get(order_id)
        assert order.status == OrderStatus.CONFIRMED

        # Redelivery re-announces the confirmation without a second charge.
        topic.publish = original_publish
        retry = await processor.process_batch([message])

        assert retry.processed == 1
        assert payments.charge.await_count == 1
        [event] = topic.events
        assert event.event_type == ORDER_CONFIRMED
        assert event.payment_id == order.payment_id

    async def test_store_failure_is_reported(
        self, coordinator, queue, store, topic, approving_processor, make_request, identity
    ) -> None:
        order_id, message = await _submit(coordinator, queue, make_request, identity)
        store.update_status = AsyncMock(side_effect=RuntimeError("db down"))

        result = await approving_processor.process_batch([message])

        assert result.failed == 1
        assert result.failures[0].kind == FAILURE_ERROR
        assert (await store.get(order_id)).status == OrderStatus.PENDING
        assert topic.messages == []

    async def test_raise_for_failures(self, approving_processor) -> None:
        result = await approving_processor.process_batch([QueueMessage(body=b"\x00", message_id="m-1")])

        with pytest.raises(BatchProcessingError) as excinfo:
            result.raise_for_failures()
        assert excinfo.value.result is result

    async def test_raise_for_failures_is_silent_on_success(
        self, coordinator, queue, approving_processor, make_request, identity
    ) -> None:
        _, message = await _submit(coordinator, queue, make_request, identity)
        result = await approving_processor.process_batch([message])
        result.raise_for_failures()

    async def test_to_dict(self, approving_processor) -> None:
        result = await approving_processor.process_batch([QueueMessage(body="{}", message_id="m-1")])
        assert result.to_dict() == {
            "processed": 0,
            "failed": 1,
            "processed_orders": [],
            "batch_item_failures": [{"item_identifier": "m-1"}],
        }

    async def test_empty_batch(self, approving_processor) -> None:
        result = await approving_processor.process_batch([])
        assert result.processed == 0
        assert result.failed == 0
