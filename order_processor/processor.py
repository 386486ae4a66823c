"""
Batch Order Processor.

Takes a batch of work items off the queue and settles each order
independently:

  PENDING --(payment approved)--> CONFIRMED
  PENDING --(declined / error)--> FAILED

Guarantees:
  - Per-item isolation: items run concurrently, each inside its own error
    boundary and time budget; one failure never affects its siblings
  - Idempotency: a work item for an order that is already terminal is not
    charged again; its lifecycle event is re-published and the item counts
    as processed
  - No silent failures: every failed item is reported in the BatchResult so
    the queue can redrive or dead-letter it
  - Terminal states are final: the FAILED write is conditional on PENDING, so
    a publish failure after CONFIRMED leaves the order CONFIRMED
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

from opentelemetry import trace
from pydantic import ValidationError

from order_processor.metrics import BATCH_SIZE, MESSAGES_CONSUMED, PROCESSING_TIME
from order_processor.payment_processor import (
    PaymentDeclinedError,
    PaymentSimulator,
    PaymentTimeoutError,
)
from shared.errors import ProcessingError, StatusConflictError
from shared.events import OrderLifecycleEvent, OrderWorkItem
from shared.messaging import EventTopic, QueueMessage
from shared.orders import Order, OrderStatus
from shared.store import OrderStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FAILURE_PARSE = "parse"
FAILURE_DECLINED = "declined"
FAILURE_TIMEOUT = "timeout"
FAILURE_ERROR = "error"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ItemProcessingError(ProcessingError):
    def __init__(self, message: str, kind: str, order_id: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.order_id = order_id


@dataclass
class BatchItemFailure:
    message_id: str
    order_id: str | None
    kind: str  # parse | declined | timeout | error
    error: str


@dataclass
class BatchResult:
    processed_order_ids: list[str] = field(default_factory=list)
    failures: list[BatchItemFailure] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.processed_order_ids)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def item_failures(self) -> list[str]:
        """Message ids the queue should redeliver (partial batch response)."""
        return [failure.message_id for failure in self.failures]

    def raise_for_failures(self) -> None:
        """For queues without partial-batch reporting: fail the whole batch."""
        if self.failures:
            raise BatchProcessingError(self)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "processed_orders": list(self.processed_order_ids),
            "batch_item_failures": [{"item_identifier": mid} for mid in self.item_failures()],
        }


class BatchProcessingError(ProcessingError):
    def __init__(self, result: BatchResult) -> None:
        super().__init__(f"{result.failed} of {result.processed + result.failed} batch items failed")
        self.result = result


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class BatchOrderProcessor:
    def __init__(
        self,
        store: OrderStore,
        payments: PaymentSimulator,
        topic: EventTopic,
        item_timeout: float | None = None,
        max_concurrency: int = 10,
    ) -> None:
        self._store = store
        self._payments = payments
        self._topic = topic
        self._item_timeout = item_timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def process_batch(self, messages: Sequence[QueueMessage]) -> BatchResult:
        BATCH_SIZE.observe(len(messages))
        outcomes = await asyncio.gather(
            *(self._process_message(message) for message in messages),
            return_exceptions=True,
        )

        result = BatchResult()
        for message, outcome in zip(messages, outcomes):
            if isinstance(outcome, ItemProcessingError):
                result.failures.append(
                    BatchItemFailure(
                        message_id=message.message_id,
                        order_id=outcome.order_id,
                        kind=outcome.kind,
                        error=str(outcome),
                    )
                )
            elif isinstance(outcome, Exception):
                result.failures.append(
                    BatchItemFailure(
                        message_id=message.message_id,
                        order_id=None,
                        kind=FAILURE_ERROR,
                        error=str(outcome) or type(outcome).__name__,
                    )
                )
            elif isinstance(outcome, BaseException):
                raise outcome  # cancellation and friends are not item failures
            else:
                result.processed_order_ids.append(outcome)

        MESSAGES_CONSUMED.labels("failed").inc(result.failed)
        logger.info(
            "Batch processed",
            extra={
                "batch_size": len(messages),
                "processed": result.processed,
                "failed": result.failed,
            },
        )
        return result

    async def _process_message(self, message: QueueMessage) -> str:
        async with self._semaphore:
            with tracer.start_as_current_span("order.process", context=message.trace_context()) as span:
                span.set_attribute("messaging.message.id", message.message_id)
                start = time.perf_counter()
                try:
                    return await self._process_item(message)
                finally:
                    PROCESSING_TIME.observe(time.perf_counter() - start)

    async def _process_item(self, message: QueueMessage) -> str:
        try:
            item = OrderWorkItem.model_validate_json(message.body)
        except (ValidationError, ValueError, TypeError) as exc:
            # Terminal for this component; the queue's dead-letter policy owns it.
            logger.error(
                "Failed to parse work item",
                extra={"message_id": message.message_id, "error": str(exc)},
            )
            raise ItemProcessingError(f"Unparsable work item: {exc}", FAILURE_PARSE) from exc

        order_id = item.order_id
        trace.get_current_span().set_attribute("order.id", order_id)

        try:
            await asyncio.wait_for(self._settle(item), timeout=self._item_timeout)
        except PaymentDeclinedError as exc:
            await self._mark_failed(item, f"Payment declined: {exc}")
            raise ItemProcessingError(str(exc), FAILURE_DECLINED, order_id) from exc
        except (asyncio.TimeoutError, PaymentTimeoutError) as exc:
            if isinstance(exc, PaymentTimeoutError):
                reason = str(exc)
            else:
                reason = f"Processing exceeded {self._item_timeout}s"
            await self._mark_failed(item, reason)
            raise ItemProcessingError(reason, FAILURE_TIMEOUT, order_id) from exc
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.error(
                "Unexpected error during order processing",
                extra={"order_id": order_id, "correlation_id": item.correlation_id, "error": reason},
            )
            await self._mark_failed(item, reason)
            raise ItemProcessingError(reason, FAILURE_ERROR, order_id) from exc

        return order_id

    async def _settle(self, item: OrderWorkItem) -> Order:
        order = await self._store.get(item.order_id)

        # --- Idempotency check ---
        if order.status.is_terminal:
            logger.info(
                "Order already terminal; skipping payment (idempotency)",
                extra={"order_id": order.order_id, "status": order.status.value},
            )
            MESSAGES_CONSUMED.labels("skipped").inc()
            await self._publish(order, item.correlation_id)
            return order

        # --- Process payment ---
        reference = await self._payments.charge(order.order_id, order.total_amount)

        try:
            order = await self._store.update_status(
                order.order_id,
                OrderStatus.CONFIRMED,
                expected_status=OrderStatus.PENDING,
                payment_id=reference.payment_id,
            )
        except StatusConflictError:
            # A concurrent delivery settled it first; that copy owns the event.
            order = await self._store.get(order.order_id)
            if order.status != OrderStatus.CONFIRMED:
                logger.warning(
                    "Payment approved for an order that is already %s",
                    order.status.value,
                    extra={"order_id": order.order_id, "payment_id": reference.payment_id},
                )
            MESSAGES_CONSUMED.labels("skipped").inc()
            return order

        MESSAGES_CONSUMED.labels("processed").inc()
        logger.info(
            "Order confirmed",
            extra={
                "order_id": order.order_id,
                "correlation_id": item.correlation_id,
                "payment_id": order.payment_id,
                "amount": str(order.total_amount),
            },
        )
        await self._publish(order, item.correlation_id)
        return order

    async def _publish(self, order: Order, correlation_id: str) -> None:
        event = OrderLifecycleEvent.for_order(order, correlation_id)
        await self._topic.publish(event, event.attributes())
        logger.info(
            "Published lifecycle event",
            extra={"order_id": order.order_id, "event_type": event.event_type, "correlation_id": correlation_id},
        )

    async def _mark_failed(self, item: OrderWorkItem, reason: str) -> None:
        """Best effort: move a PENDING order to FAILED and announce it."""
        try:
            order = await self._store.update_status(
                item.order_id,
                OrderStatus.FAILED,
                expected_status=OrderStatus.PENDING,
                failure_reason=reason,
            )
        except StatusConflictError as exc:
            logger.info(
                "Order already terminal; leaving status unchanged",
                extra={"order_id": item.order_id, "status": exc.actual},
            )
            return
        except Exception as exc:
            logger.error(
                "Could not mark order FAILED",
                extra={"order_id": item.order_id, "error": str(exc)},
            )
            return

        logger.warning(
            "Order failed",
            extra={"order_id": item.order_id, "correlation_id": item.correlation_id, "reason": reason},
        )
        try:
            await self._publish(order, item.correlation_id)
        except Exception as exc:
            logger.error(
                "Failed to publish ORDER_FAILED event",
                extra={"order_id": item.order_id, "error": str(exc)},
            )
