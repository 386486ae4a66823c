"""
Work Queue and Event Topic collaborators.

Both carry transient, at-least-once copies of order state. Message attributes
travel as Kafka headers next to the W3C trace context.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from aiokafka import AIOKafkaProducer
from opentelemetry.context import Context
from opentelemetry.propagate import extract, inject

from shared.events import OrderLifecycleEvent, OrderWorkItem

logger = logging.getLogger(__name__)


@dataclass
class QueueMessage:
    """Delivery envelope handed to the batch processor and the dispatcher."""

    body: str | bytes | None
    attributes: dict[str, str] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_record(cls, record) -> "QueueMessage":
        """Build from an aiokafka ConsumerRecord."""
        # Header values are untrusted: nulls are dropped, bad bytes replaced.
        headers = {
            k: v.decode(errors="replace") for k, v in (record.headers or []) if v is not None
        }
        return cls(
            body=record.value,
            attributes=headers,
            message_id=f"{record.topic}:{record.partition}:{record.offset}",
        )

    def trace_context(self) -> Context:
        return extract(self.attributes)


class WorkQueue(Protocol):
    async def enqueue(self, item: OrderWorkItem, attributes: dict[str, str] | None = None) -> None: ...


class EventTopic(Protocol):
    async def publish(
        self, event: OrderLifecycleEvent, attributes: dict[str, str] | None = None
    ) -> None: ...


# ---------------------------------------------------------------------------
# Kafka
# ---------------------------------------------------------------------------


def kafka_headers(attributes: dict[str, str] | None = None) -> list[tuple[str, bytes]]:
    """Message attributes plus the current trace context, encoded as Kafka headers."""
    outgoing: dict[str, str] = dict(attributes or {})
    inject(outgoing)
    return [(k, v.encode()) for k, v in outgoing.items()]


class KafkaWorkQueue:
    def __init__(self, producer: AIOKafkaProducer, topic: str) -> None:
        self._producer = producer
        self._topic = topic

    async def enqueue(self, item: OrderWorkItem, attributes: dict[str, str] | None = None) -> None:
        await self._producer.send_and_wait(
            self._topic,
            key=item.order_id.encode(),
            value=item.model_dump_json().encode(),
            headers=kafka_headers(attributes),
        )
        logger.debug(
            "Work item sent",
            extra={"order_id": item.order_id, "topic": self._topic},
        )


class KafkaEventTopic:
    def __init__(self, producer: AIOKafkaProducer, topic: str) -> None:
        self._producer = producer
        self._topic = topic

    async def publish(
        self, event: OrderLifecycleEvent, attributes: dict[str, str] | None = None
    ) -> None:
        await self._producer.send_and_wait(
            self._topic,
            key=event.order_id.encode(),
            value=event.model_dump_json().encode(),
            headers=kafka_headers(attributes),
        )
        logger.debug(
            "Lifecycle event sent",
            extra={"order_id": event.order_id, "event_type": event.event_type, "topic": self._topic},
        )


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryWorkQueue:
    def __init__(self) -> None:
        self.messages: list[QueueMessage] = []

    async def enqueue(self, item: OrderWorkItem, attributes: dict[str, str] | None = None) -> None:
        self.messages.append(QueueMessage(body=item.model_dump_json(), attributes=dict(attributes or {})))

    def drain(self) -> list[QueueMessage]:
        batch, self.messages = self.messages, []
        return batch


class InMemoryEventTopic:
    def __init__(self) -> None:
        self.messages: list[QueueMessage] = []

    async def publish(
        self, event: OrderLifecycleEvent, attributes: dict[str, str] | None = None
    ) -> None:
        self.messages.append(QueueMessage(body=event.model_dump_json(), attributes=dict(attributes or {})))

    @property
    def events(self) -> list[OrderLifecycleEvent]:
        return [OrderLifecycleEvent.model_validate_json(m.body) for m in self.messages]

    def drain(self) -> list[QueueMessage]:
        batch, self.messages = self.messages, []
        return batch
