"""
At-least-once Kafka consumer for the order processor.

Kafka has no per-message acknowledgement, so partial batch failure is
emulated:
  - failed items are re-published to the work topic with an incremented
    delivery count, up to max_deliveries
  - unparsable items and items out of deliveries go to the DLQ topic
  - offsets are committed only once every item in the batch is settled
"""

import logging

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from order_processor.config import Settings
from order_processor.metrics import MESSAGES_CONSUMED
from order_processor.processor import FAILURE_PARSE, BatchItemFailure, BatchOrderProcessor, BatchResult
from shared.messaging import QueueMessage, kafka_headers

logger = logging.getLogger(__name__)

DELIVERY_COUNT_HEADER = "x-delivery-count"
FAILURE_KIND_HEADER = "x-failure-kind"
FAILURE_REASON_HEADER = "x-failure-reason"


async def run_consumer(
    consumer: AIOKafkaConsumer,
    producer: AIOKafkaProducer,
    processor: BatchOrderProcessor,
    settings: Settings,
) -> None:
    """Main consumer loop; runs until cancelled."""
    while True:
        batches = await consumer.getmany(
            timeout_ms=settings.poll_timeout_ms,
            max_records=settings.batch_size,
        )
        records = [record for partition_records in batches.values() for record in partition_records]
        if records:
            await handle_records(records, consumer, producer, processor, settings)


async def handle_records(
    records,
    consumer: AIOKafkaConsumer,
    producer: AIOKafkaProducer,
    processor: BatchOrderProcessor,
    settings: Settings,
) -> BatchResult:
    messages = [QueueMessage.from_record(record) for record in records]
    result = await processor.process_batch(messages)

    by_id = {message.message_id: message for message in messages}
    for failure in result.failures:
        await _redrive(by_id[failure.message_id], failure, producer, settings)

    # --- Commit offsets only after every item is settled or redriven ---
    await consumer.commit()
    return result


def _delivery_count(message: QueueMessage) -> int:
    try:
        return int(message.attributes.get(DELIVERY_COUNT_HEADER, "1"))
    except ValueError:
        return 1


async def _redrive(
    message: QueueMessage,
    failure: BatchItemFailure,
    producer: AIOKafkaProducer,
    settings: Settings,
) -> None:
    deliveries = _delivery_count(message)
    attributes = {
        k: v for k, v in message.attributes.items() if k not in ("traceparent", "tracestate")
    }

    if failure.kind == FAILURE_PARSE or deliveries >= settings.max_deliveries:
        topic = settings.dlq_topic
        attributes[FAILURE_KIND_HEADER] = failure.kind
        attributes[FAILURE_REASON_HEADER] = failure.error[:500]
        outcome = "dlq"
    else:
        topic = settings.work_queue_topic
        attributes[DELIVERY_COUNT_HEADER] = str(deliveries + 1)
        outcome = "retried"

    value = message.body.encode() if isinstance(message.body, str) else message.body
    await producer.send_and_wait(
        topic,
        key=failure.order_id.encode() if failure.order_id else None,
        value=value,
        headers=kafka_headers(attributes),
    )
    MESSAGES_CONSUMED.labels(outcome).inc()
    logger.warning(
        "Work item redriven",
        extra={
            "message_id": message.message_id,
            "order_id": failure.order_id,
            "failure_kind": failure.kind,
            "deliveries": deliveries,
            "topic": topic,
        },
    )
