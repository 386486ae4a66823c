"""
Order Processor entry point.
Starts the AIOKafka consumer + producer, then runs the batch consumer loop.
"""

import asyncio
import logging

import prometheus_client
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from order_processor.config import settings
from order_processor.consumer import run_consumer
from order_processor.payment_processor import build_simulator
from order_processor.processor import BatchOrderProcessor
from shared.database import create_engine, create_session_factory
from shared.logging import setup_logging
from shared.messaging import KafkaEventTopic
from shared.store import SqlOrderStore
from shared.tracing import setup_tracing

logger = logging.getLogger(__name__)


async def main() -> None:
    setup_logging(settings.log_level, service_name="order-processor")
    prometheus_client.start_http_server(settings.metrics_port)
    setup_tracing("order-processor", settings.otlp_endpoint)

    engine = create_engine(settings.database_url)
    consumer = AIOKafkaConsumer(
        settings.work_queue_topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )
    producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        enable_idempotence=True,
    )

    await producer.start()
    await consumer.start()

    processor = BatchOrderProcessor(
        store=SqlOrderStore(create_session_factory(engine)),
        payments=build_simulator(settings),
        topic=KafkaEventTopic(producer, settings.event_topic),
        item_timeout=settings.item_timeout,
        max_concurrency=settings.max_concurrency,
    )
    logger.info(
        "Order processor started",
        extra={
            "bootstrap_servers": settings.kafka_bootstrap_servers,
            "consumer_group": settings.kafka_consumer_group,
            "payment_policy": settings.payment_policy,
            "metrics_port": settings.metrics_port,
        },
    )

    try:
        await run_consumer(consumer, producer, processor, settings)
    finally:
        await consumer.stop()
        await producer.stop()
        await engine.dispose()
        logger.info("Order processor stopped")


if __name__ == "__main__":
    asyncio.run(main())
