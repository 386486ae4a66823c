"""
One-shot reconciliation job: re-enqueue PENDING orders that have not moved
for longer than the configured threshold. Meant to run from cron.
"""

import asyncio
import logging
from datetime import timedelta

from aiokafka import AIOKafkaProducer

from order_api.config import settings
from order_api.services.order_service import IntakeCoordinator
from order_api.services.reconciliation import requeue_stale_orders
from shared.database import create_engine, create_session_factory
from shared.logging import setup_logging
from shared.messaging import KafkaWorkQueue
from shared.store import SqlOrderStore

logger = logging.getLogger(__name__)


async def main() -> None:
    setup_logging(settings.log_level, service_name="order-reconciler")

    engine = create_engine(settings.database_url)
    producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        enable_idempotence=True,
    )
    await producer.start()
    try:
        store = SqlOrderStore(create_session_factory(engine))
        coordinator = IntakeCoordinator(
            store, KafkaWorkQueue(producer, settings.work_queue_topic), settings
        )
        requeued = await requeue_stale_orders(
            store,
            coordinator,
            older_than=timedelta(seconds=settings.reconciliation_stale_after_seconds),
        )
        logger.info("Reconciliation complete", extra={"requeued": len(requeued)})
    finally:
        await producer.stop()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
