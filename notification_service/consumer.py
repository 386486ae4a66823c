"""
Notification service consumer: pulls lifecycle events off the event topic in
batches and hands them to the dispatcher. Offsets are auto-committed since
the dispatcher never asks for redelivery.
"""

import logging

from aiokafka import AIOKafkaConsumer

from notification_service.config import Settings
from notification_service.dispatcher import DispatchReport, NotificationDispatcher
from shared.messaging import QueueMessage

logger = logging.getLogger(__name__)


async def run_consumer(
    consumer: AIOKafkaConsumer,
    dispatcher: NotificationDispatcher,
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
            await handle_records(records, dispatcher)


async def handle_records(records, dispatcher: NotificationDispatcher) -> DispatchReport:
    messages = [QueueMessage.from_record(record) for record in records]
    return await dispatcher.dispatch(messages)
