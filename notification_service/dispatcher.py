"""
Notification Dispatcher: best-effort delivery of customer notifications for
order lifecycle events.

dispatch() never raises for a bad event or a failed delivery; those are
logged and counted in the report. Redelivering notification work is not
worth it, unlike payment processing, which the queue does redrive.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from opentelemetry import trace
from pydantic import ValidationError

from notification_service.metrics import NOTIFICATIONS
from shared.errors import NotificationError
from shared.events import ORDER_CONFIRMED, ORDER_FAILED, OrderLifecycleEvent
from shared.messaging import QueueMessage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class Notification:
    recipient: str | None
    subject: str
    body: str
    event_type: str
    order_id: str


class NotificationChannel(Protocol):
    async def send(self, notification: Notification) -> None: ...


class LoggingNotificationChannel:
    """Logs a structured notification. In a real system this would send email/SMS/push."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "NOTIFICATION: %s",
            notification.subject,
            extra={
                "recipient": notification.recipient,
                "order_id": notification.order_id,
                "event_type": notification.event_type,
                "body": notification.body,
            },
        )


def format_notification(event: OrderLifecycleEvent) -> Notification:
    if event.event_type == ORDER_CONFIRMED:
        subject = event.subject or "Order Confirmed"
        body = (
            f"Your order {event.order_id} has been confirmed. "
            f"Total: {event.total_amount}. Payment reference: {event.payment_id}."
        )
    elif event.event_type == ORDER_FAILED:
        subject = event.subject or "Order Failed"
        body = f"We could not process your order {event.order_id}."
        if event.reason:
            body += f" Reason: {event.reason}."
    else:
        subject = event.subject or "Order Update"
        body = f"Your order {event.order_id} is now {event.status}."

    return Notification(
        recipient=event.customer_email,
        subject=subject,
        body=body,
        event_type=event.event_type,
        order_id=event.order_id,
    )


@dataclass
class DispatchFailure:
    message_id: str
    order_id: str | None
    error: str


@dataclass
class DispatchReport:
    delivered: int = 0
    failures: list[DispatchFailure] = field(default_factory=list)
    message: str = "Notifications processed"

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "delivered": self.delivered,
            "failed": self.failed,
            "failures": [
                {"message_id": f.message_id, "order_id": f.order_id, "error": f.error}
                for f in self.failures
            ],
        }


def parse_event(message: QueueMessage) -> OrderLifecycleEvent:
    try:
        data = json.loads(message.body)
    except (TypeError, ValueError) as exc:
        raise NotificationError(f"Unparsable event payload: {exc}") from exc
    if not isinstance(data, dict):
        raise NotificationError("Event payload must be a JSON object")

    # Older publishers only set the type as a message attribute.
    if "event_type" not in data and "eventType" in message.attributes:
        data["event_type"] = message.attributes["eventType"]
    try:
        return OrderLifecycleEvent.model_validate(data)
    except ValidationError as exc:
        raise NotificationError(f"Invalid lifecycle event: {exc}") from exc


class NotificationDispatcher:
    def __init__(self, channel: NotificationChannel | None = None) -> None:
        self._channel = channel or LoggingNotificationChannel()

    async def dispatch(self, messages: Sequence[QueueMessage]) -> DispatchReport:
        report = DispatchReport()
        for message in messages:
            with tracer.start_as_current_span("notification.dispatch", context=message.trace_context()):
                try:
                    event = parse_event(message)
                except NotificationError as exc:
                    logger.error(
                        "Failed to parse lifecycle event",
                        extra={"message_id": message.message_id, "error": str(exc)},
                    )
                    NOTIFICATIONS.labels("parse_error").inc()
                    report.failures.append(DispatchFailure(message.message_id, None, str(exc)))
                    continue

                try:
                    await self._channel.send(format_notification(event))
                except Exception as exc:
                    logger.error(
                        "Notification delivery failed",
                        extra={
                            "message_id": message.message_id,
                            "order_id": event.order_id,
                            "event_type": event.event_type,
                            "error": str(exc),
                        },
                    )
                    NOTIFICATIONS.labels("failed").inc()
                    report.failures.append(DispatchFailure(message.message_id, event.order_id, str(exc)))
                    continue

                NOTIFICATIONS.labels("sent").inc()
                report.delivered += 1

        logger.info(
            "Notifications processed",
            extra={"delivered": report.delivered, "failed": report.failed},
        )
        return report
