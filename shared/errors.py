"""
Error taxonomy shared by the intake, processing and notification services.

Intake errors (validation, authentication, persistence, queue) surface to the
HTTP layer. Processing errors are per batch item and drive queue redelivery.
Notification errors never leave the dispatcher.
"""


class OrderPipelineError(Exception):
    """Base class for all order pipeline errors."""


class OrderValidationError(OrderPipelineError, ValueError):
    """The order request is malformed or breaks a business limit. Client-correctable."""


class AuthenticationError(OrderPipelineError):
    """No usable identity on the request."""


class PersistenceError(OrderPipelineError):
    """Order store unavailable or a constraint was violated."""


class QueueError(OrderPipelineError):
    """Enqueue failed after the order was persisted, leaving a reconciliation gap."""


class ProcessingError(OrderPipelineError):
    """Unexpected fault while handling a single batch item."""


class NotificationError(OrderPipelineError):
    """Notification could not be formatted or delivered."""


# ---------------------------------------------------------------------------
# Order store
# ---------------------------------------------------------------------------


class OrderStoreError(PersistenceError):
    """Base class for order store contract violations."""


class OrderNotFoundError(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class OrderAlreadyExistsError(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} already exists")
        self.order_id = order_id


class StatusConflictError(OrderStoreError):
    """Conditional update rejected because the stored status moved on."""

    def __init__(self, order_id: str, expected: str, actual: str) -> None:
        super().__init__(f"Order {order_id} is {actual}, expected {expected}")
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
