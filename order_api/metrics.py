from prometheus_client import Counter, Histogram

ORDERS_SUBMITTED = Counter(
    "orders_submitted_total",
    "Order submissions by outcome",
    ["outcome"],  # accepted | rejected | persistence_error | queue_error
)

ORDER_VALUE = Histogram(
    "order_total_amount",
    "Total amount of accepted orders",
    buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

ORDERS_REQUEUED = Counter(
    "orders_requeued_total",
    "PENDING orders re-enqueued by the reconciliation sweep",
)
