from prometheus_client import Counter, Histogram

MESSAGES_CONSUMED = Counter(
    "order_messages_consumed_total",
    "Work items consumed by the order processor",
    ["status"],  # processed | skipped | failed | retried | dlq
)

PROCESSING_TIME = Histogram(
    "order_processing_duration_seconds",
    "Per-item processing time",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

BATCH_SIZE = Histogram(
    "order_batch_size",
    "Work items per processed batch",
    buckets=[1, 2, 5, 10, 25, 50, 100],
)

PAYMENT_OUTCOMES = Counter(
    "payment_outcomes_total",
    "Payment outcomes by type",
    ["outcome"],  # success | declined | timeout
)
