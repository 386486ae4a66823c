from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/orders"
    log_level: str = "INFO"

    # Kafka
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_consumer_group: str = "order-processor"
    work_queue_topic: str = "order.placed"
    event_topic: str = "order.events"
    dlq_topic: str = "order.dlq"
    batch_size: int = 10
    poll_timeout_ms: int = 1000
    max_deliveries: int = 3

    # Batch processing
    item_timeout: float = 10.0
    max_concurrency: int = 10

    # Payment simulator
    payment_policy: str = "seeded"  # approve | decline | seeded | amount-limit
    payment_success_rate: float = 0.85
    payment_seed: int = 0
    payment_amount_limit: Decimal = Decimal("5000")
    payment_min_latency: float = 0.1
    payment_max_latency: float = 1.0
    payment_timeout: float = 4.0

    # Observability
    otlp_endpoint: str = "http://jaeger:4318/v1/traces"
    metrics_port: int = 8001

    model_config = {"env_file": ".env"}


settings = Settings()
