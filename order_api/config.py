from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/orders"
    log_level: str = "INFO"

    # Business limits
    max_order_total: Decimal = Decimal("10000")
    max_item_quantity: int = 100
    bulk_item_threshold: int = 5
    high_priority_amount: Decimal = Decimal("1000")

    # Identity headers forwarded by the entry gateway after token validation
    claims_header: str = "X-Auth-Claims"
    api_key_header: str = "X-Api-Key"

    # Kafka
    kafka_bootstrap_servers: str = "kafka:9092"
    work_queue_topic: str = "order.placed"

    # Reconciliation sweep
    reconciliation_stale_after_seconds: float = 600.0

    # Observability
    otlp_endpoint: str = "http://jaeger:4318/v1/traces"

    model_config = {"env_file": ".env"}


settings = Settings()
