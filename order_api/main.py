import logging
from contextlib import asynccontextmanager

from aiokafka import AIOKafkaProducer
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import make_asgi_app
from starlette.exceptions import HTTPException as StarletteHTTPException

from order_api.config import Settings, settings as default_settings
from order_api.middleware.metrics import MetricsMiddleware
from order_api.middleware.request_id import RequestIDMiddleware
from order_api.routers import orders, users
from order_api.services.order_service import IntakeCoordinator
from shared.database import create_engine, create_session_factory, create_tables
from shared.errors import (
    AuthenticationError,
    OrderValidationError,
    PersistenceError,
    QueueError,
)
from shared.logging import setup_logging
from shared.messaging import KafkaWorkQueue, WorkQueue
from shared.store import OrderStore, SqlOrderStore
from shared.tracing import setup_tracing

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request body: {message}")

    @app.exception_handler(OrderValidationError)
    async def order_validation_handler(request: Request, exc: OrderValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(AuthenticationError)
    async def authentication_handler(request: Request, exc: AuthenticationError):
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    # Storage and queue failures are reported without implementation detail.
    @app.exception_handler(PersistenceError)
    @app.exception_handler(QueueError)
    async def internal_error_handler(request: Request, exc: Exception):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def create_app(
    settings: Settings = default_settings,
    store: OrderStore | None = None,
    queue: WorkQueue | None = None,
) -> FastAPI:
    """
    Build the API. Collaborators that are not passed in are created against
    Postgres / Kafka during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, service_name="order-api")
        setup_tracing("order-api", settings.otlp_endpoint)
        logger.info("Starting up")

        engine = None
        producer = None
        if store is None:
            engine = create_engine(settings.database_url)
            await create_tables(engine)
            SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
            app.state.store = SqlOrderStore(create_session_factory(engine))
        if queue is None:
            producer = AIOKafkaProducer(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                enable_idempotence=True,
            )
            await producer.start()
            app.state.queue = KafkaWorkQueue(producer, settings.work_queue_topic)

        app.state.coordinator = IntakeCoordinator(app.state.store, app.state.queue, settings)
        logger.info("Startup complete")

        yield

        if producer is not None:
            await producer.stop()
        if engine is not None:
            await engine.dispose()
        logger.info("Shutting down")

    app = FastAPI(
        title="Order Pipeline",
        description="Order intake: validation, persistence and work-queue submission",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.queue = queue
    if store is not None and queue is not None:
        app.state.coordinator = IntakeCoordinator(store, queue, settings)

    _register_error_handlers(app)
    FastAPIInstrumentor.instrument_app(app)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.include_router(orders.router, prefix="/orders", tags=["orders"])
    app.include_router(users.router, prefix="/user", tags=["users"])

    # Expose Prometheus metrics at /metrics
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
