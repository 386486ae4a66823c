"""
Pytest configuration and fixtures.
"""
import json
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from order_api.config import Settings as ApiSettings
from order_api.main import create_app
from order_api.schemas.order import OrderCreate, OrderItemCreate
from order_api.services.identity import AuthMethod, NormalizedIdentity
from order_api.services.order_service import IntakeCoordinator
from order_processor.payment_processor import AlwaysApprovePolicy, PaymentSimulator
from order_processor.processor import BatchOrderProcessor
from shared.messaging import InMemoryEventTopic, InMemoryWorkQueue
from shared.store import InMemoryOrderStore


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def queue() -> InMemoryWorkQueue:
    return InMemoryWorkQueue()


@pytest.fixture
def topic() -> InMemoryEventTopic:
    return InMemoryEventTopic()


@pytest.fixture
def api_settings() -> ApiSettings:
    """API settings with tracing export disabled."""
    return ApiSettings(otlp_endpoint="")


@pytest.fixture
def identity() -> NormalizedIdentity:
    return NormalizedIdentity(
        user_id="user-123",
        email="test@example.com",
        display_name="Test User",
        auth_method=AuthMethod.CLAIMS,
    )


@pytest.fixture
def make_request() -> Callable[..., OrderCreate]:
    """Build an OrderCreate from (product_id, quantity, price) tuples."""

    def _make(*items: tuple[str, int, str]) -> OrderCreate:
        return OrderCreate(
            items=[
                OrderItemCreate(product_id=product_id, quantity=quantity, price=Decimal(price))
                for product_id, quantity, price in items
            ]
        )

    return _make


@pytest.fixture
def coordinator(
    store: InMemoryOrderStore, queue: InMemoryWorkQueue, api_settings: ApiSettings
) -> IntakeCoordinator:
    return IntakeCoordinator(store, queue, api_settings)


@pytest.fixture
def approving_processor(
    store: InMemoryOrderStore, topic: InMemoryEventTopic
) -> BatchOrderProcessor:
    return BatchOrderProcessor(store, PaymentSimulator(AlwaysApprovePolicy()), topic)


@pytest.fixture
def claims_headers() -> dict[str, str]:
    claims = {
        "sub": "user-123",
        "email": "test@example.com",
        "name": "Test User",
        "email_verified": "true",
        "auth_time": 1640000000,
        "iat": 1640000000,
        "exp": 1640003600,
    }
    return {"X-Auth-Claims": json.dumps(claims)}


@pytest_asyncio.fixture
async def client(
    store: InMemoryOrderStore, queue: InMemoryWorkQueue, api_settings: ApiSettings
) -> AsyncGenerator[AsyncClient, Any]:
    """HTTP client against an app wired to in-memory collaborators."""
    app = create_app(api_settings, store=store, queue=queue)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
