"""
Pytest configuration and fixtures.
"""
import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, List, Optional

import httpx
import pytest
import pytest_asyncio

from order_reconciler.api.dependencies import Services
from order_reconciler.api.main import create_app
from order_reconciler.config import Settings
from order_reconciler.core.exceptions import ProviderError
from order_reconciler.core.models import Observation, ObservationSource, Order, OrderStatus
from order_reconciler.core.reconciliation import ReconciliationEngine
from order_reconciler.core.store import InMemoryOrderStore
from order_reconciler.integrations.payloads import map_provider_code
from order_reconciler.integrations.provider_client import (
    CreateOrderResult,
    ProviderClient,
    StatusResult,
)
from order_reconciler.integrations.signature import HmacSha256Verifier

WEBHOOK_SECRET = "whsec_test_fake_secret"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StepClock:
    """UTC clock advancing one second per reading."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeProvider(ProviderClient):
    """In-process provider with scriptable responses."""

    name = "fake"

    def __init__(self, settings: Settings):
        self.settings = settings
        self.create_calls: List[Order] = []
        self.status_calls: List[str] = []
        self.create_errors: List[Exception] = []
        self.status_errors: List[Exception] = []
        self.provider_status = "PENDING"
        self.status_delay: Optional[float] = None

    async def create_order(self, order: Order) -> CreateOrderResult:
        self.create_calls.append(order)
        if self.create_errors:
            raise self.create_errors.pop(0)
        return CreateOrderResult(
            checkout_url=f"https://pay.example.test/checkout/{order.order_id}",
            raw_response={"orderId": f"OMO{order.order_id}", "state": "PENDING"},
            provider_order_id=f"OMO{order.order_id}",
        )

    async def query_status(self, order_id: str) -> StatusResult:
        self.status_calls.append(order_id)
        if self.status_delay is not None:
            await asyncio.sleep(self.status_delay)
        if self.status_errors:
            raise self.status_errors.pop(0)
        raw = {"orderId": f"OMO{order_id}", "state": self.provider_status}
        return StatusResult(
            status=map_provider_code(self.provider_status),
            provider_code=self.provider_status,
            raw_response=raw,
        )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        provider_variant="checkout_v2",
        provider_env="sandbox",
        provider_auth_base_url="https://auth.example.test",
        provider_checkout_base_url="https://checkout.example.test/checkout/v2",
        provider_pg_base_url="https://pg.example.test",
        client_id="test_client",
        client_secret="test_secret",
        merchant_id="MERCHANTUAT",
        merchant_base_url="http://merchant.example.test",
        salt_key="test-salt-key",
        salt_index="1",
        webhook_scheme="hmac_sha256",
        webhook_secret=WEBHOOK_SECRET,
        order_store_backend="memory",
        status_poll_timeout_seconds=0.5,
        app_name="order-reconciler-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def step_clock() -> StepClock:
    return StepClock()


@pytest.fixture
def engine(store: InMemoryOrderStore, step_clock: StepClock) -> ReconciliationEngine:
    return ReconciliationEngine(store, clock=step_clock)


@pytest.fixture
def fake_provider(test_settings: Settings) -> FakeProvider:
    return FakeProvider(test_settings)


@pytest.fixture
def make_order() -> Callable[..., Order]:
    """Factory for orders as built before admission."""

    def _make(order_id: str = "PES1700000000000ABC123", amount: str = "150.00") -> Order:
        return Order(
            order_id=order_id,
            amount=Decimal(amount),
            items=[{"name": "Masala Dosa", "qty": 2, "price": 75}],
            table="T4",
            session_id="sess_9f2c",
        )

    return _make


@pytest_asyncio.fixture
async def pending_order(
    engine: ReconciliationEngine, make_order: Callable[..., Order]
) -> Order:
    """An order already admitted as PENDING."""
    return await engine.admit(make_order(), {"state": "PENDING"}, "OMO123")


@pytest.fixture
def observe() -> Callable[..., Observation]:
    def _observe(
        order_id: str,
        status: OrderStatus,
        source: ObservationSource = ObservationSource.WEBHOOK,
        code: Optional[str] = None,
    ) -> Observation:
        code = code or status.value
        return Observation(
            order_id=order_id,
            status=status,
            source=source,
            provider_code=code,
            payload={"merchantOrderId": order_id, "status": code},
        )

    return _observe


@pytest.fixture
def services(
    test_settings: Settings, store: InMemoryOrderStore, fake_provider: FakeProvider
) -> Services:
    return Services.assemble(
        settings=test_settings,
        store=store,
        provider=fake_provider,
        verifier=HmacSha256Verifier(WEBHOOK_SECRET),
    )


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(services=services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def sign_body(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def signed_webhook() -> Callable[[str, str], tuple]:
    """Build a status-object webhook body and its valid signature."""

    def _build(order_id: str, status: str) -> tuple:
        body = json.dumps({"merchantOrderId": order_id, "status": status}).encode()
        return body, sign_body(body)

    return _build


@pytest.fixture
def provider_error() -> ProviderError:
    return ProviderError(
        "Provider returned HTTP 500",
        raw_response={"code": "INTERNAL_SERVER_ERROR"},
        status_code=500,
    )
