"""
Pytest configuration and shared fixtures for the order service tests.

Provides an in-memory SQLite session, an ASGI test client, bearer tokens,
an order factory, and httpx.MockTransport fakes for PhonePe, Shiprocket and
WhatsApp so no test ever leaves the process.
"""
import hashlib
import itertools
import json
import re
import time
from typing import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import settings
from database import Base, get_db
from domain.enums import Role
from domain.identity import RequestIdentity
from middleware.auth import issue_access_token
from middleware.rate_limit import _limiter
from services import async_executor, order_service, phonepe_service, shiprocket_service, whatsapp_service

# ── Test Configuration ───────────────────────────────────────────────
# Test-only values for settings that would normally come from .env
settings.jwt_secret = "test-jwt-secret-for-pytest-only"
settings.admin_username = "ops"
settings.admin_password = "ops-password"
settings.phonepe_client_id = "pp-client"
settings.phonepe_client_secret = "pp-secret"
settings.phonepe_webhook_username = "hook-user"
settings.phonepe_webhook_password = "hook-pass"
settings.shiprocket_email = "ops@store.test"
settings.shiprocket_password = "sr-password"
settings.whatsapp_api_key = ""
settings.whatsapp_phone_number_id = ""
settings.best_effort_timeout_seconds = 2.0
settings.frontend_url = "http://shop.test"

CUSTOMER_ID = "cust-1"
OTHER_CUSTOMER_ID = "cust-2"


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create an in-memory SQLite database session for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    import db_models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    ASGI test client bound to the in-memory session.

    Overrides the get_db dependency; lifespan does not run.
    """
    from main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    await async_executor.drain()
    app.dependency_overrides.clear()


# ── Identity Fixtures ────────────────────────────────────────────────


@pytest.fixture
def customer_id() -> str:
    return CUSTOMER_ID


@pytest.fixture
def customer_identity() -> RequestIdentity:
    return RequestIdentity(subject=CUSTOMER_ID, role=Role.CUSTOMER)


@pytest.fixture
def other_customer_identity() -> RequestIdentity:
    return RequestIdentity(subject=OTHER_CUSTOMER_ID, role=Role.CUSTOMER)


@pytest.fixture
def admin_identity() -> RequestIdentity:
    return RequestIdentity(subject="ops", role=Role.ADMIN)


@pytest.fixture
def customer_headers() -> dict:
    return {"Authorization": f"Bearer {issue_access_token(subject=CUSTOMER_ID, role=Role.CUSTOMER)}"}


@pytest.fixture
def other_customer_headers() -> dict:
    return {"Authorization": f"Bearer {issue_access_token(subject=OTHER_CUSTOMER_ID, role=Role.CUSTOMER)}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {issue_access_token(subject='ops', role=Role.ADMIN)}"}


@pytest.fixture
def webhook_authorization() -> str:
    """Authorization header value PhonePe sends for the test credentials."""
    return hashlib.sha256(b"hook-user:hook-pass").hexdigest()


# ── Test Data Fixtures ───────────────────────────────────────────────


@pytest.fixture
def sample_items() -> list[dict]:
    return [{"productId": "saree-1", "name": "Banarasi Silk Saree", "price": 1499.0, "quantity": 1}]


@pytest.fixture
def sample_address() -> dict:
    return {
        "fullName": "Asha Rao",
        "phone": "9876543210",
        "address": "12 MG Road",
        "locality": "Indiranagar",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560038",
    }


@pytest.fixture
def make_order(db_session: AsyncSession, sample_items, sample_address):
    """
    Factory for committed orders with sequential order numbers (RM1001, ...).

    Extra keyword arguments are written straight onto the row afterwards,
    e.g. make_order(payment_status="paid").
    """
    numbers = itertools.count(1001)

    async def _make(
        *,
        customer_id: str = CUSTOMER_ID,
        payment_method: str = "phonepe",
        total: float = 1499.0,
        items: list[dict] | None = None,
        **values,
    ):
        order = await order_service.create_order(
            db_session,
            customer_id=customer_id,
            customer_email="asha@example.com",
            items=items or sample_items,
            shipping_address=dict(sample_address),
            subtotal=total,
            total=total,
            payment_method=payment_method,
            order_number=f"RM{next(numbers)}",
        )
        if values:
            order = await order_service.apply_conditional(db_session, order.id, [], values)
        await db_session.commit()
        return order

    return _make


# ── Upstream Fakes ───────────────────────────────────────────────────


class FakePhonePe:
    """
    In-process PhonePe: answers OAuth, checkout and status calls.

    `states` maps merchant order id → state the status API reports.
    """

    def __init__(self):
        self.states: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.unavailable = False

    def calls(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    @property
    def status_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/status")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/v1/oauth/token"):
            return httpx.Response(
                200, json={"access_token": "pp-token", "expires_at": int(time.time()) + 3600}
            )
        if self.unavailable:
            raise httpx.ConnectError("gateway unreachable", request=request)

        if path.endswith("/checkout/v2/pay"):
            body = json.loads(request.content)
            mid = body["merchantOrderId"]
            return httpx.Response(
                200,
                json={"orderId": f"OMO{mid}", "state": "PENDING", "redirectUrl": f"https://pay.test/{mid}"},
            )

        match = re.search(r"/checkout/v2/order/([^/]+)/status$", path)
        if match:
            mid = match.group(1)
            state = self.states.get(mid, "PENDING")
            return httpx.Response(
                200,
                json={
                    "orderId": f"OMO{mid}",
                    "state": state,
                    "amount": 149900,
                    "paymentDetails": [{"transactionId": f"TX{mid}", "state": state}],
                },
            )

        return httpx.Response(404, json={"message": "unknown route"})


class FakeShiprocket:
    """In-process Shiprocket with switchable failure modes per call."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.create_status = 200
        self.shipment_id: int | None = 7001
        self.awb_mode = "ok"  # ok | timeout | missing | error
        self.label_fails = False
        self.pickup_fails = False
        self.unauthorized_once = False
        self._ids = itertools.count(5001)

    def calls(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/auth/login"):
            return httpx.Response(200, json={"token": "sr-token"})

        if self.unauthorized_once:
            self.unauthorized_once = False
            return httpx.Response(401, json={"message": "Token expired"})

        if path.endswith("/orders/create/adhoc"):
            if self.create_status != 200:
                return httpx.Response(self.create_status, json={"message": "carrier error"})
            return httpx.Response(
                200,
                json={"order_id": next(self._ids), "shipment_id": self.shipment_id, "status": "NEW"},
            )

        if path.endswith("/courier/assign/awb"):
            if self.awb_mode == "timeout":
                raise httpx.ReadTimeout("courier assignment timed out", request=request)
            if self.awb_mode == "error":
                return httpx.Response(500, json={"message": "no courier"})
            data = {} if self.awb_mode == "missing" else {
                "awb_code": "AWB123456",
                "courier_company_id": 10,
                "courier_name": "Delhivery",
            }
            return httpx.Response(200, json={"awb_assign_status": 1, "response": {"data": data}})

        if path.endswith("/courier/generate/label"):
            if self.label_fails:
                return httpx.Response(500, json={"message": "label error"})
            return httpx.Response(200, json={"label_created": 1, "label_url": "https://labels.test/7001.pdf"})

        if path.endswith("/courier/generate/pickup"):
            if self.pickup_fails:
                return httpx.Response(500, json={"message": "pickup error"})
            return httpx.Response(200, json={"pickup_status": 1})

        return httpx.Response(404, json={"message": "unknown route"})


class FakeWhatsApp:
    def __init__(self):
        self.messages: list[dict] = []
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.messages.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={"messages": [{"id": "wamid.1"}]})


@pytest.fixture(autouse=True)
def _isolate_upstreams():
    """No real network, no token or rate-limit state shared between tests."""
    phonepe_service._transport = httpx.MockTransport(lambda r: httpx.Response(503))
    shiprocket_service._transport = httpx.MockTransport(lambda r: httpx.Response(503))
    whatsapp_service._transport = httpx.MockTransport(lambda r: httpx.Response(503))
    phonepe_service.reset_token_cache()
    shiprocket_service.reset_token_cache()
    _limiter.reset()
    yield
    phonepe_service._transport = None
    shiprocket_service._transport = None
    whatsapp_service._transport = None
    phonepe_service.reset_token_cache()
    shiprocket_service.reset_token_cache()


@pytest.fixture
def phonepe() -> FakePhonePe:
    fake = FakePhonePe()
    phonepe_service._transport = httpx.MockTransport(fake.handler)
    return fake


@pytest.fixture
def shiprocket() -> FakeShiprocket:
    fake = FakeShiprocket()
    shiprocket_service._transport = httpx.MockTransport(fake.handler)
    return fake


@pytest.fixture
def whatsapp(monkeypatch) -> FakeWhatsApp:
    fake = FakeWhatsApp()
    monkeypatch.setattr(settings, "whatsapp_api_key", "wa-key")
    monkeypatch.setattr(settings, "whatsapp_phone_number_id", "1234")
    whatsapp_service._transport = httpx.MockTransport(fake.handler)
    return fake
