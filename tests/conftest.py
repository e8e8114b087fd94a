import itertools
import json
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["NOTIFIER_BACKEND"] = "console"
os.environ["BYPASS_PHONE_VERIFICATION"] = "false"
os.environ["RAZORPAY_ENABLED"] = "true"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["UPI_ENABLED"] = "true"
os.environ["UPI_VIRTUAL_ADDRESS"] = "medverify@okaxis"
os.environ["UPI_MERCHANT_NAME"] = "MedVerify"
os.environ.pop("REDIS_URL", None)

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from medverify.api.v1 import auth as auth_routes
from medverify.api.v1 import payments as payment_routes
from medverify.core.rate_limit import SlidingWindowRateLimiter, _memory_store
from medverify.core.security import compute_hmac_sha256, create_access_token
from medverify.db.models import User
from medverify.db.session import SchemaCapabilities, get_session, init_db, schema_capabilities
from medverify.main import app
from medverify.services.auth_service import AuthService
from medverify.services.notification_service import NotificationResult
from medverify.services.otp_service import OtpService
from medverify.services.payment_gateways import RazorpayGateway, UpiGateway
from medverify.services.payment_service import PaymentService

RAZORPAY_SECRET = "rzp_test_secret"

FULL_APPOINTMENT = {
    "first_name": "Asha",
    "last_name": "Verma",
    "date_of_birth": "1990-04-12",
    "nationality": "Indian",
    "gender": "female",
    "marital_status": "single",
    "passport_number": "A1234567",
    "confirm_passport_number": "A1234567",
    "passport_issue_date": "2019-01-10",
    "passport_issue_place": "Mumbai",
    "passport_expiry_date": "2029-01-09",
    "visa_type": "employment",
    "email": "asha@example.com",
    "phone": "+919812345678",
    "country": "India",
    "country_traveling_to": "Saudi Arabia",
    "appointment_type": "employment_visa",
    "medical_center": "Al Noor Diagnostics",
    "appointment_date": "2026-11-20",
}


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, identifier: str, channel: str, payload: dict) -> NotificationResult:
        self.sent.append({"identifier": identifier, "channel": channel, "payload": payload})
        if self.fail:
            return NotificationResult(success=False)
        return NotificationResult(success=True, message_id=f"msg-{len(self.sent)}")

    def last_code(self, identifier: str) -> str:
        for message in reversed(self.sent):
            if message["identifier"] == identifier and message["payload"]["template"] == "otp":
                return message["payload"]["otp"]
        raise AssertionError(f"No OTP sent to {identifier}")


class FakeRazorpay:
    """Stands in for the Razorpay REST API."""

    def __init__(self):
        self.counter = itertools.count(1)
        self.orders = {}
        self.payments = {}
        self.requests = []
        self.fail_with = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"description": "upstream failure"}})
        if request.method == "POST" and request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            order = {
                "id": f"order_test{next(self.counter)}",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            }
            self.orders[order["id"]] = order
            return httpx.Response(200, json=order)
        if request.method == "GET" and "/payments/" in request.url.path:
            payment_id = request.url.path.rsplit("/", 1)[-1]
            payment = self.payments.get(payment_id, {"id": payment_id, "status": "captured"})
            return httpx.Response(200, json=payment)
        return httpx.Response(404, json={"error": {"description": "not found"}})

    def pay(self, order_id: str, payment_id: str) -> str:
        """Record a captured payment and return the checkout signature for it."""
        order = self.orders.get(order_id, {})
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": order_id,
            "amount": order.get("amount"),
            "currency": order.get("currency", "INR"),
            "status": "captured",
        }
        return sign(order_id, payment_id)


def sign(order_id: str, payment_id: str) -> str:
    return compute_hmac_sha256(RAZORPAY_SECRET, f"{order_id}|{payment_id}")


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_shared_state():
    _memory_store.reset()
    schema_capabilities.transaction_appointment_link = True
    yield
    _memory_store.reset()
    app.dependency_overrides.clear()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def rate_limiter():
    return SlidingWindowRateLimiter(_memory_store, limit=3, window_seconds=60)


@pytest.fixture
def capabilities():
    return SchemaCapabilities(transaction_appointment_link=True)


@pytest.fixture
def razorpay():
    return FakeRazorpay()


@pytest.fixture
def gateways(razorpay):
    return {
        "razorpay": RazorpayGateway(
            key_id="rzp_test_key",
            key_secret=RAZORPAY_SECRET,
            enabled=True,
            transport=httpx.MockTransport(razorpay.handler),
        ),
        "upi": UpiGateway(vpa="medverify@okaxis", merchant_name="MedVerify", enabled=True),
    }


@pytest.fixture
def payment_service_factory(gateways, notifier, capabilities):
    def build(session: AsyncSession) -> PaymentService:
        return PaymentService(session, gateways=gateways, notifier=notifier, capabilities=capabilities)
    return build


@pytest_asyncio.fixture
async def user(session):
    user = User(role="user", phone="+919812345678", name="Asha Verma")
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def client(session_factory, notifier, rate_limiter, payment_service_factory):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_auth_service(session: AsyncSession = Depends(get_session)):
        return AuthService(session, otp_service=OtpService(session, notifier=notifier, rate_limiter=rate_limiter))

    async def override_payment_service(session: AsyncSession = Depends(get_session)):
        return payment_service_factory(session)

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[auth_routes.get_auth_service] = override_auth_service
    app.dependency_overrides[payment_routes.get_payment_service] = override_payment_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "type": user.role})
    return {"Authorization": f"Bearer {token}"}
