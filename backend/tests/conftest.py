"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import secrets
import time
from decimal import Decimal
from types import SimpleNamespace
from typing import Generator
from unittest.mock import Mock, patch

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ORDER_EXPIRY_INTERVAL_SECONDS", "0")
os.environ.setdefault("CHAPA_WEBHOOK_SECRET", "test_chapa_webhook_secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ethioshop.db import redis as redis_module
from ethioshop.db.session import get_db
from ethioshop.main import app
from ethioshop.models import Base
from ethioshop.models.product import Product
from ethioshop.models.status import UserRole
from ethioshop.models.user import User
from ethioshop.services.audit_service import RequestOrigin
from ethioshop.services.order_service import AddressData, CartLine, create_order
from ethioshop.services.payments.chapa import ChapaGateway
from ethioshop.services.payments.stripe_gateway import StripeGateway

CHAPA_WEBHOOK_SECRET = "test_chapa_webhook_secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
CHAPA_BASE_URL = "https://api.chapa.co/v1"
FRONTEND_URL = "http://localhost:3000"


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


# ============================================================================
# PAYMENT PROVIDER DOUBLES
# ============================================================================

class FakeChapaApi:
    """Answers like the Chapa REST API and records what it was sent"""

    def __init__(self):
        self.requests = []
        self.verify_status = "success"
        self.initialize_response = None  # (status_code, json) override

    @property
    def initialize_bodies(self):
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith("/transaction/initialize")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/transaction/initialize"):
            if self.initialize_response:
                status_code, body = self.initialize_response
                return httpx.Response(status_code, json=body)
            tx_ref = json.loads(request.content)["tx_ref"]
            return httpx.Response(200, json={
                "status": "success",
                "message": "Hosted Link",
                "data": {"checkout_url": f"https://checkout.chapa.co/checkout/payment/{tx_ref}"},
            })

        if "/transaction/verify/" in path:
            tx_ref = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={
                "status": "success",
                "message": "Payment details",
                "data": {
                    "tx_ref": tx_ref,
                    "status": self.verify_status,
                    "amount": "103500",
                    "currency": "ETB",
                    "reference": "AP8xYz",
                },
            })

        return httpx.Response(404, json={"status": "failed", "message": "Not found"})


@pytest.fixture
def chapa_api() -> FakeChapaApi:
    return FakeChapaApi()


@pytest.fixture
def chapa_gateway(chapa_api: FakeChapaApi) -> ChapaGateway:
    http_client = httpx.Client(base_url=CHAPA_BASE_URL, transport=httpx.MockTransport(chapa_api.handler))
    gateway = ChapaGateway(
        secret_key="CHASECK_TEST-abc123",
        webhook_secret=CHAPA_WEBHOOK_SECRET,
        callback_url="http://testserver/api/payments/chapa/webhook",
        return_url=f"{FRONTEND_URL}/checkout/success?order_id={{order_id}}",
        http_client=http_client,
    )
    yield gateway
    http_client.close()


@pytest.fixture
def stripe_client() -> Mock:
    """Stands in for stripe.StripeClient; session objects are plain namespaces"""
    client = Mock()
    client.checkout.sessions.create.return_value = SimpleNamespace(
        id="cs_test_a1b2c3",
        url="https://checkout.stripe.com/c/pay/cs_test_a1b2c3",
    )
    client.checkout.sessions.retrieve.return_value = SimpleNamespace(
        id="cs_test_a1b2c3",
        payment_status="paid",
        status="complete",
        amount_total=2300,
        currency="usd",
        payment_intent="pi_test_123",
    )
    return client


@pytest.fixture
def stripe_gateway(stripe_client: Mock) -> StripeGateway:
    return StripeGateway(client=stripe_client, webhook_secret=STRIPE_WEBHOOK_SECRET, frontend_url=FRONTEND_URL)


@pytest.fixture
def gateways(chapa_gateway, stripe_gateway):
    return {"chapa": chapa_gateway, "stripe": stripe_gateway}


@pytest.fixture
def sign_chapa():
    """Signature header for a Chapa webhook body"""
    def _sign(payload: bytes, secret: str = CHAPA_WEBHOOK_SECRET) -> dict:
        signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return {"x-chapa-signature": signature}
    return _sign


@pytest.fixture
def sign_stripe():
    """Stripe-Signature header for a webhook body (t=<ts>,v1=<hmac>)"""
    def _sign(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET) -> dict:
        timestamp = int(time.time())
        signed = f"{timestamp}.{payload.decode()}".encode()
        signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return {"stripe-signature": f"t={timestamp},v1={signature}"}
    return _sign


# ============================================================================
# DATA FIXTURES
# ============================================================================

@pytest.fixture
def customer(db_session: Session) -> User:
    user = User(email="abebe@example.com", name="Abebe Kebede", role=UserRole.CUSTOMER.value)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def other_customer(db_session: Session) -> User:
    user = User(email="tigist@example.com", name="Tigist Alemu", role=UserRole.CUSTOMER.value)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session: Session) -> User:
    user = User(email="admin@ethioshop.et", name="Shop Admin", role=UserRole.ADMIN.value)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def product(db_session: Session) -> Product:
    item = Product(
        name="Habesha Kemis",
        name_am="የሐበሻ ቀሚስ",
        slug="habesha-kemis",
        description="Handwoven cotton dress",
        price=Decimal("450.00"),
        stock=10,
        is_active=True,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def second_product(db_session: Session) -> Product:
    item = Product(
        name="Jebena Coffee Pot",
        slug="jebena-coffee-pot",
        description="Clay coffee pot",
        price=Decimal("120.00"),
        stock=5,
        is_active=True,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def inactive_product(db_session: Session) -> Product:
    item = Product(name="Retired Mesob", slug="retired-mesob", price=Decimal("900.00"), stock=3, is_active=False)
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def address() -> AddressData:
    return AddressData(
        first_name="Abebe",
        last_name="Kebede",
        email="abebe@example.com",
        phone="+251911234567",
        address1="Bole Road, House 12",
        city="Addis Ababa",
        region="Addis Ababa",
    )


@pytest.fixture
def address_payload() -> dict:
    return {
        "firstName": "Abebe",
        "lastName": "Kebede",
        "email": "abebe@example.com",
        "phone": "+251911234567",
        "address1": "Bole Road, House 12",
        "city": "Addis Ababa",
        "region": "Addis Ababa",
    }


@pytest.fixture
def origin(customer: User) -> RequestOrigin:
    return RequestOrigin(actor=f"user:{customer.id}", user_id=customer.id, ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def place_order(db_session: Session, customer: User, address: AddressData, origin: RequestOrigin):
    """Create a PENDING order through the service"""
    def _place(product: Product, quantity: int = 2, currency: str = "ETB", user: User = None):
        owner = user or customer
        return create_order(
            user_id=owner.id,
            lines=[CartLine(product_id=product.id, quantity=quantity, unit_price=product.price)],
            shipping=address,
            billing=address,
            currency=currency,
            origin=RequestOrigin(actor=f"user:{owner.id}", user_id=owner.id) if user else origin,
            db=db_session,
        )
    return _place


# ============================================================================
# HTTP CLIENT
# ============================================================================

@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, gateways) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and stubbed providers"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.state.gateways = gateways

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        del app.state.gateways


@pytest.fixture
def login(client: TestClient, mock_redis):
    """Attach a session cookie for ``user`` to the test client"""
    def _login(user: User) -> str:
        session_id = secrets.token_urlsafe(32)
        redis_module.set_session(session_id, user.id)
        client.cookies.set("session_id", session_id)
        return session_id
    return _login
