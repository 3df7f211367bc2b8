"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import time
from decimal import Decimal
from typing import Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sellify.core.config import settings
from sellify.db.session import get_db
from sellify.main import app
from sellify.models import Base
from sellify.models.checkout_page import CheckoutPage
from sellify.models.payment import Payment, PaymentStatus
from sellify.models.submission import Submission, SubmissionPaymentStatus
from sellify.models.user import User

WEBHOOK_SECRET = "whsec_test_secret"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

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
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client bound to the test database"""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


# ============================================================================
# RECORDS
# ============================================================================

def make_user(db_session: Session, email: str, **kwargs) -> User:
    user = User(name=kwargs.pop("name", "Test Seller"), email=email, **kwargs)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Seller with a connected (real-looking) Stripe account"""
    return make_user(db_session, "seller@example.com", stripe_account_id="acct_test123")


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    """Second seller for ownership tests"""
    return make_user(db_session, "other@example.com", stripe_account_id="acct_other456")


@pytest.fixture(scope="function")
def test_page(db_session: Session, test_user: User) -> CheckoutPage:
    page = CheckoutPage(
        user_id=test_user.id,
        slug="ebook-launch",
        title="Ebook Launch",
        product_name="The Ebook",
        description="A very good ebook",
        price=Decimal("19.99"),
        currency="usd",
        fields=[
            {"label": "Full name", "type": "text", "required": True},
            {"label": "Email", "type": "email", "required": True},
        ],
        order_bumps=[{"title": "Audio version", "price": "5.00", "recurring": False}],
    )
    db_session.add(page)
    db_session.commit()
    db_session.refresh(page)
    return page


@pytest.fixture(scope="function")
def test_submission(db_session: Session, test_page: CheckoutPage) -> Submission:
    submission = Submission(
        page_id=test_page.id,
        form_data={"Full name": "Ada Buyer", "Email": "ada@example.com"},
        payment_status=SubmissionPaymentStatus.PENDING.value,
        customer_email="ada@example.com",
    )
    db_session.add(submission)
    db_session.commit()
    db_session.refresh(submission)
    return submission


@pytest.fixture(scope="function")
def test_payment(db_session: Session, test_user: User, test_page: CheckoutPage, test_submission: Submission) -> Payment:
    """Pending payment for checkout session cs_test_1, linked to a submission"""
    payment = Payment(
        user_id=test_user.id,
        page_id=test_page.id,
        submission_id=test_submission.id,
        reference="ref_test_1",
        stripe_session_id="cs_test_1",
        stripe_account_id=test_user.stripe_account_id,
        amount=2499,
        currency="usd",
        application_fee_amount=125,
        status=PaymentStatus.PENDING.value,
        stripe_metadata={"reference": "ref_test_1"},
    )
    db_session.add(payment)
    db_session.commit()
    db_session.refresh(payment)
    return payment

# ============================================================================
# AUTH
# ============================================================================

def make_token(user_id, secret: str = "test-jwt-secret", **claims) -> str:
    return jwt.encode({"id": user_id, **claims}, secret, algorithm="HS256")


@pytest.fixture(scope="function")
def auth_headers(test_user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(test_user.id)}"}


@pytest.fixture(scope="function")
def other_auth_headers(other_user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(other_user.id)}"}

# ============================================================================
# WEBHOOKS
# ============================================================================

def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the same way Stripe does"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_id: str, event_type: str, obj: dict) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "api_version": "2024-06-20",
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }


@pytest.fixture(scope="function")
def send_webhook(client: TestClient):
    """Post a signed Stripe event to the webhook endpoint"""
    assert settings.STRIPE_WEBHOOK_SECRET == WEBHOOK_SECRET

    def _send(event: dict, signature: str = None):
        payload = json.dumps(event)
        return client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={
                "Stripe-Signature": signature or sign_payload(payload),
                "Content-Type": "application/json",
            },
        )

    return _send
