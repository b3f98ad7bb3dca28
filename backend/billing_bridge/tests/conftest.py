"""Pytest configuration for billing bridge tests

WHAT: Provides shared fixtures for endpoint, reconciler and store tests
WHY: Ensures consistent test setup, database isolation, and a fake Razorpay API
REFERENCES:
    - billing_bridge/main.py: FastAPI application
    - billing_bridge/database.py: Database configuration
    - billing_bridge/deps.py: Settings and authentication dependencies
    - billing_bridge/billing/gateway.py: Razorpay client
"""

import json
import os
from typing import Callable, Dict, Generator, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend is in path
import sys
from pathlib import Path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "whsec_test_secret"
API_URL = "https://api.razorpay.test/v1"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine shared across threads."""
    from billing_bridge.database import Base, enable_sqlite_savepoints

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create test database session."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def store(test_db_session):
    from billing_bridge.store import RecordStore

    return RecordStore(test_db_session)


# ============================================================================
# Fake Razorpay API
# ============================================================================

class FakeRazorpayAPI:
    """Records requests and serves canned responses keyed by (method, path).

    Paths are relative to the API root, e.g. ("POST", "/orders").
    """

    def __init__(self):
        self.responses: Dict[Tuple[str, str], httpx.Response] = {}
        self.requests: List[httpx.Request] = []

    def respond(self, method: str, path: str, status_code: int = 200, json_body: Optional[dict] = None):
        self.responses[(method, path)] = httpx.Response(status_code, json=json_body or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.replace("/v1", "", 1)
        response = self.responses.get((request.method, path))
        if response is None:
            return httpx.Response(
                404,
                json={"error": {"code": "BAD_REQUEST_ERROR", "description": "The requested URL was not found on the server."}},
            )
        return response

    def calls(self, method: str, path: str) -> List[dict]:
        """JSON bodies of recorded calls to one endpoint."""
        return [
            json.loads(request.content or b"{}")
            for request in self.requests
            if request.method == method and request.url.path.replace("/v1", "", 1) == path
        ]

    def client(self):
        from billing_bridge.billing.gateway import RazorpayClient

        return RazorpayClient(KEY_ID, KEY_SECRET, base_url=API_URL, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def razorpay_api() -> FakeRazorpayAPI:
    return FakeRazorpayAPI()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    from billing_bridge.deps import Settings

    return Settings(
        RAZORPAY_KEY_ID=KEY_ID,
        RAZORPAY_KEY_SECRET=KEY_SECRET,
        RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET,
        RAZORPAY_API_URL=API_URL,
    )


@pytest.fixture
def app(test_db_session, test_settings, razorpay_api):
    """Create FastAPI test application."""
    from billing_bridge.main import create_app
    from billing_bridge.database import get_db
    from billing_bridge.deps import get_settings
    from billing_bridge.billing.gateway import get_razorpay_client

    test_app = create_app()

    # The session stays open for assertions after the request
    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_settings] = lambda: test_settings
    test_app.dependency_overrides[get_razorpay_client] = razorpay_api.client

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def test_user(test_db_session):
    """Create test user without a Razorpay customer."""
    from billing_bridge.models import User

    user = User(id="user-123", email="test@example.com", name="Test User")
    test_db_session.add(user)
    test_db_session.commit()
    test_db_session.refresh(user)
    return user


@pytest.fixture
def customer_user(test_db_session):
    """Create test user already mapped to a Razorpay customer."""
    from billing_bridge.models import User

    user = User(
        id="user-456",
        email="customer@example.com",
        name="Customer User",
        razorpay_customer_id="cust_456",
    )
    test_db_session.add(user)
    test_db_session.commit()
    test_db_session.refresh(user)
    return user


@pytest.fixture
def make_subscription(test_db_session):
    """Factory for Subscription rows."""
    from billing_bridge.models import Subscription, SubscriptionStatusEnum

    def _make(user_id: str, razorpay_subscription_id: str, status=SubscriptionStatusEnum.active, **kwargs):
        subscription = Subscription(
            user_id=user_id,
            razorpay_subscription_id=razorpay_subscription_id,
            status=status,
            **kwargs,
        )
        test_db_session.add(subscription)
        test_db_session.commit()
        test_db_session.refresh(subscription)
        return subscription

    return _make


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def auth_headers_for() -> Callable[[str], dict]:
    """Bearer headers for an internal user id."""
    from billing_bridge.security import create_access_token

    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture
def auth_headers(test_user, auth_headers_for):
    """Standard auth headers for test_user."""
    return auth_headers_for(test_user.id)


# ============================================================================
# Webhook Helpers
# ============================================================================

def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    from billing_bridge.billing.signature import compute_signature

    return compute_signature(body, secret)


def webhook_body(event: str, **entities) -> bytes:
    """Serialize a Razorpay webhook envelope: webhook_body("payment.captured", payment={...})."""
    payload = {kind: {"entity": entity} for kind, entity in entities.items()}
    return json.dumps({"entity": "event", "event": event, "payload": payload}).encode("utf-8")


@pytest.fixture
def post_webhook(client):
    """POST a signed webhook body and return the response."""

    def _post(body: bytes, signature: Optional[str] = None) -> httpx.Response:
        return client.post(
            "/razorpay/webhook",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Razorpay-Signature": signature if signature is not None else sign(body),
            },
        )

    return _post
