"""
Pytest fixtures for commerce backend tests.

Provides an in-memory app, per-test table wipe, users/products, a captured
notification feed and a scriptable payment verifier.
"""

from datetime import timedelta

import pytest

from commerce import create_app
from commerce.config import Config
from commerce.extensions import db
from commerce.models import Product, User
from commerce.models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_OUTLET
from commerce.services import notification_service, payment_verification, session_service
from commerce.services.auth_service import hash_password
from commerce.services.payment_verification import VerificationResult
from commerce.time_utils import utcnow


PASSWORD = "Password123"
# bcrypt is slow on purpose; hash once for every fixture user
PASSWORD_HASH = hash_password(PASSWORD)


class SuiteConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CONFLICT_RETRY_BACKOFF = 0.0
    RESTOCK_AUTO_APPROVE = False
    DEFAULT_REORDER_POINT = 5
    DEFAULT_CREDIT_LIMIT_CENTS = 0
    PAYSTACK_SECRET_KEY = "sk_test_secret"
    VERIFIED_PAYMENT_METHODS = frozenset({"paystack"})


class FakeVerifier:
    """Records calls; confirms a reference when it was registered with that exact amount."""

    def __init__(self):
        self.paid = {}
        self.calls = []

    def confirm(self, reference, amount_cents):
        self.paid[reference] = amount_cents

    def verify(self, reference, expected_amount_cents):
        self.calls.append((reference, expected_amount_cents))
        amount = self.paid.get(reference)
        return VerificationResult(
            verified=amount is not None and amount == expected_amount_cents,
            amount_cents=amount,
            provider_status="success" if amount is not None else "not_found",
            reference=reference,
        )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(SuiteConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifications(app):
    """Capture every published notification as (channel, event)."""
    received = []

    def _collect(channel, event):
        received.append((channel, event))

    notification_service.subscribe(_collect)
    yield received
    notification_service.unsubscribe(_collect)


@pytest.fixture(scope='function')
def verifier(app):
    fake = FakeVerifier()
    previous = app.extensions.get("commerce.payment_verifier")
    payment_verification.set_verifier(app, fake)
    yield fake
    if previous is None:
        app.extensions.pop("commerce.payment_verifier", None)
    else:
        payment_verification.set_verifier(app, previous)


def _make_user(db_session, username, role, **kwargs):
    user = User(
        username=username,
        email=f"{username}@example.com",
        name=kwargs.pop("name", username.title()),
        phone_number=kwargs.pop("phone_number", "0800000000"),
        role=role,
        password_hash=PASSWORD_HASH,
        **kwargs,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def outlet(db_session):
    return _make_user(db_session, "outlet_a", ROLE_OUTLET, store_name="Outlet A")


@pytest.fixture(scope='function')
def other_outlet(db_session):
    return _make_user(db_session, "outlet_b", ROLE_OUTLET, store_name="Outlet B")


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "customer", ROLE_CUSTOMER, credit_limit_cents=10000)


@pytest.fixture(scope='function')
def make_product(db_session, outlet):
    def _make(name="Rice 5kg", price_cents=1000, available_quantity=10, reorder_point=2, owner=None):
        product = Product(
            outlet_id=(owner or outlet).id,
            name=name,
            price_cents=price_cents,
            available_quantity=available_quantity,
            reorder_point=reorder_point,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def shipping():
    return {
        "address": "12 Market Road",
        "city": "Lagos",
        "state": "Lagos",
        "phone_number": "0800000000",
        "postal_code": "100001",
    }


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Bearer headers for a user, backed by a real session token."""
    def _headers(user):
        _, token = session_service.create_session(user)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope='function')
def past_due():
    return utcnow() - timedelta(days=3)


@pytest.fixture(scope='function')
def future_due():
    return utcnow() + timedelta(days=30)
