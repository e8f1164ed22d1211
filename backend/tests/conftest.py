"""
Shared fixtures: an isolated in-memory database per test, a scripted
payment gateway, and factories for donations and subscriptions.
"""
import itertools
import os
import tempfile
from datetime import date, datetime

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "donation_core_test_logs"))
os.environ.setdefault("PUBLIC_BASE_URL", "https://donate.example.org")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from donation_core.database import get_db, init_db
from donation_core.main import app
from donation_core.models.subscription import Frequency
from donation_core.services.access import Actor, ADMIN, DONOR
from donation_core.services.gateway import (
    PaymentGateway, GatewayOrder, GatewayCapture, GatewayRefund, get_gateway,
)
from donation_core.services.payment_service import PaymentService, Donor
from donation_core.services.subscription_service import SubscriptionService


class FakeGateway(PaymentGateway):
    """Scripted gateway. Set an *_error attribute to make the next calls raise it."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.fee = 0
        self.signature_ok = True
        self.order_error = None
        self.capture_error = None
        self.recurring_error = None
        self.refund_error = None
        self.orders = []
        self.captures = []
        self.recurring = []
        self.refunds = []

    def create_order(self, amount, receipt, notes=None):
        if self.order_error:
            raise self.order_error
        order = GatewayOrder(order_id=f"order_{next(self._ids):06d}", amount=amount)
        self.orders.append(order)
        return order

    def capture_payment(self, payment_id, amount):
        if self.capture_error:
            raise self.capture_error
        self.captures.append((payment_id, amount))
        return GatewayCapture(payment_id=payment_id, fee=self.fee)

    def charge_recurring(self, order_id, amount, customer_id, token_id, email):
        if self.recurring_error:
            raise self.recurring_error
        self.recurring.append((order_id, amount))
        return GatewayCapture(payment_id=f"pay_rec_{next(self._ids):06d}", fee=self.fee)

    def refund_payment(self, payment_id, amount, notes=None):
        if self.refund_error:
            raise self.refund_error
        self.refunds.append((payment_id, amount))
        return GatewayRefund(refund_id=f"rfnd_{next(self._ids):06d}", amount=amount)

    def verify_payment_signature(self, order_id, payment_id, signature):
        return self.signature_ok

    def verify_webhook_signature(self, body, signature):
        return signature == "valid-signature"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=ADMIN, email="finance@hopefoundation.org")


@pytest.fixture
def donor_actor():
    return Actor(id="donor-1", role=DONOR, email="asha@example.com")


@pytest.fixture
def donor():
    return Donor(name="Asha Rao", email="asha@example.com", id="donor-1", pan="ABCPR1234F")


@pytest.fixture
def admin_headers():
    return {"x-actor-id": "admin-1", "x-actor-role": "admin", "x-actor-email": "finance@hopefoundation.org"}


@pytest.fixture
def donor_headers():
    return {"x-actor-id": "donor-1", "x-actor-role": "donor", "x-actor-email": "asha@example.com"}


@pytest.fixture
def make_payment(db, gateway, donor):
    """Create a donation; completed (with the given fee) unless complete=False."""
    def _make(amount=100000, fee=0, complete=True, completed_at=None, **overrides):
        payer = Donor(**{**donor.__dict__, **overrides.pop("donor", {})})
        payment = PaymentService.create_order(db, gateway, amount, payer, **overrides)
        if complete:
            payment = PaymentService.mark_completed(
                db, payment, f"pay_{payment.order_id}", fee,
                now=completed_at or datetime(2024, 6, 10, 9, 30),
            )
        return payment
    return _make


@pytest.fixture
def make_subscription(db, donor):
    def _make(amount=50000, frequency=Frequency.MONTHLY, start_date=date(2023, 12, 15), **kwargs):
        return SubscriptionService.create(db, donor, amount, frequency, start_date=start_date, **kwargs)
    return _make
