import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SQUARE_WEBHOOK_SIGNATURE_KEY", "")

import threading
from collections import Counter

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.init import get_db, init_db
from models.customer import Customer
from utils.deps import get_payment_source, get_policy, get_system_status
from utils.membership import MembershipPolicy
from utils.system_status import SystemStatus
from utils.upstream import UpstreamResult


class FakePaymentSource:
    """In-memory stand-in for SquarePaymentSource that counts calls."""

    def __init__(self):
        self.customers = {}      # id -> Square customer dict
        self.subscriptions = {}  # customer id -> [SubscriptionFact]
        self.payments = {}       # customer id -> [CashPaymentFact]
        self.failures = {}       # method name -> error string (returned as unavailable)
        self.raises = {}         # method name -> exception (raised)
        self.is_configured = True
        self.calls = Counter()
        self._lock = threading.Lock()

    def _enter(self, name):
        with self._lock:
            self.calls[name] += 1
        if name in self.raises:
            raise self.raises[name]
        if name in self.failures:
            return UpstreamResult.unavailable(self.failures[name])
        return None

    @property
    def total_calls(self):
        return sum(self.calls.values())

    def search_customer_by_phone(self, phone_number):
        failed = self._enter("search_customer_by_phone")
        if failed:
            return failed
        for customer in self.customers.values():
            if customer.get("phone_number") == phone_number:
                return UpstreamResult.ok(customer)
        return UpstreamResult.ok(None)

    def retrieve_customer(self, customer_id):
        failed = self._enter("retrieve_customer")
        if failed:
            return failed
        return UpstreamResult.ok(self.customers.get(customer_id))

    def list_customers(self):
        failed = self._enter("list_customers")
        if failed:
            return failed
        return UpstreamResult.ok(list(self.customers.values()))

    def fetch_subscriptions(self, customer_id):
        failed = self._enter("fetch_subscriptions")
        if failed:
            return failed
        return UpstreamResult.ok(list(self.subscriptions.get(customer_id, [])))

    def fetch_recent_payments(self, customer_id, since):
        failed = self._enter("fetch_recent_payments")
        if failed:
            return failed
        return UpstreamResult.ok([p for p in self.payments.get(customer_id, []) if p.created_at >= since])

    def test_connection(self):
        failed = self._enter("test_connection")
        if failed:
            return failed
        return UpstreamResult.ok([{"id": "LOC1", "name": "Main Gym"}])


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
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def source():
    return FakePaymentSource()


@pytest.fixture
def system_status():
    return SystemStatus()


@pytest.fixture
def policy():
    return MembershipPolicy()


@pytest.fixture
def add_customer(db):
    def _add(customer_id, name="", phone_number=None, membership_type="Unknown", next_payment=None):
        customer = Customer(
            id=customer_id,
            name=name,
            phone_number=phone_number,
            membership_type=membership_type,
            next_payment=next_payment,
        )
        db.add(customer)
        db.commit()
        return customer
    return _add


@pytest.fixture
def app(session_factory, source, system_status, policy):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_source] = lambda: source
    app.dependency_overrides[get_system_status] = lambda: system_status
    app.dependency_overrides[get_policy] = lambda: policy
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def anyio_backend():
    return "asyncio"
