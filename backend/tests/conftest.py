import json
import os
import tempfile
from datetime import date

_TMP_DIR = tempfile.mkdtemp(prefix="investor_payments_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["LOG_DIR"] = os.path.join(_TMP_DIR, "logs")
os.environ["CASHFREE_CLIENT_ID"] = "test-client-id"
os.environ["CASHFREE_SECRET_KEY"] = "test-secret-key"
os.environ["CASHFREE_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["CASHFREE_ENVIRONMENT"] = "sandbox"
os.environ["GATEWAY_BACKOFF_SECONDS"] = "0"
os.environ["SYNC_DELAY_SECONDS"] = "0"
os.environ["NOTIFICATIONS_ENABLED"] = "false"

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from investor_payments.database import Base, SessionLocal, engine, init_db  # noqa: E402
from investor_payments.main import app as fastapi_app  # noqa: E402
from investor_payments.services.gateway_client import CashfreeClient, get_gateway_client  # noqa: E402
from investor_payments.services.transaction_store import TransactionStore  # noqa: E402
from investor_payments.utils.rate_limiter import reset_rate_limits  # noqa: E402


class FakeCashfree:
    """httpx MockTransport handler standing in for the Cashfree PG API.

    Responses are queued per (method, path); the last queued response for a
    route is reused once the queue is down to it. Unknown routes answer 404.
    """

    def __init__(self):
        self.requests = []
        self._routes = {}

    def add(self, method, path, json_body=None, status=200):
        self._routes.setdefault((method.upper(), path), []).append((status, json_body))

    def fail(self, method, path, exc):
        self._routes.setdefault((method.upper(), path), []).append(exc)

    def calls(self, method=None, path=None):
        return [
            r for r in self.requests
            if (method is None or r.method == method.upper())
            and (path is None or self._path(r) == path)
        ]

    @staticmethod
    def _path(request):
        path = request.url.path
        return path[len("/pg"):] if path.startswith("/pg") else path

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, self._path(request)))
        if not queue:
            return httpx.Response(404, json={"message": "resource not found", "code": "not_found"})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        status, body = entry
        return httpx.Response(status, json=body if body is not None else {})

    @staticmethod
    def body(request):
        return json.loads(request.content.decode("utf-8"))


@pytest.fixture(autouse=True)
def setup_db():
    init_db()
    reset_rate_limits()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeCashfree()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def cashfree(gateway, sleeps):
    cf = CashfreeClient(transport=httpx.MockTransport(gateway), sleep=sleeps.append)
    yield cf
    cf.close()


@pytest.fixture
def client(cashfree):
    def _override_gateway():
        yield cashfree

    fastapi_app.dependency_overrides[get_gateway_client] = _override_gateway
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_sip(db):
    """Store a SIP row directly, bypassing the gateway."""
    counter = {"n": 0}

    def _make(status="ACTIVE", **overrides):
        counter["n"] += 1
        fields = dict(
            order_id=f"SUB_qode_test_{counter['n']}",
            client_id="CL001",
            nuvama_code="NUV123",
            client_name="Asha Rao",
            amount=5000,
            currency="INR",
            payment_type="SIP",
            payment_status=status,
            cf_subscription_id=f"cf_sub_{counter['n']}",
            account_number="123456789012",
            ifsc_code="HDFC0001234",
            frequency="monthly",
            start_date=date(2025, 1, 1),
        )
        fields.update(overrides)
        return TransactionStore.create(db, **fields)

    return _make


@pytest.fixture
def make_order(db):
    counter = {"n": 0}

    def _make(status="ACTIVE", **overrides):
        counter["n"] += 1
        fields = dict(
            order_id=f"qode_test_{counter['n']}",
            client_id="CL001",
            nuvama_code="NUV123",
            client_name="Asha Rao",
            customer_email="asha@example.com",
            customer_phone="9876543210",
            amount=2500,
            currency="INR",
            payment_type="ONE_TIME",
            payment_status=status,
            cf_order_id=f"cf_order_{counter['n']}",
            account_number="123456789012",
            ifsc_code="HDFC0001234",
        )
        fields.update(overrides)
        return TransactionStore.create(db, **fields)

    return _make
