import hashlib
import hmac
import json
import time
from calendar import timegm
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from faker import Faker
from flask_jwt_extended import create_access_token
from sqlalchemy import event

from subscription_service import create_app
from subscription_service.extensions import db
from subscription_service.models import BillingCycle, SubscriptionPlan, UserSubscription
from subscription_service.services.stripe_service import StripeService
from subscription_service.utils import utcnow
from subscription_service.webhooks import WebhookDispatcher

# Initialize Faker for generating test data
fake = Faker()

PRO_PRICE_ID = "price_pro_monthly"
BASIC_PRICE_ID = "price_basic_monthly"


# Custom pytest marks for organizing tests
def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "webhook: mark test as webhook reconciliation test"
    )
    config.addinivalue_line(
        "markers",
        "db: mark test as database-intensive"
    )
    config.addinivalue_line(
        "markers",
        "payment: mark test as payment-related"
    )


def _enable_sqlite_savepoints(engine):
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over
    # transaction control so begin_nested behaves like on PostgreSQL
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session")
def app():
    """Application with an in-memory database for the whole session"""
    app = create_app("testing")

    with app.app_context():
        _enable_sqlite_savepoints(db.engine)
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def clean_db(app):
    """Empty every table after each test"""
    yield
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions.pop("stripe_service", None)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def mock_stripe():
    """StripeService double; retrievals return None (unknown object) unless set"""
    service = MagicMock(spec=StripeService)
    service.retrieve_subscription.return_value = None
    service.retrieve_invoice.return_value = None
    service.retrieve_payment_intent.return_value = None
    return service


@pytest.fixture()
def dispatcher(mock_stripe):
    return WebhookDispatcher(mock_stripe)


@pytest.fixture()
def user_id():
    return fake.uuid4()


@pytest.fixture()
def pro_plan(app):
    plan = SubscriptionPlan(
        name="Pro",
        description="Pro monthly plan",
        billing_cycle=BillingCycle.MONTHLY.value,
        price=Decimal("39.99"),
        currency="USD",
        points_awarded=500,
        stripe_price_id=PRO_PRICE_ID,
        is_active=True,
    )
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture()
def basic_plan(app):
    plan = SubscriptionPlan(
        name="Basic",
        description="Basic monthly plan",
        billing_cycle=BillingCycle.MONTHLY.value,
        price=Decimal("9.99"),
        currency="USD",
        points_awarded=100,
        stripe_price_id=BASIC_PRICE_ID,
        is_active=True,
    )
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture()
def make_mirror():
    """Insert a UserSubscription row directly"""

    def _make(user_id, plan=None, status="ACTIVE", stripe_subscription_id=None, **fields):
        mirror = UserSubscription(
            user_id=user_id,
            plan=plan,
            status=status,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=fields.pop("stripe_customer_id", f"cus_{fake.lexify('????????')}"),
            start_date=fields.pop("start_date", utcnow() - timedelta(days=5)),
            end_date=fields.pop("end_date", utcnow() + timedelta(days=25)),
            auto_renew=fields.pop("auto_renew", True),
            **fields,
        )
        db.session.add(mirror)
        db.session.commit()
        return mirror

    return _make


# ==================== STRIPE OBJECT BUILDERS ====================

def epoch(dt):
    """Naive UTC datetime to Stripe epoch seconds"""
    return timegm(dt.utctimetuple())


def subscription_object(
    sub_id=None,
    status="active",
    customer="cus_test",
    user_id=None,
    price_id=PRO_PRICE_ID,
    period_start=None,
    period_end=None,
    cancel_at_period_end=False,
):
    period_start = period_start or utcnow().replace(microsecond=0)
    period_end = period_end or period_start + timedelta(days=30)
    return {
        "id": sub_id or f"sub_{fake.lexify('??????????')}",
        "object": "subscription",
        "status": status,
        "customer": customer,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": epoch(period_start),
        "current_period_end": epoch(period_end),
        "metadata": {"userId": user_id} if user_id else {},
        "items": {
            "object": "list",
            "data": [{"id": f"si_{fake.lexify('??????')}", "price": {"id": price_id, "object": "price"}}],
        },
    }


def invoice_object(
    invoice_id=None,
    subscription_id=None,
    amount_paid=3999,
    billing_reason="subscription_create",
    payment_intent=None,
    customer="cus_test",
    currency="usd",
):
    return {
        "id": invoice_id or f"in_{fake.lexify('??????????')}",
        "object": "invoice",
        "subscription": subscription_id,
        "customer": customer,
        "amount_paid": amount_paid,
        "amount_due": amount_paid,
        "currency": currency,
        "billing_reason": billing_reason,
        "payment_intent": payment_intent,
    }


def payment_intent_object(pi_id=None, status="succeeded", amount=3999, user_id=None, error_message=None):
    return {
        "id": pi_id or f"pi_{fake.lexify('??????????')}",
        "object": "payment_intent",
        "status": status,
        "amount": amount,
        "currency": "usd",
        "metadata": {"userId": user_id} if user_id else {},
        "last_payment_error": {"message": error_message} if error_message else None,
    }


def envelope(event_type, obj, event_id=None):
    return {
        "id": event_id or f"evt_{fake.lexify('????????????')}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture()
def stripe_objects():
    return SimpleNamespace(
        subscription=subscription_object,
        invoice=invoice_object,
        payment_intent=payment_intent_object,
        envelope=envelope,
    )


# ==================== WEBHOOK SIGNING ====================

def sign_payload(payload, secret, timestamp=None):
    """Stripe-Signature header for ``payload`` using the v1 scheme"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture()
def signed_webhook(app, client):
    """POST a signed envelope to the Stripe webhook endpoint"""

    def _post(body, secret=None, header=None):
        payload = json.dumps(body).encode() if not isinstance(body, bytes) else body
        if header is None:
            header = sign_payload(payload, secret or app.config["STRIPE_WEBHOOK_SECRET"])
        headers = {"Content-Type": "application/json"}
        if header:
            headers["Stripe-Signature"] = header
        return client.post("/api/v1/webhooks/stripe", data=payload, headers=headers)

    return _post


# ==================== AUTH ====================

@pytest.fixture()
def auth_headers(app):
    def _headers(user_id, email=None):
        token = create_access_token(identity=str(user_id), additional_claims={"email": email or fake.email()})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def redis_lock_client(monkeypatch):
    """Redis double whose locks are always free"""
    client = MagicMock()
    client.lock.return_value.acquire.return_value = True
    monkeypatch.setattr("subscription_service.locks.get_redis_client", lambda: client)
    return client
