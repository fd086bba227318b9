import os
import tempfile
# Ensure the app factory picks the Testing config. File-backed SQLite so the
# background jobs (own app context, own session) see committed rows.
_DB_DIR = tempfile.mkdtemp(prefix="leaveratings-tests-")
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}")

import json
import pytest
import stripe
from leaveratings import create_app
from leaveratings.extensions import db
from leaveratings.models import Business, User
from leaveratings.services.billing import BillingProvider

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        STRIPE_WEBHOOK_SECRET="whsec_test_x",
        FREE_TIER_REVIEW_LIMIT=10,
        REVIEW_RETENTION_COUNT=3,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


# ---- helpers ----

def make_user(email="owner@example.com", status=None, subscription_id=None, customer_id=None):
    user = User(
        email=email,
        is_active=True,
        subscription_status=status,
        subscription_id=subscription_id,
        stripe_customer_id=customer_id,
    )
    user.set_password("pw-123456")
    db.session.add(user)
    db.session.commit()
    return user.id

def make_business(user_id, slug="joes-pizza", name="Joe's Pizza"):
    biz = Business(
        user_id=user_id,
        name=name,
        slug=slug,
        location="Austin, TX",
        keywords="pizza, delivery",
        google_review_link="https://g.page/r/joes",
    )
    db.session.add(biz)
    db.session.commit()
    return biz.id

def login(client, user_id):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True

def missing(message="No such object"):
    return stripe.InvalidRequestError(message, param="id", code="resource_missing")

def subscription_payload(sub_id="sub_1", customer="cus_1", status="active", start=1_700_000_000,
                         end=1_702_592_000, created=1_700_000_000, on_items=False, **extra):
    sub = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "created": created,
        "cancel_at": None,
        "cancel_at_period_end": False,
    }
    period = {"current_period_start": start, "current_period_end": end}
    if on_items:
        sub["items"] = {"data": [dict(period, id="si_1")]}
    elif start is not None and end is not None:
        sub.update(period)
    sub.update(extra)
    return sub


class FakeProvider(BillingProvider):
    """In-memory stand-in for Stripe, shaped like the real BillingProvider."""

    def __init__(self, subscriptions=None, customers=None, price_id="price_x"):
        super().__init__(None, price_id=price_id, base_url="http://example.test")
        self.subscriptions = {s["id"]: s for s in (subscriptions or [])}
        self.customers = dict(customers or {})
        self.canceled = []
        self.created_customers = []
        self.checkout_calls = []
        self.portal_calls = []
        self.fail_with = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def retrieve_subscription(self, subscription_id):
        self._maybe_fail()
        if subscription_id not in self.subscriptions:
            raise missing(f"No such subscription: '{subscription_id}'")
        return dict(self.subscriptions[subscription_id])

    def list_subscriptions(self, customer_id, limit=10):
        self._maybe_fail()
        subs = [dict(s) for s in self.subscriptions.values() if s.get("customer") == customer_id]
        subs.sort(key=lambda s: s.get("created") or 0, reverse=True)
        return subs[:limit]

    def cancel_at_period_end(self, subscription_id):
        self.canceled.append(subscription_id)
        self.subscriptions[subscription_id]["cancel_at_period_end"] = True
        return dict(self.subscriptions[subscription_id])

    def retrieve_customer(self, customer_id):
        self._maybe_fail()
        if customer_id not in self.customers:
            raise missing(f"No such customer: '{customer_id}'")
        return dict(self.customers[customer_id])

    def create_customer(self, email):
        customer_id = f"cus_new{len(self.created_customers) + 1}"
        self.customers[customer_id] = {"id": customer_id, "email": email}
        self.created_customers.append(customer_id)
        return customer_id

    def create_checkout_session(self, *, customer_id, user_id):
        self.checkout_calls.append((customer_id, user_id))
        return {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}

    def create_portal_session(self, *, customer_id, return_path="billing"):
        self.portal_calls.append((customer_id, return_path))
        return {"url": f"https://billing.stripe.test/{customer_id}"}


class FakeGenerator:
    def __init__(self, text="Great pizza and friendly staff. Highly recommend!"):
        self.text = text
        self.calls = []

    def generate(self, **kwargs):
        self.calls.append(kwargs)
        return self.text


@pytest.fixture()
def provider(app, monkeypatch):
    fake = FakeProvider()
    monkeypatch.setitem(app.extensions, "billing_provider", fake)
    return fake

@pytest.fixture()
def generator(app, monkeypatch):
    fake = FakeGenerator()
    monkeypatch.setitem(app.extensions, "review_generator", fake)
    return fake

@pytest.fixture()
def trusted_webhooks(monkeypatch):
    """Skip Stripe signature math; the payload is taken at face value."""
    def _fake_construct_event(payload, sig_header, secret):
        return json.loads(payload)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_fake_construct_event))

def post_event(client, event):
    return client.post(
        "/webhooks/stripe",
        data=json.dumps(event),
        headers={"Stripe-Signature": "t=1,v1=fake", "Content-Type": "application/json"},
    )
