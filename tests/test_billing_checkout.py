import stripe
from leaveratings.extensions import db
from leaveratings.models import User
from conftest import login, make_user, subscription_payload

def test_checkout_requires_login(client, provider):
    resp = client.post("/billing/checkout")
    assert resp.status_code == 401

def test_checkout_creates_customer_and_session(app, client, provider):
    with app.app_context():
        uid = make_user("buyer@example.com")
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 200
    assert resp.get_json() == {"url": "https://checkout.stripe.test/cs_1"}
    assert provider.created_customers == ["cus_new1"]
    assert provider.checkout_calls == [("cus_new1", uid)]

    with app.app_context():
        assert db.session.get(User, uid).stripe_customer_id == "cus_new1"

def test_checkout_recreates_customer_deleted_in_stripe(app, client, provider):
    with app.app_context():
        uid = make_user(customer_id="cus_gone")
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 200
    assert provider.created_customers == ["cus_new1"]
    with app.app_context():
        assert db.session.get(User, uid).stripe_customer_id == "cus_new1"

def test_checkout_with_live_subscription_returns_portal(app, client, provider):
    provider.customers["cus_1"] = {"id": "cus_1", "email": "owner@example.com"}
    provider.subscriptions["sub_1"] = subscription_payload()
    with app.app_context():
        uid = make_user(customer_id="cus_1")
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["url"] == "https://billing.stripe.test/cus_1"
    assert body["message"] == "You already have an active subscription."
    assert provider.checkout_calls == []

def test_checkout_collapses_duplicate_subscriptions(app, client, provider):
    provider.customers["cus_1"] = {"id": "cus_1", "email": "owner@example.com"}
    provider.subscriptions["sub_old"] = subscription_payload(sub_id="sub_old", created=1_700_000_000)
    provider.subscriptions["sub_new"] = subscription_payload(sub_id="sub_new", created=1_700_100_000)
    with app.app_context():
        uid = make_user(customer_id="cus_1")
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 200
    assert provider.canceled == ["sub_old"]

    # a second attempt does not re-cancel
    client.post("/billing/checkout")
    assert provider.canceled == ["sub_old"]

def test_checkout_without_price_is_server_error(app, client, provider):
    provider.price_id = None
    with app.app_context():
        uid = make_user()
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 500
    assert resp.get_json()["error"] == "Price ID not configured"

def test_checkout_provider_outage_is_json_error(app, client, provider):
    provider.fail_with = stripe.APIConnectionError("network down")
    with app.app_context():
        uid = make_user(customer_id="cus_1")
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 502
    assert resp.get_json()["error"] == "Failed to create checkout session"

def test_checkout_when_billing_not_configured(app, client, monkeypatch):
    monkeypatch.setitem(app.extensions, "billing_provider", None)
    with app.app_context():
        uid = make_user()
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 503

def test_portal_needs_customer(app, client, provider):
    with app.app_context():
        uid = make_user()
    login(client, uid)

    resp = client.get("/billing/portal")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Customer not found"

def test_portal_for_customer_missing_in_stripe(app, client, provider):
    with app.app_context():
        uid = make_user(customer_id="cus_gone")
    login(client, uid)

    resp = client.get("/billing/portal")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Customer account not found"

def test_portal_returns_url(app, client, provider):
    provider.customers["cus_1"] = {"id": "cus_1", "email": "owner@example.com"}
    with app.app_context():
        uid = make_user(customer_id="cus_1")
    login(client, uid)

    resp = client.get("/billing/portal")
    assert resp.status_code == 200
    assert resp.get_json() == {"url": "https://billing.stripe.test/cus_1"}
    assert provider.portal_calls == [("cus_1", "dashboard")]
