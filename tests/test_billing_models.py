import pytest
from sqlalchemy.exc import IntegrityError
from leaveratings.extensions import db
from leaveratings.models import BillingEventLog, Subscription, UsagePeriod, User
from conftest import make_user

def test_stripe_customer_id_is_unique(app):
    with app.app_context():
        make_user("a@example.com", customer_id="cus_123")

        u2 = User(email="b@example.com", stripe_customer_id="cus_123")
        u2.set_password("x")
        db.session.add(u2)
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

def test_subscription_pair_check_rejects_status_without_id(app):
    with app.app_context():
        u = User(email="half@example.com", subscription_status="active", subscription_id=None)
        u.set_password("x")
        db.session.add(u)
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

def test_subscription_pair_check_rejects_inactive_status(app):
    with app.app_context():
        u = User(email="pastdue@example.com", subscription_status="past_due", subscription_id="sub_1")
        u.set_password("x")
        db.session.add(u)
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

def test_subscription_pair_check_accepts_trialing_pair(app):
    with app.app_context():
        uid = make_user("trial@example.com", status="trialing", subscription_id="sub_t")
        assert db.session.get(User, uid).subscription_id == "sub_t"

def test_usage_period_unique_per_user_and_month(app):
    with app.app_context():
        uid = make_user()
        db.session.add(UsagePeriod(user_id=uid, period="2026-01", count=1))
        db.session.commit()

        db.session.add(UsagePeriod(user_id=uid, period="2026-01", count=1))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

def test_subscription_stripe_id_unique(app):
    with app.app_context():
        uid = make_user()
        db.session.add(Subscription(user_id=uid, stripe_subscription_id="sub_dup", status="active"))
        db.session.commit()

        db.session.add(Subscription(user_id=uid, stripe_subscription_id="sub_dup", status="canceled"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

def test_billing_event_id_unique(app):
    with app.app_context():
        db.session.add(BillingEventLog(stripe_event_id="evt_1", type="x", payload={}))
        db.session.commit()

        db.session.add(BillingEventLog(stripe_event_id="evt_1", type="x", payload={}))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
