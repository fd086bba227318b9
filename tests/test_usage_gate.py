from sqlalchemy.exc import OperationalError
from leaveratings.extensions import db
from leaveratings.models import UsagePeriod
from leaveratings.services import usage
from leaveratings.services.usage import can_perform_action, get_usage_summary, total_usage
from conftest import make_business, make_user

def _seed_usage(user_id, periods):
    for period, count in periods.items():
        db.session.add(UsagePeriod(user_id=user_id, period=period, count=count))
    db.session.commit()

def test_no_owner_is_never_gated(app):
    with app.app_context():
        assert can_perform_action(None) is True

def test_fresh_account_is_allowed(app):
    with app.app_context():
        uid = make_user()
        assert can_perform_action(uid) is True
        assert total_usage(uid) == 0

def test_usage_sums_across_periods(app):
    with app.app_context():
        uid = make_user()
        _seed_usage(uid, {"2026-01": 4, "2026-02": 3, "2026-03": 2})
        assert total_usage(uid) == 9
        assert can_perform_action(uid) is True

        _seed_usage(uid, {"2026-04": 1})
        assert total_usage(uid) == 10
        # lifetime ceiling, not per month
        assert can_perform_action(uid) is False

def test_active_subscription_is_unlimited(app):
    with app.app_context():
        uid = make_user(status="active", subscription_id="sub_1")
        _seed_usage(uid, {"2026-01": 250})
        assert can_perform_action(uid) is True

        summary = get_usage_summary(uid)
        assert summary.limit is None
        assert summary.to_dict() == {"current_usage": 250, "limit": None, "has_active_subscription": True}

def test_trialing_is_still_metered(app):
    with app.app_context():
        uid = make_user(status="trialing", subscription_id="sub_t")
        _seed_usage(uid, {"2026-01": 10})
        assert can_perform_action(uid) is False
        assert get_usage_summary(uid).limit == 10

def test_gate_reads_configured_ceiling(app):
    with app.app_context():
        uid = make_user()
        _seed_usage(uid, {"2026-01": 3})
        app.config["FREE_TIER_REVIEW_LIMIT"] = 3
        try:
            assert can_perform_action(uid) is False
        finally:
            app.config["FREE_TIER_REVIEW_LIMIT"] = 10

def test_gate_fails_open_when_ledger_read_fails(app, monkeypatch):
    with app.app_context():
        uid = make_user()
        _seed_usage(uid, {"2026-01": 50})

        def _boom(user_id):
            raise OperationalError("SELECT", {}, Exception("db down"))
        monkeypatch.setattr(usage, "total_usage", _boom)
        assert can_perform_action(uid) is True

def test_gate_does_not_reserve_a_slot(app):
    with app.app_context():
        uid = make_user()
        for _ in range(5):
            assert can_perform_action(uid) is True
        assert total_usage(uid) == 0

def test_generate_until_limit_then_403(app, client, generator):
    app.config["FREE_TIER_REVIEW_LIMIT"] = 2
    try:
        with app.app_context():
            uid = make_user()
            make_business(uid)

        for _ in range(2):
            resp = client.post("/api/reviews/generate", json={"business_slug": "joes-pizza", "rating": 4})
            assert resp.status_code == 200
            assert resp.get_json() == {"success": True, "review": generator.text}

        resp = client.post("/api/reviews/generate", json={"business_slug": "joes-pizza", "rating": 4})
        assert resp.status_code == 403
        body = resp.get_json()
        assert body["error"] == "limit_reached"
        assert body["limit"] == 2
        assert body["current_usage"] == 2
        assert len(generator.calls) == 2
    finally:
        app.config["FREE_TIER_REVIEW_LIMIT"] = 10

def test_subscribed_owner_is_not_stopped(app, client, generator):
    with app.app_context():
        uid = make_user(status="active", subscription_id="sub_1")
        make_business(uid)
        _seed_usage(uid, {"2026-01": 99})

    resp = client.post("/api/reviews/generate", json={"business_slug": "joes-pizza", "rating": 3})
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True
