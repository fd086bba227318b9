from flask import Blueprint, current_app, jsonify
from flask_login import login_required, current_user
from leaveratings.billing.checkout import begin_checkout, open_portal
from leaveratings.billing.refresh import refresh_entitlement
from leaveratings.extensions import limiter
from leaveratings.services.billing import BillingError, get_billing_provider

billing_bp = Blueprint("billing", __name__)


@billing_bp.errorhandler(BillingError)
def _billing_error(e: BillingError):
    return jsonify(e.to_dict()), e.status_code


@billing_bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    """
    New Checkout session, or the portal when a subscription is already live.
    Always JSON: {"url": ...} (+ "message" for the portal case).
    """
    provider = get_billing_provider()
    try:
        result = begin_checkout(current_user._get_current_object(), provider)
    except BillingError:
        current_app.logger.exception(
            "billing.checkout.session_create_failed", extra={"user_id": current_user.id}
        )
        raise
    return jsonify(result.to_dict())


@billing_bp.get("/portal")
@limiter.limit("10/minute")
@login_required
def portal():
    provider = get_billing_provider()
    try:
        url = open_portal(current_user._get_current_object(), provider)
    except BillingError:
        current_app.logger.exception(
            "billing.portal.session_create_failed", extra={"user_id": current_user.id}
        )
        raise
    return jsonify({"url": url})


@billing_bp.get("/status")
@login_required
def status():
    """Subscription state for the billing page, refreshed from Stripe when it matters."""
    snapshot = refresh_entitlement(current_user.id, current_app.extensions.get("billing_provider"))
    return jsonify(snapshot.to_dict())
