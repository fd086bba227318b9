from dataclasses import dataclass
from typing import Dict, List, Optional
from flask import current_app
import stripe
from leaveratings.billing.entitlements import ACTIVE_STATUSES
from leaveratings.extensions import db
from leaveratings.models import User
from leaveratings.services.billing import BillingError, BillingProvider, is_resource_missing


@dataclass(frozen=True)
class CheckoutResult:
    url: str
    # "checkout" for a new purchase, "portal" when a subscription already exists
    kind: str
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        payload = {"url": self.url}
        if self.message:
            payload["message"] = self.message
        return payload


def collapse_duplicates(provider: BillingProvider, customer_id: str) -> List[dict]:
    """
    Keep one live subscription per customer.

    When a double-submitted checkout left several active/trialing
    subscriptions, the most recently created one is kept and the others are
    set to cancel at period end. Returns the live subscriptions, kept first.
    """
    live = [s for s in provider.list_subscriptions(customer_id) if s.get("status") in ACTIVE_STATUSES]
    live.sort(key=lambda s: s.get("created") or 0, reverse=True)
    for extra in live[1:]:
        if extra.get("cancel_at_period_end"):
            continue
        provider.cancel_at_period_end(extra["id"])
        current_app.logger.warning(
            "billing.duplicate_subscription.cancel_scheduled",
            extra={"stripe_customer_id": customer_id, "stripe_subscription_id": extra["id"], "kept": live[0]["id"]},
        )
    return live


def begin_checkout(user: User, provider: BillingProvider) -> CheckoutResult:
    """
    Route the account to Stripe: a new Checkout session, or the customer
    portal when a subscription is already live.
    """
    if not provider.price_id:
        raise BillingError("Price ID not configured", status_code=500)

    try:
        customer_id = provider.ensure_customer(email=user.email, customer_id=user.stripe_customer_id)
    except stripe.StripeError as exc:
        raise BillingError(
            "Failed to create checkout session",
            detail=getattr(exc, "user_message", None) or "Could not reach the billing provider. Please try again.",
        ) from exc
    if customer_id != user.stripe_customer_id:
        user.stripe_customer_id = customer_id
        db.session.commit()

    try:
        live = collapse_duplicates(provider, customer_id)
    except stripe.StripeError:
        # Checkout is still safe to offer; duplicates get collapsed next time
        current_app.logger.exception("billing.checkout.subscription_check_failed", extra={"user_id": user.id})
        live = []

    if live:
        try:
            portal = provider.create_portal_session(customer_id=customer_id)
        except stripe.StripeError as exc:
            raise BillingError(
                "You already have an active subscription",
                detail="Please manage your subscription from the billing page.",
                status_code=400,
            ) from exc
        return CheckoutResult(url=portal["url"], kind="portal", message="You already have an active subscription.")

    try:
        session = provider.create_checkout_session(customer_id=customer_id, user_id=user.id)
    except stripe.StripeError as exc:
        if is_resource_missing(exc):
            raise BillingError(
                "Customer account issue",
                detail="Please try again. If the problem persists, contact support.",
                status_code=400,
            ) from exc
        raise BillingError(
            "Failed to create checkout session",
            detail=getattr(exc, "user_message", None) or "An unexpected error occurred. Please try again.",
        ) from exc
    if not session.get("url"):
        raise BillingError("Failed to create checkout session", detail="Stripe returned no redirect URL.")
    return CheckoutResult(url=session["url"], kind="checkout")


def open_portal(user: User, provider: BillingProvider) -> str:
    if not user.stripe_customer_id:
        raise BillingError("Customer not found", status_code=404)
    try:
        provider.retrieve_customer(user.stripe_customer_id)
        portal = provider.create_portal_session(customer_id=user.stripe_customer_id, return_path="dashboard")
    except stripe.StripeError as exc:
        if is_resource_missing(exc):
            raise BillingError(
                "Customer account not found",
                detail="Please contact support to resolve this issue.",
                status_code=404,
            ) from exc
        raise BillingError(
            "Failed to create portal session",
            detail=getattr(exc, "user_message", None) or str(exc),
        ) from exc
    return portal["url"]
