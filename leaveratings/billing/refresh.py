from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from flask import current_app
import stripe
from leaveratings.billing.entitlements import ACTIVE_STATUSES, apply_subscription_state, is_active_equivalent
from leaveratings.extensions import db, tasks
from leaveratings.models import User
from leaveratings.services.billing import BillingProvider, is_resource_missing, period_bounds, to_datetime


@dataclass(frozen=True)
class EntitlementSnapshot:
    status: Optional[str]
    end_date: Optional[datetime] = None
    is_canceling: bool = False
    customer_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscription_status": self.status,
            "stripe_customer_id": self.customer_id,
            "subscription_end_date": self.end_date.isoformat() if self.end_date else None,
            "is_canceling": self.is_canceling,
        }


def _find_subscription(provider: BillingProvider, user: User) -> Optional[Dict[str, Any]]:
    """
    The subscription that currently speaks for this account, or None.
    Lookup by stored id first; if Stripe no longer has it, fall back to the
    customer's list (first live one, else the newest).
    Errors other than "no such subscription" propagate.
    """
    if user.subscription_id:
        try:
            return provider.retrieve_subscription(user.subscription_id)
        except stripe.StripeError as exc:
            if not is_resource_missing(exc):
                raise
    if not user.stripe_customer_id:
        return None
    subs = provider.list_subscriptions(user.stripe_customer_id, limit=10)
    live = next((s for s in subs if s.get("status") in ACTIVE_STATUSES), None)
    return live or (subs[0] if subs else None)


def _sync_account(user_id: int, status: Optional[str], subscription_id: Optional[str]) -> None:
    user = db.session.get(User, user_id)
    if user is None:
        return
    if apply_subscription_state(user, status, subscription_id):
        db.session.commit()
        current_app.logger.info(
            "billing.refresh.synced",
            extra={"user_id": user_id, "subscription_status": user.subscription_status},
        )


def refresh_entitlement(user_id: int, provider: Optional[BillingProvider] = None) -> EntitlementSnapshot:
    """
    Subscription state for a read path that wants fresher truth than the
    last webhook. Never raises on provider trouble: falls back to the
    stored status. Corrections are written back in the background.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise LookupError(f"user {user_id} not found")

    local = EntitlementSnapshot(status=user.subscription_status, customer_id=user.stripe_customer_id)

    # Never subscribed (or already cleared): no network round trip
    if not user.subscription_id and not is_active_equivalent(user.subscription_status):
        return local

    if provider is None:
        provider = current_app.extensions.get("billing_provider")
        if provider is None:
            return local

    try:
        sub = _find_subscription(provider, user)
    except stripe.StripeError as exc:
        current_app.logger.warning(
            "billing.refresh.provider_failed",
            extra={"user_id": user.id, "error": type(exc).__name__},
        )
        return local

    if sub is None or not is_active_equivalent(sub.get("status")):
        if user.subscription_status is not None or user.subscription_id is not None:
            tasks.submit("billing.refresh.clear", _sync_account, user.id, None, None)
        return EntitlementSnapshot(status=None, customer_id=user.stripe_customer_id)

    now = datetime.now(timezone.utc).timestamp()
    cancel_at = sub.get("cancel_at")
    has_future_cancel = isinstance(cancel_at, (int, float)) and cancel_at > now
    is_canceling = bool(sub.get("cancel_at_period_end")) or has_future_cancel
    if has_future_cancel:
        end_date = to_datetime(cancel_at)
    else:
        bounds = period_bounds(sub)
        end_date = to_datetime(bounds[1]) if bounds else None

    if user.subscription_status != sub.get("status") or user.subscription_id != sub.get("id"):
        tasks.submit("billing.refresh.sync", _sync_account, user.id, sub.get("status"), sub.get("id"))

    return EntitlementSnapshot(
        status=sub.get("status"),
        end_date=end_date,
        is_canceling=is_canceling,
        customer_id=user.stripe_customer_id,
    )
