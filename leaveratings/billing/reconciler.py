"""
Stripe webhook reconciliation: the system of record for entitlement changes.

Delivery is at-least-once and unordered. Every handler is an upsert keyed by
the Stripe subscription id, so replays are harmless. For a single
subscription, an event older than the last one applied (by `event.created`)
is skipped, so a late "active" can't resurrect a canceled subscription.
An active-looking event for a subscription with no local row yet is checked
against Stripe first, since a deletion leaves no row to order against.
Across different subscriptions of one customer the account row is
last-write-wins by delivery order.
"""
from typing import Any, Callable, Dict, Optional, Tuple
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
import stripe
from leaveratings.billing.entitlements import apply_subscription_state, clear_subscription_state, is_active_equivalent
from leaveratings.extensions import db
from leaveratings.models import User, Subscription
from leaveratings.services.billing import BillingProvider, as_dict, is_resource_missing, period_bounds, to_datetime

# Outcomes (stored in BillingEventLog.notes)
APPLIED = "applied"
IGNORED = "ignored"
UNRESOLVED = "unresolved"
INVALID = "invalid"
STALE = "stale"

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def _customer_id(obj: Dict[str, Any]) -> Optional[str]:
    cust = obj.get("customer")
    if isinstance(cust, dict):
        return cust.get("id")
    return cust or None


class AccountResolver:
    """
    Finds the account a Stripe object belongs to.

    Strategies, tried in the order each event type needs them:
    stored customer id, local email match, and email looked up on the Stripe
    customer (heals accounts whose customer id was never backfilled).
    """

    def __init__(self, provider: Optional[BillingProvider]):
        self.provider = provider

    def by_customer_id(self, customer_id: Optional[str]) -> Optional[User]:
        if not customer_id:
            return None
        return User.query.filter_by(stripe_customer_id=customer_id).first()

    def by_email(self, email: Optional[str]) -> Optional[User]:
        email = (email or "").strip()
        if not email:
            return None
        return User.query.filter(func.lower(User.email) == email.lower()).first()

    def by_provider_email(self, customer_id: Optional[str]) -> Optional[User]:
        if not customer_id or self.provider is None:
            return None
        try:
            email = self.provider.customer_email(customer_id)
        except stripe.StripeError:
            current_app.logger.exception(
                "billing.webhook.customer_lookup_failed", extra={"stripe_customer_id": customer_id}
            )
            return None
        return self.by_email(email)

    def for_checkout(self, customer_id: Optional[str], email: Optional[str]) -> Optional[User]:
        return self.by_customer_id(customer_id) or self.by_email(email)

    def for_subscription(self, customer_id: Optional[str]) -> Optional[User]:
        return self.by_customer_id(customer_id) or self.by_provider_email(customer_id)


def backfill_customer_id(user: User, customer_id: Optional[str]) -> bool:
    if customer_id and not user.stripe_customer_id:
        user.stripe_customer_id = customer_id
        return True
    return False


class BillingEventReconciler:
    def __init__(self, provider: Optional[BillingProvider], resolver: Optional[AccountResolver] = None):
        self.provider = provider
        self.resolver = resolver or AccountResolver(provider)
        self._handlers: Dict[str, Callable[[Dict[str, Any], Optional[int]], str]] = {
            CHECKOUT_COMPLETED: self.checkout_completed,
            SUBSCRIPTION_CREATED: self.subscription_changed,
            SUBSCRIPTION_UPDATED: self.subscription_changed,
            SUBSCRIPTION_DELETED: self.subscription_deleted,
        }

    def handle(self, event: Dict[str, Any]) -> str:
        handler = self._handlers.get(event.get("type"))
        if handler is None:
            return IGNORED
        obj = as_dict((event.get("data") or {}).get("object"))
        created = event.get("created")
        return handler(obj, created if isinstance(created, int) else None)

    # ---- handlers ----

    def checkout_completed(self, session: Dict[str, Any], created: Optional[int] = None) -> str:
        sub_ref = session.get("subscription")
        if not sub_ref:
            # one-off payment checkout: nothing to entitle
            return IGNORED
        sub_id = sub_ref.get("id") if isinstance(sub_ref, dict) else sub_ref

        customer_id = _customer_id(session)
        email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
        user = self.resolver.for_checkout(customer_id, email)
        if user is None:
            current_app.logger.warning(
                "billing.webhook.account_not_found",
                extra={"event_type": CHECKOUT_COMPLETED, "stripe_customer_id": customer_id, "email": email},
            )
            return UNRESOLVED

        if backfill_customer_id(user, customer_id):
            db.session.commit()

        if self.provider is None:
            raise RuntimeError("billing provider not configured")
        sub = self.provider.retrieve_subscription(sub_id)
        bounds = period_bounds(sub)
        if bounds is None:
            current_app.logger.error("billing.webhook.missing_period", extra={"stripe_subscription_id": sub_id})
            return INVALID

        def _apply():
            apply_subscription_state(user, sub.get("status"), sub.get("id"))
            self._upsert_subscription(user, sub, bounds, created)

        self._commit_with_retry(_apply)
        return APPLIED

    def subscription_changed(self, sub: Dict[str, Any], created: Optional[int] = None) -> str:
        customer_id = _customer_id(sub)
        user = self.resolver.for_subscription(customer_id)
        if user is None:
            current_app.logger.warning(
                "billing.webhook.account_not_found",
                extra={"stripe_subscription_id": sub.get("id"), "stripe_customer_id": customer_id},
            )
            return UNRESOLVED
        if backfill_customer_id(user, customer_id):
            db.session.commit()

        bounds = period_bounds(sub)
        if bounds is None:
            current_app.logger.error("billing.webhook.missing_period", extra={"stripe_subscription_id": sub.get("id")})
            return INVALID

        if self._is_stale(sub.get("id"), created):
            current_app.logger.info(
                "billing.webhook.stale_event_skipped",
                extra={"stripe_subscription_id": sub.get("id"), "event_created": created},
            )
            return STALE

        if is_active_equivalent(sub.get("status")) and not self._has_mirror(sub.get("id")):
            # No event time recorded for this id yet (a deletion never creates
            # a row), so take the status from Stripe instead of the payload.
            sub = self._confirm_with_provider(sub)
            if sub is None:
                return STALE
            bounds = period_bounds(sub)
            if bounds is None:
                current_app.logger.error("billing.webhook.missing_period", extra={"stripe_subscription_id": sub.get("id")})
                return INVALID

        def _apply():
            # Inactive clears the account whichever subscription it pointed at
            apply_subscription_state(user, sub.get("status"), sub.get("id"))
            self._upsert_subscription(user, sub, bounds, created)

        self._commit_with_retry(_apply)
        return APPLIED

    def subscription_deleted(self, sub: Dict[str, Any], created: Optional[int] = None) -> str:
        customer_id = _customer_id(sub)
        user = self.resolver.for_subscription(customer_id)
        if user is None:
            current_app.logger.warning(
                "billing.webhook.account_not_found",
                extra={"event_type": SUBSCRIPTION_DELETED, "stripe_subscription_id": sub.get("id")},
            )
            return UNRESOLVED

        clear_subscription_state(user)
        # Only cancel what we know about; never create a row here
        existing = Subscription.query.filter_by(stripe_subscription_id=sub.get("id")).first()
        if existing is not None:
            existing.status = "canceled"
            if created is not None:
                existing.last_event_created = max(existing.last_event_created or 0, created)
        db.session.commit()
        return APPLIED

    # ---- helpers ----

    def _is_stale(self, stripe_subscription_id: Optional[str], created: Optional[int]) -> bool:
        if created is None or not stripe_subscription_id:
            return False
        last = (
            db.session.query(Subscription.last_event_created)
            .filter(Subscription.stripe_subscription_id == stripe_subscription_id)
            .scalar()
        )
        return last is not None and created < last

    def _has_mirror(self, stripe_subscription_id: Optional[str]) -> bool:
        if not stripe_subscription_id:
            return False
        return db.session.query(
            Subscription.query.filter_by(stripe_subscription_id=stripe_subscription_id).exists()
        ).scalar()

    def _confirm_with_provider(self, sub: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Current state of a subscription we have no mirror for. None when Stripe
        no longer has it. Without a provider the payload is taken as is.
        """
        if self.provider is None:
            return sub
        try:
            return self.provider.retrieve_subscription(sub["id"])
        except stripe.StripeError as exc:
            if not is_resource_missing(exc):
                raise
            current_app.logger.info(
                "billing.webhook.subscription_gone", extra={"stripe_subscription_id": sub.get("id")}
            )
            return None

    def _upsert_subscription(self, user: User, sub: Dict[str, Any], bounds: Tuple[int, int], created: Optional[int]) -> Subscription:
        row = Subscription.query.filter_by(stripe_subscription_id=sub["id"]).first()
        if row is None:
            row = Subscription(user_id=user.id, stripe_subscription_id=sub["id"])
            db.session.add(row)
        row.user_id = user.id
        row.status = sub.get("status") or row.status or "incomplete"
        row.current_period_start = to_datetime(bounds[0])
        row.current_period_end = to_datetime(bounds[1])
        row.cancel_at = to_datetime(sub.get("cancel_at"))
        row.cancel_at_period_end = bool(sub.get("cancel_at_period_end"))
        if created is not None:
            row.last_event_created = max(row.last_event_created or 0, created)
        return row

    def _commit_with_retry(self, apply: Callable[[], None]) -> None:
        # A concurrent delivery may insert the same subscription row first;
        # the retry then finds it and updates instead.
        for attempt in (1, 2):
            apply()
            try:
                db.session.commit()
                return
            except IntegrityError:
                db.session.rollback()
                if attempt == 2:
                    raise
