from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin
from flask import current_app
import stripe
from stripe import StripeClient


class BillingError(Exception):
    """A billing call that blocks an explicit user action (checkout, portal)."""

    def __init__(self, message: str, detail: Optional[str] = None, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.message}
        if self.detail:
            payload["details"] = self.detail
        return payload


def is_resource_missing(exc: Exception) -> bool:
    return isinstance(exc, stripe.InvalidRequestError) and (
        getattr(exc, "code", None) == "resource_missing"
        or "No such" in (getattr(exc, "user_message", None) or str(exc))
    )


def as_dict(obj: Any) -> Dict[str, Any]:
    """Stripe objects → plain dicts (webhook payloads may already be dicts)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return dict(obj)


class BillingProvider:
    """
    Thin wrapper over an explicitly constructed StripeClient.

    One instance per app (app.extensions["billing_provider"]); every call has
    the client's bounded network timeout.
    """

    def __init__(self, client: StripeClient, *, price_id: Optional[str], base_url: str):
        self.client = client
        self.price_id = price_id
        self.base_url = (base_url or "").rstrip("/") + "/"

    @classmethod
    def from_config(cls, config) -> "BillingProvider":
        key = config.get("STRIPE_SECRET_KEY")
        if not key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")
        client = StripeClient(
            key,
            http_client=stripe.RequestsClient(timeout=float(config.get("STRIPE_TIMEOUT_SECONDS", 10))),
            max_network_retries=int(config.get("STRIPE_MAX_NETWORK_RETRIES", 2)),
        )
        return cls(client, price_id=config.get("STRIPE_PRICE_ID"), base_url=config.get("APP_BASE_URL", ""))

    def absolute_url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    # ---- subscriptions ----

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return as_dict(self.client.subscriptions.retrieve(subscription_id))

    def list_subscriptions(self, customer_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Newest first, any status."""
        page = self.client.subscriptions.list(params={"customer": customer_id, "status": "all", "limit": limit})
        return [as_dict(s) for s in (getattr(page, "data", None) or [])]

    def cancel_at_period_end(self, subscription_id: str) -> Dict[str, Any]:
        return as_dict(self.client.subscriptions.update(subscription_id, params={"cancel_at_period_end": True}))

    # ---- customers ----

    def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        return as_dict(self.client.customers.retrieve(customer_id))

    def customer_email(self, customer_id: str) -> Optional[str]:
        customer = self.retrieve_customer(customer_id)
        if customer.get("deleted"):
            return None
        return customer.get("email") or None

    def create_customer(self, email: str) -> str:
        customer = self.client.customers.create(params={"email": email, "name": email})
        return customer.id

    def ensure_customer(self, *, email: str, customer_id: Optional[str]) -> str:
        """
        Return a customer id that exists in Stripe: the stored one when it is
        still there, otherwise a freshly created customer.
        """
        if not customer_id:
            return self.create_customer(email)
        try:
            customer = self.retrieve_customer(customer_id)
        except stripe.StripeError as exc:
            if not is_resource_missing(exc):
                raise
            current_app.logger.warning(
                "billing.customer.missing_recreating", extra={"stripe_customer_id": customer_id}
            )
            return self.create_customer(email)
        if customer.get("deleted"):
            return self.create_customer(email)
        return customer_id

    # ---- hosted pages ----

    def create_checkout_session(self, *, customer_id: str, user_id: int) -> Dict[str, Any]:
        if not self.price_id:
            raise BillingError("Price ID not configured", status_code=500)
        params: Dict[str, Any] = {
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": self.price_id, "quantity": 1}],
            "success_url": self.absolute_url("billing?success=true"),
            "cancel_url": self.absolute_url("billing?canceled=true"),
            "metadata": {"user_id": str(user_id)},
        }
        session = self.client.checkout.sessions.create(params=params)
        return {"id": session.id, "url": getattr(session, "url", None)}

    def create_portal_session(self, *, customer_id: str, return_path: str = "billing") -> Dict[str, Any]:
        session = self.client.billing_portal.sessions.create(
            params={"customer": customer_id, "return_url": self.absolute_url(return_path)}
        )
        return {"url": session.url}


def init_billing(app) -> None:
    if app.config.get("STRIPE_SECRET_KEY"):
        app.extensions["billing_provider"] = BillingProvider.from_config(app.config)
    else:
        app.extensions["billing_provider"] = None
        app.logger.warning("Stripe secret key missing; billing features will not work")


def get_billing_provider() -> BillingProvider:
    provider = current_app.extensions.get("billing_provider")
    if provider is None:
        raise BillingError("Billing is not configured", status_code=503)
    return provider


def to_datetime(ts) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if isinstance(ts, (int, float)) and ts else None


def period_bounds(sub: Dict[str, Any]) -> Optional[Tuple[int, int]]:
    """
    (current_period_start, current_period_end) as epoch seconds, or None.
    Newer API versions carry the period on subscription items only.
    """
    start, end = sub.get("current_period_start"), sub.get("current_period_end")
    if not (isinstance(start, int) and isinstance(end, int)):
        items = (sub.get("items") or {}).get("data") or []
        first = items[0] if items else {}
        start, end = first.get("current_period_start"), first.get("current_period_end")
    if isinstance(start, int) and isinstance(end, int):
        return start, end
    return None
