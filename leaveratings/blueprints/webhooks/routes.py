import hashlib
import json
from datetime import datetime, timezone
from flask import request, jsonify, abort, current_app
import stripe
from sqlalchemy.exc import IntegrityError
from . import bp
from leaveratings.billing.reconciler import BillingEventReconciler
from leaveratings.extensions import db, csrf
from leaveratings.models import BillingEventLog
from leaveratings.services.billing import as_dict

# ----- Stripe Webhook (subscriptions lifecycle) -----
@csrf.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies signature, logs event, idempotently reconciles account entitlement.
    """
    # 1) Verify signature
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        abort(500, description="Stripe webhook secret not configured")

    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature", "")

    try:
        if not sig_header:
            raise ValueError("missing Stripe-Signature header")
        event = stripe.Webhook.construct_event(
            payload=raw_bytes.decode("utf-8"),
            sig_header=sig_header,
            secret=secret,
        )
        event = as_dict(event)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        # Log invalid attempts with a deterministic synthetic id (no payload trust)
        digest = hashlib.sha256(raw_bytes).hexdigest()[:32]
        synthetic_id = f"invalid:{digest}"
        current_app.logger.warning(
            "billing.webhook.signature_invalid", extra={"synthetic_id": synthetic_id, "reason": str(exc)}
        )
        if not BillingEventLog.query.filter_by(stripe_event_id=synthetic_id).first():
            db.session.add(BillingEventLog(
                stripe_event_id=synthetic_id,
                type="signature_invalid",
                signature_valid=False,
                payload={},
            ))
            db.session.commit()
        return jsonify({"error": "invalid_signature"}), 400

    # 2) Idempotency guard (short-circuit if already processed)
    ev_id = event.get("id")
    ev_type = event.get("type")
    if not ev_id or not ev_type:
        return jsonify({"error": "malformed_event"}), 400

    if BillingEventLog.query.filter_by(stripe_event_id=ev_id).first():
        return jsonify({"ok": True, "duplicate": True}), 200

    # 3) Persist raw payload to log (for audit/forensics)
    try:
        payload_json = json.loads(raw_bytes.decode("utf-8"))
    except ValueError:
        payload_json = {"_decode_error": True}

    log = BillingEventLog(
        stripe_event_id=ev_id,
        type=ev_type,
        signature_valid=True,
        payload=payload_json,
    )
    db.session.add(log)
    try:
        db.session.commit()
    except IntegrityError:
        # Same event delivered concurrently; the other request owns it
        db.session.rollback()
        return jsonify({"ok": True, "duplicate": True}), 200

    # 4) Reconcile
    reconciler = BillingEventReconciler(current_app.extensions.get("billing_provider"))
    try:
        outcome = reconciler.handle(event)
    except Exception as e:
        # Acknowledge anyway: earlier steps stay committed, ops can review the log
        db.session.rollback()
        outcome = f"handler_error:{type(e).__name__}"
        current_app.logger.exception(
            "billing.webhook.handler_error", extra={"stripe_event_id": ev_id, "event_type": ev_type}
        )

    log.notes = outcome
    log.processed_at = datetime.now(timezone.utc)
    db.session.commit()

    current_app.logger.info(json.dumps({
        "event": "stripe_webhook",
        "stripe_event_id": ev_id,
        "type": ev_type,
        "outcome": outcome,
    }))
    return jsonify({"ok": True, "outcome": outcome}), 200
