from sqlalchemy import func, text
from leaveratings.extensions import db

class Subscription(db.Model):
    """
    Local mirror of a Stripe subscription, keyed by its Stripe id.
    Upserted by webhooks, never deleted; canceled ones stay for history.
    """
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    stripe_subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # Full provider status (active, trialing, past_due, canceled, incomplete, unpaid, ...)
    status = db.Column(db.String(32), nullable=False, index=True, server_default=text("'incomplete'"))
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancel_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False, server_default=text("false"))

    # Stripe `event.created` of the newest event applied to this row
    last_event_created = db.Column(db.BigInteger, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} user_id={self.user_id} status={self.status!r} stripe_subscription_id={self.stripe_subscription_id!r}>"
