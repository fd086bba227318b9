from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func, CheckConstraint
from leaveratings.extensions import db, login_manager

class User(db.Model, UserMixin):
    """A business owner account; also the Entitlement Store row."""
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Entitlement mirror; written only through billing.entitlements.apply_subscription_state
    subscription_status = db.Column(db.String(32), nullable=True)
    subscription_id = db.Column(db.String(64), nullable=True)
    # Created lazily on first checkout attempt
    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    businesses = db.relationship("Business", back_populates="owner", lazy="select")

    __table_args__ = (
        # status and subscription id move as a pair
        CheckConstraint(
            "(subscription_status IS NULL AND subscription_id IS NULL) OR "
            "(subscription_status IN ('active','trialing') AND subscription_id IS NOT NULL)",
            name="ck_users_subscription_pair",
        ),
    )

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} subscription_status={self.subscription_status!r}>"

@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
