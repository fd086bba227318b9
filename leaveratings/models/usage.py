from sqlalchemy import func, UniqueConstraint, CheckConstraint
from leaveratings.extensions import db

class UsagePeriod(db.Model):
    """
    Billable actions per account per calendar month ("YYYY-MM", UTC).
    Rows are never reset or deleted; lifetime usage is the sum over periods.
    """
    __tablename__ = "usage_periods"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    period = db.Column(db.String(7), nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # conflict target for the atomic increment
        UniqueConstraint("user_id", "period", name="uq_usage_periods_user_period"),
        CheckConstraint("count >= 0", name="ck_usage_periods_count_nonneg"),
    )

    def __repr__(self) -> str:
        return f"<UsagePeriod user_id={self.user_id} period={self.period!r} count={self.count}>"
