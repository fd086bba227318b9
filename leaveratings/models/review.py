from leaveratings.extensions import db

class Review(db.Model):
    """
    A generated review draft, or private feedback from an unhappy customer
    (no draft, never purged). Only the newest few drafts per business are kept.
    """
    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = db.Column(db.Integer, nullable=False)
    generated_review = db.Column(db.Text, nullable=True)
    feedback = db.Column(db.Text, nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    is_posted_to_google = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now(), nullable=False)

    __table_args__ = (
        db.Index("ix_reviews_business_created_at", "business_id", "created_at"),
    )
