from sqlalchemy import func
from leaveratings.extensions import db

class Business(db.Model):
    __tablename__ = "businesses"

    id = db.Column(db.Integer, primary_key=True)
    # Nullable: a public page with no owning account is never metered
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    location = db.Column(db.String(255), nullable=True)
    keywords = db.Column(db.String(500), nullable=True)  # comma separated
    google_review_link = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    owner = db.relationship("User", back_populates="businesses")

    def keyword_list(self) -> list[str]:
        return [k.strip() for k in (self.keywords or "").split(",") if k.strip()]

    def __repr__(self) -> str:
        return f"<Business id={self.id} slug={self.slug!r} user_id={self.user_id}>"
