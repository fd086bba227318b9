from typing import List, Optional
from flask import current_app
from leaveratings.extensions import db
from leaveratings.models import Review


def retention_count() -> int:
    return int(current_app.config.get("REVIEW_RETENTION_COUNT", 3))


def recent_review_texts(business_id: int, limit: Optional[int] = None) -> List[str]:
    """Most recent generated drafts for a business, newest first."""
    limit = limit or retention_count()
    rows = (
        db.session.query(Review.generated_review)
        .filter(Review.business_id == business_id, Review.generated_review.isnot(None))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(limit)
        .all()
    )
    return [r[0] for r in rows if r[0]]


def save_review(*, business_id: int, rating: int, generated_review: Optional[str], feedback: Optional[str] = None,
                customer_email: Optional[str] = None) -> Review:
    review = Review(
        business_id=business_id,
        rating=rating,
        generated_review=generated_review,
        feedback=feedback,
        customer_email=customer_email,
        is_posted_to_google=False,
    )
    db.session.add(review)
    db.session.commit()
    return review


def purge_old_reviews(business_id: int, keep: Optional[int] = None) -> int:
    """
    Delete drafts beyond the newest `keep` for a business. Private feedback
    rows carry no draft and are never purged.
    Best effort: a concurrent insert may leave keep+1 rows until the next purge.
    """
    keep = keep or retention_count()
    newest = (
        db.session.query(Review.id)
        .filter(Review.business_id == business_id, Review.generated_review.isnot(None))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(keep)
        .subquery()
    )
    deleted = (
        db.session.query(Review)
        .filter(
            Review.business_id == business_id,
            Review.generated_review.isnot(None),
            Review.id.notin_(db.select(newest.c.id)),
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    if deleted:
        current_app.logger.debug("reviews.purged", extra={"business_id": business_id, "deleted": deleted})
    return deleted
