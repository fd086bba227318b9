"""
Usage metering: the free-tier gate, the per-period ledger, and the recorder
that books a successful review draft.

The gate and the recorder are not transactional with each other.
Two requests can both pass the gate before either is recorded, so a free
account may overshoot the ceiling by the number of in-flight requests. The
ledger itself never loses an increment.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from flask import current_app
from sqlalchemy import func, update, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from leaveratings.billing.entitlements import is_unlimited
from leaveratings.extensions import db, tasks
from leaveratings.models import User, UsagePeriod
from leaveratings.services import reviews


@dataclass(frozen=True)
class ReviewOutcome:
    rating: int
    text: str


@dataclass(frozen=True)
class UsageSummary:
    current_usage: int
    limit: Optional[int]  # None when unlimited
    unlimited: bool

    def to_dict(self) -> dict:
        return {
            "current_usage": self.current_usage,
            "limit": self.limit,
            "has_active_subscription": self.unlimited,
        }


def free_tier_limit() -> int:
    return int(current_app.config.get("FREE_TIER_REVIEW_LIMIT", 10))


def current_period(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def total_usage(user_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(UsagePeriod.count), 0))
        .filter(UsagePeriod.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def _subscription_status(user_id: int) -> Optional[str]:
    return db.session.query(User.subscription_status).filter(User.id == user_id).scalar()


# ---- Usage Gate ----

def can_perform_action(user_id: Optional[int]) -> bool:
    """
    May this account produce one more review draft?

    No owning account means no gate. Never reserves a slot. A failed read
    fails open: metering must not block a customer on the public page.
    """
    if user_id is None:
        return True
    try:
        if is_unlimited(_subscription_status(user_id)):
            return True
        used = total_usage(user_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("usage.gate.read_failed", extra={"user_id": user_id})
        return True
    return used < free_tier_limit()


def get_usage_summary(user_id: int) -> UsageSummary:
    """Display-only view of the same data the gate reads."""
    unlimited = is_unlimited(_subscription_status(user_id))
    return UsageSummary(
        current_usage=total_usage(user_id),
        limit=None if unlimited else free_tier_limit(),
        unlimited=unlimited,
    )


# ---- Usage Ledger ----

def increment_usage(user_id: int, period: Optional[str] = None) -> None:
    """Atomically create-or-increment the counter for (user, period)."""
    period = period or current_period()
    table = UsagePeriod.__table__
    dialect = db.session.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        dialect_insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = dialect_insert(table).values(user_id=user_id, period=period, count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.period],
            set_={"count": table.c.count + 1, "updated_at": func.now()},
        )
        db.session.execute(stmt)
        db.session.commit()
        return

    # Generic path: bump an existing row, else insert; a racing insert loses on
    # the unique constraint and retries as an update.
    for _ in range(3):
        result = db.session.execute(
            update(table)
            .where(table.c.user_id == user_id, table.c.period == period)
            .values(count=table.c.count + 1)
        )
        if result.rowcount:
            db.session.commit()
            return
        try:
            db.session.execute(insert(table).values(user_id=user_id, period=period, count=1))
            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
    raise RuntimeError(f"could not increment usage for user {user_id} in {period}")


# ---- Action Recorder ----

def record_action(user_id: Optional[int], business_id: int, outcome: ReviewOutcome) -> None:
    """
    Book a successful draft without blocking the response.

    Saving the draft, bumping the ledger and trimming old drafts are separate
    background jobs; one failing does not stop the others.
    """
    tasks.submit(
        "usage.record.save_review",
        reviews.save_review,
        business_id=business_id,
        rating=outcome.rating,
        generated_review=outcome.text,
    )
    if user_id is not None:
        tasks.submit("usage.record.increment", increment_usage, user_id, current_period())
    tasks.submit("usage.record.purge_reviews", reviews.purge_old_reviews, business_id)
