"""
Read-only aggregations behind the admin dashboard.

Everything is recomputed from the tables on every call.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .models import Conversation, Feedback, Translation, User
from .repository import Collection

DEFAULT_RANGE_DAYS = 30
MAX_RANGE_DAYS = 180
ACTIVE_WINDOW_DAYS = 7
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_PAGE = 10**6


def parse_range(value: Optional[str]) -> int:
    """``"14d"`` -> 14; anything unusable falls back to the default window"""
    if value and value.endswith("d"):
        try:
            days = int(value[:-1])
        except ValueError:
            return DEFAULT_RANGE_DAYS
        if 0 < days <= MAX_RANGE_DAYS:
            return days
    return DEFAULT_RANGE_DAYS


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def page_params(page, limit) -> Tuple[int, int]:
    """Query-string pagination; out-of-range or malformed values use the defaults"""
    page, limit = _to_int(page), _to_int(limit)
    if page is None or page < 1 or page > MAX_PAGE:
        page = 1
    if limit is None or limit < 1 or limit > MAX_PAGE_SIZE:
        limit = DEFAULT_PAGE_SIZE
    return page, limit


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 bound into naive UTC; ``None`` when unparseable"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.utcnow()) - timedelta(days=days)


def dashboard_stats(db: Session, now: Optional[datetime] = None) -> dict:
    translations = Collection(db, Translation)
    feedbacks = Collection(db, Feedback)

    # Active means at least one translation in the window
    active_users = translations.scalar(
        func.count(func.distinct(Translation.user_id)),
        Translation.created_at >= window_start(ACTIVE_WINDOW_DAYS, now),
    )
    avg_rating = feedbacks.scalar(func.avg(Feedback.rating))

    return {
        "total_users": Collection(db, User).count(),
        "active_users": active_users or 0,
        "total_translations": translations.count(),
        "total_conversations": Collection(db, Conversation).count(),
        "total_feedbacks": feedbacks.count(),
        "avg_feedback_rating": float(avg_rating) if avg_rating is not None else 0.0,
    }


def daily_counts(db: Session, model, days: int, now: Optional[datetime] = None) -> list:
    rows = Collection(db, model).group_count(
        func.date(model.created_at),
        model.created_at >= window_start(days, now),
    )
    return [{"date": str(day), "count": count} for day, count in rows]


def rating_distribution(db: Session, days: int, now: Optional[datetime] = None) -> list:
    rows = Collection(db, Feedback).group_count(
        Feedback.rating,
        Feedback.created_at >= window_start(days, now),
    )
    return [{"rating": rating, "count": count} for rating, count in rows]


def language_breakdown(db: Session, days: int, now: Optional[datetime] = None) -> list:
    rows = Collection(db, Translation).group_count(
        Translation.target_lang,
        Translation.created_at >= window_start(days, now),
        order_by="count",
    )
    return [{"language": language or "Unknown", "count": count} for language, count in rows]


def _total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit


def list_users(db: Session, page: int, limit: int, q: str = "") -> dict:
    users = Collection(db, User)
    criteria = []
    if q:
        pattern = f"%{q}%"
        criteria.append(or_(User.email.ilike(pattern), User.name.ilike(pattern)))

    total = users.count(*criteria)
    items = users.find_many(
        *criteria,
        order_by=User.created_at.desc(),
        skip=(page - 1) * limit,
        limit=limit,
    )
    return {
        "users": items,
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": _total_pages(total, limit),
    }


def list_feedbacks(
    db: Session,
    page: int,
    limit: int,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None
) -> dict:
    feedbacks = Collection(db, Feedback)
    criteria = []
    if created_from is not None:
        criteria.append(Feedback.created_at >= created_from)
    if created_to is not None:
        criteria.append(Feedback.created_at <= created_to)

    total = feedbacks.count(*criteria)
    items = feedbacks.find_many(
        *criteria,
        order_by=Feedback.created_at.desc(),
        skip=(page - 1) * limit,
        limit=limit,
    )
    return {
        "feedbacks": items,
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": _total_pages(total, limit),
    }
