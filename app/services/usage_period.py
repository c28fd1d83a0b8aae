"""
Usage period resolver - rolling 30-day quota windows anchored to subscription start
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Subscription, UsageTracking
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

PERIOD_LENGTH = timedelta(days=30)


def compute_period(started_at: datetime, now: datetime) -> Tuple[datetime, datetime]:
    """
    Compute the [start, end) window containing `now`

    Windows advance from `started_at` in whole 30-day hops, so boundaries
    never drift with month lengths. A `now` before `started_at` yields the
    first window.
    """
    hops = max((now - started_at) // PERIOD_LENGTH, 0)
    period_start = started_at + hops * PERIOD_LENGTH
    return period_start, period_start + PERIOD_LENGTH


def resolve_period(
    db: Session,
    user_id: UUID,
    usage_type: str,
    subscription: Subscription,
    now: Optional[datetime] = None
) -> UsageTracking:
    """
    Fetch or create the usage counter for the subscription's current window

    Args:
        db: Database session
        user_id: User UUID
        usage_type: mock / writing / speaking / aiTutor
        subscription: Active subscription (never an expired one)
        now: Current instant, injectable for tests

    Returns:
        UsageTracking row for the window
    """
    period_start, period_end = compute_period(subscription.started_at, now or utcnow())

    usage = _find_usage(db, user_id, usage_type, period_start, period_end)
    if usage:
        return usage

    usage = UsageTracking(
        user_id=user_id,
        type=usage_type,
        used_count=0,
        period_start=period_start,
        period_end=period_end
    )
    try:
        with db.begin_nested():
            db.add(usage)
    except IntegrityError:
        # A concurrent request created the same window first
        logger.info(f"Usage row race for user={user_id}, type={usage_type}; reusing existing row")
        usage = _find_usage(db, user_id, usage_type, period_start, period_end)

    logger.debug(f"Usage period resolved: user={user_id}, type={usage_type}, [{period_start}, {period_end})")
    return usage


def _find_usage(
    db: Session,
    user_id: UUID,
    usage_type: str,
    period_start: datetime,
    period_end: datetime
) -> Optional[UsageTracking]:
    return db.query(UsageTracking).filter(
        UsageTracking.user_id == user_id,
        UsageTracking.type == usage_type,
        UsageTracking.period_start >= period_start,
        UsageTracking.period_end <= period_end
    ).first()
