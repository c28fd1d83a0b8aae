from datetime import datetime, timedelta

from app.models import Subscription, UsageTracking
from app.services.usage_period import PERIOD_LENGTH, compute_period, resolve_period
from conftest import make_user


def test_first_window_starts_at_subscription_start():
    started = datetime(2024, 1, 1)
    start, end = compute_period(started, datetime(2024, 1, 15))
    assert start == started
    assert end == started + PERIOD_LENGTH


def test_window_advances_in_whole_30_day_hops():
    started = datetime(2024, 1, 1)
    start, end = compute_period(started, datetime(2024, 2, 5))
    assert start == datetime(2024, 1, 31)
    assert end == datetime(2024, 3, 1)


def test_window_boundary_belongs_to_next_window():
    started = datetime(2024, 1, 1)
    start, _ = compute_period(started, started + PERIOD_LENGTH)
    assert start == started + PERIOD_LENGTH


def test_now_before_start_yields_first_window():
    started = datetime(2024, 1, 1)
    start, _ = compute_period(started, datetime(2023, 12, 1))
    assert start == started


def test_resolve_period_creates_then_reuses_row(db):
    user = make_user(db)
    subscription = Subscription(
        user_id=user.id,
        started_at=datetime(2024, 1, 1),
        expires_at=datetime(2025, 1, 1),
    )
    db.add(subscription)
    db.commit()

    now = datetime(2024, 2, 5)
    first = resolve_period(db, user.id, "writing", subscription, now)
    db.commit()
    second = resolve_period(db, user.id, "writing", subscription, now + timedelta(days=1))
    db.commit()

    assert first.id == second.id
    assert first.used_count == 0
    assert first.period_start == datetime(2024, 1, 31)
    assert db.query(UsageTracking).count() == 1


def test_resolve_period_opens_new_row_per_window_and_type(db):
    user = make_user(db)
    subscription = Subscription(
        user_id=user.id,
        started_at=datetime(2024, 1, 1),
        expires_at=datetime(2025, 1, 1),
    )
    db.add(subscription)
    db.commit()

    resolve_period(db, user.id, "mock", subscription, datetime(2024, 1, 10))
    resolve_period(db, user.id, "mock", subscription, datetime(2024, 2, 10))
    resolve_period(db, user.id, "speaking", subscription, datetime(2024, 2, 10))
    db.commit()

    assert db.query(UsageTracking).count() == 3


def test_period_for_late_february():
    start, end = compute_period(datetime(2024, 1, 1), datetime(2024, 2, 20))
    assert (start, end) == (datetime(2024, 1, 31), datetime(2024, 3, 1))
