from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from app.models import Purchase, Subscription, UsageTracking
from app.services.access_control import (
    FREE_DEMO_PERIOD_START,
    MOCK_EXAM_PRODUCT,
    access_control_service,
)
from conftest import make_user

NOW = datetime(2024, 3, 10, 12, 0)


def add_subscription(db, user, started_at=datetime(2024, 3, 1), expires_at=datetime(2024, 4, 1)):
    subscription = Subscription(user_id=user.id, started_at=started_at, expires_at=expires_at)
    db.add(subscription)
    db.commit()
    return subscription


def add_purchase(db, user, remaining_uses=1, expires_at=datetime(2024, 6, 1)):
    purchase = Purchase(
        user_id=user.id,
        product_type=MOCK_EXAM_PRODUCT,
        quantity=remaining_uses,
        remaining_uses=remaining_uses,
        expires_at=expires_at,
    )
    db.add(purchase)
    db.commit()
    return purchase


def test_plan_derivation(db):
    user = make_user(db)
    assert access_control_service.get_user_plan_type(db, user.id, NOW) == "free"

    add_purchase(db, user)
    assert access_control_service.get_user_plan_type(db, user.id, NOW) == "standard"

    add_subscription(db, user)
    assert access_control_service.get_user_plan_type(db, user.id, NOW) == "pro"


def test_expired_subscription_and_purchase_mean_free(db):
    user = make_user(db)
    add_subscription(db, user, started_at=datetime(2024, 1, 1), expires_at=datetime(2024, 2, 1))
    add_purchase(db, user, expires_at=datetime(2024, 3, 1))

    assert access_control_service.get_user_plan_type(db, user.id, NOW) == "free"


def test_free_plan_gets_one_writing_demo(db):
    user = make_user(db)

    assert not access_control_service.can_start_mock(db, user.id, NOW).allowed
    assert not access_control_service.can_access_full_platform(db, user.id, NOW).allowed
    assert not access_control_service.can_use_ai_tutor(db, user.id, NOW).allowed
    assert access_control_service.can_use_writing_ai(db, user.id, NOW).allowed

    access_control_service.record_writing_usage(db, user.id, NOW)

    result = access_control_service.can_use_writing_ai(db, user.id, NOW)
    assert not result.allowed
    assert result.plan_type == "free"
    assert "demo" in result.reason
    # Speaking demo is tracked separately
    assert access_control_service.can_use_speaking_ai(db, user.id, NOW).allowed

    demo_row = db.query(UsageTracking).filter(UsageTracking.type == "writing").one()
    assert demo_row.period_start == FREE_DEMO_PERIOD_START
    assert demo_row.used_count == 1


def test_standard_plan_consumes_purchases(db):
    user = make_user(db)
    purchase = add_purchase(db, user, remaining_uses=2)

    assert access_control_service.can_start_mock(db, user.id, NOW).allowed
    writing = access_control_service.can_use_writing_ai(db, user.id, NOW)
    assert not writing.allowed
    assert "Pro" in writing.reason

    access_control_service.record_mock_usage(db, user.id, NOW)
    db.refresh(purchase)
    assert purchase.remaining_uses == 1

    access_control_service.record_mock_usage(db, user.id, NOW)
    db.refresh(purchase)
    assert purchase.remaining_uses == 0

    # No valid purchase left, so the plan falls back to free
    assert access_control_service.get_user_plan_type(db, user.id, NOW) == "free"
    assert not access_control_service.can_start_mock(db, user.id, NOW).allowed


def test_earliest_expiring_purchase_is_consumed_first(db):
    user = make_user(db)
    later = add_purchase(db, user, remaining_uses=1, expires_at=datetime(2024, 9, 1))
    sooner = add_purchase(db, user, remaining_uses=1, expires_at=datetime(2024, 5, 1))

    access_control_service.record_mock_usage(db, user.id, NOW)

    db.refresh(later)
    db.refresh(sooner)
    assert sooner.remaining_uses == 0
    assert later.remaining_uses == 1


def test_pro_mock_quota_resets_each_window(db):
    user = make_user(db)
    add_subscription(db, user, started_at=datetime(2024, 3, 1), expires_at=datetime(2024, 6, 1))

    for _ in range(3):
        assert access_control_service.can_start_mock(db, user.id, NOW).allowed
        access_control_service.record_mock_usage(db, user.id, NOW)

    denied = access_control_service.can_start_mock(db, user.id, NOW)
    assert not denied.allowed
    assert denied.plan_type == "pro"
    assert "3/3" in denied.reason

    next_window = datetime(2024, 3, 31) + timedelta(hours=1)
    assert access_control_service.can_start_mock(db, user.id, next_window).allowed


def test_pro_ai_tutor_quota(db):
    user = make_user(db)
    add_subscription(db, user)

    assert access_control_service.can_use_ai_tutor(db, user.id, NOW).allowed
    access_control_service.record_ai_tutor_usage(db, user.id, NOW)

    status = access_control_service.get_access_status(db, user.id, NOW)
    assert status["usage"]["ai_tutor"] == {"used": 1, "limit": 50}


def test_access_status_for_pro_user(db):
    user = make_user(db)
    add_subscription(db, user)
    access_control_service.record_writing_usage(db, user.id, NOW)

    status = access_control_service.get_access_status(db, user.id, NOW)

    assert status["plan_type"] == "pro"
    assert status["usage"]["writing"] == {"used": 1, "limit": 10}
    assert status["subscription"]["active"] is True
    assert status["subscription"]["expires_at"] == datetime(2024, 4, 1).isoformat()
    assert status["usage"]["mock"] == {"used": 0, "limit": 3}
    assert status["usage"]["speaking"] == {"used": 0, "limit": 6}
    assert status["access"] == {
        "full_platform": True,
        "mock_exam": True,
        "writing_ai": True,
        "speaking_ai": True,
        "ai_tutor": True,
    }


def test_access_status_for_standard_user_shows_remaining_uses(db):
    user = make_user(db)
    add_purchase(db, user, remaining_uses=2)

    status = access_control_service.get_access_status(db, user.id, NOW)

    assert status["plan_type"] == "standard"
    assert status["purchases"]["mock_exam"]["available"] == 2
    assert status["usage"]["mock"] == {"used": 0, "limit": 2}
    assert status["access"]["mock_exam"] is True
    assert status["access"]["writing_ai"] is False


def test_checks_do_not_record_usage(db):
    user = make_user(db)
    add_subscription(db, user)

    for _ in range(5):
        access_control_service.can_use_writing_ai(db, user.id, NOW)
    access_control_service.get_access_status(db, user.id, NOW)

    rows = db.query(UsageTracking).all()
    assert all(row.used_count == 0 for row in rows)


def test_pro_writing_boundary(db):
    user = make_user(db)
    subscription = add_subscription(db, user)
    db.add(UsageTracking(
        user_id=user.id,
        type="writing",
        used_count=9,
        period_start=subscription.started_at,
        period_end=subscription.started_at + timedelta(days=30),
    ))
    db.commit()

    assert access_control_service.can_use_writing_ai(db, user.id, NOW).allowed

    access_control_service.record_writing_usage(db, user.id, NOW)

    result = access_control_service.can_use_writing_ai(db, user.id, NOW)
    assert not result.allowed
    assert "10/10" in result.reason


def test_pro_check_without_a_live_subscription_is_denied_as_free(db, monkeypatch):
    user = make_user(db)
    # Plan derived as pro, but the subscription is gone by the time the quota is read
    monkeypatch.setattr(access_control_service, "get_user_plan_type", lambda db, user_id, now=None: "pro")

    result = access_control_service.can_start_mock(db, user.id, NOW)

    assert result.allowed is False
    assert result.plan_type == "free"
    assert result.reason == "Subscription not found."


def test_storage_error_during_a_check_denies_instead_of_raising(db, monkeypatch):
    user = make_user(db)
    add_subscription(db, user)

    def broken_resolve_period(*args, **kwargs):
        raise OperationalError("SELECT usage_tracking", {}, Exception("database is locked"))

    monkeypatch.setattr("app.services.access_control.resolve_period", broken_resolve_period)

    result = access_control_service.can_use_writing_ai(db, user.id, NOW)

    assert result.allowed is False
    assert result.plan_type == "pro"
    assert "could not be verified" in result.reason
    # Session is still usable after the rollback
    assert access_control_service.get_user_plan_type(db, user.id, NOW) == "pro"
