"""
Access control service for the pricing system

Plans:
    free     - limited demos only
    standard - pay-per-exam (Purchase rows)
    pro      - monthly subscription with quotas (Subscription + UsageTracking)

Checks (`can_*`) never record usage and never raise; callers record usage
through `record_*_usage` only after the gated action succeeded.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Subscription, Purchase, UsageTracking
from app.services.usage_period import resolve_period
from app.utils.cache import cache_service
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class PlanType(str, Enum):
    FREE = "free"
    STANDARD = "standard"
    PRO = "pro"


class UsageType(str, Enum):
    MOCK = "mock"
    WRITING = "writing"
    SPEAKING = "speaking"
    AI_TUTOR = "aiTutor"


PRO_LIMITS = {
    UsageType.MOCK: 3,
    UsageType.WRITING: 10,
    UsageType.SPEAKING: 6,
    UsageType.AI_TUTOR: 50,
}

FREE_LIMITS = {
    UsageType.MOCK: 0,  # demo only, limited by the caller's demo flow
    UsageType.WRITING: 1,
    UsageType.SPEAKING: 1,
    UsageType.AI_TUTOR: 0,
}

MOCK_EXAM_PRODUCT = "mock_exam"

# Free demo usage lives in one non-recurring row per type
FREE_DEMO_PERIOD_START = datetime(2000, 1, 1)
FREE_DEMO_PERIOD_END = datetime(2099, 12, 31)

USAGE_LABELS = {
    UsageType.MOCK: "mock exam",
    UsageType.WRITING: "writing AI",
    UsageType.SPEAKING: "speaking AI",
    UsageType.AI_TUTOR: "AI tutor",
}


@dataclass
class AccessResult:
    """Outcome of a single entitlement check"""
    allowed: bool
    plan_type: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AccessControlService:
    """Entitlement engine: plan derivation, quota checks and usage recording"""

    # ───── Lookups ─────

    def _get_active_subscription(self, db: Session, user_id: UUID, now: datetime) -> Optional[Subscription]:
        return db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.plan_type == PlanType.PRO.value,
            Subscription.status == "active",
            Subscription.expires_at > now
        ).order_by(Subscription.expires_at.desc()).first()

    def _get_valid_purchases(self, db: Session, user_id: UUID, product_type: str, now: datetime) -> List[Purchase]:
        return db.query(Purchase).filter(
            Purchase.user_id == user_id,
            Purchase.product_type == product_type,
            Purchase.remaining_uses > 0,
            Purchase.expires_at > now
        ).order_by(Purchase.expires_at.asc()).all()

    def _lifetime_usage(self, db: Session, user_id: UUID, usage_type: UsageType) -> int:
        """Sum over every row of the type, not just the demo row"""
        total = db.query(func.coalesce(func.sum(UsageTracking.used_count), 0)).filter(
            UsageTracking.user_id == user_id,
            UsageTracking.type == usage_type.value
        ).scalar()
        return int(total or 0)

    def get_user_plan_type(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> str:
        """
        Derive the effective plan

        pro if an active unexpired subscription exists, else standard if an
        unexpired mock exam purchase with remaining uses exists, else free.
        """
        now = now or utcnow()

        if self._get_active_subscription(db, user_id, now):
            return PlanType.PRO.value

        if self._get_valid_purchases(db, user_id, MOCK_EXAM_PRODUCT, now):
            return PlanType.STANDARD.value

        return PlanType.FREE.value

    # ───── Checks ─────

    def can_access_full_platform(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> AccessResult:
        """Full platform access is Pro only"""
        return self._guarded(self._check_full_platform, db, user_id, now)

    def can_start_mock(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> AccessResult:
        return self._guarded(self._check_mock, db, user_id, now)

    def can_use_writing_ai(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> AccessResult:
        return self._guarded(
            lambda d, u, n: self._check_demo_or_pro(d, u, n, UsageType.WRITING), db, user_id, now
        )

    def can_use_speaking_ai(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> AccessResult:
        return self._guarded(
            lambda d, u, n: self._check_demo_or_pro(d, u, n, UsageType.SPEAKING), db, user_id, now
        )

    def can_use_ai_tutor(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> AccessResult:
        return self._guarded(self._check_ai_tutor, db, user_id, now)

    def _guarded(
        self,
        check: Callable[[Session, UUID, datetime], AccessResult],
        db: Session,
        user_id: UUID,
        now: Optional[datetime]
    ) -> AccessResult:
        """Run a check, turning storage errors into a denial"""
        now = now or utcnow()
        try:
            return check(db, user_id, now)
        except SQLAlchemyError as e:
            logger.error(f"Access check failed for user {user_id}: {str(e)}")
            db.rollback()
            return AccessResult(
                allowed=False,
                plan_type=self._best_effort_plan(db, user_id, now),
                reason="Access could not be verified right now. Please try again."
            )

    def _best_effort_plan(self, db: Session, user_id: UUID, now: datetime) -> str:
        try:
            return self.get_user_plan_type(db, user_id, now)
        except SQLAlchemyError:
            return PlanType.FREE.value

    def _check_full_platform(self, db: Session, user_id: UUID, now: datetime) -> AccessResult:
        plan_type = self.get_user_plan_type(db, user_id, now)
        if plan_type == PlanType.PRO.value:
            return AccessResult(allowed=True, plan_type=plan_type)
        return AccessResult(
            allowed=False,
            plan_type=plan_type,
            reason="Full platform access is available on the Pro plan only."
        )

    def _check_mock(self, db: Session, user_id: UUID, now: datetime) -> AccessResult:
        plan_type = self.get_user_plan_type(db, user_id, now)

        if plan_type == PlanType.FREE.value:
            return AccessResult(
                allowed=False,
                plan_type=plan_type,
                reason="The free plan includes the demo exam only. Buy an exam or upgrade to Pro."
            )

        if plan_type == PlanType.STANDARD.value:
            purchases = self._get_valid_purchases(db, user_id, MOCK_EXAM_PRODUCT, now)
            if purchases and purchases[0].remaining_uses > 0:
                return AccessResult(allowed=True, plan_type=plan_type)
            return AccessResult(
                allowed=False,
                plan_type=plan_type,
                reason="You have no exam attempts left. Buy a new exam."
            )

        return self._check_pro_quota(db, user_id, now, UsageType.MOCK)

    def _check_demo_or_pro(self, db: Session, user_id: UUID, now: datetime, usage_type: UsageType) -> AccessResult:
        """Writing/speaking AI: one lifetime demo on free, quota on Pro, denied on Standard"""
        plan_type = self.get_user_plan_type(db, user_id, now)

        if plan_type == PlanType.FREE.value:
            if self._lifetime_usage(db, user_id, usage_type) >= FREE_LIMITS[usage_type]:
                return AccessResult(
                    allowed=False,
                    plan_type=plan_type,
                    reason="Your free demo is used up. Upgrade to Pro."
                )
            return AccessResult(allowed=True, plan_type=plan_type)

        if plan_type == PlanType.STANDARD.value:
            return AccessResult(
                allowed=False,
                plan_type=plan_type,
                reason=f"{USAGE_LABELS[usage_type][0].upper()}{USAGE_LABELS[usage_type][1:]} is available on the Pro plan only."
            )

        return self._check_pro_quota(db, user_id, now, usage_type)

    def _check_ai_tutor(self, db: Session, user_id: UUID, now: datetime) -> AccessResult:
        plan_type = self.get_user_plan_type(db, user_id, now)
        if plan_type != PlanType.PRO.value:
            return AccessResult(
                allowed=False,
                plan_type=plan_type,
                reason="AI tutor is available on the Pro plan only. Upgrade to Pro."
            )
        return self._check_pro_quota(db, user_id, now, UsageType.AI_TUTOR)

    def _check_pro_quota(self, db: Session, user_id: UUID, now: datetime, usage_type: UsageType) -> AccessResult:
        subscription = self._get_active_subscription(db, user_id, now)
        if not subscription:
            # Subscription expired between plan derivation and this lookup
            return AccessResult(allowed=False, plan_type=PlanType.FREE.value, reason="Subscription not found.")

        usage = resolve_period(db, user_id, usage_type.value, subscription, now)
        limit = PRO_LIMITS[usage_type]
        if usage.used_count >= limit:
            return AccessResult(
                allowed=False,
                plan_type=PlanType.PRO.value,
                reason=f"Monthly {USAGE_LABELS[usage_type]} limit reached ({limit}/{limit})."
            )
        return AccessResult(allowed=True, plan_type=PlanType.PRO.value)

    # ───── Usage recording ─────

    def record_mock_usage(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> None:
        """Decrement the earliest-expiring purchase (Standard) or bump the period counter (Pro)"""
        now = now or utcnow()
        plan_type = self.get_user_plan_type(db, user_id, now)

        if plan_type == PlanType.STANDARD.value:
            purchases = self._get_valid_purchases(db, user_id, MOCK_EXAM_PRODUCT, now)
            if purchases:
                db.query(Purchase).filter(Purchase.id == purchases[0].id).update(
                    {Purchase.remaining_uses: Purchase.remaining_uses - 1}
                )
        elif plan_type == PlanType.PRO.value:
            self._increment_period_usage(db, user_id, UsageType.MOCK, now)

        self._finish_recording(db, user_id, UsageType.MOCK, plan_type)

    def record_writing_usage(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> None:
        self._record_demo_or_pro(db, user_id, UsageType.WRITING, now or utcnow())

    def record_speaking_usage(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> None:
        self._record_demo_or_pro(db, user_id, UsageType.SPEAKING, now or utcnow())

    def record_ai_tutor_usage(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        plan_type = self.get_user_plan_type(db, user_id, now)
        if plan_type == PlanType.PRO.value:
            self._increment_period_usage(db, user_id, UsageType.AI_TUTOR, now)
        self._finish_recording(db, user_id, UsageType.AI_TUTOR, plan_type)

    def _record_demo_or_pro(self, db: Session, user_id: UUID, usage_type: UsageType, now: datetime) -> None:
        plan_type = self.get_user_plan_type(db, user_id, now)

        if plan_type == PlanType.FREE.value:
            self._increment_demo_usage(db, user_id, usage_type)
        elif plan_type == PlanType.PRO.value:
            self._increment_period_usage(db, user_id, usage_type, now)

        self._finish_recording(db, user_id, usage_type, plan_type)

    def _increment_period_usage(self, db: Session, user_id: UUID, usage_type: UsageType, now: datetime) -> None:
        subscription = self._get_active_subscription(db, user_id, now)
        if not subscription:
            return
        usage = resolve_period(db, user_id, usage_type.value, subscription, now)
        db.query(UsageTracking).filter(UsageTracking.id == usage.id).update(
            {UsageTracking.used_count: UsageTracking.used_count + 1}
        )

    def _increment_demo_usage(self, db: Session, user_id: UUID, usage_type: UsageType) -> None:
        """Upsert the lifetime demo row"""
        updated = db.query(UsageTracking).filter(
            UsageTracking.user_id == user_id,
            UsageTracking.type == usage_type.value,
            UsageTracking.period_start == FREE_DEMO_PERIOD_START
        ).update({UsageTracking.used_count: UsageTracking.used_count + 1})
        if updated:
            return

        try:
            with db.begin_nested():
                db.add(UsageTracking(
                    user_id=user_id,
                    type=usage_type.value,
                    used_count=1,
                    period_start=FREE_DEMO_PERIOD_START,
                    period_end=FREE_DEMO_PERIOD_END
                ))
        except IntegrityError:
            db.query(UsageTracking).filter(
                UsageTracking.user_id == user_id,
                UsageTracking.type == usage_type.value,
                UsageTracking.period_start == FREE_DEMO_PERIOD_START
            ).update({UsageTracking.used_count: UsageTracking.used_count + 1})

    def _finish_recording(self, db: Session, user_id: UUID, usage_type: UsageType, plan_type: str) -> None:
        db.commit()
        cache_service.invalidate_access_status(user_id)
        logger.info(f"Usage recorded: user={user_id}, type={usage_type.value}, plan={plan_type}")

    # ───── Aggregate status ─────

    def get_access_status(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Compose plan, subscription, purchases, usage and access flags

        Read-only with respect to usage: never records consumption. Cached
        per user until the next recorded usage or the TTL.
        """
        cache_key = cache_service.access_status_key(user_id)
        if now is None:
            cached = cache_service.get(cache_key)
            if cached:
                return cached

        status = self._build_access_status(db, user_id, now or utcnow())
        db.commit()

        if now is None:
            cache_service.set(cache_key, status)
        return status

    def _build_access_status(self, db: Session, user_id: UUID, now: datetime) -> Dict[str, Any]:
        plan_type = self.get_user_plan_type(db, user_id, now)
        subscription = self._get_active_subscription(db, user_id, now)
        purchases = self._get_valid_purchases(db, user_id, MOCK_EXAM_PRODUCT, now)
        total_purchase_uses = sum(p.remaining_uses for p in purchases)

        usage = {t: {"used": 0, "limit": 0} for t in UsageType}

        if plan_type == PlanType.PRO.value and subscription:
            for usage_type in UsageType:
                counter = resolve_period(db, user_id, usage_type.value, subscription, now)
                usage[usage_type] = {"used": counter.used_count, "limit": PRO_LIMITS[usage_type]}
        elif plan_type == PlanType.FREE.value:
            for usage_type in (UsageType.WRITING, UsageType.SPEAKING):
                usage[usage_type] = {
                    "used": self._lifetime_usage(db, user_id, usage_type),
                    "limit": FREE_LIMITS[usage_type]
                }
        elif plan_type == PlanType.STANDARD.value:
            # Display convention: remaining purchased uses shown as the limit
            usage[UsageType.MOCK] = {"used": 0, "limit": total_purchase_uses}

        full_platform = self.can_access_full_platform(db, user_id, now)
        mock = self.can_start_mock(db, user_id, now)
        writing = self.can_use_writing_ai(db, user_id, now)
        speaking = self.can_use_speaking_ai(db, user_id, now)
        ai_tutor = self.can_use_ai_tutor(db, user_id, now)

        return {
            "plan_type": plan_type,
            "subscription": {
                "active": subscription is not None,
                "expires_at": subscription.expires_at.isoformat() if subscription else None,
            },
            "purchases": {
                "mock_exam": {
                    "available": total_purchase_uses,
                    "expires_at": purchases[0].expires_at.isoformat() if purchases else None,
                },
            },
            "usage": {
                "mock": usage[UsageType.MOCK],
                "writing": usage[UsageType.WRITING],
                "speaking": usage[UsageType.SPEAKING],
                "ai_tutor": usage[UsageType.AI_TUTOR],
            },
            "access": {
                "full_platform": full_platform.allowed,
                "mock_exam": mock.allowed,
                "writing_ai": writing.allowed,
                "speaking_ai": speaking.allowed,
                "ai_tutor": ai_tutor.allowed,
            },
        }

    def record_usage(self, db: Session, user_id: UUID, usage_type: UsageType) -> None:
        """Dispatch a recorded consumption by usage type"""
        recorders = {
            UsageType.MOCK: self.record_mock_usage,
            UsageType.WRITING: self.record_writing_usage,
            UsageType.SPEAKING: self.record_speaking_usage,
            UsageType.AI_TUTOR: self.record_ai_tutor_usage,
        }
        recorders[usage_type](db, user_id)


# Global instance
access_control_service = AccessControlService()
