"""
Billing models - Pro subscriptions, Standard purchases and usage counters
"""
from sqlalchemy import Column, String, Integer, TIMESTAMP, ForeignKey, UniqueConstraint, Uuid
from app.database import Base
from app.utils.clock import utcnow
import uuid


class Subscription(Base):
    """
    Subscriptions table - Pro plan billing record
    """
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    plan_type = Column(String(20), nullable=False, default="pro")
    status = Column(String(20), nullable=False, default="active")
    started_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    expires_at = Column(TIMESTAMP, nullable=False)

    def __repr__(self):
        return f"<Subscription(user_id={self.user_id}, status={self.status}, expires_at={self.expires_at})>"


class Purchase(Base):
    """
    Purchases table - Standard plan one-off entitlements, consumed FIFO by expiry
    """
    __tablename__ = "purchases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    product_type = Column(String(30), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    remaining_uses = Column(Integer, nullable=False, default=1)
    expires_at = Column(TIMESTAMP, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)

    def __repr__(self):
        return f"<Purchase(user_id={self.user_id}, product={self.product_type}, remaining={self.remaining_uses})>"


class UsageTracking(Base):
    """
    Usage counters keyed by (user, usage type, period start)
    """
    __tablename__ = "usage_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "period_start", name="uq_usage_user_type_period"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    used_count = Column(Integer, nullable=False, default=0)
    period_start = Column(TIMESTAMP, nullable=False)
    period_end = Column(TIMESTAMP, nullable=False)

    def __repr__(self):
        return f"<UsageTracking(user_id={self.user_id}, type={self.type}, used={self.used_count})>"
