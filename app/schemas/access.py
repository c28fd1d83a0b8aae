"""
Pydantic schemas for entitlement endpoints
"""
from typing import Optional
from datetime import datetime

from app.schemas.common import CamelModel
from app.services.access_control import UsageType


class SubscriptionSummary(CamelModel):
    active: bool
    expires_at: Optional[datetime] = None


class PurchaseSummary(CamelModel):
    available: int
    expires_at: Optional[datetime] = None


class PurchasesSummary(CamelModel):
    mock_exam: PurchaseSummary


class UsageCounter(CamelModel):
    used: int
    limit: int


class UsageSummary(CamelModel):
    mock: UsageCounter
    writing: UsageCounter
    speaking: UsageCounter
    ai_tutor: UsageCounter


class AccessFlags(CamelModel):
    full_platform: bool
    mock_exam: bool
    writing_ai: bool
    speaking_ai: bool
    ai_tutor: bool


class AccessStatus(CamelModel):
    """Aggregate entitlement status for the current user"""
    plan_type: str
    subscription: SubscriptionSummary
    purchases: PurchasesSummary
    usage: UsageSummary
    access: AccessFlags


class UsageRecordRequest(CamelModel):
    type: UsageType


class UsageRecordResponse(CamelModel):
    success: bool
    status: AccessStatus
