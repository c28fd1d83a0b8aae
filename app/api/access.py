"""
Entitlement API endpoints
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas.access import AccessStatus, UsageRecordRequest, UsageRecordResponse
from app.services.access_control import access_control_service

router = APIRouter(prefix="/api/access", tags=["access"])
logger = logging.getLogger(__name__)


@router.get("/status", response_model=AccessStatus)
async def get_access_status(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Plan, subscription, purchases, usage counters and access flags

    Cached briefly in Redis; recording usage invalidates the cache.
    """
    return access_control_service.get_access_status(db, user.id)


@router.post("/usage/record", response_model=UsageRecordResponse)
async def record_usage(
    request: UsageRecordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Record one use of a metered feature and return the fresh status"""
    access_control_service.record_usage(db, user.id, request.type)
    logger.info(f"Recorded {request.type.value} usage for user {user.id}")

    return {
        "success": True,
        "status": access_control_service.get_access_status(db, user.id),
    }
