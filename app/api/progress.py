"""
Progress dashboard API endpoint
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas.progress import ProgressView
from app.services.progress_service import progress_service

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.get("", response_model=ProgressView)
async def get_progress(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Progress summary for the current user

    Returns:
    - Exams taken and current CEFR estimate
    - Average percentage over completed attempts
    - Per-section average percentage
    """
    return progress_service.get_user_progress(db, user.id)
