"""
Pydantic schemas for the progress dashboard
"""
from typing import Dict, Optional
from uuid import UUID
from datetime import datetime

from app.schemas.common import CamelModel


class ProgressView(CamelModel):
    """Rolling progress record plus averages over completed attempts"""
    user_id: UUID
    total_exams_taken: int
    current_cefr_estimate: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    completed_attempts: int
    average_percentage: float
    section_averages: Dict[str, float]
