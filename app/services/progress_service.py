"""
Progress service for the learner dashboard
"""
import logging
from collections import defaultdict
from typing import Any, Dict
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import AttemptStatus, ExamAttempt, UserProgress

logger = logging.getLogger(__name__)


class ProgressService:
    """Service for per-user progress metrics"""

    def get_user_progress(self, db: Session, user_id: UUID) -> Dict[str, Any]:
        """
        Combine the rolling progress record with averages over completed attempts

        Args:
            db: Database session
            user_id: User UUID

        Returns:
            Dictionary with progress metrics; zeros for a user with no attempts
        """
        progress = db.query(UserProgress).filter(UserProgress.user_id == user_id).first()

        attempts = db.query(ExamAttempt).filter(
            ExamAttempt.user_id == user_id,
            ExamAttempt.status == AttemptStatus.COMPLETED
        ).all()

        percentages = [a.percentage for a in attempts if a.percentage is not None]
        avg_percentage = sum(percentages) / len(percentages) if percentages else 0.0

        return {
            "user_id": user_id,
            "total_exams_taken": progress.total_exams_taken if progress else 0,
            "current_cefr_estimate": progress.current_cefr_estimate if progress else None,
            "last_activity_at": progress.last_activity_at if progress else None,
            "completed_attempts": len(attempts),
            "average_percentage": round(avg_percentage, 2),
            "section_averages": self._section_averages(attempts),
        }

    def _section_averages(self, attempts) -> Dict[str, float]:
        """Mean per-section percentage across attempts that scored the section"""

        section_ratios = defaultdict(list)

        for attempt in attempts:
            sections = attempt.section_scores if isinstance(attempt.section_scores, dict) else {}
            for section, bucket in sections.items():
                if not isinstance(bucket, dict):
                    continue
                max_score = bucket.get("max", 0)
                if max_score > 0:
                    section_ratios[section].append(bucket.get("score", 0) / max_score)

        return {
            section: round(sum(ratios) / len(ratios) * 100, 2)
            for section, ratios in sorted(section_ratios.items())
        }


# Global instance
progress_service = ProgressService()
