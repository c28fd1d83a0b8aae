"""
UserProgress model - rolling per-user exam rollup
"""
from sqlalchemy import Column, Integer, String, TIMESTAMP, ForeignKey, Uuid
from app.database import Base
from app.utils.clock import utcnow
import uuid


class UserProgress(Base):
    """
    User progress table - updated once per completed attempt
    """
    __tablename__ = "user_progress"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    total_exams_taken = Column(Integer, nullable=False, default=0)
    current_cefr_estimate = Column(String(2))
    last_activity_at = Column(TIMESTAMP)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<UserProgress(user_id={self.user_id}, exams={self.total_exams_taken}, cefr={self.current_cefr_estimate})>"
