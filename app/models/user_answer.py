"""
UserAnswer model - one response to one question within one attempt
"""
from sqlalchemy import Column, String, Text, Float, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.clock import utcnow
import uuid

# Stored as answer text when speaking audio was submitted without any text
AUDIO_SUBMITTED_SENTINEL = "[Audio yuklandi]"


class UserAnswer(Base):
    """
    User answers table - exactly one of attempt_question_id / question_id is set
    """
    __tablename__ = "user_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "attempt_question_id", name="uq_answer_attempt_question"),
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_bank_question"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("exam_attempts.id"), nullable=False, index=True)
    attempt_question_id = Column(Uuid, ForeignKey("attempt_questions.id"), nullable=True)
    question_id = Column(Uuid, ForeignKey("questions.id"), nullable=True)

    answer_text = Column(Text)
    audio_url = Column(String(500))

    # Grading output
    is_correct = Column(Boolean)
    points_earned = Column(Float)
    score = Column(Float)  # unrounded AI score
    ai_feedback = Column(Text)

    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    attempt = relationship("ExamAttempt", back_populates="answers")

    def __repr__(self):
        return f"<UserAnswer(attempt_id={self.attempt_id}, points={self.points_earned})>"
