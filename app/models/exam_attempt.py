"""
ExamAttempt model - one user's exam-taking session and its final scores
"""
import enum
import uuid

from sqlalchemy import Column, String, Text, Float, TIMESTAMP, ForeignKey, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.clock import utcnow


class AttemptStatus:
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class AddressingMode(str, enum.Enum):
    """
    Which foreign key answers of an attempt use.

    Attempts with their own AttemptQuestion snapshot address answers by
    attempt_question_id; older attempts read questions live from the mock
    exam bank and address answers by question_id.
    """
    ATTEMPT_QUESTION = "attempt_question"
    BANK_QUESTION = "bank_question"


class ExamAttempt(Base):
    """
    Exam attempts table - lifecycle IN_PROGRESS -> COMPLETED (exactly once)
    """
    __tablename__ = "exam_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    mock_exam_id = Column(Uuid, ForeignKey("mock_exams.id"), nullable=True)
    level = Column(String(2))  # standalone CEFR attempts only, e.g. "B1"
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS)
    started_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    completed_at = Column(TIMESTAMP)

    # Set at completion
    total_score = Column(Float)
    max_possible_score = Column(Float)
    percentage = Column(Float)
    cefr_level_achieved = Column(String(2))
    cefr_feedback = Column(Text)
    section_scores = Column(JSON().with_variant(JSONB(), "postgresql"))  # {section: {score, max}}

    created_at = Column(TIMESTAMP, nullable=False, default=utcnow, index=True)

    mock_exam = relationship("MockExam")
    attempt_questions = relationship(
        "AttemptQuestion",
        order_by="AttemptQuestion.order",
        back_populates="attempt",
    )
    answers = relationship("UserAnswer", back_populates="attempt")

    @property
    def addressing_mode(self) -> AddressingMode:
        if self.attempt_questions:
            return AddressingMode.ATTEMPT_QUESTION
        return AddressingMode.BANK_QUESTION

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED

    def __repr__(self):
        return f"<ExamAttempt(id={self.id}, user_id={self.user_id}, status={self.status})>"
