"""
Mock exam and question bank models - the legacy, bank-backed question source
"""
from sqlalchemy import Column, String, Integer, Text, TIMESTAMP, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.clock import utcnow
import uuid


class MockExam(Base):
    """
    Mock exams table - a fixed, ordered set of bank questions
    """
    __tablename__ = "mock_exams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=120)
    created_at = Column(TIMESTAMP, default=utcnow)

    questions = relationship(
        "MockExamQuestion",
        order_by="MockExamQuestion.order",
        back_populates="mock_exam",
    )

    def __repr__(self):
        return f"<MockExam(id={self.id}, title={self.title})>"


class Question(Base):
    """
    Question bank table - objective questions only
    """
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(30), nullable=False, default="MULTIPLE_CHOICE")
    options = Column(Text)  # JSON array, serialized
    correct_answer = Column(Text)  # raw string or serialized JSON
    points = Column(Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<Question(id={self.id}, type={self.question_type})>"


class MockExamQuestion(Base):
    """
    Ordering link between a mock exam and its bank questions
    """
    __tablename__ = "mock_exam_questions"
    __table_args__ = (UniqueConstraint("mock_exam_id", "question_id"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    mock_exam_id = Column(Uuid, ForeignKey("mock_exams.id"), nullable=False, index=True)
    question_id = Column(Uuid, ForeignKey("questions.id"), nullable=False)
    order = Column(Integer, nullable=False)

    mock_exam = relationship("MockExam", back_populates="questions")
    question = relationship("Question")

    def __repr__(self):
        return f"<MockExamQuestion(mock_exam_id={self.mock_exam_id}, order={self.order})>"
