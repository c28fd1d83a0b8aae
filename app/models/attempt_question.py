"""
AttemptQuestion model - frozen per-attempt copy of a question
"""
from sqlalchemy import Column, String, Integer, Text, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.database import Base
import uuid


class Section:
    LISTENING = "listening"
    READING = "reading"
    LANGUAGE_USE = "language_use"
    WRITING = "writing"
    SPEAKING = "speaking"

    AI_GRADED = (WRITING, SPEAKING)


class AttemptQuestion(Base):
    """
    Attempt questions table - decouples attempt content from later bank edits
    """
    __tablename__ = "attempt_questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("exam_attempts.id"), nullable=False, index=True)
    source_question_id = Column(Uuid, nullable=True)
    order = Column(Integer, nullable=False)
    section = Column(String(20), nullable=False)
    task_type = Column(String(50))
    question_type = Column(String(30), nullable=False, default="MULTIPLE_CHOICE")
    question_text = Column(Text, nullable=False)
    transcript = Column(Text)  # listening script
    passage = Column(Text)  # reading passage
    audio_url = Column(String(500))
    options = Column(Text)  # JSON array, serialized
    correct_answer = Column(Text)  # raw string or serialized JSON
    rubric = Column(Text)  # JSON object, serialized (writing/speaking)
    points = Column(Integer, nullable=False, default=1)
    max_score = Column(Integer)  # falls back to points when unset
    word_limit = Column(Integer)

    attempt = relationship("ExamAttempt", back_populates="attempt_questions")

    @property
    def effective_max_score(self) -> int:
        return self.max_score if self.max_score is not None else self.points

    def __repr__(self):
        return f"<AttemptQuestion(id={self.id}, section={self.section}, order={self.order})>"
