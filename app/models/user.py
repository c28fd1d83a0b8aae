"""
User model - the learner taking exams
"""
from sqlalchemy import Column, String, TIMESTAMP, Uuid
from app.database import Base
from app.utils.clock import utcnow
import uuid


class User(Base):
    """
    Users table - identity and language preference used for CEFR feedback
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    language_preference = Column(String(10), nullable=False, default="uz")
    created_at = Column(TIMESTAMP, default=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
