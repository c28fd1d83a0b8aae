"""
Database models package
"""
from app.models.user import User
from app.models.mock_exam import MockExam, Question, MockExamQuestion
from app.models.exam_attempt import ExamAttempt, AttemptStatus, AddressingMode
from app.models.attempt_question import AttemptQuestion, Section
from app.models.user_answer import UserAnswer, AUDIO_SUBMITTED_SENTINEL
from app.models.billing import Subscription, Purchase, UsageTracking
from app.models.user_progress import UserProgress

__all__ = [
    "User",
    "MockExam", "Question", "MockExamQuestion",
    "ExamAttempt", "AttemptStatus", "AddressingMode",
    "AttemptQuestion", "Section",
    "UserAnswer", "AUDIO_SUBMITTED_SENTINEL",
    "Subscription", "Purchase", "UsageTracking",
    "UserProgress",
]
