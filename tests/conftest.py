import os

# Must be set before the app modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ["RATE_LIMIT_PER_HOUR"] = "1000000"

import json
from datetime import timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.database import Base, SessionLocal, engine
from app.main import app as fastapi_app
from app.models import (
    AttemptQuestion,
    ExamAttempt,
    MockExam,
    MockExamQuestion,
    Question,
    Section,
    User,
)
from app.services.grading_service import grading_service
from app.utils.clock import utcnow
from app.utils.rate_limiter import rate_limiter


class FakeAI:
    """Stand-in for the Gemini adapter with scripted answers"""

    def __init__(self):
        self.writing_scores = []
        self.speaking_scores = []
        self.transcript = None
        self.transcribe_error = None
        self.grade_error = None
        self.calls = []

    def grade_writing(self, level, task, text):
        self.calls.append(("writing", level, text))
        if self.grade_error:
            raise self.grade_error
        score = self.writing_scores.pop(0) if self.writing_scores else 0.0
        return score, "writing feedback"

    def grade_speaking(self, level, task, text):
        self.calls.append(("speaking", level, text))
        if self.grade_error:
            raise self.grade_error
        score = self.speaking_scores.pop(0) if self.speaking_scores else 0.0
        return score, "speaking feedback"

    def transcribe_audio(self, file_path):
        self.calls.append(("transcribe", file_path))
        if self.transcribe_error:
            raise self.transcribe_error
        return self.transcript

    def evaluate_cefr_level(self, total_score, max_score, percentage, language):
        self.calls.append(("cefr", language))
        return "B1", f"feedback in {language}"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_ai(monkeypatch):
    ai = FakeAI()
    monkeypatch.setattr(grading_service, "ai", ai)
    return ai


@pytest.fixture(autouse=True)
def uploads_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOADS_DIR", str(path))
    return path


@pytest.fixture
def client(db):
    rate_limiter.reset()
    return TestClient(fastapi_app)


def auth_headers(user):
    token = jwt.encode({"sub": str(user.id)}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


def make_user(db, email="learner@example.com", language="uz"):
    user = User(email=email, full_name="Test Learner", language_preference=language)
    db.add(user)
    db.commit()
    return user


def make_cefr_attempt(db, user, questions, level="B1", created_at=None):
    """
    Create an attempt with its own question snapshot

    Each entry is a dict of AttemptQuestion fields; order follows the list.
    """
    attempt = ExamAttempt(user_id=user.id, level=level)
    if created_at is not None:
        attempt.created_at = created_at
    db.add(attempt)
    db.flush()

    for index, overrides in enumerate(questions, start=1):
        fields = {
            "question_text": f"Question {index}",
            "question_type": "MULTIPLE_CHOICE",
            "section": Section.READING,
            "points": 1,
        }
        fields.update(overrides)
        for key in ("options", "rubric"):
            if key in fields and not isinstance(fields[key], str):
                fields[key] = json.dumps(fields[key])
        db.add(AttemptQuestion(attempt_id=attempt.id, order=index, **fields))

    db.commit()
    return attempt


def make_bank_attempt(db, user, answer_keys, points=1):
    """Legacy attempt reading its questions from a mock exam"""
    exam = MockExam(title="Mock exam 1", duration_minutes=90)
    db.add(exam)
    db.flush()

    for index, correct in enumerate(answer_keys, start=1):
        question = Question(
            question_text=f"Bank question {index}",
            options=json.dumps(["A", "B", "C"]),
            correct_answer=correct,
            points=points,
        )
        db.add(question)
        db.flush()
        db.add(MockExamQuestion(mock_exam_id=exam.id, question_id=question.id, order=index))

    attempt = ExamAttempt(user_id=user.id, mock_exam_id=exam.id)
    db.add(attempt)
    db.commit()
    return attempt


def minutes_ago(minutes):
    return utcnow() - timedelta(minutes=minutes)
