"""
Pydantic schemas for attempt-related requests and responses
"""
from pydantic import Field
from typing import Any, Dict, List, Optional
from uuid import UUID
from datetime import datetime

from app.schemas.common import CamelModel


class ExamSummary(CamelModel):
    """Mock exam header, or a synthetic one for standalone CEFR attempts"""
    id: str
    title: str
    duration_minutes: Optional[int] = None


class SectionScore(CamelModel):
    score: float
    max: float


# ---- Attempt view ----

class AttemptQuestionView(CamelModel):
    """Question as served mid-exam - never carries the correct answer"""
    id: UUID
    order: int
    question_text: str
    question_type: str
    options: Optional[Any] = None
    points: int
    max_score: Optional[int] = None
    section: Optional[str] = None
    task_type: Optional[str] = None
    transcript: Optional[str] = None
    passage: Optional[str] = None
    audio_url: Optional[str] = None
    rubric: Optional[Any] = None
    word_limit: Optional[int] = None


class AnswerDraft(CamelModel):
    """Recorded answer without grading fields"""
    answer_text: Optional[str] = None
    audio_url: Optional[str] = None


class AttemptView(CamelModel):
    attempt_id: UUID
    status: str
    started_at: datetime
    level: Optional[str] = None
    exam: Optional[ExamSummary] = None
    questions: List[AttemptQuestionView]
    answers: Dict[str, AnswerDraft]  # keyed by the active question id scheme
    use_attempt_question_id: bool


# ---- Answer writes ----

class AnswerWrite(CamelModel):
    """Single answer upsert; exactly one id is expected"""
    question_id: Optional[UUID] = None
    attempt_question_id: Optional[UUID] = None
    answer_text: Optional[str] = None


class AnswerWriteResponse(CamelModel):
    ok: bool = True


class AudioUploadResponse(CamelModel):
    audio_url: str


# ---- Submission ----

class SubmittedAnswer(CamelModel):
    attempt_question_id: UUID
    answer: str


class SubmittedWriting(CamelModel):
    task_id: UUID
    text: str


class SubmittedSpeaking(CamelModel):
    task_id: UUID
    text: Optional[str] = None
    audio_url: Optional[str] = None


class SubmitPayload(CamelModel):
    """All lists are optional; entries are upserted before grading"""
    answers: Optional[List[SubmittedAnswer]] = None
    writing: Optional[List[SubmittedWriting]] = None
    speaking: Optional[List[SubmittedSpeaking]] = None


class ScoreSummary(CamelModel):
    attempt_id: UUID
    total_score: float
    max_possible_score: float
    percentage: float
    cefr_level_achieved: Optional[str] = None
    cefr_feedback: Optional[str] = None


# ---- Results ----

class QuestionResult(CamelModel):
    """Full post-grading detail for one question"""
    id: UUID
    order: int
    question_text: str
    options: Optional[Any] = None
    correct_answer: Optional[Any] = None
    points: int
    max_score: Optional[int] = None
    user_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    points_earned: Optional[float] = None
    score: Optional[float] = None
    feedback: Optional[str] = None
    section: Optional[str] = None
    task_type: Optional[str] = None
    rubric: Optional[Any] = None
    transcript: Optional[str] = None
    audio_url: Optional[str] = None


class ResultView(CamelModel):
    attempt_id: UUID
    status: str
    completed_at: Optional[datetime] = None
    total_score: Optional[float] = None
    max_possible_score: Optional[float] = None
    percentage: Optional[float] = None
    cefr_level_achieved: Optional[str] = None
    cefr_feedback: Optional[str] = None
    section_scores: Optional[Dict[str, SectionScore]] = None
    exam: Optional[ExamSummary] = None
    level: Optional[str] = None
    questions: List[QuestionResult]


# ---- History ----

class AttemptHistoryItem(CamelModel):
    id: UUID
    status: str
    level: Optional[str] = None
    total_score: Optional[float] = None
    max_possible_score: Optional[float] = None
    percentage: Optional[float] = None
    cefr_level_achieved: Optional[str] = None
    section_scores: Optional[Dict[str, SectionScore]] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    exam_title: Optional[str] = None
    exam_duration_minutes: Optional[int] = None
    actual_duration_minutes: Optional[int] = None
    questions_count: int = Field(0, ge=0)
    correct_count: int = Field(0, ge=0)
    wrong_count: int = Field(0, ge=0)
    unanswered_count: int = Field(0, ge=0)


class AttemptHistoryPage(CamelModel):
    items: List[AttemptHistoryItem]
    next_cursor: Optional[UUID] = None
