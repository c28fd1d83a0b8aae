"""
Exam grading service with hybrid approach
Objective sections: deterministic answer matching
Writing/Speaking: AI rubric grading via Gemini (speaking transcribed first)
"""
import math
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    AddressingMode,
    AttemptQuestion,
    AttemptStatus,
    ExamAttempt,
    User,
    UserAnswer,
    UserProgress,
    Section,
    AUDIO_SUBMITTED_SENTINEL,
)
from app.schemas.attempt import SubmitPayload
from app.services.answer_matching import is_answer_correct
from app.services.attempt_service import (
    find_answer,
    get_owned_attempt,
    parse_json_field,
    speaking_answer_text,
    upsert_answer,
)
from app.services.exceptions import UpstreamGradingError
from app.services.gemini_service import gemini_service
from app.utils.audio_storage import local_audio_path
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

BANK_SECTION = "section"

NO_ANSWER_FEEDBACK = "No answer provided"
GRADING_FAILED_FEEDBACK = "Automatic grading failed for this task; it was scored 0."
TRANSCRIPTION_FAILED_FEEDBACK = "Your recording could not be transcribed; this task was scored 0."


@dataclass
class QuestionGrade:
    """Outcome of grading one question"""
    score: float
    max_score: float
    is_correct: Optional[bool] = None
    feedback: Optional[str] = None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(score: float, max_score: float) -> float:
    return max(0.0, min(float(score), float(max_score)))


class GradingService:
    """
    Service for grading exam submissions

    Strategy:
    - listening / reading / language_use: matcher against the stored key
    - writing: Gemini rubric grading of the submitted text
    - speaking: transcribe the recording when no text exists, then Gemini grading
    - Completion is a compare-and-swap on status, so an attempt is scored once
    """

    def __init__(self, ai=None, matcher: Callable[[str, Optional[str]], bool] = is_answer_correct):
        self.ai = ai or gemini_service
        self.matcher = matcher

    async def submit(
        self,
        db: Session,
        attempt_id: UUID,
        user_id: UUID,
        payload: Optional[SubmitPayload] = None
    ) -> Dict[str, Any]:
        """
        Ingest final answers, grade every question and complete the attempt

        Args:
            db: Database session
            attempt_id: Attempt UUID
            user_id: Caller; must own the attempt
            payload: Optional final answers, upserted before grading

        Returns:
            Score summary; the stored one when the attempt is already completed

        Raises:
            AttemptNotFoundError: missing or not owned
        """
        attempt = get_owned_attempt(db, attempt_id, user_id)
        if attempt.is_completed:
            logger.info(f"Attempt {attempt_id} already completed, returning stored scores")
            return self._stored_summary(attempt)

        if payload is not None:
            self._ingest_payload(db, attempt, payload)
            db.commit()

        if attempt.addressing_mode == AddressingMode.ATTEMPT_QUESTION:
            total_score, max_score, section_scores = await self._grade_attempt_questions(db, attempt)
        else:
            total_score, max_score, section_scores = self._grade_bank_questions(db, attempt)

        percentage = (total_score / max_score * 100) if max_score > 0 else 0.0
        cefr_level, cefr_feedback = self.ai.evaluate_cefr_level(
            total_score, max_score, percentage, self._language_for(db, user_id)
        )

        now = utcnow()
        completed = db.query(ExamAttempt).filter(
            ExamAttempt.id == attempt.id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS
        ).update({
            ExamAttempt.status: AttemptStatus.COMPLETED,
            ExamAttempt.completed_at: now,
            ExamAttempt.total_score: total_score,
            ExamAttempt.max_possible_score: max_score,
            ExamAttempt.percentage: percentage,
            ExamAttempt.cefr_level_achieved: cefr_level,
            ExamAttempt.cefr_feedback: cefr_feedback,
            ExamAttempt.section_scores: section_scores,
        }, synchronize_session=False)

        if completed == 0:
            # Another submission finished first; its grading stands
            db.rollback()
            logger.info(f"Attempt {attempt_id} was completed concurrently, discarding this grading")
            return self._stored_summary(get_owned_attempt(db, attempt_id, user_id))

        self._update_progress(db, user_id, cefr_level, now)
        db.commit()

        logger.info(
            f"Attempt {attempt_id} graded: {total_score}/{max_score} "
            f"({percentage:.1f}%), CEFR {cefr_level}"
        )

        return {
            "attempt_id": attempt_id,
            "total_score": total_score,
            "max_possible_score": max_score,
            "percentage": percentage,
            "cefr_level_achieved": cefr_level,
            "cefr_feedback": cefr_feedback,
        }

    def _stored_summary(self, attempt: ExamAttempt) -> Dict[str, Any]:
        return {
            "attempt_id": attempt.id,
            "total_score": attempt.total_score or 0.0,
            "max_possible_score": attempt.max_possible_score or 0.0,
            "percentage": attempt.percentage or 0.0,
            "cefr_level_achieved": attempt.cefr_level_achieved,
            "cefr_feedback": attempt.cefr_feedback,
        }

    def _language_for(self, db: Session, user_id: UUID) -> str:
        language = db.query(User.language_preference).filter(User.id == user_id).scalar()
        return language or settings.DEFAULT_LANGUAGE

    # ---- Ingestion ----

    def _ingest_payload(self, db: Session, attempt: ExamAttempt, payload: SubmitPayload) -> None:
        """Upsert every submitted entry that belongs to this attempt"""

        if attempt.addressing_mode == AddressingMode.BANK_QUESTION:
            bank_ids = {mq.question_id for mq in attempt.mock_exam.questions} if attempt.mock_exam else set()
            for entry in payload.answers or []:
                if entry.attempt_question_id in bank_ids:
                    upsert_answer(db, attempt.id, question_id=entry.attempt_question_id, answer_text=entry.answer)
                else:
                    logger.warning(f"Skipping answer for unknown question {entry.attempt_question_id}")
            return

        question_ids = {q.id for q in attempt.attempt_questions}

        for entry in payload.answers or []:
            if entry.attempt_question_id not in question_ids:
                logger.warning(f"Skipping answer for unknown question {entry.attempt_question_id}")
                continue
            upsert_answer(db, attempt.id, attempt_question_id=entry.attempt_question_id, answer_text=entry.answer)

        for entry in payload.writing or []:
            if entry.task_id not in question_ids:
                logger.warning(f"Skipping writing for unknown task {entry.task_id}")
                continue
            upsert_answer(db, attempt.id, attempt_question_id=entry.task_id, answer_text=entry.text)

        for entry in payload.speaking or []:
            if entry.task_id not in question_ids:
                logger.warning(f"Skipping speaking for unknown task {entry.task_id}")
                continue
            fields = {"answer_text": speaking_answer_text(entry.text, entry.audio_url)}
            if entry.audio_url:
                fields["audio_url"] = entry.audio_url
            upsert_answer(db, attempt.id, attempt_question_id=entry.task_id, **fields)

    # ---- Attempt-question path ----

    async def _grade_attempt_questions(
        self,
        db: Session,
        attempt: ExamAttempt
    ) -> Tuple[float, float, Dict[str, Dict[str, float]]]:
        """
        Grade an attempt with its own question snapshot

        Returns:
            Tuple of (total_score, max_score, section_scores)
        """
        level = attempt.level or settings.DEFAULT_ATTEMPT_LEVEL
        total_score = 0.0
        max_score = 0.0
        section_scores: Dict[str, Dict[str, float]] = {}

        for question in attempt.attempt_questions:
            answer = find_answer(db, attempt.id, attempt_question_id=question.id)

            if question.section == Section.WRITING:
                grade = await self._grade_writing(level, question, answer)
            elif question.section == Section.SPEAKING:
                grade = await self._grade_speaking(db, attempt, level, question, answer)
            else:
                grade = self._grade_objective(question.correct_answer, question.points, question.effective_max_score, answer)

            if grade.is_correct is not None:
                fields = {"is_correct": grade.is_correct, "points_earned": grade.score}
            else:
                fields = {
                    "points_earned": round_half_up(grade.score),
                    "score": grade.score,
                    "ai_feedback": grade.feedback,
                }
            upsert_answer(db, attempt.id, attempt_question_id=question.id, **fields)

            total_score += grade.score
            max_score += grade.max_score
            bucket = section_scores.setdefault(question.section, {"score": 0.0, "max": 0.0})
            bucket["score"] += grade.score
            bucket["max"] += grade.max_score

        return total_score, max_score, section_scores

    def _grade_objective(
        self,
        correct_answer: Optional[str],
        points: int,
        max_score: float,
        answer: Optional[UserAnswer]
    ) -> QuestionGrade:
        """Exact or structural match; full points when correct"""
        is_correct = answer is not None and self.matcher(answer.answer_text or "", correct_answer)
        score = float(min(points, max_score)) if is_correct else 0.0
        return QuestionGrade(score=score, max_score=float(max_score), is_correct=is_correct)

    def _task_for(self, question: AttemptQuestion) -> Dict[str, Any]:
        return {
            "prompt": question.question_text,
            "rubric": parse_json_field(question.rubric),
            "max_score": question.effective_max_score,
        }

    async def _grade_writing(
        self,
        level: str,
        question: AttemptQuestion,
        answer: Optional[UserAnswer]
    ) -> QuestionGrade:
        max_score = float(question.effective_max_score)
        text = (answer.answer_text or "") if answer else ""

        if not text.strip():
            return QuestionGrade(score=0.0, max_score=max_score, feedback=NO_ANSWER_FEEDBACK)

        try:
            score, feedback = self._call_upstream(self.ai.grade_writing, level, self._task_for(question), text)
        except UpstreamGradingError as e:
            logger.error(f"Writing grading failed for question {question.id}: {e.message}")
            return QuestionGrade(score=0.0, max_score=max_score, feedback=GRADING_FAILED_FEEDBACK)

        return QuestionGrade(score=clamp_score(score, max_score), max_score=max_score, feedback=feedback)

    async def _grade_speaking(
        self,
        db: Session,
        attempt: ExamAttempt,
        level: str,
        question: AttemptQuestion,
        answer: Optional[UserAnswer]
    ) -> QuestionGrade:
        """
        Grade a speaking task, transcribing the recording when needed

        A recording whose answer has no real text (empty or the audio
        sentinel) is transcribed first and the transcript replaces the
        stored text. If transcription fails the sentinel stays and the
        task is graded as empty.
        """
        max_score = float(question.effective_max_score)
        stored_text = answer.answer_text if answer else None
        text = "" if stored_text in (None, AUDIO_SUBMITTED_SENTINEL) else stored_text
        transcription_failed = False

        if answer and answer.audio_url and not text.strip():
            try:
                transcript = self._call_upstream(self.ai.transcribe_audio, local_audio_path(answer.audio_url))
            except UpstreamGradingError as e:
                logger.warning(f"Transcription failed for question {question.id}: {e.message}")
                transcript = None

            if transcript:
                text = transcript
                upsert_answer(db, attempt.id, attempt_question_id=question.id, answer_text=transcript)
            else:
                transcription_failed = True

        if not text.strip():
            feedback = TRANSCRIPTION_FAILED_FEEDBACK if transcription_failed else NO_ANSWER_FEEDBACK
            return QuestionGrade(score=0.0, max_score=max_score, feedback=feedback)

        try:
            score, feedback = self._call_upstream(self.ai.grade_speaking, level, self._task_for(question), text)
        except UpstreamGradingError as e:
            logger.error(f"Speaking grading failed for question {question.id}: {e.message}")
            return QuestionGrade(score=0.0, max_score=max_score, feedback=GRADING_FAILED_FEEDBACK)

        return QuestionGrade(score=clamp_score(score, max_score), max_score=max_score, feedback=feedback)

    def _call_upstream(self, fn: Callable, *args):
        try:
            return fn(*args)
        except Exception as e:
            raise UpstreamGradingError(f"{getattr(fn, '__name__', 'AI call')} failed: {str(e)}") from e

    # ---- Bank path ----

    def _grade_bank_questions(
        self,
        db: Session,
        attempt: ExamAttempt
    ) -> Tuple[float, float, Dict[str, Dict[str, float]]]:
        """Grade a legacy attempt whose questions live in the mock exam bank"""
        total_score = 0.0
        max_score = 0.0
        bucket = {"score": 0.0, "max": 0.0}

        links = attempt.mock_exam.questions if attempt.mock_exam else []
        for link in links:
            question = link.question
            answer = find_answer(db, attempt.id, question_id=question.id)
            grade = self._grade_objective(question.correct_answer, question.points, question.points, answer)

            upsert_answer(
                db,
                attempt.id,
                question_id=question.id,
                is_correct=grade.is_correct,
                points_earned=grade.score
            )

            total_score += grade.score
            max_score += grade.max_score
            bucket["score"] += grade.score
            bucket["max"] += grade.max_score

        return total_score, max_score, {BANK_SECTION: bucket}

    # ---- Progress ----

    def _update_progress(self, db: Session, user_id: UUID, cefr_level: str, now) -> None:
        """Bump the user's rolling progress record"""
        progress = db.query(UserProgress).filter(UserProgress.user_id == user_id).first()

        if not progress:
            progress = UserProgress(user_id=user_id, total_exams_taken=0)
            db.add(progress)

        progress.total_exams_taken = (progress.total_exams_taken or 0) + 1
        progress.current_cefr_estimate = cefr_level
        progress.last_activity_at = now


# Global instance
grading_service = GradingService()
