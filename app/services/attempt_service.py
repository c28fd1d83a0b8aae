"""
Attempt service: attempt views, result projection, history and answer writes
"""
import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import UploadFile
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    AddressingMode,
    AttemptQuestion,
    AttemptStatus,
    ExamAttempt,
    MockExamQuestion,
    Section,
    UserAnswer,
    AUDIO_SUBMITTED_SENTINEL,
)
from app.services.exceptions import AttemptNotFoundError, InvalidAttemptStateError
from app.utils import audio_storage
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

STANDALONE_EXAM_ID = "cefr"
STANDALONE_EXAM_DURATION_MINUTES = 120


def parse_json_field(raw: Optional[str]) -> Any:
    """Decode a serialized JSON column; malformed text is returned as-is"""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Stored value is not valid JSON, returning raw text: {raw[:50]!r}")
        return raw


def get_owned_attempt(db: Session, attempt_id: UUID, user_id: UUID) -> ExamAttempt:
    """
    Load an attempt belonging to the user

    Raises:
        AttemptNotFoundError: missing or owned by someone else
    """
    attempt = db.query(ExamAttempt).filter(
        ExamAttempt.id == attempt_id,
        ExamAttempt.user_id == user_id
    ).first()

    if not attempt:
        raise AttemptNotFoundError()
    return attempt


def find_answer(
    db: Session,
    attempt_id: UUID,
    attempt_question_id: Optional[UUID] = None,
    question_id: Optional[UUID] = None
) -> Optional[UserAnswer]:
    query = db.query(UserAnswer).filter(UserAnswer.attempt_id == attempt_id)
    if attempt_question_id is not None:
        return query.filter(UserAnswer.attempt_question_id == attempt_question_id).first()
    return query.filter(UserAnswer.question_id == question_id).first()


def upsert_answer(
    db: Session,
    attempt_id: UUID,
    attempt_question_id: Optional[UUID] = None,
    question_id: Optional[UUID] = None,
    **fields: Any
) -> UserAnswer:
    """
    Create or update the single answer row for a question of an attempt

    Exactly one of attempt_question_id / question_id must be given. A
    concurrent insert of the same key loses inside its savepoint and the
    existing row is updated instead, so the caller's transaction survives.
    """
    if (attempt_question_id is None) == (question_id is None):
        raise ValueError("Exactly one of attempt_question_id or question_id is required")

    answer = find_answer(db, attempt_id, attempt_question_id, question_id)

    if answer is None:
        answer = UserAnswer(
            attempt_id=attempt_id,
            attempt_question_id=attempt_question_id,
            question_id=question_id,
            **fields
        )
        try:
            with db.begin_nested():
                db.add(answer)
            return answer
        except IntegrityError:
            logger.info(f"Answer for attempt {attempt_id} inserted concurrently, updating instead")
            answer = find_answer(db, attempt_id, attempt_question_id, question_id)

    for field, value in fields.items():
        setattr(answer, field, value)
    answer.updated_at = utcnow()
    return answer


def answer_key(answer: UserAnswer) -> str:
    return str(answer.attempt_question_id or answer.question_id)


def speaking_answer_text(text: Optional[str], audio_url: Optional[str]) -> str:
    """Text stored for a speaking task: the text, else the audio sentinel, else empty"""
    if text:
        return text
    return AUDIO_SUBMITTED_SENTINEL if audio_url else ""


def exam_summary(attempt: ExamAttempt) -> Optional[Dict[str, Any]]:
    """Mock exam header, a synthetic one for level attempts, else None"""
    if attempt.mock_exam:
        return {
            "id": str(attempt.mock_exam.id),
            "title": attempt.mock_exam.title,
            "duration_minutes": attempt.mock_exam.duration_minutes,
        }
    if attempt.level:
        return {
            "id": STANDALONE_EXAM_ID,
            "title": f"CEFR {attempt.level}",
            "duration_minutes": STANDALONE_EXAM_DURATION_MINUTES,
        }
    return None


class AttemptService:
    """Read and write operations on a user's exam attempts"""

    # ---- Attempt view ----

    def get_attempt_view(self, db: Session, attempt_id: UUID, user_id: UUID) -> Dict[str, Any]:
        """
        Build the client-safe view of an attempt

        Questions never include correct answers. Answers are keyed by the
        id scheme the attempt uses.

        Raises:
            AttemptNotFoundError: missing or not owned
        """
        attempt = get_owned_attempt(db, attempt_id, user_id)
        mode = attempt.addressing_mode

        if mode == AddressingMode.ATTEMPT_QUESTION:
            questions = [self._attempt_question_view(q) for q in attempt.attempt_questions]
        else:
            questions = [self._bank_question_view(mq) for mq in self._bank_questions(attempt)]

        answers = {
            answer_key(a): {"answer_text": a.answer_text, "audio_url": a.audio_url}
            for a in attempt.answers
        }

        return {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "started_at": attempt.started_at,
            "level": attempt.level,
            "exam": exam_summary(attempt),
            "questions": questions,
            "answers": answers,
            "use_attempt_question_id": mode == AddressingMode.ATTEMPT_QUESTION,
        }

    def _bank_questions(self, attempt: ExamAttempt) -> List[MockExamQuestion]:
        if not attempt.mock_exam:
            return []
        return list(attempt.mock_exam.questions)

    def _attempt_question_view(self, q: AttemptQuestion) -> Dict[str, Any]:
        return {
            "id": q.id,
            "order": q.order,
            "question_text": q.question_text,
            "question_type": q.question_type,
            "options": parse_json_field(q.options),
            "points": q.points,
            "max_score": q.effective_max_score,
            "section": q.section,
            "task_type": q.task_type,
            "transcript": q.transcript,
            "passage": q.passage,
            "audio_url": q.audio_url,
            "rubric": parse_json_field(q.rubric),
            "word_limit": q.word_limit,
        }

    def _bank_question_view(self, mq: MockExamQuestion) -> Dict[str, Any]:
        q = mq.question
        return {
            "id": q.id,
            "order": mq.order,
            "question_text": q.question_text,
            "question_type": q.question_type,
            "options": parse_json_field(q.options),
            "points": q.points,
        }

    # ---- Results ----

    def get_results_view(self, db: Session, attempt_id: UUID, user_id: UUID) -> Dict[str, Any]:
        """
        Full review view of an attempt

        Grading fields stay null until the attempt has been submitted.

        Raises:
            AttemptNotFoundError: missing or not owned
        """
        attempt = get_owned_attempt(db, attempt_id, user_id)

        answers = {answer_key(a): a for a in attempt.answers}

        if attempt.addressing_mode == AddressingMode.ATTEMPT_QUESTION:
            questions = [
                self._attempt_question_result(q, answers.get(str(q.id)))
                for q in attempt.attempt_questions
            ]
        else:
            questions = [
                self._bank_question_result(mq, answers.get(str(mq.question_id)))
                for mq in self._bank_questions(attempt)
            ]

        return {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "completed_at": attempt.completed_at,
            "total_score": attempt.total_score,
            "max_possible_score": attempt.max_possible_score,
            "percentage": attempt.percentage,
            "cefr_level_achieved": attempt.cefr_level_achieved,
            "cefr_feedback": attempt.cefr_feedback,
            "section_scores": attempt.section_scores,
            "exam": exam_summary(attempt),
            "level": attempt.level,
            "questions": questions,
        }

    def _attempt_question_result(self, q: AttemptQuestion, answer: Optional[UserAnswer]) -> Dict[str, Any]:
        result = self._attempt_question_view(q)
        result.pop("passage")
        result.pop("word_limit")
        result.update(self._answer_result(answer))
        result["correct_answer"] = q.correct_answer
        if answer and answer.audio_url:
            result["audio_url"] = answer.audio_url
        return result

    def _bank_question_result(self, mq: MockExamQuestion, answer: Optional[UserAnswer]) -> Dict[str, Any]:
        result = self._bank_question_view(mq)
        result.pop("question_type")
        result.update(self._answer_result(answer))
        result["correct_answer"] = mq.question.correct_answer or ""
        result["max_score"] = mq.question.points
        if answer is not None and result["score"] is None:
            result["score"] = answer.points_earned
        return result

    def _answer_result(self, answer: Optional[UserAnswer]) -> Dict[str, Any]:
        if answer is None:
            return {"user_answer": None, "is_correct": None, "points_earned": None, "score": None, "feedback": None}
        return {
            "user_answer": answer.answer_text,
            "is_correct": answer.is_correct,
            "points_earned": answer.points_earned,
            "score": answer.score,
            "feedback": answer.ai_feedback,
        }

    # ---- History ----

    def list_attempts(
        self,
        db: Session,
        user_id: UUID,
        limit: Optional[int] = None,
        cursor: Optional[UUID] = None
    ) -> Dict[str, Any]:
        """
        Page through a user's attempts, newest first

        Args:
            limit: Page size, clamped to [1, ATTEMPT_HISTORY_MAX_LIMIT]
            cursor: Id of the last attempt of the previous page

        Returns:
            {"items": [...], "next_cursor": UUID | None}
        """
        limit = limit or settings.ATTEMPT_HISTORY_DEFAULT_LIMIT
        limit = max(1, min(limit, settings.ATTEMPT_HISTORY_MAX_LIMIT))

        query = db.query(ExamAttempt).filter(ExamAttempt.user_id == user_id)

        anchor = None
        if cursor is not None:
            anchor = db.query(ExamAttempt).filter(
                ExamAttempt.id == cursor,
                ExamAttempt.user_id == user_id
            ).first()
            if anchor is None:
                logger.info(f"Unknown history cursor {cursor}, starting from the newest attempt")

        if anchor is not None:
            query = query.filter(
                or_(
                    ExamAttempt.created_at < anchor.created_at,
                    and_(ExamAttempt.created_at == anchor.created_at, ExamAttempt.id < anchor.id)
                )
            )

        attempts = query.order_by(
            ExamAttempt.created_at.desc(),
            ExamAttempt.id.desc()
        ).limit(limit + 1).all()

        has_more = len(attempts) > limit
        attempts = attempts[:limit]

        return {
            "items": [self._history_item(a) for a in attempts],
            "next_cursor": attempts[-1].id if has_more else None,
        }

    def _history_item(self, attempt: ExamAttempt) -> Dict[str, Any]:
        if attempt.addressing_mode == AddressingMode.ATTEMPT_QUESTION:
            questions_count = len(attempt.attempt_questions)
        else:
            questions_count = len(self._bank_questions(attempt))

        correct = wrong = unanswered = 0
        for answer in attempt.answers:
            if answer.answer_text is None or not answer.answer_text.strip():
                unanswered += 1
            elif answer.is_correct is True:
                correct += 1
            elif answer.is_correct is False:
                wrong += 1
        unanswered += max(0, questions_count - len(attempt.answers))

        actual_duration = None
        if attempt.completed_at and attempt.started_at:
            actual_duration = round((attempt.completed_at - attempt.started_at).total_seconds() / 60)

        exam = exam_summary(attempt)
        return {
            "id": attempt.id,
            "status": attempt.status,
            "level": attempt.level,
            "total_score": attempt.total_score,
            "max_possible_score": attempt.max_possible_score,
            "percentage": attempt.percentage,
            "cefr_level_achieved": attempt.cefr_level_achieved,
            "section_scores": attempt.section_scores,
            "started_at": attempt.started_at,
            "completed_at": attempt.completed_at,
            "exam_title": exam["title"] if exam else None,
            "exam_duration_minutes": attempt.mock_exam.duration_minutes if attempt.mock_exam else None,
            "actual_duration_minutes": actual_duration,
            "questions_count": questions_count,
            "correct_count": correct,
            "wrong_count": wrong,
            "unanswered_count": unanswered,
        }

    # ---- Answer writes ----

    def save_answer(
        self,
        db: Session,
        attempt_id: UUID,
        user_id: UUID,
        answer_text: Optional[str],
        question_id: Optional[UUID] = None,
        attempt_question_id: Optional[UUID] = None
    ) -> UserAnswer:
        """
        Record a draft answer for one question

        attempt_question_id wins when both ids are given. The id must
        belong to the attempt under the attempt's own addressing scheme.

        Raises:
            AttemptNotFoundError: attempt or question not found
            InvalidAttemptStateError: attempt completed, or no question id given
        """
        if attempt_question_id is None and question_id is None:
            raise InvalidAttemptStateError("questionId or attemptQuestionId is required")

        attempt = get_owned_attempt(db, attempt_id, user_id)
        if attempt.is_completed:
            raise InvalidAttemptStateError("Attempt already completed")

        if attempt.addressing_mode == AddressingMode.ATTEMPT_QUESTION:
            key = {"attempt_question_id": attempt_question_id or question_id}
            valid_ids = {q.id for q in attempt.attempt_questions}
            if key["attempt_question_id"] not in valid_ids:
                raise AttemptNotFoundError("Question not found in this attempt")
        else:
            key = {"question_id": question_id or attempt_question_id}
            valid_ids = {mq.question_id for mq in self._bank_questions(attempt)}
            if key["question_id"] not in valid_ids:
                raise AttemptNotFoundError("Question not found in this attempt")

        answer = upsert_answer(db, attempt.id, answer_text=answer_text, **key)
        db.commit()

        logger.info(f"Saved answer for attempt {attempt_id}: {key}")
        return answer

    async def save_speaking_audio(
        self,
        db: Session,
        attempt_id: UUID,
        user_id: UUID,
        attempt_question_id: UUID,
        upload: UploadFile
    ) -> str:
        """
        Store a speaking recording and attach it to the task's answer

        The file is validated before anything is written. The answer text
        becomes the audio sentinel until grading transcribes the recording.

        Returns:
            Public URL of the stored recording

        Raises:
            UploadRejectedError: bad type (400) or too large (413)
            AttemptNotFoundError: no in-progress attempt with that speaking task
            AudioStorageError: file could not be moved into place
        """
        audio_storage.validate_audio_type(upload.filename, upload.content_type)
        content = await audio_storage.read_upload(upload)

        question = db.query(AttemptQuestion).join(ExamAttempt).filter(
            AttemptQuestion.id == attempt_question_id,
            AttemptQuestion.section == Section.SPEAKING,
            ExamAttempt.id == attempt_id,
            ExamAttempt.user_id == user_id,
            ExamAttempt.status == AttemptStatus.IN_PROGRESS
        ).first()
        if not question:
            raise AttemptNotFoundError("Attempt or speaking task not found")

        audio_url = await audio_storage.store_audio(
            content,
            attempt_id,
            question.id,
            audio_storage.audio_extension(upload.filename)
        )

        upsert_answer(
            db,
            attempt_id,
            attempt_question_id=question.id,
            answer_text=AUDIO_SUBMITTED_SENTINEL,
            audio_url=audio_url
        )
        db.commit()

        return audio_url


# Global instance
attempt_service = AttemptService()
