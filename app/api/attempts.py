"""
Exam attempt API endpoints: view, answer drafts, audio upload, submission, results, history
"""
import json
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas.attempt import (
    AnswerWrite,
    AnswerWriteResponse,
    AttemptHistoryPage,
    AttemptView,
    AudioUploadResponse,
    ResultView,
    ScoreSummary,
    SubmitPayload,
)
from app.services.attempt_service import attempt_service
from app.services.exceptions import ExamPlatformError
from app.services.grading_service import grading_service

router = APIRouter(prefix="/api/attempts", tags=["attempts"])
logger = logging.getLogger(__name__)


@router.get("", response_model=AttemptHistoryPage)
async def list_attempts(
    limit: Optional[int] = Query(None),
    cursor: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Attempt history for the current user, newest first

    - limit is clamped to [1, 50], default 20
    - pass nextCursor from the previous page as cursor
    """
    return attempt_service.list_attempts(db, user.id, limit=limit, cursor=cursor)


@router.get("/{attempt_id}", response_model=AttemptView)
async def get_attempt(
    attempt_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Client-safe attempt view: questions without answer keys, plus drafts"""
    return attempt_service.get_attempt_view(db, attempt_id, user.id)


@router.put("/{attempt_id}/answer", response_model=AnswerWriteResponse)
async def save_answer(
    attempt_id: UUID,
    request: AnswerWrite,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Upsert one draft answer; repeated calls leave a single row"""
    attempt_service.save_answer(
        db,
        attempt_id,
        user.id,
        answer_text=request.answer_text,
        question_id=request.question_id,
        attempt_question_id=request.attempt_question_id,
    )
    return AnswerWriteResponse(ok=True)


@router.post("/{attempt_id}/speaking-audio", response_model=AudioUploadResponse)
async def upload_speaking_audio(
    attempt_id: UUID,
    audio: UploadFile = File(...),
    attempt_question_id: UUID = Form(..., alias="attemptQuestionId"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Upload a speaking recording (multipart)

    - 400 for non-audio files, 413 above the size limit
    - stored as /uploads/{attemptId}_{attemptQuestionId}{ext}
    """
    audio_url = await attempt_service.save_speaking_audio(
        db, attempt_id, user.id, attempt_question_id, audio
    )
    return AudioUploadResponse(audio_url=audio_url)


@router.post("/{attempt_id}/submit", response_model=ScoreSummary)
async def submit_attempt(
    attempt_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Submit and grade an attempt

    Grading strategy:
    - Objective sections: exact / structural match
    - Writing: Gemini rubric grading
    - Speaking: transcription, then Gemini rubric grading

    A malformed body is treated as no final answers. Submitting a
    completed attempt returns its stored scores.
    """
    payload = await _read_submit_payload(request)

    try:
        return await grading_service.submit(db, attempt_id, user.id, payload)
    except ExamPlatformError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Failed to submit attempt {attempt_id}: {str(e)}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to submit attempt")


async def _read_submit_payload(request: Request) -> Optional[SubmitPayload]:
    body = await request.body()
    if not body:
        return None
    try:
        return SubmitPayload.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        logger.warning(f"Ignoring malformed submit payload: {str(e)[:200]}")
        return None


@router.get("/{attempt_id}/results", response_model=ResultView)
async def get_results(
    attempt_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Full results view; grading fields are null until the attempt is submitted"""
    return attempt_service.get_results_view(db, attempt_id, user.id)
