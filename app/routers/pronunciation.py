"""Pronunciation attempt endpoints."""
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Request, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.db.database import get_db
from app.rate_limit import limiter
from app.services.attempts import (
    record_attempt, get_progress, list_attempts, get_challenges, attempt_to_dict
)
from app.services.progress import progress_to_dict
from app.services.evaluator import validate_threshold
from app.services.scorer import SpeechScorerClient, decode_audio, get_scorer
from app.constants import DEFAULT_PASSING_THRESHOLD, ATTEMPT_SUBMISSION_RATE_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/learners/{learner_id}", tags=["pronunciation"])


class _SubmissionBase(BaseModel):
    reference_text: str = Field(..., min_length=1, max_length=500, description="Text the learner read aloud")
    threshold: float = Field(DEFAULT_PASSING_THRESHOLD, description="Passing threshold (0-100)")
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)
    source_drill_id: Optional[str] = Field(None, max_length=128)

    @field_validator('reference_text')
    @classmethod
    def validate_reference_text(cls, v):
        """Validate that reference_text is not empty or whitespace."""
        if not v or v.strip() == '':
            raise ValueError('reference_text cannot be empty')
        return v.strip()


class AttemptSubmission(_SubmissionBase):
    """Request body for a recorded attempt that still needs scoring."""
    audio_base64: str = Field(..., min_length=1, description="Base64 WAV recording, data URL prefix allowed")
    question_info: Optional[str] = Field(None, max_length=128)


class ScoredAttemptSubmission(_SubmissionBase):
    """Request body for an attempt the caller already had scored."""
    scorer_result: Dict[str, Any]


def _record(
    db: Session,
    learner_id: str,
    target_unit_id: str,
    submission: _SubmissionBase,
    scorer_result: Any
) -> Dict:
    try:
        result = record_attempt(
            db,
            learner_id,
            target_unit_id,
            submission.reference_text,
            scorer_result,
            submission.threshold,
            idempotency_key=submission.idempotency_key,
            source_drill_id=submission.source_drill_id
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error recording attempt: {e}", exc_info=True,
                     extra={"learner_id": learner_id, "target_unit_id": target_unit_id})
        raise HTTPException(status_code=500, detail="Error recording attempt")

    progress = get_progress(db, learner_id, result.target_unit_id)
    return {
        "attempt": attempt_to_dict(result),
        "progress": progress_to_dict(progress)
    }


@router.post("/units/{target_unit_id}/attempts", status_code=201)
@limiter.limit(ATTEMPT_SUBMISSION_RATE_LIMIT)
async def submit_attempt(
    learner_id: str,
    target_unit_id: str,
    submission: AttemptSubmission,
    request: Request,
    db: Session = Depends(get_db),
    scorer: SpeechScorerClient = Depends(get_scorer)
):
    """
    Score a recording and record the attempt.

    Input is checked before the scorer is called, and the scorer is called
    before anything is written; if it fails the response is 503 and no
    attempt or progress change exists.

    Returns:
    - attempt (score, pass/fail, weak letters/phonemes, attempt number)
    - progress (cumulative state for this learner and unit)
    """
    validate_threshold(submission.threshold)
    audio = decode_audio(submission.audio_base64)
    scorer_result = await scorer.score(
        submission.reference_text,
        audio,
        learner_id,
        question_info=submission.question_info
    )
    return _record(db, learner_id, target_unit_id, submission, scorer_result)


@router.post("/units/{target_unit_id}/scored-attempts", status_code=201)
@limiter.limit(ATTEMPT_SUBMISSION_RATE_LIMIT)
async def submit_scored_attempt(
    learner_id: str,
    target_unit_id: str,
    submission: ScoredAttemptSubmission,
    request: Request,
    db: Session = Depends(get_db)
):
    """Record an attempt from a scorer response the caller already holds."""
    return _record(db, learner_id, target_unit_id, submission, submission.scorer_result)


@router.get("/units/{target_unit_id}/progress")
async def read_progress(
    learner_id: str,
    target_unit_id: str,
    db: Session = Depends(get_db)
):
    """Cumulative progress for one unit. 404 if never attempted."""
    progress = get_progress(db, learner_id, target_unit_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="No progress recorded for this unit")
    return progress_to_dict(progress)


@router.get("/units/{target_unit_id}/attempts")
async def read_attempts(
    learner_id: str,
    target_unit_id: str,
    db: Session = Depends(get_db)
) -> List[Dict]:
    """Every attempt for one unit, oldest first."""
    return [attempt_to_dict(a) for a in list_attempts(db, learner_id, target_unit_id)]


@router.get("/challenges")
async def read_challenges(learner_id: str, db: Session = Depends(get_db)):
    """Units the learner keeps failing, grouped by challenge level."""
    return get_challenges(db, learner_id)
