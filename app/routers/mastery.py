"""Word mastery endpoints."""
from typing import Optional
from fastapi import APIRouter, Depends, Request, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session
from app.db.database import get_db
from app.rate_limit import limiter
from app.services.attempts import record_word_score, get_mastery, list_word_mastery
from app.services.mastery import MasteryLevel, mastery_to_dict
from app.constants import WORD_SCORE_RATE_LIMIT

router = APIRouter(prefix="/api/learners/{learner_id}/words", tags=["mastery"])


class WordScoreSubmission(BaseModel):
    """A word-level score observed by any drill."""
    score: float = Field(..., description="Word score (0-100)")
    source_drill_id: Optional[str] = Field(None, max_length=128)
    drill_type: Optional[str] = Field(None, max_length=64)
    context: Optional[str] = Field(None, max_length=500)

    @field_validator('drill_type', 'context')
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and v.strip() == '':
            return None
        return v


@router.post("/{word}/scores", status_code=201)
@limiter.limit(WORD_SCORE_RATE_LIMIT)
async def submit_word_score(
    learner_id: str,
    word: str,
    submission: WordScoreSubmission,
    request: Request,
    db: Session = Depends(get_db)
):
    """Fold one word score into the learner's mastery record."""
    mastery = record_word_score(
        db,
        learner_id,
        word,
        submission.score,
        source_drill_id=submission.source_drill_id,
        drill_type=submission.drill_type,
        context=submission.context
    )
    return mastery_to_dict(mastery)


@router.get("/{word}/mastery")
async def read_word_mastery(learner_id: str, word: str, db: Session = Depends(get_db)):
    """Mastery state for one word. 404 if the word was never observed."""
    mastery = get_mastery(db, learner_id, word)
    if mastery is None:
        raise HTTPException(status_code=404, detail="No mastery recorded for this word")
    return mastery_to_dict(mastery)


@router.get("")
async def read_words(
    learner_id: str,
    level: Optional[MasteryLevel] = Query(None, description="Only words at this mastery level"),
    db: Session = Depends(get_db)
):
    """Every tracked word for a learner, hardest first."""
    return [mastery_to_dict(m) for m in list_word_mastery(db, learner_id, level)]
