"""Learner-level confidence and dashboard endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import case, func
from sqlalchemy.orm import Session
from app.db.database import get_db
from app.db.models import PronunciationProgress
from app.errors import NoDataAvailable
from app.services.attempts import get_mastery_summary, get_challenges
from app.services.confidence import compute_confidence, get_stored_confidence

router = APIRouter(prefix="/api/learners/{learner_id}", tags=["learner"])


@router.get("/confidence")
async def read_confidence(learner_id: str, db: Session = Depends(get_db)):
    """
    Recompute the learner's confidence score and store the snapshot.

    A learner with no pronunciation attempts gets ``status: "no_data"``
    instead of a score.
    """
    result = compute_confidence(db, learner_id)
    if isinstance(result, NoDataAvailable):
        return result.to_dict()
    return result.model_dump(mode="json")


@router.get("/confidence/stored")
async def read_stored_confidence(learner_id: str, db: Session = Depends(get_db)):
    """Last stored confidence snapshot, without recomputing. 404 if none."""
    snapshot = get_stored_confidence(db, learner_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No confidence computed for this learner")
    return snapshot.model_dump(mode="json")


@router.get("/dashboard")
async def dashboard(learner_id: str, db: Session = Depends(get_db)):
    """
    Everything a learner overview page needs in one call.

    Returns:
    - Progress totals across target units
    - Word mastery buckets (mastered / practicing / learning / struggling)
    - Challenge count
    - Stored confidence snapshot (null until first computed)
    """
    units, units_passed, total_attempts, average = db.query(
        func.count(PronunciationProgress.id),
        func.coalesce(func.sum(case((PronunciationProgress.passed.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(PronunciationProgress.attempts), 0),
        func.avg(PronunciationProgress.accuracy_running_average)
    ).filter(
        PronunciationProgress.learner_id == learner_id,
        PronunciationProgress.attempts > 0
    ).one()

    mastery = get_mastery_summary(db, learner_id)
    stored = get_stored_confidence(db, learner_id)

    return {
        "learner_id": learner_id,
        "progress": {
            "units_attempted": units,
            "units_passed": int(units_passed),
            "total_attempts": int(total_attempts),
            "average_score": round(float(average), 2) if average is not None else None
        },
        "mastery": mastery,
        "mastery_counts": {level: len(words) for level, words in mastery.items()},
        "challenges_total": get_challenges(db, learner_id)["total"],
        "confidence": stored.model_dump(mode="json") if stored else None
    }
