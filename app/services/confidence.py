"""Confidence score calculation, labelling and trend tracking.

confidence = round(completion_rate * 100 * 0.4 + pronunciation_confidence * 0.6)

``pronunciation_confidence`` is the mean ``accuracy_running_average`` over
every target unit the learner has attempted at least once. Each unit counts
equally no matter how many attempts it took.
"""
import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from app.db.models import DrillAssignment, LearnerConfidence, PronunciationProgress
from app.db.optimistic import run_optimistic
from app.errors import NoDataAvailable
from app.services.capped_history import append_capped
from app.constants import (
    COMPLETION_WEIGHT,
    QUALITY_WEIGHT,
    CONFIDENCE_LABEL_BANDS,
    HISTORY_CAPACITY,
    TREND_BASELINE_DAYS,
    MIN_SCORE,
    MAX_SCORE
)

logger = logging.getLogger(__name__)


class ConfidenceTrend(str, Enum):
    """Direction of a learner's confidence against the trend baseline."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class ConfidenceSnapshot(BaseModel):
    """One computed confidence reading for a learner."""
    model_config = ConfigDict(frozen=True)

    learner_id: str
    confidence_score: int
    pronunciation_confidence: float
    completion_rate: float
    label: str
    trend: ConfidenceTrend
    drills_assigned: int
    drills_completed: int
    completion_contribution: float
    quality_contribution: float
    words_tracked: int
    computed_at: datetime
    history: List[Dict] = []
    status: str = "ok"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_completion_rate(drills_assigned: int, drills_completed: int) -> float:
    """
    Fraction of assigned drills the learner has completed.

    Zero assignments yield 0.0, never a division error. The result is capped
    at 1.0 in case the assignment store reports more completions than
    assignments.
    """
    if drills_assigned <= 0:
        return 0.0
    return min(1.0, max(0.0, drills_completed / drills_assigned))


def blend_confidence_score(completion_rate: float, pronunciation_confidence: float) -> int:
    """Weighted blend of completion and quality, rounded half-up and clamped to [0, 100]."""
    raw = completion_rate * 100 * COMPLETION_WEIGHT + pronunciation_confidence * QUALITY_WEIGHT
    return int(max(MIN_SCORE, min(MAX_SCORE, _round_half_up(raw))))


def get_confidence_label(score: float) -> str:
    """
    Band a confidence score into a display label.

    Bands are checked from highest to lowest, so a higher score can never
    get a worse label. Scores below every band get the lowest one.
    """
    for minimum, label in CONFIDENCE_LABEL_BANDS:
        if score >= minimum:
            return label
    return CONFIDENCE_LABEL_BANDS[-1][1]


def _entry_time(entry: Dict) -> datetime:
    computed_at = entry["computed_at"]
    if isinstance(computed_at, datetime):
        return computed_at
    return datetime.fromisoformat(computed_at)


def find_trend_baseline(history: List[Dict], now: datetime) -> Optional[Dict]:
    """
    Pick the history entry the current score is compared against.

    That is the most recent entry at least TREND_BASELINE_DAYS old, or the
    oldest entry when none is that old. None for an empty history.
    """
    if not history:
        return None
    cutoff = now - timedelta(days=TREND_BASELINE_DAYS)
    for entry in reversed(history):
        if _entry_time(entry) <= cutoff:
            return entry
    return history[0]


def compute_trend(history: List[Dict], current_score: int, now: datetime) -> ConfidenceTrend:
    """
    Classify the current score against the trend baseline.

    Args:
        history: Prior entries, oldest first (current score not yet appended)
        current_score: Freshly computed confidence score
        now: Computation time

    Returns:
        "improving", "declining" or "stable" (also for an empty history)
    """
    baseline = find_trend_baseline(history, now)
    if baseline is None:
        return ConfidenceTrend.STABLE
    if current_score > baseline["score"]:
        return ConfidenceTrend.IMPROVING
    if current_score < baseline["score"]:
        return ConfidenceTrend.DECLINING
    return ConfidenceTrend.STABLE


def get_assignment_counts(db: Session, learner_id: str) -> Tuple[int, int]:
    """
    Count assigned and completed drills for a learner.

    A drill counts as completed when its status says so or it carries a
    completion time.

    Returns:
        (drills_assigned, drills_completed)
    """
    assigned = db.query(func.count(DrillAssignment.id)).filter(
        DrillAssignment.learner_id == learner_id
    ).scalar() or 0

    completed = db.query(func.count(DrillAssignment.id)).filter(
        DrillAssignment.learner_id == learner_id,
        or_(DrillAssignment.status == "completed", DrillAssignment.completed_at.isnot(None))
    ).scalar() or 0

    return assigned, completed


def get_pronunciation_quality(db: Session, learner_id: str) -> Tuple[Optional[float], int]:
    """
    Mean running average across the learner's attempted target units.

    Returns:
        (mean score or None when nothing was attempted, units tracked)
    """
    mean, tracked = db.query(
        func.avg(PronunciationProgress.accuracy_running_average),
        func.count(PronunciationProgress.id)
    ).filter(
        PronunciationProgress.learner_id == learner_id,
        PronunciationProgress.attempts > 0
    ).one()

    if not tracked:
        return None, 0
    return float(mean), tracked


def _record_to_snapshot(record: LearnerConfidence) -> ConfidenceSnapshot:
    completion_contribution = record.completion_rate * 100 * COMPLETION_WEIGHT
    quality_contribution = record.pronunciation_confidence * QUALITY_WEIGHT
    return ConfidenceSnapshot(
        learner_id=record.learner_id,
        confidence_score=record.confidence_score,
        pronunciation_confidence=record.pronunciation_confidence,
        completion_rate=record.completion_rate,
        label=record.label,
        trend=record.trend,
        drills_assigned=record.drills_assigned,
        drills_completed=record.drills_completed,
        completion_contribution=round(completion_contribution, 1),
        quality_contribution=round(quality_contribution, 1),
        words_tracked=record.words_tracked,
        computed_at=record.last_computed_at,
        history=list(record.history or [])
    )


def compute_confidence(
    db: Session,
    learner_id: str,
    now: Optional[datetime] = None
) -> Union[ConfidenceSnapshot, NoDataAvailable]:
    """
    Compute, persist and return a learner's confidence snapshot.

    Steps:
    1. Read assignment counts and the pronunciation quality aggregate
    2. Return NoDataAvailable if the learner never attempted anything
    3. Blend the score, band the label, classify the trend
    4. Append to the capped history and upsert the stored snapshot

    Args:
        db: Database session
        learner_id: Learner identifier
        now: Computation time (defaults to now, UTC)

    Returns:
        ConfidenceSnapshot, or NoDataAvailable for a learner with no attempts
    """
    now = now or datetime.utcnow()

    def operation(session: Session) -> Union[ConfidenceSnapshot, NoDataAvailable]:
        quality, words_tracked = get_pronunciation_quality(session, learner_id)
        if quality is None:
            return NoDataAvailable(learner_id)

        drills_assigned, drills_completed = get_assignment_counts(session, learner_id)
        completion_rate = calculate_completion_rate(drills_assigned, drills_completed)
        score = blend_confidence_score(completion_rate, quality)
        label = get_confidence_label(score)

        record = session.query(LearnerConfidence).filter(
            LearnerConfidence.learner_id == learner_id
        ).first()
        history = list(record.history or []) if record else []
        trend = compute_trend(history, score, now)

        if record is None:
            record = LearnerConfidence(learner_id=learner_id)
            session.add(record)

        record.drills_assigned = drills_assigned
        record.drills_completed = drills_completed
        record.completion_rate = completion_rate
        record.pronunciation_confidence = round(quality, 1)
        record.confidence_score = score
        record.label = label
        record.trend = trend.value
        record.words_tracked = words_tracked
        record.history = append_capped(
            history,
            {
                "score": score,
                "label": label,
                "computed_at": now.isoformat(),
                "drills_completed": drills_completed
            },
            capacity=HISTORY_CAPACITY
        )
        record.last_computed_at = now
        session.flush()
        return _record_to_snapshot(record)

    result = run_optimistic(db, operation, key=f"confidence:{learner_id}")

    if isinstance(result, NoDataAvailable):
        logger.debug("No attempts recorded; confidence unavailable", extra={"learner_id": learner_id})
    else:
        logger.info(
            f"Confidence computed: score={result.confidence_score}, "
            f"label={result.label}, trend={result.trend.value}",
            extra={"learner_id": learner_id}
        )
    return result


def get_stored_confidence(db: Session, learner_id: str) -> Optional[ConfidenceSnapshot]:
    """Return the last persisted snapshot without recomputing."""
    record = db.query(LearnerConfidence).filter(
        LearnerConfidence.learner_id == learner_id
    ).first()
    if record is None:
        return None
    return _record_to_snapshot(record)
