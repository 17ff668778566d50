"""Progress aggregation: fold AttemptResults into per-unit ProgressState."""
from datetime import datetime
from typing import Dict, Optional
from app.db.models import PronunciationProgress
from app.services.evaluator import AttemptResult
from app.constants import (
    CHALLENGING_MIN_ATTEMPTS,
    CHALLENGING_MAX_AVERAGE,
    HIGH_CHALLENGE_MIN_ATTEMPTS,
    HIGH_CHALLENGE_MAX_AVERAGE
)


def new_progress(learner_id: str, target_unit_id: str) -> PronunciationProgress:
    """Create an empty progress record for a pair that has no attempts yet."""
    return PronunciationProgress(
        learner_id=learner_id,
        target_unit_id=target_unit_id,
        attempts=0,
        best_score=0.0,
        last_score=None,
        accuracy_running_average=0.0,
        weak_letters=[],
        weak_phonemes=[],
        passed=False,
        passed_at=None,
        is_challenging=False,
        challenge_level=None
    )


def update_running_average(old_average: float, new_value: float, count: int) -> float:
    """
    Incremental mean update.

    Args:
        old_average: Mean of the first ``count - 1`` values
        new_value: The ``count``-th value
        count: Number of values including ``new_value`` (>= 1)

    Returns:
        Mean of all ``count`` values
    """
    return old_average + (new_value - old_average) / count


def get_challenge_level(attempts: int, average: float, weak_phonemes_count: int) -> Optional[str]:
    """
    Classify how much trouble a unit is giving the learner.

    Levels:
    - high: more than 5 attempts AND average below 60
    - medium: more than 3 attempts OR average below 70
    - low: otherwise, when any weak phoneme has been seen
    - None: no attempts yet, or nothing to flag
    """
    if attempts == 0:
        return None
    if attempts > HIGH_CHALLENGE_MIN_ATTEMPTS and average < HIGH_CHALLENGE_MAX_AVERAGE:
        return "high"
    if attempts > CHALLENGING_MIN_ATTEMPTS or average < CHALLENGING_MAX_AVERAGE:
        return "medium"
    if weak_phonemes_count > 0:
        return "low"
    return None


def is_challenging(attempts: int, average: float) -> bool:
    """A unit is challenging after many attempts or while its average stays low."""
    if attempts == 0:
        return False
    return attempts > CHALLENGING_MIN_ATTEMPTS or average < CHALLENGING_MAX_AVERAGE


def apply_attempt(
    progress: Optional[PronunciationProgress],
    result: AttemptResult,
    now: Optional[datetime] = None
) -> PronunciationProgress:
    """
    Fold one attempt into the pair's progress record.

    Updates:
    - attempts, last_score, best_score (max), running average (incremental)
    - weak letters/phonemes (union; never shrink)
    - passed/passed_at (set on first success, never unset)
    - last_attempt_at, challenge indicators

    Args:
        progress: Existing record, or None for the pair's first attempt
        result: Evaluated attempt for the same (learner, target unit)
        now: Update time (defaults to the attempt timestamp)

    Returns:
        The updated (or newly created) record
    """
    if progress is None:
        progress = new_progress(result.learner_id, result.target_unit_id)
    elif (progress.learner_id, progress.target_unit_id) != (result.learner_id, result.target_unit_id):
        raise ValueError(
            f"Attempt for {result.learner_id}/{result.target_unit_id} applied to progress "
            f"of {progress.learner_id}/{progress.target_unit_id}"
        )

    now = now or result.timestamp
    score = result.overall_score

    progress.attempts = (progress.attempts or 0) + 1
    progress.accuracy_running_average = update_running_average(
        progress.accuracy_running_average or 0.0, score, progress.attempts
    )
    progress.best_score = max(progress.best_score or 0.0, score)
    progress.last_score = score

    # JSON columns are replaced, not mutated, so the change is flushed
    progress.weak_letters = sorted(set(progress.weak_letters or []) | result.weak_letters)
    progress.weak_phonemes = sorted(set(progress.weak_phonemes or []) | result.weak_phonemes)

    if result.passed and not progress.passed:
        progress.passed = True
        progress.passed_at = now

    progress.last_attempt_at = now

    progress.is_challenging = is_challenging(progress.attempts, progress.accuracy_running_average)
    progress.challenge_level = get_challenge_level(
        progress.attempts,
        progress.accuracy_running_average,
        len(progress.weak_phonemes)
    )

    return progress


def progress_to_dict(progress: PronunciationProgress) -> Dict:
    """Serialize a progress record for API responses."""
    return {
        "learner_id": progress.learner_id,
        "target_unit_id": progress.target_unit_id,
        "attempts": progress.attempts,
        "best_score": progress.best_score,
        "last_score": progress.last_score,
        "accuracy_running_average": round(progress.accuracy_running_average, 2),
        "weak_letters": list(progress.weak_letters or []),
        "weak_phonemes": list(progress.weak_phonemes or []),
        "passed": progress.passed,
        "passed_at": progress.passed_at.isoformat() if progress.passed_at else None,
        "last_attempt_at": progress.last_attempt_at.isoformat() if progress.last_attempt_at else None,
        "is_challenging": progress.is_challenging,
        "challenge_level": progress.challenge_level
    }
