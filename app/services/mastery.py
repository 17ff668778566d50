"""Mastery level classification and per-word mastery updates."""
from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from app.db.models import WordMastery
from app.services.capped_history import append_capped
from app.services.evaluator import validate_score
from app.services.progress import update_running_average
from app.errors import InvalidInput
from app.constants import (
    HISTORY_CAPACITY,
    MASTERY_SUCCESS_SCORE,
    MASTERED_MIN_AVERAGE,
    MASTERED_MIN_SUCCESSES,
    PRACTICING_MIN_AVERAGE,
    LEARNING_MIN_AVERAGE,
    MAX_CONTEXTS_PER_WORD,
    MAX_SCORE
)


class MasteryLevel(str, Enum):
    """Mastery level for a word."""
    STRUGGLING = "struggling"
    LEARNING = "learning"
    PRACTICING = "practicing"
    MASTERED = "mastered"


def normalize_word(word: str) -> str:
    """Key a word the same way regardless of case or surrounding spaces."""
    if not isinstance(word, str) or not word.strip():
        raise InvalidInput("Word must be a non-empty string")
    return word.strip().lower()


def get_mastery_level(average: float, successes: int) -> MasteryLevel:
    """
    Determine mastery level from the running average and success count.

    Rows are checked top-down, first match wins:
    - MASTERED: average >= 90 AND successes >= 3
    - PRACTICING: average >= 70
    - LEARNING: average >= 50
    - STRUGGLING: otherwise

    The level is live: a mastered word drops back once its average does.

    Args:
        average: Running average score (0-100)
        successes: Observations scoring >= 70

    Returns:
        MasteryLevel enum value
    """
    if average >= MASTERED_MIN_AVERAGE and successes >= MASTERED_MIN_SUCCESSES:
        return MasteryLevel.MASTERED
    if average >= PRACTICING_MIN_AVERAGE:
        return MasteryLevel.PRACTICING
    if average >= LEARNING_MIN_AVERAGE:
        return MasteryLevel.LEARNING
    return MasteryLevel.STRUGGLING


def calculate_difficulty(average: float) -> float:
    """Difficulty is the inverse of the running average."""
    return MAX_SCORE - average


def calculate_improvement_rate(initial_difficulty: Optional[float], current_difficulty: float) -> float:
    """
    Signed percentage drop in difficulty since the first observation.

    Returns 0 when the first observation was already perfect (initial
    difficulty 0) or no observation exists yet.
    """
    if not initial_difficulty:
        return 0.0
    return (initial_difficulty - current_difficulty) / initial_difficulty * 100


def new_word_mastery(learner_id: str, word: str) -> WordMastery:
    """Create an empty mastery record for a word never observed before."""
    return WordMastery(
        learner_id=learner_id,
        word=normalize_word(word),
        total_attempts=0,
        successful_attempts=0,
        average_score=0.0,
        best_score=0.0,
        worst_score=MAX_SCORE,
        difficulty_score=MAX_SCORE,
        initial_difficulty=None,
        improvement_rate=0.0,
        mastery_level=MasteryLevel.STRUGGLING.value,
        score_history=[],
        contexts=[],
        drill_types=[],
        mastered_at=None
    )


def apply_word_score(
    mastery: Optional[WordMastery],
    learner_id: str,
    word: str,
    score: float,
    source_drill_id: Optional[str] = None,
    drill_type: Optional[str] = None,
    context: Optional[str] = None,
    now: Optional[datetime] = None
) -> WordMastery:
    """
    Fold one word-level observation into the learner's mastery record.

    Updates:
    - attempt/success counts, running average, best/worst score
    - difficulty (100 - average), initial difficulty (first observation only)
    - improvement rate, mastery level, mastered_at (first time only)
    - score history (capped, oldest evicted), contexts, drill types

    Args:
        mastery: Existing record, or None for a first observation
        learner_id: Learner identifier
        word: Word observed (normalized here)
        score: Word-level score (0-100)
        source_drill_id: Drill that produced the score
        drill_type: Kind of drill (pronunciation, vocabulary, ...)
        context: Sentence the word appeared in
        now: Observation time (defaults to now, UTC)

    Returns:
        The updated (or newly created) record
    """
    score = validate_score(score, f"Score for word {word!r}")
    now = now or datetime.utcnow()

    if mastery is None:
        mastery = new_word_mastery(learner_id, word)

    mastery.total_attempts = (mastery.total_attempts or 0) + 1
    if score >= MASTERY_SUCCESS_SCORE:
        mastery.successful_attempts = (mastery.successful_attempts or 0) + 1

    mastery.average_score = update_running_average(
        mastery.average_score or 0.0, score, mastery.total_attempts
    )
    mastery.best_score = max(mastery.best_score or 0.0, score)
    mastery.worst_score = min(MAX_SCORE if mastery.worst_score is None else mastery.worst_score, score)

    mastery.difficulty_score = calculate_difficulty(mastery.average_score)
    if mastery.initial_difficulty is None:
        mastery.initial_difficulty = mastery.difficulty_score
        if mastery.first_encountered is None:
            mastery.first_encountered = now
    mastery.improvement_rate = calculate_improvement_rate(
        mastery.initial_difficulty, mastery.difficulty_score
    )

    level = get_mastery_level(mastery.average_score, mastery.successful_attempts)
    mastery.mastery_level = level.value
    if level == MasteryLevel.MASTERED and mastery.mastered_at is None:
        mastery.mastered_at = now

    mastery.score_history = append_capped(
        mastery.score_history,
        {
            "timestamp": now.isoformat(),
            "score": score,
            "source_drill_id": source_drill_id
        },
        capacity=HISTORY_CAPACITY
    )

    if context and context not in (mastery.contexts or []):
        mastery.contexts = append_capped(mastery.contexts, context, capacity=MAX_CONTEXTS_PER_WORD)
    if drill_type and drill_type not in (mastery.drill_types or []):
        mastery.drill_types = list(mastery.drill_types or []) + [drill_type]

    mastery.last_practiced = now
    return mastery


def mastery_to_dict(mastery: WordMastery) -> Dict:
    """Serialize a mastery record for API responses."""
    return {
        "learner_id": mastery.learner_id,
        "word": mastery.word,
        "mastery_level": mastery.mastery_level,
        "difficulty_score": round(mastery.difficulty_score, 2),
        "initial_difficulty": (
            round(mastery.initial_difficulty, 2) if mastery.initial_difficulty is not None else None
        ),
        "improvement_rate": round(mastery.improvement_rate, 2),
        "total_attempts": mastery.total_attempts,
        "successful_attempts": mastery.successful_attempts,
        "average_score": round(mastery.average_score, 2),
        "best_score": mastery.best_score,
        "worst_score": mastery.worst_score,
        "score_history": list(mastery.score_history or []),
        "contexts": list(mastery.contexts or []),
        "drill_types": list(mastery.drill_types or []),
        "first_encountered": mastery.first_encountered.isoformat() if mastery.first_encountered else None,
        "last_practiced": mastery.last_practiced.isoformat() if mastery.last_practiced else None,
        "mastered_at": mastery.mastered_at.isoformat() if mastery.mastered_at else None
    }
