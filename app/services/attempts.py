"""Attempt recording and read access to progress and mastery state.

``record_attempt`` is the single write path for pronunciation submissions.
The scorer has already been called by the time it runs; everything here is
one database transaction that either lands completely or not at all.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from app.db.models import PronunciationAttempt, PronunciationProgress, WordMastery
from app.db.optimistic import run_optimistic
from app.errors import InvalidInput
from app.services.evaluator import (
    AttemptResult, WordScore, evaluate_attempt, validate_threshold,
    normalize_scorer_response, word_scores_to_json
)
from app.services.progress import apply_attempt
from app.services.mastery import MasteryLevel, apply_word_score, normalize_word
from app.constants import DEFAULT_PASSING_THRESHOLD

logger = logging.getLogger(__name__)

PRONUNCIATION_DRILL_TYPE = "pronunciation"


def _attempt_from_row(row: PronunciationAttempt) -> AttemptResult:
    return AttemptResult(
        learner_id=row.learner_id,
        target_unit_id=row.target_unit_id,
        timestamp=row.created_at,
        attempt_number=row.attempt_number,
        reference_text=row.reference_text,
        overall_score=row.overall_score,
        fluency_score=row.fluency_score,
        per_word_scores=tuple(WordScore.model_validate(w) for w in row.word_scores or []),
        passing_threshold=row.passing_threshold,
        passed=row.passed,
        weak_letters=frozenset(row.weak_letters or []),
        weak_phonemes=frozenset(row.weak_phonemes or []),
        text_feedback=row.text_feedback,
        source_drill_id=row.source_drill_id,
        idempotency_key=row.idempotency_key
    )


def _attempt_to_row(result: AttemptResult) -> PronunciationAttempt:
    return PronunciationAttempt(
        learner_id=result.learner_id,
        target_unit_id=result.target_unit_id,
        attempt_number=result.attempt_number,
        reference_text=result.reference_text,
        overall_score=result.overall_score,
        fluency_score=result.fluency_score,
        passing_threshold=result.passing_threshold,
        passed=result.passed,
        word_scores=word_scores_to_json(result.per_word_scores),
        weak_letters=sorted(result.weak_letters),
        weak_phonemes=sorted(result.weak_phonemes),
        text_feedback=result.text_feedback,
        source_drill_id=result.source_drill_id,
        idempotency_key=result.idempotency_key,
        created_at=result.timestamp
    )


def attempt_to_dict(result: AttemptResult) -> Dict:
    """Serialize an attempt for API responses (sets as sorted lists)."""
    data = result.model_dump(mode="json")
    data["weak_letters"] = sorted(result.weak_letters)
    data["weak_phonemes"] = sorted(result.weak_phonemes)
    return data


def _find_by_idempotency_key(db: Session, learner_id: str, key: str) -> Optional[PronunciationAttempt]:
    return db.query(PronunciationAttempt).filter(
        PronunciationAttempt.learner_id == learner_id,
        PronunciationAttempt.idempotency_key == key
    ).first()


def _observed_words(result: AttemptResult) -> List[tuple]:
    """(word, score) pairs fed to word mastery for one attempt."""
    if result.per_word_scores:
        return [(w.text, w.score) for w in result.per_word_scores if w.text.strip()]
    return [(result.reference_text, result.overall_score)]


def _load_mastery(db: Session, learner_id: str, word: str) -> Optional[WordMastery]:
    return db.query(WordMastery).filter(
        WordMastery.learner_id == learner_id,
        WordMastery.word == word
    ).first()


def _pending_mastery(session: Session, learner_id: str, word: str) -> Optional[WordMastery]:
    for obj in session.new:
        if isinstance(obj, WordMastery) and obj.learner_id == learner_id and obj.word == word:
            return obj
    return None


def record_attempt(
    db: Session,
    learner_id: str,
    target_unit_id: str,
    reference_text: str,
    scorer_result: Any,
    threshold: Any = DEFAULT_PASSING_THRESHOLD,
    *,
    idempotency_key: Optional[str] = None,
    source_drill_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> AttemptResult:
    """
    Record one scored pronunciation attempt.

    Flow:
    1. Validate threshold and scorer payload (nothing is read or written yet)
    2. Return the stored attempt if the idempotency key was already used
       (a key reused on a different unit is rejected)
    3. Read progress, evaluate with attempt_number = attempts + 1
    4. Fold into progress, append the attempt row, update word mastery
    5. Commit; on a version/uniqueness conflict roll back and replay

    Args:
        db: Database session
        learner_id: Learner identifier
        target_unit_id: Word/phrase identifier
        reference_text: Text the learner was asked to say
        scorer_result: Raw scorer payload for this recording
        threshold: Passing threshold in [0, 100]
        idempotency_key: Client-generated key making resubmission safe
        source_drill_id: Drill the attempt belongs to, if any
        now: Attempt time (defaults to now, UTC)

    Returns:
        The recorded (or previously recorded) AttemptResult

    Raises:
        InvalidThreshold, InvalidScore: Rejected before any mutation
        InvalidInput: Idempotency key already used for another unit
        ConcurrentUpdateConflict: Retries exhausted; nothing was written
    """
    threshold = validate_threshold(threshold)
    scorer_result = normalize_scorer_response(scorer_result)
    now = now or datetime.utcnow()

    def operation(session: Session) -> AttemptResult:
        if idempotency_key:
            existing = _find_by_idempotency_key(session, learner_id, idempotency_key)
            if existing is not None:
                if existing.target_unit_id != target_unit_id:
                    raise InvalidInput(
                        f"Idempotency key {idempotency_key!r} was already used "
                        f"for unit {existing.target_unit_id!r}"
                    )
                logger.info(
                    "Duplicate submission; returning stored attempt",
                    extra={"learner_id": learner_id, "target_unit_id": target_unit_id,
                           "attempt_number": existing.attempt_number}
                )
                return _attempt_from_row(existing)

        progress = session.query(PronunciationProgress).filter(
            PronunciationProgress.learner_id == learner_id,
            PronunciationProgress.target_unit_id == target_unit_id
        ).first()

        result = evaluate_attempt(
            reference_text,
            scorer_result,
            threshold,
            learner_id=learner_id,
            target_unit_id=target_unit_id,
            prior_attempts=progress.attempts if progress else 0,
            timestamp=now,
            source_drill_id=source_drill_id,
            idempotency_key=idempotency_key
        )

        progress = apply_attempt(progress, result, now=now)
        session.add(progress)
        session.add(_attempt_to_row(result))

        for word, score in _observed_words(result):
            key = normalize_word(word)
            # Autoflush is off, so look in the session first for words
            # repeated within one attempt.
            mastery = _pending_mastery(session, learner_id, key) or _load_mastery(session, learner_id, key)
            was_mastered = mastery is not None and mastery.mastered_at is not None
            mastery = apply_word_score(
                mastery, learner_id, key, score,
                source_drill_id=source_drill_id,
                drill_type=PRONUNCIATION_DRILL_TYPE,
                context=result.reference_text if result.reference_text.lower() != key else None,
                now=now
            )
            session.add(mastery)
            if not was_mastered and mastery.mastered_at is not None:
                logger.info("Word mastered", extra={"learner_id": learner_id, "word": key})

        session.flush()
        return result

    result = run_optimistic(db, operation, key=f"progress:{learner_id}:{target_unit_id}")

    logger.info(
        f"Attempt recorded: score={result.overall_score}, passed={result.passed}",
        extra={"learner_id": learner_id, "target_unit_id": target_unit_id,
               "attempt_number": result.attempt_number}
    )
    return result


def record_word_score(
    db: Session,
    learner_id: str,
    word: str,
    score: Any,
    *,
    source_drill_id: Optional[str] = None,
    drill_type: Optional[str] = None,
    context: Optional[str] = None,
    now: Optional[datetime] = None
) -> WordMastery:
    """
    Record a word-level score from any drill type.

    Args:
        db: Database session
        learner_id: Learner identifier
        word: Word observed
        score: Word score (0-100)
        source_drill_id: Drill that produced the score
        drill_type: Kind of drill
        context: Sentence the word appeared in
        now: Observation time (defaults to now, UTC)

    Returns:
        Updated WordMastery record

    Raises:
        InvalidScore: Score out of range
        ConcurrentUpdateConflict: Retries exhausted
    """
    key = normalize_word(word)
    now = now or datetime.utcnow()

    def operation(session: Session) -> WordMastery:
        mastery = _load_mastery(session, learner_id, key)
        mastery = apply_word_score(
            mastery, learner_id, key, score,
            source_drill_id=source_drill_id,
            drill_type=drill_type,
            context=context,
            now=now
        )
        session.add(mastery)
        session.flush()
        return mastery

    mastery = run_optimistic(db, operation, key=f"mastery:{learner_id}:{key}")
    logger.info(
        f"Word score recorded: level={mastery.mastery_level}",
        extra={"learner_id": learner_id, "word": key}
    )
    return mastery


def get_progress(db: Session, learner_id: str, target_unit_id: str) -> Optional[PronunciationProgress]:
    """Progress for one (learner, target unit) pair, or None if never attempted."""
    return db.query(PronunciationProgress).filter(
        PronunciationProgress.learner_id == learner_id,
        PronunciationProgress.target_unit_id == target_unit_id
    ).first()


def get_mastery(db: Session, learner_id: str, word: str) -> Optional[WordMastery]:
    """Mastery for one (learner, word) pair, or None if never observed."""
    return _load_mastery(db, learner_id, normalize_word(word))


def list_attempts(db: Session, learner_id: str, target_unit_id: str) -> List[AttemptResult]:
    """All attempts for a pair in attempt-number order."""
    rows = db.query(PronunciationAttempt).filter(
        PronunciationAttempt.learner_id == learner_id,
        PronunciationAttempt.target_unit_id == target_unit_id
    ).order_by(PronunciationAttempt.attempt_number).all()
    return [_attempt_from_row(row) for row in rows]


def list_word_mastery(
    db: Session,
    learner_id: str,
    level: Optional[MasteryLevel] = None
) -> List[WordMastery]:
    """Mastery records for a learner, hardest first."""
    query = db.query(WordMastery).filter(WordMastery.learner_id == learner_id)
    if level is not None:
        query = query.filter(WordMastery.mastery_level == MasteryLevel(level).value)
    return query.order_by(WordMastery.difficulty_score.desc(), WordMastery.word).all()


def get_challenges(db: Session, learner_id: str) -> Dict:
    """
    Summarize units the learner is stuck on.

    Only challenging units not yet passed are listed, most attempted first,
    then lowest average.

    Returns:
        Dictionary with total, units grouped by challenge level, every unit,
        and the union of their weak phonemes
    """
    rows = db.query(PronunciationProgress).filter(
        PronunciationProgress.learner_id == learner_id,
        PronunciationProgress.is_challenging.is_(True),
        PronunciationProgress.passed.is_(False)
    ).order_by(
        PronunciationProgress.attempts.desc(),
        PronunciationProgress.accuracy_running_average.asc()
    ).all()

    units = [
        {
            "target_unit_id": p.target_unit_id,
            "attempts": p.attempts,
            "average_score": round(p.accuracy_running_average, 2),
            "best_score": p.best_score,
            "challenge_level": p.challenge_level,
            "weak_phonemes": list(p.weak_phonemes or []),
            "weak_letters": list(p.weak_letters or []),
            "last_attempt_at": p.last_attempt_at.isoformat() if p.last_attempt_at else None
        }
        for p in rows
    ]

    by_level = {"high": [], "medium": [], "low": []}
    weak_phonemes = set()
    for unit in units:
        if unit["challenge_level"] in by_level:
            by_level[unit["challenge_level"]].append(unit["target_unit_id"])
        weak_phonemes.update(unit["weak_phonemes"])

    return {
        "learner_id": learner_id,
        "total": len(units),
        "by_level": by_level,
        "units": units,
        "weak_phonemes": sorted(weak_phonemes)
    }


def get_mastery_summary(db: Session, learner_id: str) -> Dict[str, List[Dict]]:
    """Mastery records bucketed by level, each bucket hardest first."""
    summary = {level.value: [] for level in MasteryLevel}
    for mastery in list_word_mastery(db, learner_id):
        summary[mastery.mastery_level].append({
            "word": mastery.word,
            "average_score": round(mastery.average_score, 2),
            "difficulty_score": round(mastery.difficulty_score, 2),
            "improvement_rate": round(mastery.improvement_rate, 2)
        })
    return summary
