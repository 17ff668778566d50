"""Attempt evaluation: raw scorer output to a strict AttemptResult.

The scorer's payload is duck-typed (flat ``word_scores``/``phonemes`` lists
from our own proxy, or the scorer's native nested ``text_score`` object). It
is validated and normalized here so nothing downstream sees optional or
untyped fields.
"""
import math
from datetime import datetime
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple
from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator
)
from app.constants import DEFAULT_PASSING_THRESHOLD, MIN_SCORE, MAX_SCORE
from app.errors import InvalidInput, InvalidScore, InvalidThreshold


class PhonemeScore(BaseModel):
    """Score for one phoneme inside a word."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    phoneme: str = Field(validation_alias=AliasChoices("phoneme", "phone"))
    score: float = Field(validation_alias=AliasChoices("score", "quality_score"))


class WordScore(BaseModel):
    """Score for one word of the reference text."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str = Field(validation_alias=AliasChoices("text", "word"))
    score: float = Field(validation_alias=AliasChoices("score", "quality_score"))
    phonemes: Tuple[PhonemeScore, ...] = Field(
        default=(),
        validation_alias=AliasChoices("phonemes", "phone_score_list", "per_phoneme_scores")
    )


class ScorerResponse(BaseModel):
    """Normalized speech scorer output."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    utterance_score: float = Field(
        validation_alias=AliasChoices("utterance_score", "text_score", "quality_score")
    )
    fluency_score: Optional[float] = None
    word_scores: Tuple[WordScore, ...] = Field(
        default=(),
        validation_alias=AliasChoices("word_scores", "word_score_list", "per_word_scores")
    )
    text_feedback: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def flatten_nested_text_score(cls, data: Any) -> Any:
        """Lift the scorer's native ``text_score`` object to the flat shape."""
        if not isinstance(data, dict):
            return data
        nested = data.get("text_score")
        if not isinstance(nested, dict):
            return data

        flat = {k: v for k, v in data.items() if k != "text_score"}
        flat["utterance_score"] = nested.get("quality_score")
        if "word_score_list" in nested and "word_scores" not in flat:
            flat["word_scores"] = nested["word_score_list"]
        fluency = nested.get("fluency")
        if isinstance(fluency, dict) and flat.get("fluency_score") is None:
            metrics = fluency.get("overall_metrics") or {}
            flat["fluency_score"] = metrics.get("fluency_score")
        return flat


class AttemptResult(BaseModel):
    """Immutable outcome of one pronunciation submission."""
    model_config = ConfigDict(frozen=True)

    learner_id: str
    target_unit_id: str
    timestamp: datetime
    attempt_number: int = Field(ge=1)
    reference_text: str
    overall_score: float
    fluency_score: Optional[float] = None
    per_word_scores: Tuple[WordScore, ...] = ()
    passing_threshold: float
    passed: bool
    weak_letters: FrozenSet[str] = frozenset()
    weak_phonemes: FrozenSet[str] = frozenset()
    text_feedback: Optional[str] = None
    source_drill_id: Optional[str] = None
    idempotency_key: Optional[str] = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_threshold(threshold: Any) -> float:
    """
    Check a passing threshold.

    Args:
        threshold: Caller-supplied threshold

    Returns:
        Threshold as a float

    Raises:
        InvalidThreshold: Not a finite number in [0, 100]
    """
    if not _is_number(threshold) or not MIN_SCORE <= threshold <= MAX_SCORE:
        raise InvalidThreshold(f"Passing threshold must be a number between 0 and 100, got {threshold!r}")
    return float(threshold)


def validate_score(score: Any, label: str = "score") -> float:
    """Reject a score that is not a finite number in [0, 100]."""
    if not _is_number(score) or not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidScore(f"{label} must be a number between 0 and 100, got {score!r}")
    return float(score)


def clamp_score(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, float(score)))


def normalize_scorer_response(raw: Any) -> ScorerResponse:
    """
    Validate a scorer payload and bring it into the strict shape.

    The utterance-level score is clamped into [0, 100]; word and phoneme
    scores outside that range are rejected.

    Args:
        raw: Scorer payload (dict) or an already normalized ScorerResponse

    Returns:
        ScorerResponse

    Raises:
        InvalidScore: Payload is malformed or holds out-of-range scores
    """
    if isinstance(raw, ScorerResponse):
        response = raw
    else:
        try:
            response = ScorerResponse.model_validate(raw)
        except ValidationError as e:
            raise InvalidScore(f"Malformed scorer response: {e.error_count()} validation error(s)") from e

    if not math.isfinite(response.utterance_score):
        raise InvalidScore(f"Utterance score must be finite, got {response.utterance_score!r}")

    fluency = response.fluency_score
    if fluency is not None:
        fluency = validate_score(fluency, "Fluency score")

    for word in response.word_scores:
        validate_score(word.score, f"Score for word {word.text!r}")
        for phoneme in word.phonemes:
            validate_score(phoneme.score, f"Score for phoneme {phoneme.phoneme!r}")

    return response.model_copy(update={
        "utterance_score": clamp_score(response.utterance_score),
        "fluency_score": fluency,
    })


def extract_weak_letters(word_scores: Iterable[WordScore], threshold: float) -> FrozenSet[str]:
    """
    Collect the letters of every word scored below the threshold.

    Every character of an under-threshold word is flagged, not only the
    mispronounced ones; the scorer's word score cannot localize the error.
    """
    letters = set()
    for word in word_scores:
        if word.score < threshold:
            letters.update(ch for ch in word.text.lower() if not ch.isspace())
    return frozenset(letters)


def extract_weak_phonemes(word_scores: Iterable[WordScore], threshold: float) -> FrozenSet[str]:
    """Collect phoneme symbols scored below the threshold in any word."""
    return frozenset(
        phoneme.phoneme
        for word in word_scores
        for phoneme in word.phonemes
        if phoneme.score < threshold
    )


def evaluate_attempt(
    reference_text: str,
    scorer_response: Any,
    threshold: Any = DEFAULT_PASSING_THRESHOLD,
    *,
    learner_id: str,
    target_unit_id: str,
    prior_attempts: int = 0,
    timestamp: Optional[datetime] = None,
    source_drill_id: Optional[str] = None,
    idempotency_key: Optional[str] = None
) -> AttemptResult:
    """
    Turn one scorer response into an AttemptResult.

    Pure function: no I/O and no state. ``prior_attempts`` is the number of
    attempts already recorded for this (learner, target unit) pair.

    Args:
        reference_text: Word or phrase the learner was asked to say
        scorer_response: Raw scorer payload or ScorerResponse
        threshold: Passing threshold in [0, 100]
        learner_id: Learner identifier
        target_unit_id: Target unit identifier
        prior_attempts: Attempts recorded before this one
        timestamp: Attempt time (defaults to now, UTC)
        source_drill_id: Drill the attempt belongs to, if any
        idempotency_key: Client-generated key, if any

    Returns:
        AttemptResult

    Raises:
        InvalidThreshold: Threshold out of range
        InvalidScore: Scorer payload malformed or out of range
    """
    threshold = validate_threshold(threshold)
    if not isinstance(reference_text, str) or not reference_text.strip():
        raise InvalidInput("Reference text must be a non-empty string")
    if prior_attempts < 0:
        raise InvalidInput(f"Prior attempt count cannot be negative, got {prior_attempts}")

    response = normalize_scorer_response(scorer_response)
    overall = response.utterance_score

    return AttemptResult(
        learner_id=learner_id,
        target_unit_id=target_unit_id,
        timestamp=timestamp or datetime.utcnow(),
        attempt_number=prior_attempts + 1,
        reference_text=reference_text.strip(),
        overall_score=overall,
        fluency_score=response.fluency_score,
        per_word_scores=response.word_scores,
        passing_threshold=threshold,
        passed=overall >= threshold,
        weak_letters=extract_weak_letters(response.word_scores, threshold),
        weak_phonemes=extract_weak_phonemes(response.word_scores, threshold),
        text_feedback=response.text_feedback,
        source_drill_id=source_drill_id,
        idempotency_key=idempotency_key,
    )


def word_scores_to_json(word_scores: Iterable[WordScore]) -> List[dict]:
    """Serialize word scores for a JSON column."""
    return [word.model_dump(mode="json") for word in word_scores]
