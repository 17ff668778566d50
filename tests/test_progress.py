"""Unit tests for per-unit progress aggregation."""
from datetime import datetime, timedelta
import pytest
from app.services.evaluator import evaluate_attempt
from app.services.progress import (
    apply_attempt,
    get_challenge_level,
    is_challenging,
    update_running_average
)
from tests.helpers import scorer_payload

START = datetime(2026, 10, 19, 9, 0, 0)


def _attempt(score, prior, words=None, unit="rural", minutes=0):
    return evaluate_attempt(
        unit,
        scorer_payload(score, words),
        70,
        learner_id="learner-1",
        target_unit_id=unit,
        prior_attempts=prior,
        timestamp=START + timedelta(minutes=minutes)
    )


def _fold(scores):
    progress = None
    for i, score in enumerate(scores):
        progress = apply_attempt(progress, _attempt(score, i, minutes=i))
    return progress


class TestRunningAverage:
    """Tests for the incremental mean."""

    def test_first_value(self):
        assert update_running_average(0.0, 55, 1) == 55

    def test_matches_arithmetic_mean(self):
        scores = [55, 82, 60, 91, 73]
        average = 0.0
        for n, score in enumerate(scores, start=1):
            average = update_running_average(average, score, n)
        assert average == pytest.approx(sum(scores) / len(scores))


class TestApplyAttempt:
    """Tests for folding attempts into progress."""

    def test_first_attempt_creates_progress(self):
        progress = apply_attempt(None, _attempt(55, 0))

        assert progress.learner_id == "learner-1"
        assert progress.target_unit_id == "rural"
        assert progress.attempts == 1
        assert progress.accuracy_running_average == 55
        assert progress.best_score == 55
        assert progress.last_score == 55
        assert progress.passed is False
        assert progress.passed_at is None

    def test_three_attempt_scenario(self):
        """55, 82, 60 on one unit: average 68.5 after two, ~65.67 after three."""
        progress = apply_attempt(None, _attempt(55, 0))
        progress = apply_attempt(progress, _attempt(82, 1, minutes=1))

        assert progress.accuracy_running_average == pytest.approx(68.5)
        assert progress.passed is True
        passed_at = progress.passed_at
        assert passed_at == START + timedelta(minutes=1)

        progress = apply_attempt(progress, _attempt(60, 2, minutes=2))

        assert progress.attempts == 3
        assert progress.accuracy_running_average == pytest.approx(65.6667, abs=1e-3)
        assert progress.best_score == 82
        assert progress.last_score == 60
        assert progress.passed is True
        assert progress.passed_at == passed_at

    def test_best_score_never_decreases(self):
        progress = _fold([90, 40, 10])
        assert progress.best_score == 90

    def test_weak_sets_only_grow(self):
        first = _attempt(50, 0, words=[("cat", 40, [("k", 30)])])
        second = _attempt(95, 1, words=[("dog", 20, [("d", 10)]), ("cat", 99, [("k", 99)])])

        progress = apply_attempt(None, first)
        progress = apply_attempt(progress, second)

        assert set("catdog") == set(progress.weak_letters)
        assert progress.weak_phonemes == ["d", "k"]

    def test_mismatched_pair_rejected(self):
        progress = apply_attempt(None, _attempt(50, 0, unit="rural"))
        with pytest.raises(ValueError):
            apply_attempt(progress, _attempt(50, 1, unit="urban"))

    def test_last_attempt_at_tracks_latest(self):
        progress = _fold([50, 60, 70])
        assert progress.last_attempt_at == START + timedelta(minutes=2)


class TestChallengeIndicators:
    """Tests for challenge detection."""

    def test_no_attempts_not_challenging(self):
        assert is_challenging(0, 0.0) is False
        assert get_challenge_level(0, 0.0, 0) is None

    def test_low_average_is_medium(self):
        assert is_challenging(1, 55) is True
        assert get_challenge_level(1, 55, 0) == "medium"

    def test_many_attempts_is_medium(self):
        assert get_challenge_level(4, 85, 0) == "medium"

    def test_many_attempts_and_low_average_is_high(self):
        assert get_challenge_level(6, 59, 0) == "high"
        assert get_challenge_level(5, 59, 0) == "medium"

    def test_weak_phonemes_alone_is_low(self):
        assert get_challenge_level(2, 85, 1) == "low"
        assert is_challenging(2, 85) is False

    def test_nothing_to_flag(self):
        assert get_challenge_level(2, 85, 0) is None

    def test_progress_carries_level(self):
        progress = _fold([40, 45, 50, 55, 50, 45])
        assert progress.is_challenging is True
        assert progress.challenge_level == "high"
