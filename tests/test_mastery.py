"""Unit tests for word mastery tracking."""
from datetime import datetime, timedelta
import pytest
from app.errors import InvalidInput, InvalidScore
from app.services.mastery import (
    MasteryLevel,
    apply_word_score,
    calculate_improvement_rate,
    get_mastery_level,
    mastery_to_dict,
    normalize_word
)

START = datetime(2026, 10, 19, 9, 0, 0)


def _observe(scores, word="rural", **kwargs):
    mastery = None
    for i, score in enumerate(scores):
        mastery = apply_word_score(
            mastery, "learner-1", word, score,
            now=START + timedelta(minutes=i), **kwargs
        )
    return mastery


class TestMasteryLevel:
    """Tests for level classification."""

    @pytest.mark.parametrize("average,successes,expected", [
        (95, 3, MasteryLevel.MASTERED),
        (90, 3, MasteryLevel.MASTERED),
        (95, 2, MasteryLevel.PRACTICING),
        (89.9, 10, MasteryLevel.PRACTICING),
        (70, 0, MasteryLevel.PRACTICING),
        (69.9, 0, MasteryLevel.LEARNING),
        (50, 0, MasteryLevel.LEARNING),
        (49.9, 0, MasteryLevel.STRUGGLING),
        (0, 0, MasteryLevel.STRUGGLING),
    ])
    def test_classification_table(self, average, successes, expected):
        assert get_mastery_level(average, successes) == expected


class TestApplyWordScore:
    """Tests for folding observations into mastery."""

    def test_first_observation(self):
        mastery = _observe([40])

        assert mastery.word == "rural"
        assert mastery.total_attempts == 1
        assert mastery.successful_attempts == 0
        assert mastery.average_score == 40
        assert mastery.best_score == 40
        assert mastery.worst_score == 40
        assert mastery.difficulty_score == 60
        assert mastery.initial_difficulty == 60
        assert mastery.improvement_rate == 0
        assert mastery.mastery_level == MasteryLevel.STRUGGLING.value
        assert mastery.first_encountered == START

    def test_improvement_rate_tracks_difficulty_drop(self):
        mastery = _observe([40, 80])

        # average 60, difficulty 40, initial 60
        assert mastery.difficulty_score == 40
        assert mastery.initial_difficulty == 60
        assert mastery.improvement_rate == pytest.approx(100 / 3)

    def test_perfect_first_score_guards_improvement_rate(self):
        """Initial difficulty 0 yields an improvement rate of 0, not a division error."""
        mastery = _observe([100, 50])

        assert mastery.initial_difficulty == 0
        assert mastery.difficulty_score == 25
        assert mastery.improvement_rate == 0

    def test_reaches_mastered(self):
        mastery = _observe([95, 92, 98])

        assert mastery.mastery_level == MasteryLevel.MASTERED.value
        assert mastery.mastered_at == START + timedelta(minutes=2)

    def test_regression_drops_level_but_keeps_mastered_at(self):
        """A bad score after mastery demotes the word; the first mastery time stays."""
        mastery = _observe([92, 92, 92])
        assert mastery.mastery_level == MasteryLevel.MASTERED.value
        mastered_at = mastery.mastered_at

        mastery = apply_word_score(
            mastery, "learner-1", "rural", 24, now=START + timedelta(days=1)
        )

        assert mastery.average_score == pytest.approx(75)
        assert mastery.mastery_level == MasteryLevel.PRACTICING.value
        assert mastery.mastered_at == mastered_at == START + timedelta(minutes=2)
        assert mastery.worst_score == 24
        assert mastery.best_score == 92

    def test_score_history_is_capped(self):
        mastery = _observe([50 + (i % 10) for i in range(25)])

        assert len(mastery.score_history) == 20
        assert mastery.score_history[0]["timestamp"] == (START + timedelta(minutes=5)).isoformat()
        assert mastery.score_history[-1]["score"] == 54
        assert mastery.total_attempts == 25

    def test_contexts_and_drill_types_distinct(self):
        mastery = None
        for context, drill_type in [
            ("The rural road", "pronunciation"),
            ("The rural road", "vocabulary"),
            ("A rural town", "pronunciation"),
        ]:
            mastery = apply_word_score(
                mastery, "learner-1", "rural", 80,
                drill_type=drill_type, context=context, now=START
            )

        assert mastery.contexts == ["The rural road", "A rural town"]
        assert mastery.drill_types == ["pronunciation", "vocabulary"]

    def test_out_of_range_score_rejected(self):
        with pytest.raises(InvalidScore):
            _observe([101])

    def test_to_dict(self):
        data = mastery_to_dict(_observe([80], source_drill_id="drill-9"))

        assert data["word"] == "rural"
        assert data["mastery_level"] == "practicing"
        assert data["score_history"][0]["source_drill_id"] == "drill-9"


class TestHelpers:
    """Tests for word normalization and improvement rate."""

    def test_normalize_word(self):
        assert normalize_word("  Rural ") == "rural"

    def test_empty_word_rejected(self):
        with pytest.raises(InvalidInput):
            normalize_word("   ")

    def test_improvement_rate_without_initial(self):
        assert calculate_improvement_rate(None, 30) == 0
        assert calculate_improvement_rate(0, 30) == 0

    def test_improvement_rate_can_be_negative(self):
        assert calculate_improvement_rate(20, 40) == -100
