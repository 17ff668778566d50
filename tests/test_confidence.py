"""Tests for the confidence score calculator."""
from datetime import datetime, timedelta
import pytest
from app.constants import CONFIDENCE_LABEL_BANDS
from app.db.models import DrillAssignment, LearnerConfidence
from app.errors import NoDataAvailable
from app.services.attempts import record_attempt
from app.services.confidence import (
    ConfidenceSnapshot,
    ConfidenceTrend,
    _round_half_up,
    blend_confidence_score,
    calculate_completion_rate,
    compute_confidence,
    compute_trend,
    find_trend_baseline,
    get_confidence_label,
    get_stored_confidence
)
from tests.helpers import scorer_payload


def _record(db, unit, score, now):
    return record_attempt(db, "learner-1", unit, unit, scorer_payload(score), now=now)


def _assign(db, drill_id, status="assigned", completed_at=None):
    db.add(DrillAssignment(
        learner_id="learner-1", drill_id=drill_id, status=status, completed_at=completed_at
    ))
    db.commit()


class TestCompletionRate:
    """Tests for completion rate calculation."""

    def test_no_assignments_is_zero(self):
        assert calculate_completion_rate(0, 0) == 0.0
        assert calculate_completion_rate(0, 3) == 0.0

    def test_fraction(self):
        assert calculate_completion_rate(4, 1) == 0.25

    def test_capped_at_one(self):
        assert calculate_completion_rate(4, 5) == 1.0


class TestScoreAndLabel:
    """Tests for blending and labelling."""

    def test_blend(self):
        assert blend_confidence_score(0.5, 80) == 68
        assert blend_confidence_score(1.0, 100) == 100
        assert blend_confidence_score(0.0, 0) == 0

    def test_round_half_up(self):
        assert _round_half_up(48.5) == 49
        assert _round_half_up(2.5) == 3
        assert _round_half_up(2.49) == 2

    @pytest.mark.parametrize("score,label", [
        (100, "Excellent"),
        (95, "Excellent"),
        (94, "Very Good"),
        (88, "Very Good"),
        (87, "Good"),
        (82, "Good"),
        (81, "Average"),
        (75, "Average"),
        (74, "Developing"),
        (60, "Developing"),
        (59, "Needs Improvement"),
        (0, "Needs Improvement"),
    ])
    def test_label_bands(self, score, label):
        assert get_confidence_label(score) == label

    def test_labels_monotonic(self):
        """A higher score never gets a worse label."""
        rank = {label: i for i, (_, label) in enumerate(reversed(CONFIDENCE_LABEL_BANDS))}
        ranks = [rank[get_confidence_label(score)] for score in range(0, 101)]
        assert ranks == sorted(ranks)


class TestTrend:
    """Tests for trend baseline selection."""

    NOW = datetime(2026, 10, 19, 12, 0, 0)

    def _entry(self, score, days_ago):
        return {"score": score, "computed_at": (self.NOW - timedelta(days=days_ago)).isoformat()}

    def test_empty_history_is_stable(self):
        assert find_trend_baseline([], self.NOW) is None
        assert compute_trend([], 50, self.NOW) is ConfidenceTrend.STABLE

    def test_baseline_is_latest_entry_a_week_old(self):
        history = [self._entry(50, 10), self._entry(70, 8), self._entry(90, 1)]

        assert find_trend_baseline(history, self.NOW)["score"] == 70
        assert compute_trend(history, 75, self.NOW) == "improving"
        assert compute_trend(history, 65, self.NOW) == "declining"
        assert compute_trend(history, 70, self.NOW) == "stable"

    def test_baseline_falls_back_to_oldest(self):
        history = [self._entry(60, 2), self._entry(80, 1)]

        assert find_trend_baseline(history, self.NOW)["score"] == 60
        assert compute_trend(history, 70, self.NOW) == "improving"


class TestComputeConfidence:
    """Tests for computing and storing confidence."""

    def test_no_attempts_returns_no_data(self, test_db, now):
        result = compute_confidence(test_db, "learner-1", now=now)

        assert isinstance(result, NoDataAvailable)
        assert result == NoDataAvailable("learner-1")
        assert result.to_dict() == {"learner_id": "learner-1", "status": "no_data"}
        assert test_db.query(LearnerConfidence).count() == 0

    def test_assignments_without_attempts_is_still_no_data(self, test_db, now):
        _assign(test_db, "drill-1", status="completed")
        assert isinstance(compute_confidence(test_db, "learner-1", now=now), NoDataAvailable)

    def test_no_assignments_uses_quality_only(self, test_db, now):
        _record(test_db, "rural", 80, now)

        result = compute_confidence(test_db, "learner-1", now=now)

        assert isinstance(result, ConfidenceSnapshot)
        assert result.status == "ok"
        assert result.completion_rate == 0.0
        assert result.pronunciation_confidence == 80
        assert result.confidence_score == 48
        assert result.label == "Needs Improvement"
        assert result.trend == "stable"
        assert result.words_tracked == 1

    def test_blends_completion_and_quality(self, test_db, now):
        _record(test_db, "rural", 70, now)
        _record(test_db, "urban", 90, now)
        _assign(test_db, "drill-1", status="completed")
        _assign(test_db, "drill-2", status="in_progress", completed_at=now)
        _assign(test_db, "drill-3")
        _assign(test_db, "drill-4")

        result = compute_confidence(test_db, "learner-1", now=now)

        # completion 2/4 -> 20, quality mean(70, 90) = 80 -> 48
        assert result.drills_assigned == 4
        assert result.drills_completed == 2
        assert result.completion_rate == 0.5
        assert result.confidence_score == 68
        assert result.label == "Developing"
        assert result.completion_contribution == 20.0
        assert result.quality_contribution == 48.0

    def test_units_weighted_equally(self, test_db, now):
        """A unit attempted many times counts once in the quality mean."""
        for _ in range(4):
            _record(test_db, "rural", 100, now)
        _record(test_db, "urban", 50, now)

        result = compute_confidence(test_db, "learner-1", now=now)

        assert result.pronunciation_confidence == 75

    def test_snapshot_stored_and_history_grows(self, test_db, now):
        _record(test_db, "rural", 80, now)

        compute_confidence(test_db, "learner-1", now=now)
        compute_confidence(test_db, "learner-1", now=now + timedelta(days=1))

        stored = get_stored_confidence(test_db, "learner-1")
        assert stored is not None
        assert len(stored.history) == 2
        assert stored.history[-1]["score"] == 48
        assert stored.computed_at == now + timedelta(days=1)

    def test_trend_improves_after_practice(self, test_db, now):
        _record(test_db, "rural", 40, now)
        first = compute_confidence(test_db, "learner-1", now=now)

        _record(test_db, "urban", 100, now + timedelta(days=8))
        second = compute_confidence(test_db, "learner-1", now=now + timedelta(days=8))

        assert first.trend == "stable"
        assert second.confidence_score > first.confidence_score
        assert second.trend == "improving"

    def test_trend_is_enum_and_stored_as_text(self, test_db, now):
        """The snapshot carries the enum; the stored row and JSON carry its value."""
        _record(test_db, "rural", 40, now)
        snapshot = compute_confidence(test_db, "learner-1", now=now)

        assert snapshot.trend is ConfidenceTrend.STABLE
        assert snapshot.model_dump(mode="json")["trend"] == "stable"

        record = test_db.query(LearnerConfidence).filter_by(learner_id="learner-1").one()
        assert record.trend == "stable"
        assert get_stored_confidence(test_db, "learner-1").trend is ConfidenceTrend.STABLE

    def test_history_capped_at_twenty(self, test_db, now):
        _record(test_db, "rural", 80, now)

        for i in range(25):
            compute_confidence(test_db, "learner-1", now=now + timedelta(hours=i))

        record = test_db.query(LearnerConfidence).filter_by(learner_id="learner-1").one()
        assert len(record.history) == 20
        assert record.history[0]["computed_at"] == (now + timedelta(hours=5)).isoformat()

    def test_stored_confidence_missing(self, test_db):
        assert get_stored_confidence(test_db, "nobody") is None
