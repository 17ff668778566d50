"""Tests for the fixed-capacity history."""
import pytest
from app.services.capped_history import CappedHistory, append_capped


class TestCappedHistory:
    """Tests for FIFO eviction."""

    def test_append_below_capacity_keeps_everything(self):
        history = CappedHistory(capacity=3)
        assert history.append("a") is None
        assert history.append("b") is None
        assert history.to_list() == ["a", "b"]
        assert len(history) == 2

    def test_append_at_capacity_evicts_oldest(self):
        history = CappedHistory(["a", "b", "c"], capacity=3)
        evicted = history.append("d")

        assert evicted == "a"
        assert history.to_list() == ["b", "c", "d"]
        assert history.oldest == "b"
        assert history.newest == "d"

    def test_seeding_from_long_list_keeps_newest(self):
        """A stored list longer than capacity is trimmed from the front."""
        history = CappedHistory(range(30), capacity=20)
        assert len(history) == 20
        assert history.oldest == 10
        assert history.newest == 29

    def test_empty_history(self):
        history = CappedHistory()
        assert history.oldest is None
        assert history.newest is None
        assert list(reversed(history)) == []

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            CappedHistory(capacity=0)


class TestAppendCapped:
    """Tests for the list helper used by JSON columns."""

    def test_does_not_mutate_input(self):
        stored = [1, 2, 3]
        result = append_capped(stored, 4, capacity=3)

        assert stored == [1, 2, 3]
        assert result == [2, 3, 4]

    def test_none_treated_as_empty(self):
        assert append_capped(None, "x") == ["x"]

    def test_twenty_five_appends_keep_last_twenty(self):
        entries = []
        for i in range(25):
            entries = append_capped(entries, i, capacity=20)

        assert len(entries) == 20
        assert entries[0] == 5
        assert entries[-1] == 24
