from __future__ import annotations

import pytest

from climb_planner.adjustment_history import AdjustmentHistory
from climb_planner.quest_models import DifficultyAdjustmentResult


def _adjustment(title: str) -> DifficultyAdjustmentResult:
    return DifficultyAdjustmentResult(
        quest_title=title,
        original_difficulty=0.5,
        adjusted_difficulty=0.6,
        adjustment_factor=0.1,
        adjustment_reason="test",
        adjustment_type="increase",
        magnitude="moderate",
        confidence=0.8,
    )


def test_oldest_entries_are_evicted() -> None:
    history = AdjustmentHistory(limit=20)

    history.extend("alice", [_adjustment(f"Quest {index}") for index in range(25)])

    entries = history.list("alice")
    assert len(entries) == 20
    assert entries[0].quest_title == "Quest 5"
    assert entries[-1].quest_title == "Quest 24"
    assert [entry.quest_title for entry in history.recent("alice", 2)] == ["Quest 23", "Quest 24"]


def test_user_ids_are_normalised() -> None:
    history = AdjustmentHistory()

    history.append("  Alice ", _adjustment("Quest"))

    assert len(history.list("alice")) == 1
    assert history.list("bob") == []


def test_blank_user_id_is_rejected() -> None:
    with pytest.raises(ValueError):
        AdjustmentHistory().append("   ", _adjustment("Quest"))


def test_entries_are_returned_as_copies() -> None:
    history = AdjustmentHistory()
    history.append("alice", _adjustment("Quest"))

    history.list("alice")[0].quest_title = "Mutated"

    assert history.list("alice")[0].quest_title == "Quest"


def test_mark_rolled_back_and_clear() -> None:
    history = AdjustmentHistory()
    entry = _adjustment("Quest")
    history.append("alice", entry)
    history.append("bob", _adjustment("Other"))

    updated = history.mark_rolled_back("alice", entry.adjustment_id)

    assert updated is not None and updated.rolled_back
    assert history.list("alice")[0].rolled_back
    assert history.mark_rolled_back("alice", "missing") is None

    history.clear("alice")
    assert history.list("alice") == []
    assert len(history.list("bob")) == 1
    history.clear()
    assert history.list("bob") == []
