from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from climb_planner.difficulty_adjuster import (
    DifficultyAdjuster,
    classify_adjustment,
    classify_magnitude,
    rollback_triggers,
)
from climb_planner.quest_models import (
    CompletionRecord,
    DifficultyContext,
    LearningSignals,
    Quest,
    RiskFactor,
)
from climb_planner.telemetry import TelemetryEvent, register_listener

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


def _record(
    success: bool,
    *,
    pattern: str = "build_micro",
    at: Optional[datetime] = None,
    rating: Optional[int] = None,
) -> CompletionRecord:
    return CompletionRecord(
        title="Earlier quest",
        pattern=pattern,  # type: ignore[arg-type]
        completed_at=at or T0 - timedelta(days=1),
        actual_minutes=20,
        was_successful=success,
        user_rating=rating,
    )


def _history(success: bool, count: int = 7, pattern: str = "build_micro") -> List[CompletionRecord]:
    return [
        _record(success, pattern=pattern, at=T0 - timedelta(days=count - index))
        for index in range(count)
    ]


def _quest(difficulty: float = 0.5, minutes: int = 20, **extra: object) -> Quest:
    fields: dict = {"deliverable": "Working code snippet", "criteria": ["Code runs"], "steps": ["Plan", "Build"]}
    fields.update(extra)
    return Quest(title="Build a parser", pattern="build_micro", minutes=minutes, difficulty=difficulty, **fields)


def test_consistent_success_increases_difficulty() -> None:
    adjuster = DifficultyAdjuster()

    outcome = adjuster.adjust("alice", [_quest()], _history(True), DifficultyContext(), now=T0)

    result = outcome.adjustments[0]
    assert result.adjustment_factor == pytest.approx(0.25)
    assert result.adjusted_difficulty == pytest.approx(0.75)
    assert result.adjustment_type == "increase"
    assert result.magnitude == "significant"
    assert result.confidence == pytest.approx(0.9)

    modified = outcome.modified[0]
    assert modified.minutes == 22
    assert modified.criteria == [
        "Code runs",
        "Demonstrate applied understanding",
        "Explain how this connects to other concepts",
    ]
    assert "challenge" in modified.tags and "advanced" in modified.tags
    fields = [change.field for change in outcome.modifications[0].modifications]
    assert fields == ["difficulty", "minutes", "criteria", "tags"]
    assert len(adjuster.history.list("alice")) == 1


def test_struggles_decrease_difficulty_and_scaffold() -> None:
    quest = _quest(difficulty=0.3, criteria=["One", "Two", "Three", "Four"])
    context = DifficultyContext(available_time=10, consecutive_days=10, mood_indicators=["Frustrated"])
    signals = LearningSignals(risk_factors=[RiskFactor(name="dropout", severity="high")])

    outcome = DifficultyAdjuster().adjust("bob", [quest], _history(False), context, signals, now=T0)

    result = outcome.adjustments[0]
    assert result.adjusted_difficulty == pytest.approx(0.1)
    assert result.adjustment_type == "decrease"
    assert result.magnitude == "significant"
    assert result.confidence == pytest.approx(0.95)

    modified = outcome.modified[0]
    assert modified.criteria == ["One", "Two", "Show a basic understanding of the core idea"]
    assert modified.steps[0] == "Confirm the basic concept first"
    assert modified.minutes == 10
    assert modified.deliverable.endswith(" (shortened scope)")


def test_difficulty_is_clamped_at_upper_bound() -> None:
    context = DifficultyContext(mood_indicators=["confident"])
    signals = LearningSignals(plateau_risk=0.8)

    outcome = DifficultyAdjuster().adjust("carol", [_quest(difficulty=0.85)], _history(True), context, signals)

    result = outcome.adjustments[0]
    assert result.adjustment_factor == pytest.approx(0.45)
    assert result.adjusted_difficulty == pytest.approx(0.9)


def test_no_signals_means_maintain_and_nothing_recorded() -> None:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    adjuster = DifficultyAdjuster()
    quest = _quest()

    outcome = adjuster.adjust("dave", [quest], [], DifficultyContext())

    result = outcome.adjustments[0]
    assert result.adjustment_type == "maintain"
    assert result.magnitude == "minor"
    assert result.rollback_triggers == []
    assert outcome.modified == [quest]
    assert outcome.modifications == []
    assert adjuster.history.list("dave") == []
    assert events == []


def test_increase_keeps_long_quests_intact() -> None:
    outcome = DifficultyAdjuster().adjust("erin", [_quest(minutes=70)], _history(True), DifficultyContext(available_time=120))

    assert outcome.modified[0].minutes == 70


def test_classification_helpers() -> None:
    assert classify_adjustment(0.5, 0.54) == "maintain"
    assert classify_adjustment(0.5, 0.6) == "increase"
    assert classify_adjustment(0.5, 0.3) == "decrease"
    assert classify_magnitude(0.05) == "minor"
    assert classify_magnitude(-0.15) == "moderate"
    assert classify_magnitude(0.2) == "significant"
    assert rollback_triggers("maintain") == []
    assert len(rollback_triggers("increase")) == 3


def test_rollback_requires_three_completions_after_adjustment() -> None:
    adjuster = DifficultyAdjuster()
    adjuster.adjust("alice", [_quest()], _history(True), DifficultyContext(), now=T0)
    before = [_record(False, at=T0 - timedelta(hours=hour)) for hour in range(1, 6)]
    after = [_record(False, at=T0 + timedelta(hours=hour)) for hour in (1, 2)]

    report = adjuster.monitor("alice", before + after)

    assert report.rollbacks == []
    assert report.new_adjustments == []


def test_failed_increase_is_rolled_back_once() -> None:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    adjuster = DifficultyAdjuster()
    outcome = adjuster.adjust("alice", [_quest()], _history(True), DifficultyContext(), now=T0)
    original = outcome.adjustments[0]
    after = [_record(False, at=T0 + timedelta(hours=hour)) for hour in (1, 2, 3)]

    report = adjuster.monitor("alice", after)

    assert [entry.adjustment_id for entry in report.rollbacks] == [original.adjustment_id]
    assert report.rollbacks[0].rolled_back
    rollback = report.new_adjustments[0]
    assert rollback.is_rollback
    assert rollback.reverses == original.adjustment_id
    assert rollback.adjustment_type == "decrease"
    assert rollback.magnitude == original.magnitude
    assert rollback.adjusted_difficulty == pytest.approx(0.5)
    assert rollback.confidence == pytest.approx(0.8)
    assert rollback.adjustment_reason.startswith("Rollback:")
    assert "Consider taking a break or focusing on review content" in report.recommendations
    assert "adjustment_rolled_back" in [event.name for event in events]

    again = adjuster.monitor("alice", after)
    assert again.rollbacks == []


def test_successful_decrease_is_rolled_back_to_increase() -> None:
    adjuster = DifficultyAdjuster()
    adjuster.adjust("bob", [_quest(difficulty=0.6)], _history(False), DifficultyContext(), now=T0)
    after = [_record(True, at=T0 + timedelta(hours=hour), rating=5) for hour in (1, 2, 3)]

    report = adjuster.monitor("bob", after)

    assert [entry.adjustment_type for entry in report.new_adjustments] == ["increase"]
    assert report.recommendations[0] == "Ready for increased challenge and complexity"


def test_stats_reflect_rollbacks() -> None:
    adjuster = DifficultyAdjuster()
    adjuster.adjust("alice", [_quest()], _history(True), DifficultyContext(), now=T0)
    adjuster.monitor("alice", [_record(False, at=T0 + timedelta(hours=hour)) for hour in (1, 2, 3)])

    stats = adjuster.get_adjustment_stats("alice")

    assert stats.total_adjustments == 2
    assert stats.increase_count == 1
    assert stats.decrease_count == 1
    assert stats.rollback_count == 1
    assert stats.rollback_rate == pytest.approx(0.5)
    assert stats.average_confidence == pytest.approx(0.85)


def test_history_is_bounded_per_user() -> None:
    adjuster = DifficultyAdjuster(history_limit=20)
    quests = [_quest() for _ in range(25)]

    adjuster.adjust("alice", quests, _history(True), DifficultyContext())

    assert len(adjuster.history.list("alice")) == 20
    assert adjuster.get_adjustment_stats("alice").total_adjustments == 20
