from __future__ import annotations

from typing import List

import pytest

from climb_planner.config import PlannerOptions
from climb_planner.constraint_engine import (
    ConstraintEngine,
    apply_policy,
    compute_rubric,
    diversify_patterns,
    rubric_violations,
)
from climb_planner.pattern_catalog import PATTERN_DELIVERABLES, steps_for
from climb_planner.quest_models import (
    Constraints,
    InsufficientCandidates,
    Profile,
    Quest,
    QuestList,
    RubricScores,
)


def _quest(title: str, pattern: str, minutes: int, **extra: object) -> Quest:
    return Quest(title=title, pattern=pattern, minutes=minutes, **extra)  # type: ignore[arg-type]


def _complete_quest(title: str, pattern: str, minutes: int, **extra: object) -> Quest:
    fields: dict = {
        "deliverable": "Summary note",
        "steps": ["one", "two", "three"],
        "tags": [pattern],
        "done_definition": "Finished",
        "evidence": ["note"],
        "alt_plan": "Do less",
        "stop_rule": "Stop after 10 minutes stuck",
    }
    fields.update(extra)
    return _quest(title, pattern, minutes, **fields)


def _plan(result: object) -> QuestList:
    assert isinstance(result, QuestList), result
    return result


def test_normal_day_scales_candidates_into_budget() -> None:
    candidates = [
        _quest("Read chapter", "read_note_q", 40),
        _quest("Build demo", "build_micro", 35),
        _quest("Deck", "flashcards", 30),
        _quest("Explain", "feynman", 20),
        _quest("Dialogue", "socratic", 15),
    ]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(), "normal"))

    assert [quest.minutes for quest in plan.quests] == [34, 30, 26]
    assert plan.total_minutes == 90
    assert plan.constraints.total_minutes_max == 90
    assert [quest.pattern for quest in plan.quests] == ["read_note_q", "build_micro", "flashcards"]
    assert not plan.below_threshold
    steps = [entry.step for entry in plan.rationale]
    assert "count_cap" in steps
    assert "reconcile" in steps


def test_no_audio_substitutes_shadowing() -> None:
    profile = Profile(env_constraints=["no_audio"])
    candidates = [_quest("Shadow a podcast", "shadowing", 20), _quest("Read", "read_note_q", 20)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, profile, "normal"))

    assert [quest.pattern for quest in plan.quests] == ["build_micro", "read_note_q"]
    substitutions = [entry for entry in plan.rationale if entry.step == "env_substitution"]
    assert len(substitutions) == 1
    assert substitutions[0].action == "substituted"
    assert substitutions[0].quest_index == 0


def test_environment_tags_are_normalised() -> None:
    profile = Profile(env_constraints=["No-Audio"])

    plan = _plan(ConstraintEngine().apply_policy([_quest("Shadow", "shadowing", 20)], profile))

    assert plan.quests[0].pattern == "build_micro"


def test_everything_infeasible_yields_insufficient_candidates() -> None:
    profile = Profile(env_constraints=["no_audio", "no_screen"])
    candidates = [_quest("Shadow one", "shadowing", 20), _quest("Shadow two", "shadowing", 20)]

    result = ConstraintEngine().apply_policy(candidates, profile, "normal")

    assert isinstance(result, InsufficientCandidates)
    assert result.reason == "insufficient_candidates"
    assert result.message == "No candidate survived environment substitution."
    assert [entry.action for entry in result.rationale if entry.step == "env_substitution"] == [
        "dropped",
        "dropped",
    ]


def test_empty_candidates_yield_insufficient_candidates() -> None:
    result = ConstraintEngine().apply_policy([], Profile(), "busy")

    assert isinstance(result, InsufficientCandidates)
    assert result.message == "No candidates were supplied."
    assert result.constraints is not None
    assert result.constraints.total_minutes_max == 45


def test_checkin_delta_is_floored_at_minimum_budget() -> None:
    candidates = [_quest("A", "read_note_q", 30), _quest("B", "build_micro", 30), _quest("C", "flashcards", 30)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(), "busy", checkin_delta=-60))

    assert plan.constraints.total_minutes_max == 15
    assert [quest.minutes for quest in plan.quests] == [15]


def test_profile_budget_used_without_day_type() -> None:
    engine = ConstraintEngine()

    constraints = engine.derive_constraints(Profile(time_budget_per_day=120), None, checkin_delta=10)

    assert constraints.total_minutes_max == 130
    assert constraints.max_session_minutes == 45
    assert constraints.max_quest_count == 3


def test_sessions_are_clamped_to_cap() -> None:
    plan = _plan(ConstraintEngine().apply_policy([_quest("Long read", "read_note_q", 90)], Profile(), "deep"))

    assert plan.quests[0].minutes == 45
    assert any(entry.step == "session_cap" for entry in plan.rationale)


def test_rounding_overshoot_is_taken_from_largest_quest() -> None:
    candidates = [_quest("A", "read_note_q", 20), _quest("B", "build_micro", 20), _quest("C", "flashcards", 20)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(time_budget_per_day=50)))

    assert [quest.minutes for quest in plan.quests] == [16, 17, 17]
    assert plan.total_minutes == 50


def test_rounding_shortfall_is_given_to_first_quest() -> None:
    candidates = [_quest("A", "read_note_q", 45), _quest("B", "build_micro", 45), _quest("C", "flashcards", 45)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(time_budget_per_day=100)))

    assert [quest.minutes for quest in plan.quests] == [34, 33, 33]


def test_under_budget_lists_keep_their_minutes() -> None:
    candidates = [_quest("A", "read_note_q", 20), _quest("B", "build_micro", 25)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(), "normal"))

    assert [quest.minutes for quest in plan.quests] == [20, 25]
    assert not any(entry.step == "reconcile" for entry in plan.rationale)


@pytest.mark.parametrize(
    ("day_type", "delta", "minutes"),
    [
        ("busy", 0, [45, 45, 45, 45]),
        ("normal", -30, [20, 25, 30]),
        ("deep", 60, [90, 90, 90, 90, 90]),
        (None, 0, [10, 10, 10, 10]),
    ],
)
def test_plans_respect_budget_count_and_session_cap(day_type, delta: int, minutes: List[int]) -> None:
    patterns = ["read_note_q", "build_micro", "flashcards", "feynman", "socratic"]
    candidates = [_quest(f"Q{index}", patterns[index], value) for index, value in enumerate(minutes)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(), day_type, delta))

    assert 1 <= len(plan.quests) <= 3
    assert plan.total_minutes <= plan.constraints.total_minutes_max
    assert all(quest.minutes <= 45 for quest in plan.quests)
    assert all(quest.has_contract() for quest in plan.quests)
    for left, right in zip(plan.quests, plan.quests[1:]):
        assert left.pattern != right.pattern


def test_repeated_patterns_are_diversified() -> None:
    candidates = [_quest("A", "read_note_q", 20), _quest("B", "read_note_q", 20), _quest("C", "flashcards", 20)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(), "normal"))

    assert [quest.pattern for quest in plan.quests] == ["read_note_q", "feynman", "flashcards"]
    assert any(entry.step == "diversity" and entry.action == "substituted" for entry in plan.rationale)


def test_diversify_is_idempotent() -> None:
    quests = [_quest("A", "read_note_q", 20), _quest("B", "read_note_q", 20), _quest("C", "read_note_q", 20)]

    once = diversify_patterns(quests)
    twice = diversify_patterns(once)

    assert [quest.pattern for quest in once] == ["read_note_q", "flashcards", "read_note_q"]
    assert [quest.pattern for quest in twice] == [quest.pattern for quest in once]


def test_diversify_skips_forbidden_alternatives() -> None:
    quests = [_quest("A", "build_micro", 20), _quest("B", "build_micro", 20)]

    result = diversify_patterns(quests, {"config_verify"})

    assert [quest.pattern for quest in result] == ["build_micro", "debug_explain"]


def test_pattern_swaps_refresh_default_deliverable_and_steps() -> None:
    template = _quest(
        "Read",
        "read_note_q",
        20,
        deliverable=PATTERN_DELIVERABLES["read_note_q"],
        steps=steps_for("read_note_q"),
    )
    custom = _quest("Own", "read_note_q", 20, deliverable="Mind map", steps=["Sketch", "Link", "Review"])

    swapped = diversify_patterns([template, template])[1]
    kept = diversify_patterns([template, custom])[1]

    assert swapped.pattern == "flashcards"
    assert swapped.deliverable == PATTERN_DELIVERABLES["flashcards"]
    assert swapped.steps == steps_for("flashcards")
    assert kept.pattern == "flashcards"
    assert kept.deliverable == "Mind map"
    assert kept.steps == ["Sketch", "Link", "Review"]


def test_environment_substitution_refreshes_default_deliverable() -> None:
    quest = _quest("Shadow", "shadowing", 20, deliverable=PATTERN_DELIVERABLES["shadowing"])

    plan = _plan(ConstraintEngine().apply_policy([quest], Profile(env_constraints=["no_audio"])))

    assert plan.quests[0].pattern == "build_micro"
    assert plan.quests[0].deliverable == PATTERN_DELIVERABLES["build_micro"]


def test_missing_contracts_are_backfilled() -> None:
    plan = _plan(ConstraintEngine().apply_policy([_quest("Explain recursion", "feynman", 30)], Profile(), "normal"))

    quest = plan.quests[0]
    assert quest.done_definition == "Complete 'Explain recursion' and confirm the result"
    assert quest.alt_plan == "Shortened version: basics only in 10 minutes"
    assert quest.stop_rule == "Switch to the alternative plan if stuck for 15 minutes"
    assert 1 <= len(quest.evidence) <= 3
    assert len(quest.steps) >= 3
    assert quest.tags
    assert quest.deliverable


def test_existing_contract_fields_are_preserved() -> None:
    quest = _complete_quest("Deck", "flashcards", 20, done_definition="Deck reviewed twice")

    plan = _plan(ConstraintEngine().apply_policy([quest], Profile(), "normal"))

    assert plan.quests[0].done_definition == "Deck reviewed twice"
    assert not any(entry.step == "contract" for entry in plan.rationale)


def test_overly_hard_quests_are_softened() -> None:
    plan = _plan(ConstraintEngine().apply_policy([_complete_quest("Hard", "past_paper", 30, difficulty=0.9)], Profile()))

    assert plan.quests[0].difficulty == 0.7
    assert not plan.below_threshold


def test_uncorrectable_violation_is_flagged() -> None:
    candidates = [_complete_quest("Tiny", "flashcards", 10), _complete_quest("Short", "read_note_q", 15)]

    plan = _plan(ConstraintEngine().apply_policy(candidates, Profile(time_budget_per_day=25)))

    assert plan.below_threshold
    assert plan.rubric_violations == ["feasibility"]
    assert plan.quests[0].minutes == 10
    assert any(entry.step == "rubric" and entry.action == "below_threshold" for entry in plan.rationale)


def test_rubric_scores_and_violations() -> None:
    constraints = Constraints(total_minutes_max=30, max_session_minutes=45, max_quest_count=3)
    quests = [_complete_quest("A", "read_note_q", 20), _quest("B", "build_micro", 20)]

    rubric = compute_rubric(quests, constraints)

    assert rubric.relevance == 0.5
    assert rubric.feasibility == 1.0
    assert rubric.specificity == 0.5
    assert rubric.load_fit == pytest.approx(0.75)
    assert rubric_violations(rubric) == ["relevance", "specificity", "load_fit"]
    assert rubric_violations(RubricScores(relevance=1.0, feasibility=1.0, specificity=1.0, load_fit=1.0)) == []


def test_module_level_apply_policy_honours_options() -> None:
    candidates = [_quest("A", "read_note_q", 20), _quest("B", "build_micro", 20), _quest("C", "flashcards", 20)]

    plan = _plan(apply_policy(candidates, Profile(), "normal", options=PlannerOptions(max_quest_count=2)))

    assert len(plan.quests) == 2
    assert plan.constraints.max_quest_count == 2
