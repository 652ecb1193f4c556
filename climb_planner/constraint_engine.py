"""Policy engine that turns raw quest candidates into a validated one-day plan."""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Set, Union

from .config import PlannerOptions
from .pattern_catalog import (
    PATTERN_ALTERNATIVES,
    PATTERN_DELIVERABLES,
    contract_for,
    feasible_patterns,
    first_feasible_alternative,
    forbidden_patterns,
    pad_steps,
    steps_for,
)
from .quest_models import (
    MAX_EVIDENCE_ITEMS,
    Constraints,
    DayType,
    InsufficientCandidates,
    PolicyTraceEntry,
    Profile,
    Quest,
    QuestList,
    RubricScores,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)


DAY_TYPE_CAPACITY: Dict[str, int] = {"busy": 45, "normal": 90, "deep": 150}
MIN_TOTAL_MINUTES = 15
MIN_QUEST_MINUTES = 15
DEFAULT_MAX_SESSION_MINUTES = 45
DEFAULT_MAX_QUEST_COUNT = 3
MAX_FEASIBLE_DIFFICULTY = 0.7
MIN_QUEST_STEPS = 3
RUBRIC_THRESHOLDS: Dict[str, float] = {
    "relevance": 0.85,
    "feasibility": 0.80,
    "specificity": 0.85,
    "load_fit": 1.0,
}

PolicyResult = Union[QuestList, InsufficientCandidates]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class _Trace:
    def __init__(self) -> None:
        self.entries: List[PolicyTraceEntry] = []

    def add(self, step: str, action: str, detail: str, quest_index: Optional[int] = None) -> None:
        self.entries.append(PolicyTraceEntry(step=step, action=action, detail=detail, quest_index=quest_index))


class ConstraintEngine:
    """Applies the fixed policy steps to a candidate list.

    The engine never raises for budget arithmetic edge cases: an empty candidate
    list or one that is emptied by environment substitution yields an
    ``InsufficientCandidates`` result instead.
    """

    def __init__(
        self,
        *,
        max_session_minutes: int = DEFAULT_MAX_SESSION_MINUTES,
        max_quest_count: int = DEFAULT_MAX_QUEST_COUNT,
        capacity_table: Optional[Dict[str, int]] = None,
        enforce_diversity: bool = True,
        rubric_gate: bool = True,
    ) -> None:
        self._max_session = max(max_session_minutes, MIN_QUEST_MINUTES)
        self._max_count = max(max_quest_count, 1)
        self._capacity = dict(capacity_table or DAY_TYPE_CAPACITY)
        self._enforce_diversity = enforce_diversity
        self._rubric_gate = rubric_gate

    @classmethod
    def from_options(cls, options: PlannerOptions) -> "ConstraintEngine":
        return cls(
            max_session_minutes=options.max_session_minutes,
            max_quest_count=options.max_quest_count,
        )

    def derive_constraints(
        self,
        profile: Profile,
        day_type: Optional[DayType],
        checkin_delta: int = 0,
    ) -> Constraints:
        if day_type is not None and day_type in self._capacity:
            capacity = self._capacity[day_type]
        else:
            capacity = profile.time_budget_per_day
        total = max(MIN_TOTAL_MINUTES, capacity + checkin_delta)
        return Constraints(
            total_minutes_max=total,
            max_session_minutes=self._max_session,
            max_quest_count=self._max_count,
        )

    def apply_policy(
        self,
        candidates: Sequence[Quest],
        profile: Profile,
        day_type: Optional[DayType] = None,
        checkin_delta: int = 0,
    ) -> PolicyResult:
        trace = _Trace()

        constraints = self.derive_constraints(profile, day_type, checkin_delta)
        trace.add(
            "budget",
            "derived",
            f"day_type={day_type or 'profile'} delta={checkin_delta:+d} total={constraints.total_minutes_max}",
        )

        forbidden = forbidden_patterns(profile.env_constraints)
        quests = self._substitute_for_environment(list(candidates), forbidden, profile.env_constraints, trace)

        if len(quests) > constraints.max_quest_count:
            trace.add(
                "count_cap",
                "truncated",
                f"kept {constraints.max_quest_count} of {len(quests)} candidates",
            )
            quests = quests[: constraints.max_quest_count]

        if not quests:
            message = (
                "No candidates were supplied."
                if not candidates
                else "No candidate survived environment substitution."
            )
            trace.add("count_cap", "insufficient", message)
            logger.info("Policy produced no quests: %s", message)
            emit_event("policy_insufficient_candidates", candidate_count=len(candidates))
            return InsufficientCandidates(message=message, constraints=constraints, rationale=trace.entries)

        quests = self._clamp_sessions(quests, trace)
        quests = self._reconcile_total(quests, constraints.total_minutes_max, trace)
        if self._enforce_diversity:
            quests = diversify_patterns(quests, forbidden, trace=trace)
        quests = self._backfill_contracts(quests, trace)

        rubric = compute_rubric(quests, constraints)
        violations = rubric_violations(rubric)
        if violations and self._rubric_gate:
            trace.add("rubric", "violated", ", ".join(violations))
            quests = self._correct(quests, violations, profile, constraints, trace)
            rubric = compute_rubric(quests, constraints)
            violations = rubric_violations(rubric)
            if violations:
                trace.add("rubric", "below_threshold", ", ".join(violations))
                logger.warning("Quest list still below rubric thresholds after correction: %s", violations)

        result = QuestList(
            quests=quests,
            constraints=constraints,
            rationale=trace.entries,
            rubric=rubric,
            below_threshold=bool(violations),
            rubric_violations=violations,
        )
        emit_event(
            "policy_applied",
            candidate_count=len(candidates),
            quest_count=len(quests),
            total_minutes=result.total_minutes,
            total_minutes_max=constraints.total_minutes_max,
            below_threshold=result.below_threshold,
        )
        return result

    def _substitute_for_environment(
        self,
        quests: List[Quest],
        forbidden: Set[str],
        env_tags: Sequence[str],
        trace: _Trace,
    ) -> List[Quest]:
        if not forbidden:
            return quests
        kept: List[Quest] = []
        for index, quest in enumerate(quests):
            if quest.pattern not in forbidden:
                kept.append(quest)
                continue
            alternative = first_feasible_alternative(quest.pattern, forbidden)
            if alternative is None:
                trace.add(
                    "env_substitution",
                    "dropped",
                    f"'{quest.title}' uses {quest.pattern}, infeasible under {', '.join(env_tags)} with no alternative",
                    index,
                )
                logger.info("Dropped quest %r: no feasible alternative to %s", quest.title, quest.pattern)
                continue
            trace.add(
                "env_substitution",
                "substituted",
                f"{quest.pattern} -> {alternative} for '{quest.title}' ({', '.join(env_tags)})",
                index,
            )
            logger.info("Substituted %s with %s for quest %r", quest.pattern, alternative, quest.title)
            kept.append(with_pattern(quest, alternative))
        return kept

    def _clamp_sessions(self, quests: List[Quest], trace: _Trace) -> List[Quest]:
        clamped: List[Quest] = []
        for index, quest in enumerate(quests):
            if quest.minutes > self._max_session:
                trace.add("session_cap", "clamped", f"{quest.minutes} -> {self._max_session} minutes", index)
                quest = quest.model_copy(update={"minutes": self._max_session})
            clamped.append(quest)
        return clamped

    def _reconcile_total(self, quests: List[Quest], target: int, trace: _Trace) -> List[Quest]:
        total = sum(quest.minutes for quest in quests)
        if total <= target:
            return quests

        max_count = max(1, target // MIN_QUEST_MINUTES)
        if len(quests) > max_count:
            trace.add(
                "reconcile",
                "truncated",
                f"{len(quests)} quests cannot each get {MIN_QUEST_MINUTES} minutes within {target}; kept {max_count}",
            )
            quests = quests[:max_count]
            total = sum(quest.minutes for quest in quests)
            if total <= target:
                return quests

        factor = target / total
        minutes = [
            min(self._max_session, max(MIN_QUEST_MINUTES, _round_half_up(quest.minutes * factor)))
            for quest in quests
        ]
        minutes = self._settle_residual(minutes, target)
        trace.add("reconcile", "scaled", f"{total} -> {sum(minutes)} minutes (factor {factor:.3f})")
        return [quest.model_copy(update={"minutes": value}) for quest, value in zip(quests, minutes)]

    def _settle_residual(self, minutes: List[int], target: int) -> List[int]:
        settled = list(minutes)
        residual = target - sum(settled)
        while residual < 0:
            reducible = [index for index, value in enumerate(settled) if value > MIN_QUEST_MINUTES]
            if not reducible:
                break
            largest = max(reducible, key=lambda index: (settled[index], -index))
            cut = min(-residual, settled[largest] - MIN_QUEST_MINUTES)
            settled[largest] -= cut
            residual += cut
        for index in range(len(settled)):
            if residual <= 0:
                break
            room = self._max_session - settled[index]
            if room <= 0:
                continue
            added = min(room, residual)
            settled[index] += added
            residual -= added
        return settled

    def _backfill_contracts(self, quests: List[Quest], trace: _Trace) -> List[Quest]:
        filled: List[Quest] = []
        for index, quest in enumerate(quests):
            if quest.has_contract():
                filled.append(quest)
                continue
            template = contract_for(quest.pattern, quest.title, quest.minutes)
            update = {
                key: value
                for key, value in template.items()
                if not getattr(quest, key)
            }
            if "evidence" in update:
                update["evidence"] = list(update["evidence"])[:MAX_EVIDENCE_ITEMS]  # type: ignore[arg-type]
            trace.add("contract", "backfilled", ", ".join(sorted(update)), index)
            filled.append(quest.model_copy(update=update))
        return filled

    def _correct(
        self,
        quests: List[Quest],
        violations: List[str],
        profile: Profile,
        constraints: Constraints,
        trace: _Trace,
    ) -> List[Quest]:
        corrected = list(quests)
        if "feasibility" in violations:
            corrected = self._correct_feasibility(corrected, constraints, trace)
        if "specificity" in violations:
            corrected = self._backfill_contracts(corrected, trace)
            corrected = [
                quest.model_copy(update={"steps": pad_steps(quest.pattern, quest.steps, MIN_QUEST_STEPS)})
                if len(quest.steps) < MIN_QUEST_STEPS
                else quest
                for quest in corrected
            ]
            trace.add("rubric", "corrected", "padded steps and completion contracts")
        if "relevance" in violations:
            corrected = [self._with_relevance_fields(quest, profile) for quest in corrected]
            trace.add("rubric", "corrected", "synthesised missing tags and deliverables")
        if "load_fit" in violations:
            corrected = self._reconcile_total(corrected, constraints.total_minutes_max, trace)
        return corrected

    def _correct_feasibility(self, quests: List[Quest], constraints: Constraints, trace: _Trace) -> List[Quest]:
        corrected: List[Quest] = []
        total = sum(quest.minutes for quest in quests)
        for index, quest in enumerate(quests):
            update: Dict[str, object] = {}
            if quest.difficulty > MAX_FEASIBLE_DIFFICULTY:
                update["difficulty"] = MAX_FEASIBLE_DIFFICULTY
            if quest.minutes < MIN_QUEST_MINUTES:
                shortfall = MIN_QUEST_MINUTES - quest.minutes
                if total + shortfall <= constraints.total_minutes_max:
                    update["minutes"] = MIN_QUEST_MINUTES
                    total += shortfall
            if update:
                trace.add("rubric", "corrected", f"feasibility: {sorted(update)}", index)
                quest = quest.model_copy(update=update)
            corrected.append(quest)
        return corrected

    @staticmethod
    def _with_relevance_fields(quest: Quest, profile: Profile) -> Quest:
        update: Dict[str, object] = {}
        if not quest.tags:
            update["tags"] = [quest.pattern, *profile.priority_areas[:2]]
        if not quest.deliverable.strip():
            update["deliverable"] = PATTERN_DELIVERABLES.get(quest.pattern, "Completion note")
        return quest.model_copy(update=update) if update else quest


def with_pattern(quest: Quest, pattern: str) -> Quest:
    """Swap the pattern, replacing deliverable and steps that were the old pattern's defaults."""
    update: Dict[str, object] = {"pattern": pattern}
    if quest.deliverable == PATTERN_DELIVERABLES.get(quest.pattern):
        update["deliverable"] = PATTERN_DELIVERABLES.get(pattern, quest.deliverable)
    if quest.steps and quest.steps == steps_for(quest.pattern):
        update["steps"] = steps_for(pattern)
    return quest.model_copy(update=update)


def diversify_patterns(
    quests: Sequence[Quest],
    forbidden: Optional[Set[str]] = None,
    *,
    trace: Optional[_Trace] = None,
) -> List[Quest]:
    """Break up adjacent repeats of the same pattern.

    Each repeat takes the first environment-feasible entry of its alternative
    table that does not clash with the next quest, falling back to the
    canonical pattern order. Lists without adjacent repeats come back unchanged.
    """
    blocked = forbidden or set()
    result = list(quests)
    for index in range(1, len(result)):
        current = result[index]
        previous = result[index - 1]
        if current.pattern != previous.pattern:
            continue
        following = result[index + 1].pattern if index + 1 < len(result) else None
        alternatives = list(PATTERN_ALTERNATIVES.get(current.pattern, ()))
        options = alternatives + [pattern for pattern in feasible_patterns(blocked) if pattern not in alternatives]
        replacement = next(
            (
                pattern
                for pattern in options
                if pattern not in blocked and pattern != previous.pattern and pattern != following
            ),
            None,
        )
        if replacement is None:
            if trace is not None:
                trace.add("diversity", "kept", f"no substitute for repeated {current.pattern}", index)
            continue
        if trace is not None:
            trace.add("diversity", "substituted", f"{current.pattern} -> {replacement}", index)
        result[index] = with_pattern(current, replacement)
    return result


def compute_rubric(quests: Sequence[Quest], constraints: Constraints) -> RubricScores:
    if not quests:
        return RubricScores(relevance=0.0, feasibility=0.0, specificity=0.0, load_fit=0.0)
    count = len(quests)
    relevance = sum(1 for quest in quests if quest.tags and quest.deliverable.strip()) / count
    feasibility = (
        sum(
            1
            for quest in quests
            if MIN_QUEST_MINUTES <= quest.minutes <= constraints.max_session_minutes
            and quest.difficulty <= MAX_FEASIBLE_DIFFICULTY
        )
        / count
    )
    specificity = sum(1 for quest in quests if quest.has_contract() and len(quest.steps) >= MIN_QUEST_STEPS) / count
    total = sum(quest.minutes for quest in quests)
    load_fit = min(1.0, constraints.total_minutes_max / total) if total > 0 else 0.0
    return RubricScores(relevance=relevance, feasibility=feasibility, specificity=specificity, load_fit=load_fit)


def rubric_violations(scores: RubricScores) -> List[str]:
    return [name for name, threshold in RUBRIC_THRESHOLDS.items() if getattr(scores, name) < threshold]


def apply_policy(
    candidates: Sequence[Quest],
    profile: Profile,
    day_type: Optional[DayType] = None,
    checkin_delta: int = 0,
    options: Optional[PlannerOptions] = None,
) -> PolicyResult:
    engine = ConstraintEngine.from_options(options) if options else ConstraintEngine()
    return engine.apply_policy(candidates, profile, day_type, checkin_delta)


__all__ = [
    "ConstraintEngine",
    "DAY_TYPE_CAPACITY",
    "PolicyResult",
    "RUBRIC_THRESHOLDS",
    "apply_policy",
    "compute_rubric",
    "diversify_patterns",
    "rubric_violations",
    "with_pattern",
]
