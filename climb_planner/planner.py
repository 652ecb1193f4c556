"""Planning entry points: onboarding questions, the daily quest list and between-cycle adaptation."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .candidate_source import QuestCandidateSource
from .config import PlannerOptions
from .constraint_engine import ConstraintEngine
from .difficulty_adjuster import DifficultyAdjuster
from .fallback_templates import GoalClarity, fallback_quests
from .question_planner import QuestionPlan, plan_questions
from .quest_models import (
    AdjustmentReport,
    CompletionRecord,
    DailyCheckin,
    DayType,
    DifficultyContext,
    InsufficientCandidates,
    KnownProfile,
    LearningSignals,
    PlanningFailure,
    Profile,
    Quest,
    QuestionPriorityHints,
    QuestList,
    SkillAtom,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class PlanningContext(BaseModel):
    """Inputs for one day's plan beyond the profile and completion history."""

    day_type: Optional[DayType] = None
    checkin: Optional[DailyCheckin] = None
    skill_atoms: List[SkillAtom] = Field(default_factory=list)
    request_skill_map: bool = False
    review_candidates: bool = False


class NextCycleContext(BaseModel):
    user_id: str
    upcoming_quests: List[Quest] = Field(default_factory=list)
    difficulty: DifficultyContext = Field(default_factory=DifficultyContext)
    signals: Optional[LearningSignals] = None


PlanDayResult = Union[QuestList, PlanningFailure]


class QuestPlanner:
    """Sequences question planning, candidate generation and the policy engine.

    Options are resolved per call; a planner holds no switch that changes
    behaviour for other callers.
    """

    def __init__(
        self,
        options: Optional[PlannerOptions] = None,
        *,
        source: Optional[QuestCandidateSource] = None,
        adjuster: Optional[DifficultyAdjuster] = None,
    ) -> None:
        self._options = options or PlannerOptions()
        self._source = source
        self._adjuster = adjuster or DifficultyAdjuster(history_limit=self._options.adjustment_history_limit)

    @property
    def adjuster(self) -> DifficultyAdjuster:
        return self._adjuster

    def _source_for(self, options: PlannerOptions) -> QuestCandidateSource:
        return self._source or QuestCandidateSource.from_options(options)

    def plan_onboarding_questions(
        self,
        goal_text: str,
        known: KnownProfile,
        hints: Optional[QuestionPriorityHints] = None,
        options: Optional[PlannerOptions] = None,
    ) -> QuestionPlan:
        resolved = options or self._options
        plan = plan_questions(goal_text, known, resolved.question_budget, hints)
        emit_event(
            "question_plan_built",
            selected=[question.id for question in plan.selected],
            skipped=len(plan.skipped),
            budget=plan.budget,
            hinted=hints is not None,
        )
        return plan

    async def assess_goal(self, goal_text: str, options: Optional[PlannerOptions] = None) -> GoalClarity:
        return await self._source_for(options or self._options).check_goal_clarity(goal_text)

    async def plan_day(
        self,
        profile: Profile,
        history: Sequence[CompletionRecord],
        context: Optional[PlanningContext] = None,
        options: Optional[PlannerOptions] = None,
    ) -> PlanDayResult:
        """Build today's quest list. Never raises; failures come back as ``PlanningFailure``."""
        resolved = options or self._options
        planning = context or PlanningContext()
        try:
            source = self._source_for(resolved)
            engine = ConstraintEngine.from_options(resolved)

            skill_atoms: List[SkillAtom] = list(planning.skill_atoms)
            if not skill_atoms and planning.request_skill_map:
                skill_atoms = await source.generate_skill_map(profile)

            batch = await source.generate_candidates(profile, skill_atoms, planning.checkin, history)
            candidates = batch.quests

            delta = planning.checkin.available_time_today_delta_min if planning.checkin else 0
            if planning.review_candidates and not batch.is_fallback:
                constraints = engine.derive_constraints(profile, planning.day_type, delta)
                candidates = await source.review_candidates(candidates, profile, constraints)

            result = engine.apply_policy(candidates, profile, planning.day_type, delta)
            source_name, upstream_error = batch.source, batch.error
            if isinstance(result, InsufficientCandidates) and not batch.is_fallback:
                upstream_error = f"Upstream candidates infeasible: {result.message}"
                logger.warning("%s Retrying with template candidates.", upstream_error)
                emit_event("candidate_source_fallback", kind="policy", error=upstream_error)
                templates = fallback_quests(profile, skill_atoms, planning.checkin)
                result = engine.apply_policy(templates, profile, planning.day_type, delta)
                source_name = "fallback"
            if isinstance(result, PlanningFailure):
                emit_event("planning_failed", reason=result.reason, source=source_name)
                return result

            planned = result.model_copy(update={"source": source_name, "upstream_error": upstream_error})
            emit_event(
                "day_planned",
                quest_count=len(planned.quests),
                total_minutes=planned.total_minutes,
                source=planned.source,
                below_threshold=planned.below_threshold,
            )
            return planned
        except Exception as exc:  # noqa: BLE001
            logger.exception("Day planning failed", exc_info=exc)
            emit_event("planning_failed", reason="unexpected_error", error=str(exc))
            return PlanningFailure(reason="unexpected_error", message=str(exc) or type(exc).__name__)

    def adjust_for_next_cycle(
        self,
        history: Sequence[CompletionRecord],
        context: NextCycleContext,
    ) -> AdjustmentReport:
        """Roll back failed adjustments, then adapt the upcoming quests. Never raises."""
        report = AdjustmentReport(user_id=context.user_id)
        try:
            report.monitor = self._adjuster.monitor(context.user_id, history)
            report.outcome = self._adjuster.adjust(
                context.user_id,
                context.upcoming_quests,
                history,
                context.difficulty,
                context.signals,
            )
            report.stats = self._adjuster.get_adjustment_stats(context.user_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Difficulty adaptation failed for %s", context.user_id, exc_info=exc)
            report.error = str(exc) or type(exc).__name__
        return report


__all__ = ["NextCycleContext", "PlanDayResult", "PlanningContext", "QuestPlanner"]
