"""Planner data models shared by the question, policy and difficulty stages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

PatternName = Literal[
    "read_note_q",
    "flashcards",
    "build_micro",
    "config_verify",
    "debug_explain",
    "feynman",
    "past_paper",
    "socratic",
    "shadowing",
    "retrospective",
]

PATTERNS: Tuple[str, ...] = (
    "read_note_q",
    "flashcards",
    "build_micro",
    "config_verify",
    "debug_explain",
    "feynman",
    "past_paper",
    "socratic",
    "shadowing",
    "retrospective",
)

DayType = Literal["busy", "normal", "deep"]
Level3 = Literal["low", "mid", "high"]
AdjustmentType = Literal["increase", "decrease", "maintain"]
AdjustmentMagnitude = Literal["minor", "moderate", "significant"]

QUEST_MIN_MINUTES = 10
QUEST_MAX_MINUTES = 90
MAX_EVIDENCE_ITEMS = 3


class Profile(BaseModel):
    """Learner profile, fixed for the duration of one planning cycle."""

    time_budget_per_day: int = Field(default=60, ge=15, le=240)
    preferred_session_length: int = Field(default=20, ge=10, le=60)
    difficulty_tolerance: float = Field(default=0.5, ge=0.0, le=1.0)
    novelty_preference: float = Field(default=0.5, ge=0.0, le=1.0)
    env_constraints: List[str] = Field(default_factory=list)
    modality_preference: List[Literal["read", "video", "audio", "dialog", "mimesis"]] = Field(default_factory=list)
    deliverable_preferences: List[Literal["note", "flashcards", "snippet", "mini_task", "past_paper"]] = Field(
        default_factory=list
    )
    goal_text: str = ""
    current_level_tags: List[str] = Field(default_factory=list)
    priority_areas: List[str] = Field(default_factory=list)


class SkillAtom(BaseModel):
    id: str
    label: str
    type: Literal["concept", "procedure", "habit"] = "concept"
    level: Literal["intro", "basic", "intermediate", "advanced"] = "basic"
    bloom: Optional[str] = None
    prereq: List[str] = Field(default_factory=list)
    representative_tasks: List[str] = Field(default_factory=list)
    suggested_patterns: List[PatternName] = Field(default_factory=list)


class Quest(BaseModel):
    """A single time-boxed learning task. Pipeline stages derive new quests via ``model_copy``."""

    quest_id: Optional[str] = None
    title: str
    pattern: PatternName
    minutes: int = Field(ge=QUEST_MIN_MINUTES, le=QUEST_MAX_MINUTES)
    difficulty: float = Field(default=0.5, ge=0.0, le=1.0)
    deliverable: str = ""
    steps: List[str] = Field(default_factory=list)
    criteria: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    done_definition: Optional[str] = None
    evidence: List[str] = Field(default_factory=list, max_length=MAX_EVIDENCE_ITEMS)
    alt_plan: Optional[str] = None
    stop_rule: Optional[str] = None

    def has_contract(self) -> bool:
        return bool(self.done_definition and self.evidence and self.alt_plan and self.stop_rule)


class DailyCheckin(BaseModel):
    mood_energy: Level3 = "mid"
    available_time_today_delta_min: int = Field(default=0, ge=-60, le=60)
    focus_noise: Level3 = "mid"


class Constraints(BaseModel):
    total_minutes_max: int
    max_session_minutes: int
    max_quest_count: int


class PolicyTraceEntry(BaseModel):
    """One line of the policy engine's rationale trace."""

    step: str
    action: str
    detail: str
    quest_index: Optional[int] = None


class RubricScores(BaseModel):
    relevance: float
    feasibility: float
    specificity: float
    load_fit: float


class QuestList(BaseModel):
    quests: List[Quest]
    constraints: Constraints
    rationale: List[PolicyTraceEntry] = Field(default_factory=list)
    rubric: Optional[RubricScores] = None
    below_threshold: bool = False
    rubric_violations: List[str] = Field(default_factory=list)
    source: Literal["candidates", "fallback"] = "candidates"
    upstream_error: Optional[str] = None

    @property
    def total_minutes(self) -> int:
        return sum(quest.minutes for quest in self.quests)


class PlanningFailure(BaseModel):
    """Typed planning failure returned to callers instead of raising."""

    reason: Literal["insufficient_candidates", "unexpected_error"] = "unexpected_error"
    message: str
    constraints: Optional[Constraints] = None
    rationale: List[PolicyTraceEntry] = Field(default_factory=list)


class InsufficientCandidates(PlanningFailure):
    reason: Literal["insufficient_candidates", "unexpected_error"] = "insufficient_candidates"


# --- question planning -----------------------------------------------------


class KnownProfile(BaseModel):
    """Profile fields gathered so far, keyed by ``profile_field`` with a confidence per field."""

    fields: Dict[str, str] = Field(default_factory=dict)
    confidence: Dict[str, float] = Field(default_factory=dict)

    def value(self, field: str) -> Optional[str]:
        raw = self.fields.get(field)
        if raw is None or not str(raw).strip():
            return None
        return str(raw)

    def confidence_for(self, field: str) -> float:
        return float(self.confidence.get(field, 0.0))


class QuestionHint(BaseModel):
    profile_field: str
    info_gain_est: float = Field(ge=0.0, le=1.0)


class QuestionPriorityHints(BaseModel):
    """Question-priority hints produced by the goal-analysis collaborator."""

    domain: str = "general"
    complexity: Optional[Literal["beginner", "intermediate", "advanced"]] = None
    hints: List[QuestionHint] = Field(default_factory=list)


class QuestionResponse(BaseModel):
    question_id: str
    answer: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# --- difficulty adaptation -------------------------------------------------


class CompletionRecord(BaseModel):
    quest_id: Optional[str] = None
    title: str
    pattern: PatternName
    completed_at: datetime
    actual_minutes: int = Field(ge=0)
    difficulty: float = Field(default=0.5, ge=0.0, le=1.0)
    was_successful: bool
    user_rating: Optional[int] = Field(default=None, ge=1, le=5)


class DifficultyContext(BaseModel):
    """Per-cycle signals that are not derivable from completion history."""

    available_time: int = Field(default=60, ge=0)
    consecutive_days: int = Field(default=0, ge=0)
    mood_indicators: List[str] = Field(default_factory=list)


class RiskFactor(BaseModel):
    name: str
    severity: Literal["low", "medium", "high"] = "low"
    detail: Optional[str] = None


class LearningSignals(BaseModel):
    """Plateau and risk signals from the learning-analysis collaborator."""

    plateau_risk: float = Field(default=0.0, ge=0.0, le=1.0)
    risk_factors: List[RiskFactor] = Field(default_factory=list)

    def has_high_severity_risk(self) -> bool:
        return any(factor.severity == "high" for factor in self.risk_factors)


class DifficultyAdjustmentResult(BaseModel):
    adjustment_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    quest_title: str
    pattern: Optional[PatternName] = None
    original_difficulty: float = Field(ge=0.0, le=1.0)
    adjusted_difficulty: float = Field(ge=0.0, le=1.0)
    adjustment_factor: float = 0.0
    adjustment_reason: str
    adjustment_type: AdjustmentType
    magnitude: AdjustmentMagnitude
    confidence: float = Field(ge=0.0, le=1.0)
    expected_impact: List[str] = Field(default_factory=list)
    rollback_triggers: List[str] = Field(default_factory=list)
    is_rollback: bool = False
    reverses: Optional[str] = None
    rolled_back: bool = False
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _rollback_needs_target(self) -> "DifficultyAdjustmentResult":
        if self.is_rollback and not self.reverses:
            raise ValueError("Rollback adjustments must reference the adjustment they reverse.")
        return self


class QuestModification(BaseModel):
    field: Literal["difficulty", "minutes", "criteria", "steps", "tags", "deliverable"]
    original: str
    modified: str
    reason: str


class AdaptiveQuestModification(BaseModel):
    quest_title: str
    modifications: List[QuestModification] = Field(default_factory=list)


class AdjustmentOutcome(BaseModel):
    modified: List[Quest] = Field(default_factory=list)
    adjustments: List[DifficultyAdjustmentResult] = Field(default_factory=list)
    modifications: List[AdaptiveQuestModification] = Field(default_factory=list)


class MonitorReport(BaseModel):
    rollbacks: List[DifficultyAdjustmentResult] = Field(default_factory=list)
    new_adjustments: List[DifficultyAdjustmentResult] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class AdjustmentStats(BaseModel):
    total_adjustments: int = 0
    increase_count: int = 0
    decrease_count: int = 0
    rollback_count: int = 0
    average_confidence: float = 0.0
    rollback_rate: float = 0.0


class AdjustmentReport(BaseModel):
    """Result of one between-cycle adaptation pass."""

    user_id: str
    outcome: AdjustmentOutcome = Field(default_factory=AdjustmentOutcome)
    monitor: MonitorReport = Field(default_factory=MonitorReport)
    stats: AdjustmentStats = Field(default_factory=AdjustmentStats)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None


__all__ = [
    "AdaptiveQuestModification",
    "AdjustmentMagnitude",
    "AdjustmentOutcome",
    "AdjustmentReport",
    "AdjustmentStats",
    "AdjustmentType",
    "CompletionRecord",
    "Constraints",
    "DailyCheckin",
    "DayType",
    "DifficultyAdjustmentResult",
    "DifficultyContext",
    "InsufficientCandidates",
    "KnownProfile",
    "LearningSignals",
    "MAX_EVIDENCE_ITEMS",
    "MonitorReport",
    "PATTERNS",
    "PatternName",
    "PlanningFailure",
    "PolicyTraceEntry",
    "Profile",
    "QUEST_MAX_MINUTES",
    "QUEST_MIN_MINUTES",
    "Quest",
    "QuestList",
    "QuestModification",
    "QuestionHint",
    "QuestionPriorityHints",
    "QuestionResponse",
    "RiskFactor",
    "RubricScores",
    "SkillAtom",
]
