"""Static onboarding question catalogue."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional, Tuple

from .quest_models import KnownProfile

QuestionType = Literal["mcq", "freeform", "confirm"]
QuestionCategory = Literal[
    "goal_specifics",
    "time_management",
    "learning_style",
    "constraints",
    "motivation",
    "experience",
]

Predicate = Callable[[KnownProfile, str], bool]

MOTIVATION_MARKERS = ("because", "so that", "in order to", "why")
CONSTRAINT_MARKERS = ("constraint", "limit", "difficult", "hard to")


def _always(known: KnownProfile, goal_text: str) -> bool:
    return True


@dataclass(frozen=True)
class QuestionBankItem:
    id: str
    question: str
    type: QuestionType
    category: QuestionCategory
    profile_field: str
    info_gain_hint: float = 0.5
    fatigue_weight: float = 0.3
    options: Tuple[str, ...] = ()
    condition: Optional[str] = None
    applicable_when: Predicate = field(default=_always, compare=False, repr=False)

    def is_applicable(self, known: KnownProfile, goal_text: str) -> bool:
        return self.applicable_when(known, goal_text)


def _goal_without(field_name: str) -> Predicate:
    def predicate(known: KnownProfile, goal_text: str) -> bool:
        return bool(goal_text.strip()) and known.value(field_name) is None

    return predicate


def _field_missing(field_name: str) -> Predicate:
    def predicate(known: KnownProfile, goal_text: str) -> bool:
        return known.value(field_name) is None

    return predicate


def _has_learning_level(known: KnownProfile, goal_text: str) -> bool:
    return known.value("learning_level") is not None


def _experience_unclear(known: KnownProfile, goal_text: str) -> bool:
    return _has_learning_level(known, goal_text) and known.value("prior_experience") is None


def _motivation_unclear(known: KnownProfile, goal_text: str) -> bool:
    lowered = goal_text.lower()
    if any(marker in lowered for marker in MOTIVATION_MARKERS):
        return False
    return known.value("motivation_source") is None


def _resources_unclear(known: KnownProfile, goal_text: str) -> bool:
    if known.value("resources") is None:
        return True
    lowered = goal_text.lower()
    return any(marker in lowered for marker in CONSTRAINT_MARKERS)


QUESTION_BANK: Tuple[QuestionBankItem, ...] = (
    QuestionBankItem(
        id="goal_domain",
        question="Which area does your goal belong to?",
        type="mcq",
        category="goal_specifics",
        profile_field="goal_domain",
        info_gain_hint=0.8,
        fatigue_weight=0.2,
        options=("Study", "Career", "Health and fitness", "Technical skill", "Creative hobby", "Other"),
        condition="goal text present, domain unknown",
        applicable_when=_goal_without("goal_domain"),
    ),
    QuestionBankItem(
        id="success_metrics",
        question="How will you measure success? Name a concrete indicator.",
        type="freeform",
        category="goal_specifics",
        profile_field="success_metrics",
        info_gain_hint=0.9,
        fatigue_weight=0.4,
        condition="goal text present, metrics unknown",
        applicable_when=_goal_without("success_metrics"),
    ),
    QuestionBankItem(
        id="weekly_hours",
        question="How many hours per week can you spend on this goal?",
        type="mcq",
        category="time_management",
        profile_field="weekly_hours",
        info_gain_hint=0.7,
        fatigue_weight=0.2,
        options=("Under 5 hours", "5-10 hours", "10-20 hours", "Over 20 hours"),
        condition="weekly hours unknown",
        applicable_when=_field_missing("weekly_hours"),
    ),
    QuestionBankItem(
        id="preferred_session_length",
        question="How long should a single study session ideally be?",
        type="mcq",
        category="time_management",
        profile_field="preferred_session_length",
        info_gain_hint=0.6,
        fatigue_weight=0.2,
        options=("15-30 minutes", "30-60 minutes", "1-2 hours", "Over 2 hours"),
    ),
    QuestionBankItem(
        id="learning_preference",
        question="Which learning style suits you best?",
        type="mcq",
        category="learning_style",
        profile_field="learning_preference",
        info_gain_hint=0.7,
        fatigue_weight=0.3,
        options=("Hands-on", "Theory first", "Balanced", "Project based"),
        condition="learning level known",
        applicable_when=_has_learning_level,
    ),
    QuestionBankItem(
        id="difficulty_preference",
        question="What balance of task difficulty do you prefer?",
        type="mcq",
        category="learning_style",
        profile_field="difficulty_preference",
        info_gain_hint=0.5,
        fatigue_weight=0.3,
        options=("Easier, steady progress", "Standard challenge", "Harder, faster growth", "Mixed"),
    ),
    QuestionBankItem(
        id="main_obstacles",
        question="What are the main obstacles or constraints on reaching this goal?",
        type="freeform",
        category="constraints",
        profile_field="constraints",
        info_gain_hint=0.8,
        fatigue_weight=0.4,
        condition="constraints unknown",
        applicable_when=_field_missing("constraints"),
    ),
    QuestionBankItem(
        id="resource_limitations",
        question="Are your resources (time, money, tools) limited in any way?",
        type="freeform",
        category="constraints",
        profile_field="resource_limitations",
        info_gain_hint=0.7,
        fatigue_weight=0.4,
        condition="resources unknown or constraints mentioned in the goal",
        applicable_when=_resources_unclear,
    ),
    QuestionBankItem(
        id="motivation_source",
        question="What is your strongest motivation for this goal?",
        type="freeform",
        category="motivation",
        profile_field="motivation_source",
        info_gain_hint=0.6,
        fatigue_weight=0.3,
        condition="motivation not stated in the goal",
        applicable_when=_motivation_unclear,
    ),
    QuestionBankItem(
        id="accountability_preference",
        question="What helps you stay accountable for your progress?",
        type="mcq",
        category="motivation",
        profile_field="accountability_preference",
        info_gain_hint=0.5,
        fatigue_weight=0.3,
        options=("Self check-ins", "Reporting to someone", "Tracking in an app", "Rewards"),
    ),
    QuestionBankItem(
        id="prior_experience",
        question="How much experience do you already have in this area?",
        type="mcq",
        category="experience",
        profile_field="prior_experience",
        info_gain_hint=0.7,
        fatigue_weight=0.2,
        options=("Complete beginner", "Some experience", "Fair amount of experience", "Advanced"),
        condition="learning level known, experience unknown",
        applicable_when=_experience_unclear,
    ),
    QuestionBankItem(
        id="previous_attempts",
        question="Have you worked on a similar goal before? How did it go?",
        type="confirm",
        category="experience",
        profile_field="previous_attempts",
        info_gain_hint=0.6,
        fatigue_weight=0.3,
    ),
)

_BANK_INDEX: Dict[str, QuestionBankItem] = {item.id: item for item in QUESTION_BANK}


def get_question(question_id: str) -> Optional[QuestionBankItem]:
    return _BANK_INDEX.get(question_id)


def applicable_questions(
    known: KnownProfile,
    goal_text: str,
    bank: Tuple[QuestionBankItem, ...] = QUESTION_BANK,
) -> List[QuestionBankItem]:
    return [item for item in bank if item.is_applicable(known, goal_text)]


__all__ = [
    "QUESTION_BANK",
    "QuestionBankItem",
    "QuestionCategory",
    "QuestionType",
    "applicable_questions",
    "get_question",
]
