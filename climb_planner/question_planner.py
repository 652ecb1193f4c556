"""Onboarding question selection under an information-gain, fatigue and budget trade-off."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .question_bank import (
    QUESTION_BANK,
    QuestionBankItem,
    QuestionType,
    applicable_questions,
    get_question,
)
from .quest_models import KnownProfile, QuestionPriorityHints, QuestionResponse

SCORE_THRESHOLD = 0.25
DEFAULT_QUESTION_BUDGET = 5
CONFIRMATION_CONFIDENCE = 0.7
MAX_FREEFORM_QUESTIONS = 2
FATIGUE_PENALTY = 0.5
HINT_BOOST_WEIGHT = 0.3
OFF_TOPIC_RELEVANCE = 0.6
MAX_OFF_TOPIC_RATE = 0.10
MAX_PLAN_QUESTIONS = 5
DEFAULT_RESPONSE_CONFIDENCE = 0.8

CATEGORY_RELEVANCE: Dict[str, float] = {
    "goal_specifics": 0.9,
    "time_management": 0.8,
    "learning_style": 0.7,
    "constraints": 0.8,
    "motivation": 0.6,
    "experience": 0.7,
}
DEFAULT_RELEVANCE = 0.5

# (category, goal keywords, boost)
KEYWORD_BOOSTS: Tuple[Tuple[str, Tuple[str, ...], float], ...] = (
    ("learning_style", ("learn", "study"), 0.10),
    ("time_management", ("time", "busy"), 0.15),
    ("constraints", ("difficult", "constraint"), 0.15),
    ("experience", ("beginner", "experience"), 0.10),
)

DOMAIN_CATEGORY_PRIORITIES: Dict[str, Tuple[str, ...]] = {
    "programming": ("learning_style", "time_management", "goal_specifics", "experience"),
    "language": ("goal_specifics", "learning_style", "time_management", "motivation"),
    "business": ("goal_specifics", "experience", "time_management", "constraints"),
    "creative": ("motivation", "learning_style", "goal_specifics", "time_management"),
    "academic": ("goal_specifics", "time_management", "learning_style", "experience"),
    "fitness": ("goal_specifics", "constraints", "time_management", "motivation"),
    "general": ("goal_specifics", "time_management", "learning_style", "motivation"),
}

COMPLEXITY_CATEGORY_BOOSTS: Dict[str, Tuple[str, ...]] = {
    "beginner": ("motivation", "learning_style", "goal_specifics"),
    "intermediate": ("goal_specifics", "time_management", "experience"),
    "advanced": ("constraints", "experience", "goal_specifics"),
}

TYPE_ORDER: Dict[str, int] = {"mcq": 3, "confirm": 2, "freeform": 1}


@dataclass(frozen=True)
class ScoredQuestion:
    item: QuestionBankItem
    relevance: float
    info_gain: float
    fatigue: float
    score: float
    type: QuestionType
    text: str
    confirmed_value: Optional[str] = None

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def category(self) -> str:
        return self.item.category

    @property
    def profile_field(self) -> str:
        return self.item.profile_field


@dataclass(frozen=True)
class SkippedQuestion:
    question: ScoredQuestion
    reason: str
    score: float


@dataclass
class QuestionPlan:
    selected: List[ScoredQuestion]
    skipped: List[SkippedQuestion]
    budget: int
    rationale: List[str] = field(default_factory=list)

    @property
    def used(self) -> int:
        return len(self.selected)

    @property
    def remaining(self) -> int:
        return max(0, self.budget - self.used)


@dataclass(frozen=True)
class QuestionPlanValidation:
    is_valid: bool
    issues: List[str]
    question_count: int
    average_score: float
    off_topic_rate: float


def compute_relevance(item: QuestionBankItem, goal_text: str) -> float:
    lowered = goal_text.lower()
    relevance = CATEGORY_RELEVANCE.get(item.category, DEFAULT_RELEVANCE)
    for category, keywords, boost in KEYWORD_BOOSTS:
        if item.category == category and any(keyword in lowered for keyword in keywords):
            relevance += boost
    return min(1.0, relevance)


def compute_info_gain(item: QuestionBankItem, known: KnownProfile) -> float:
    if known.value(item.profile_field) is None:
        return item.info_gain_hint
    confidence = known.confidence_for(item.profile_field)
    if confidence >= 0.8:
        return 0.1
    if confidence >= 0.5:
        return 0.4
    return 0.8


def score_question(item: QuestionBankItem, known: KnownProfile, goal_text: str) -> ScoredQuestion:
    relevance = compute_relevance(item, goal_text)
    info_gain = compute_info_gain(item, known)
    fatigue = item.fatigue_weight
    return ScoredQuestion(
        item=item,
        relevance=relevance,
        info_gain=info_gain,
        fatigue=fatigue,
        score=relevance * info_gain - FATIGUE_PENALTY * fatigue,
        type=item.type,
        text=item.question,
    )


def _apply_hint(scored: ScoredQuestion, hints: Optional[QuestionPriorityHints]) -> ScoredQuestion:
    if hints is None:
        return scored
    match = next((hint for hint in hints.hints if hint.profile_field == scored.profile_field), None)
    if match is None:
        return scored
    return replace(
        scored,
        score=scored.score + min(HINT_BOOST_WEIGHT, match.info_gain_est * HINT_BOOST_WEIGHT),
        info_gain=max(scored.info_gain, match.info_gain_est),
    )


def _as_confirmation(scored: ScoredQuestion, value: str) -> ScoredQuestion:
    label = scored.profile_field.replace("_", " ")
    return replace(
        scored,
        type="confirm",
        text=f"We have '{value}' for your {label}. Is that still right?",
        confirmed_value=value,
    )


def _reorder_by_stage(questions: Sequence[ScoredQuestion]) -> List[ScoredQuestion]:
    mcq = [question for question in questions if question.type == "mcq"]
    confirm = [question for question in questions if question.type == "confirm"]
    freeform = [question for question in questions if question.type == "freeform"]
    return mcq + confirm + freeform


def _reorder_by_domain(questions: Sequence[ScoredQuestion], hints: QuestionPriorityHints) -> List[ScoredQuestion]:
    order = DOMAIN_CATEGORY_PRIORITIES.get(hints.domain, DOMAIN_CATEGORY_PRIORITIES["general"])
    weights: Dict[str, float] = {category: float(len(order) - index) for index, category in enumerate(order)}
    for category in COMPLEXITY_CATEGORY_BOOSTS.get(hints.complexity or "", ()):
        weights[category] = weights.get(category, 0.0) + 0.5
    return sorted(
        questions,
        key=lambda question: (-weights.get(question.category, 0.0), -TYPE_ORDER.get(question.type, 0)),
    )


def plan_questions(
    goal_text: str,
    known: KnownProfile,
    budget: int = DEFAULT_QUESTION_BUDGET,
    hints: Optional[QuestionPriorityHints] = None,
    *,
    threshold: float = SCORE_THRESHOLD,
    bank: Tuple[QuestionBankItem, ...] = QUESTION_BANK,
) -> QuestionPlan:
    """Select onboarding questions for ``goal_text`` given what is already known.

    Deterministic: equal scores are ordered by question id. Admitted items with a
    known value held at confidence >= 0.7 are asked as confirmations. Admitted
    items are reordered by stage (or by the hinted domain priority) and at most
    two free-text questions survive.
    """
    budget = max(0, budget)
    rationale: List[str] = []
    skipped: List[SkippedQuestion] = []

    candidates = applicable_questions(known, goal_text, bank)
    rationale.append(f"{len(candidates)} applicable questions for the goal")

    scored = [_apply_hint(score_question(item, known, goal_text), hints) for item in candidates]
    scored.sort(key=lambda question: (-question.score, question.id))

    admitted: List[ScoredQuestion] = []
    for question in scored:
        if len(admitted) >= budget:
            skipped.append(SkippedQuestion(question=question, reason="budget exhausted", score=question.score))
            continue
        if question.score < threshold:
            skipped.append(
                SkippedQuestion(
                    question=question,
                    reason=f"score {question.score:.2f} below threshold {threshold:.2f}",
                    score=question.score,
                )
            )
            continue
        value = known.value(question.profile_field)
        confidence = known.confidence_for(question.profile_field)
        if value is not None and confidence >= CONFIRMATION_CONFIDENCE:
            admitted.append(_as_confirmation(question, value))
            rationale.append(f"confirm {question.profile_field} (confidence {confidence:.2f})")
        else:
            admitted.append(question)
            rationale.append(f"ask {question.id} (score {question.score:.2f})")

    if hints is not None:
        ordered = _reorder_by_domain(admitted, hints)
        rationale.append(f"ordered by {hints.domain} domain priorities")
    else:
        ordered = _reorder_by_stage(admitted)
        rationale.append("ordered by stage: " + " -> ".join(question.type for question in ordered))

    selected: List[ScoredQuestion] = []
    freeform_count = 0
    for question in ordered:
        if question.type == "freeform":
            if freeform_count >= MAX_FREEFORM_QUESTIONS:
                skipped.append(SkippedQuestion(question=question, reason="free-text cap reached", score=question.score))
                continue
            freeform_count += 1
        selected.append(question)

    return QuestionPlan(selected=selected, skipped=skipped, budget=budget, rationale=rationale)


def validate_question_plan(plan: QuestionPlan) -> QuestionPlanValidation:
    """Check a plan against the onboarding acceptance limits (count and off-topic rate)."""
    issues: List[str] = []
    count = len(plan.selected)
    if count > MAX_PLAN_QUESTIONS:
        issues.append(f"too many questions: {count} > {MAX_PLAN_QUESTIONS}")
    if count == 0:
        return QuestionPlanValidation(
            is_valid=not issues,
            issues=issues,
            question_count=0,
            average_score=0.0,
            off_topic_rate=0.0,
        )
    average_score = sum(question.score for question in plan.selected) / count
    off_topic = sum(1 for question in plan.selected if question.relevance < OFF_TOPIC_RELEVANCE)
    off_topic_rate = off_topic / count
    if off_topic_rate > MAX_OFF_TOPIC_RATE:
        issues.append(f"off-topic rate {off_topic_rate:.0%} above {MAX_OFF_TOPIC_RATE:.0%}")
    return QuestionPlanValidation(
        is_valid=not issues,
        issues=issues,
        question_count=count,
        average_score=average_score,
        off_topic_rate=off_topic_rate,
    )


def known_profile_from_responses(
    responses: Iterable[QuestionResponse],
    base: Optional[KnownProfile] = None,
) -> KnownProfile:
    """Fold answered questions into a known profile. Unknown question ids are ignored."""
    fields: Dict[str, str] = dict(base.fields) if base else {}
    confidence: Dict[str, float] = dict(base.confidence) if base else {}
    for response in responses:
        item = get_question(response.question_id)
        if item is None:
            continue
        fields[item.profile_field] = response.answer
        confidence[item.profile_field] = (
            response.confidence if response.confidence is not None else DEFAULT_RESPONSE_CONFIDENCE
        )
    return KnownProfile(fields=fields, confidence=confidence)


__all__ = [
    "QuestionPlan",
    "QuestionPlanValidation",
    "ScoredQuestion",
    "SkippedQuestion",
    "compute_info_gain",
    "compute_relevance",
    "known_profile_from_responses",
    "plan_questions",
    "score_question",
    "validate_question_plan",
]
