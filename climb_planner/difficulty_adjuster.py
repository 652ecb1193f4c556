"""Difficulty adaptation from completion history, with rollback of adjustments that backfire."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from .adjustment_history import DEFAULT_HISTORY_LIMIT, AdjustmentHistory
from .quest_models import (
    AdaptiveQuestModification,
    AdjustmentMagnitude,
    AdjustmentOutcome,
    AdjustmentStats,
    AdjustmentType,
    CompletionRecord,
    DifficultyAdjustmentResult,
    DifficultyContext,
    LearningSignals,
    MonitorReport,
    Quest,
    QuestModification,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)


RECENT_WINDOW = 7
MIN_DIFFICULTY = 0.1
MAX_DIFFICULTY = 0.9
MAINTAIN_THRESHOLD = 0.05
BASE_CONFIDENCE = 0.7
MAX_CONFIDENCE = 0.95
ROLLBACK_CONFIDENCE = 0.8
MONITOR_WINDOW = 5
MIN_COMPLETIONS_FOR_ROLLBACK = 3
DEFAULT_RATING = 3.0
MIN_ADJUSTED_MINUTES = 10
MAX_INCREASED_MINUTES = 60
AVAILABLE_TIME_SHARE = 0.8

BASIC_UNDERSTANDING_CRITERION = "Show a basic understanding of the core idea"
SCAFFOLD_STEP = "Confirm the basic concept first"
STRETCH_CRITERIA: Tuple[str, str] = (
    "Demonstrate applied understanding",
    "Explain how this connects to other concepts",
)
STRETCH_TAGS: Tuple[str, str] = ("challenge", "advanced")
SHORTENED_SUFFIX = " (shortened scope)"

EXPECTED_IMPACT: Dict[Tuple[str, str], str] = {
    ("increase", "minor"): "Slightly more engaging",
    ("increase", "moderate"): "Noticeably more challenging",
    ("increase", "significant"): "Substantially more demanding",
    ("decrease", "minor"): "Slightly less overwhelming",
    ("decrease", "moderate"): "More manageable and achievable",
    ("decrease", "significant"): "Much easier and confidence-building",
}


class _Signal(NamedTuple):
    delta: float
    confidence_gain: float
    reason: str


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _success_rate(records: Sequence[CompletionRecord]) -> Optional[float]:
    if not records:
        return None
    return sum(1 for record in records if record.was_successful) / len(records)


def _average_rating(records: Sequence[CompletionRecord]) -> float:
    ratings = [record.user_rating for record in records if record.user_rating is not None]
    if not ratings:
        return DEFAULT_RATING
    return sum(ratings) / len(ratings)


def classify_adjustment(original: float, adjusted: float) -> AdjustmentType:
    delta = round(adjusted - original, 4)
    if abs(delta) < MAINTAIN_THRESHOLD:
        return "maintain"
    return "increase" if delta > 0 else "decrease"


def classify_magnitude(factor: float) -> AdjustmentMagnitude:
    size = abs(factor)
    if size < 0.1:
        return "minor"
    if size < 0.2:
        return "moderate"
    return "significant"


def expected_impact(adjustment_type: str, magnitude: str) -> List[str]:
    if adjustment_type == "maintain":
        return ["No significant change in challenge level"]
    return [EXPECTED_IMPACT[(adjustment_type, magnitude)]]


def rollback_triggers(adjustment_type: str) -> List[str]:
    triggers: List[str] = []
    if adjustment_type == "increase":
        triggers.append("Success rate drops below 40% over the next 3 quests")
        triggers.append("Average rating falls below 3/5")
    elif adjustment_type == "decrease":
        triggers.append("Success rate exceeds 90% over the next quests")
        triggers.append("Average rating rises above 4/5")
    if triggers:
        triggers.append("Learner explicitly asks for a different difficulty")
    return triggers


class DifficultyAdjuster:
    """Computes per-quest difficulty adjustments and monitors them for rollback.

    The adjuster owns a bounded history of non-maintain adjustments per user.
    """

    def __init__(
        self,
        history: Optional[AdjustmentHistory] = None,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        adjust_minutes: bool = True,
    ) -> None:
        self._history = history or AdjustmentHistory(limit=history_limit)
        self._adjust_minutes = adjust_minutes

    @property
    def history(self) -> AdjustmentHistory:
        return self._history

    def adjust(
        self,
        user_id: str,
        upcoming_quests: Sequence[Quest],
        history: Sequence[CompletionRecord],
        context: DifficultyContext,
        signals: Optional[LearningSignals] = None,
        *,
        now: Optional[datetime] = None,
    ) -> AdjustmentOutcome:
        recorded_at = _as_utc(now) if now else datetime.now(timezone.utc)
        ordered = sorted(history, key=lambda record: _as_utc(record.completed_at))

        outcome = AdjustmentOutcome()
        for quest in upcoming_quests:
            result = self.calculate_adjustment(quest, ordered, context, signals, recorded_at=recorded_at)
            outcome.adjustments.append(result)
            if result.adjustment_type == "maintain":
                outcome.modified.append(quest)
                continue
            modified = self.apply_adjustment(quest, result, context)
            outcome.modified.append(modified)
            outcome.modifications.append(
                AdaptiveQuestModification(
                    quest_title=quest.title,
                    modifications=describe_modifications(quest, modified, result),
                )
            )
            self._history.append(user_id, result)
            emit_event(
                "difficulty_adjusted",
                user_id=user_id,
                quest_title=quest.title,
                adjustment_type=result.adjustment_type,
                magnitude=result.magnitude,
                original=result.original_difficulty,
                adjusted=result.adjusted_difficulty,
            )
        return outcome

    def calculate_adjustment(
        self,
        quest: Quest,
        history: Sequence[CompletionRecord],
        context: DifficultyContext,
        signals: Optional[LearningSignals] = None,
        *,
        recorded_at: Optional[datetime] = None,
    ) -> DifficultyAdjustmentResult:
        fired = self._signals(quest, history, context, signals)
        factor = round(sum(signal.delta for signal in fired), 4)
        original = quest.difficulty
        adjusted = round(min(MAX_DIFFICULTY, max(MIN_DIFFICULTY, original + factor)), 4)
        adjustment_type = classify_adjustment(original, adjusted)
        magnitude = classify_magnitude(factor)
        confidence = min(MAX_CONFIDENCE, BASE_CONFIDENCE + sum(signal.confidence_gain for signal in fired))
        reason = ". ".join(signal.reason for signal in fired) or "No adjustment signals"
        return DifficultyAdjustmentResult(
            quest_title=quest.title,
            pattern=quest.pattern,
            original_difficulty=original,
            adjusted_difficulty=adjusted,
            adjustment_factor=factor,
            adjustment_reason=reason,
            adjustment_type=adjustment_type,
            magnitude=magnitude,
            confidence=round(confidence, 4),
            expected_impact=expected_impact(adjustment_type, magnitude),
            rollback_triggers=rollback_triggers(adjustment_type),
            recorded_at=recorded_at or datetime.now(timezone.utc),
        )

    def _signals(
        self,
        quest: Quest,
        history: Sequence[CompletionRecord],
        context: DifficultyContext,
        signals: Optional[LearningSignals],
    ) -> List[_Signal]:
        fired: List[_Signal] = []

        recent_rate = _success_rate(history[-RECENT_WINDOW:])
        if recent_rate is not None:
            if recent_rate > 0.85:
                fired.append(_Signal(0.15, 0.10, "High recent success rate suggests readiness for more challenge"))
            elif recent_rate < 0.40:
                fired.append(_Signal(-0.20, 0.15, "Low recent success rate calls for easier content"))

        pattern_rate = _success_rate([record for record in history if record.pattern == quest.pattern])
        if pattern_rate is not None:
            if pattern_rate > 0.80:
                fired.append(_Signal(0.10, 0.10, f"Strong results with {quest.pattern} allow more difficulty"))
            elif pattern_rate < 0.50:
                fired.append(_Signal(-0.15, 0.10, f"Struggles with {quest.pattern} suggest an easier approach"))

        if context.consecutive_days > 5:
            fired.append(_Signal(-0.05, 0.10, "Long streak suggests possible fatigue"))
        if context.available_time < 20:
            fired.append(_Signal(-0.10, 0.10, "Limited time available today"))

        moods = {mood.strip().lower() for mood in context.mood_indicators}
        if "frustrated" in moods:
            fired.append(_Signal(-0.15, 0.10, "Recent frustration calls for confidence-building content"))
        elif "confident" in moods:
            fired.append(_Signal(0.10, 0.10, "Reported confidence allows additional challenge"))

        if signals is not None:
            if signals.has_high_severity_risk():
                fired.append(_Signal(-0.20, 0.10, "High-severity risk factors favour engagement over challenge"))
            if signals.plateau_risk > 0.7:
                fired.append(_Signal(0.10, 0.10, "Plateau risk calls for varied challenge"))
        return fired

    def apply_adjustment(
        self,
        quest: Quest,
        adjustment: DifficultyAdjustmentResult,
        context: DifficultyContext,
    ) -> Quest:
        update: Dict[str, object] = {"difficulty": adjustment.adjusted_difficulty}
        minutes = quest.minutes
        if adjustment.adjustment_type == "decrease":
            if self._adjust_minutes:
                minutes = max(MIN_ADJUSTED_MINUTES, _round_half_up(quest.minutes * 0.9))
            criteria = list(quest.criteria[:2])
            if BASIC_UNDERSTANDING_CRITERION not in criteria:
                criteria.append(BASIC_UNDERSTANDING_CRITERION)
            update["criteria"] = criteria
            if not quest.steps or quest.steps[0] != SCAFFOLD_STEP:
                update["steps"] = [SCAFFOLD_STEP, *quest.steps]
        elif adjustment.adjustment_type == "increase":
            if self._adjust_minutes:
                minutes = max(quest.minutes, min(MAX_INCREASED_MINUTES, _round_half_up(quest.minutes * 1.1)))
            update["criteria"] = [*quest.criteria, *[item for item in STRETCH_CRITERIA if item not in quest.criteria]]
            update["tags"] = [*quest.tags, *[tag for tag in STRETCH_TAGS if tag not in quest.tags]]

        if adjustment.adjustment_type != "maintain" and context.available_time < minutes:
            minutes = max(MIN_ADJUSTED_MINUTES, _round_half_up(context.available_time * AVAILABLE_TIME_SHARE))
            if not quest.deliverable.endswith(SHORTENED_SUFFIX):
                update["deliverable"] = f"{quest.deliverable}{SHORTENED_SUFFIX}"
        update["minutes"] = minutes
        return quest.model_copy(update=update)

    def monitor(
        self,
        user_id: str,
        completions: Sequence[CompletionRecord],
    ) -> MonitorReport:
        """Roll back recent adjustments whose outcomes turned out counter-productive.

        Only adjustments with at least three completions recorded after them are
        considered; rollbacks themselves and already reversed adjustments are skipped.
        """
        report = MonitorReport()
        candidates = [
            entry
            for entry in self._history.recent(user_id, MONITOR_WINDOW)
            if not entry.is_rollback and not entry.rolled_back and entry.adjustment_type != "maintain"
        ]
        for adjustment in candidates:
            since = [
                record
                for record in completions
                if _as_utc(record.completed_at) > _as_utc(adjustment.recorded_at)
            ]
            if not self._should_roll_back(adjustment, since):
                continue
            rollback = self._rollback_for(adjustment)
            reversed_entry = self._history.mark_rolled_back(user_id, adjustment.adjustment_id)
            self._history.append(user_id, rollback)
            report.rollbacks.append(reversed_entry or adjustment.model_copy(update={"rolled_back": True}))
            report.new_adjustments.append(rollback)
            logger.info("Rolled back %s adjustment for %r", adjustment.adjustment_type, adjustment.quest_title)
            emit_event(
                "adjustment_rolled_back",
                user_id=user_id,
                adjustment_id=adjustment.adjustment_id,
                adjustment_type=adjustment.adjustment_type,
                completions_since=len(since),
            )

        report.recommendations.extend(self._recommendations(completions))
        return report

    @staticmethod
    def _should_roll_back(adjustment: DifficultyAdjustmentResult, since: Sequence[CompletionRecord]) -> bool:
        if len(since) < MIN_COMPLETIONS_FOR_ROLLBACK:
            return False
        success_rate = _success_rate(since) or 0.0
        rating = _average_rating(since)
        if adjustment.adjustment_type == "increase":
            return success_rate < 0.40 or rating < 3
        if adjustment.adjustment_type == "decrease":
            return success_rate > 0.90 or rating > 4
        return False

    @staticmethod
    def _rollback_for(adjustment: DifficultyAdjustmentResult) -> DifficultyAdjustmentResult:
        inverted: AdjustmentType = "decrease" if adjustment.adjustment_type == "increase" else "increase"
        return DifficultyAdjustmentResult(
            quest_title=adjustment.quest_title,
            pattern=adjustment.pattern,
            original_difficulty=adjustment.adjusted_difficulty,
            adjusted_difficulty=adjustment.original_difficulty,
            adjustment_factor=round(-adjustment.adjustment_factor, 4),
            adjustment_reason=f"Rollback: {adjustment.adjustment_reason}",
            adjustment_type=inverted,
            magnitude=adjustment.magnitude,
            confidence=ROLLBACK_CONFIDENCE,
            expected_impact=["Reverting a previous adjustment that did not work out"],
            rollback_triggers=[],
            is_rollback=True,
            reverses=adjustment.adjustment_id,
        )

    @staticmethod
    def _recommendations(completions: Sequence[CompletionRecord]) -> List[str]:
        rate = _success_rate(completions)
        if rate is None:
            return []
        if rate < 0.3:
            return [
                "Consider taking a break or focusing on review content",
                "Difficulty may need a significant reduction",
            ]
        if rate > 0.9:
            return [
                "Ready for increased challenge and complexity",
                "Consider introducing new learning patterns",
            ]
        return []

    def get_adjustment_stats(self, user_id: str) -> AdjustmentStats:
        entries = self._history.list(user_id)
        total = len(entries)
        if total == 0:
            return AdjustmentStats()
        rollbacks = sum(1 for entry in entries if entry.is_rollback)
        return AdjustmentStats(
            total_adjustments=total,
            increase_count=sum(1 for entry in entries if entry.adjustment_type == "increase"),
            decrease_count=sum(1 for entry in entries if entry.adjustment_type == "decrease"),
            rollback_count=rollbacks,
            average_confidence=sum(entry.confidence for entry in entries) / total,
            rollback_rate=rollbacks / total,
        )


def describe_modifications(
    original: Quest,
    modified: Quest,
    adjustment: DifficultyAdjustmentResult,
) -> List[QuestModification]:
    changes: List[QuestModification] = []
    harder = adjustment.adjustment_type == "increase"
    if original.difficulty != modified.difficulty:
        changes.append(
            QuestModification(
                field="difficulty",
                original=f"{original.difficulty:.2f}",
                modified=f"{modified.difficulty:.2f}",
                reason="More challenging content for growth" if harder else "Easier content for confidence building",
            )
        )
    if original.minutes != modified.minutes:
        changes.append(
            QuestModification(
                field="minutes",
                original=str(original.minutes),
                modified=str(modified.minutes),
                reason="More time for thorough work" if modified.minutes > original.minutes else "Shorter session for focus",
            )
        )
    if original.criteria != modified.criteria:
        changes.append(
            QuestModification(
                field="criteria",
                original=str(len(original.criteria)),
                modified=str(len(modified.criteria)),
                reason="Higher bar for mastery" if harder else "Clear, achievable criteria",
            )
        )
    if original.steps != modified.steps:
        changes.append(
            QuestModification(
                field="steps",
                original=str(len(original.steps)),
                modified=str(len(modified.steps)),
                reason="Scaffolding step added",
            )
        )
    if original.tags != modified.tags:
        changes.append(
            QuestModification(
                field="tags",
                original=", ".join(original.tags),
                modified=", ".join(modified.tags),
                reason="Marked as a stretch quest",
            )
        )
    if original.deliverable != modified.deliverable:
        changes.append(
            QuestModification(
                field="deliverable",
                original=original.deliverable,
                modified=modified.deliverable,
                reason="Scope shortened to fit available time",
            )
        )
    return changes


__all__ = [
    "DifficultyAdjuster",
    "classify_adjustment",
    "classify_magnitude",
    "describe_modifications",
    "expected_impact",
    "rollback_triggers",
]
