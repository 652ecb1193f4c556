"""Deterministic content used when the completion service is unavailable.

Everything here is replaceable data: the policy engine only relies on the
shape of the quests, never on their wording.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .pattern_catalog import PATTERN_DELIVERABLES, forbidden_patterns, steps_for
from .quest_models import DailyCheckin, Profile, Quest, SkillAtom
from .skill_graph import order_skill_atoms

DEFAULT_PATTERN_SEQUENCE: Tuple[str, ...] = ("read_note_q", "build_micro", "flashcards", "retrospective")
FALLBACK_CANDIDATE_COUNT = 4

DELIVERABLE_PATTERNS: Dict[str, str] = {
    "note": "read_note_q",
    "flashcards": "flashcards",
    "snippet": "build_micro",
    "mini_task": "config_verify",
    "past_paper": "past_paper",
}

MODALITY_PATTERNS: Dict[str, str] = {
    "read": "read_note_q",
    "video": "read_note_q",
    "audio": "shadowing",
    "dialog": "socratic",
    "mimesis": "shadowing",
}

PATTERN_TITLES: Dict[str, str] = {
    "read_note_q": "read and note the essentials",
    "flashcards": "build a recall deck",
    "build_micro": "build a small working example",
    "config_verify": "configure and verify",
    "debug_explain": "debug and explain",
    "feynman": "explain it simply",
    "past_paper": "timed practice questions",
    "socratic": "question-driven deep dive",
    "shadowing": "shadowing practice",
    "retrospective": "review and plan the next step",
}

ENERGY_DIFFICULTY_SHIFT: Dict[str, float] = {"low": -0.1, "mid": 0.0, "high": 0.05}

VAGUE_PHRASES = ("get better", "improve", "learn more", "be good at", "study more")
SPECIFIC_MARKERS = re.compile(r"\d+\s*(day|days|week|weeks|month|months|points?|level|rank)|\d{2,}", re.IGNORECASE)


class ClarityIssue(BaseModel):
    type: str
    description: str
    severity: str = "medium"


class GoalClarity(BaseModel):
    is_vague: bool
    confidence: float = Field(ge=0.0, le=1.0)
    issues: List[ClarityIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    examples: List[str] = Field(default_factory=list)


def _goal_topic(profile: Profile) -> str:
    topic = profile.goal_text.strip() or (profile.priority_areas[0] if profile.priority_areas else "")
    topic = " ".join(topic.split())
    if len(topic) > 60:
        topic = topic[:57].rstrip() + "..."
    return topic or "Your goal"


def _preferred_patterns(profile: Profile) -> List[str]:
    ordered: List[str] = []
    for preference in profile.deliverable_preferences:
        pattern = DELIVERABLE_PATTERNS.get(preference)
        if pattern and pattern not in ordered:
            ordered.append(pattern)
    for modality in profile.modality_preference:
        pattern = MODALITY_PATTERNS.get(modality)
        if pattern and pattern not in ordered:
            ordered.append(pattern)
    for pattern in DEFAULT_PATTERN_SEQUENCE:
        if pattern not in ordered:
            ordered.append(pattern)
    return ordered


def _fallback_minutes(profile: Profile) -> int:
    return min(45, max(15, profile.preferred_session_length))


def _fallback_difficulty(profile: Profile, checkin: Optional[DailyCheckin]) -> float:
    base = 0.3 + 0.4 * profile.difficulty_tolerance
    if checkin is not None:
        base += ENERGY_DIFFICULTY_SHIFT.get(checkin.mood_energy, 0.0)
    return round(min(0.7, max(0.1, base)), 2)


def _template_quest(
    title: str,
    pattern: str,
    minutes: int,
    difficulty: float,
    tags: Sequence[str],
) -> Quest:
    return Quest(
        title=title,
        pattern=pattern,  # type: ignore[arg-type]
        minutes=minutes,
        difficulty=difficulty,
        deliverable=PATTERN_DELIVERABLES[pattern],
        steps=steps_for(pattern),
        criteria=[
            "The deliverable exists and covers the topic",
            "You can restate the key point without notes",
        ],
        tags=[tag for tag in dict.fromkeys(tags) if tag],
    )


def fallback_quests(
    profile: Profile,
    skill_atoms: Optional[Sequence[SkillAtom]] = None,
    checkin: Optional[DailyCheckin] = None,
) -> List[Quest]:
    """Template candidates derived from the profile (and skill atoms, when present)."""
    forbidden = forbidden_patterns(profile.env_constraints)
    minutes = _fallback_minutes(profile)
    difficulty = _fallback_difficulty(profile, checkin)
    base_tags = ["fallback", *profile.priority_areas[:2]]

    quests: List[Quest] = []
    for atom in order_skill_atoms(skill_atoms or []):
        if len(quests) >= FALLBACK_CANDIDATE_COUNT:
            break
        pattern = next((name for name in atom.suggested_patterns if name not in forbidden), None)
        if pattern is None:
            continue
        quests.append(
            _template_quest(
                title=f"{atom.label}: {PATTERN_TITLES[pattern]}",
                pattern=pattern,
                minutes=minutes,
                difficulty=difficulty,
                tags=[pattern, atom.id, *base_tags],
            )
        )

    topic = _goal_topic(profile)
    used = {quest.pattern for quest in quests}
    for pattern in _preferred_patterns(profile):
        if len(quests) >= FALLBACK_CANDIDATE_COUNT:
            break
        if pattern in forbidden or pattern in used:
            continue
        used.add(pattern)
        quests.append(
            _template_quest(
                title=f"{topic}: {PATTERN_TITLES[pattern]}",
                pattern=pattern,
                minutes=minutes,
                difficulty=difficulty,
                tags=[pattern, *base_tags],
            )
        )
    return quests


def fallback_skill_atoms(profile: Profile) -> List[SkillAtom]:
    topic = _goal_topic(profile)
    return [
        SkillAtom(
            id="core-concepts",
            label=f"{topic} core concepts",
            type="concept",
            level="intro",
            representative_tasks=["Summarise the key terms"],
            suggested_patterns=["read_note_q", "flashcards"],
        ),
        SkillAtom(
            id="guided-practice",
            label=f"{topic} guided practice",
            type="procedure",
            level="basic",
            prereq=["core-concepts"],
            representative_tasks=["Complete a small worked example"],
            suggested_patterns=["build_micro", "config_verify"],
        ),
        SkillAtom(
            id="reflection-habit",
            label=f"{topic} review habit",
            type="habit",
            level="basic",
            prereq=["core-concepts"],
            representative_tasks=["Write a short daily review"],
            suggested_patterns=["retrospective", "feynman"],
        ),
    ]


def fallback_goal_clarity(goal_text: str) -> GoalClarity:
    text = " ".join(goal_text.split())
    lowered = text.lower()
    is_short = len(text) < 15
    has_vague_phrase = any(phrase in lowered for phrase in VAGUE_PHRASES)
    has_specifics = bool(SPECIFIC_MARKERS.search(text))
    is_vague = is_short or has_vague_phrase or not has_specifics
    return GoalClarity(
        is_vague=is_vague,
        confidence=0.7 if is_vague else 0.8,
        issues=(
            [ClarityIssue(type="scope_unclear", description="The goal has no concrete scope or success measure.")]
            if is_vague
            else []
        ),
        suggestions=(
            [
                "Set a time frame, for example 'within 3 months'.",
                "Add a measurable target, for example a score or level.",
                "Name the concrete result you want to produce.",
            ]
            if is_vague
            else ["The goal is specific and measurable."]
        ),
        examples=[
            "Reach 800 on the TOEIC within 3 months",
            "Ship a portfolio app built with React Native",
        ],
    )


__all__ = [
    "ClarityIssue",
    "GoalClarity",
    "fallback_goal_clarity",
    "fallback_quests",
    "fallback_skill_atoms",
]
