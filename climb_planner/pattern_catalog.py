"""Fixed pattern tables: substitutions, environment feasibility and contract templates."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .quest_models import PATTERNS

PATTERN_ALTERNATIVES: Dict[str, Tuple[str, ...]] = {
    "read_note_q": ("flashcards", "feynman"),
    "flashcards": ("read_note_q", "build_micro"),
    "build_micro": ("config_verify", "debug_explain"),
    "config_verify": ("build_micro", "past_paper"),
    "debug_explain": ("feynman", "socratic"),
    "feynman": ("socratic", "read_note_q"),
    "past_paper": ("flashcards", "config_verify"),
    "socratic": ("feynman", "debug_explain"),
    "shadowing": ("build_micro", "flashcards"),
    "retrospective": ("read_note_q", "feynman"),
}

# Environment tag -> patterns that cannot be carried out under that tag.
ENV_FORBIDDEN_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "no_audio": ("shadowing",),
    "public_space": ("shadowing", "feynman"),
    "mobile_only": ("build_micro", "config_verify", "debug_explain"),
    "no_screen": (
        "read_note_q",
        "flashcards",
        "build_micro",
        "config_verify",
        "debug_explain",
        "past_paper",
    ),
}

PATTERN_DELIVERABLES: Dict[str, str] = {
    "read_note_q": "Summary note with three self-check questions",
    "flashcards": "Flashcard deck",
    "build_micro": "Working code snippet",
    "config_verify": "Verified configuration with notes",
    "debug_explain": "Bug report with root-cause explanation",
    "feynman": "Plain-language explanation",
    "past_paper": "Scored practice answers",
    "socratic": "Question-and-answer log",
    "shadowing": "Recorded shadowing session",
    "retrospective": "Reflection note with next actions",
}

PATTERN_STEPS: Dict[str, Tuple[str, ...]] = {
    "read_note_q": (
        "Read the source material once end to end",
        "Write a short summary note",
        "Answer three self-check questions",
    ),
    "flashcards": (
        "Pick the key terms for today",
        "Write one card per term",
        "Run one recall pass and mark misses",
    ),
    "build_micro": (
        "Define the smallest working outcome",
        "Implement it step by step",
        "Run it and record the result",
    ),
    "config_verify": (
        "Write down the expected behaviour",
        "Apply the configuration",
        "Verify the behaviour and note differences",
    ),
    "debug_explain": (
        "Reproduce the problem",
        "Isolate the root cause",
        "Explain the fix in writing",
    ),
    "feynman": (
        "Pick one concept",
        "Explain it in plain words without notes",
        "Mark gaps and revisit the source",
    ),
    "past_paper": (
        "Choose a timed question set",
        "Answer under time pressure",
        "Score the answers and list mistakes",
    ),
    "socratic": (
        "Write the central question",
        "Answer it with follow-up why questions",
        "Summarise the conclusion",
    ),
    "shadowing": (
        "Listen to a short audio clip",
        "Repeat it aloud alongside the speaker",
        "Record one clean take",
    ),
    "retrospective": (
        "List what went well",
        "List what blocked progress",
        "Choose one change for tomorrow",
    ),
}

PATTERN_EVIDENCE: Dict[str, str] = {
    "read_note_q": "summary note",
    "flashcards": "recall score",
    "build_micro": "code snippet",
    "config_verify": "verification log",
    "debug_explain": "written explanation",
    "feynman": "explanation text",
    "past_paper": "scored answer sheet",
    "socratic": "question log",
    "shadowing": "audio recording",
    "retrospective": "reflection note",
}

SCAFFOLD_STEP_PAD: Tuple[str, ...] = (
    "Review the goal of this quest",
    "Work through the main task",
    "Check the result against the criteria",
)


def normalize_env_tag(tag: str) -> str:
    return tag.strip().lower().replace("-", "_").replace(" ", "_")


def forbidden_patterns(env_constraints: Iterable[str]) -> Set[str]:
    """Return every pattern ruled out by the given environment tags. Unknown tags are ignored."""
    forbidden: Set[str] = set()
    for tag in env_constraints:
        forbidden.update(ENV_FORBIDDEN_PATTERNS.get(normalize_env_tag(tag), ()))
    return forbidden


def first_feasible_alternative(pattern: str, forbidden: Set[str]) -> Optional[str]:
    for alternative in PATTERN_ALTERNATIVES.get(pattern, ()):
        if alternative not in forbidden:
            return alternative
    return None


def feasible_patterns(forbidden: Set[str]) -> List[str]:
    return [pattern for pattern in PATTERNS if pattern not in forbidden]


def contract_for(pattern: str, title: str, minutes: int) -> Dict[str, object]:
    """Deterministic completion contract for a quest of ``pattern`` lasting ``minutes``."""
    short_minutes = max(5, minutes // 3)
    return {
        "done_definition": f"Complete '{title}' and confirm the result",
        "evidence": [PATTERN_EVIDENCE.get(pattern, "completion record")],
        "alt_plan": f"Shortened version: basics only in {short_minutes} minutes",
        "stop_rule": f"Switch to the alternative plan if stuck for {min(15, minutes)} minutes",
    }


def steps_for(pattern: str) -> List[str]:
    return list(PATTERN_STEPS.get(pattern, SCAFFOLD_STEP_PAD))


def pad_steps(pattern: str, steps: Sequence[str], minimum: int = 3) -> List[str]:
    padded = [step for step in steps if step.strip()]
    for filler in list(PATTERN_STEPS.get(pattern, ())) + list(SCAFFOLD_STEP_PAD):
        if len(padded) >= minimum:
            break
        if filler not in padded:
            padded.append(filler)
    return padded


__all__ = [
    "ENV_FORBIDDEN_PATTERNS",
    "PATTERN_ALTERNATIVES",
    "PATTERN_DELIVERABLES",
    "contract_for",
    "feasible_patterns",
    "first_feasible_alternative",
    "forbidden_patterns",
    "normalize_env_tag",
    "pad_steps",
    "steps_for",
]
