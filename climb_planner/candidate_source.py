"""Client side of the quest completion service: tagged requests, parsing and fallback."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, cast

from agents import Agent, ModelSettings, RunConfig, Runner
from openai.types.shared.reasoning import Reasoning
from openai.types.shared.reasoning_effort import ReasoningEffort
from pydantic import BaseModel, Field, ValidationError

from .config import PlannerOptions
from .fallback_templates import GoalClarity, fallback_goal_clarity, fallback_quests, fallback_skill_atoms
from .quest_models import CompletionRecord, Constraints, DailyCheckin, Profile, Quest, SkillAtom
from .skill_graph import unresolved_prerequisites
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class RequestKind(str, Enum):
    SKILL_MAP = "skill_map"
    DAILY_QUESTS = "daily_quests"
    POLICY_CHECK = "policy_check"
    CLARITY_CHECK = "clarity_check"


INSTRUCTIONS: Dict[RequestKind, str] = {
    RequestKind.SKILL_MAP: (
        "You are a curriculum designer. Break the learner's goal into skill atoms that form a prerequisite DAG."
        " Output only JSON with key skill_atoms."
    ),
    RequestKind.DAILY_QUESTS: (
        "You are a learning planner. Propose today's quests for the learner, ordered from most foundational to most"
        " advanced. Use only the listed patterns. Output only JSON with keys quests and rationale."
    ),
    RequestKind.POLICY_CHECK: (
        "You are a reviewer. Check the candidate quests against the constraints and return a corrected list."
        " Output only JSON with keys quests and rationale."
    ),
    RequestKind.CLARITY_CHECK: (
        "You assess whether a learning goal is specific and measurable."
        " Output only JSON with keys is_vague, confidence, issues, suggestions, examples."
    ),
}

RECENT_COMPLETIONS_IN_REQUEST = 7

QUEST_SCHEMA_HINT = (
    "Each quest: title, pattern (read_note_q | flashcards | build_micro | config_verify | debug_explain | feynman |"
    " past_paper | socratic | shadowing | retrospective), minutes (10-90), difficulty (0-1), deliverable, steps,"
    " criteria, tags."
)


class CandidateSourceError(RuntimeError):
    """Raised when the completion service fails, times out or returns unusable output."""


@dataclass(frozen=True)
class CompletionRequest:
    kind: RequestKind
    system: str
    prompt: str
    payload: Dict[str, Any] = field(default_factory=dict)


class CompletionClient(Protocol):
    async def complete(self, request: CompletionRequest) -> Any: ...


class QuestCandidatesPayload(BaseModel):
    quests: List[Dict[str, Any]] = Field(default_factory=list)
    rationale: List[str] = Field(default_factory=list)


class SkillMapPayload(BaseModel):
    skill_atoms: List[SkillAtom] = Field(default_factory=list)


@dataclass(frozen=True)
class CandidateBatch:
    quests: List[Quest]
    source: str = "candidates"
    rationale: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


def _reasoning_effort(value: str) -> ReasoningEffort:
    allowed = {"minimal", "low", "medium", "high"}
    effort = value if value in allowed else "low"
    return cast(ReasoningEffort, effort)


class AgentCompletionClient:
    """Completion client backed by the OpenAI Agents SDK."""

    def __init__(self, model: str = "gpt-5", reasoning: str = "low") -> None:
        self._model = model or "gpt-5"
        self._reasoning = reasoning
        self._agents: Dict[RequestKind, Agent] = {}

    def _agent_for(self, kind: RequestKind) -> Agent:
        if kind not in self._agents:
            self._agents[kind] = Agent(
                name=f"Climb {kind.value.replace('_', ' ').title()}",
                instructions=INSTRUCTIONS[kind],
                model=self._model,
                tools=[],
                model_settings=ModelSettings(store=False),
            )
        return self._agents[kind]

    async def complete(self, request: CompletionRequest) -> Any:
        agent = self._agent_for(request.kind)
        message = request.prompt
        if request.system:
            message = f"{request.system}\n\n{request.prompt}"
        result = await Runner.run(
            agent,
            message,
            context=None,
            run_config=RunConfig(
                model_settings=ModelSettings(
                    reasoning=Reasoning(effort=_reasoning_effort(self._reasoning), summary="auto"),
                )
            ),
        )
        return result.final_output


Handler = Callable[[CompletionRequest], Dict[str, Any]]


class OfflineCompletionClient:
    """Deterministic client used when the completion service is disabled.

    Requests are routed by their ``RequestKind`` tag only.
    """

    def __init__(self) -> None:
        self._handlers: Dict[RequestKind, Handler] = {
            RequestKind.SKILL_MAP: self._skill_map,
            RequestKind.DAILY_QUESTS: self._daily_quests,
            RequestKind.POLICY_CHECK: self._policy_check,
            RequestKind.CLARITY_CHECK: self._clarity_check,
        }

    async def complete(self, request: CompletionRequest) -> Any:
        handler = self._handlers.get(request.kind)
        if handler is None:
            raise CandidateSourceError(f"No offline handler for request kind {request.kind!r}")
        return handler(request)

    @staticmethod
    def _profile(request: CompletionRequest) -> Profile:
        return Profile.model_validate(request.payload.get("profile") or {})

    def _skill_map(self, request: CompletionRequest) -> Dict[str, Any]:
        atoms = fallback_skill_atoms(self._profile(request))
        return {"skill_atoms": [atom.model_dump(mode="json") for atom in atoms]}

    def _daily_quests(self, request: CompletionRequest) -> Dict[str, Any]:
        atoms = [SkillAtom.model_validate(atom) for atom in request.payload.get("skill_atoms") or []]
        checkin_payload = request.payload.get("checkin")
        checkin = DailyCheckin.model_validate(checkin_payload) if checkin_payload else None
        quests = fallback_quests(self._profile(request), atoms, checkin)
        return {
            "quests": [quest.model_dump(mode="json") for quest in quests],
            "rationale": ["Offline template quests"],
        }

    def _policy_check(self, request: CompletionRequest) -> Dict[str, Any]:
        return {
            "quests": list(request.payload.get("quests") or []),
            "rationale": ["Offline review: candidates returned unchanged"],
        }

    def _clarity_check(self, request: CompletionRequest) -> Dict[str, Any]:
        clarity = fallback_goal_clarity(str(request.payload.get("goal_text") or ""))
        return clarity.model_dump(mode="json")


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _load_payload(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        return json.loads(_strip_code_fence(payload))
    if isinstance(payload, (dict, list)):
        return payload
    raise TypeError(f"Unsupported completion payload type: {type(payload).__name__}")


def _coerce_candidates_payload(payload: Any) -> QuestCandidatesPayload:
    data = _load_payload(payload)
    if isinstance(data, list):
        data = {"quests": data}
    return QuestCandidatesPayload.model_validate(data)


def _coerce_skill_map_payload(payload: Any) -> SkillMapPayload:
    data = _load_payload(payload)
    if isinstance(data, list):
        data = {"skill_atoms": data}
    return SkillMapPayload.model_validate(data)


def _coerce_clarity_payload(payload: Any) -> GoalClarity:
    data = _load_payload(payload)
    if isinstance(data, dict) and "isVague" in data and "is_vague" not in data:
        data = {**data, "is_vague": data.pop("isVague")}
    return GoalClarity.model_validate(data)


def _convert_quests(entries: Sequence[Dict[str, Any]]) -> Tuple[List[Quest], int]:
    quests: List[Quest] = []
    rejected = 0
    for entry in entries:
        try:
            quests.append(Quest.model_validate(entry))
        except ValidationError as exc:
            rejected += 1
            logger.warning("Discarding malformed quest candidate %r: %s", entry.get("title"), exc.errors()[:1])
    return quests, rejected


class QuestCandidateSource:
    """Wraps a completion client with request building, validation and fallback."""

    def __init__(self, client: CompletionClient, *, timeout_seconds: float = 30.0) -> None:
        self._client = client
        self._timeout = max(timeout_seconds, 0.1)

    @classmethod
    def from_options(cls, options: PlannerOptions) -> "QuestCandidateSource":
        client: CompletionClient
        if options.ai_enabled:
            client = AgentCompletionClient(model=options.model, reasoning=options.reasoning)
        else:
            client = OfflineCompletionClient()
        return cls(client, timeout_seconds=options.candidate_timeout_seconds)

    async def _complete(self, request: CompletionRequest) -> Any:
        try:
            return await asyncio.wait_for(self._client.complete(request), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise CandidateSourceError(
                f"{request.kind.value} request timed out after {self._timeout:.1f}s"
            ) from exc
        except asyncio.CancelledError as exc:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            raise CandidateSourceError(f"{request.kind.value} request was cancelled") from exc
        except CandidateSourceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise CandidateSourceError(f"{request.kind.value} request failed: {exc}") from exc

    async def fetch_candidates(
        self,
        profile: Profile,
        skill_atoms: Sequence[SkillAtom] = (),
        checkin: Optional[DailyCheckin] = None,
        recent_completions: Sequence[CompletionRecord] = (),
    ) -> CandidateBatch:
        """Request candidates and validate them. Raises ``CandidateSourceError`` on any upstream problem."""
        payload: Dict[str, Any] = {
            "profile": profile.model_dump(mode="json"),
            "skill_atoms": [atom.model_dump(mode="json") for atom in skill_atoms],
            "checkin": checkin.model_dump(mode="json") if checkin else None,
            "recent_completions": [
                record.model_dump(mode="json", include={"title", "pattern", "was_successful", "user_rating"})
                for record in recent_completions[-RECENT_COMPLETIONS_IN_REQUEST:]
            ],
        }
        prompt = (
            "Plan today's learning quests.\n\n"
            f"{QUEST_SCHEMA_HINT}\n\n"
            f"LEARNER CONTEXT:\n{json.dumps(payload, ensure_ascii=False, indent=2)}"
        )
        raw = await self._complete(
            CompletionRequest(kind=RequestKind.DAILY_QUESTS, system="", prompt=prompt, payload=payload)
        )
        try:
            parsed = _coerce_candidates_payload(raw)
        except (ValidationError, ValueError, TypeError, json.JSONDecodeError) as exc:
            raise CandidateSourceError(f"Malformed daily quest payload: {exc}") from exc
        quests, rejected = _convert_quests(parsed.quests)
        if not quests:
            raise CandidateSourceError(f"No valid quest candidates ({rejected} rejected)")
        return CandidateBatch(quests=quests, rationale=parsed.rationale)

    async def generate_candidates(
        self,
        profile: Profile,
        skill_atoms: Sequence[SkillAtom] = (),
        checkin: Optional[DailyCheckin] = None,
        recent_completions: Sequence[CompletionRecord] = (),
    ) -> CandidateBatch:
        """Like ``fetch_candidates`` but never raises: upstream failures yield template candidates."""
        try:
            return await self.fetch_candidates(profile, skill_atoms, checkin, recent_completions)
        except CandidateSourceError as exc:
            logger.warning("Quest candidate source failed, using templates: %s", exc)
            emit_event("candidate_source_fallback", kind=RequestKind.DAILY_QUESTS, error=str(exc))
            return CandidateBatch(
                quests=fallback_quests(profile, skill_atoms, checkin),
                source="fallback",
                rationale=["Template candidates generated from the profile"],
                error=str(exc),
            )

    async def generate_skill_map(self, profile: Profile) -> List[SkillAtom]:
        payload = {"profile": profile.model_dump(mode="json")}
        prompt = f"Design the skill map for this learner.\n\nLEARNER CONTEXT:\n{json.dumps(payload, ensure_ascii=False)}"
        try:
            raw = await self._complete(
                CompletionRequest(kind=RequestKind.SKILL_MAP, system="", prompt=prompt, payload=payload)
            )
            atoms = _coerce_skill_map_payload(raw).skill_atoms
            if atoms:
                missing = unresolved_prerequisites(atoms)
                if missing:
                    logger.warning("Skill map references unknown prerequisites: %s", missing)
                return atoms
            logger.warning("Skill map response contained no atoms; using templates.")
        except (ValidationError, ValueError, TypeError, json.JSONDecodeError) as exc:
            logger.warning("Skill map payload invalid: %s", exc)
        except CandidateSourceError as exc:
            logger.warning("Skill map request failed: %s", exc)
        emit_event("candidate_source_fallback", kind=RequestKind.SKILL_MAP)
        return fallback_skill_atoms(profile)

    async def review_candidates(
        self,
        quests: Sequence[Quest],
        profile: Profile,
        constraints: Constraints,
    ) -> List[Quest]:
        """Ask the service to review candidates against constraints. Returns the input on failure."""
        payload = {
            "quests": [quest.model_dump(mode="json") for quest in quests],
            "constraints": constraints.model_dump(mode="json"),
            "env_constraints": list(profile.env_constraints),
        }
        prompt = (
            "Review these candidate quests against the constraints and fix violations.\n\n"
            f"{QUEST_SCHEMA_HINT}\n\n"
            f"CANDIDATES:\n{json.dumps(payload, ensure_ascii=False, indent=2)}"
        )
        try:
            raw = await self._complete(
                CompletionRequest(kind=RequestKind.POLICY_CHECK, system="", prompt=prompt, payload=payload)
            )
            reviewed, _ = _convert_quests(_coerce_candidates_payload(raw).quests)
            if reviewed:
                return reviewed
        except (ValidationError, ValueError, TypeError, json.JSONDecodeError) as exc:
            logger.warning("Policy review payload invalid: %s", exc)
        except CandidateSourceError as exc:
            logger.warning("Policy review request failed: %s", exc)
        return list(quests)

    async def check_goal_clarity(self, goal_text: str) -> GoalClarity:
        payload = {"goal_text": goal_text}
        prompt = f"Assess this learning goal.\n\nGOAL: {json.dumps(goal_text, ensure_ascii=False)}"
        try:
            raw = await self._complete(
                CompletionRequest(kind=RequestKind.CLARITY_CHECK, system="", prompt=prompt, payload=payload)
            )
            return _coerce_clarity_payload(raw)
        except (ValidationError, ValueError, TypeError, json.JSONDecodeError) as exc:
            logger.warning("Goal clarity payload invalid: %s", exc)
        except CandidateSourceError as exc:
            logger.warning("Goal clarity request failed: %s", exc)
        return fallback_goal_clarity(goal_text)


__all__ = [
    "AgentCompletionClient",
    "CandidateBatch",
    "CandidateSourceError",
    "CompletionClient",
    "CompletionRequest",
    "OfflineCompletionClient",
    "QuestCandidateSource",
    "RequestKind",
]
