import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    climb_agent_model: str = Field("gpt-5", alias="CLIMB_AGENT_MODEL")
    climb_agent_reasoning: Literal["minimal", "low", "medium", "high"] = Field("low", alias="CLIMB_AGENT_REASONING")
    ai_enabled: bool = Field(False, alias="CLIMB_AI_ENABLED")
    candidate_timeout_seconds: float = Field(30.0, gt=0, alias="CLIMB_CANDIDATE_TIMEOUT_SECONDS")
    max_quest_count: int = Field(3, ge=1, alias="CLIMB_MAX_QUEST_COUNT")
    max_session_minutes: int = Field(45, ge=15, alias="CLIMB_MAX_SESSION_MINUTES")
    question_budget: int = Field(5, ge=0, alias="CLIMB_QUESTION_BUDGET")
    adjustment_history_limit: int = Field(20, ge=1, alias="CLIMB_ADJUSTMENT_HISTORY_LIMIT")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[arg-type]
        if settings.openai_api_key and not os.getenv("OPENAI_API_KEY"):
            os.environ["OPENAI_API_KEY"] = settings.openai_api_key
        return settings
    except ValidationError as exc:
        raise RuntimeError(f"Invalid planner configuration: {exc}") from exc


@dataclass(frozen=True)
class PlannerOptions:
    """Per-call planning switches. Passed explicitly into every planning entry point."""

    ai_enabled: bool = False
    model: str = "gpt-5"
    reasoning: str = "low"
    candidate_timeout_seconds: float = 30.0
    max_quest_count: int = 3
    max_session_minutes: int = 45
    question_budget: int = 5
    adjustment_history_limit: int = 20

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PlannerOptions":
        resolved = settings or get_settings()
        return cls(
            ai_enabled=resolved.ai_enabled,
            model=resolved.climb_agent_model or "gpt-5",
            reasoning=resolved.climb_agent_reasoning,
            candidate_timeout_seconds=resolved.candidate_timeout_seconds,
            max_quest_count=resolved.max_quest_count,
            max_session_minutes=resolved.max_session_minutes,
            question_budget=resolved.question_budget,
            adjustment_history_limit=resolved.adjustment_history_limit,
        )
