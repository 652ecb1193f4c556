from __future__ import annotations

import logging

import pytest

from climb_planner.config import PlannerOptions, Settings, get_settings
from climb_planner.logging_config import configure_logging


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLIMB_AI_ENABLED", "true")
    monkeypatch.setenv("CLIMB_MAX_QUEST_COUNT", "2")
    monkeypatch.setenv("CLIMB_AGENT_MODEL", "gpt-5-mini")
    monkeypatch.setenv("CLIMB_ADJUSTMENT_HISTORY_LIMIT", "8")

    options = PlannerOptions.from_settings(Settings())

    assert options.ai_enabled is True
    assert options.max_quest_count == 2
    assert options.model == "gpt-5-mini"
    assert options.adjustment_history_limit == 8
    assert options.max_session_minutes == 45


def test_invalid_settings_raise_runtime_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLIMB_MAX_QUEST_COUNT", "0")
    get_settings.cache_clear()
    try:
        with pytest.raises(RuntimeError):
            get_settings()
    finally:
        get_settings.cache_clear()


def _restore_logging(handlers: list, level: int) -> None:
    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)
    for name in ("climb_planner.telemetry", "openai.agents", "openai"):
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_configure_logging_uses_level_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    previous = (list(root.handlers), root.level)
    monkeypatch.setenv("CLIMB_LOG_LEVEL", "warning")
    monkeypatch.setenv("CLIMB_TELEMETRY_LOG_LEVEL", "error")
    monkeypatch.setenv("CLIMB_DEBUG_AGENTS", "1")
    try:
        configure_logging()

        assert root.level == logging.WARNING
        assert logging.getLogger("climb_planner.telemetry").level == logging.ERROR
        assert logging.getLogger("openai.agents").level == logging.DEBUG
    finally:
        _restore_logging(*previous)


def test_configure_logging_explicit_level_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    previous = (list(root.handlers), root.level)
    monkeypatch.setenv("CLIMB_LOG_LEVEL", "warning")
    monkeypatch.delenv("CLIMB_TELEMETRY_LOG_LEVEL", raising=False)
    try:
        configure_logging("debug")

        assert root.level == logging.DEBUG
        assert logging.getLogger("climb_planner.telemetry").level == logging.DEBUG
    finally:
        _restore_logging(*previous)
