import logging
import os
from logging.config import dictConfig
from typing import Optional

FORMATS = {
    "default": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
    "compact": "%(levelname)s %(name)s: %(message)s",
}
TELEMETRY_LOGGER = "climb_planner.telemetry"
AGENT_LOGGERS = ("openai.agents", "openai")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure planner logging.

    ``level`` overrides ``CLIMB_LOG_LEVEL``. Telemetry lines follow
    ``CLIMB_TELEMETRY_LOG_LEVEL`` (defaults to the root level) so they can be
    silenced without hiding planner warnings.
    """
    root_level = (level or os.getenv("CLIMB_LOG_LEVEL", "INFO")).upper()
    telemetry_level = os.getenv("CLIMB_TELEMETRY_LOG_LEVEL", root_level).upper()
    log_format = FORMATS.get(os.getenv("CLIMB_LOG_FORMAT", "default").lower(), FORMATS["default"])

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "planner": {"format": log_format},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "planner",
                },
            },
            "loggers": {
                TELEMETRY_LOGGER: {"level": telemetry_level},
            },
            "root": {
                "handlers": ["console"],
                "level": root_level,
            },
        }
    )

    if os.getenv("CLIMB_DEBUG_AGENTS", "0") == "1":
        for name in AGENT_LOGGERS:
            logging.getLogger(name).setLevel(logging.DEBUG)


__all__ = ["configure_logging"]
