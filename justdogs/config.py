"""Environment driven settings for the web application."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

TRUTHY = {"1", "true", "yes", "on"}


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in TRUTHY


def load_config(overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Read ``JUSTDOGS_*`` variables (and ``.env``), then apply ``overrides``."""

    load_dotenv()
    config: dict[str, Any] = {
        "DATABASE": os.getenv("JUSTDOGS_DATABASE", "justdogs.db"),
        "REMOTE_DATABASE": os.getenv("JUSTDOGS_REMOTE_DATABASE") or None,
        "SECRET_KEY": os.getenv("JUSTDOGS_SECRET_KEY", "justdogs-secret"),
        "REQUIRE_CONFIRMATION": _flag(os.getenv("JUSTDOGS_REQUIRE_CONFIRMATION"), False),
        "SEED_DEMO_USERS": _flag(os.getenv("JUSTDOGS_SEED_DEMO_USERS"), True),
        "LOG_LEVEL": os.getenv("JUSTDOGS_LOG_LEVEL", "INFO").upper(),
    }
    config.update(overrides or {})
    return config


def configure_logging(level: str | int = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
