"""Configuration for cc-sessions.

Dataclass-based configuration with defaults, overridable through environment
variables with the CC_SESSIONS_ prefix.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "CC_SESSIONS_"
DEFAULT_PROJECTS_DIR = Path.home() / ".claude" / "projects"


def _get_env(key: str, default: str) -> str:
    """Get environment variable with CC_SESSIONS_ prefix."""
    return os.getenv(f"{ENV_PREFIX}{key}", default)


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable, falling back on unparsable values."""
    val = os.getenv(f"{ENV_PREFIX}{key}")
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        logger.warning("Ignoring %s%s=%r: not an integer", ENV_PREFIX, key, val)
        return default


@dataclass
class Config:
    """cc-sessions configuration.

    Attributes:
        projects_dir: Root holding one directory per project (default: ~/.claude/projects)
        log_level: Level for the package logger (default: WARNING)
        max_results: Result cap for search (default: 50)
        context_chars: Characters of context on each side of a match (default: 50)
        remote_time_budget_ms: Wall-clock budget for search on remote providers (default: 4500)
    """

    projects_dir: Path = field(
        default_factory=lambda: Path(_get_env("PROJECTS_DIR", str(DEFAULT_PROJECTS_DIR))).expanduser()
    )
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "WARNING").upper())
    max_results: int = field(default_factory=lambda: _get_env_int("MAX_RESULTS", 50))
    context_chars: int = field(default_factory=lambda: _get_env_int("CONTEXT_CHARS", 50))
    remote_time_budget_ms: int = field(
        default_factory=lambda: _get_env_int("REMOTE_TIME_BUDGET_MS", 4500)
    )

    def __post_init__(self):
        if isinstance(self.projects_dir, str):
            self.projects_dir = Path(self.projects_dir).expanduser()
        self.max_results = max(1, self.max_results)
        self.context_chars = max(0, self.context_chars)
        logger.debug("Config initialized: projects_dir=%s", self.projects_dir)
