"""Configuration loaded from environment variables.

All settings except the bot token and the allowed-user list have
sensible defaults. Override via env vars or a YAML file (see
yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "WARN", "WARNING", "ERROR", "FATAL", "CRITICAL"}


def split_csv(raw: str | None) -> list[str]:
    """Split a comma-separated env value, dropping blanks."""
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _ms_env(name: str, default_seconds: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default_seconds
    try:
        return int(raw) / 1000.0
    except ValueError as exc:
        raise ConfigError(name, f"expected milliseconds, got {raw!r}") from exc


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(name, f"expected an integer, got {raw!r}") from exc


def _default_projects_dir() -> str:
    return str(Path.home() / "Development")


@dataclass
class BotConfig:
    """Bridge configuration."""

    # Discord
    discord_token: str = ""
    application_id: str | None = None

    # Access control
    allowed_user_ids: list[str] = field(default_factory=list)

    # CLI invocation
    claude_command: str = "claude"
    default_cwd: str = field(default_factory=os.getcwd)
    execution_timeout_seconds: float = 300.0
    # Delay between SIGTERM and SIGKILL once the deadline passes
    kill_grace_seconds: float = 5.0

    # Execution queue
    queue_max_size: int = 5
    queue_wait_timeout_seconds: float = 180.0

    # Project selection
    projects_base_dir: str = field(default_factory=_default_projects_dir)
    projects_allow_list: list[str] = field(default_factory=list)
    projects_deny_list: list[str] = field(
        default_factory=lambda: ["node_modules", ".git"]
    )

    # Session garbage collection
    session_max_age_seconds: float = 24 * 60 * 60.0
    cleanup_interval_seconds: float = 60 * 60.0

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> BotConfig:
        """Load configuration from environment variables."""
        deny_raw = os.getenv("PROJECTS_DENY_LIST")
        max_age_hours = os.getenv("SESSION_MAX_AGE_HOURS")
        try:
            max_age = (
                float(max_age_hours) * 3600.0
                if max_age_hours
                else cls.session_max_age_seconds
            )
        except ValueError as exc:
            raise ConfigError(
                "SESSION_MAX_AGE_HOURS", f"expected a number, got {max_age_hours!r}"
            ) from exc

        config = cls(
            discord_token=os.getenv("DISCORD_BOT_TOKEN", ""),
            application_id=os.getenv("DISCORD_APPLICATION_ID") or None,
            allowed_user_ids=split_csv(os.getenv("ALLOWED_USER_IDS")),
            claude_command=os.getenv("CLAUDE_COMMAND", cls.claude_command),
            default_cwd=os.getenv("CLAUDE_WORKING_DIR") or os.getcwd(),
            execution_timeout_seconds=_ms_env(
                "CLAUDE_TIMEOUT_MS", cls.execution_timeout_seconds
            ),
            kill_grace_seconds=_ms_env(
                "CLAUDE_KILL_GRACE_MS", cls.kill_grace_seconds
            ),
            queue_max_size=_int_env("QUEUE_MAX_SIZE", cls.queue_max_size),
            queue_wait_timeout_seconds=_ms_env(
                "QUEUE_TIMEOUT_MS", cls.queue_wait_timeout_seconds
            ),
            projects_base_dir=(
                os.getenv("PROJECTS_BASE_DIR") or _default_projects_dir()
            ),
            projects_allow_list=split_csv(os.getenv("PROJECTS_ALLOW_LIST")),
            projects_deny_list=(
                split_csv(deny_raw)
                if deny_raw is not None
                else ["node_modules", ".git"]
            ),
            session_max_age_seconds=max_age,
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            log_file=os.getenv("LOG_FILE") or None,
        )
        logger.debug(
            "BotConfig.from_env: cwd=%s timeout=%.0fs queue=%d/%.0fs base=%s",
            config.default_cwd,
            config.execution_timeout_seconds,
            config.queue_max_size,
            config.queue_wait_timeout_seconds,
            config.projects_base_dir,
        )
        return config

    def validate(self) -> BotConfig:
        """Raise ConfigError for missing or out-of-range settings."""
        if not self.discord_token:
            raise ConfigError("DISCORD_BOT_TOKEN", "is required")
        if not self.allowed_user_ids:
            raise ConfigError(
                "ALLOWED_USER_IDS", "at least one user id is required"
            )
        if self.execution_timeout_seconds <= 0:
            raise ConfigError("CLAUDE_TIMEOUT_MS", "must be positive")
        if self.kill_grace_seconds < 0:
            raise ConfigError("CLAUDE_KILL_GRACE_MS", "must not be negative")
        if self.queue_max_size < 0:
            raise ConfigError("QUEUE_MAX_SIZE", "must not be negative")
        if self.queue_wait_timeout_seconds <= 0:
            raise ConfigError("QUEUE_TIMEOUT_MS", "must be positive")
        if self.session_max_age_seconds <= 0:
            raise ConfigError("SESSION_MAX_AGE_HOURS", "must be positive")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigError("LOG_LEVEL", f"unknown level {self.log_level!r}")
        return self
