"""YAML configuration loader.

Loads a single YAML file on top of the env-var configuration. Values
present in the file win; anything the file omits keeps its env or
default value.

Example YAML:
    discord:
      token: ${DISCORD_BOT_TOKEN}

    auth:
      allowed_user_ids: ["123456789012345678"]

    claude:
      command: claude
      working_dir: /home/me/Development/scratch
      timeout_seconds: 300
      kill_grace_seconds: 5

    queue:
      max_size: 5
      wait_timeout_seconds: 180

    projects:
      base_dir: ~/Development
      allow_list: []
      deny_list: [node_modules, .git]

    sessions:
      max_age_hours: 24
      cleanup_interval_seconds: 3600

    logging:
      level: INFO
      file: ~/.ccbot/logs/ccbot.log
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import BotConfig, split_csv
from .errors import ConfigError

logger = logging.getLogger(__name__)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(name, "section must be a mapping")
    return value


def _as_list(value: Any, field_name: str) -> list[str]:
    if isinstance(value, str):
        return split_csv(value)
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ConfigError(field_name, "expected a list or comma-separated string")


def _as_float(value: Any, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(field_name, f"expected a number, got {value!r}") from exc


def _expand(value: str) -> str:
    return os.path.expanduser(os.path.expandvars(value))


def load_yaml_config(path: str | Path, base: BotConfig | None = None) -> BotConfig:
    """Load and parse a YAML config file into a BotConfig.

    *base* defaults to ``BotConfig.from_env()`` so env vars fill any
    gaps the file leaves.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: loading %s (exists=%s)", path, path.exists()
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    config = base if base is not None else BotConfig.from_env()

    # ── Discord ────────────────────────────────────────────────
    discord_raw = _section(raw, "discord")
    if discord_raw.get("token"):
        config.discord_token = os.path.expandvars(str(discord_raw["token"]))
    if discord_raw.get("application_id"):
        config.application_id = str(discord_raw["application_id"])

    # ── Auth ───────────────────────────────────────────────────
    auth_raw = _section(raw, "auth")
    if "allowed_user_ids" in auth_raw:
        config.allowed_user_ids = _as_list(
            auth_raw["allowed_user_ids"], "auth.allowed_user_ids"
        )

    # ── Claude CLI ─────────────────────────────────────────────
    claude_raw = _section(raw, "claude")
    if claude_raw.get("command"):
        config.claude_command = str(claude_raw["command"])
    if claude_raw.get("working_dir"):
        config.default_cwd = _expand(str(claude_raw["working_dir"]))
    if "timeout_seconds" in claude_raw:
        config.execution_timeout_seconds = _as_float(
            claude_raw["timeout_seconds"], "claude.timeout_seconds"
        )
    if "kill_grace_seconds" in claude_raw:
        config.kill_grace_seconds = _as_float(
            claude_raw["kill_grace_seconds"], "claude.kill_grace_seconds"
        )

    # ── Queue ──────────────────────────────────────────────────
    queue_raw = _section(raw, "queue")
    if "max_size" in queue_raw:
        config.queue_max_size = int(
            _as_float(queue_raw["max_size"], "queue.max_size")
        )
    if "wait_timeout_seconds" in queue_raw:
        config.queue_wait_timeout_seconds = _as_float(
            queue_raw["wait_timeout_seconds"], "queue.wait_timeout_seconds"
        )

    # ── Projects ───────────────────────────────────────────────
    projects_raw = _section(raw, "projects")
    if projects_raw.get("base_dir"):
        config.projects_base_dir = _expand(str(projects_raw["base_dir"]))
    if "allow_list" in projects_raw:
        config.projects_allow_list = _as_list(
            projects_raw["allow_list"] or [], "projects.allow_list"
        )
    if "deny_list" in projects_raw:
        config.projects_deny_list = _as_list(
            projects_raw["deny_list"] or [], "projects.deny_list"
        )

    # ── Sessions ───────────────────────────────────────────────
    sessions_raw = _section(raw, "sessions")
    if "max_age_hours" in sessions_raw:
        config.session_max_age_seconds = _as_float(
            sessions_raw["max_age_hours"], "sessions.max_age_hours"
        ) * 3600.0
    if "cleanup_interval_seconds" in sessions_raw:
        config.cleanup_interval_seconds = _as_float(
            sessions_raw["cleanup_interval_seconds"],
            "sessions.cleanup_interval_seconds",
        )

    # ── Logging ────────────────────────────────────────────────
    logging_raw = _section(raw, "logging")
    if logging_raw.get("level"):
        config.log_level = str(logging_raw["level"]).upper()
    if logging_raw.get("file"):
        config.log_file = _expand(str(logging_raw["file"]))

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name,
        ", ".join(sorted(raw.keys())) if raw else "(empty)",
    )
    return config
