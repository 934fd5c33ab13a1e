"""Core data models for the bridge engine.

All dataclasses and enums shared by the queue, runner, registry and
orchestrator. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class FailureKind(str, Enum):
    """Why an execution did not produce a successful result."""
    QUEUE_FULL = "queue_full"
    QUEUE_WAIT_TIMEOUT = "queue_wait_timeout"
    SPAWN_FAILURE = "spawn_failure"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXIT_FAILURE = "exit_failure"
    INTERNAL = "internal"


class OutputFormat(str, Enum):
    """Values accepted by the CLI's --output-format flag."""
    JSON = "json"
    STREAM_JSON = "stream-json"


def _make_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExecutionRequest:
    """A single CLI invocation. Immutable once submitted."""
    prompt: str
    resume_session_id: str | None = None
    cwd: str | None = None
    timeout_seconds: float | None = None
    plan_mode: bool = False

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValueError("ExecutionRequest.prompt must be non-empty")

    @property
    def output_format(self) -> OutputFormat:
        return OutputFormat.STREAM_JSON if self.plan_mode else OutputFormat.JSON


@dataclass
class ExecutionResult:
    """Fully materialized outcome of an execution.

    On success ``output`` holds the primary result text. ``transcript``
    is only produced in plan mode. On failure ``error`` holds a
    human-readable message and ``failure`` the category.
    """
    success: bool
    output: str = ""
    session_id: str | None = None
    transcript: str | None = None
    error: str | None = None
    failure: FailureKind | None = None

    @classmethod
    def ok(
        cls,
        output: str,
        session_id: str | None = None,
        transcript: str | None = None,
    ) -> ExecutionResult:
        return cls(
            success=True,
            output=output,
            session_id=session_id,
            transcript=transcript,
        )

    @classmethod
    def failed(cls, failure: FailureKind, error: str) -> ExecutionResult:
        return cls(success=False, error=error, failure=failure)


@dataclass
class SessionInfo:
    """Per-thread conversation state."""
    thread_id: str
    session_id: str = field(default_factory=_make_id)
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime = field(default_factory=_utcnow)
    cwd: str | None = None
    # Handle returned by the CLI, passed back via --resume
    external_session_id: str | None = None

    def touch(self) -> None:
        self.last_used_at = _utcnow()


@dataclass
class PendingPrompt:
    """A prompt deferred until the thread has a working directory."""
    prompt: str
    message_id: str
    channel_id: str
    user_id: str
    plan_mode: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ProjectInfo:
    name: str
    path: str


@dataclass(frozen=True)
class OutputDirective:
    """How a result should be presented: inline message or attachment."""
    kind: str  # "message" or "file"
    content: str
    file_name: str | None = None

    @property
    def is_file(self) -> bool:
        return self.kind == "file"
