"""Bridge engine: single-flight CLI execution with per-thread sessions."""
from .models import (
    ExecutionRequest,
    ExecutionResult,
    FailureKind,
    OutputDirective,
    OutputFormat,
    PendingPrompt,
    ProjectInfo,
    SessionInfo,
)
from .config import BotConfig
from .errors import BridgeError, ConfigError
from .execution_queue import ExecutionQueue
from .runner import ClaudeCliRunner, Runner
from .session_registry import SessionRegistry

__all__ = [
    # Models
    "ExecutionRequest",
    "ExecutionResult",
    "FailureKind",
    "OutputDirective",
    "OutputFormat",
    "PendingPrompt",
    "ProjectInfo",
    "SessionInfo",
    # Config
    "BotConfig",
    "load_yaml_config",
    # Services
    "ClaudeCliRunner",
    "ExecutionQueue",
    "Runner",
    "SessionRegistry",
    "ProjectScanner",
    "AccessControl",
    # Orchestration (lazy import to avoid circular deps with adapters)
    "RequestOrchestrator",
    # Errors
    "BridgeError",
    "ConfigError",
]


def __getattr__(name: str):
    if name == "RequestOrchestrator":
        from .orchestrator import RequestOrchestrator
        return RequestOrchestrator
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "ProjectScanner":
        from .projects import ProjectScanner
        return ProjectScanner
    if name == "AccessControl":
        from .access import AccessControl
        return AccessControl
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
