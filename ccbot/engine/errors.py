"""Exception hierarchy for the bridge engine.

Per-request failures (queue full, timeouts, non-zero exits) are
reported as ExecutionResult values, not exceptions. These classes
cover setup-time problems only.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ConfigError(BridgeError):
    """Configuration is missing a required value or holds an invalid one."""
    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid configuration for {field_name}: {reason}")

