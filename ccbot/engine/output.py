"""Presentation helpers for CLI results."""
from __future__ import annotations

from datetime import datetime, timezone

from .models import OutputDirective

# Discord caps a message at 2000 characters; leave room for reply framing
SAFE_MESSAGE_LIMIT = 1900
EMPTY_OUTPUT_PLACEHOLDER = "(no output)"


def timestamped_file_name(prefix: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return f"{prefix}-{stamp}.txt"


def format_output(output: str, limit: int = SAFE_MESSAGE_LIMIT) -> OutputDirective:
    """Decide whether *output* is sent inline or as a text attachment."""
    trimmed = output.strip()
    if len(trimmed) <= limit:
        return OutputDirective(
            kind="message", content=trimmed or EMPTY_OUTPUT_PLACEHOLDER
        )
    return OutputDirective(
        kind="file",
        content=trimmed,
        file_name=timestamped_file_name("claude-response"),
    )


def format_code_block(code: str, language: str | None = None) -> str:
    return f"```{language or ''}\n{code}\n```"


def truncate_with_ellipsis(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3] + "..."
