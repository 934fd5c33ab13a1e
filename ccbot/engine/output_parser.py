"""Decoders for the CLI's two --output-format encodings.

``json`` prints one object once the run finishes::

    {"type": "result", "result": "...", "session_id": "...", ...}

``stream-json`` (always paired with --verbose) prints one event per
line as the run progresses. Only two event kinds matter here::

    {"type": "assistant", "message": {"content": [{"type": "text", "text": "..."}]}}
    {"type": "result", "session_id": "...", "result": "..."}

Unknown event kinds and unparsable lines are skipped so newer CLI
versions keep working.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TRANSCRIPT_SEPARATOR = "\n\n---\n\n"


@dataclass
class ParsedOutput:
    result: str
    session_id: str | None = None
    transcript: str | None = None


def _str_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_single_json(stdout: str) -> ParsedOutput:
    """Parse ``--output-format json`` output.

    Falls back to the raw text (and no session id) when stdout is not a
    JSON object, rather than failing the whole call.
    """
    try:
        data = json.loads(stdout)
    except (json.JSONDecodeError, ValueError):
        logger.warning(
            "Failed to parse JSON output (%d chars), returning raw output",
            len(stdout),
        )
        return ParsedOutput(result=stdout)

    if not isinstance(data, dict):
        logger.warning(
            "JSON output is a %s, not an object; returning raw output",
            type(data).__name__,
        )
        return ParsedOutput(result=stdout)

    result = data.get("result")
    if result is None:
        result = ""
    elif not isinstance(result, str):
        result = json.dumps(result)
    return ParsedOutput(
        result=result,
        session_id=_str_or_none(data.get("session_id")),
    )


def _assistant_text_blocks(event: dict) -> list[str]:
    message = event.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    texts: list[str] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "text":
            continue
        text = block.get("text")
        if isinstance(text, str) and text:
            texts.append(text)
    return texts


def parse_stream_json(stdout: str) -> ParsedOutput:
    """Parse ``--output-format stream-json`` output.

    Assistant text blocks are joined, in arrival order, into the
    transcript. The last ``result`` event supplies the result text and
    session id.
    """
    transcript_parts: list[str] = []
    result = ""
    session_id: str | None = None
    skipped = 0

    for line in stdout.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            event = json.loads(stripped)
        except (json.JSONDecodeError, ValueError):
            skipped += 1
            continue
        if not isinstance(event, dict):
            skipped += 1
            continue

        etype = event.get("type")
        if etype == "assistant":
            transcript_parts.extend(_assistant_text_blocks(event))
        elif etype == "result":
            value = event.get("result")
            result = value if isinstance(value, str) else ""
            session_id = _str_or_none(event.get("session_id"))

    if skipped:
        logger.debug("Skipped %d unparsable stream-json line(s)", skipped)

    return ParsedOutput(
        result=result,
        session_id=session_id,
        transcript=TRANSCRIPT_SEPARATOR.join(transcript_parts) or None,
    )
