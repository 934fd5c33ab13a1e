"""Tests for SessionRegistry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ccbot.engine.models import PendingPrompt
from ccbot.engine.session_registry import SessionRegistry


def _pending(prompt: str = "do it", message_id: str = "m1") -> PendingPrompt:
    return PendingPrompt(
        prompt=prompt, message_id=message_id, channel_id="c1", user_id="u1"
    )


def test_get_or_create_returns_same_session():
    registry = SessionRegistry()
    first = registry.get_or_create("t1")
    second = registry.get_or_create("t1")
    assert first is second
    assert len(registry) == 1
    assert "t1" in registry
    assert "t2" not in registry


def test_get_or_create_touches_existing():
    registry = SessionRegistry()
    session = registry.get_or_create("t1")
    old = datetime(2000, 1, 1, tzinfo=timezone.utc)
    session.last_used_at = old
    registry.get_or_create("t1")
    assert session.last_used_at > old


def test_cwd_and_external_session_id():
    registry = SessionRegistry()
    assert not registry.has_cwd("t1")

    registry.get_or_create("t1")
    registry.set_cwd("t1", "/work/app")
    registry.set_external_session_id("t1", "cli-1")

    assert registry.has_cwd("t1")
    assert registry.get_cwd("t1") == "/work/app"
    assert registry.get_external_session_id("t1") == "cli-1"


def test_setters_ignore_unknown_thread():
    registry = SessionRegistry()
    registry.set_cwd("ghost", "/x")
    registry.set_external_session_id("ghost", "id")
    assert registry.get("ghost") is None
    assert registry.get_cwd("ghost") is None
    assert registry.get_external_session_id("ghost") is None


def test_reset_discards_cli_session_and_cwd():
    registry = SessionRegistry()
    original = registry.get_or_create("t1")
    registry.set_cwd("t1", "/old")
    registry.set_external_session_id("t1", "cli-1")

    fresh = registry.reset("t1")

    assert fresh is not original
    assert fresh.session_id != original.session_id
    assert registry.get_external_session_id("t1") is None
    assert registry.get_cwd("t1") is None


def test_reset_keeps_pending_prompt():
    registry = SessionRegistry()
    registry.get_or_create("t1")
    registry.set_pending_prompt("t1", _pending())

    registry.reset("t1")

    assert registry.get_pending_prompt("t1") is not None


def test_pending_prompt_consumed_once():
    registry = SessionRegistry()
    registry.set_pending_prompt("t1", _pending("first", "m1"))
    registry.set_pending_prompt("t1", _pending("second", "m2"))

    assert registry.get_pending_prompt("t1").prompt == "second"
    consumed = registry.consume_pending_prompt("t1")
    assert consumed.prompt == "second"
    assert consumed.message_id == "m2"
    assert registry.consume_pending_prompt("t1") is None


def test_delete_removes_session_and_pending_prompt():
    registry = SessionRegistry()
    registry.get_or_create("t1")
    registry.set_pending_prompt("t1", _pending())

    assert registry.delete("t1") is True
    assert registry.get("t1") is None
    assert registry.get_pending_prompt("t1") is None
    assert registry.delete("t1") is False


def test_cleanup_removes_only_idle_sessions():
    registry = SessionRegistry()
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    stale = registry.get_or_create("stale")
    stale.last_used_at = now - timedelta(hours=25)
    registry.set_pending_prompt("stale", _pending())

    fresh = registry.get_or_create("fresh")
    fresh.last_used_at = now - timedelta(hours=1)

    removed = registry.cleanup(max_age_seconds=24 * 3600, now=now)

    assert removed == 1
    assert "stale" not in registry
    assert "fresh" in registry
    assert registry.get_pending_prompt("stale") is None


def test_cleanup_with_nothing_stale():
    registry = SessionRegistry()
    registry.get_or_create("t1")
    assert registry.cleanup() == 0
    assert len(registry) == 1
