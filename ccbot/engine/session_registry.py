"""Per-thread session state.

Tracks, for every conversation thread, the selected working directory,
the CLI session id to pass to ``--resume``, and at most one prompt that
is waiting for a project to be selected. Entries are reaped after a
period of inactivity.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from .models import PendingPrompt, SessionInfo

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60.0


class SessionRegistry:
    """In-memory session map keyed by thread id."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionInfo] = {}
        self._pending: dict[str, PendingPrompt] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._sessions

    # ── Sessions ───────────────────────────────────────────────

    def get_or_create(self, thread_id: str) -> SessionInfo:
        """Return the thread's session, creating it on first use."""
        existing = self._sessions.get(thread_id)
        if existing is not None:
            existing.touch()
            logger.debug(
                "Reusing session %s for thread %s", existing.session_id, thread_id
            )
            return existing

        session = SessionInfo(thread_id=thread_id)
        self._sessions[thread_id] = session
        logger.info(
            "Created session %s for thread %s", session.session_id, thread_id
        )
        return session

    def get(self, thread_id: str) -> SessionInfo | None:
        return self._sessions.get(thread_id)

    def delete(self, thread_id: str) -> bool:
        """Remove the thread's session and its pending prompt."""
        deleted = self._sessions.pop(thread_id, None) is not None
        self._pending.pop(thread_id, None)
        if deleted:
            logger.info("Deleted session for thread %s", thread_id)
        return deleted

    def reset(self, thread_id: str) -> SessionInfo:
        """Replace the thread's session with a fresh one.

        Used when a project is (re)selected so the CLI context of the
        old project is not resumed in the new one.
        """
        self._sessions.pop(thread_id, None)
        return self.get_or_create(thread_id)

    # ── Working directory ──────────────────────────────────────

    def set_cwd(self, thread_id: str, cwd: str) -> None:
        session = self._sessions.get(thread_id)
        if session is None:
            logger.debug("set_cwd ignored: no session for thread %s", thread_id)
            return
        session.cwd = cwd
        session.touch()
        logger.info("Thread %s working directory set to %s", thread_id, cwd)

    def get_cwd(self, thread_id: str) -> str | None:
        session = self._sessions.get(thread_id)
        return session.cwd if session is not None else None

    def has_cwd(self, thread_id: str) -> bool:
        return self.get_cwd(thread_id) is not None

    # ── CLI session id ─────────────────────────────────────────

    def set_external_session_id(self, thread_id: str, session_id: str) -> None:
        session = self._sessions.get(thread_id)
        if session is None:
            return
        session.external_session_id = session_id
        session.touch()
        logger.info("Thread %s CLI session id set to %s", thread_id, session_id)

    def get_external_session_id(self, thread_id: str) -> str | None:
        session = self._sessions.get(thread_id)
        return session.external_session_id if session is not None else None

    # ── Pending prompts ────────────────────────────────────────

    def set_pending_prompt(self, thread_id: str, pending: PendingPrompt) -> None:
        """Store *pending*, replacing any earlier one for the thread."""
        self._pending[thread_id] = pending
        logger.debug(
            "Stored pending prompt for thread %s (message %s)",
            thread_id, pending.message_id,
        )

    def get_pending_prompt(self, thread_id: str) -> PendingPrompt | None:
        return self._pending.get(thread_id)

    def consume_pending_prompt(self, thread_id: str) -> PendingPrompt | None:
        """Return and remove the pending prompt; None on later calls."""
        pending = self._pending.pop(thread_id, None)
        if pending is not None:
            logger.debug("Consumed pending prompt for thread %s", thread_id)
        return pending

    # ── Garbage collection ─────────────────────────────────────

    def cleanup(
        self,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        now: datetime | None = None,
    ) -> int:
        """Drop sessions idle for longer than *max_age_seconds*.

        Each removed session takes its pending prompt with it. Returns
        the number of sessions removed.
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(
            seconds=max_age_seconds
        )
        stale = [
            thread_id
            for thread_id, session in self._sessions.items()
            if session.last_used_at < cutoff
        ]
        for thread_id in stale:
            del self._sessions[thread_id]
            self._pending.pop(thread_id, None)

        if stale:
            logger.info("Cleaned up %d idle session(s)", len(stale))
        return len(stale)
