"""User allow-list check."""
from __future__ import annotations

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)


class AccessControl:
    def __init__(self, allowed_user_ids: Iterable[str]) -> None:
        self._allowed = frozenset(str(uid) for uid in allowed_user_ids)

    def is_allowed(self, user_id: str) -> bool:
        allowed = str(user_id) in self._allowed
        if not allowed:
            logger.warning("Unauthorized user %s attempted to use the bot", user_id)
        return allowed
