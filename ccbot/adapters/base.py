"""Abstract chat-platform objects consumed by the orchestrator.

A gateway wraps its platform's message and interaction types in these
classes. The orchestrator never imports a platform library directly,
which keeps it testable with in-memory fakes.
"""
from __future__ import annotations

import abc

from ccbot.engine.models import ProjectInfo

PROJECT_SELECT_ID = "project_select"


class SentMessage(abc.ABC):
    """A message the bot has sent and may later remove."""

    @abc.abstractmethod
    async def delete(self) -> None:
        """Delete the message. May raise on platform errors."""


class Replyable(abc.ABC):
    """Something the bot can answer with text or a text attachment."""

    @abc.abstractmethod
    async def reply(self, text: str) -> SentMessage:
        """Send *text* in response."""

    @abc.abstractmethod
    async def reply_file(self, text: str, file_name: str, data: str) -> None:
        """Send *text* with *data* attached as a UTF-8 file."""


class InboundMessage(Replyable):
    """A user message addressed to the bot."""

    message_id: str
    author_id: str
    channel_id: str
    # Conversation key: the thread id if the platform has one, else the channel id
    thread_id: str
    content: str

    @abc.abstractmethod
    async def reply_menu(self, text: str, options: list[ProjectInfo]) -> None:
        """Reply with a single-choice menu of *options*."""


class SelectionInteraction(abc.ABC):
    """A user's choice from a menu sent by ``reply_menu``."""

    user_id: str
    thread_id: str
    values: list[str]

    @abc.abstractmethod
    async def update(self, text: str) -> None:
        """Replace the menu message with *text* and remove the menu."""

    @abc.abstractmethod
    async def send(self, text: str) -> None:
        """Post *text* to the interaction's channel."""

    @abc.abstractmethod
    async def send_file(self, text: str, file_name: str, data: str) -> None:
        """Post *text* with an attachment to the interaction's channel."""

    @abc.abstractmethod
    async def fetch_message(self, message_id: str) -> Replyable | None:
        """Look up an earlier message in the channel; None if gone."""


class ChannelTarget(Replyable):
    """Adapts a SelectionInteraction's channel to the Replyable interface."""

    def __init__(self, interaction: SelectionInteraction) -> None:
        self._interaction = interaction

    async def reply(self, text: str) -> SentMessage:
        await self._interaction.send(text)
        return _NullSentMessage()

    async def reply_file(self, text: str, file_name: str, data: str) -> None:
        await self._interaction.send_file(text, file_name, data)


class _NullSentMessage(SentMessage):
    async def delete(self) -> None:
        return None
