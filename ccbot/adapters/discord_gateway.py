"""Discord gateway built on discord.py.

Listens for messages that mention the bot and for project-menu
selections, wraps them in the adapter base classes and hands them to
the RequestOrchestrator.
"""
from __future__ import annotations

import io
import logging

import discord

from ccbot.engine.models import ProjectInfo
from ccbot.engine.orchestrator import RequestOrchestrator

from .base import (
    PROJECT_SELECT_ID,
    InboundMessage,
    Replyable,
    SelectionInteraction,
    SentMessage,
)

logger = logging.getLogger(__name__)

# Discord limits for select menu text fields
_SELECT_TEXT_LIMIT = 100
MENU_PLACEHOLDER = "Select a project"


def thread_id_for(message: discord.Message) -> str:
    """Conversation key: the thread's id inside a thread, else the channel id."""
    if isinstance(message.channel, discord.Thread):
        return str(message.channel.id)
    started = getattr(message, "thread", None)
    if started is not None:
        return str(started.id)
    return str(message.channel.id)


def _text_file(file_name: str, data: str) -> discord.File:
    return discord.File(io.BytesIO(data.encode("utf-8")), filename=file_name)


class DiscordSentMessage(SentMessage):
    def __init__(self, message: discord.Message) -> None:
        self._message = message

    async def delete(self) -> None:
        await self._message.delete()


class DiscordMessage(InboundMessage):
    """InboundMessage backed by a ``discord.Message``."""

    def __init__(
        self,
        message: discord.Message,
        orchestrator: RequestOrchestrator | None = None,
    ) -> None:
        self._message = message
        self._orchestrator = orchestrator
        self.message_id = str(message.id)
        self.author_id = str(message.author.id)
        self.channel_id = str(message.channel.id)
        self.thread_id = thread_id_for(message)
        self.content = message.content or ""

    async def reply(self, text: str) -> SentMessage:
        sent = await self._message.reply(text)
        return DiscordSentMessage(sent)

    async def reply_file(self, text: str, file_name: str, data: str) -> None:
        await self._message.reply(content=text, file=_text_file(file_name, data))

    async def reply_menu(self, text: str, options: list[ProjectInfo]) -> None:
        if self._orchestrator is None:
            raise RuntimeError("reply_menu requires an orchestrator")
        await self._message.reply(
            content=text, view=ProjectSelectView(self._orchestrator, options)
        )


class DiscordSelection(SelectionInteraction):
    """SelectionInteraction backed by a component ``discord.Interaction``."""

    def __init__(self, interaction: discord.Interaction, values: list[str]) -> None:
        self._interaction = interaction
        self.user_id = str(interaction.user.id)
        self.thread_id = str(interaction.channel_id)
        self.values = list(values)

    async def update(self, text: str) -> None:
        await self._interaction.response.edit_message(content=text, view=None)

    async def send(self, text: str) -> None:
        channel = self._interaction.channel
        if channel is None:
            logger.error("No channel to send to for thread %s", self.thread_id)
            return
        await channel.send(text)

    async def send_file(self, text: str, file_name: str, data: str) -> None:
        channel = self._interaction.channel
        if channel is None:
            logger.error("No channel to send to for thread %s", self.thread_id)
            return
        await channel.send(content=text, file=_text_file(file_name, data))

    async def fetch_message(self, message_id: str) -> Replyable | None:
        channel = self._interaction.channel
        if channel is None or not hasattr(channel, "fetch_message"):
            return None
        try:
            message = await channel.fetch_message(int(message_id))
        except (discord.NotFound, discord.Forbidden):
            logger.warning("Could not fetch original message %s", message_id)
            return None
        return DiscordMessage(message)


class ProjectSelectView(discord.ui.View):
    """One-shot select menu listing the available projects.

    No timeout by default: the pending prompt stays selectable until used.
    """

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        projects: list[ProjectInfo],
        timeout: float | None = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self._orchestrator = orchestrator
        select = discord.ui.Select(
            custom_id=PROJECT_SELECT_ID,
            placeholder=MENU_PLACEHOLDER,
            options=[
                discord.SelectOption(
                    label=project.name[:_SELECT_TEXT_LIMIT],
                    value=project.name[:_SELECT_TEXT_LIMIT],
                    description=project.path[:_SELECT_TEXT_LIMIT],
                )
                for project in projects
            ],
        )
        select.callback = self._on_select
        self._select = select
        self.add_item(select)

    async def _on_select(self, interaction: discord.Interaction) -> None:
        await self._orchestrator.handle_project_selection(
            DiscordSelection(interaction, self._select.values)
        )
        self.stop()


class DiscordGateway:
    """Owns the discord.Client and routes its events."""

    def __init__(self, token: str, orchestrator: RequestOrchestrator) -> None:
        self._token = token
        self._orchestrator = orchestrator

        intents = discord.Intents.default()
        intents.message_content = True
        self._client = discord.Client(intents=intents)

        @self._client.event
        async def on_ready() -> None:
            await self._on_ready()

        @self._client.event
        async def on_message(message: discord.Message) -> None:
            await self._on_message(message)

    @property
    def client(self) -> discord.Client:
        return self._client

    async def start(self) -> None:
        """Log in and process events until the client is closed."""
        try:
            await self._client.start(self._token)
        except discord.LoginFailure:
            logger.error("Failed to log in to Discord: invalid token")
            raise

    async def close(self) -> None:
        if not self._client.is_closed():
            await self._client.close()

    async def _on_ready(self) -> None:
        user = self._client.user
        if user is None:
            return
        self._orchestrator.bot_user_id = str(user.id)
        logger.info("Bot is ready and connected as %s (id=%s)", user, user.id)

    async def _on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        user = self._client.user
        if user is None:
            return
        if not any(mentioned.id == user.id for mentioned in message.mentions):
            return

        logger.debug(
            "Received mention: message=%s author=%s channel=%s",
            message.id, message.author.id, message.channel.id,
        )
        await self._orchestrator.handle_message(
            DiscordMessage(message, self._orchestrator)
        )
