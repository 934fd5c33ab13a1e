"""Per-message request flow.

Turns inbound chat messages into queued CLI executions:

1. check the author against the allow list
2. handle bot commands (``/project``, ``/status``, ``/plan``)
3. make sure the thread has a project; if not, park the prompt and
   show the project menu
4. submit to the execution queue and reply with the formatted result

Project menu choices arrive via handle_project_selection(), which
resets the thread's session, sets its working directory and runs the
parked prompt, if any.
"""
from __future__ import annotations

import logging
import re

from ccbot.adapters.base import (
    ChannelTarget,
    InboundMessage,
    Replyable,
    SelectionInteraction,
    SentMessage,
)

from .access import AccessControl
from .execution_queue import ExecutionQueue
from .models import ExecutionRequest, ExecutionResult, PendingPrompt
from .output import format_output, timestamped_file_name
from .projects import ProjectScanner
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)

MAX_MENU_OPTIONS = 25

PROJECT_COMMAND = "/project"
STATUS_COMMAND = "/status"
PLAN_COMMAND = "/plan"
_PLAN_RE = re.compile(r"^/plan(?:\s+(.*))?$", re.DOTALL)

MSG_NOT_ALLOWED = "You are not allowed to use this bot."
MSG_USAGE = "Please enter a command. Example: @Bot review this code"
MSG_NO_PROJECTS = "Error: no projects are available. Check the configuration."
MSG_SELECT_PROJECT = "Select a project:"
MSG_PROCESSING = "Processing..."
MSG_QUEUED = "Queued at position {position}. Processing will start shortly..."
MSG_FILE_ATTACHED = "The output is long, so it is attached as a file."
MSG_PLAN_ATTACHED = "Full plan transcript attached."
MSG_ERROR = "Error: {error}"
MSG_UNKNOWN_ERROR = "unknown error"
MSG_SYSTEM_ERROR = "A system error occurred. Please try again later."
MSG_NO_SELECTION = "Error: no project was selected."
MSG_INVALID_PROJECT = "Error: an invalid project was selected."
MSG_PROJECT_SELECTED = 'Selected project "{name}". Enter a command.'
MSG_PROJECT_PROCESSING = 'Processing in project "{name}"...'


def extract_prompt(content: str, bot_user_id: str | None) -> str:
    """Remove mentions of the bot (``<@id>`` / ``<@!id>``) and trim."""
    if bot_user_id:
        content = re.sub(rf"<@!?{re.escape(bot_user_id)}>", "", content)
    return content.strip()


def split_plan_command(prompt: str) -> tuple[str, bool]:
    """Return (prompt, plan_mode) for a ``/plan <prompt>`` message."""
    match = _PLAN_RE.match(prompt)
    if match:
        return (match.group(1) or "").strip(), True
    return prompt, False


class RequestOrchestrator:
    """Routes chat events to the session registry and execution queue."""

    def __init__(
        self,
        queue: ExecutionQueue,
        sessions: SessionRegistry,
        projects: ProjectScanner,
        access: AccessControl,
        bot_user_id: str | None = None,
    ) -> None:
        self._queue = queue
        self._sessions = sessions
        self._projects = projects
        self._access = access
        self.bot_user_id = bot_user_id

    # ── Inbound messages ───────────────────────────────────────

    async def handle_message(self, message: InboundMessage) -> None:
        if not self._access.is_allowed(message.author_id):
            await message.reply(MSG_NOT_ALLOWED)
            return

        thread_id = message.thread_id
        prompt = extract_prompt(message.content, self.bot_user_id)

        if prompt == PROJECT_COMMAND:
            await self._show_project_selector(message, thread_id)
            return
        if prompt == STATUS_COMMAND:
            await message.reply(self.status_text(thread_id))
            return

        prompt, plan_mode = split_plan_command(prompt)
        if not prompt:
            await message.reply(MSG_USAGE)
            return

        logger.info(
            "Processing command: user=%s thread=%s prompt_len=%d plan=%s",
            message.author_id, thread_id, len(prompt), plan_mode,
        )

        # Snapshot before any await; a sweep or reset may replace the session
        session = self._sessions.get_or_create(thread_id)
        cwd = session.cwd
        if cwd is None:
            await self._show_project_selector(
                message, thread_id, prompt=prompt, plan_mode=plan_mode
            )
            return
        request = ExecutionRequest(
            prompt=prompt,
            resume_session_id=session.external_session_id,
            cwd=cwd,
            plan_mode=plan_mode,
        )

        status: SentMessage | None = None
        try:
            status = await message.reply(self._progress_text())
            result = await self._queue.submit(request)
            await self._delete_quietly(status)
            status = None
            await self._deliver(thread_id, message, result)
            logger.info(
                "Command finished: user=%s thread=%s success=%s session_id=%s",
                message.author_id, thread_id, result.success, result.session_id,
            )
        except Exception:
            logger.exception(
                "Error processing command: user=%s thread=%s",
                message.author_id, thread_id,
            )
            if status is not None:
                await self._delete_quietly(status)
            await message.reply(MSG_SYSTEM_ERROR)

    # ── Project selection ──────────────────────────────────────

    async def handle_project_selection(self, interaction: SelectionInteraction) -> None:
        thread_id = interaction.thread_id
        selected = interaction.values[0] if interaction.values else ""
        if not selected:
            await interaction.update(MSG_NO_SELECTION)
            return

        logger.info(
            "Project selected: user=%s thread=%s project=%s",
            interaction.user_id, thread_id, selected,
        )

        project_path = self._projects.resolve_path(selected)
        if not project_path or not self._projects.is_path_within_base(project_path):
            await interaction.update(MSG_INVALID_PROJECT)
            return

        # Fresh session so the previous project's CLI context is not resumed
        self._sessions.reset(thread_id)
        self._sessions.set_cwd(thread_id, project_path)

        pending = self._sessions.consume_pending_prompt(thread_id)
        if pending is None:
            await interaction.update(MSG_PROJECT_SELECTED.format(name=selected))
            return

        await interaction.update(MSG_PROJECT_PROCESSING.format(name=selected))

        try:
            result = await self._queue.submit(
                ExecutionRequest(
                    prompt=pending.prompt,
                    cwd=project_path,
                    plan_mode=pending.plan_mode,
                )
            )
            target = await self._reply_target(interaction, pending)
            await self._deliver(thread_id, target, result)
            logger.info(
                "Command finished after project selection: user=%s thread=%s success=%s",
                interaction.user_id, thread_id, result.success,
            )
        except Exception:
            logger.exception(
                "Error processing command after project selection: thread=%s",
                thread_id,
            )
            await interaction.send(MSG_SYSTEM_ERROR)

    # ── Status ─────────────────────────────────────────────────

    def status_text(self, thread_id: str) -> str:
        if self._queue.is_running:
            queue_line = (
                f"Queue: busy, {self._queue.size}/{self._queue.max_size} waiting"
            )
        else:
            queue_line = "Queue: idle"
        cwd = self._sessions.get_cwd(thread_id)
        project_line = f"Project: {cwd}" if cwd else "Project: not selected"
        external = self._sessions.get_external_session_id(thread_id)
        session_line = f"Session: {external}" if external else "Session: new"
        return "\n".join([queue_line, project_line, session_line])

    # ── Helpers ────────────────────────────────────────────────

    def _progress_text(self) -> str:
        if self._queue.is_running:
            return MSG_QUEUED.format(position=self._queue.size + 1)
        return MSG_PROCESSING

    async def _show_project_selector(
        self,
        message: InboundMessage,
        thread_id: str,
        prompt: str = "",
        plan_mode: bool = False,
    ) -> None:
        projects = self._projects.list_projects()
        if not projects:
            await message.reply(MSG_NO_PROJECTS)
            return

        if prompt:
            self._sessions.get_or_create(thread_id)
            self._sessions.set_pending_prompt(
                thread_id,
                PendingPrompt(
                    prompt=prompt,
                    message_id=message.message_id,
                    channel_id=message.channel_id,
                    user_id=message.author_id,
                    plan_mode=plan_mode,
                ),
            )

        await message.reply_menu(MSG_SELECT_PROJECT, projects[:MAX_MENU_OPTIONS])
        logger.debug(
            "Displayed project selector: thread=%s projects=%d",
            thread_id, len(projects),
        )

    async def _reply_target(
        self, interaction: SelectionInteraction, pending: PendingPrompt
    ) -> Replyable:
        try:
            original = await interaction.fetch_message(pending.message_id)
        except Exception:
            logger.warning(
                "Could not fetch original message %s", pending.message_id,
                exc_info=True,
            )
            original = None
        return original if original is not None else ChannelTarget(interaction)

    async def _deliver(
        self, thread_id: str, target: Replyable, result: ExecutionResult
    ) -> None:
        if not result.success:
            await target.reply(
                MSG_ERROR.format(error=result.error or MSG_UNKNOWN_ERROR)
            )
            return

        if result.session_id:
            self._sessions.set_external_session_id(thread_id, result.session_id)

        directive = format_output(result.output)
        if directive.is_file:
            await target.reply_file(
                MSG_FILE_ATTACHED, directive.file_name or "claude-response.txt",
                directive.content,
            )
        else:
            await target.reply(directive.content)

        if result.transcript:
            await target.reply_file(
                MSG_PLAN_ATTACHED,
                timestamped_file_name("claude-plan"),
                result.transcript,
            )

    @staticmethod
    async def _delete_quietly(sent: SentMessage) -> None:
        try:
            await sent.delete()
        except Exception:
            logger.debug("Could not delete status message", exc_info=True)
