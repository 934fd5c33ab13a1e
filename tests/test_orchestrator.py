"""Tests for RequestOrchestrator using in-memory chat fakes."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from ccbot.adapters.base import (
    InboundMessage,
    Replyable,
    SelectionInteraction,
    SentMessage,
)
from ccbot.engine.access import AccessControl
from ccbot.engine.execution_queue import QUEUE_FULL_MESSAGE, ExecutionQueue
from ccbot.engine.models import ExecutionRequest, ExecutionResult, FailureKind
from ccbot.engine.orchestrator import (
    MAX_MENU_OPTIONS,
    MSG_ERROR,
    MSG_FILE_ATTACHED,
    MSG_INVALID_PROJECT,
    MSG_NO_PROJECTS,
    MSG_NO_SELECTION,
    MSG_NOT_ALLOWED,
    MSG_PLAN_ATTACHED,
    MSG_PROCESSING,
    MSG_PROJECT_PROCESSING,
    MSG_PROJECT_SELECTED,
    MSG_SELECT_PROJECT,
    MSG_USAGE,
    RequestOrchestrator,
    extract_prompt,
    split_plan_command,
)
from ccbot.engine.projects import ProjectScanner
from ccbot.engine.runner import Runner
from ccbot.engine.session_registry import SessionRegistry

BOT_ID = "999"
USER_ID = "111"
THREAD_ID = "t1"


# ── Fakes ────────────────────────────────────────────────────


class FakeSent(SentMessage):
    def __init__(self, text: str) -> None:
        self.text = text
        self.deleted = False

    async def delete(self) -> None:
        self.deleted = True


class FakeMessage(InboundMessage):
    def __init__(
        self,
        content: str,
        author_id: str = USER_ID,
        thread_id: str = THREAD_ID,
        message_id: str = "m1",
    ) -> None:
        self.message_id = message_id
        self.author_id = author_id
        self.channel_id = thread_id
        self.thread_id = thread_id
        self.content = content
        self.replies: list[str] = []
        self.sent: list[FakeSent] = []
        self.files: list[tuple[str, str, str]] = []
        self.menus: list[tuple[str, list]] = []

    async def reply(self, text: str) -> SentMessage:
        self.replies.append(text)
        sent = FakeSent(text)
        self.sent.append(sent)
        return sent

    async def reply_file(self, text: str, file_name: str, data: str) -> None:
        self.files.append((text, file_name, data))

    async def reply_menu(self, text: str, options: list) -> None:
        self.menus.append((text, list(options)))


class FakeSelection(SelectionInteraction):
    def __init__(
        self,
        values: list[str],
        original: Replyable | None = None,
        user_id: str = USER_ID,
        thread_id: str = THREAD_ID,
    ) -> None:
        self.user_id = user_id
        self.thread_id = thread_id
        self.values = values
        self.original = original
        self.updates: list[str] = []
        self.channel_messages: list[str] = []
        self.channel_files: list[tuple[str, str, str]] = []
        self.fetched: list[str] = []

    async def update(self, text: str) -> None:
        self.updates.append(text)

    async def send(self, text: str) -> None:
        self.channel_messages.append(text)

    async def send_file(self, text: str, file_name: str, data: str) -> None:
        self.channel_files.append((text, file_name, data))

    async def fetch_message(self, message_id: str) -> Replyable | None:
        self.fetched.append(message_id)
        return self.original


class FakeRunner(Runner):
    def __init__(self, *results: ExecutionResult) -> None:
        self.results = list(results)
        self.requests: list[ExecutionRequest] = []
        self.gate: asyncio.Event | None = None

    async def run(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            return self.results.pop(0)
        return ExecutionResult.ok("done", session_id="sess-default")


# ── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    base = tmp_path / "projects"
    base.mkdir()
    for name in ("alpha", "beta"):
        (base / name).mkdir()
    return base


def _build(base_dir: Path, runner: FakeRunner, max_size: int = 5):
    sessions = SessionRegistry()
    queue = ExecutionQueue(runner, max_size=max_size, wait_timeout_seconds=5.0)
    orchestrator = RequestOrchestrator(
        queue=queue,
        sessions=sessions,
        projects=ProjectScanner(base_dir),
        access=AccessControl([USER_ID]),
        bot_user_id=BOT_ID,
    )
    return orchestrator, sessions


def _with_project(sessions: SessionRegistry, path: Path) -> None:
    sessions.get_or_create(THREAD_ID)
    sessions.set_cwd(THREAD_ID, str(path.resolve()))


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ── Helpers ──────────────────────────────────────────────────


def test_extract_prompt_strips_mentions():
    assert extract_prompt(f"<@{BOT_ID}> hello there", BOT_ID) == "hello there"
    assert extract_prompt(f"<@!{BOT_ID}>  fix <@{BOT_ID}> it ", BOT_ID) == "fix  it"
    assert extract_prompt("<@123> other", BOT_ID) == "<@123> other"
    assert extract_prompt("  raw  ", None) == "raw"


def test_split_plan_command():
    assert split_plan_command("/plan add a cache") == ("add a cache", True)
    assert split_plan_command("/plan\nmulti\nline") == ("multi\nline", True)
    assert split_plan_command("/plan") == ("", True)
    assert split_plan_command("/planet facts") == ("/planet facts", False)
    assert split_plan_command("explain /plan") == ("explain /plan", False)


# ── Messages ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unauthorized_user_is_rejected(base_dir):
    runner = FakeRunner()
    orchestrator, sessions = _build(base_dir, runner)

    message = FakeMessage(f"<@{BOT_ID}> hi", author_id="intruder")
    await orchestrator.handle_message(message)

    assert message.replies == [MSG_NOT_ALLOWED]
    assert runner.requests == []
    assert len(sessions) == 0


@pytest.mark.asyncio
async def test_empty_prompt_gets_usage_hint(base_dir):
    orchestrator, _ = _build(base_dir, FakeRunner())
    message = FakeMessage(f"<@{BOT_ID}>   ")

    await orchestrator.handle_message(message)

    assert message.replies == [MSG_USAGE]


@pytest.mark.asyncio
async def test_first_prompt_without_project_shows_menu(base_dir):
    runner = FakeRunner()
    orchestrator, sessions = _build(base_dir, runner)
    message = FakeMessage(f"<@{BOT_ID}> review the code")

    await orchestrator.handle_message(message)

    assert runner.requests == []
    assert len(message.menus) == 1
    text, options = message.menus[0]
    assert text == MSG_SELECT_PROJECT
    assert [p.name for p in options] == ["alpha", "beta"]
    pending = sessions.get_pending_prompt(THREAD_ID)
    assert pending.prompt == "review the code"
    assert pending.message_id == "m1"
    assert pending.user_id == USER_ID


@pytest.mark.asyncio
async def test_menu_is_capped(tmp_path):
    base = tmp_path / "many"
    base.mkdir()
    for i in range(MAX_MENU_OPTIONS + 5):
        (base / f"p{i:02d}").mkdir()
    orchestrator, _ = _build(base, FakeRunner())
    message = FakeMessage(f"<@{BOT_ID}> /project")

    await orchestrator.handle_message(message)

    assert len(message.menus[0][1]) == MAX_MENU_OPTIONS


@pytest.mark.asyncio
async def test_no_projects_available(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    orchestrator, sessions = _build(empty, FakeRunner())
    message = FakeMessage(f"<@{BOT_ID}> hello")

    await orchestrator.handle_message(message)

    assert message.replies == [MSG_NO_PROJECTS]
    assert message.menus == []
    assert sessions.get_pending_prompt(THREAD_ID) is None


@pytest.mark.asyncio
async def test_project_command_shows_menu_without_pending_prompt(base_dir):
    orchestrator, sessions = _build(base_dir, FakeRunner())
    _with_project(sessions, base_dir / "alpha")
    message = FakeMessage(f"<@{BOT_ID}> /project")

    await orchestrator.handle_message(message)

    assert len(message.menus) == 1
    assert sessions.get_pending_prompt(THREAD_ID) is None


@pytest.mark.asyncio
async def test_prompt_with_project_runs_and_replies_inline(base_dir):
    runner = FakeRunner(ExecutionResult.ok("Hello world", session_id="abc-123"))
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    message = FakeMessage(f"<@{BOT_ID}> say hi")

    await orchestrator.handle_message(message)

    assert message.replies == [MSG_PROCESSING, "Hello world"]
    assert message.sent[0].deleted
    request = runner.requests[0]
    assert request.prompt == "say hi"
    assert request.cwd == str((base_dir / "alpha").resolve())
    assert request.resume_session_id is None
    assert not request.plan_mode
    assert sessions.get_external_session_id(THREAD_ID) == "abc-123"


@pytest.mark.asyncio
async def test_follow_up_resumes_cli_session(base_dir):
    runner = FakeRunner(
        ExecutionResult.ok("first", session_id="abc-123"),
        ExecutionResult.ok("second", session_id="abc-123"),
    )
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")

    await orchestrator.handle_message(FakeMessage(f"<@{BOT_ID}> one"))
    await orchestrator.handle_message(FakeMessage(f"<@{BOT_ID}> two", message_id="m2"))

    assert runner.requests[0].resume_session_id is None
    assert runner.requests[1].resume_session_id == "abc-123"


@pytest.mark.asyncio
async def test_session_swept_during_progress_reply_keeps_project(base_dir):
    runner = FakeRunner(ExecutionResult.ok("still ran", session_id="abc-123"))
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    sessions.set_external_session_id(THREAD_ID, "old-session")

    class SweptMessage(FakeMessage):
        async def reply(self, text: str) -> SentMessage:
            sessions.delete(THREAD_ID)
            return await super().reply(text)

    message = SweptMessage(f"<@{BOT_ID}> keep going")
    await orchestrator.handle_message(message)

    request = runner.requests[0]
    assert request.cwd == str((base_dir / "alpha").resolve())
    assert request.resume_session_id == "old-session"
    assert message.menus == []
    assert message.replies == [MSG_PROCESSING, "still ran"]


@pytest.mark.asyncio
async def test_long_output_is_attached(base_dir):
    long_text = "x" * 3000
    runner = FakeRunner(ExecutionResult.ok(long_text))
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    message = FakeMessage(f"<@{BOT_ID}> dump")

    await orchestrator.handle_message(message)

    assert len(message.files) == 1
    text, file_name, data = message.files[0]
    assert text == MSG_FILE_ATTACHED
    assert file_name.startswith("claude-response-") and file_name.endswith(".txt")
    assert data == long_text


@pytest.mark.asyncio
async def test_failure_is_reported(base_dir):
    runner = FakeRunner(
        ExecutionResult.failed(FailureKind.EXIT_FAILURE, "rate limited")
    )
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    sessions.set_external_session_id(THREAD_ID, "keep-me")
    message = FakeMessage(f"<@{BOT_ID}> go")

    await orchestrator.handle_message(message)

    assert message.replies[-1] == MSG_ERROR.format(error="rate limited")
    assert sessions.get_external_session_id(THREAD_ID) == "keep-me"


@pytest.mark.asyncio
async def test_plan_command_uses_plan_mode_and_attaches_transcript(base_dir):
    runner = FakeRunner(
        ExecutionResult.ok("Plan summary", session_id="p1", transcript="Step 1\n\n---\n\nStep 2")
    )
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    message = FakeMessage(f"<@{BOT_ID}> /plan add caching")

    await orchestrator.handle_message(message)

    request = runner.requests[0]
    assert request.plan_mode
    assert request.prompt == "add caching"
    assert "Plan summary" in message.replies
    assert message.files[-1][0] == MSG_PLAN_ATTACHED
    assert message.files[-1][1].startswith("claude-plan-")
    assert message.files[-1][2] == "Step 1\n\n---\n\nStep 2"


@pytest.mark.asyncio
async def test_bare_plan_command_gets_usage_hint(base_dir):
    runner = FakeRunner()
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    message = FakeMessage(f"<@{BOT_ID}> /plan")

    await orchestrator.handle_message(message)

    assert message.replies == [MSG_USAGE]
    assert runner.requests == []


@pytest.mark.asyncio
async def test_status_command(base_dir):
    orchestrator, sessions = _build(base_dir, FakeRunner())
    message = FakeMessage(f"<@{BOT_ID}> /status")

    await orchestrator.handle_message(message)
    assert "Queue: idle" in message.replies[0]
    assert "Project: not selected" in message.replies[0]

    _with_project(sessions, base_dir / "beta")
    sessions.set_external_session_id(THREAD_ID, "s-42")
    text = orchestrator.status_text(THREAD_ID)
    assert "beta" in text
    assert "s-42" in text


@pytest.mark.asyncio
async def test_second_request_reports_queue_position(base_dir):
    runner = FakeRunner()
    runner.gate = asyncio.Event()
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")

    first = FakeMessage(f"<@{BOT_ID}> one")
    second = FakeMessage(f"<@{BOT_ID}> two", message_id="m2")
    first_task = asyncio.create_task(orchestrator.handle_message(first))
    await _settle()
    second_task = asyncio.create_task(orchestrator.handle_message(second))
    await _settle()

    assert first.replies[0] == MSG_PROCESSING
    assert second.replies[0].startswith("Queued at position 1")

    runner.gate.set()
    await asyncio.gather(first_task, second_task)
    assert [r.prompt for r in runner.requests] == ["one", "two"]


@pytest.mark.asyncio
async def test_queue_full_is_reported(base_dir):
    runner = FakeRunner()
    runner.gate = asyncio.Event()
    orchestrator, sessions = _build(base_dir, runner, max_size=0)
    _with_project(sessions, base_dir / "alpha")

    first = FakeMessage(f"<@{BOT_ID}> one")
    first_task = asyncio.create_task(orchestrator.handle_message(first))
    await _settle()

    rejected = FakeMessage(f"<@{BOT_ID}> two", message_id="m2")
    await orchestrator.handle_message(rejected)

    assert rejected.replies[-1] == MSG_ERROR.format(error=QUEUE_FULL_MESSAGE)
    assert rejected.sent[0].deleted

    runner.gate.set()
    await first_task
    assert [r.prompt for r in runner.requests] == ["one"]


# ── Project selection ────────────────────────────────────────


@pytest.mark.asyncio
async def test_selection_runs_pending_prompt_on_original_message(base_dir):
    runner = FakeRunner(ExecutionResult.ok("Reviewed", session_id="sess-1"))
    orchestrator, sessions = _build(base_dir, runner)
    original = FakeMessage(f"<@{BOT_ID}> review it")
    await orchestrator.handle_message(original)

    selection = FakeSelection(["alpha"], original=original)
    await orchestrator.handle_project_selection(selection)

    assert selection.updates == [MSG_PROJECT_PROCESSING.format(name="alpha")]
    assert selection.fetched == ["m1"]
    request = runner.requests[0]
    assert request.prompt == "review it"
    assert request.cwd == str((base_dir / "alpha").resolve())
    assert request.resume_session_id is None
    assert original.replies == ["Reviewed"]
    assert sessions.get_cwd(THREAD_ID) == str((base_dir / "alpha").resolve())
    assert sessions.get_external_session_id(THREAD_ID) == "sess-1"
    assert sessions.get_pending_prompt(THREAD_ID) is None


@pytest.mark.asyncio
async def test_selection_falls_back_to_channel_when_original_gone(base_dir):
    runner = FakeRunner(ExecutionResult.ok("Answer"))
    orchestrator, _ = _build(base_dir, runner)
    await orchestrator.handle_message(FakeMessage(f"<@{BOT_ID}> question"))

    selection = FakeSelection(["beta"], original=None)
    await orchestrator.handle_project_selection(selection)

    assert selection.channel_messages == ["Answer"]


@pytest.mark.asyncio
async def test_selection_keeps_plan_mode_of_pending_prompt(base_dir):
    runner = FakeRunner(ExecutionResult.ok("plan", transcript="t"))
    orchestrator, _ = _build(base_dir, runner)
    original = FakeMessage(f"<@{BOT_ID}> /plan refactor")
    await orchestrator.handle_message(original)

    await orchestrator.handle_project_selection(
        FakeSelection(["alpha"], original=original)
    )

    assert runner.requests[0].plan_mode
    assert runner.requests[0].prompt == "refactor"
    assert original.files[-1][0] == MSG_PLAN_ATTACHED


@pytest.mark.asyncio
async def test_selection_without_pending_prompt(base_dir):
    runner = FakeRunner()
    orchestrator, sessions = _build(base_dir, runner)

    selection = FakeSelection(["beta"])
    await orchestrator.handle_project_selection(selection)

    assert selection.updates == [MSG_PROJECT_SELECTED.format(name="beta")]
    assert runner.requests == []
    assert sessions.get_cwd(THREAD_ID) == str((base_dir / "beta").resolve())


@pytest.mark.asyncio
async def test_switching_project_discards_cli_session(base_dir):
    runner = FakeRunner()
    orchestrator, sessions = _build(base_dir, runner)
    _with_project(sessions, base_dir / "alpha")
    sessions.set_external_session_id(THREAD_ID, "old-session")

    await orchestrator.handle_project_selection(FakeSelection(["beta"]))

    assert sessions.get_external_session_id(THREAD_ID) is None
    assert sessions.get_cwd(THREAD_ID) == str((base_dir / "beta").resolve())


@pytest.mark.asyncio
async def test_empty_selection(base_dir):
    orchestrator, sessions = _build(base_dir, FakeRunner())
    selection = FakeSelection([])

    await orchestrator.handle_project_selection(selection)

    assert selection.updates == [MSG_NO_SELECTION]
    assert not sessions.has_cwd(THREAD_ID)


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["../outside", "missing", "/etc"])
async def test_invalid_selection_is_rejected(base_dir, value):
    runner = FakeRunner()
    orchestrator, sessions = _build(base_dir, runner)
    (base_dir.parent / "outside").mkdir(exist_ok=True)
    selection = FakeSelection([value])

    await orchestrator.handle_project_selection(selection)

    assert selection.updates == [MSG_INVALID_PROJECT]
    assert not sessions.has_cwd(THREAD_ID)
    assert runner.requests == []
