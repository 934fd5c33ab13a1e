"""Claude Code CLI runner.

Spawns one ``claude --print`` process per request, enforces the
execution deadline and decodes its output into an ExecutionResult.
The queue only talks to the abstract Runner so tests can substitute
an in-process fake.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import os
import shutil
import signal

from .config import BotConfig
from .models import ExecutionRequest, ExecutionResult, FailureKind, OutputFormat
from .output_parser import ParsedOutput, parse_single_json, parse_stream_json

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_KILL_GRACE_SECONDS = 5.0


class Runner(abc.ABC):
    """Executes a single request to completion."""

    @abc.abstractmethod
    async def run(self, request: ExecutionRequest) -> ExecutionResult:
        """Run *request* and return a fully materialized result.

        Implementations report failures as results and should not
        raise; the queue still guards against it.
        """


class ClaudeCliRunner(Runner):
    """Runner backed by the ``claude`` CLI in non-interactive mode."""

    def __init__(
        self,
        command: str = "claude",
        default_cwd: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self._command = command
        self._default_cwd = default_cwd
        self._timeout_seconds = timeout_seconds
        self._kill_grace_seconds = kill_grace_seconds

    @classmethod
    def from_config(cls, config: BotConfig) -> ClaudeCliRunner:
        return cls(
            command=config.claude_command,
            default_cwd=config.default_cwd,
            timeout_seconds=config.execution_timeout_seconds,
            kill_grace_seconds=config.kill_grace_seconds,
        )

    @property
    def command(self) -> str:
        return self._command

    def is_available(self) -> bool:
        """Check if the CLI binary can be found on PATH."""
        return shutil.which(self._command) is not None

    @staticmethod
    def build_args(request: ExecutionRequest) -> list[str]:
        """Build the CLI argument vector (without the binary itself)."""
        args = ["--print", "--output-format", request.output_format.value]
        if request.output_format is OutputFormat.STREAM_JSON:
            # stream-json is rejected in --print mode without --verbose
            args.append("--verbose")
        args.append("--dangerously-skip-permissions")
        if request.resume_session_id:
            args.extend(["--resume", request.resume_session_id])
        # Prompt goes last as a single argv entry; never shell-interpreted
        args.append(request.prompt)
        return args

    async def run(self, request: ExecutionRequest) -> ExecutionResult:
        cwd = request.cwd or self._default_cwd
        timeout = request.timeout_seconds or self._timeout_seconds
        args = self.build_args(request)

        logger.info(
            "Executing %s: cwd=%s timeout=%.0fs format=%s resume=%s prompt_len=%d",
            self._command,
            cwd,
            timeout,
            request.output_format.value,
            request.resume_session_id,
            len(request.prompt),
        )

        try:
            # create_subprocess_exec passes args as an array, no shell
            proc = await asyncio.create_subprocess_exec(
                self._command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                # Own process group so the deadline also reaches tool subprocesses
                start_new_session=True,
            )
        except OSError as exc:
            logger.error(
                "Failed to spawn %s (cwd=%s): %s", self._command, cwd, exc
            )
            return ExecutionResult.failed(
                FailureKind.SPAWN_FAILURE,
                f"Failed to start '{self._command}': {exc}",
            )

        logger.debug("%s spawned (pid=%d)", self._command, proc.pid)

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "%s timed out after %.0fs (pid=%d, resume=%s)",
                self._command, timeout, proc.pid, request.resume_session_id,
            )
            await self._terminate(proc)
            return ExecutionResult.failed(
                FailureKind.EXECUTION_TIMEOUT,
                f"Timed out after {timeout:.0f}s; the request took too long.",
            )
        except asyncio.CancelledError:
            logger.warning(
                "%s cancelled, terminating (pid=%d)", self._command, proc.pid
            )
            await asyncio.shield(self._terminate(proc))
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        logger.info(
            "%s exited (pid=%d, rc=%s, stdout=%d, stderr=%d)",
            self._command, proc.pid, proc.returncode, len(stdout), len(stderr),
        )

        if proc.returncode != 0:
            logger.error(
                "%s failed (rc=%s): %s",
                self._command, proc.returncode, stderr[:500],
            )
            return ExecutionResult.failed(
                FailureKind.EXIT_FAILURE,
                stderr.strip() or f"process exited with code {proc.returncode}",
            )

        parsed = self._decode(request, stdout)
        logger.info(
            "%s completed (output=%d chars, session_id=%s)",
            self._command, len(parsed.result), parsed.session_id,
        )
        return ExecutionResult.ok(
            parsed.result,
            session_id=parsed.session_id,
            transcript=parsed.transcript,
        )

    @staticmethod
    def _decode(request: ExecutionRequest, stdout: str) -> ParsedOutput:
        if request.output_format is OutputFormat.STREAM_JSON:
            return parse_stream_json(stdout)
        return parse_single_json(stdout)

    @staticmethod
    def _signal(proc: asyncio.subprocess.Process, sig: int) -> None:
        """Signal the process group, falling back to the process itself."""
        if hasattr(os, "killpg"):
            try:
                os.killpg(proc.pid, sig)
                return
            except ProcessLookupError:
                pass
            except PermissionError:
                logger.debug("killpg(%d) not permitted", proc.pid, exc_info=True)
        proc.send_signal(sig)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL if still alive after the grace period."""
        try:
            self._signal(proc, signal.SIGTERM)
        except ProcessLookupError:
            return  # Already exited
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "%s ignored SIGTERM for %.0fs; sending SIGKILL (pid=%d)",
                self._command, self._kill_grace_seconds, proc.pid,
            )
            try:
                self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            except ProcessLookupError:
                return
            await proc.wait()
