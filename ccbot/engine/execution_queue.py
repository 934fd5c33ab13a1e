"""Single-flight execution queue.

At most one request runs through the Runner at a time. Others wait in
FIFO order, bounded by ``max_size`` waiting entries and each with its
own wait timeout. Every submit resolves to an ExecutionResult: queue
problems and runner exceptions become failure results.

All state is touched only from the event loop thread, so no locks.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass

from .config import BotConfig
from .models import ExecutionRequest, ExecutionResult, FailureKind
from .runner import Runner

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 5
DEFAULT_WAIT_TIMEOUT_SECONDS = 180.0

QUEUE_FULL_MESSAGE = (
    "The server is busy with other requests. Please try again later."
)
QUEUE_TIMEOUT_MESSAGE = (
    "Timed out waiting in the queue. Please try again later."
)
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred while running the request."


@dataclass(eq=False)
class _QueueEntry:
    request: ExecutionRequest
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class ExecutionQueue:
    """Serializes Runner calls with backpressure and wait timeouts."""

    def __init__(
        self,
        runner: Runner,
        max_size: int = DEFAULT_MAX_SIZE,
        wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
    ) -> None:
        self._runner = runner
        self._max_size = max_size
        self._wait_timeout_seconds = wait_timeout_seconds
        self._waiting: deque[_QueueEntry] = deque()
        self._running = False
        self._current: asyncio.Task | None = None

    @classmethod
    def from_config(cls, runner: Runner, config: BotConfig) -> ExecutionQueue:
        return cls(
            runner,
            max_size=config.queue_max_size,
            wait_timeout_seconds=config.queue_wait_timeout_seconds,
        )

    @property
    def size(self) -> int:
        """Number of waiting entries (the running one excluded)."""
        return len(self._waiting)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def max_size(self) -> int:
        return self._max_size

    async def submit(self, request: ExecutionRequest) -> ExecutionResult:
        """Run *request* now if idle, otherwise wait for a turn.

        Returns a QUEUE_FULL failure without queueing anything when the
        waiting list is at capacity.
        """
        if self._running and len(self._waiting) >= self._max_size:
            logger.warning(
                "Execution queue full (%d waiting), rejecting request",
                len(self._waiting),
            )
            return ExecutionResult.failed(FailureKind.QUEUE_FULL, QUEUE_FULL_MESSAGE)

        loop = asyncio.get_running_loop()
        entry = _QueueEntry(request=request, future=loop.create_future())

        if not self._running:
            self._start(entry)
        else:
            entry.timer = loop.call_later(
                self._wait_timeout_seconds, self._expire, entry
            )
            self._waiting.append(entry)
            entry.future.add_done_callback(lambda _: self._discard(entry))
            logger.info(
                "Execution queue: request queued at position %d",
                len(self._waiting),
            )

        return await entry.future

    def _start(self, entry: _QueueEntry) -> None:
        self._running = True
        self._current = asyncio.ensure_future(self._run(entry))

    async def _run(self, entry: _QueueEntry) -> None:
        try:
            result = await self._runner.run(entry.request)
        except asyncio.CancelledError:
            self._resolve(
                entry,
                ExecutionResult.failed(
                    FailureKind.INTERNAL, "Request cancelled during shutdown."
                ),
            )
            self._running = False
            self._current = None
            raise
        except Exception:
            logger.exception("Execution queue: unexpected error in runner")
            result = ExecutionResult.failed(
                FailureKind.INTERNAL, INTERNAL_ERROR_MESSAGE
            )
        self._resolve(entry, result)
        self._advance()

    def _advance(self) -> None:
        """Start the next live waiting entry, or go idle."""
        while self._waiting:
            entry = self._waiting.popleft()
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None
            if entry.future.done():
                # Caller stopped waiting (cancelled); never start it
                continue
            self._start(entry)
            return
        self._running = False
        self._current = None

    def _discard(self, entry: _QueueEntry) -> None:
        """Drop a waiting entry whose caller stopped waiting."""
        try:
            self._waiting.remove(entry)
        except ValueError:
            return
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        logger.debug("Execution queue: dropped abandoned entry")

    def _expire(self, entry: _QueueEntry) -> None:
        if entry.future.done():
            return
        try:
            self._waiting.remove(entry)
        except ValueError:
            return  # Already dequeued for execution
        logger.warning("Execution queue: entry timed out while waiting")
        self._resolve(
            entry,
            ExecutionResult.failed(
                FailureKind.QUEUE_WAIT_TIMEOUT, QUEUE_TIMEOUT_MESSAGE
            ),
        )

    @staticmethod
    def _resolve(entry: _QueueEntry, result: ExecutionResult) -> None:
        if not entry.future.done():
            entry.future.set_result(result)

    async def close(self) -> None:
        """Fail all waiting entries and cancel the running one."""
        while self._waiting:
            entry = self._waiting.popleft()
            if entry.timer is not None:
                entry.timer.cancel()
            self._resolve(
                entry,
                ExecutionResult.failed(
                    FailureKind.INTERNAL, "Request cancelled during shutdown."
                ),
            )
        current = self._current
        if current is not None and not current.done():
            current.cancel()
            try:
                await current
            except asyncio.CancelledError:
                pass
        self._running = False
        self._current = None
