"""
HelperDriver: drives one polkit-agent-helper-1 conversation.

A driver owns exactly one helper subprocess for one identity attempt and
turns its stdout into a finite, non-restartable stream of ProtocolEvent:

    driver = HelperDriver(host, helper_path, cookie=cookie, ...)
    async with driver:
        await driver.start(identity)
        async for event in driver:
            if isinstance(event, Prompt):
                await driver.respond(PromptResponse(text=...))

State machine:

    IDLE ──start()──▶ SPAWNING ──spawned──▶ CONVERSING ──Result──▶ TERMINATING ──▶ DONE
                          │                      │
                          └──spawn failed──▶ DONE (Result queued)
                                                 └──cancel()──▶ TERMINATING ──▶ DONE

Invariants:
  - Exactly one Result is produced, unless the driver is cancelled first.
  - At most one Prompt is outstanding; the driver does not read stdout
    while a prompt is unanswered, and respond() without a pending prompt
    is rejected.
  - Lines read ahead of a pending answer are kept and delivered after it.
  - The subprocess is terminated and reaped before DONE is entered, even
    when the task awaiting the teardown is cancelled part way through.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable
from contextlib import AsyncExitStack
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from authbridge.core.exceptions import DriverStateError
from authbridge.core.helper.process import HelperProcess, ProcessHost, helper_process
from authbridge.core.helper.protocol import (
    FailureReason,
    LineBuffer,
    Prompt,
    ProtocolEvent,
    Result,
    parse_line,
)

if TYPE_CHECKING:
    from authbridge.core.prompt.models import PromptResponse
    from authbridge.core.session.models import Identity

logger = structlog.get_logger()


class DriverState(StrEnum):
    IDLE = "idle"
    SPAWNING = "spawning"
    CONVERSING = "conversing"
    TERMINATING = "terminating"
    DONE = "done"


class HelperDriver:
    """Explicit pull-based state object over one helper subprocess."""

    def __init__(
        self,
        host: ProcessHost,
        helper_path: str,
        *,
        cookie: str,
        read_timeout_s: float,
        terminate_timeout_s: float,
        env: dict[str, str] | None = None,
    ) -> None:
        self._host = host
        self._helper_path = helper_path
        self._cookie = cookie
        self._read_timeout_s = read_timeout_s
        self._terminate_timeout_s = terminate_timeout_s
        self._env = env

        self._state = DriverState.IDLE
        self._stack = AsyncExitStack()
        self._proc: HelperProcess | None = None
        self._buffer = LineBuffer()
        self._lines: deque[str] = deque()
        self._pending_prompt: Prompt | None = None
        self._queued_result: Result | None = None
        self._result: Result | None = None
        self._log = logger.bind(cookie=cookie[:12])

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def pending_prompt(self) -> Prompt | None:
        return self._pending_prompt

    @property
    def result(self) -> Result | None:
        """The Result delivered to the consumer, once there is one."""
        return self._result

    @property
    def process(self) -> HelperProcess | None:
        return self._proc

    @property
    def is_done(self) -> bool:
        return self._state is DriverState.DONE and self._queued_result is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, identity: Identity) -> None:
        """
        Spawn the helper for *identity* and send the handshake line.

        A spawn failure does not raise: the stream then consists of a
        single ``Result(False, SPAWN_FAILED)``.
        """
        if self._state is not DriverState.IDLE:
            raise DriverStateError(f"start() called in state {self._state}")
        self._state = DriverState.SPAWNING
        self._log = self._log.bind(identity=identity.label)

        argv = [self._helper_path, identity.name]
        try:
            self._proc = await self._stack.enter_async_context(
                helper_process(
                    self._host,
                    argv,
                    terminate_timeout_s=self._terminate_timeout_s,
                    env=self._env,
                )
            )
        except OSError as exc:
            self._log.warning("helper_spawn_failed", path=self._helper_path, error=str(exc))
            self._queued_result = Result.failed(FailureReason.SPAWN_FAILED)
            self._state = DriverState.DONE
            return

        self._state = DriverState.CONVERSING
        self._log = self._log.bind(pid=self._proc.pid)
        self._log.info("helper_started")
        try:
            await self._proc.write_line(self._cookie)
        except ConnectionError:
            # The helper died before reading; the next read reports the exit.
            self._log.info("helper_stdin_closed_before_handshake")

    async def cancel(self) -> None:
        """Abandon the conversation and reap the helper.  Idempotent."""
        self._queued_result = None
        self._pending_prompt = None
        if self._state is not DriverState.DONE:
            self._log.info("helper_cancelled", state=str(self._state))
            await self._teardown()
        if self._proc is not None and not self._proc.is_reaped:
            self._log.warning("helper_reap_retried", pid=self._proc.pid)
            await _uninterrupted(self._proc.terminate(self._terminate_timeout_s))

    async def aclose(self) -> None:
        await self.cancel()

    async def __aenter__(self) -> HelperDriver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    def __aiter__(self) -> HelperDriver:
        return self

    async def __anext__(self) -> ProtocolEvent:
        if self.is_done:
            raise StopAsyncIteration
        return await self.next_event()

    async def next_event(self) -> ProtocolEvent:
        """
        Return the next protocol event.

        Raises DriverStateError if a prompt is still unanswered, if the
        driver was never started, or once the stream is exhausted.
        """
        if self._pending_prompt is not None:
            raise DriverStateError("the previous prompt has not been answered")
        if self._queued_result is not None:
            result, self._queued_result = self._queued_result, None
            self._result = result
            return result
        if self._state is not DriverState.CONVERSING:
            raise DriverStateError(f"no further events in state {self._state}")

        while True:
            if not self._lines:
                failure = await self._fill()
                if failure is not None:
                    return await self._conclude(failure)
                continue

            event = parse_line(self._lines.popleft())
            if event is None:
                continue
            if isinstance(event, Result):
                return await self._conclude(event)
            if isinstance(event, Prompt):
                self._pending_prompt = event
            return event

    async def respond(self, response: PromptResponse) -> None:
        """Answer the pending prompt with one newline-terminated line."""
        if self._pending_prompt is None:
            raise DriverStateError("respond() called with no pending prompt")
        assert self._proc is not None
        self._pending_prompt = None
        text = response.text if response.text is not None else ""
        try:
            await self._proc.write_line(text)
        except ConnectionError:
            self._log.info("helper_stdin_closed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fill(self) -> Result | None:
        """Read one stdout chunk into the line queue; return a Result on EOF/timeout."""
        assert self._proc is not None
        try:
            chunk = await asyncio.wait_for(self._proc.read_chunk(), timeout=self._read_timeout_s)
        except TimeoutError:
            self._log.warning("helper_read_timeout", timeout_s=self._read_timeout_s)
            return Result.failed(FailureReason.PROTOCOL_TIMEOUT)

        if chunk:
            self._lines.extend(self._buffer.feed(chunk))
            return None

        rest = self._buffer.flush()
        if rest is not None:
            self._lines.append(rest)
            return None
        self._log.warning("helper_exited_without_result")
        return Result.failed(FailureReason.PROCESS_EXITED)

    async def _conclude(self, result: Result) -> Result:
        self._lines.clear()
        await self._teardown()
        self._result = result
        self._log.info("helper_result", success=result.success, reason=result.reason)
        return result

    async def _teardown(self) -> None:
        self._state = DriverState.TERMINATING
        try:
            await _uninterrupted(self._stack.aclose())
        finally:
            self._state = DriverState.DONE


async def _uninterrupted(aw: Awaitable[object]) -> None:
    """
    Await *aw* to completion even if the calling task is cancelled meanwhile.

    A cancellation received while waiting is re-raised once *aw* has
    finished, so a reap is never abandoned half way.
    """
    task = asyncio.ensure_future(aw)
    interrupted = False
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise
            interrupted = True
    task.result()
    if interrupted:
        raise asyncio.CancelledError
