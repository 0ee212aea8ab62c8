"""
Process host: spawn and own helper subprocesses.

Concrete implementations:
  AsyncioProcessHost: asyncio.create_subprocess_exec with piped stdio

Tests substitute an in-memory host; the driver only sees the abstract
HelperProcess interface below.

Teardown contract:
  HelperProcess.terminate() sends SIGTERM, waits up to *timeout_s* for the
  child to exit, then sends SIGKILL and reaps it.  It is idempotent and
  never raises for a child that is already gone.  ``helper_process()``
  wraps spawn + terminate in an async context manager so every exit path
  of an attempt reaps the child.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from authbridge.core.constants import READ_CHUNK_BYTES

logger = structlog.get_logger()


class HelperProcess(ABC):
    """One running helper subprocess with piped stdin/stdout."""

    @property
    @abstractmethod
    def pid(self) -> int:
        """PID of the child, or -1 if unknown."""

    @property
    @abstractmethod
    def returncode(self) -> int | None:
        """Exit status once reaped, else None."""

    @abstractmethod
    async def write_line(self, text: str) -> None:
        """
        Write *text* plus a newline to the child's stdin and drain.

        Raises ConnectionError (BrokenPipeError, ConnectionResetError) if
        the child has closed its stdin.
        """

    @abstractmethod
    async def read_chunk(self) -> bytes:
        """Return the next chunk of stdout bytes; b"" on EOF."""

    @abstractmethod
    async def terminate(self, timeout_s: float) -> int | None:
        """Terminate and reap the child; return its exit status."""

    @property
    def is_reaped(self) -> bool:
        return self.returncode is not None


class ProcessHost(ABC):
    """Factory for helper subprocesses."""

    @abstractmethod
    async def spawn(self, argv: list[str], env: dict[str, str] | None = None) -> HelperProcess:
        """
        Start *argv* with piped stdin/stdout.

        Raises OSError if the executable cannot be started.
        """


# ---------------------------------------------------------------------------
# asyncio implementation
# ---------------------------------------------------------------------------


class AsyncioHelperProcess(HelperProcess):
    """HelperProcess backed by asyncio.subprocess.Process."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    async def write_line(self, text: str) -> None:
        stdin = self._proc.stdin
        if stdin is None or stdin.is_closing():
            raise BrokenPipeError("helper stdin is closed")
        stdin.write(text.encode("utf-8") + b"\n")
        await stdin.drain()

    async def read_chunk(self) -> bytes:
        stdout = self._proc.stdout
        if stdout is None:
            return b""
        return await stdout.read(READ_CHUNK_BYTES)

    async def terminate(self, timeout_s: float) -> int | None:
        if self._proc.returncode is not None:
            return self._proc.returncode
        try:
            self._proc.terminate()
        except ProcessLookupError:
            pass
        try:
            return await asyncio.wait_for(self._proc.wait(), timeout=timeout_s)
        except TimeoutError:
            logger.warning("helper_kill_after_timeout", pid=self._proc.pid, timeout_s=timeout_s)
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass
        return await self._proc.wait()


class AsyncioProcessHost(ProcessHost):
    """Spawn helpers with asyncio's subprocess support."""

    async def spawn(self, argv: list[str], env: dict[str, str] | None = None) -> HelperProcess:
        # The helper reads LANG for PAM messages; keep the agent's environment.
        full_env = {**os.environ, **env} if env else None
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            env=full_env,
            start_new_session=True,
        )
        return AsyncioHelperProcess(proc)


@asynccontextmanager
async def helper_process(
    host: ProcessHost,
    argv: list[str],
    *,
    terminate_timeout_s: float,
    env: dict[str, str] | None = None,
) -> AsyncIterator[HelperProcess]:
    """
    Spawn a helper for the duration of the ``async with`` block.

    The child is terminated and reaped when the block exits, whether it
    returns, raises, or is cancelled.
    """
    proc = await host.spawn(argv, env)
    log = logger.bind(pid=proc.pid)
    log.debug("helper_spawned", argv0=argv[0])
    try:
        yield proc
    finally:
        status = await proc.terminate(terminate_timeout_s)
        log.debug("helper_reaped", returncode=status)
