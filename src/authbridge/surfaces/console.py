"""
Console prompt surface.

Prompts on the agent's controlling terminal with rich.  Useful on a bare
window manager session, over SSH with a forwarded session bus, and for
trying the agent out with ``pkexec true``.

Only one prompt can own the terminal at a time, so concurrent sessions
queue on a lock.  Answers are read from stdin by an event-loop reader
(``loop.add_reader``) that exists only while a prompt is waiting: a
cancelled prompt leaves nothing behind that could consume the next line.
Masked prompts switch terminal echo off for the duration of the read.
"""

from __future__ import annotations

import asyncio
import os
import sys
import termios
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from rich.console import Console
from rich.panel import Panel

from authbridge.core.prompt.models import Notification, PromptRequest, PromptResponse
from authbridge.surfaces.base import BasePromptSurface

logger = structlog.get_logger()


class ConsolePromptSurface(BasePromptSurface):
    surface_name = "console"

    def __init__(self, console: Console | None = None, stdin_fd: int | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self._lock = asyncio.Lock()
        self._introduced: set[str] = set()
        # Bytes read past the end of the last answered line.
        self._pending = bytearray()

    async def show(self, request: PromptRequest) -> PromptResponse:
        async with self._lock:
            if request.cookie not in self._introduced:
                self._introduced.add(request.cookie)
                self._console.print(self._header(request))
            if request.retry:
                who = f" as [cyan]{request.identity_label}[/cyan]" if request.identity_label else ""
                self._console.print(f"[yellow]Sorry, that did not work. Try again{who}.[/yellow]")

            label = request.text.strip().rstrip(":") or "Password"
            self._console.print(f"{label}: ", end="", markup=False)
            try:
                with self._echo_disabled(request.masked):
                    text = await self._read_line()
            except EOFError:
                logger.info("console_stdin_closed", cookie=request.cookie[:12])
                self._console.print()
                return PromptResponse.dismissed()
            if request.masked:
                self._console.print()
            return PromptResponse(text=text)

    def notify(self, notification: Notification) -> None:
        style = "red" if notification.is_error else "cyan"
        self._console.print(f"[{style}]{notification.text}[/{style}]")

    def dismiss(self, cookie: str) -> None:
        if cookie in self._introduced:
            self._introduced.discard(cookie)
            self._console.rule(style="dim")

    # ------------------------------------------------------------------

    async def _read_line(self) -> str:
        """Return the next line from stdin; raise EOFError when stdin closes."""
        line = self._take_line()
        if line is not None:
            return line

        loop = asyncio.get_running_loop()
        done: asyncio.Future[str] = loop.create_future()

        def on_readable() -> None:
            if done.done():
                return
            try:
                chunk = os.read(self._stdin_fd, 1024)
            except BlockingIOError:
                return
            except OSError as exc:
                done.set_exception(EOFError(str(exc)))
                return
            if not chunk:
                self._pending.clear()
                done.set_exception(EOFError("stdin closed"))
                return
            self._pending.extend(chunk)
            line = self._take_line()
            if line is not None:
                done.set_result(line)

        loop.add_reader(self._stdin_fd, on_readable)
        try:
            return await done
        finally:
            loop.remove_reader(self._stdin_fd)

    def _take_line(self) -> str | None:
        end = self._pending.find(b"\n")
        if end < 0:
            return None
        raw = bytes(self._pending[:end])
        del self._pending[: end + 1]
        return raw.decode("utf-8", errors="replace").rstrip("\r")

    @contextmanager
    def _echo_disabled(self, masked: bool) -> Iterator[None]:
        if not masked or not os.isatty(self._stdin_fd):
            yield
            return
        saved = termios.tcgetattr(self._stdin_fd)
        quiet = termios.tcgetattr(self._stdin_fd)
        quiet[3] &= ~termios.ECHO
        termios.tcsetattr(self._stdin_fd, termios.TCSADRAIN, quiet)
        try:
            yield
        finally:
            termios.tcsetattr(self._stdin_fd, termios.TCSADRAIN, saved)

    @staticmethod
    def _header(request: PromptRequest) -> Panel:
        lines = [f"[bold]{request.message or 'Authentication is required'}[/bold]"]
        if request.identity_label:
            lines.append(f"Authenticating as [cyan]{request.identity_label}[/cyan]")
        if request.action_id:
            lines.append(f"[dim]{request.action_id}[/dim]")
        return Panel("\n".join(lines), title="Authentication required", border_style="blue")
