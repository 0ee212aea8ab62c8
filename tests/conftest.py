"""
Shared test doubles for the authentication engine.

FakeProcessHost / FakeHelperProcess stand in for polkit-agent-helper-1:
each fake helper runs a *script*, a function called with every line the
agent writes (the cookie first, then each answer) that returns the stdout
chunks the helper emits in reply.  ``b""`` in a reply means the helper
closed stdout.  A non-zero *terminate_delay_s* makes teardown take that
long, standing in for a helper that is slow to exit on SIGTERM.

ScriptedSurface answers prompts from a queue and blocks forever once the
queue is empty, which is how tests hold a session open to cancel it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Iterable

import pytest

from authbridge.core.agent.registrar import AgentRegistrar, BusConnector
from authbridge.core.helper.process import HelperProcess, ProcessHost
from authbridge.core.prompt.models import Notification, PromptRequest, PromptResponse
from authbridge.core.session.models import AuthResult, Identity
from authbridge.surfaces.base import BasePromptSurface

Script = Callable[["FakeHelperProcess", str], Iterable[bytes]]


# ---------------------------------------------------------------------------
# Helper scripts
# ---------------------------------------------------------------------------


def pam_script(
    password: str = "secret",
    *,
    info: Iterable[str] = (),
    echo_on: bool = False,
) -> Script:
    """A helper that asks for one password and answers SUCCESS or FAILURE."""
    prompt_tag = "PAM_PROMPT_ECHO_ON" if echo_on else "PAM_PROMPT_ECHO_OFF"

    def script(proc: FakeHelperProcess, line: str) -> list[bytes]:
        if len(proc.written) == 1:
            out = [f"PAM_TEXT_INFO {text}\n".encode() for text in info]
            return [*out, f"{prompt_tag} Password: \n".encode()]
        if len(proc.written) == 2:
            if line == password:
                return [b"SUCCESS\n"]
            return [b"PAM_ERROR_MSG Authentication failure\n", b"FAILURE\n"]
        return []

    return script


def silent_script(proc: FakeHelperProcess, line: str) -> list[bytes]:
    """A helper that never writes anything."""
    return []


def crash_script(proc: FakeHelperProcess, line: str) -> list[bytes]:
    """A helper that exits right after reading the cookie."""
    return [b""]


# ---------------------------------------------------------------------------
# Process doubles
# ---------------------------------------------------------------------------


class FakeHelperProcess(HelperProcess):
    def __init__(
        self, argv: list[str], script: Script, *, pid: int, terminate_delay_s: float = 0.0
    ) -> None:
        self.argv = argv
        self.written: list[str] = []
        self.terminate_calls = 0
        self.terminate_delay_s = terminate_delay_s
        self.terminating = asyncio.Event()
        self.stdin_closed = False
        self._script = script
        self._pid = pid
        self._returncode: int | None = None
        self._stdout: asyncio.Queue[bytes] = asyncio.Queue()
        self._eof = False

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def returncode(self) -> int | None:
        return self._returncode

    def emit(self, chunk: bytes) -> None:
        self._stdout.put_nowait(chunk)

    async def write_line(self, text: str) -> None:
        if self.stdin_closed or self._returncode is not None:
            raise BrokenPipeError("helper stdin is closed")
        self.written.append(text)
        for chunk in self._script(self, text):
            self.emit(chunk)

    async def read_chunk(self) -> bytes:
        if self._eof:
            return b""
        chunk = await self._stdout.get()
        if not chunk:
            self._eof = True
        return chunk

    async def terminate(self, timeout_s: float) -> int | None:
        self.terminate_calls += 1
        if self._returncode is None:
            self.terminating.set()
            if self.terminate_delay_s:
                await asyncio.sleep(self.terminate_delay_s)
            self._returncode = -15
        return self._returncode


class FakeProcessHost(ProcessHost):
    """
    Spawns FakeHelperProcess instances.

    *scripts* maps the username in argv[1] to a script; *default* is used
    for anyone else.
    """

    def __init__(
        self,
        scripts: dict[str, Script] | None = None,
        *,
        default: Script | None = None,
        spawn_error: OSError | None = None,
        terminate_delay_s: float = 0.0,
    ) -> None:
        self.scripts = scripts or {}
        self.default = default or pam_script()
        self.spawn_error = spawn_error
        self.terminate_delay_s = terminate_delay_s
        self.spawned: list[FakeHelperProcess] = []

    async def spawn(self, argv: list[str], env: dict[str, str] | None = None) -> HelperProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        script = self.scripts.get(argv[1], self.default)
        proc = FakeHelperProcess(
            argv,
            script,
            pid=4000 + len(self.spawned),
            terminate_delay_s=self.terminate_delay_s,
        )
        self.spawned.append(proc)
        return proc


# ---------------------------------------------------------------------------
# Surface and connector doubles
# ---------------------------------------------------------------------------


class ScriptedSurface(BasePromptSurface):
    surface_name = "scripted"

    def __init__(self, answers: Iterable[str | PromptResponse] = ()) -> None:
        self.answers: deque[str | PromptResponse] = deque(answers)
        self.requests: list[PromptRequest] = []
        self.notifications: list[Notification] = []
        self.dismissed: list[str] = []
        self.shown = asyncio.Event()

    async def show(self, request: PromptRequest) -> PromptResponse:
        self.requests.append(request)
        self.shown.set()
        if not self.answers:
            await asyncio.Event().wait()
        answer = self.answers.popleft()
        return PromptResponse(text=answer) if isinstance(answer, str) else answer

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def dismiss(self, cookie: str) -> None:
        self.dismissed.append(cookie)


class RecordingConnector(BusConnector):
    def __init__(self) -> None:
        self.results: list[AuthResult] = []
        self.registrar: AgentRegistrar | None = None
        self.unregistered = False

    async def register(self, registrar: AgentRegistrar) -> None:
        self.registrar = registrar

    async def unregister(self) -> None:
        self.unregistered = True

    def report_result(self, result: AuthResult) -> None:
        self.results.append(result)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def alice() -> Identity:
    return Identity(name="alice", uid=1000, display_name="Alice Liddell")


@pytest.fixture
def root() -> Identity:
    return Identity(name="root", uid=0)


@pytest.fixture
def make_host() -> type[FakeProcessHost]:
    return FakeProcessHost


@pytest.fixture
def pam() -> Callable[..., Script]:
    return pam_script


@pytest.fixture
def scripts() -> dict[str, Script]:
    return {"silent": silent_script, "crash": crash_script}


@pytest.fixture
def make_surface() -> type[ScriptedSurface]:
    return ScriptedSurface


@pytest.fixture
def connector() -> RecordingConnector:
    return RecordingConnector()
