"""
Integration tests: HelperDriver over real subprocesses.

A small Python program (tests/fixtures/fake_helper.py) plays the part of
polkit-agent-helper-1 and is started through AsyncioProcessHost exactly
as the real helper would be.
"""

from __future__ import annotations

import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from authbridge.core.helper.driver import HelperDriver
from authbridge.core.helper.process import AsyncioProcessHost, helper_process
from authbridge.core.helper.protocol import (
    ErrorMessage,
    FailureReason,
    InfoMessage,
    Prompt,
    Result,
)
from authbridge.core.prompt.models import PromptResponse
from authbridge.core.session.models import Identity

pytestmark = pytest.mark.integration

FAKE_HELPER = Path(__file__).resolve().parent.parent / "fixtures" / "fake_helper.py"
COOKIE = "11-integration-cookie"


@pytest.fixture
def make_helper(tmp_path: Path) -> Callable[..., str]:
    """Write an executable wrapper that runs the fake helper in *mode*."""

    def _make(mode: str = "normal", password: str = "secret") -> str:
        path = tmp_path / f"helper-{mode}"
        path.write_text(
            "#!/bin/sh\n"
            f'exec "{sys.executable}" "{FAKE_HELPER}" --mode {mode} --password {password} "$@"\n'
        )
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


def _driver(helper_path: str, *, read_timeout_s: float = 10.0) -> HelperDriver:
    return HelperDriver(
        AsyncioProcessHost(),
        helper_path,
        cookie=COOKIE,
        read_timeout_s=read_timeout_s,
        terminate_timeout_s=2.0,
    )


class TestRealHelper:
    @pytest.mark.asyncio
    async def test_full_conversation(self, make_helper) -> None:
        async with _driver(make_helper()) as driver:
            await driver.start(Identity("alice"))
            assert await driver.next_event() == InfoMessage("Authenticating alice")
            assert await driver.next_event() == Prompt("Password: ")
            await driver.respond(PromptResponse(text="secret"))
            assert await driver.next_event() == Result.ok()
            proc = driver.process
        assert proc is not None and proc.is_reaped

    @pytest.mark.asyncio
    async def test_wrong_password(self, make_helper) -> None:
        async with _driver(make_helper()) as driver:
            await driver.start(Identity("alice"))
            await driver.next_event()
            await driver.next_event()
            await driver.respond(PromptResponse(text="wrong"))
            events = [event async for event in driver]
        assert events == [
            ErrorMessage("Authentication failure"),
            Result.failed(FailureReason.CREDENTIAL_MISMATCH),
        ]

    @pytest.mark.asyncio
    async def test_result_without_trailing_newline(self, make_helper) -> None:
        async with _driver(make_helper("no-newline")) as driver:
            await driver.start(Identity("alice"))
            await driver.next_event()
            await driver.next_event()
            await driver.respond(PromptResponse(text="secret"))
            assert await driver.next_event() == Result.ok()

    @pytest.mark.asyncio
    async def test_crash_is_process_exited(self, make_helper) -> None:
        async with _driver(make_helper("crash")) as driver:
            await driver.start(Identity("alice"))
            assert await driver.next_event() == Result.failed(FailureReason.PROCESS_EXITED)

    @pytest.mark.asyncio
    async def test_missing_binary_is_spawn_failed(self, tmp_path: Path) -> None:
        async with _driver(str(tmp_path / "does-not-exist")) as driver:
            await driver.start(Identity("alice"))
            assert await driver.next_event() == Result.failed(FailureReason.SPAWN_FAILED)

    @pytest.mark.asyncio
    async def test_silent_helper_times_out(self, make_helper) -> None:
        async with _driver(make_helper("hang"), read_timeout_s=0.3) as driver:
            await driver.start(Identity("alice"))
            assert await driver.next_event() == Result.failed(FailureReason.PROTOCOL_TIMEOUT)
            proc = driver.process
        assert proc is not None and proc.returncode is not None


class TestTermination:
    @pytest.mark.asyncio
    async def test_sigterm_reaps(self, make_helper) -> None:
        async with helper_process(
            AsyncioProcessHost(), [make_helper("hang"), "alice"], terminate_timeout_s=2.0
        ) as proc:
            await proc.write_line(COOKIE)
        assert proc.returncode == -15

    @pytest.mark.asyncio
    async def test_sigkill_after_grace_period(self, make_helper) -> None:
        async with helper_process(
            AsyncioProcessHost(), [make_helper("ignore-term"), "alice"], terminate_timeout_s=0.3
        ) as proc:
            assert await proc.read_chunk() == b"PAM_TEXT_INFO ready\n"
            await proc.write_line(COOKIE)
        assert proc.returncode == -9

    @pytest.mark.asyncio
    async def test_terminate_after_exit_is_noop(self, make_helper) -> None:
        async with helper_process(
            AsyncioProcessHost(), [make_helper("crash"), "alice"], terminate_timeout_s=1.0
        ) as proc:
            await proc.write_line(COOKIE)
            assert await proc.read_chunk() == b""
            first = await proc.terminate(1.0)
        assert proc.returncode == first == 3
