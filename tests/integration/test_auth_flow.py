"""
End-to-end authentication flows through the AgentDaemon.

The daemon is wired with a RecordingConnector in place of the system bus
and a ScriptedSurface in place of the console, so each test plays the part
of polkitd: it calls begin/cancel on the registrar and checks the outcome
reported back.
"""

from __future__ import annotations

import asyncio
import stat
import sys
from pathlib import Path

import pytest

from authbridge.core.config import AuthBridgeConfig, HelperConfig
from authbridge.core.daemon.manager import AgentDaemon
from authbridge.core.exceptions import DuplicateCookieError
from authbridge.core.helper.process import AsyncioProcessHost
from authbridge.core.helper.protocol import FailureReason
from authbridge.core.session.models import Identity

pytestmark = pytest.mark.integration

FAKE_HELPER = Path(__file__).resolve().parent.parent / "fixtures" / "fake_helper.py"


async def _started(daemon: AgentDaemon, connector) -> asyncio.Task[None]:
    task = asyncio.create_task(daemon.start())
    for _ in range(100):
        if connector.registrar is not None:
            break
        await asyncio.sleep(0.01)
    assert connector.registrar is not None
    return task


async def _stopped(daemon: AgentDaemon, task: asyncio.Task[None]) -> None:
    await daemon.stop()
    await asyncio.wait_for(task, timeout=5)


def _begin(registrar, cookie: str, *identities: Identity) -> None:
    registrar.begin_authentication(
        action_id="org.freedesktop.policykit.exec",
        message="Authentication is needed to run `/usr/bin/true' as the super user",
        icon_hint="",
        cookie=cookie,
        identities=identities,
    )


# ---------------------------------------------------------------------------
# Fake process host
# ---------------------------------------------------------------------------


class TestFlowsWithFakeHelper:
    def _daemon(self, host, surface, connector) -> AgentDaemon:
        return AgentDaemon(
            AuthBridgeConfig(helper=HelperConfig(path="/usr/lib/polkit-1/polkit-agent-helper-1")),
            surface=surface,
            connector=connector,
            process_host=host,
        )

    @pytest.mark.asyncio
    async def test_single_identity_success(
        self, make_host, make_surface, pam, connector, alice
    ) -> None:
        surface = make_surface(["correct"])
        daemon = self._daemon(make_host(default=pam("correct")), surface, connector)
        task = await _started(daemon, connector)

        _begin(connector.registrar, "A-cookie", alice)
        await connector.registrar.session_manager.wait("A-cookie")
        await _stopped(daemon, task)

        assert [(r.cookie, r.success) for r in connector.results] == [("A-cookie", True)]
        assert [r.masked for r in surface.requests] == [True]
        assert surface.requests[0].text == "Password: "

    @pytest.mark.asyncio
    async def test_second_identity_after_mismatch(
        self, make_host, make_surface, pam, connector, alice, root
    ) -> None:
        host = make_host(default=pam("correct"))
        surface = make_surface(["wrong", "correct"])
        daemon = self._daemon(host, surface, connector)
        task = await _started(daemon, connector)

        spawned_while_first_alive: list[bool] = []
        original_spawn = host.spawn

        async def spawn(argv, env=None):
            spawned_while_first_alive.append(any(not p.is_reaped for p in host.spawned))
            return await original_spawn(argv, env)

        host.spawn = spawn

        _begin(connector.registrar, "B-cookie", alice, root)
        await connector.registrar.session_manager.wait("B-cookie")
        await _stopped(daemon, task)

        assert [r.success for r in connector.results] == [True]
        assert [p.argv[1] for p in host.spawned] == ["alice", "root"]
        assert spawned_while_first_alive == [False, False]

    @pytest.mark.asyncio
    async def test_helper_exit_without_result(
        self, make_host, make_surface, connector, scripts, alice, root
    ) -> None:
        host = make_host(default=scripts["crash"])
        surface = make_surface()
        daemon = self._daemon(host, surface, connector)
        task = await _started(daemon, connector)

        _begin(connector.registrar, "C-cookie", alice, root)
        await connector.registrar.session_manager.wait("C-cookie")
        await _stopped(daemon, task)

        (result,) = connector.results
        assert result.reason is FailureReason.PROCESS_EXITED
        assert len(host.spawned) == 1
        assert surface.requests == []

    @pytest.mark.asyncio
    async def test_cancel_while_prompt_outstanding(
        self, make_host, make_surface, pam, connector, alice
    ) -> None:
        host = make_host(default=pam("correct"))
        surface = make_surface()
        daemon = self._daemon(host, surface, connector)
        task = await _started(daemon, connector)

        _begin(connector.registrar, "D-cookie", alice)
        await asyncio.wait_for(surface.shown.wait(), timeout=1)
        connector.registrar.cancel_authentication("D-cookie")
        await connector.registrar.session_manager.wait("D-cookie")
        await asyncio.sleep(0.01)
        await _stopped(daemon, task)

        (result,) = connector.results
        assert result.cancelled
        assert len(surface.requests) == 1
        assert host.spawned[0].is_reaped
        assert host.spawned[0].written == ["D-cookie"]

    @pytest.mark.asyncio
    async def test_duplicate_cookie_rejected(
        self, make_host, make_surface, connector, alice
    ) -> None:
        surface = make_surface()
        daemon = self._daemon(make_host(), surface, connector)
        task = await _started(daemon, connector)

        _begin(connector.registrar, "dup", alice)
        with pytest.raises(DuplicateCookieError):
            _begin(connector.registrar, "dup", alice)
        await _stopped(daemon, task)

        assert len(connector.results) == 1
        assert connector.unregistered

    @pytest.mark.asyncio
    async def test_concurrent_sessions_are_independent(
        self, make_host, make_surface, pam, connector, alice
    ) -> None:
        surface = make_surface(["correct", "correct"])
        daemon = self._daemon(make_host(default=pam("correct")), surface, connector)
        task = await _started(daemon, connector)

        _begin(connector.registrar, "one", alice)
        _begin(connector.registrar, "two", alice)
        manager = connector.registrar.session_manager
        await asyncio.gather(manager.wait("one"), manager.wait("two"))
        await _stopped(daemon, task)

        assert sorted(r.cookie for r in connector.results) == ["one", "two"]
        assert all(r.success for r in connector.results)

    @pytest.mark.asyncio
    async def test_cancel_unknown_cookie(self, make_host, make_surface, connector) -> None:
        daemon = self._daemon(make_host(), make_surface(), connector)
        task = await _started(daemon, connector)
        connector.registrar.cancel_authentication("late-cancel")
        await _stopped(daemon, task)
        assert connector.results == []


# ---------------------------------------------------------------------------
# Real subprocess helper
# ---------------------------------------------------------------------------


class TestFlowWithRealHelper:
    @pytest.mark.asyncio
    async def test_success_over_subprocess(
        self, tmp_path: Path, make_surface, connector, alice
    ) -> None:
        helper = tmp_path / "polkit-agent-helper-1"
        helper.write_text(
            f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_HELPER}" --password correct "$@"\n'
        )
        helper.chmod(helper.stat().st_mode | stat.S_IXUSR)

        surface = make_surface(["correct"])
        daemon = AgentDaemon(
            AuthBridgeConfig(helper=HelperConfig(path=str(helper), read_timeout_s=10)),
            surface=surface,
            connector=connector,
            process_host=AsyncioProcessHost(),
        )
        task = await _started(daemon, connector)

        _begin(connector.registrar, "real-cookie", alice)
        result = await asyncio.wait_for(
            connector.registrar.session_manager.wait("real-cookie"), timeout=10
        )
        await _stopped(daemon, task)

        assert result is not None and result.success
        assert [n.text for n in surface.notifications] == ["Authenticating alice"]
        assert connector.results == [result]


