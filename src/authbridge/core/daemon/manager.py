"""
Agent daemon.

The AgentDaemon wires the top-level components for one agent process
lifetime:
  - Creates the process host and the prompt surface
  - Creates the SessionManager (the only owner of the session table)
  - Creates the AgentRegistrar and registers it through the bus connector
  - Runs until SIGTERM/SIGINT, then cancels in-flight sessions and
    unregisters

The agent is started by the desktop session (XDG autostart or a systemd
user unit) via ``authbridge run``.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

import structlog

from authbridge.core.agent.registrar import AgentRegistrar, BusConnector
from authbridge.core.helper.process import AsyncioProcessHost, ProcessHost
from authbridge.core.session.manager import SessionManager

if TYPE_CHECKING:
    from authbridge.core.config import AuthBridgeConfig
    from authbridge.surfaces.base import BasePromptSurface

logger = structlog.get_logger()


class AgentDaemon:
    """
    Top-level orchestrator for the agent process.

    Lifecycle::

        daemon = AgentDaemon(config)
        await daemon.start()    # blocks until shutdown signal
        await daemon.stop()     # from another task / signal handler
    """

    def __init__(
        self,
        config: AuthBridgeConfig,
        *,
        surface: BasePromptSurface | None = None,
        connector: BusConnector | None = None,
        process_host: ProcessHost | None = None,
    ) -> None:
        self._config = config
        self._surface = surface
        self._connector = connector
        self._process_host = process_host or AsyncioProcessHost()
        self._session_manager: SessionManager | None = None
        self._registrar: AgentRegistrar | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def registrar(self) -> AgentRegistrar | None:
        return self._registrar

    async def start(self) -> None:
        """Register the agent and run until shutdown is requested."""
        helper_path = self._config.helper.resolve_path()
        logger.info("agent_starting", helper=helper_path)

        self._session_manager = SessionManager(
            process_host=self._process_host,
            surface=self._init_surface(),
            helper_config=self._config.helper,
        )
        self._registrar = AgentRegistrar(self._session_manager, self._init_connector())

        try:
            await self._registrar.start()
            self._setup_signal_handlers()
            logger.info("agent_ready")
            await self._shutdown_event.wait()
        finally:
            await self._registrar.stop()
            logger.info("agent_stopped")

    async def stop(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def _init_surface(self) -> BasePromptSurface:
        if self._surface is None:
            from authbridge.surfaces.console import ConsolePromptSurface

            self._surface = ConsolePromptSurface()
        return self._surface

    def _init_connector(self) -> BusConnector:
        if self._connector is None:
            from authbridge.bus.polkit import PolkitBusConnector

            self._connector = PolkitBusConnector(self._config.agent)
        return self._connector

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(self.stop()))
