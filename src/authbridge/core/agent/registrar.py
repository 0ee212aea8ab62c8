"""
AgentRegistrar: the bus-facing shell around the SessionManager.

    polkitd ──BeginAuthentication──▶ BusConnector ──▶ AgentRegistrar.begin_authentication()
    polkitd ──CancelAuthentication─▶ BusConnector ──▶ AgentRegistrar.cancel_authentication()
    SessionManager ──AuthResult──▶ AgentRegistrar ──▶ BusConnector.report_result()

The registrar holds no session state of its own; the SessionManager is
passed in and is the only owner of the session table.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import structlog

from authbridge.core.session.manager import SessionManager
from authbridge.core.session.models import AuthResult, Identity

logger = structlog.get_logger()


class BusConnector(ABC):
    """
    Abstract binding between the agent and the authorization daemon.

    Concrete implementations:
      PolkitBusConnector: dbus-python on the system bus (authbridge.bus.polkit)
    """

    @abstractmethod
    async def register(self, registrar: AgentRegistrar) -> None:
        """
        Export the agent object and register it with the daemon.

        Inbound calls must be delivered to *registrar* on the event loop
        thread.  Raises RegistrationError on failure.
        """

    @abstractmethod
    async def unregister(self) -> None:
        """Unregister from the daemon and stop dispatching calls."""

    @abstractmethod
    def report_result(self, result: AuthResult) -> None:
        """Deliver one terminal outcome to the daemon."""

    def healthcheck(self) -> dict[str, Any]:
        return {"status": "ok"}


class AgentRegistrar:
    """Forwards inbound operations to the SessionManager and results outward."""

    def __init__(self, session_manager: SessionManager, connector: BusConnector) -> None:
        self._sessions = session_manager
        self._connector = connector
        self._registered = False
        session_manager.add_result_listener(self._on_result)

    @property
    def session_manager(self) -> SessionManager:
        return self._sessions

    @property
    def registered(self) -> bool:
        return self._registered

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self._connector.register(self)
        self._registered = True
        logger.info("agent_registered")

    async def stop(self) -> None:
        """Cancel in-flight sessions (reporting each), then unregister."""
        await self._sessions.shutdown()
        if self._registered:
            await self._connector.unregister()
            self._registered = False
            logger.info("agent_unregistered")

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    def begin_authentication(
        self,
        action_id: str,
        message: str,
        icon_hint: str,
        cookie: str,
        identities: Iterable[Identity],
        details: dict[str, str] | None = None,
    ) -> None:
        """
        Accept a request; the outcome is reported later via the connector.

        Raises DuplicateCookieError if *cookie* is already in flight.
        """
        self._sessions.begin(
            cookie=cookie,
            action_id=action_id,
            message=message,
            icon_hint=icon_hint,
            identities=identities,
            details=details,
        )

    def cancel_authentication(self, cookie: str) -> None:
        """Acknowledge a cancel.  An unknown cookie is not an error."""
        self._sessions.cancel(cookie)

    # ------------------------------------------------------------------

    def _on_result(self, result: AuthResult) -> None:
        self._connector.report_result(result)
