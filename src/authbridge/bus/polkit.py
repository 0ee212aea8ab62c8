"""
polkit D-Bus connector (dbus-python).

Exports org.freedesktop.PolicyKit1.AuthenticationAgent on the system bus
and registers it with the polkit Authority for the current login session.

Threading model:
  dbus-python dispatches on a GLib main loop.  That loop runs on its own
  thread ("authbridge-dbus"); the engine runs on the asyncio loop.

    GLib thread                          asyncio thread
    ───────────                          ──────────────
    BeginAuthentication ──run_coroutine_threadsafe──▶ registrar.begin_authentication()
    CancelAuthentication ─call_soon_threadsafe──────▶ registrar.cancel_authentication()
    reply / error to polkitd ◀──GLib.idle_add────── report_result()

  Deferred method replies (one per cookie) live in ``_pending`` and are only
  touched on the GLib thread.

Requires the ``dbus`` extra: ``pip install 'authbridge[dbus]'``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import dbus
import dbus.mainloop.glib
import dbus.service
import structlog
from dbus.mainloop.glib import DBusGMainLoop
from gi.repository import GLib

from authbridge.core.agent.registrar import BusConnector
from authbridge.core.constants import (
    AGENT_INTERFACE,
    BUS_CALL_TIMEOUT_SECONDS,
    ERROR_CANCELLED,
    ERROR_FAILED,
    POLKIT_AUTHORITY_INTERFACE,
    POLKIT_AUTHORITY_PATH,
    POLKIT_BUS_NAME,
)
from authbridge.core.exceptions import DuplicateCookieError, RegistrationError
from authbridge.core.session.models import AuthResult, Identity

if TYPE_CHECKING:
    from authbridge.core.agent.registrar import AgentRegistrar
    from authbridge.core.config import AgentConfig

logger = structlog.get_logger()

ReplyCallbacks = tuple[Callable[[], None], Callable[[Exception], None]]


def identities_from_polkit(raw: Any) -> list[Identity]:
    """Convert polkit's ``a(sa{sv})`` identity array, dropping unusable entries."""
    identities: list[Identity] = []
    for kind, details in raw:
        identity = Identity.from_polkit(str(kind), {str(k): v for k, v in details.items()})
        if identity is not None and identity not in identities:
            identities.append(identity)
    return identities


class _AgentObject(dbus.service.Object):
    """The exported AuthenticationAgent object; forwards every call to the connector."""

    def __init__(self, bus: dbus.Bus, object_path: str, connector: PolkitBusConnector) -> None:
        super().__init__(bus, object_path)
        self._connector = connector

    @dbus.service.method(
        AGENT_INTERFACE,
        in_signature="sssa{ss}sa(sa{sv})",
        out_signature="",
        async_callbacks=("reply_cb", "error_cb"),
    )
    def BeginAuthentication(  # noqa: N802
        self,
        action_id: str,
        message: str,
        icon_name: str,
        details: dict[str, str],
        cookie: str,
        identities: list[Any],
        reply_cb: Callable[[], None],
        error_cb: Callable[[Exception], None],
    ) -> None:
        self._connector.handle_begin(
            action_id=str(action_id),
            message=str(message),
            icon_name=str(icon_name),
            details={str(k): str(v) for k, v in details.items()},
            cookie=str(cookie),
            identities=identities_from_polkit(identities),
            callbacks=(reply_cb, error_cb),
        )

    @dbus.service.method(AGENT_INTERFACE, in_signature="s", out_signature="")
    def CancelAuthentication(self, cookie: str) -> None:  # noqa: N802
        self._connector.handle_cancel(str(cookie))


class PolkitBusConnector(BusConnector):
    """BusConnector for polkitd on the system bus."""

    def __init__(self, config: AgentConfig) -> None:
        self._object_path = config.object_path
        self._locale = config.resolve_locale()
        self._session_id = config.resolve_session_id()
        self._registrar: AgentRegistrar | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._glib_loop: GLib.MainLoop | None = None
        self._bus: dbus.Bus | None = None
        self._object: _AgentObject | None = None
        self._pending: dict[str, ReplyCallbacks] = {}

    # ------------------------------------------------------------------
    # BusConnector
    # ------------------------------------------------------------------

    async def register(self, registrar: AgentRegistrar) -> None:
        if not self._session_id:
            raise RegistrationError(
                "XDG_SESSION_ID is not set; cannot tell polkitd which session this agent serves. "
                "Set agent.session_id in the config or AUTHBRIDGE_SESSION_ID."
            )
        self._registrar = registrar
        self._loop = asyncio.get_running_loop()
        ready: concurrent.futures.Future[None] = concurrent.futures.Future()
        dbus.mainloop.glib.threads_init()
        self._thread = threading.Thread(
            target=self._run_glib, args=(ready,), name="authbridge-dbus", daemon=True
        )
        self._thread.start()
        await asyncio.wrap_future(ready)
        logger.info(
            "polkit_agent_registered",
            object_path=self._object_path,
            session_id=self._session_id,
            locale=self._locale,
        )

    async def unregister(self) -> None:
        if self._glib_loop is None:
            return
        done: concurrent.futures.Future[None] = concurrent.futures.Future()
        GLib.idle_add(self._unregister_on_glib, done)
        try:
            await asyncio.wrap_future(done)
        finally:
            if self._thread is not None:
                await asyncio.to_thread(self._thread.join, BUS_CALL_TIMEOUT_SECONDS)
            self._glib_loop = None

    def report_result(self, result: AuthResult) -> None:
        GLib.idle_add(self._finish_on_glib, result)

    def healthcheck(self) -> dict[str, Any]:
        alive = self._thread is not None and self._thread.is_alive()
        return {
            "status": "ok" if alive else "down",
            "object_path": self._object_path,
            "pending_replies": len(self._pending),
        }

    # ------------------------------------------------------------------
    # Inbound calls (GLib thread)
    # ------------------------------------------------------------------

    def handle_begin(
        self,
        *,
        action_id: str,
        message: str,
        icon_name: str,
        details: dict[str, str],
        cookie: str,
        identities: list[Identity],
        callbacks: ReplyCallbacks,
    ) -> None:
        assert self._loop is not None and self._registrar is not None
        _, error_cb = callbacks
        if cookie in self._pending:
            error_cb(dbus.DBusException(str(DuplicateCookieError(cookie)), name=ERROR_FAILED))
            return
        self._pending[cookie] = callbacks

        registrar = self._registrar

        async def _begin() -> None:
            registrar.begin_authentication(
                action_id=action_id,
                message=message,
                icon_hint=icon_name,
                cookie=cookie,
                identities=identities,
                details=details,
            )

        future = asyncio.run_coroutine_threadsafe(_begin(), self._loop)
        future.add_done_callback(lambda f: self._on_begin_dispatched(cookie, f))

    def handle_cancel(self, cookie: str) -> None:
        assert self._loop is not None and self._registrar is not None
        self._loop.call_soon_threadsafe(self._registrar.cancel_authentication, cookie)

    def _on_begin_dispatched(self, cookie: str, future: concurrent.futures.Future[None]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("begin_rejected", cookie=cookie[:12], error=str(exc))
            GLib.idle_add(self._reject_on_glib, cookie, exc)

    # ------------------------------------------------------------------
    # GLib thread internals
    # ------------------------------------------------------------------

    def _run_glib(self, ready: concurrent.futures.Future[None]) -> None:
        try:
            DBusGMainLoop(set_as_default=True)
            self._glib_loop = GLib.MainLoop()
            self._bus = dbus.SystemBus()
            self._object = _AgentObject(self._bus, self._object_path, self)
            self._authority().RegisterAuthenticationAgent(
                self._subject(),
                self._locale,
                self._object_path,
                timeout=BUS_CALL_TIMEOUT_SECONDS,
            )
        except dbus.DBusException as exc:
            self._glib_loop = None
            ready.set_exception(RegistrationError(f"Cannot register with polkit: {exc}"))
            return
        ready.set_result(None)
        self._glib_loop.run()

    def _unregister_on_glib(self, done: concurrent.futures.Future[None]) -> bool:
        try:
            self._authority().UnregisterAuthenticationAgent(
                self._subject(), self._object_path, timeout=BUS_CALL_TIMEOUT_SECONDS
            )
        except dbus.DBusException as exc:
            done.set_exception(RegistrationError(f"Cannot unregister from polkit: {exc}"))
        else:
            done.set_result(None)
        finally:
            shutting_down = dbus.DBusException("Agent shutting down", name=ERROR_CANCELLED)
            for cookie in list(self._pending):
                self._reject_on_glib(cookie, shutting_down)
            if self._object is not None:
                self._object.remove_from_connection()
            if self._glib_loop is not None:
                self._glib_loop.quit()
        return False

    def _finish_on_glib(self, result: AuthResult) -> bool:
        callbacks = self._pending.pop(result.cookie, None)
        if callbacks is None:
            logger.debug("result_without_pending_call", cookie=result.cookie[:12])
            return False
        reply_cb, error_cb = callbacks
        if result.success:
            reply_cb()
        elif result.cancelled:
            error_cb(dbus.DBusException("Authentication was cancelled", name=ERROR_CANCELLED))
        else:
            error_cb(
                dbus.DBusException(f"Authentication failed: {result.reason}", name=ERROR_FAILED)
            )
        return False

    def _reject_on_glib(self, cookie: str, exc: BaseException) -> bool:
        callbacks = self._pending.pop(cookie, None)
        if callbacks is not None:
            _, error_cb = callbacks
            if not isinstance(exc, dbus.DBusException):
                exc = dbus.DBusException(str(exc), name=ERROR_FAILED)
            error_cb(exc)
        return False

    def _authority(self) -> dbus.Interface:
        assert self._bus is not None
        proxy = self._bus.get_object(POLKIT_BUS_NAME, POLKIT_AUTHORITY_PATH)
        return dbus.Interface(proxy, dbus_interface=POLKIT_AUTHORITY_INTERFACE)

    def _subject(self) -> dbus.Struct:
        details = {"session-id": dbus.String(self._session_id, variant_level=1)}
        return dbus.Struct(
            ("unix-session", dbus.Dictionary(details, signature="sv")),
            signature="sa{sv}",
        )
