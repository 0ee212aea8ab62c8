"""
Session manager.

The SessionManager owns the table of active authentication sessions keyed
by polkit cookie, and runs each session's pipeline on its own asyncio task:

    IdentitySelector.advance() ──NeedsPrompt──▶ PromptRelay.relay() ──▶ respond()
            │
            ├──Retry──▶ relay.mark_retry(), loop
            └──Terminal / Exhausted ──▶ reap helper → dismiss surface
                                         → remove from table → report result

Invariants:
  - A cookie identifies at most one active session; begin() with a
    duplicate cookie raises DuplicateCookieError and leaves the existing
    session untouched.
  - The table is only mutated on the event-loop thread (begin / completion);
    callers on other threads must marshal onto the loop.
  - Each session reports exactly one AuthResult, after its helper has been
    reaped, and is removed from the table at that moment.
  - cancel() on an unknown cookie is a no-op that returns False.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, TypeVar

import structlog

from authbridge.core.exceptions import DuplicateCookieError, SessionCancelledError
from authbridge.core.helper.driver import HelperDriver
from authbridge.core.helper.protocol import FailureReason, Prompt
from authbridge.core.prompt.relay import PromptRelay
from authbridge.core.session.models import AuthResult, Identity, Session
from authbridge.core.session.selector import (
    Exhausted,
    IdentitySelector,
    NeedsPrompt,
    Retry,
    Terminal,
)

if TYPE_CHECKING:
    from authbridge.core.config import HelperConfig
    from authbridge.core.helper.process import ProcessHost
    from authbridge.surfaces.base import BasePromptSurface

logger = structlog.get_logger()

T = TypeVar("T")

ResultListener = Callable[[AuthResult], None]


class SessionManager:
    """
    Active-session table and per-session pipeline runner.

    All public methods must be called from the event loop thread.
    """

    def __init__(
        self,
        process_host: ProcessHost,
        surface: BasePromptSurface,
        helper_config: HelperConfig,
    ) -> None:
        self._host = process_host
        self._surface = surface
        self._helper_config = helper_config
        self._helper_path = helper_config.resolve_path()
        self._sessions: dict[str, Session] = {}
        self._tasks: dict[str, asyncio.Task[AuthResult]] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._listeners: list[ResultListener] = []

    # ------------------------------------------------------------------
    # Result listeners
    # ------------------------------------------------------------------

    def add_result_listener(self, listener: ResultListener) -> None:
        """Register *listener* to be called with every terminal AuthResult."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    def begin(
        self,
        cookie: str,
        action_id: str,
        message: str,
        icon_hint: str,
        identities: Iterable[Identity],
        details: dict[str, str] | None = None,
    ) -> Session:
        """Create a session for *cookie* and start driving it."""
        if cookie in self._sessions:
            logger.warning("duplicate_cookie_rejected", cookie=cookie[:12])
            raise DuplicateCookieError(cookie)

        session = Session(
            cookie=cookie,
            action_id=action_id,
            message=message,
            icon_hint=icon_hint,
            identities=tuple(identities),
            details=dict(details or {}),
        )
        self._sessions[cookie] = session
        self._cancel_events[cookie] = asyncio.Event()
        self._tasks[cookie] = asyncio.create_task(
            self._run_session(session), name=f"auth-session-{session.short_cookie()}"
        )
        logger.info(
            "session_started",
            cookie=session.short_cookie(),
            action_id=action_id,
            identities=[i.label for i in session.identities],
        )
        return session

    def cancel(self, cookie: str) -> bool:
        """
        Request cancellation of the session for *cookie*.

        Returns True if an active session was found.  The session completes
        asynchronously once its helper has been reaped.
        """
        session = self._sessions.get(cookie)
        if session is None:
            logger.debug("cancel_race", cookie=cookie[:12])
            return False
        session.mark_cancelling()
        self._cancel_events[cookie].set()
        logger.info("session_cancelling", cookie=session.short_cookie())
        return True

    async def wait(self, cookie: str) -> AuthResult | None:
        """Wait for the session for *cookie* to complete; None if unknown."""
        task = self._tasks.get(cookie)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Cancel every active session and wait until all have completed."""
        tasks = list(self._tasks.values())
        for cookie in list(self._sessions):
            self.cancel(cookie)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("session_manager_stopped", sessions=len(tasks))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_or_none(self, cookie: str) -> Session | None:
        return self._sessions.get(cookie)

    def active_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def count_active(self) -> int:
        return len(self._sessions)

    def __contains__(self, cookie: object) -> bool:
        return cookie in self._sessions

    # ------------------------------------------------------------------
    # Session pipeline
    # ------------------------------------------------------------------

    def _make_driver(self, session: Session) -> HelperDriver:
        return HelperDriver(
            self._host,
            self._helper_path,
            cookie=session.cookie,
            read_timeout_s=self._helper_config.read_timeout_s,
            terminate_timeout_s=self._helper_config.terminate_timeout_s,
        )

    async def _run_session(self, session: Session) -> AuthResult:
        log = logger.bind(cookie=session.short_cookie())
        relay = PromptRelay(self._surface, session)
        try:
            async with IdentitySelector(session, self._make_driver) as selector:
                result = await self._drive(session, selector, relay)
        except SessionCancelledError:
            result = AuthResult.failed(session.cookie, FailureReason.CANCELLED)
        except asyncio.CancelledError:
            self._complete(session, AuthResult.failed(session.cookie, FailureReason.CANCELLED))
            raise
        except Exception:
            log.exception("session_crashed")
            result = AuthResult.failed(session.cookie, FailureReason.INTERNAL_ERROR)
        self._complete(session, result)
        return result

    async def _drive(
        self,
        session: Session,
        selector: IdentitySelector,
        relay: PromptRelay,
    ) -> AuthResult:
        while True:
            outcome = await self._interruptible(session, selector.advance())
            match outcome:
                case NeedsPrompt(event=event):
                    response = await self._interruptible(session, relay.relay(event))
                    if not isinstance(event, Prompt):
                        continue
                    if response is None or response.cancelled:
                        logger.info("prompt_dismissed", cookie=session.short_cookie())
                        session.mark_cancelling()
                        raise SessionCancelledError(session.cookie)
                    await selector.respond(response)
                case Retry():
                    relay.mark_retry()
                case Exhausted(reason=reason):
                    return AuthResult.failed(session.cookie, reason)
                case Terminal(success=True):
                    return AuthResult.succeeded(session.cookie)
                case Terminal(reason=reason):
                    return AuthResult.failed(
                        session.cookie, reason or FailureReason.INTERNAL_ERROR
                    )

    async def _interruptible(self, session: Session, aw: Awaitable[T]) -> T:
        """
        Await *aw* unless the session is cancelled first.

        On cancellation the pending wait is cancelled and awaited, then
        SessionCancelledError is raised.
        """
        cancel_event = self._cancel_events[session.cookie]
        if cancel_event.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise SessionCancelledError(session.cookie)

        work = asyncio.ensure_future(aw)
        stop = asyncio.create_task(cancel_event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise
        finally:
            stop.cancel()
        if work.done():
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise SessionCancelledError(session.cookie)

    def _complete(self, session: Session, result: AuthResult) -> None:
        if not session.is_active:
            return
        session.mark_completed(result)
        self._sessions.pop(session.cookie, None)
        self._cancel_events.pop(session.cookie, None)
        self._tasks.pop(session.cookie, None)
        self._surface.dismiss(session.cookie)

        log = logger.bind(cookie=session.short_cookie(), attempts=session.attempts)
        if result.success:
            log.info("session_succeeded")
        elif result.reason is FailureReason.CREDENTIAL_MISMATCH or result.cancelled:
            log.info("session_failed", reason=str(result.reason))
        else:
            log.warning("session_failed", reason=str(result.reason))

        for listener in self._listeners:
            listener(result)
