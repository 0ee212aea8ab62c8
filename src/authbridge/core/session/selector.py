"""
IdentitySelector: walks a session's candidate identities.

Each call to ``advance()`` pulls one event from the current identity's
HelperDriver and folds it into an Outcome:

  NeedsPrompt(event)   prompt / info / error for the relay
  Retry(identity)      wrong credential; next identity's helper started
  Exhausted()          wrong credential and no identity left
  Terminal(ok, reason) success, or an environment failure

Only a credential mismatch (the helper said FAILURE) moves on to the next
identity.  SpawnFailed, ProcessExited and ProtocolTimeout end the session
at once: a broken helper fails the same way for every user.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from authbridge.core.helper.driver import HelperDriver
from authbridge.core.helper.protocol import (
    ErrorMessage,
    FailureReason,
    InfoMessage,
    Prompt,
    Result,
)
from authbridge.core.prompt.models import PromptResponse
from authbridge.core.session.models import Identity, Session

logger = structlog.get_logger()


@dataclass(frozen=True)
class NeedsPrompt:
    event: Prompt | InfoMessage | ErrorMessage


@dataclass(frozen=True)
class Retry:
    identity: Identity


@dataclass(frozen=True)
class Exhausted:
    reason: FailureReason = FailureReason.CREDENTIAL_MISMATCH


@dataclass(frozen=True)
class Terminal:
    success: bool
    reason: FailureReason | None = None


Outcome = NeedsPrompt | Retry | Exhausted | Terminal

DriverFactory = Callable[[Session], HelperDriver]


class IdentitySelector:
    """
    Owns the session's current HelperDriver.

    Use as an async context manager so the live helper is reaped however
    the session ends::

        async with IdentitySelector(session, factory) as selector:
            outcome = await selector.advance()
    """

    def __init__(self, session: Session, driver_factory: DriverFactory) -> None:
        self._session = session
        self._factory = driver_factory
        self._driver: HelperDriver | None = None
        self._log = logger.bind(cookie=session.short_cookie())

    @property
    def driver(self) -> HelperDriver | None:
        return self._driver

    async def advance(self) -> Outcome:
        if self._driver is None:
            identity = self._session.current_identity
            if identity is None:
                self._log.info("no_identities")
                return Exhausted()
            await self._start(identity)
        assert self._driver is not None

        event = await self._driver.next_event()
        if not isinstance(event, Result):
            return NeedsPrompt(event)

        await self._release()
        if event.success:
            return Terminal(success=True)

        reason = event.reason or FailureReason.CREDENTIAL_MISMATCH
        if reason is not FailureReason.CREDENTIAL_MISMATCH:
            self._log.warning("attempt_failed_environment", reason=str(reason))
            return Terminal(success=False, reason=reason)

        if not self._session.has_next_identity:
            self._log.info("identities_exhausted", attempts=self._session.attempts)
            return Exhausted()

        identity = self._session.advance_cursor()
        self._log.info("retry_next_identity", cursor=self._session.cursor)
        await self._start(identity)
        return Retry(identity=identity)

    async def respond(self, response: PromptResponse) -> None:
        if self._driver is None:
            raise RuntimeError("respond() with no live driver")
        await self._driver.respond(response)

    async def aclose(self) -> None:
        await self._release()

    async def __aenter__(self) -> IdentitySelector:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------

    async def _start(self, identity: Identity) -> None:
        self._driver = self._factory(self._session)
        self._session.attempts += 1
        await self._driver.start(identity)

    async def _release(self) -> None:
        driver, self._driver = self._driver, None
        if driver is not None:
            await driver.aclose()
