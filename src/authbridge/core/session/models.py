"""
Session domain models.

A Session represents one BeginAuthentication request from polkitd.  It is
keyed by the daemon-supplied cookie and may span several identity
attempts, each with its own helper subprocess.
"""

from __future__ import annotations

import pwd
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from authbridge.core.helper.protocol import FailureReason

logger = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    """
    A user the daemon will accept for an action.

    ``name`` is what the helper is started with; ``label`` is what a
    prompt surface shows.  ``kind`` and ``uid`` mirror polkit's identity
    tuple and are kept for equality and logging only.
    """

    name: str
    kind: str = "unix-user"
    uid: int | None = None
    display_name: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @classmethod
    def from_polkit(cls, kind: str, details: dict[str, Any]) -> Identity | None:
        """
        Build an Identity from a polkit ``(kind, details)`` tuple.

        Only ``unix-user`` identities can be authenticated by the helper;
        other kinds, and uids missing from the password database, yield None.
        """
        if kind != "unix-user":
            logger.debug("identity_skipped", kind=kind)
            return None
        try:
            uid = int(details["uid"])
        except (KeyError, TypeError, ValueError):
            logger.warning("identity_without_uid", kind=kind)
            return None
        try:
            entry = pwd.getpwuid(uid)
        except KeyError:
            logger.warning("identity_unknown_uid", uid=uid)
            return None
        gecos = entry.pw_gecos.split(",", 1)[0].strip()
        return cls(name=entry.pw_name, kind=kind, uid=uid, display_name=gecos)


class SessionState(StrEnum):
    ACTIVE = "active"
    CANCELLING = "cancelling"
    COMPLETED = "completed"


@dataclass(frozen=True)
class AuthResult:
    """Terminal outcome of one session, reported once to the daemon."""

    cookie: str
    success: bool
    reason: FailureReason | None = None

    @property
    def cancelled(self) -> bool:
        return self.reason is FailureReason.CANCELLED

    @classmethod
    def succeeded(cls, cookie: str) -> AuthResult:
        return cls(cookie=cookie, success=True)

    @classmethod
    def failed(cls, cookie: str, reason: FailureReason) -> AuthResult:
        return cls(cookie=cookie, success=False, reason=reason)


@dataclass
class Session:
    """One in-flight authentication request."""

    cookie: str
    action_id: str = ""
    message: str = ""
    icon_hint: str = ""
    identities: tuple[Identity, ...] = ()
    details: dict[str, str] = field(default_factory=dict)
    cursor: int = 0
    state: SessionState = SessionState.ACTIVE
    attempts: int = 0
    result: AuthResult | None = None
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    ended_at: str = ""

    @property
    def current_identity(self) -> Identity | None:
        if self.cursor < len(self.identities):
            return self.identities[self.cursor]
        return None

    @property
    def has_next_identity(self) -> bool:
        return self.cursor + 1 < len(self.identities)

    def advance_cursor(self) -> Identity:
        """Move to the next identity; the cursor never goes back."""
        if not self.has_next_identity:
            raise IndexError("no identities left")
        self.cursor += 1
        return self.identities[self.cursor]

    def mark_cancelling(self) -> None:
        if self.state is SessionState.ACTIVE:
            self.state = SessionState.CANCELLING

    def mark_completed(self, result: AuthResult) -> None:
        self.result = result
        self.state = SessionState.COMPLETED
        self.ended_at = datetime.now(UTC).isoformat()

    @property
    def is_cancelling(self) -> bool:
        return self.state is SessionState.CANCELLING

    @property
    def is_active(self) -> bool:
        return self.state is not SessionState.COMPLETED

    def short_cookie(self) -> str:
        """First 12 chars of the cookie for logs."""
        return self.cookie[:12]
