"""
polkit-agent-helper-1 line protocol.

The helper is a setuid binary shipped by the polkit package.  It is started
as ``polkit-agent-helper-1 <username>``, reads the request cookie as its
first stdin line, then runs the PAM conversation over its stdio:

    helper → agent   PAM_PROMPT_ECHO_OFF Password:
    agent  → helper  hunter2
    helper → agent   PAM_TEXT_INFO Last login: ...
    helper → agent   SUCCESS

Every line the helper writes starts with a tag.  Prompt tags must be
answered by exactly one newline-terminated line; SUCCESS / FAILURE end
the conversation.

This module is pure: it classifies lines into ProtocolEvent values and
frames raw stdout bytes into lines.  It knows nothing about processes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from authbridge.core.constants import MAX_LINE_BYTES


class HelperTag(StrEnum):
    PROMPT_ECHO_OFF = "PAM_PROMPT_ECHO_OFF"
    PROMPT_ECHO_ON = "PAM_PROMPT_ECHO_ON"
    ERROR_MSG = "PAM_ERROR_MSG"
    TEXT_INFO = "PAM_TEXT_INFO"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


# Older helper builds spell the error tag differently.
_TAG_ALIASES: dict[str, HelperTag] = {
    "PAM_TEXT_ERROR": HelperTag.ERROR_MSG,
}


class FailureReason(StrEnum):
    CREDENTIAL_MISMATCH = "credential_mismatch"
    SPAWN_FAILED = "spawn_failed"
    PROCESS_EXITED = "process_exited"
    PROTOCOL_TIMEOUT = "protocol_timeout"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"

    @property
    def is_environment_failure(self) -> bool:
        """True for failures caused by a missing or misbehaving helper."""
        return self in (
            FailureReason.SPAWN_FAILED,
            FailureReason.PROCESS_EXITED,
            FailureReason.PROTOCOL_TIMEOUT,
        )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Prompt:
    """The helper needs an answer before it writes anything else."""

    text: str
    echo_visible: bool = False


@dataclass(frozen=True)
class InfoMessage:
    text: str


@dataclass(frozen=True)
class ErrorMessage:
    text: str


@dataclass(frozen=True)
class Result:
    """Terminal event; exactly one ends every driver's event stream."""

    success: bool
    reason: FailureReason | None = None

    @classmethod
    def ok(cls) -> Result:
        return cls(success=True)

    @classmethod
    def failed(cls, reason: FailureReason) -> Result:
        return cls(success=False, reason=reason)


ProtocolEvent = Prompt | InfoMessage | ErrorMessage | Result


def parse_line(line: str) -> ProtocolEvent | None:
    """
    Classify one helper output line (without its terminator).

    Returns None for blank lines.  Lines without a known tag are returned
    as InfoMessage so a newer helper cannot fail an attempt by adding tags.
    """
    line = line.rstrip("\r\n")
    if not line.strip():
        return None

    head, _, payload = line.partition(" ")
    tag = _TAG_ALIASES.get(head)
    if tag is None:
        try:
            tag = HelperTag(head)
        except ValueError:
            return InfoMessage(text=line)

    match tag:
        case HelperTag.PROMPT_ECHO_OFF:
            return Prompt(text=payload, echo_visible=False)
        case HelperTag.PROMPT_ECHO_ON:
            return Prompt(text=payload, echo_visible=True)
        case HelperTag.TEXT_INFO:
            return InfoMessage(text=payload)
        case HelperTag.ERROR_MSG:
            return ErrorMessage(text=payload)
        case HelperTag.SUCCESS:
            return Result.ok()
        case HelperTag.FAILURE:
            return Result.failed(FailureReason.CREDENTIAL_MISMATCH)
    return InfoMessage(text=line)  # pragma: no cover


# ---------------------------------------------------------------------------
# Line framing
# ---------------------------------------------------------------------------


class LineBuffer:
    """
    Reassemble newline-terminated lines from arbitrary stdout chunks.

    Partial lines are held until their terminator arrives.  A single line
    longer than *max_line_bytes* is cut and emitted in pieces so a runaway
    helper cannot grow the buffer without bound.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self._buf = bytearray()
        self._max = max_line_bytes

    def feed(self, chunk: bytes) -> list[str]:
        """Add *chunk* and return every line it completed."""
        self._buf.extend(chunk)
        lines: list[str] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            lines.append(self._decode(self._buf[:idx]))
            del self._buf[: idx + 1]
        while len(self._buf) > self._max:
            lines.append(self._decode(self._buf[: self._max]))
            del self._buf[: self._max]
        return lines

    def flush(self) -> str | None:
        """Return the unterminated remainder at EOF, or None if there is none."""
        if not self._buf:
            return None
        rest = self._decode(self._buf)
        self._buf.clear()
        return rest

    @property
    def pending(self) -> int:
        return len(self._buf)

    @staticmethod
    def _decode(raw: bytes | bytearray) -> str:
        return bytes(raw).decode("utf-8", errors="replace").rstrip("\r")
