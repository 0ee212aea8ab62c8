"""
Prompt domain models.

PromptRequest : what the prompt surface is asked to show.
PromptResponse: what the human typed (or that they dismissed the dialog).
Notification  : advisory helper text, shown but never answered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class InputMode(StrEnum):
    MASKED = "masked"  # password field
    VISIBLE = "visible"  # echoed text field (e.g. a username or OTP prompt)


class NotificationKind(StrEnum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class PromptRequest:
    """One question for the human, derived from a helper Prompt event."""

    cookie: str
    text: str
    input_mode: InputMode = InputMode.MASKED
    retry: bool = False  # a previous attempt for this action failed

    # Session context for the dialog; never interpreted by the engine.
    identity_label: str = ""
    action_id: str = ""
    message: str = ""
    icon_hint: str = ""

    @property
    def masked(self) -> bool:
        return self.input_mode is InputMode.MASKED


@dataclass(frozen=True)
class PromptResponse:
    """
    The human's answer.

    ``text`` is None when no text is required.  ``cancelled`` is set when
    the human dismissed the dialog instead of answering.
    """

    text: str | None = field(default=None, repr=False)
    cancelled: bool = False

    @classmethod
    def dismissed(cls) -> PromptResponse:
        return cls(text=None, cancelled=True)


@dataclass(frozen=True)
class Notification:
    cookie: str
    kind: NotificationKind
    text: str

    @property
    def is_error(self) -> bool:
        return self.kind is NotificationKind.ERROR
