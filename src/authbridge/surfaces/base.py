"""
BasePromptSurface: abstract interface for prompt surfaces.

Concrete implementations:
  ConsolePromptSurface: rich console prompts on the controlling terminal

A surface is responsible for:
  1. Showing a prompt to the human and returning their answer
  2. Displaying advisory helper messages (info / error) without asking
  3. Tearing down whatever it shows for a session once that session ends

Surfaces are shared across sessions and must route by cookie.  They never
talk to the helper directly; the PromptRelay sits between the two.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from authbridge.core.prompt.models import Notification, PromptRequest, PromptResponse


class BasePromptSurface(ABC):
    """Abstract prompt surface."""

    #: Short identifier used in config and logs (e.g. "console")
    surface_name: str = ""

    @abstractmethod
    async def show(self, request: PromptRequest) -> PromptResponse:
        """
        Show *request* and wait for the human's answer.

        The engine may cancel this coroutine at any time (the daemon
        cancelled the request); implementations must tolerate that.
        Return ``PromptResponse.dismissed()`` if the human closes the
        dialog without answering.
        """

    @abstractmethod
    def notify(self, notification: Notification) -> None:
        """Display an advisory message.  Must not block or expect an answer."""

    @abstractmethod
    def dismiss(self, cookie: str) -> None:
        """Remove everything shown for *cookie*.  Called once per completed session."""

    def healthcheck(self) -> dict[str, Any]:
        """Return health status for this surface.  Used by `authbridge doctor`."""
        return {"status": "ok", "surface": self.surface_name}
