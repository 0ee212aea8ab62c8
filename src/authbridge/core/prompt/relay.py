"""
PromptRelay: adapts helper events to the prompt surface and back.

One relay exists per session.  It keeps the driver ignorant of
presentation and the surface ignorant of the helper protocol:

    Prompt        → PromptRequest → surface.show()  → PromptResponse
    InfoMessage   → Notification  → surface.notify()   (no answer)
    ErrorMessage  → Notification  → surface.notify()   (no answer)

Helper error text only ever travels on the notification channel; the
retry hint on a PromptRequest is a flag, never the helper's wording.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from authbridge.core.helper.protocol import ErrorMessage, InfoMessage, Prompt
from authbridge.core.prompt.models import (
    InputMode,
    Notification,
    NotificationKind,
    PromptRequest,
    PromptResponse,
)

if TYPE_CHECKING:
    from authbridge.core.session.models import Session
    from authbridge.surfaces.base import BasePromptSurface

logger = structlog.get_logger()


class PromptRelay:
    def __init__(self, surface: BasePromptSurface, session: Session) -> None:
        self._surface = surface
        self._session = session
        self._retry_pending = False
        self._log = logger.bind(cookie=session.short_cookie())

    def mark_retry(self) -> None:
        """Flag the next prompt as following a failed attempt."""
        self._retry_pending = True

    def build_request(self, event: Prompt) -> PromptRequest:
        identity = self._session.current_identity
        return PromptRequest(
            cookie=self._session.cookie,
            text=event.text,
            input_mode=InputMode.VISIBLE if event.echo_visible else InputMode.MASKED,
            retry=self._retry_pending,
            identity_label=identity.label if identity else "",
            action_id=self._session.action_id,
            message=self._session.message,
            icon_hint=self._session.icon_hint,
        )

    async def relay(self, event: Prompt | InfoMessage | ErrorMessage) -> PromptResponse | None:
        """
        Forward *event* to the surface.

        Returns the human's answer for a Prompt, None for notifications.
        Nothing is forwarded once the session is cancelling.
        """
        if self._session.is_cancelling:
            return None

        if isinstance(event, Prompt):
            request = self.build_request(event)
            self._retry_pending = False
            self._log.debug("prompt_shown", input_mode=str(request.input_mode), retry=request.retry)
            return await self._surface.show(request)

        kind = NotificationKind.ERROR if isinstance(event, ErrorMessage) else NotificationKind.INFO
        self._surface.notify(Notification(cookie=self._session.cookie, kind=kind, text=event.text))
        return None
