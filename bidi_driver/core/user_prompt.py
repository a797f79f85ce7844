from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import UserPromptClosedError
from .event_emitter import Disposable

if TYPE_CHECKING:
    from .browsing_context import BrowsingContext


class UserPrompt(Disposable):
    """An alert, confirm, prompt or beforeunload dialog.

    Ends when its browsing context reports the prompt closed (emitting
    ``handled`` with the event first) or when the browsing context closes.
    """

    default_reason = "User prompt closed, probably because the browsing context was destroyed"

    def __init__(self, browsing_context: BrowsingContext, info: dict[str, Any]) -> None:
        super().__init__()
        self.browsing_context = browsing_context
        self.info = info
        self.result: dict[str, Any] | None = None

        def _context_closed(data: Any) -> None:
            self.dispose(f"User prompt closed: {(data or {}).get('reason')}")

        self._listen(browsing_context, "closed", _context_closed)

    @property
    def type(self) -> str | None:
        return self.info.get("type")

    @property
    def message(self) -> str:
        return self.info.get("message") or ""

    @property
    def default_value(self) -> str | None:
        return self.info.get("defaultValue")

    @property
    def handled(self) -> bool:
        if self.info.get("handler") in {"accept", "dismiss"}:
            return True
        return self.result is not None

    def settle(self, info: dict[str, Any]) -> None:
        """Record the matching ``userPromptClosed`` payload and end the prompt."""
        if self.closing:
            return
        self.result = info
        self.emit("handled", info)
        self.dispose("User prompt handled")

    async def handle(self, *, accept: bool | None = None, user_text: str | None = None) -> dict[str, Any] | None:
        """Accept or dismiss the prompt; returns the ``userPromptClosed`` payload when it already arrived."""
        if self.closing:
            raise UserPromptClosedError(self.reason)
        await self.browsing_context.handle_user_prompt(accept=accept, user_text=user_text)
        return self.result
