from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .event_emitter import Disposable

if TYPE_CHECKING:
    from .browsing_context import BrowsingContext
    from .request import Request

OUTCOMES = ("fragment", "failed", "aborted", "completed")


class Navigation(Disposable):
    """One full-navigation attempt, from ``navigationStarted`` to its outcome.

    Exactly one outcome is recorded. ``fragment``, ``failed`` and ``aborted``
    are also emitted as events; ``completed`` (a matching load or
    domContentLoaded) only ends the navigation. A nested navigation started
    while this one is live supersedes it, so its events stop matching.
    :attr:`request` follows the navigation request through its redirects.
    """

    terminal_event = "ended"
    default_reason = "Navigation ended"

    def __init__(self, browsing_context: BrowsingContext, navigation_id: str | None, *, url: str | None = None) -> None:
        super().__init__()
        self.browsing_context = browsing_context
        self.id = navigation_id
        self.url = url
        self.outcome: str | None = None
        self.request: Request | None = None
        self._nested: Navigation | None = None

        session = browsing_context.session
        self._listen(browsing_context, "closed", self._on_context_closed)
        self._listen(browsing_context, "request", self._on_request)
        self._listen(session, "browsingContext.navigationStarted", self._on_nested_started)
        self._listen(session, "browsingContext.fragmentNavigated", self._on_fragment)
        self._listen(session, "browsingContext.navigationFailed", self._on_failed)
        self._listen(session, "browsingContext.navigationAborted", self._on_aborted)
        self._listen(session, "browsingContext.domContentLoaded", self._on_loaded)
        self._listen(session, "browsingContext.load", self._on_loaded)

    @property
    def state(self) -> str:
        return "settled" if self.outcome is not None else "started"

    @property
    def nested(self) -> Navigation | None:
        return self._nested

    def matches(self, navigation_id: str | None) -> bool:
        if self._nested is not None and not self._nested.closing:
            return False
        if self.id is None:
            # Browsers that omit ids on navigationStarted adopt the first one seen.
            self.id = navigation_id
            return True
        return navigation_id == self.id

    def _relevant(self, info: dict[str, Any]) -> bool:
        return isinstance(info, dict) and info.get("context") == self.browsing_context.id

    def _settle(self, outcome: str, info: dict[str, Any] | None = None) -> None:
        if self.outcome is not None or self.closing:
            return
        self.outcome = outcome
        if info and isinstance(info.get("url"), str):
            self.url = info["url"]
        if outcome != "completed":
            self.emit(outcome, {"url": self.url, "navigation": self.id})
        self.dispose(f"Navigation {outcome}")

    def _terminal_payload(self) -> dict[str, Any]:
        return {"reason": self._reason, "outcome": self.outcome}

    def _on_context_closed(self, _data: Any) -> None:
        self._settle("failed")

    def _on_request(self, data: dict[str, Any]) -> None:
        request = (data or {}).get("request")
        if request is None or not request.navigation or not self.matches(request.navigation):
            return
        self._track_request(request)
        self.emit("request", {"request": request})

    def _track_request(self, request: Request) -> None:
        self.request = request
        request.once("redirect", lambda data: self._track_request(data["request"]))

    def _on_nested_started(self, info: dict[str, Any]) -> None:
        if not self._relevant(info) or info.get("navigation") == self.id:
            return
        if self._nested is not None and not self._nested.closing:
            return
        self._nested = Navigation(self.browsing_context, info.get("navigation"), url=info.get("url"))

    def _on_fragment(self, info: dict[str, Any]) -> None:
        if self._relevant(info) and self.matches(info.get("navigation")):
            self._settle("fragment", info)

    def _on_failed(self, info: dict[str, Any]) -> None:
        if self._relevant(info) and self.matches(info.get("navigation")):
            self._settle("failed", info)

    def _on_aborted(self, info: dict[str, Any]) -> None:
        if self._relevant(info) and self.matches(info.get("navigation")):
            self._settle("aborted", info)

    def _on_loaded(self, info: dict[str, Any]) -> None:
        if self._relevant(info) and self.matches(info.get("navigation")):
            self._settle("completed", info)

    def _after_close(self) -> None:
        nested = self._nested
        if nested is not None:
            nested.dispose(self._reason)
