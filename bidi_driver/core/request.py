from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .event_emitter import Disposable

if TYPE_CHECKING:
    from .browsing_context import BrowsingContext


def _has_authorization(event: dict[str, Any]) -> bool:
    headers = (event.get("request") or {}).get("headers") or []
    return any(str(h.get("name", "")).lower() == "authorization" for h in headers if isinstance(h, dict))


class Request(Disposable):
    """One network request of a browsing context.

    Created from ``network.beforeRequestSent``. A follow-up
    ``beforeRequestSent`` with the same id and the next redirect count (or one
    that adds credentials) becomes :attr:`redirect` and ends this request.
    Events: ``redirect`` {request}, ``success`` {response}, ``error``
    {error}, ``authenticate``.
    """

    default_reason = "Request finished"

    def __init__(self, browsing_context: BrowsingContext, event: dict[str, Any]) -> None:
        super().__init__()
        self.browsing_context = browsing_context
        self._event = event
        self.redirect: Request | None = None
        self.response: dict[str, Any] | None = None
        self.error: str | None = None

        session = browsing_context.session
        self._listen(browsing_context, "closed", self._on_context_closed)
        self._listen(session, "network.beforeRequestSent", self._on_before_request_sent)
        self._listen(session, "network.authRequired", self._on_auth_required)
        self._listen(session, "network.fetchError", self._on_fetch_error)
        self._listen(session, "network.responseCompleted", self._on_response_completed)

    @property
    def id(self) -> str | None:
        return (self._event.get("request") or {}).get("request")

    @property
    def url(self) -> str | None:
        return (self._event.get("request") or {}).get("url")

    @property
    def method(self) -> str | None:
        return (self._event.get("request") or {}).get("method")

    @property
    def headers(self) -> list[dict[str, Any]]:
        return (self._event.get("request") or {}).get("headers") or []

    @property
    def navigation(self) -> str | None:
        return self._event.get("navigation")

    @property
    def redirect_count(self) -> int:
        return int(self._event.get("redirectCount") or 0)

    @property
    def is_blocked(self) -> bool:
        return self._event.get("isBlocked") is True

    @property
    def last_redirect(self) -> Request | None:
        request = self.redirect
        while request is not None and request.redirect is not None:
            request = request.redirect
        return request

    def _owns(self, event: dict[str, Any]) -> bool:
        return (
            isinstance(event, dict)
            and event.get("context") == self.browsing_context.id
            and (event.get("request") or {}).get("request") == self.id
        )

    def _same_attempt(self, event: dict[str, Any]) -> bool:
        return int(event.get("redirectCount") or 0) == self.redirect_count

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def _on_before_request_sent(self, event: dict[str, Any]) -> None:
        if not self._owns(event) or self.redirect is not None:
            return
        after_auth = _has_authorization(event) and not _has_authorization(self._event)
        if int(event.get("redirectCount") or 0) != self.redirect_count + 1 and not after_auth:
            return
        self.redirect = Request(self.browsing_context, event)
        self.emit("redirect", {"request": self.redirect})
        self.dispose("Request redirected")

    def _on_auth_required(self, event: dict[str, Any]) -> None:
        if self._owns(event) and event.get("isBlocked"):
            self.emit("authenticate", {"request": self})

    def _on_fetch_error(self, event: dict[str, Any]) -> None:
        if not self._owns(event) or not self._same_attempt(event):
            return
        self.error = event.get("errorText") or "Request failed"
        self.emit("error", {"error": self.error})
        self.dispose(f"Request failed: {self.error}")

    def _on_response_completed(self, event: dict[str, Any]) -> None:
        if not self._owns(event) or not self._same_attempt(event):
            return
        self.response = event.get("response") or {}
        self.emit("success", {"response": self.response})
        status = self.response.get("status")
        # A redirect response is followed by the redirected request.
        if isinstance(status, int) and 300 <= status < 400:
            return
        self.dispose()

    def _on_context_closed(self, data: Any) -> None:
        self.error = (data or {}).get("reason") or "Browsing context closed"
        self.emit("error", {"error": self.error})
        self.dispose(self.error)

    # ─────────────────────────────────────────────────────────────────────────
    # Interception
    # ─────────────────────────────────────────────────────────────────────────

    async def _send(self, method: str, params: dict[str, Any]) -> Any:
        return await self.browsing_context.session.send(method, {"request": self.id, **params})

    async def continue_request(
        self,
        *,
        url: str | None = None,
        method: str | None = None,
        headers: list[dict[str, Any]] | None = None,
        cookies: list[dict[str, Any]] | None = None,
        body: dict[str, Any] | None = None,
    ) -> None:
        overrides = {"url": url, "method": method, "headers": headers, "cookies": cookies, "body": body}
        await self._send("network.continueRequest", {k: v for k, v in overrides.items() if v is not None})

    async def fail_request(self) -> None:
        await self._send("network.failRequest", {})

    async def provide_response(
        self,
        *,
        status_code: int | None = None,
        reason_phrase: str | None = None,
        headers: list[dict[str, Any]] | None = None,
        body: dict[str, Any] | None = None,
    ) -> None:
        params = {"statusCode": status_code, "reasonPhrase": reason_phrase, "headers": headers, "body": body}
        await self._send("network.provideResponse", {k: v for k, v in params.items() if v is not None})

    async def continue_with_auth(self, action: str, credentials: dict[str, Any] | None = None) -> None:
        params: dict[str, Any] = {"action": action}
        if action == "provideCredentials":
            params["credentials"] = credentials
        await self._send("network.continueWithAuth", params)

    def __repr__(self) -> str:
        return f"<Request {self.id} {self.method} {self.url!r}>"
