from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import UserContextClosedError
from .browsing_context import BrowsingContext
from .event_emitter import Disposable

if TYPE_CHECKING:
    from .browser import Browser


class UserContext(Disposable):
    """An isolated storage partition owning top-level browsing contexts."""

    DEFAULT = "default"

    terminal_event = "closed"
    default_reason = "User context closed, probably because the browser disconnected"

    def __init__(self, browser: Browser, user_context_id: str) -> None:
        super().__init__()
        self.browser = browser
        self.id = user_context_id
        self._browsing_contexts: dict[str, BrowsingContext] = {}

        def _browser_gone(data: Any) -> None:
            reason = (data or {}).get("reason")
            self.dispose(f"User context closed: {reason}" if reason else None)

        self._listen(browser, "closed", _browser_gone)
        self._listen(browser, "disconnected", _browser_gone)
        self._listen(browser.session, "browsingContext.contextCreated", self._on_context_created)

    @property
    def session(self) -> Any:
        return self.browser.session

    @property
    def closed(self) -> bool:
        return self.closing

    @property
    def browsing_contexts(self) -> list[BrowsingContext]:
        return list(self._browsing_contexts.values())

    def browsing_context(self, context_id: str) -> BrowsingContext | None:
        return self._browsing_contexts.get(context_id)

    def _on_context_created(self, info: dict[str, Any]) -> None:
        if info.get("parent"):
            return
        if (info.get("userContext") or UserContext.DEFAULT) != self.id:
            return
        context_id = info.get("context")
        if not isinstance(context_id, str) or context_id in self._browsing_contexts:
            return
        context = BrowsingContext(
            self,
            None,
            context_id,
            info.get("url") or "about:blank",
            original_opener=info.get("originalOpener"),
        )
        self._browsing_contexts[context_id] = context
        context.once("closed", lambda _data: self._browsing_contexts.pop(context_id, None))
        self.emit("browsingcontext", {"browsing_context": context})

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def _send(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if self.closing:
            raise UserContextClosedError(self.reason)
        return await self.session.send(method, params)

    def _partition(self) -> dict[str, Any]:
        return {"type": "storageKey", "userContext": self.id}

    async def create_browsing_context(
        self,
        type: str = "tab",  # noqa: A002
        *,
        reference_context: BrowsingContext | None = None,
        background: bool = False,
    ) -> BrowsingContext:
        params: dict[str, Any] = {"type": type, "userContext": self.id}
        if reference_context is not None:
            params["referenceContext"] = reference_context.id
        if background:
            params["background"] = True
        result = await self._send("browsingContext.create", params)
        context_id = result["context"]
        context = self._browsing_contexts.get(context_id)
        if context is None:
            # contextCreated always precedes the command response.
            raise UserContextClosedError(f"Browsing context {context_id} was not announced before creation completed")
        return context

    async def remove(self) -> None:
        if self.id == UserContext.DEFAULT:
            raise ValueError("The default user context cannot be removed")
        try:
            await self._send("browser.removeUserContext", {"userContext": self.id})
        finally:
            self.dispose("User context already closed")

    async def get_cookies(self, filter: dict[str, Any] | None = None) -> list[dict[str, Any]]:  # noqa: A002
        params: dict[str, Any] = {"partition": self._partition()}
        if filter:
            params["filter"] = filter
        result = await self._send("storage.getCookies", params)
        return list((result or {}).get("cookies") or [])

    async def set_cookie(self, cookie: dict[str, Any]) -> None:
        await self._send("storage.setCookie", {"cookie": cookie, "partition": self._partition()})

    async def delete_cookies(self, filter: dict[str, Any] | None = None) -> None:  # noqa: A002
        params: dict[str, Any] = {"partition": self._partition()}
        if filter:
            params["filter"] = filter
        await self._send("storage.deleteCookies", params)

    async def set_permission(self, descriptor: dict[str, Any], state: str, origin: str) -> None:
        await self._send(
            "permissions.setPermission",
            {"descriptor": descriptor, "state": state, "origin": origin, "userContext": self.id},
        )
