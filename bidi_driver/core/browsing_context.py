from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from ..errors import BrowsingContextClosedError, ProtocolError
from .event_emitter import Disposable
from .navigation import Navigation
from .realm import WindowRealm
from .request import Request
from .user_prompt import UserPrompt

if TYPE_CHECKING:
    from .user_context import UserContext


class BrowsingContext(Disposable):
    """A tab, window or frame mirrored from browser events.

    ``url`` and the closed state change only in response to inbound events,
    never as a side effect of a command this client sent.
    """

    terminal_event = "closed"
    default_reason = "Browsing context closed, probably because the user context closed"

    def __init__(
        self,
        user_context: UserContext,
        parent: BrowsingContext | None,
        context_id: str,
        url: str,
        *,
        original_opener: str | None = None,
    ) -> None:
        super().__init__()
        self.user_context = user_context
        self.parent = parent
        self.id = context_id
        self.url = url
        self.original_opener = original_opener
        self.navigation: Navigation | None = None
        self._children: dict[str, BrowsingContext] = {}
        self._realms: dict[str, WindowRealm] = {}
        self._requests: dict[str, Request] = {}
        self.user_prompt: UserPrompt | None = None

        self.default_realm = WindowRealm(self)
        self._wire()

    def _wire(self) -> None:
        session = self.session

        def _owner_gone(data: Any) -> None:
            reason = (data or {}).get("reason")
            self.dispose(f"Browsing context already closed: {reason}" if reason else None)

        self._listen(self.user_context, "closed", _owner_gone)
        if self.parent is not None:
            self._listen(self.parent, "closed", _owner_gone)

        handlers = {
            "browsingContext.contextCreated": self._on_context_created,
            "browsingContext.contextDestroyed": self._on_context_destroyed,
            "browsingContext.historyUpdated": self._on_history_updated,
            "browsingContext.fragmentNavigated": self._on_fragment_navigated,
            "browsingContext.domContentLoaded": self._on_dom_content_loaded,
            "browsingContext.load": self._on_load,
            "browsingContext.navigationStarted": self._on_navigation_started,
            "browsingContext.userPromptOpened": self._on_user_prompt_opened,
            "browsingContext.userPromptClosed": self._on_user_prompt_closed,
            "network.beforeRequestSent": self._on_request_started,
            "network.responseCompleted": self._on_request_finished,
            "network.fetchError": self._on_request_finished,
            "log.entryAdded": self._on_log_entry,
        }
        for event, handler in handlers.items():
            self._listen(session, event, handler)

    # ─────────────────────────────────────────────────────────────────────────
    # Tree
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def session(self) -> Any:
        return self.user_context.browser.session

    @property
    def closed(self) -> bool:
        return self.closing

    @property
    def top(self) -> BrowsingContext:
        context = self
        while context.parent is not None:
            context = context.parent
        return context

    @property
    def children(self) -> list[BrowsingContext]:
        return list(self._children.values())

    @property
    def realms(self) -> list[WindowRealm]:
        return [self.default_realm, *self._realms.values()]

    @property
    def inflight_requests(self) -> int:
        return len(self._requests)

    def _matches(self, info: dict[str, Any]) -> bool:
        return isinstance(info, dict) and info.get("context") == self.id

    def _on_context_created(self, info: dict[str, Any]) -> None:
        if info.get("parent") != self.id:
            return
        child_id = info.get("context")
        if not isinstance(child_id, str) or child_id in self._children:
            return
        child = BrowsingContext(
            self.user_context,
            self,
            child_id,
            info.get("url") or "about:blank",
            original_opener=info.get("originalOpener"),
        )
        self._children[child_id] = child
        child.once("closed", lambda _data: self._children.pop(child_id, None))
        self.emit("browsingcontext", {"browsing_context": child})

    def _on_context_destroyed(self, info: dict[str, Any]) -> None:
        if self._matches(info):
            self.dispose("Browsing context already closed")

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation events
    # ─────────────────────────────────────────────────────────────────────────

    def _update_url(self, event: str, info: dict[str, Any]) -> None:
        url = info.get("url")
        if isinstance(url, str):
            self.url = url
        self.emit(event, {"url": self.url, "navigation": info.get("navigation")})

    def _on_history_updated(self, info: dict[str, Any]) -> None:
        if self._matches(info):
            self._update_url("history_updated", info)

    def _on_fragment_navigated(self, info: dict[str, Any]) -> None:
        if self._matches(info):
            self._update_url("fragment_navigated", info)

    def _on_dom_content_loaded(self, info: dict[str, Any]) -> None:
        if self._matches(info):
            self._update_url("dom_content_loaded", info)

    def _on_load(self, info: dict[str, Any]) -> None:
        if self._matches(info):
            self._update_url("load", info)

    def _on_navigation_started(self, info: dict[str, Any]) -> None:
        if not self._matches(info):
            return
        current = self.navigation
        if current is not None and not current.closing:
            return
        navigation = Navigation(self, info.get("navigation"), url=info.get("url"))
        self.navigation = navigation

        def _ended(_data: Any) -> None:
            if self.navigation is navigation:
                self.navigation = None

        navigation.once("ended", _ended)
        self.emit("navigation", {"navigation": navigation})

    # ─────────────────────────────────────────────────────────────────────────
    # Network, log and prompt events
    # ─────────────────────────────────────────────────────────────────────────

    def _on_request_started(self, info: dict[str, Any]) -> None:
        if not self._matches(info) or info.get("redirectCount"):
            return
        request_id = (info.get("request") or {}).get("request")
        if not isinstance(request_id, str) or request_id in self._requests:
            return
        request = Request(self, info)
        self._requests[request_id] = request
        self.emit("request", {"request": request, "request_id": request_id, "url": request.url})
        self.emit("inflight_changed", {"inflight": len(self._requests)})

    def _on_request_finished(self, info: dict[str, Any]) -> None:
        if not self._matches(info):
            return
        request_id = (info.get("request") or {}).get("request")
        if self._requests.pop(request_id, None) is not None:
            self.emit("inflight_changed", {"inflight": len(self._requests)})

    def _on_log_entry(self, entry: dict[str, Any]) -> None:
        source = entry.get("source") if isinstance(entry, dict) else None
        if isinstance(source, dict) and source.get("context") == self.id:
            self.emit("log", {"entry": entry})

    def _on_user_prompt_opened(self, info: dict[str, Any]) -> None:
        if not self._matches(info):
            return
        prompt = UserPrompt(self, info)
        self.user_prompt = prompt

        def _prompt_closed(_data: Any) -> None:
            if self.user_prompt is prompt:
                self.user_prompt = None

        prompt.once("closed", _prompt_closed)
        self.emit("user_prompt_opened", {"user_prompt": prompt, **info})

    def _on_user_prompt_closed(self, info: dict[str, Any]) -> None:
        if not self._matches(info):
            return
        prompt = self.user_prompt
        if prompt is not None:
            prompt.settle(info)
        self.emit("user_prompt_closed", {"user_prompt": prompt, **info})

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def _send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        if self.closing:
            raise BrowsingContextClosedError(self.reason)
        return await self.session.send(method, params, timeout=timeout)

    async def activate(self) -> None:
        await self._send("browsingContext.activate", {"context": self.id})

    async def navigate(self, url: str, *, wait: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"context": self.id, "url": url}
        if wait:
            params["wait"] = wait
        return await self._send("browsingContext.navigate", params) or {}

    async def reload(self, *, ignore_cache: bool | None = None, wait: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"context": self.id}
        if ignore_cache is not None:
            params["ignoreCache"] = bool(ignore_cache)
        if wait:
            params["wait"] = wait
        return await self._send("browsingContext.reload", params) or {}

    async def traverse_history(self, delta: int) -> None:
        await self._send("browsingContext.traverseHistory", {"context": self.id, "delta": int(delta)})

    async def set_viewport(
        self,
        viewport: dict[str, int] | None = None,
        *,
        device_pixel_ratio: float | None = None,
    ) -> None:
        params: dict[str, Any] = {"context": self.id, "viewport": viewport}
        if device_pixel_ratio is not None:
            params["devicePixelRatio"] = device_pixel_ratio
        await self._send("browsingContext.setViewport", params)

    async def handle_user_prompt(self, *, accept: bool | None = None, user_text: str | None = None) -> None:
        params: dict[str, Any] = {"context": self.id}
        if accept is not None:
            params["accept"] = bool(accept)
        if user_text is not None:
            params["userText"] = user_text
        await self._send("browsingContext.handleUserPrompt", params)

    async def subscribe(self, events: list[str]) -> Any:
        if self.closing:
            raise BrowsingContextClosedError(self.reason)
        return await self.session.subscribe(events, [self.id])

    async def add_preload_script(self, function_declaration: str, *, sandbox: str | None = None) -> str:
        if self.parent is not None:
            raise ValueError("Preload scripts can only be added to top-level browsing contexts")
        return await self.user_context.browser.add_preload_script(
            function_declaration, contexts=[self.id], sandbox=sandbox
        )

    async def remove_preload_script(self, script: str) -> None:
        await self.user_context.browser.remove_preload_script(script)

    def create_window_realm(self, sandbox: str) -> WindowRealm:
        existing = self._realms.get(sandbox)
        if existing is not None and not existing.closing:
            return existing
        realm = WindowRealm(self, sandbox)
        self._realms[sandbox] = realm
        realm.once("destroyed", lambda _data: self._realms.pop(sandbox, None))
        return realm

    async def close(self, *, prompt_unload: bool = False) -> None:
        if self.closing:
            raise BrowsingContextClosedError(self.reason)
        children = self.children
        if children:
            await asyncio.gather(*(child._close_quietly(prompt_unload) for child in children))

        closed = asyncio.get_running_loop().create_future()

        def _on_closed(_data: Any) -> None:
            if not closed.done():
                closed.set_result(None)

        self.on("closed", _on_closed)
        try:
            try:
                await self._send("browsingContext.close", {"context": self.id, "promptUnload": bool(prompt_unload)})
            except ProtocolError as exc:
                # Nested frames are closed by their top-level context.
                if "top-level" not in str(exc):
                    raise
                return
            await closed
        finally:
            self.off("closed", _on_closed)

    async def _close_quietly(self, prompt_unload: bool) -> None:
        if self.closing:
            return
        try:
            await self.close(prompt_unload=prompt_unload)
        except BrowsingContextClosedError:
            pass

    # ─────────────────────────────────────────────────────────────────────────
    # Disposal
    # ─────────────────────────────────────────────────────────────────────────

    def _after_close(self) -> None:
        reason = self._reason
        for child in list(self._children.values()):
            child.dispose(reason)
        self._children.clear()
        self._requests.clear()
