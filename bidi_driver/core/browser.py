from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import BrowserDisconnectedError
from .event_emitter import Disposable
from .realm import SharedWorkerRealm
from .user_context import UserContext

if TYPE_CHECKING:
    from .session import Session

SUBSCRIBED_MODULES: tuple[str, ...] = ("browsingContext", "network", "log", "script", "input")


class Browser(Disposable):
    """Root of the object tree for one session.

    Emits ``"closed"`` when closed deliberately and then the terminal
    ``"disconnected"``; user contexts dispose on either.
    """

    terminal_event = "disconnected"
    default_reason = "Browser was disconnected, probably because the session ended"

    @classmethod
    async def from_session(cls, session: Session, *, subscribe: bool = True) -> Browser:
        browser = cls(session)
        await browser._initialize(subscribe=subscribe)
        return browser

    def __init__(self, session: Session) -> None:
        super().__init__()
        self.session = session
        self._closed = False
        self._user_contexts: dict[str, UserContext] = {}
        self._shared_workers: dict[str, SharedWorkerRealm] = {}
        session.browser = self

        self._listen(session, "ended", lambda data: self.dispose((data or {}).get("reason")))
        self._listen(session, "script.realmCreated", self._on_realm_created)

    async def _initialize(self, *, subscribe: bool) -> None:
        if subscribe:
            await self.session.subscribe(list(SUBSCRIBED_MODULES))
        await self._sync_user_contexts()
        await self._sync_browsing_contexts()

    # ─────────────────────────────────────────────────────────────────────────
    # Tree
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self.closing

    @property
    def default_user_context(self) -> UserContext:
        return self._user_contexts.get(UserContext.DEFAULT) or self._adopt_user_context(UserContext.DEFAULT)

    @property
    def user_contexts(self) -> list[UserContext]:
        return list(self._user_contexts.values())

    @property
    def shared_workers(self) -> list[SharedWorkerRealm]:
        return list(self._shared_workers.values())

    def user_context(self, user_context_id: str) -> UserContext | None:
        return self._user_contexts.get(user_context_id)

    def _adopt_user_context(self, user_context_id: str) -> UserContext:
        existing = self._user_contexts.get(user_context_id)
        if existing is not None:
            return existing
        user_context = UserContext(self, user_context_id)
        self._user_contexts[user_context_id] = user_context
        user_context.once("closed", lambda _data: self._user_contexts.pop(user_context_id, None))
        return user_context

    async def _sync_user_contexts(self) -> None:
        result = await self.session.send("browser.getUserContexts")
        for info in (result or {}).get("userContexts") or []:
            if isinstance(info, dict) and isinstance(info.get("userContext"), str):
                self._adopt_user_context(info["userContext"])

    async def _sync_browsing_contexts(self) -> None:
        seen: set[str] = set()

        def _track(info: dict[str, Any]) -> None:
            if isinstance(info, dict) and isinstance(info.get("context"), str):
                seen.add(info["context"])

        self.session.on("browsingContext.contextCreated", _track)
        try:
            result = await self.session.send("browsingContext.getTree")
        finally:
            self.session.off("browsingContext.contextCreated", _track)

        pending: list[dict[str, Any]] = [c for c in (result or {}).get("contexts") or [] if isinstance(c, dict)]
        # Parents are replayed before their children.
        while pending:
            info = pending.pop(0)
            children = info.get("children") or []
            if info.get("context") not in seen:
                event = {k: v for k, v in info.items() if k != "children"}
                event.setdefault("parent", None)
                self.session.emit("browsingContext.contextCreated", event)
            for child in children:
                if isinstance(child, dict):
                    pending.append({**child, "parent": child.get("parent") or info.get("context")})

    def _on_realm_created(self, info: dict[str, Any]) -> None:
        if info.get("type") != "shared-worker" or not isinstance(info.get("realm"), str):
            return
        realm = SharedWorkerRealm(self, info["realm"], info.get("origin") or "")
        self._shared_workers[realm.id] = realm
        realm.once("destroyed", lambda _data: self._shared_workers.pop(realm.id, None))

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def _send(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if self.closing:
            raise BrowserDisconnectedError(self.reason)
        return await self.session.send(method, params)

    async def close(self) -> None:
        if self.closing:
            return
        try:
            await self._send("browser.close")
        finally:
            self._closed = True
            self.dispose("Browser closed")

    async def create_user_context(
        self,
        *,
        proxy_server: str | None = None,
        proxy_bypass_list: list[str] | None = None,
        accept_insecure_certs: bool | None = None,
    ) -> UserContext:
        params: dict[str, Any] = {}
        if proxy_server:
            proxy: dict[str, Any] = {"proxyType": "manual", "httpProxy": proxy_server, "sslProxy": proxy_server}
            if proxy_bypass_list:
                proxy["noProxy"] = list(proxy_bypass_list)
            params["proxy"] = proxy
        if accept_insecure_certs is not None:
            params["acceptInsecureCerts"] = bool(accept_insecure_certs)
        result = await self._send("browser.createUserContext", params)
        return self._adopt_user_context(result["userContext"])

    async def add_preload_script(
        self,
        function_declaration: str,
        *,
        contexts: list[str] | None = None,
        sandbox: str | None = None,
    ) -> str:
        params: dict[str, Any] = {"functionDeclaration": function_declaration}
        if contexts:
            params["contexts"] = list(contexts)
        if sandbox:
            params["sandbox"] = sandbox
        result = await self._send("script.addPreloadScript", params)
        return result["script"]

    async def remove_preload_script(self, script: str) -> None:
        await self._send("script.removePreloadScript", {"script": script})

    def _before_close(self) -> None:
        if self._closed:
            self.emit("closed", {"reason": self._reason})
