from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import RealmDestroyedError
from .event_emitter import Disposable

if TYPE_CHECKING:
    from .browser import Browser
    from .browsing_context import BrowsingContext


class Realm(Disposable):
    """A script execution realm.

    ``"destroyed"`` is terminal. ``"updated"`` means the realm was replaced in
    place (for example by a navigation) and handles from before are invalid.
    """

    terminal_event = "destroyed"
    default_reason = "Realm already destroyed, probably because all associated browsing contexts closed"

    def __init__(self, realm_id: str, origin: str = "") -> None:
        super().__init__()
        self.id = realm_id
        self.origin = origin

    @property
    def session(self) -> Any:
        raise NotImplementedError

    @property
    def target(self) -> dict[str, Any]:
        return {"realm": self.id}

    @property
    def destroyed(self) -> bool:
        return self.closing

    async def _send(self, method: str, params: dict[str, Any], *, timeout: float | None = None) -> Any:
        if self.closing:
            raise RealmDestroyedError(self.reason)
        return await self.session.send(method, params, timeout=timeout)

    async def disown(self, handles: list[str]) -> None:
        if not handles:
            return
        await self._send("script.disown", {"target": self.target, "handles": list(handles)})

    async def call_function(
        self,
        function_declaration: str,
        await_promise: bool,
        *,
        timeout: float | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        """Run ``script.callFunction``; ``options`` use protocol parameter names."""
        params = {
            "functionDeclaration": function_declaration,
            "awaitPromise": bool(await_promise),
            "target": self.target,
            **{k: v for k, v in options.items() if v is not None},
        }
        return await self._send("script.callFunction", params, timeout=timeout)

    async def evaluate(
        self,
        expression: str,
        await_promise: bool,
        *,
        timeout: float | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        params = {
            "expression": expression,
            "awaitPromise": bool(await_promise),
            "target": self.target,
            **{k: v for k, v in options.items() if v is not None},
        }
        return await self._send("script.evaluate", params, timeout=timeout)


class WindowRealm(Realm):
    """The default or a sandboxed realm of one browsing context.

    The object outlives individual browser realms: each matching
    ``script.realmCreated`` swaps in the new id and emits ``"updated"``.
    """

    def __init__(self, browsing_context: BrowsingContext, sandbox: str | None = None) -> None:
        super().__init__("", "")
        self.browsing_context = browsing_context
        self.sandbox = sandbox
        self._workers: dict[str, DedicatedWorkerRealm] = {}

        def _context_closed(data: Any) -> None:
            self.dispose((data or {}).get("reason") or "Browsing context closed")

        self._listen(browsing_context, "closed", _context_closed)
        self._listen(browsing_context.session, "script.realmCreated", self._on_realm_created)

    @property
    def session(self) -> Any:
        return self.browsing_context.session

    @property
    def target(self) -> dict[str, Any]:
        target: dict[str, Any] = {"context": self.browsing_context.id}
        if self.sandbox:
            target["sandbox"] = self.sandbox
        return target

    @property
    def workers(self) -> list[DedicatedWorkerRealm]:
        return list(self._workers.values())

    def _on_realm_created(self, info: dict[str, Any]) -> None:
        realm_id = info.get("realm")
        if not isinstance(realm_id, str):
            return
        if info.get("type") == "window":
            if info.get("context") != self.browsing_context.id or info.get("sandbox") != self.sandbox:
                return
            self.id = realm_id
            self.origin = info.get("origin") or ""
            self.emit("updated", {"realm": self})
            return
        if info.get("type") == "dedicated-worker" and self.id and self.id in (info.get("owners") or []):
            worker = DedicatedWorkerRealm(self, realm_id, info.get("origin") or "")
            self._workers[realm_id] = worker
            worker.once("destroyed", lambda _data: self._workers.pop(realm_id, None))
            self.browsing_context.emit("worker", {"realm": worker})


class DedicatedWorkerRealm(Realm):
    def __init__(self, owner: Realm, realm_id: str, origin: str) -> None:
        super().__init__(realm_id, origin)
        self.owners: list[Realm] = [owner]
        self._workers: dict[str, DedicatedWorkerRealm] = {}

        self._listen(owner, "destroyed", lambda data: self.dispose((data or {}).get("reason")))
        self._listen(self.session, "script.realmDestroyed", self._on_realm_destroyed)
        self._listen(self.session, "script.realmCreated", self._on_realm_created)

    @property
    def session(self) -> Any:
        return self.owners[0].session

    def _on_realm_destroyed(self, info: dict[str, Any]) -> None:
        if info.get("realm") == self.id:
            self.dispose("Realm already destroyed")

    def _on_realm_created(self, info: dict[str, Any]) -> None:
        realm_id = info.get("realm")
        if info.get("type") != "dedicated-worker" or self.id not in (info.get("owners") or []):
            return
        if not isinstance(realm_id, str) or realm_id in self._workers:
            return
        worker = DedicatedWorkerRealm(self, realm_id, info.get("origin") or "")
        self._workers[realm_id] = worker
        worker.once("destroyed", lambda _data: self._workers.pop(realm_id, None))


class SharedWorkerRealm(Realm):
    def __init__(self, browser: Browser, realm_id: str, origin: str) -> None:
        super().__init__(realm_id, origin)
        self.browser = browser
        self._listen(browser, "disconnected", lambda data: self.dispose((data or {}).get("reason")))
        self._listen(self.session, "script.realmDestroyed", self._on_realm_destroyed)

    @property
    def session(self) -> Any:
        return self.browser.session

    def _on_realm_destroyed(self, info: dict[str, Any]) -> None:
        if info.get("realm") == self.id:
            self.dispose("Realm already destroyed")
