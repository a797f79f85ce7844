from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any

from ..errors import SessionEndedError
from .event_emitter import Disposable

if TYPE_CHECKING:
    from ..connection import Connection
    from .browser import Browser

# Protocol events re-emitted on the Session for the object tree.
SESSION_EVENTS: tuple[str, ...] = (
    "browsingContext.contextCreated",
    "browsingContext.contextDestroyed",
    "browsingContext.navigationStarted",
    "browsingContext.navigationCommitted",
    "browsingContext.fragmentNavigated",
    "browsingContext.navigationFailed",
    "browsingContext.navigationAborted",
    "browsingContext.domContentLoaded",
    "browsingContext.load",
    "browsingContext.historyUpdated",
    "browsingContext.userPromptOpened",
    "browsingContext.userPromptClosed",
    "network.beforeRequestSent",
    "network.responseStarted",
    "network.responseCompleted",
    "network.fetchError",
    "network.authRequired",
    "script.realmCreated",
    "script.realmDestroyed",
    "log.entryAdded",
    "input.fileDialogOpened",
)


class Session(Disposable):
    """One negotiated protocol session on a connection."""

    terminal_event = "ended"
    default_reason = "Session destroyed, probably because the connection broke"

    @classmethod
    async def from_connection(cls, connection: Connection, capabilities: dict[str, Any]) -> Session:
        info = await connection.send("session.new", {"capabilities": capabilities})
        return cls(connection, info if isinstance(info, dict) else {})

    def __init__(self, connection: Connection, info: dict[str, Any]) -> None:
        super().__init__()
        self.connection = connection
        self.id: str | None = info.get("sessionId")
        caps = info.get("capabilities")
        self.capabilities: dict[str, Any] = caps if isinstance(caps, dict) else {}
        self.browser: Browser | None = None

        for name in SESSION_EVENTS:
            self._listen(connection, name, functools.partial(self.emit, name))

        def _connection_closed() -> None:
            self.dispose("Session ended: connection closed")

        connection.on_close(_connection_closed)
        self._defer(lambda: connection.off_close(_connection_closed))

    @property
    def ended(self) -> bool:
        return self.closing

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        if self.closing:
            raise SessionEndedError(self.reason)
        return await self.connection.send(method, params, timeout=timeout)

    async def subscribe(self, events: list[str], contexts: list[str] | None = None) -> Any:
        params: dict[str, Any] = {"events": list(events)}
        if contexts:
            params["contexts"] = list(contexts)
        return await self.send("session.subscribe", params)

    async def unsubscribe(self, events: list[str], contexts: list[str] | None = None) -> Any:
        params: dict[str, Any] = {"events": list(events)}
        if contexts:
            params["contexts"] = list(contexts)
        return await self.send("session.unsubscribe", params)

    async def end(self) -> None:
        if self.closing:
            return
        try:
            await self.send("session.end")
        finally:
            self.dispose("Session ended")
