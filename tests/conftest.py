from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import Callable
from typing import Any

import pytest

from bidi_driver.errors import ConnectionClosedError
from bidi_driver.injected import AWAIT_RESULT, CREATE_POLLER, INJECTED_SOURCE, STOP_POLLER


class FakeProtocolFault(Exception):
    """Raised by a responder to answer with an error envelope."""

    def __init__(self, error: str, message: str = "") -> None:
        super().__init__(f"{error}: {message}")
        self.error = error
        self.message = message


def context_info(
    context_id: str,
    *,
    url: str = "about:blank",
    user_context: str = "default",
    parent: str | None = None,
    children: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "context": context_id,
        "url": url,
        "userContext": user_context,
        "parent": parent,
        "children": children or [],
        "originalOpener": None,
    }


def success(result: dict[str, Any], realm: str = "realm-1") -> dict[str, Any]:
    return {"type": "success", "result": result, "realm": realm}


class FakeScript:
    """Answers script.* commands the way a browser realm would for wait tasks.

    ``await_result`` and ``call`` may be replaced per test; they receive the
    command params and return a script result (or an awaitable of one).
    """

    def __init__(self, transport: FakeTransport) -> None:
        self.transport = transport
        self.util_evaluations = 0
        self.pollers_created = 0
        self.stopped: list[str] = []
        self.disowned: list[str] = []
        self._handles = itertools.count(1)
        self.await_result: Callable[[dict[str, Any]], Any] = lambda _p: success(
            {"type": "boolean", "value": True, "handle": self.new_handle("value")}
        )
        self.call: Callable[[dict[str, Any]], Any] = lambda _p: success({"type": "number", "value": 42})
        self.evaluate: Callable[[dict[str, Any]], Any] = lambda _p: success({"type": "string", "value": "ok"})

        transport.respond("script.evaluate", self._on_evaluate)
        transport.respond("script.callFunction", self._on_call_function)
        transport.respond("script.disown", self._on_disown)

    def new_handle(self, prefix: str) -> str:
        return f"{prefix}-{next(self._handles)}"

    @property
    def awaits(self) -> int:
        return sum(1 for p in self.transport.calls("script.callFunction") if p["functionDeclaration"] == AWAIT_RESULT)

    def _on_evaluate(self, params: dict[str, Any]) -> Any:
        if params["expression"] == INJECTED_SOURCE:
            self.util_evaluations += 1
            return success({"type": "object", "handle": self.new_handle("util")})
        return self.evaluate(params)

    def _on_call_function(self, params: dict[str, Any]) -> Any:
        declaration = params["functionDeclaration"]
        if declaration == CREATE_POLLER:
            self.pollers_created += 1
            return success({"type": "object", "handle": self.new_handle("poller")})
        if declaration == AWAIT_RESULT:
            return self.await_result(params)
        if declaration == STOP_POLLER:
            self.stopped.append(params["arguments"][0].get("handle"))
            return success({"type": "undefined"})
        return self.call(params)

    def _on_disown(self, params: dict[str, Any]) -> dict[str, Any]:
        self.disowned.extend(params["handles"])
        return {}


class FakeTransport:
    """In-memory stand-in for :class:`bidi_driver.transport.Transport`.

    Outbound commands are recorded in ``sent``. ``responders`` map a method to
    a callable returning the result (or an awaitable resolving to it); a
    responder raising :class:`FakeProtocolFault` produces an error envelope.
    Commands without a responder stay unanswered. Answers are delivered from a
    separate task, after ``send`` has returned.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.responders: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.closed = False
        self._on_message: Callable[[dict[str, Any]], None] | None = None
        self._on_close: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task] = set()
        self._contexts = itertools.count(100)
        self._user_contexts = itertools.count(1)

    # transport surface

    def on_message(self, handler: Callable[[dict[str, Any]], None] | None) -> None:
        self._on_message = handler

    def on_close(self, handler: Callable[[], None] | None) -> None:
        self._on_close = handler

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionClosedError("Transport is closed")
        self.sent.append(message)
        responder = self.responders.get(message["method"])
        if responder is None:
            return
        task = asyncio.get_running_loop().create_task(self._answer(message, responder))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        handler, self._on_close = self._on_close, None
        if handler is not None:
            handler()

    # scripting

    def respond(self, method: str, responder: Any) -> None:
        if callable(responder):
            self.responders[method] = responder
        else:
            self.responders[method] = lambda _params, value=responder: value

    async def _answer(self, message: dict[str, Any], responder: Callable[[dict[str, Any]], Any]) -> None:
        try:
            result = responder(message.get("params") or {})
            if inspect.isawaitable(result):
                result = await result
        except FakeProtocolFault as fault:
            self.deliver({"type": "error", "id": message["id"], "error": fault.error, "message": fault.message})
            return
        self.deliver({"type": "success", "id": message["id"], "result": result})

    def deliver(self, message: dict[str, Any]) -> None:
        if not self.closed and self._on_message is not None:
            self._on_message(message)

    def emit(self, method: str, params: dict[str, Any]) -> None:
        self.deliver({"type": "event", "method": method, "params": params})

    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]

    def calls(self, method: str) -> list[dict[str, Any]]:
        return [m["params"] for m in self.sent if m["method"] == method]

    # browser scaffold

    def install_browser(
        self,
        *,
        tree: list[dict[str, Any]] | None = None,
        user_contexts: tuple[str, ...] = ("default",),
    ) -> None:
        self.respond("session.status", {"ready": True, "message": ""})
        self.respond(
            "session.new",
            {
                "sessionId": "session-1",
                "capabilities": {"browserName": "firefox", "browserVersion": "130.0", "userAgent": "Fake/1.0"},
            },
        )
        self.respond("session.subscribe", {"subscription": "sub-1"})
        self.respond("session.end", {})
        self.respond("browser.getUserContexts", {"userContexts": [{"userContext": uc} for uc in user_contexts]})
        self.respond("browsingContext.getTree", {"contexts": tree if tree is not None else [context_info("ctx-1")]})
        self.respond("browsingContext.create", self._create_context)
        self.respond("browsingContext.navigate", lambda p: {"navigation": None, "url": p["url"]})
        self.respond("browsingContext.reload", {"navigation": None, "url": ""})
        self.respond("browsingContext.traverseHistory", {})
        self.respond("browser.createUserContext", lambda _p: {"userContext": f"uc-{next(self._user_contexts)}"})
        self.respond("browser.removeUserContext", {})
        self.respond("browser.close", {})
        self.responders.setdefault("script.disown", lambda _params: {})

    def _create_context(self, params: dict[str, Any]) -> dict[str, Any]:
        context_id = f"ctx-{next(self._contexts)}"
        info = context_info(context_id, user_context=params.get("userContext") or "default")
        info["children"] = None
        # The browser announces the context before answering the command.
        self.emit("browsingContext.contextCreated", info)
        return {"context": context_id}

    async def open_browser(self, **config: Any) -> Any:
        from bidi_driver.browser import connect
        from bidi_driver.config import BidiConfig

        if "session.status" not in self.responders:
            self.install_browser()
        return await connect(transport=self, config=BidiConfig(**config))


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_script(fake_transport: FakeTransport) -> FakeScript:
    return FakeScript(fake_transport)


@pytest.fixture
def protocol_fault() -> type[FakeProtocolFault]:
    return FakeProtocolFault


@pytest.fixture
def make_context_info() -> Callable[..., dict[str, Any]]:
    return context_info
