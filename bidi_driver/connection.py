from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import DEFAULT_TIMEOUT
from .errors import BidiError, ConnectionClosedError, ProtocolError, TimeoutError

logger = logging.getLogger("bidi_driver.connection")

Listener = Callable[[dict[str, Any]], None]


@dataclass
class PendingCommand:
    id: int
    method: str
    issued_at: float
    future: asyncio.Future


class Connection:
    """Command/response correlation and event fan-out over one transport.

    Every command gets a fresh id and a :class:`PendingCommand` that settles
    exactly once: with the result, a :class:`ProtocolError`, a
    :class:`TimeoutError`, or a :class:`ConnectionClosedError` on close.

    Events are delivered synchronously, in arrival order, to listeners in
    registration order. A failing listener is logged and skipped.
    """

    def __init__(self, transport: Any, *, default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self._transport = transport
        self.default_timeout = default_timeout
        self._next_id = 1
        self._pending: dict[int, PendingCommand] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._close_listeners: list[Callable[[], None]] = []
        self._closed = False
        transport.on_message(self._on_message)
        transport.on_close(self._on_transport_close)

    @property
    def transport(self) -> Any:
        return self._transport

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Send a command and await its result.

        ``timeout`` is in seconds; ``None`` uses :attr:`default_timeout` and
        ``0`` waits without a limit.
        """
        if self._closed:
            raise ConnectionClosedError(f"Connection closed: cannot send {method}")

        cmd_id = self._next_id
        self._next_id += 1
        fut = asyncio.get_running_loop().create_future()
        # Registered before the frame is written so a fast response always finds it.
        self._pending[cmd_id] = PendingCommand(cmd_id, method, time.monotonic(), fut)

        try:
            await self._transport.send({"id": cmd_id, "method": method, "params": params or {}})
        except BidiError:
            self._pending.pop(cmd_id, None)
            raise
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(cmd_id, None)
            raise ConnectionClosedError(f"Failed to send {method}: {exc}") from exc

        limit = self.default_timeout if timeout is None else timeout
        try:
            if not limit:
                return await fut
            return await asyncio.wait_for(fut, limit)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timeout of {int(limit * 1000)}ms exceeded waiting for {method}") from None
        finally:
            self._pending.pop(cmd_id, None)

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(event, None)

    def on_close(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._close_listeners.append(listener)
        return listener

    def off_close(self, listener: Callable[[], None]) -> None:
        with contextlib.suppress(ValueError):
            self._close_listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def close(self) -> None:
        if self._closed:
            return
        self._shutdown("Connection closed")
        await self._transport.close()

    def _on_transport_close(self) -> None:
        if self._closed:
            return
        self._shutdown("Connection closed by remote end")

    def _shutdown(self, reason: str) -> None:
        self._closed = True
        pending = list(self._pending.values())
        self._pending.clear()
        for cmd in pending:
            if not cmd.future.done():
                cmd.future.set_exception(ConnectionClosedError(f"{reason} (pending {cmd.method})"))

        listeners = list(self._close_listeners)
        self._close_listeners.clear()
        for listener in listeners:
            try:
                listener()
            except Exception:  # noqa: BLE001
                logger.exception("Connection close listener failed")

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound
    # ─────────────────────────────────────────────────────────────────────────

    def _on_message(self, msg: dict[str, Any]) -> None:
        if not isinstance(msg, dict):
            return

        msg_id = msg.get("id")
        if msg_id is not None:
            self._handle_response(msg_id, msg)
            return

        if msg.get("type") == "error":
            logger.warning("Protocol error without command id: %s: %s", msg.get("error"), msg.get("message"))
            return

        method = msg.get("method")
        if isinstance(method, str) and method:
            params = msg.get("params")
            self._dispatch(method, params if isinstance(params, dict) else {})
            return

        logger.warning("Dropping message of unknown shape: keys=%s", sorted(msg.keys()))

    def _handle_response(self, msg_id: Any, msg: dict[str, Any]) -> None:
        cmd = self._pending.pop(msg_id, None) if isinstance(msg_id, int) else None
        if cmd is None:
            logger.warning("Dropping response for unknown command id=%s", msg_id)
            return
        if cmd.future.done():
            return
        if msg.get("type") == "error" or "error" in msg:
            cmd.future.set_exception(
                ProtocolError(cmd.method, str(msg.get("message") or ""), error=msg.get("error"))
            )
            return
        cmd.future.set_result(msg.get("result"))

    def _dispatch(self, method: str, params: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(method, ())):
            try:
                listener(params)
            except Exception:  # noqa: BLE001
                logger.exception("Listener for %s failed", method)
