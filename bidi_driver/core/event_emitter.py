"""Event emitter and the two-phase disposal base shared by the object tree.

Disposal is split into ``_prepare_close`` (capture the reason, emit the
terminal event) and ``_commit_close`` (flip the disposed flag, release
listeners). :meth:`Disposable.dispose` always runs them in that order because
:meth:`EventEmitter.emit` drops deliveries once the flag is set.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("bidi_driver.core")

Listener = Callable[[Any], None]


class EventEmitter:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def on(self, event: str, listener: Listener) -> Listener:
        if self._disposed:
            return listener
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        def _once(data: Any) -> None:
            self.off(event, _once)
            listener(data)

        _once.__wrapped__ = listener  # type: ignore[attr-defined]
        return self.on(event, _once)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for registered in listeners:
            if registered is listener or getattr(registered, "__wrapped__", None) is listener:
                listeners.remove(registered)
                break
        if not listeners:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, data: Any = None) -> bool:
        if self._disposed:
            return False
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        for listener in list(listeners):
            try:
                listener(data)
            except Exception:  # noqa: BLE001
                logger.exception("Listener for %r on %s failed", event, type(self).__name__)
        return True


class DisposableStack:
    """LIFO stack of cleanup callbacks run once on dispose."""

    def __init__(self) -> None:
        self._callbacks: list[Callable[[], Any]] = []
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def defer(self, callback: Callable[[], Any]) -> None:
        if self._disposed:
            callback()
            return
        self._callbacks.append(callback)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        while self._callbacks:
            callback = self._callbacks.pop()
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("Cleanup callback failed")


class Disposable(EventEmitter):
    """Base for lifecycle objects that end exactly once with a reason."""

    terminal_event = "closed"
    default_reason = "Disposed"

    def __init__(self) -> None:
        super().__init__()
        self._reason: str | None = None
        self._closing = False
        self._disposables = DisposableStack()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def closing(self) -> bool:
        return self._closing or self._disposed

    def dispose(self, reason: str | None = None) -> None:
        if self._closing or self._disposed:
            return
        self._prepare_close(reason)
        self._commit_close()

    def _prepare_close(self, reason: str | None) -> None:
        self._closing = True
        if self._reason is None:
            self._reason = reason or self.default_reason
        self._before_close()
        self.emit(self.terminal_event, self._terminal_payload())

    def _commit_close(self) -> None:
        self._disposed = True
        try:
            self._after_close()
        finally:
            self._listeners.clear()
            self._disposables.dispose()

    def _terminal_payload(self) -> dict[str, Any]:
        return {"reason": self._reason}

    def _before_close(self) -> None:
        """Hook: runs before the terminal event while listeners are live."""

    def _after_close(self) -> None:
        """Hook: runs after the disposed flag is set."""

    def _listen(self, emitter: Any, event: str, handler: Listener) -> Listener:
        """Subscribe to ``emitter`` until this object is disposed."""
        emitter.on(event, handler)
        self._disposables.defer(lambda: emitter.off(event, handler))
        return handler

    def _defer(self, callback: Callable[[], Any]) -> None:
        self._disposables.defer(callback)
