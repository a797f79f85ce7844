from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from typing import Any

from .errors import AbortError

logger = logging.getLogger("bidi_driver.abort")


class AbortSignal:
    def __init__(self) -> None:
        self._aborted = False
        self._reason: Any = None
        self._listeners: list[Callable[[Any], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, listener: Callable[[Any], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Any], None]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def throw_if_aborted(self) -> None:
        if self._aborted:
            raise self.error()

    def error(self) -> BaseException:
        reason = self._reason
        if isinstance(reason, BaseException):
            return reason
        return AbortError(str(reason)) if reason is not None else AbortError()

    def _abort(self, reason: Any) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        listeners = list(self._listeners)
        self._listeners.clear()
        for listener in listeners:
            try:
                listener(reason)
            except Exception:  # noqa: BLE001
                logger.exception("Abort listener failed")


class AbortController:
    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        self.signal._abort(reason)
