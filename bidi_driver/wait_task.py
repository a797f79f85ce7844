"""Predicate waits executed by browser-resident pollers.

An attempt creates and starts a poller in the realm (one round trip), then
awaits the poller's result (one round trip without a command deadline). The
poller is always stopped and disowned afterwards. Attempts are numbered; a
rerun starts a new attempt and anything an older attempt produces is
discarded, so concurrent reruns settle on the latest one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from .errors import AbortError, FrameDetachedError, RecoverableError, TimeoutError, WaitError
from .injected import AWAIT_RESULT, CREATE_POLLER, STOP_POLLER, function_source

if TYPE_CHECKING:
    from .abort import AbortSignal
    from .js_handle import JSHandle
    from .realm import FrameRealm

logger = logging.getLogger("bidi_driver.wait_task")

DETACHED_MESSAGE = "Execution context is not available in detached frame"

RECOVERABLE_MESSAGES: tuple[str, ...] = (
    "Execution context was destroyed",
    "Cannot find context with specified id",
    "DiscardedBrowsingContextError",
    "Browsing Context with id",
    "no such frame",
    "no such handle",
    'Unable to find an object reference for "handle"',
)


def classify_error(exc: BaseException) -> BaseException | None:
    """Return ``None`` when ``exc`` allows a silent retry, else the error to surface."""
    if isinstance(exc, RecoverableError):
        return None
    message = str(exc)
    if DETACHED_MESSAGE in message:
        return FrameDetachedError("Waiting failed: Frame detached")
    if any(fragment in message for fragment in RECOVERABLE_MESSAGES):
        return None
    if isinstance(exc, (FrameDetachedError, AbortError, TimeoutError)):
        return exc
    error = WaitError(f"Waiting failed: {message}")
    error.__cause__ = exc
    return error


def normalize_polling(polling: Any) -> str | float:
    if polling in ("raf", "mutation"):
        return polling
    if isinstance(polling, bool) or not isinstance(polling, (int, float)):
        raise ValueError(f"Unknown polling option: {polling!r}")
    if polling <= 0:
        raise ValueError(f"Cannot poll with non-positive interval: {polling}")
    return polling


class WaitTask:
    def __init__(
        self,
        realm: FrameRealm,
        predicate: str,
        *args: Any,
        polling: Any = "raf",
        timeout: float | None = None,
        root: JSHandle | None = None,
        signal: AbortSignal | None = None,
    ) -> None:
        self._realm = realm
        self._predicate = function_source(predicate)
        self._args = args
        self._polling = normalize_polling(polling)
        self._root = root
        self._timeout = timeout
        self._signal = signal

        self._loop = asyncio.get_running_loop()
        self._result: asyncio.Future = self._loop.create_future()
        self._result.add_done_callback(self._on_result_done)
        self._generation = 0
        self._poller: JSHandle | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task] = set()

        if signal is not None and signal.aborted:
            self._result.set_exception(signal.error())
            return

        realm.task_manager.add(self)
        if timeout:
            self._timer = self._loop.call_later(timeout, self._on_timeout)
        if signal is not None:
            signal.add_listener(self._on_abort)
        self.rerun()

    @property
    def state(self) -> str:
        if not self._result.done():
            return "running"
        if self._result.cancelled() or self._result.exception() is not None:
            return "terminated"
        return "resolved"

    @property
    def attempts(self) -> int:
        return self._generation

    async def result(self) -> JSHandle:
        return await self._result

    # ─────────────────────────────────────────────────────────────────────────
    # Attempts
    # ─────────────────────────────────────────────────────────────────────────

    def rerun(self) -> None:
        if self._result.done():
            return
        self._generation += 1
        poller, self._poller = self._poller, None
        if poller is not None:
            self._spawn(self._stop_and_dispose(poller))
        self._spawn(self._run(self._generation))

    def _stale(self, generation: int) -> bool:
        return generation != self._generation or self._result.done()

    async def _run(self, generation: int) -> None:
        try:
            util = await self._realm.injected_util()
            poller = await self._realm.evaluate_handle(
                CREATE_POLLER, util, self._predicate, self._polling, self._root, *self._args
            )
        except Exception as exc:  # noqa: BLE001
            self._on_attempt_error(generation, exc)
            return

        if self._stale(generation):
            await self._stop_and_dispose(poller)
            return

        self._poller = poller
        try:
            value = await poller.evaluate_handle(AWAIT_RESULT, timeout=0)
        except Exception as exc:  # noqa: BLE001
            self._on_attempt_error(generation, exc)
            return
        finally:
            if self._poller is poller:
                self._poller = None
                await self._stop_and_dispose(poller)

        if self._stale(generation):
            await self._dispose_quietly(value)
            return
        self._result.set_result(value)
        self.terminate()

    def _on_attempt_error(self, generation: int, exc: BaseException) -> None:
        if self._stale(generation):
            logger.debug("Ignoring failure of superseded attempt %d: %s", generation, exc)
            return
        error = classify_error(exc)
        if error is None:
            logger.debug("Rerunning wait task after recoverable error: %s", exc)
            self.rerun()
            return
        self.terminate(error)

    # ─────────────────────────────────────────────────────────────────────────
    # Termination
    # ─────────────────────────────────────────────────────────────────────────

    def terminate(self, error: BaseException | None = None) -> None:
        self._realm.task_manager.delete(self)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._signal is not None:
            self._signal.remove_listener(self._on_abort)
        if not self._result.done():
            self._result.set_exception(error or WaitError("Waiting failed: task terminated"))
        poller, self._poller = self._poller, None
        if poller is not None:
            self._spawn(self._stop_and_dispose(poller))

    def _on_timeout(self) -> None:
        self._timer = None
        ms = int(round((self._timeout or 0) * 1000))
        self.terminate(TimeoutError(f"Waiting failed: {ms}ms exceeded"))

    def _on_abort(self, _reason: Any) -> None:
        signal = self._signal
        self.terminate(signal.error() if signal is not None else AbortError())

    def _on_result_done(self, fut: asyncio.Future) -> None:
        if fut.cancelled():
            self.terminate()

    # ─────────────────────────────────────────────────────────────────────────
    # Cleanup
    # ─────────────────────────────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self._loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _stop_and_dispose(self, poller: JSHandle) -> None:
        try:
            await poller.evaluate(STOP_POLLER)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to stop poller: %s", exc)
        await self._dispose_quietly(poller)

    @staticmethod
    async def _dispose_quietly(handle: JSHandle) -> None:
        try:
            await handle.dispose()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to dispose handle: %s", exc)
