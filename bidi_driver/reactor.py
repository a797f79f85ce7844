"""Synchronous call-in bridge over a private asyncio event loop.

All protocol I/O for a :class:`ReactorRunner` happens on one daemon thread
running one event loop. Other threads submit jobs with :meth:`ReactorRunner.sync`
and block until the job settles; code already on the loop thread runs the job
inline. :class:`Proxy` wraps returned ``bidi_driver`` objects so every later
call on them is routed through the same runner.
"""

from __future__ import annotations

import asyncio
import atexit
import concurrent.futures
import contextlib
import dataclasses
import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any

from .errors import ReactorClosedError

logger = logging.getLogger("bidi_driver.reactor")

_CLOSE_LIKE = frozenset({"close", "disconnect"})
_PACKAGE = __name__.rpartition(".")[0]


class ReactorRunner:
    def __init__(self, *, name: str = "bidi-reactor", close_at_exit: bool = True) -> None:
        self._loop = asyncio.new_event_loop()
        self._lock = threading.Lock()
        self._closing = False
        self._outstanding: set[concurrent.futures.Future] = set()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run_thread, name=name, daemon=True)
        self._thread.start()
        self._ready.wait()
        self._close_at_exit = close_at_exit
        if close_at_exit:
            atexit.register(self.close)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def _run_thread(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            try:
                leftovers = [t for t in asyncio.all_tasks(self._loop) if not t.done()]
                for task in leftovers:
                    task.cancel()
                if leftovers:
                    self._loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))
                self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            finally:
                self._loop.close()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closing

    @property
    def pending_jobs(self) -> int:
        with self._lock:
            return sum(1 for fut in self._outstanding if not fut.done())

    def in_reactor_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def close(self, *, timeout: float = 5.0) -> None:
        """Stop accepting jobs, let outstanding ones settle, then stop the loop."""
        with self._lock:
            if self._closing:
                already = True
            else:
                already = False
                self._closing = True
                outstanding = list(self._outstanding)
        if self._close_at_exit:
            atexit.unregister(self.close)

        if already:
            if not self.in_reactor_thread():
                self._thread.join(timeout)
            return

        if self.in_reactor_thread():
            task = self._loop.create_task(self._drain(outstanding, timeout))
            task.add_done_callback(lambda _t: self._loop.stop())
            return

        try:
            asyncio.run_coroutine_threadsafe(self._drain(outstanding, timeout), self._loop).result(timeout + 1.0)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Reactor drain failed: %s", exc)
        finally:
            with contextlib.suppress(RuntimeError):
                self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout)

    async def _drain(self, outstanding: list[concurrent.futures.Future], timeout: float) -> None:
        waiting = [asyncio.wrap_future(fut) for fut in outstanding if not fut.done()]
        if not waiting:
            return
        _done, still = await asyncio.wait(waiting, timeout=timeout)
        for fut in still:
            fut.cancel()
        if still:
            logger.warning("Cancelled %d reactor job(s) still running at close", len(still))
            await asyncio.gather(*still, return_exceptions=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Jobs
    # ─────────────────────────────────────────────────────────────────────────

    def sync(self, job: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``job(*args, **kwargs)`` on the reactor and return its result.

        Awaitable results are awaited on the loop. On the reactor thread the
        job is called inline and its result is returned unchanged.
        """
        if self.in_reactor_thread():
            return job(*args, **kwargs)

        with self._lock:
            if self._closing:
                raise ReactorClosedError("ReactorRunner is closed")
            fut = asyncio.run_coroutine_threadsafe(self._invoke(job, args, kwargs), self._loop)
            self._outstanding.add(fut)
        fut.add_done_callback(self._forget)

        try:
            return fut.result()
        except concurrent.futures.CancelledError:
            raise ReactorClosedError("ReactorRunner closed before the job completed") from None

    def _forget(self, fut: concurrent.futures.Future) -> None:
        with self._lock:
            self._outstanding.discard(fut)

    @staticmethod
    async def _invoke(job: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        result = job(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Wrapping
    # ─────────────────────────────────────────────────────────────────────────

    def wrap(self, value: Any) -> Any:
        if value is None or isinstance(value, Proxy):
            return value
        if isinstance(value, list):
            return [self.wrap(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.wrap(item) for item in value)
        if isinstance(value, dict):
            return {k: self.wrap(v) for k, v in value.items()}
        if self._proxyable(value):
            return Proxy(self, value)
        return value

    def unwrap(self, value: Any) -> Any:
        if isinstance(value, Proxy):
            return object.__getattribute__(value, "_target")
        if isinstance(value, list):
            return [self.unwrap(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.unwrap(item) for item in value)
        if isinstance(value, dict):
            return {k: self.unwrap(v) for k, v in value.items()}
        return value

    @staticmethod
    def _proxyable(value: Any) -> bool:
        if isinstance(value, (type, BaseException, ReactorRunner)):
            return False
        module = type(value).__module__ or ""
        if module != _PACKAGE and not module.startswith(_PACKAGE + "."):
            return False
        return not dataclasses.is_dataclass(value)


class Proxy:
    """Forwards attribute access and calls on ``target`` through a runner.

    An owning proxy also closes its runner after ``close()``/``disconnect()``.
    """

    __slots__ = ("_runner", "_target", "_owns_runner")

    def __init__(self, runner: ReactorRunner, target: Any, *, owns_runner: bool = False) -> None:
        object.__setattr__(self, "_runner", runner)
        object.__setattr__(self, "_target", target)
        object.__setattr__(self, "_owns_runner", owns_runner)

    def __getattr__(self, name: str) -> Any:
        runner: ReactorRunner = object.__getattribute__(self, "_runner")
        target = object.__getattribute__(self, "_target")
        owns_runner = object.__getattribute__(self, "_owns_runner")

        if owns_runner and name in _CLOSE_LIKE and runner.closed:
            return _closed_noop

        attr = runner.sync(getattr, target, name)
        if not callable(attr) or runner._proxyable(attr):
            return runner.wrap(attr)

        def _call(*args: Any, **kwargs: Any) -> Any:
            try:
                result = runner.sync(attr, *runner.unwrap(args), **runner.unwrap(kwargs))
                return runner.wrap(result)
            finally:
                if owns_runner and name in _CLOSE_LIKE:
                    runner.close()

        _call.__name__ = name
        return _call

    def __setattr__(self, name: str, value: Any) -> None:
        runner: ReactorRunner = object.__getattribute__(self, "_runner")
        target = object.__getattribute__(self, "_target")
        runner.sync(setattr, target, name, runner.unwrap(value))

    @property  # type: ignore[misc]
    def __class__(self) -> type:
        return type(object.__getattribute__(self, "_target"))

    def __eq__(self, other: Any) -> bool:
        runner: ReactorRunner = object.__getattribute__(self, "_runner")
        return object.__getattribute__(self, "_target") == runner.unwrap(other)

    def __hash__(self) -> int:
        return hash(object.__getattribute__(self, "_target"))

    def __repr__(self) -> str:
        return f"<Proxy {object.__getattribute__(self, '_target')!r}>"

    def __enter__(self) -> Proxy:
        return self

    def __exit__(self, *exc: Any) -> None:
        target = object.__getattribute__(self, "_target")
        if hasattr(target, "close"):
            self.close()


def _closed_noop(*_args: Any, **_kwargs: Any) -> None:
    return None


def connect_sync(ws_endpoint: str | None = None, **kwargs: Any) -> Any:
    """Blocking :func:`bidi_driver.browser.connect` returning an owning :class:`Proxy`."""
    from .browser import connect

    runner = ReactorRunner()
    try:
        browser = runner.sync(connect, ws_endpoint, **kwargs)
    except BaseException:
        runner.close()
        raise
    return Proxy(runner, browser, owns_runner=True)
