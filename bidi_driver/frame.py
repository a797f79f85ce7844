from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import FrameDetachedError, TimeoutError
from .realm import FrameRealm
from .timeout_settings import TimeoutSettings

if TYPE_CHECKING:
    from .abort import AbortSignal
    from .core.browsing_context import BrowsingContext
    from .core.navigation import Navigation
    from .js_handle import JSHandle

ISOLATED_WORLD_NAME = "__bidi_driver_isolated_world__"

_LOAD_EVENTS = {"load": "load", "domcontentloaded": "dom_content_loaded"}
# Allowed in-flight requests per network-idle option.
_NETWORK_IDLE = {"networkidle0": 0, "networkidle2": 2}


def _split_wait_until(wait_until: str) -> tuple[str, int | None]:
    if wait_until in _NETWORK_IDLE:
        return "load", _NETWORK_IDLE[wait_until]
    return wait_until, None


@dataclass(frozen=True)
class NavigationResult:
    url: str
    navigation_id: str | None = None


class NavigationWaiter:
    """Waits for the next navigation of one browsing context.

    States: ``idle`` until a navigation starts, ``started`` while one is
    tracked, ``settled`` once resolved. While idle, the first history or
    fragment update settles with ``None``. A navigation already in flight
    when the waiter is created is tracked from the start. Once started, a
    load event settles the wait with a :class:`NavigationResult` when it
    belongs to a tracked navigation or to one nested inside it (a redirect
    during load); a fragment/failed/aborted outcome yields ``None``.
    """

    def __init__(self, browsing_context: BrowsingContext, *, wait_until: str = "load") -> None:
        if wait_until not in _LOAD_EVENTS:
            raise ValueError(f"Unknown wait_until value: {wait_until!r}")
        self.browsing_context = browsing_context
        self.state = "idle"
        self.navigation: Navigation | None = None
        self._tracked: list[Navigation] = []
        self._load_event = _LOAD_EVENTS[wait_until]
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._subscriptions: list[tuple[Any, str, Any]] = []

        if browsing_context.closing:
            self._fail(FrameDetachedError("Navigating frame was detached"))
            return
        self._subscribe(browsing_context, "navigation", self._on_navigation)
        self._subscribe(browsing_context, "history_updated", self._on_same_document)
        self._subscribe(browsing_context, "fragment_navigated", self._on_same_document)
        self._subscribe(browsing_context, self._load_event, self._on_load)
        self._subscribe(browsing_context, "closed", self._on_closed)

        current = browsing_context.navigation
        if current is not None and not current.closing:
            self._on_navigation({"navigation": current})

    def _subscribe(self, emitter: Any, event: str, handler: Any) -> None:
        emitter.on(event, handler)
        self._subscriptions.append((emitter, event, handler))

    def dispose(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for emitter, event, handler in subscriptions:
            emitter.off(event, handler)

    @property
    def done(self) -> bool:
        return self._future.done()

    def _settle(self, value: NavigationResult | None) -> None:
        if self._future.done():
            return
        self.state = "settled"
        self._future.set_result(value)
        self.dispose()

    def _fail(self, error: BaseException) -> None:
        if self._future.done():
            return
        self.state = "settled"
        self._future.set_exception(error)
        self.dispose()

    # ─────────────────────────────────────────────────────────────────────────
    # Event handlers
    # ─────────────────────────────────────────────────────────────────────────

    def _on_navigation(self, data: dict[str, Any]) -> None:
        navigation = data["navigation"]
        if navigation in self._tracked:
            return
        # A later navigation supersedes the tracked one; its load is the one that arrives.
        self.navigation = navigation
        self._tracked.append(navigation)
        self.state = "started"
        self._subscribe(navigation, "fragment", self._on_navigation_outcome)
        self._subscribe(navigation, "failed", self._on_navigation_outcome)
        self._subscribe(navigation, "aborted", self._on_navigation_outcome)

    def _tracks(self, navigation_id: str | None) -> bool:
        for navigation in self._tracked:
            while navigation is not None:
                if navigation.id is None or navigation.id == navigation_id:
                    return True
                navigation = navigation.nested
        return False

    def _on_same_document(self, _data: Any) -> None:
        if self.state == "idle":
            self._settle(None)

    def _on_load(self, data: dict[str, Any]) -> None:
        if self.navigation is None:
            return
        event_id = (data or {}).get("navigation")
        if event_id and not self._tracks(event_id):
            return
        navigation_id = event_id or self.navigation.id
        self._settle(NavigationResult(url=self.browsing_context.url, navigation_id=navigation_id))

    def _on_navigation_outcome(self, _data: Any) -> None:
        if self.browsing_context.closing:
            self._fail(FrameDetachedError("Navigating frame was detached"))
            return
        self._settle(None)

    def _on_closed(self, _data: Any) -> None:
        self._fail(FrameDetachedError("Navigating frame was detached"))

    # ─────────────────────────────────────────────────────────────────────────
    # Waiting
    # ─────────────────────────────────────────────────────────────────────────

    async def wait(self, timeout: float | None = None, *, signal: AbortSignal | None = None) -> NavigationResult | None:
        def _on_abort(_reason: Any) -> None:
            self._fail(signal.error())

        if signal is not None:
            if signal.aborted:
                self._fail(signal.error())
            else:
                signal.add_listener(_on_abort)
        try:
            if not timeout:
                return await self._future
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Navigation timeout of {int(timeout * 1000)} ms exceeded") from None
        finally:
            if signal is not None:
                signal.remove_listener(_on_abort)
            self.dispose()


class Frame:
    """A browsing context seen as a frame: evaluation, waits and navigation."""

    def __init__(
        self,
        browsing_context: BrowsingContext,
        *,
        timeout_settings: TimeoutSettings | None = None,
        parent: Frame | None = None,
    ) -> None:
        self.browsing_context = browsing_context
        self.timeout_settings = timeout_settings or TimeoutSettings()
        self._parent = parent
        self._children: dict[str, Frame] = {}
        self.main_realm = FrameRealm(self, browsing_context.default_realm, self.timeout_settings)
        self.isolated_realm = FrameRealm(
            self, browsing_context.create_window_realm(ISOLATED_WORLD_NAME), self.timeout_settings
        )

    @property
    def id(self) -> str:
        return self.browsing_context.id

    @property
    def url(self) -> str:
        return self.browsing_context.url

    @property
    def detached(self) -> bool:
        return self.browsing_context.closing

    @property
    def parent_frame(self) -> Frame | None:
        return self._parent

    @property
    def child_frames(self) -> list[Frame]:
        frames = []
        for context in self.browsing_context.children:
            frame = self._children.get(context.id)
            if frame is None:
                frame = Frame(context, timeout_settings=self.timeout_settings, parent=self)
                self._children[context.id] = frame
                context.once("closed", lambda _data, cid=context.id: self._children.pop(cid, None))
            frames.append(frame)
        return frames

    def _assert_not_detached(self) -> None:
        if self.detached:
            raise FrameDetachedError(f"Attempted to use detached Frame '{self.id}'")

    def _navigation_timeout(self, timeout: float | None) -> float:
        return self.timeout_settings.navigation_timeout() if timeout is None else timeout

    # ─────────────────────────────────────────────────────────────────────────
    # Script
    # ─────────────────────────────────────────────────────────────────────────

    async def evaluate(self, script: str, *args: Any) -> Any:
        self._assert_not_detached()
        return await self.main_realm.evaluate(script, *args)

    async def evaluate_handle(self, script: str, *args: Any) -> JSHandle:
        self._assert_not_detached()
        return await self.main_realm.evaluate_handle(script, *args)

    async def wait_for_function(
        self,
        page_function: str,
        *args: Any,
        polling: Any = "raf",
        timeout: float | None = None,
        root: JSHandle | None = None,
        signal: AbortSignal | None = None,
    ) -> JSHandle:
        self._assert_not_detached()
        return await self.main_realm.wait_for_function(
            page_function, *args, polling=polling, timeout=timeout, root=root, signal=signal
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def wait_for_navigation(
        self,
        *,
        wait_until: str = "load",
        timeout: float | None = None,
        signal: AbortSignal | None = None,
    ) -> NavigationResult | None:
        self._assert_not_detached()
        load_event, concurrency = _split_wait_until(wait_until)
        waiter = NavigationWaiter(self.browsing_context, wait_until=load_event)
        return await self._await_navigation(waiter, self._navigation_timeout(timeout), signal, concurrency)

    async def _await_navigation(
        self,
        waiter: NavigationWaiter,
        timeout: float,
        signal: AbortSignal | None,
        concurrency: int | None,
    ) -> NavigationResult | None:
        if concurrency is None:
            return await waiter.wait(timeout, signal=signal)
        navigation = asyncio.ensure_future(waiter.wait(timeout, signal=signal))
        idle = asyncio.ensure_future(self.wait_for_network_idle(timeout=timeout, concurrency=concurrency))
        try:
            result, _ = await asyncio.gather(navigation, idle)
        except BaseException:
            navigation.cancel()
            idle.cancel()
            raise
        return result

    async def wait_for_network_idle(
        self,
        *,
        idle_time: float = 0.5,
        timeout: float | None = None,
        concurrency: int = 0,
    ) -> None:
        """Wait until at most ``concurrency`` requests stay in flight for ``idle_time`` seconds."""
        self._assert_not_detached()
        context = self.browsing_context
        loop = asyncio.get_running_loop()
        idle: asyncio.Future = loop.create_future()
        timer: asyncio.TimerHandle | None = None

        def _resolve() -> None:
            if not idle.done():
                idle.set_result(None)

        def _on_inflight(data: dict[str, Any]) -> None:
            nonlocal timer
            if timer is not None:
                timer.cancel()
                timer = None
            if data["inflight"] <= concurrency:
                timer = loop.call_later(idle_time, _resolve)

        def _on_closed(_data: Any) -> None:
            if not idle.done():
                idle.set_exception(FrameDetachedError("Frame detached while waiting for network idle"))

        context.on("inflight_changed", _on_inflight)
        context.on("closed", _on_closed)
        _on_inflight({"inflight": context.inflight_requests})
        limit = self.timeout_settings.timeout() if timeout is None else timeout
        try:
            if not limit:
                await idle
            else:
                await asyncio.wait_for(idle, limit)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Network idle timeout of {int(limit * 1000)} ms exceeded") from None
        finally:
            if timer is not None:
                timer.cancel()
            context.off("inflight_changed", _on_inflight)
            context.off("closed", _on_closed)

    async def _navigate_with(self, command: Any, *, wait_until: str, timeout: float | None) -> NavigationResult | None:
        load_event, concurrency = _split_wait_until(wait_until)
        waiter = NavigationWaiter(self.browsing_context, wait_until=load_event)
        try:
            await command()
        except BaseException:
            waiter.dispose()
            raise
        return await self._await_navigation(waiter, self._navigation_timeout(timeout), None, concurrency)

    async def goto(
        self, url: str, *, wait_until: str = "load", timeout: float | None = None
    ) -> NavigationResult | None:
        self._assert_not_detached()
        context = self.browsing_context
        return await self._navigate_with(
            lambda: context.navigate(url, wait="none"), wait_until=wait_until, timeout=timeout
        )

    async def reload(self, *, wait_until: str = "load", timeout: float | None = None) -> NavigationResult | None:
        self._assert_not_detached()
        context = self.browsing_context
        return await self._navigate_with(lambda: context.reload(wait="none"), wait_until=wait_until, timeout=timeout)

    async def go_back(self, *, wait_until: str = "load", timeout: float | None = None) -> NavigationResult | None:
        self._assert_not_detached()
        context = self.browsing_context
        return await self._navigate_with(lambda: context.traverse_history(-1), wait_until=wait_until, timeout=timeout)

    async def go_forward(self, *, wait_until: str = "load", timeout: float | None = None) -> NavigationResult | None:
        self._assert_not_detached()
        context = self.browsing_context
        return await self._navigate_with(lambda: context.traverse_history(1), wait_until=wait_until, timeout=timeout)

    def __repr__(self) -> str:
        return f"<Frame {self.id} url={self.url!r}>"
