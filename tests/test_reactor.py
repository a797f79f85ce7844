from __future__ import annotations

import asyncio
import threading
import time

import pytest


def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


def test_sync_from_many_threads_and_inline_on_loop() -> None:
    from bidi_driver.reactor import ReactorRunner

    runner = ReactorRunner(close_at_exit=False)
    try:

        async def add(a: int, b: int) -> int:
            await asyncio.sleep(0.01)
            return a + b

        results: list[int] = []
        lock = threading.Lock()

        def worker(i: int) -> None:
            value = runner.sync(add, i, 1)
            with lock:
                results.append(value)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert sorted(results) == [1, 2, 3, 4]
        assert not runner.in_reactor_thread()
        assert runner.sync(runner.in_reactor_thread) is True
        assert runner.sync(lambda: runner.sync(lambda: "inline")) == "inline"
        assert runner.pending_jobs == 0
    finally:
        runner.close()


def test_close_drains_queued_jobs_then_rejects_new_ones() -> None:
    from bidi_driver.errors import ReactorClosedError
    from bidi_driver.reactor import ReactorRunner

    runner = ReactorRunner(close_at_exit=False)

    async def slow(i: int) -> int:
        await asyncio.sleep(0.05)
        return i

    results: list[int] = []
    lock = threading.Lock()

    def worker(i: int) -> None:
        value = runner.sync(slow, i)
        with lock:
            results.append(value)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(3)]
    for t in threads:
        t.start()
    _wait_until(lambda: runner.pending_jobs == 3)

    runner.close(timeout=2.0)
    for t in threads:
        t.join(5)

    assert sorted(results) == [0, 1, 2]
    assert runner.closed
    with pytest.raises(ReactorClosedError):
        runner.sync(slow, 3)
    runner.close()


def test_close_cancels_jobs_that_outlive_the_grace_period() -> None:
    from bidi_driver.errors import ReactorClosedError
    from bidi_driver.reactor import ReactorRunner

    runner = ReactorRunner(close_at_exit=False)
    errors: list[BaseException] = []

    def worker() -> None:
        try:
            runner.sync(asyncio.sleep, 5)
        except ReactorClosedError as exc:
            errors.append(exc)

    thread = threading.Thread(target=worker)
    thread.start()
    _wait_until(lambda: runner.pending_jobs == 1)

    runner.close(timeout=0.05)
    thread.join(5)

    assert len(errors) == 1
    assert not thread.is_alive()


def test_proxy_routes_calls_through_the_reactor(fake_transport, fake_script) -> None:
    from bidi_driver.browser import Browser
    from bidi_driver.frame import Frame, NavigationResult
    from bidi_driver.reactor import Proxy, connect_sync

    fake_transport.install_browser()
    browser = connect_sync(transport=fake_transport)
    runner = object.__getattribute__(browser, "_runner")
    try:
        assert isinstance(browser, Browser)
        assert isinstance(browser, Proxy)
        assert browser.connected is True
        assert browser.browser_name == "firefox"

        (frame,) = browser.frames()
        assert isinstance(frame, Frame)
        assert isinstance(frame, Proxy)
        assert frame.url == "about:blank"
        assert frame.evaluate("() => 6 * 7") == 42

        result = runner.wrap(NavigationResult(url="https://a.test/"))
        assert type(result) is NavigationResult
    finally:
        browser.close()

    assert runner.closed
    assert fake_transport.closed
    assert "browser.close" in fake_transport.methods()
    browser.close()
