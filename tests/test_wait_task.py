from __future__ import annotations

import asyncio

import pytest

from conftest import success


def _never(_params):
    return asyncio.get_running_loop().create_future()


def test_raf_wait_uses_one_creation_and_one_result_round_trip(fake_transport, fake_script) -> None:
    from bidi_driver.injected import AWAIT_RESULT, CREATE_POLLER

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()

        handle = await frame.wait_for_function("() => window.__ready")

        assert handle.id == "value-3"
        assert fake_script.util_evaluations == 1
        assert fake_script.pollers_created == 1
        assert fake_script.awaits == 1
        assert fake_script.stopped == ["poller-2"]
        assert "poller-2" in fake_script.disowned

        calls = fake_transport.calls("script.callFunction")
        create = next(c for c in calls if c["functionDeclaration"] == CREATE_POLLER)
        assert create["arguments"] == [
            {"handle": "util-1"},
            {"type": "string", "value": "() => window.__ready"},
            {"type": "string", "value": "raf"},
            {"type": "null"},
        ]
        assert create["target"] == {"context": "ctx-1"}
        assert create["resultOwnership"] == "root"
        wait = next(c for c in calls if c["functionDeclaration"] == AWAIT_RESULT)
        assert wait["arguments"] == [{"handle": "poller-2"}]
        assert len(frame.main_realm.task_manager) == 0

    asyncio.run(main())


def test_expression_predicate_and_interval_polling(fake_transport, fake_script) -> None:
    from bidi_driver.injected import CREATE_POLLER

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()

        await frame.wait_for_function("window.__ready", 7, polling=100)

        create = next(
            c for c in fake_transport.calls("script.callFunction") if c["functionDeclaration"] == CREATE_POLLER
        )
        assert create["arguments"][1:] == [
            {"type": "string", "value": "() => {return (window.__ready);}"},
            {"type": "number", "value": 100},
            {"type": "null"},
            {"type": "number", "value": 7},
        ]

    asyncio.run(main())


def test_invalid_polling_is_rejected_before_any_command(fake_transport, fake_script) -> None:
    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        for polling in ("sometimes", -5, 0, True):
            with pytest.raises(ValueError):
                await frame.wait_for_function("() => true", polling=polling)
        assert fake_transport.calls("script.callFunction") == []
        assert len(frame.main_realm.task_manager) == 0

    asyncio.run(main())


def test_realm_destruction_fails_every_pending_task(fake_transport, fake_script, make_context_info) -> None:
    from bidi_driver.errors import FrameDetachedError

    fake_script.await_result = _never

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        tasks = [asyncio.ensure_future(frame.wait_for_function(f"() => window.v{i}")) for i in range(3)]
        await asyncio.sleep(0.02)
        assert len(frame.main_realm.task_manager) == 3
        assert fake_script.util_evaluations == 1

        fake_transport.emit("browsingContext.contextDestroyed", make_context_info("ctx-1"))

        for task in tasks:
            with pytest.raises(FrameDetachedError, match="Waiting failed: frame got detached"):
                await task
        assert len(frame.main_realm.task_manager) == 0

    asyncio.run(main())


def test_realm_update_reruns_transparently_and_disposes_stale_result(fake_transport, fake_script) -> None:
    async def main() -> None:
        first = asyncio.get_running_loop().create_future()
        queued = [first]

        def await_result(_params):
            if queued:
                return queued.pop(0)
            return success({"type": "object", "handle": "value-final"})

        fake_script.await_result = await_result
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()

        task = asyncio.ensure_future(frame.wait_for_function("() => window.ok"))
        await asyncio.sleep(0.02)
        assert fake_script.awaits == 1
        assert not task.done()

        fake_transport.emit(
            "script.realmCreated", {"realm": "r-2", "type": "window", "context": "ctx-1", "origin": "https://a.test"}
        )
        handle = await task

        assert handle.id == "value-final"
        assert fake_script.util_evaluations == 2
        assert fake_script.pollers_created == 2

        first.set_result(success({"type": "object", "handle": "value-stale"}))
        await asyncio.sleep(0.02)
        assert "value-stale" in fake_script.disowned
        assert len(fake_script.stopped) == 2

    asyncio.run(main())


def test_realm_update_keeps_every_pending_task_running(fake_transport, fake_script) -> None:
    async def main() -> None:
        loop = asyncio.get_running_loop()
        first_round = [loop.create_future() for _ in range(3)]
        queued = list(first_round)

        def await_result(_params):
            if queued:
                return queued.pop(0)
            return success({"type": "object", "handle": fake_script.new_handle("value")})

        fake_script.await_result = await_result
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        manager = frame.main_realm.task_manager

        waits = [asyncio.ensure_future(frame.wait_for_function(f"() => window.v{i}")) for i in range(3)]
        await asyncio.sleep(0.02)
        assert fake_script.awaits == 3
        wait_tasks = manager.tasks
        assert len(wait_tasks) == 3

        fake_transport.emit(
            "script.realmCreated", {"realm": "r-2", "type": "window", "context": "ctx-1", "origin": "https://a.test"}
        )

        assert [task.state for task in wait_tasks] == ["running"] * 3
        assert all(task in manager for task in wait_tasks)
        assert not any(w.done() for w in waits)

        handles = await asyncio.gather(*waits)
        assert len({handle.id for handle in handles}) == 3
        assert fake_script.util_evaluations == 2
        assert fake_script.pollers_created == 6
        assert len(manager) == 0

        for stale in first_round:
            stale.set_result(success({"type": "object", "handle": "value-stale"}))
        await asyncio.sleep(0.02)
        assert fake_script.disowned.count("value-stale") == 3

    asyncio.run(main())


def test_timeout_terminates_and_stops_poller(fake_transport, fake_script) -> None:
    from bidi_driver.errors import TimeoutError

    fake_script.await_result = _never

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        with pytest.raises(TimeoutError, match="Waiting failed: 50ms exceeded"):
            await frame.wait_for_function("() => false", timeout=0.05)
        await asyncio.sleep(0.02)
        assert fake_script.stopped == ["poller-2"]
        assert len(frame.main_realm.task_manager) == 0

    asyncio.run(main())


def test_recoverable_error_retries_silently(fake_transport, fake_script, protocol_fault) -> None:
    attempts = {"n": 0}

    def await_result(_params):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise protocol_fault("no such handle", "Unable to find handle poller-2")
        return success({"type": "object", "handle": "value-ok"})

    fake_script.await_result = await_result

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        handle = await frame.wait_for_function("() => window.ok")
        assert handle.id == "value-ok"
        assert fake_script.pollers_created == 2
        assert fake_script.util_evaluations == 1

    asyncio.run(main())


def test_script_exception_surfaces_as_wait_error(fake_transport, fake_script) -> None:
    from bidi_driver.errors import EvaluationError, WaitError

    fake_script.await_result = lambda _p: {
        "type": "exception",
        "exceptionDetails": {"text": "ReferenceError: nope is not defined"},
        "realm": "realm-1",
    }

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        with pytest.raises(WaitError, match="Waiting failed: ReferenceError") as info:
            await frame.wait_for_function("() => nope")
        assert isinstance(info.value.__cause__, EvaluationError)

    asyncio.run(main())


def test_detached_execution_context_maps_to_frame_detached(fake_transport, fake_script, protocol_fault) -> None:
    from bidi_driver.errors import FrameDetachedError
    from bidi_driver.wait_task import DETACHED_MESSAGE

    def await_result(_params):
        raise protocol_fault("unknown error", DETACHED_MESSAGE)

    fake_script.await_result = await_result

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        with pytest.raises(FrameDetachedError, match="Waiting failed: Frame detached"):
            await frame.wait_for_function("() => true")

    asyncio.run(main())


def test_abort_signal(fake_transport, fake_script) -> None:
    from bidi_driver.abort import AbortController
    from bidi_driver.errors import AbortError

    fake_script.await_result = _never

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()

        controller = AbortController()
        task = asyncio.ensure_future(frame.wait_for_function("() => false", signal=controller.signal))
        await asyncio.sleep(0.02)
        controller.abort("user gave up")
        with pytest.raises(AbortError, match="user gave up"):
            await task
        assert len(frame.main_realm.task_manager) == 0

        sent = len(fake_transport.sent)
        with pytest.raises(AbortError):
            await frame.wait_for_function("() => false", signal=controller.signal)
        assert len(fake_transport.sent) == sent

    asyncio.run(main())


def test_cancelling_the_caller_terminates_the_task(fake_transport, fake_script) -> None:
    fake_script.await_result = _never

    async def main() -> None:
        browser = await fake_transport.open_browser()
        (frame,) = browser.frames()
        task = asyncio.ensure_future(frame.wait_for_function("() => false"))
        await asyncio.sleep(0.02)
        assert len(frame.main_realm.task_manager) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.02)
        assert len(frame.main_realm.task_manager) == 0
        assert fake_script.stopped == ["poller-2"]

    asyncio.run(main())


def test_classify_error() -> None:
    from bidi_driver.errors import FrameDetachedError, ProtocolError, RecoverableError, TimeoutError, WaitError
    from bidi_driver.wait_task import DETACHED_MESSAGE, classify_error

    assert classify_error(RecoverableError("retry")) is None
    assert classify_error(ProtocolError("script.callFunction", "Execution context was destroyed.")) is None
    assert classify_error(ProtocolError("script.callFunction", "x", error="no such frame")) is None

    detached = classify_error(RuntimeError(DETACHED_MESSAGE))
    assert isinstance(detached, FrameDetachedError)
    assert str(detached) == "Waiting failed: Frame detached"

    timeout = TimeoutError("late")
    assert classify_error(timeout) is timeout

    cause = ValueError("bad predicate")
    wrapped = classify_error(cause)
    assert isinstance(wrapped, WaitError)
    assert str(wrapped) == "Waiting failed: bad predicate"
    assert wrapped.__cause__ is cause


def test_task_manager_tolerates_tasks_removing_themselves() -> None:
    from bidi_driver.task_manager import TaskManager

    manager = TaskManager()
    terminated: list[object] = []
    reruns: list[object] = []

    class _Task:
        def terminate(self, error=None) -> None:
            manager.delete(self)
            terminated.append(error)

        def rerun(self) -> None:
            reruns.append(self)

    tasks = [_Task(), _Task()]
    for task in tasks:
        manager.add(task)
    manager.rerun_all()
    assert reruns == tasks

    boom = RuntimeError("gone")
    manager.terminate_all(boom)
    assert terminated == [boom, boom]
    assert len(manager) == 0
