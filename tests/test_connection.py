from __future__ import annotations

import asyncio
import logging

import pytest


def test_status_round_trip_clears_pending_table(fake_transport) -> None:
    from bidi_driver.connection import Connection

    fake_transport.respond("session.status", {"ready": True, "message": "ready"})

    async def main() -> None:
        conn = Connection(fake_transport)
        result = await conn.send("session.status")
        assert result == {"ready": True, "message": "ready"}
        assert fake_transport.sent == [{"id": 1, "method": "session.status", "params": {}}]
        assert conn.pending_count == 0

    asyncio.run(main())


def test_ids_increase_and_out_of_order_responses_are_correlated(fake_transport) -> None:
    from bidi_driver.connection import Connection

    async def slow(_params):
        await asyncio.sleep(0.03)
        return {"who": "slow"}

    fake_transport.respond("test.slow", slow)
    fake_transport.respond("test.fast", {"who": "fast"})

    async def main() -> None:
        conn = Connection(fake_transport)
        slow_result, fast_result = await asyncio.gather(conn.send("test.slow"), conn.send("test.fast"))
        assert slow_result == {"who": "slow"}
        assert fast_result == {"who": "fast"}
        assert [m["id"] for m in fake_transport.sent] == [1, 2]
        assert conn.pending_count == 0

    asyncio.run(main())


def test_timeout_settles_once_and_late_response_is_dropped(fake_transport, caplog) -> None:
    from bidi_driver.connection import Connection
    from bidi_driver.errors import TimeoutError

    async def late(_params):
        await asyncio.sleep(0.06)
        return {"ready": True}

    fake_transport.respond("session.status", late)

    async def main() -> None:
        conn = Connection(fake_transport)
        with pytest.raises(TimeoutError) as info:
            await conn.send("session.status", timeout=0.05)
        assert "50ms" in str(info.value)
        assert "session.status" in str(info.value)
        assert conn.pending_count == 0
        await asyncio.sleep(0.05)
        assert conn.pending_count == 0

    with caplog.at_level(logging.WARNING, logger="bidi_driver.connection"):
        asyncio.run(main())
    assert any("unknown command id=1" in r.getMessage() for r in caplog.records)


def test_error_envelope_raises_protocol_error(fake_transport, protocol_fault) -> None:
    from bidi_driver.connection import Connection
    from bidi_driver.errors import ProtocolError

    def fail(_params):
        raise protocol_fault("no such frame", "Context ctx-9 not found")

    fake_transport.respond("browsingContext.activate", fail)

    async def main() -> None:
        conn = Connection(fake_transport)
        with pytest.raises(ProtocolError) as info:
            await conn.send("browsingContext.activate", {"context": "ctx-9"})
        err = info.value
        assert err.method == "browsingContext.activate"
        assert err.error == "no such frame"
        assert err.protocol_message == "Context ctx-9 not found"
        assert str(err) == "Protocol error (browsingContext.activate): no such frame: Context ctx-9 not found"
        assert conn.pending_count == 0

    asyncio.run(main())


def test_events_reach_listeners_in_order_and_failures_are_isolated(fake_transport, caplog) -> None:
    from bidi_driver.connection import Connection

    seen: list[tuple[str, int]] = []

    def first(params):
        seen.append(("first", params["n"]))

    def broken(_params):
        raise RuntimeError("listener bug")

    def last(params):
        seen.append(("last", params["n"]))

    conn = Connection(fake_transport)
    conn.on("log.entryAdded", first)
    conn.on("log.entryAdded", broken)
    conn.on("log.entryAdded", last)
    assert conn.listener_count("log.entryAdded") == 3

    with caplog.at_level(logging.ERROR, logger="bidi_driver.connection"):
        fake_transport.emit("log.entryAdded", {"n": 1})
        fake_transport.emit("log.entryAdded", {"n": 2})

    assert seen == [("first", 1), ("last", 1), ("first", 2), ("last", 2)]
    assert any("log.entryAdded" in r.getMessage() for r in caplog.records)

    conn.off("log.entryAdded", broken)
    conn.off("log.entryAdded", broken)
    assert conn.listener_count("log.entryAdded") == 2


def test_error_without_id_is_logged_not_raised(fake_transport, caplog) -> None:
    from bidi_driver.connection import Connection

    Connection(fake_transport)
    with caplog.at_level(logging.WARNING, logger="bidi_driver.connection"):
        fake_transport.deliver({"type": "error", "error": "invalid argument", "message": "bad frame"})
    assert any("invalid argument" in r.getMessage() for r in caplog.records)


def test_close_rejects_pending_commands_and_is_idempotent(fake_transport) -> None:
    from bidi_driver.connection import Connection
    from bidi_driver.errors import ConnectionClosedError

    closes: list[str] = []

    async def main() -> None:
        conn = Connection(fake_transport)
        conn.on_close(lambda: closes.append("closed"))
        pending = asyncio.ensure_future(conn.send("browsingContext.navigate", {"context": "c", "url": "x"}))
        await asyncio.sleep(0)
        assert conn.pending_count == 1

        await conn.close()
        await conn.close()
        with pytest.raises(ConnectionClosedError):
            await pending
        assert conn.pending_count == 0
        assert conn.closed

        with pytest.raises(ConnectionClosedError):
            await conn.send("session.status")

    asyncio.run(main())
    assert closes == ["closed"]
    assert fake_transport.closed


def test_remote_close_rejects_pending_commands(fake_transport) -> None:
    from bidi_driver.connection import Connection
    from bidi_driver.errors import ConnectionClosedError

    async def main() -> None:
        conn = Connection(fake_transport)
        pending = asyncio.ensure_future(conn.send("session.status", timeout=0))
        await asyncio.sleep(0)

        await fake_transport.close()
        with pytest.raises(ConnectionClosedError) as info:
            await pending
        assert "remote end" in str(info.value)
        assert conn.closed

    asyncio.run(main())
