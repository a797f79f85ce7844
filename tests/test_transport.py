from __future__ import annotations

import asyncio
import json
import socket

import pytest


def _free_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])
    finally:
        s.close()


def _import_websockets_or_skip():
    try:
        import websockets  # type: ignore[import-not-found]
    except Exception:
        pytest.skip("websockets not installed")
    return websockets


def test_round_trip_against_websocket_server_with_frame_dump(tmp_path) -> None:
    websockets = _import_websockets_or_skip()

    from bidi_driver.config import BidiConfig
    from bidi_driver.connection import Connection
    from bidi_driver.transport import Transport, install_debug_hooks

    dump = tmp_path / "dumps" / "frames.log"
    events: list[dict] = []

    async def handler(ws, *_args) -> None:
        async for raw in ws:
            msg = json.loads(raw)
            await ws.send(json.dumps({"type": "event", "method": "log.entryAdded", "params": {"text": "hi"}}))
            await ws.send(json.dumps({"type": "success", "id": msg["id"], "result": {"ready": True, "token": "abc"}}))

    async def main() -> None:
        port = _free_port()
        async with websockets.serve(handler, "127.0.0.1", port):
            transport = Transport(f"ws://127.0.0.1:{port}", open_timeout=5)
            install_debug_hooks(transport, BidiConfig(dump_frames=str(dump)))
            await transport.connect()
            conn = Connection(transport)
            conn.on("log.entryAdded", events.append)
            try:
                result = await conn.send("session.status", timeout=5)
            finally:
                await conn.close()
            assert result == {"ready": True, "token": "abc"}
            assert transport.closed

    asyncio.run(main())

    assert events == [{"text": "hi"}]
    text = dump.read_text(encoding="utf-8")
    assert text.count("--send--") == 1
    assert text.count("--recv--") == 2
    assert '"session.status"' in text
    assert "abc" not in text


def test_remote_close_rejects_pending_command() -> None:
    websockets = _import_websockets_or_skip()

    from bidi_driver.connection import Connection
    from bidi_driver.errors import ConnectionClosedError
    from bidi_driver.transport import Transport

    async def handler(ws, *_args) -> None:
        await ws.recv()
        await ws.close()

    async def main() -> None:
        port = _free_port()
        async with websockets.serve(handler, "127.0.0.1", port):
            transport = Transport(f"ws://127.0.0.1:{port}", open_timeout=5)
            await transport.connect()
            conn = Connection(transport)
            try:
                with pytest.raises(ConnectionClosedError):
                    await conn.send("session.status", timeout=5)
                assert conn.closed
                with pytest.raises(ConnectionClosedError):
                    await transport.send({"id": 99, "method": "session.status", "params": {}})
            finally:
                await conn.close()

    asyncio.run(main())


def test_send_before_connect_fails() -> None:
    from bidi_driver.errors import ConnectionClosedError
    from bidi_driver.transport import Transport

    async def main() -> None:
        transport = Transport("ws://127.0.0.1:1/session")
        with pytest.raises(ConnectionClosedError):
            await transport.send({"id": 1, "method": "session.status", "params": {}})

    asyncio.run(main())


def test_frame_dumper_raw_and_redacted(tmp_path) -> None:
    from bidi_driver.transport import FrameDumper

    frame = {"id": 1, "method": "storage.setCookie", "params": {"cookie": {"name": "a", "value": "secret-value"}}}

    redacted_path = tmp_path / "redacted.log"
    FrameDumper(str(redacted_path))("send", frame)
    redacted = redacted_path.read_text(encoding="utf-8").splitlines()
    assert redacted[0] == "--send--"
    assert "secret-value" not in redacted[1]
    assert json.loads(redacted[1])["params"]["cookie"]["name"] == "a"

    raw_path = tmp_path / "raw.log"
    FrameDumper(str(raw_path), raw=True)("recv", frame)
    raw = raw_path.read_text(encoding="utf-8").splitlines()
    assert raw[0] == "--recv--"
    assert json.loads(raw[1]) == frame
