from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import threading
from collections.abc import Callable
from typing import Any

from .config import DEFAULT_MAX_FRAME_BYTES, BidiConfig
from .errors import ConnectionClosedError
from .redaction import redact_frame_for_dump

logger = logging.getLogger("bidi_driver.transport")

MessageHandler = Callable[[dict[str, Any]], None]
CloseHandler = Callable[[], None]
FrameHook = Callable[[str, dict[str, Any]], None]


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The BiDi client requires the 'websockets' Python package. Install it (pip install websockets)."
        ) from exc


class Transport:
    """WebSocket transport carrying one JSON object per text frame.

    Decoded messages go to a single handler set with :meth:`on_message`. Frame
    hooks observe every frame in both directions (``"send"`` / ``"recv"``) and
    are the only place debug dumps attach to.
    """

    def __init__(
        self,
        url: str,
        *,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        open_timeout: float = 30.0,
    ) -> None:
        self.url = url
        self._max_frame_bytes = int(max_frame_bytes) or None
        self._open_timeout = open_timeout
        self._ws: Any | None = None
        self._recv_task: asyncio.Task | None = None
        self._closed = False
        self._on_message: MessageHandler | None = None
        self._on_close: CloseHandler | None = None
        self._frame_hooks: list[FrameHook] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def on_message(self, handler: MessageHandler | None) -> None:
        self._on_message = handler

    def on_close(self, handler: CloseHandler | None) -> None:
        self._on_close = handler

    def add_frame_hook(self, hook: FrameHook) -> None:
        self._frame_hooks.append(hook)

    def remove_frame_hook(self, hook: FrameHook) -> None:
        with contextlib.suppress(ValueError):
            self._frame_hooks.remove(hook)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        if self._ws is not None:
            return
        websockets = _import_websockets()
        self._ws = await websockets.connect(
            self.url,
            max_size=self._max_frame_bytes,
            ping_interval=None,
            open_timeout=self._open_timeout,
        )
        self._recv_task = asyncio.get_running_loop().create_task(self._receive_loop(), name="bidi-transport-recv")

    async def send(self, message: dict[str, Any]) -> None:
        ws = self._ws
        if self._closed or ws is None:
            raise ConnectionClosedError("Transport is closed")
        self._run_hooks("send", message)
        await ws.send(json.dumps(message, ensure_ascii=False))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        task = self._recv_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._notify_closed()

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    async def _receive_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping undecodable frame (%d chars)", len(raw or ""))
                    continue
                if not isinstance(msg, dict):
                    continue
                self._run_hooks("recv", msg)
                handler = self._on_message
                if handler is None:
                    continue
                try:
                    handler(msg)
                except Exception:  # noqa: BLE001
                    logger.exception("Message handler failed")
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.info("Transport receive loop ended: %s", exc)
        finally:
            self._closed = True
            self._notify_closed()

    def _notify_closed(self) -> None:
        handler = self._on_close
        self._on_close = None
        if handler is not None:
            try:
                handler()
            except Exception:  # noqa: BLE001
                logger.exception("Close handler failed")

    def _run_hooks(self, direction: str, frame: dict[str, Any]) -> None:
        for hook in list(self._frame_hooks):
            try:
                hook(direction, frame)
            except Exception:  # noqa: BLE001
                logger.exception("Frame hook failed")


# ─────────────────────────────────────────────────────────────────────────────
# Debug hooks (env-gated through BidiConfig)
# ─────────────────────────────────────────────────────────────────────────────


class FrameDumper:
    """Append every frame to a file, redacted unless ``raw`` is set."""

    def __init__(self, path: str, *, raw: bool = False, max_chars: int | None = None) -> None:
        self.path = path
        self.raw = raw
        self.max_chars = max_chars
        self._lock = threading.Lock()
        if dump_dir := os.path.dirname(path):
            os.makedirs(dump_dir, exist_ok=True)

    def __call__(self, direction: str, frame: dict[str, Any]) -> None:
        payload = frame if self.raw else redact_frame_for_dump(frame, max_text_chars=self.max_chars)
        line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
        with self._lock, open(self.path, "ab") as fp:
            fp.write(f"--{direction}--\n".encode())
            fp.write(line)


def trace_hook(direction: str, frame: dict[str, Any]) -> None:
    logger.info("%s %s", direction, redact_frame_for_dump(frame, max_text_chars=512))


def install_debug_hooks(transport: Transport, config: BidiConfig) -> None:
    if config.dump_frames:
        transport.add_frame_hook(
            FrameDumper(config.dump_frames, raw=config.dump_frames_raw, max_chars=config.dump_max_chars)
        )
    if config.trace:
        transport.add_frame_hook(trace_hook)
