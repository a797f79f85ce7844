from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_FRAME_BYTES = 256 * 1024 * 1024
DEFAULT_DUMP_MAX_CHARS = 2000

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_float(name: str, default: float | None) -> float | None:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


@dataclass
class BidiConfig:
    ws_endpoint: str | None = None
    default_timeout: float = DEFAULT_TIMEOUT
    navigation_timeout: float | None = None
    connect_timeout: float = DEFAULT_TIMEOUT
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES
    accept_insecure_certs: bool = False
    dump_frames: str | None = None
    dump_frames_raw: bool = False
    dump_max_chars: int = DEFAULT_DUMP_MAX_CHARS
    trace: bool = False

    @staticmethod
    def normalize_endpoint(raw: str | None) -> str | None:
        endpoint = (raw or "").strip()
        if not endpoint:
            return None
        if endpoint.startswith("http://"):
            return "ws://" + endpoint[len("http://") :]
        if endpoint.startswith("https://"):
            return "wss://" + endpoint[len("https://") :]
        return endpoint

    @classmethod
    def from_env(cls) -> BidiConfig:
        dump_path = (os.environ.get("BIDI_DUMP_FRAMES") or "").strip() or None
        return cls(
            ws_endpoint=cls.normalize_endpoint(os.environ.get("BIDI_WS_ENDPOINT")),
            default_timeout=_env_float("BIDI_TIMEOUT", DEFAULT_TIMEOUT) or DEFAULT_TIMEOUT,
            navigation_timeout=_env_float("BIDI_NAVIGATION_TIMEOUT", None),
            connect_timeout=_env_float("BIDI_CONNECT_TIMEOUT", DEFAULT_TIMEOUT) or DEFAULT_TIMEOUT,
            max_frame_bytes=_env_int("BIDI_MAX_FRAME_BYTES", DEFAULT_MAX_FRAME_BYTES),
            accept_insecure_certs=env_flag("BIDI_ACCEPT_INSECURE_CERTS"),
            dump_frames=dump_path,
            dump_frames_raw=env_flag("BIDI_DUMP_FRAMES_RAW"),
            dump_max_chars=_env_int("BIDI_DUMP_FRAMES_MAX_CHARS", DEFAULT_DUMP_MAX_CHARS),
            trace=env_flag("BIDI_TRACE"),
        )

    def resolve_endpoint(self, override: str | None = None) -> str:
        endpoint = self.normalize_endpoint(override) or self.ws_endpoint
        if not endpoint:
            raise ValueError("No WebSocket endpoint: pass ws_endpoint or set BIDI_WS_ENDPOINT")
        return endpoint
