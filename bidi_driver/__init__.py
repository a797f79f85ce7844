"""WebDriver BiDi client.

Async entry point::

    browser = await bidi_driver.connect("ws://127.0.0.1:9222/session")
    frame = await browser.new_frame()
    await frame.goto("https://example.com")
    handle = await frame.wait_for_function("document.readyState === 'complete'")

Blocking entry point (any thread)::

    browser = bidi_driver.connect_sync("ws://127.0.0.1:9222/session")
"""

from .abort import AbortController, AbortSignal
from .browser import Browser, connect
from .config import BidiConfig
from .connection import Connection
from .errors import (
    AbortError,
    BidiError,
    BrowserDisconnectedError,
    BrowsingContextClosedError,
    ConnectionClosedError,
    DisposedError,
    EvaluationError,
    FrameDetachedError,
    JSHandleDisposedError,
    ProtocolError,
    ReactorClosedError,
    RealmDestroyedError,
    SessionEndedError,
    TimeoutError,
    UserContextClosedError,
    UserPromptClosedError,
    WaitError,
)
from .frame import Frame, NavigationResult, NavigationWaiter
from .js_handle import JSHandle
from .reactor import Proxy, ReactorRunner, connect_sync
from .serializer import RegExp
from .realm import FrameRealm
from .task_manager import TaskManager
from .timeout_settings import TimeoutSettings
from .transport import FrameDumper, Transport
from .wait_task import WaitTask

__all__ = [
    "AbortController",
    "AbortError",
    "AbortSignal",
    "BidiConfig",
    "BidiError",
    "Browser",
    "BrowserDisconnectedError",
    "BrowsingContextClosedError",
    "Connection",
    "ConnectionClosedError",
    "DisposedError",
    "EvaluationError",
    "Frame",
    "FrameDetachedError",
    "FrameDumper",
    "FrameRealm",
    "JSHandle",
    "JSHandleDisposedError",
    "NavigationResult",
    "NavigationWaiter",
    "ProtocolError",
    "Proxy",
    "ReactorClosedError",
    "ReactorRunner",
    "RealmDestroyedError",
    "RegExp",
    "SessionEndedError",
    "TaskManager",
    "TimeoutError",
    "TimeoutSettings",
    "Transport",
    "UserContextClosedError",
    "UserPromptClosedError",
    "WaitError",
    "WaitTask",
    "connect",
    "connect_sync",
]
