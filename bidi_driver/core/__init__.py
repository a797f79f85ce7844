"""Live mirror of the browser's object graph, kept in sync from protocol events.

Session → Browser → UserContext → BrowsingContext → Realm, plus Navigation,
Request and UserPrompt.
"""

from .browser import Browser
from .browsing_context import BrowsingContext
from .event_emitter import Disposable, DisposableStack, EventEmitter
from .navigation import Navigation
from .realm import DedicatedWorkerRealm, Realm, SharedWorkerRealm, WindowRealm
from .request import Request
from .session import SESSION_EVENTS, Session
from .user_context import UserContext
from .user_prompt import UserPrompt

__all__ = [
    "SESSION_EVENTS",
    "Browser",
    "BrowsingContext",
    "DedicatedWorkerRealm",
    "Disposable",
    "DisposableStack",
    "EventEmitter",
    "Navigation",
    "Realm",
    "Request",
    "Session",
    "SharedWorkerRealm",
    "UserContext",
    "UserPrompt",
    "WindowRealm",
]
