"""Error types raised by the BiDi client.

Every public error derives from :class:`BidiError`. Errors caused by torn-down
protocol objects derive from :class:`DisposedError` and carry the disposal reason.
"""

from __future__ import annotations

import builtins


class BidiError(Exception):
    pass


class ProtocolError(BidiError):
    """The remote end answered a command with an error envelope."""

    def __init__(self, method: str, message: str, *, error: str | None = None) -> None:
        self.method = method
        self.error = error
        self.protocol_message = message
        detail = f"{error}: {message}" if error else message
        super().__init__(f"Protocol error ({method}): {detail}")


class TimeoutError(BidiError, builtins.TimeoutError):  # noqa: A001
    pass


class ConnectionClosedError(BidiError):
    pass


class DisposedError(BidiError):
    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason or self.__class__.__name__)


class SessionEndedError(DisposedError):
    pass


class BrowserDisconnectedError(DisposedError):
    pass


class UserContextClosedError(DisposedError):
    pass


class BrowsingContextClosedError(DisposedError):
    pass


class RealmDestroyedError(DisposedError):
    pass


class UserPromptClosedError(DisposedError):
    pass


class FrameDetachedError(BidiError):
    def __init__(self, message: str = "Attempted to use detached Frame") -> None:
        super().__init__(message)


class EvaluationError(BidiError):
    """Script threw inside the browser."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class JSHandleDisposedError(BidiError):
    def __init__(self, message: str = "JSHandle is disposed") -> None:
        super().__init__(message)


class WaitError(BidiError):
    pass


class AbortError(BidiError):
    def __init__(self, message: str = "The operation was aborted") -> None:
        super().__init__(message)


class ReactorClosedError(BidiError):
    pass


class RecoverableError(BidiError):
    """Internal marker: the failed attempt may be retried silently."""
