from __future__ import annotations

from .config import DEFAULT_TIMEOUT


class TimeoutSettings:
    """Default timeouts in seconds; ``0`` disables the limit."""

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT, navigation_timeout: float | None = None) -> None:
        self._default_timeout = default_timeout
        self._navigation_timeout = navigation_timeout

    def set_default_timeout(self, timeout: float) -> None:
        self._default_timeout = _check(timeout)

    def set_default_navigation_timeout(self, timeout: float | None) -> None:
        self._navigation_timeout = None if timeout is None else _check(timeout)

    def timeout(self) -> float:
        return self._default_timeout

    def navigation_timeout(self) -> float:
        if self._navigation_timeout is not None:
            return self._navigation_timeout
        return self._default_timeout


def _check(timeout: float) -> float:
    value = float(timeout)
    if value < 0:
        raise ValueError(f"Timeout must be >= 0, got {timeout!r}")
    return value
