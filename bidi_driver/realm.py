from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from .errors import EvaluationError, FrameDetachedError
from .injected import INJECTED_SOURCE, is_function_source
from .js_handle import JSHandle
from .serializer import deserialize, serialize
from .task_manager import TaskManager
from .timeout_settings import TimeoutSettings
from .wait_task import WaitTask

if TYPE_CHECKING:
    from .abort import AbortSignal
    from .core.realm import Realm as CoreRealm
    from .frame import Frame

_HANDLE_SERIALIZATION = {"maxObjectDepth": 0, "maxDomDepth": 0}


class FrameRealm:
    """Evaluation and predicate waits on top of a core realm.

    The realm caches the injected helper library per browser realm. A core
    ``"updated"`` drops the cache and reruns pending waits; ``"destroyed"``
    drops the cache and fails pending waits with :class:`FrameDetachedError`.
    """

    def __init__(self, frame: Frame, core_realm: CoreRealm, timeout_settings: TimeoutSettings | None = None) -> None:
        self.frame = frame
        self.core_realm = core_realm
        self.timeout_settings = timeout_settings or TimeoutSettings()
        self.task_manager = TaskManager()
        self._util: asyncio.Future | None = None

        core_realm.on("destroyed", self._on_destroyed)
        core_realm.on("updated", self._on_updated)

    @property
    def disposed(self) -> bool:
        return self.core_realm.closing

    def _on_destroyed(self, _data: Any) -> None:
        self._util = None
        self.task_manager.terminate_all(FrameDetachedError("Waiting failed: frame got detached"))

    def _on_updated(self, _data: Any) -> None:
        self._util = None
        self.task_manager.rerun_all()

    def _assert_alive(self) -> None:
        if self.core_realm.closing:
            raise FrameDetachedError(f"Attempted to use detached Frame: {self.core_realm.reason}")

    # ─────────────────────────────────────────────────────────────────────────
    # Evaluation
    # ─────────────────────────────────────────────────────────────────────────

    async def evaluate(self, script: str, *args: Any, timeout: float | None = None) -> Any:
        result = await self._execute(script, args, ownership="none", timeout=timeout)
        return deserialize(result)

    async def evaluate_handle(self, script: str, *args: Any, timeout: float | None = None) -> JSHandle:
        result = await self._execute(script, args, ownership="root", timeout=timeout)
        return JSHandle(self, result)

    async def _execute(self, script: str, args: tuple[Any, ...], *, ownership: str, timeout: float | None) -> Any:
        self._assert_alive()
        options: dict[str, Any] = {"resultOwnership": ownership, "userActivation": True}
        if ownership == "root":
            options["serializationOptions"] = _HANDLE_SERIALIZATION
        if is_function_source(script):
            arguments = [serialize(arg, realm=self) for arg in args]
            response = await self.core_realm.call_function(
                script.strip(), True, arguments=arguments, timeout=timeout, **options
            )
        else:
            if args:
                raise ValueError("Arguments can only be passed to a function, not an expression")
            response = await self.core_realm.evaluate(script, True, timeout=timeout, **options)

        if response.get("type") == "exception":
            details = response.get("exceptionDetails") or {}
            raise EvaluationError(str(details.get("text") or "Evaluation failed"), details=details)
        return response.get("result") or {"type": "undefined"}

    async def injected_util(self) -> JSHandle:
        util = self._util
        if util is None or (util.done() and (util.cancelled() or util.exception() is not None)):
            util = asyncio.ensure_future(self.evaluate_handle(INJECTED_SOURCE))
            self._util = util
        return await asyncio.shield(util)

    # ─────────────────────────────────────────────────────────────────────────
    # Waiting
    # ─────────────────────────────────────────────────────────────────────────

    async def wait_for_function(
        self,
        page_function: str,
        *args: Any,
        polling: Any = "raf",
        timeout: float | None = None,
        root: JSHandle | None = None,
        signal: AbortSignal | None = None,
    ) -> JSHandle:
        """Wait until ``page_function`` returns a truthy value and return a handle to it.

        ``polling`` is ``"raf"``, ``"mutation"`` or an interval in milliseconds.
        ``timeout`` is in seconds; ``None`` uses the realm default, ``0`` waits forever.
        """
        self._assert_alive()
        limit = self.timeout_settings.timeout() if timeout is None else timeout
        task = WaitTask(self, page_function, *args, polling=polling, timeout=limit, root=root, signal=signal)
        return await task.result()

    def dispose(self) -> None:
        self.core_realm.off("destroyed", self._on_destroyed)
        self.core_realm.off("updated", self._on_updated)
        self._util = None
        self.task_manager.terminate_all(FrameDetachedError("Waiting failed: frame got detached"))
