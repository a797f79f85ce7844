from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .errors import DisposedError, JSHandleDisposedError

if TYPE_CHECKING:
    from .realm import FrameRealm


class JSHandle:
    """Reference to a value living in a browser realm.

    Handles returned with ``resultOwnership: "root"`` keep the remote object
    alive until :meth:`dispose` disowns them.
    """

    def __init__(self, realm: FrameRealm, remote_value: dict[str, Any]) -> None:
        self.realm = realm
        self.remote_value = remote_value
        self._disposed = False

    @property
    def id(self) -> str | None:
        return self.remote_value.get("handle") or self.remote_value.get("sharedId")

    @property
    def type(self) -> str | None:
        return self.remote_value.get("type")

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_primitive(self) -> bool:
        return self.type in {"undefined", "null", "string", "number", "bigint", "boolean", "symbol"}

    def assert_alive(self) -> None:
        if self._disposed:
            raise JSHandleDisposedError()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        handle_id = self.remote_value.get("handle")
        if not handle_id:
            return
        try:
            await self.realm.core_realm.disown([handle_id])
        except DisposedError:
            # The realm is gone and took the handle with it.
            pass

    async def evaluate(self, page_function: str, *args: Any) -> Any:
        self.assert_alive()
        return await self.realm.evaluate(page_function, self, *args)

    async def evaluate_handle(self, page_function: str, *args: Any, timeout: float | None = None) -> JSHandle:
        self.assert_alive()
        return await self.realm.evaluate_handle(page_function, self, *args, timeout=timeout)

    async def json_value(self) -> Any:
        return await self.evaluate("value => value")

    async def get_property(self, name: str) -> JSHandle:
        return await self.evaluate_handle("(object, name) => object[name]", name)

    def __repr__(self) -> str:
        return f"<JSHandle {self.type} id={self.id!r}>"
