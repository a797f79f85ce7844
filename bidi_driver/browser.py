from __future__ import annotations

import logging
from typing import Any

from .config import BidiConfig
from .connection import Connection
from .core.browser import Browser as CoreBrowser
from .core.browsing_context import BrowsingContext
from .core.session import Session
from .core.user_context import UserContext
from .errors import BidiError
from .frame import Frame
from .timeout_settings import TimeoutSettings
from .transport import Transport, install_debug_hooks

logger = logging.getLogger("bidi_driver.browser")


def session_capabilities(config: BidiConfig) -> dict[str, Any]:
    return {
        "alwaysMatch": {
            "acceptInsecureCerts": bool(config.accept_insecure_certs),
            "unhandledPromptBehavior": {"default": "ignore"},
            "webSocketUrl": True,
        }
    }


async def connect(
    ws_endpoint: str | None = None,
    *,
    config: BidiConfig | None = None,
    transport: Any | None = None,
) -> Browser:
    """Open a BiDi session on ``ws_endpoint`` and mirror the browser's tree.

    A ready ``transport`` may be passed instead of an endpoint.
    """
    config = config or BidiConfig.from_env()
    endpoint = None
    if transport is None:
        endpoint = config.resolve_endpoint(ws_endpoint)
        transport = Transport(endpoint, max_frame_bytes=config.max_frame_bytes, open_timeout=config.connect_timeout)
        install_debug_hooks(transport, config)
        await transport.connect()

    connection = Connection(transport, default_timeout=config.default_timeout)
    try:
        status = await connection.send("session.status") or {}
        if not status.get("ready"):
            raise BidiError(f"Browser is not ready for a new session: {status.get('message') or 'unknown reason'}")
        session = await Session.from_connection(connection, session_capabilities(config))
        core = await CoreBrowser.from_session(session)
    except BaseException:
        await connection.close()
        raise

    logger.info("BiDi session %s established (%s)", session.id, endpoint or "custom transport")
    return Browser(
        connection,
        session,
        core,
        ws_endpoint=endpoint,
        timeout_settings=TimeoutSettings(config.default_timeout, config.navigation_timeout),
    )


class Browser:
    """Connected browser: frames, user contexts and session teardown."""

    def __init__(
        self,
        connection: Connection,
        session: Session,
        core: CoreBrowser,
        *,
        ws_endpoint: str | None = None,
        timeout_settings: TimeoutSettings | None = None,
    ) -> None:
        self.connection = connection
        self.session = session
        self.core = core
        self.ws_endpoint = ws_endpoint
        self.timeout_settings = timeout_settings or TimeoutSettings()
        self._frames: dict[str, Frame] = {}
        self._closed = False

    @property
    def connected(self) -> bool:
        return not self._closed and not self.connection.closed and not self.core.disconnected

    @property
    def browser_name(self) -> str | None:
        return self.session.capabilities.get("browserName")

    @property
    def version(self) -> str | None:
        return self.session.capabilities.get("browserVersion")

    @property
    def user_agent(self) -> str | None:
        return self.session.capabilities.get("userAgent")

    @property
    def default_user_context(self) -> UserContext:
        return self.core.default_user_context

    @property
    def user_contexts(self) -> list[UserContext]:
        return self.core.user_contexts

    def frames(self) -> list[Frame]:
        return [
            self._frame_for(context)
            for user_context in self.core.user_contexts
            for context in user_context.browsing_contexts
        ]

    def _frame_for(self, context: BrowsingContext) -> Frame:
        frame = self._frames.get(context.id)
        if frame is None:
            frame = Frame(context, timeout_settings=self.timeout_settings)
            self._frames[context.id] = frame
            context.once("closed", lambda _data: self._frames.pop(context.id, None))
        return frame

    async def new_frame(self, *, user_context: UserContext | None = None, background: bool = False) -> Frame:
        owner = user_context or self.core.default_user_context
        context = await owner.create_browsing_context("tab", background=background)
        return self._frame_for(context)

    async def create_user_context(self, **kwargs: Any) -> UserContext:
        return await self.core.create_user_context(**kwargs)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if not self.core.disconnected:
                await self.core.close()
        except BidiError as exc:
            logger.debug("browser.close failed: %s", exc)
        finally:
            await self.connection.close()

    async def disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.session.end()
        except BidiError as exc:
            logger.debug("session.end failed: %s", exc)
        finally:
            await self.connection.close()

    async def __aenter__(self) -> Browser:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
