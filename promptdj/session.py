from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from .audio import ChunkPayload
from .errors import PublishRejectedError, SessionClosedError, SessionError
from .logging_utils import debug_enabled

_LOGGER = logging.getLogger("promptdj.session")

SessionEventKind = Literal["setup_complete", "audio_chunk", "filtered_prompt", "error", "close"]
SessionCommand = Literal["play", "pause", "stop", "reset_context"]
ChannelState = Literal["disconnected", "connected"]

DEFAULT_SETUP_TIMEOUT = 10.0


class SessionEvent(BaseModel):
    kind: SessionEventKind
    data: ChunkPayload | None = None
    text: str | None = None
    reason: str | None = None
    error: Exception | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


class RemoteSession(Protocol):
    """Live music-generation session as exposed by the remote service."""

    async def set_weighted_prompts(self, prompts: list[dict[str, Any]]) -> None: ...

    async def set_generation_config(self, config: dict[str, Any]) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def stop(self) -> None: ...

    async def reset_context(self) -> None: ...

    def receive(self) -> AsyncIterator[SessionEvent]: ...

    async def close(self) -> None: ...


SessionConnector = Callable[[], Awaitable[RemoteSession]]


class SessionHooks(BaseModel):
    on_event: Callable[[SessionEvent], None] | None = None
    on_setup_complete: Callable[[], None] | None = None
    on_audio_chunk: Callable[[ChunkPayload], None] | None = None
    on_filtered_prompt: Callable[[str, str], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_close: Callable[[], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _emit(hooks: SessionHooks | None, event: SessionEvent) -> None:
    if hooks is None:
        return
    try:
        if hooks.on_event is not None:
            hooks.on_event(event)
        match event.kind:
            case "setup_complete":
                if hooks.on_setup_complete is not None:
                    hooks.on_setup_complete()
            case "audio_chunk":
                if hooks.on_audio_chunk is not None and event.data is not None:
                    hooks.on_audio_chunk(event.data)
            case "filtered_prompt":
                if hooks.on_filtered_prompt is not None and event.text is not None:
                    hooks.on_filtered_prompt(event.text, event.reason or "")
            case "error":
                if hooks.on_error is not None:
                    hooks.on_error(event.error or SessionError("Session error"))
            case "close":
                if hooks.on_close is not None:
                    hooks.on_close()
            case _:
                pass
    except Exception as exc:
        _LOGGER.warning("Session hook failed: %s", exc, exc_info=debug_enabled())


class SessionChannel:
    """Owns the live connection: outbound commands and the inbound event loop."""

    def __init__(
        self,
        connector: SessionConnector,
        *,
        hooks: SessionHooks | None = None,
        setup_timeout: float = DEFAULT_SETUP_TIMEOUT,
    ) -> None:
        self._connector = connector
        self.hooks = hooks
        self._setup_timeout = setup_timeout
        self._session: RemoteSession | None = None
        self._receiver: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._connecting = False
        self.connection_error = True

    @property
    def state(self) -> ChannelState:
        if self._session is not None and not self.connection_error:
            return "connected"
        return "disconnected"

    @property
    def connected(self) -> bool:
        return self.state == "connected"

    @property
    def connecting(self) -> bool:
        """True while `connect()` is waiting on the connector or for setup."""

        return self._connecting

    async def connect(self) -> None:
        self._connecting = True
        try:
            await self._connect()
        finally:
            self._connecting = False

    async def _connect(self) -> None:
        await self._drop_session()
        self.connection_error = True
        self._ready = asyncio.Event()
        try:
            session = await self._connector()
        except Exception as exc:
            _LOGGER.warning("Failed to connect to session: %s", exc, exc_info=debug_enabled())
            raise SessionError(
                "Failed to initialize music session. Check API key and connection."
            ) from exc
        self._session = session
        self._receiver = asyncio.create_task(self._receive(session))
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self._setup_timeout)
        except asyncio.TimeoutError as exc:
            await self._drop_session()
            raise SessionError("Session setup did not complete in time.") from exc
        if self.connection_error:
            raise SessionError("Session failed during setup.")
        _LOGGER.info("Session connected.")

    async def ensure_connected(self) -> None:
        if not self.connected:
            await self.connect()

    async def send(self, command: SessionCommand) -> bool:
        session = self._session
        if session is None or self.connection_error:
            _LOGGER.debug("Dropping %s; session not connected.", command)
            return False
        try:
            match command:
                case "play":
                    await session.play()
                case "pause":
                    await session.pause()
                case "stop":
                    await session.stop()
                case "reset_context":
                    await session.reset_context()
        except Exception as exc:
            self._dispatch(session, SessionEvent(kind="error", error=exc))
            return False
        return True

    async def set_weighted_prompts(self, prompts: list[dict[str, Any]]) -> bool:
        session = self._session
        if session is None or self.connection_error:
            return False
        try:
            await session.set_weighted_prompts(prompts)
        except Exception as exc:
            raise PublishRejectedError(str(exc) or "Error setting prompts") from exc
        return True

    async def set_generation_config(self, config: dict[str, Any]) -> bool:
        session = self._session
        if session is None or self.connection_error:
            return False
        try:
            await session.set_generation_config(config)
        except Exception as exc:
            raise PublishRejectedError(str(exc) or "Error setting config") from exc
        return True

    async def close(self) -> None:
        await self._drop_session()
        self.connection_error = True

    async def _receive(self, session: RemoteSession) -> None:
        try:
            async for event in session.receive():
                self._dispatch(session, event)
                if event.kind in ("error", "close"):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._dispatch(session, SessionEvent(kind="error", error=exc))
            return
        self._dispatch(session, SessionEvent(kind="close"))

    def _dispatch(self, session: RemoteSession, event: SessionEvent) -> None:
        if session is not self._session:
            _LOGGER.debug("Ignoring %s from a replaced session.", event.kind)
            return
        match event.kind:
            case "setup_complete":
                self.connection_error = False
                self._ready.set()
            case "filtered_prompt":
                _LOGGER.warning("Prompt filtered: %r (%s)", event.text, event.reason)
            case "error":
                _LOGGER.warning("Session error: %s", event.error)
                self._fail()
            case "close":
                _LOGGER.warning("Session closed.")
                self._fail()
                event = event.model_copy(update={"error": SessionClosedError("Connection closed")})
            case _:
                pass
        _emit(self.hooks, event)

    def _fail(self) -> None:
        # The failed session is kept so the next connect() can close it.
        self.connection_error = True
        self._ready.set()

    async def _drop_session(self) -> None:
        session, receiver = self._session, self._receiver
        self._session = None
        self._receiver = None
        if receiver is not None and receiver is not asyncio.current_task():
            receiver.cancel()
            try:
                await receiver
            except asyncio.CancelledError:
                pass
        if session is not None:
            try:
                await session.close()
            except Exception as exc:
                _LOGGER.info("Session close failed: %s", exc, exc_info=debug_enabled())
