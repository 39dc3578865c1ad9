from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import numpy as np
import pytest

from promptdj.audio import encode_pcm16
from promptdj.session import SessionCommand, SessionEvent

TEST_SAMPLE_RATE = 1_000


class FakeSession:
    """In-process stand-in for the remote generation session."""

    def __init__(self, *, setup: bool = True, setup_error: Exception | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.closed = False
        self.reject_prompts: Exception | None = None
        self._events: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        if setup_error is not None:
            self.emit(SessionEvent(kind="error", error=setup_error))
        elif setup:
            self.emit(SessionEvent(kind="setup_complete"))

    def emit(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)

    def end(self) -> None:
        self._events.put_nowait(None)

    async def receive(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def set_weighted_prompts(self, prompts: list[dict[str, Any]]) -> None:
        if self.reject_prompts is not None:
            raise self.reject_prompts
        self.calls.append(("prompts", prompts))

    async def set_generation_config(self, config: dict[str, Any]) -> None:
        self.calls.append(("config", config))

    async def play(self) -> None:
        self.calls.append(("play", None))

    async def pause(self) -> None:
        self.calls.append(("pause", None))

    async def stop(self) -> None:
        self.calls.append(("stop", None))

    async def reset_context(self) -> None:
        self.calls.append(("reset_context", None))

    async def close(self) -> None:
        self.closed = True

    def sent(self, name: str) -> list[Any]:
        return [payload for call, payload in self.calls if call == name]

    def commands(self) -> list[str]:
        control = {"play", "pause", "stop", "reset_context"}
        return [call for call, _ in self.calls if call in control]


class FakeConnector:
    def __init__(self, *, setup: bool = True) -> None:
        self.sessions: list[FakeSession] = []
        self.setup = setup
        self.setup_error: Exception | None = None
        self.fail_with: Exception | None = None

    async def __call__(self) -> FakeSession:
        if self.fail_with is not None:
            raise self.fail_with
        session = FakeSession(setup=self.setup, setup_error=self.setup_error)
        self.sessions.append(session)
        return session

    @property
    def latest(self) -> FakeSession:
        return self.sessions[-1]


class RecordingSink:
    def __init__(self) -> None:
        self.commands: list[SessionCommand] = []

    async def send(self, command: SessionCommand) -> bool:
        self.commands.append(command)
        return True


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_chunk() -> Callable[..., bytes]:
    def _make(seconds: float, *, level: float = 0.25, sample_rate: int = TEST_SAMPLE_RATE) -> bytes:
        frames = int(round(seconds * sample_rate))
        return encode_pcm16(np.full((frames, 2), level, dtype=np.float32))

    return _make
