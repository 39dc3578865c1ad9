from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar, cast

_LOGGER = logging.getLogger("promptdj.throttle")

T = TypeVar("T")


class Throttle(Generic[T]):
    """Timer plus pending-state pair bounding sends to one per interval.

    The first `submit` in a quiet period opens a window. Later submits inside
    the window only replace the pending payload. When the window closes the
    latest payload is sent once; nothing is queued behind it.

    Sends happen on the trailing edge only, not at window open: a burst of
    edits must collapse into one send carrying the final state. Use `flush()`
    where an immediate send is wanted.
    """

    def __init__(
        self,
        send: Callable[[T], Awaitable[None]],
        *,
        interval: float,
        on_error: Callable[[Exception], None] | None = None,
        name: str = "throttle",
    ) -> None:
        self._send = send
        self._interval = interval
        self._on_error = on_error
        self._name = name
        self._timer: asyncio.TimerHandle | None = None
        self._pending: T | None = None
        self._has_pending = False
        self._tasks: set[asyncio.Task[None]] = set()
        self.sent = 0

    @property
    def window_open(self) -> bool:
        return self._timer is not None

    @property
    def pending(self) -> T | None:
        return self._pending if self._has_pending else None

    def submit(self, payload: T) -> None:
        self._pending = payload
        self._has_pending = True
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._interval, self._fire)

    async def flush(self) -> None:
        """Send any pending payload now and wait for in-flight sends."""

        if self._timer is not None:
            self._timer.cancel()
            self._fire()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        self._has_pending = False
        for task in list(self._tasks):
            task.cancel()

    def _fire(self) -> None:
        self._timer = None
        if not self._has_pending:
            return
        payload = cast(T, self._pending)
        self._pending = None
        self._has_pending = False
        task = asyncio.get_running_loop().create_task(self._deliver(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, payload: T) -> None:
        try:
            await self._send(payload)
            self.sent += 1
        except Exception as exc:
            _LOGGER.warning("%s send failed: %s", self._name, exc, exc_info=True)
            if self._on_error is not None:
                self._on_error(exc)
