from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict

from .audio import ChunkPayload, PCMBuffer
from .config import PlaybackTiming
from .logging_utils import debug_enabled
from .output import AudioOutput, GainNode, ScheduledBuffer
from .session import SessionCommand

_LOGGER = logging.getLogger("promptdj.scheduler")

PlaybackState = Literal["stopped", "loading", "playing", "paused"]
_ACCEPTS_CHUNKS: frozenset[PlaybackState] = frozenset({"loading", "playing"})


class CommandSink(Protocol):
    async def send(self, command: SessionCommand) -> bool: ...


class PlaybackHooks(BaseModel):
    on_state_change: Callable[[PlaybackState, PlaybackState], None] | None = None
    on_buffer_scheduled: Callable[[ScheduledBuffer], None] | None = None
    on_underrun: Callable[[float], None] | None = None
    on_decode_error: Callable[[Exception], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _call_hook(name: str, hook: Callable[..., None] | None, *args: object) -> None:
    if hook is None:
        return
    try:
        hook(*args)
    except Exception as exc:
        _LOGGER.warning("Playback hook %s failed: %s", name, exc, exc_info=debug_enabled())


class PlaybackScheduler:
    """Gapless scheduling of decoded chunks against the output clock.

    `_offset` is the only timing state: `None` means no run is buffered and
    the next chunk starts a fresh lookahead window.
    """

    def __init__(
        self,
        output: AudioOutput,
        commands: CommandSink | None = None,
        *,
        timing: PlaybackTiming | None = None,
        hooks: PlaybackHooks | None = None,
    ) -> None:
        self._output = output
        self._commands = commands
        self.timing = timing or PlaybackTiming()
        self.hooks = hooks or PlaybackHooks()
        self._state: PlaybackState = "stopped"
        self._offset: float | None = None
        self._gain: GainNode = output.create_gain()
        self._deadline: asyncio.TimerHandle | None = None
        self._queue: asyncio.Queue[ChunkPayload] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._retired: set[asyncio.Task[None]] = set()
        self.underruns = 0

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def next_start_time(self) -> float | None:
        return self._offset

    @property
    def gain(self) -> GainNode:
        return self._gain

    @property
    def deadline_armed(self) -> bool:
        return self._deadline is not None

    async def play(self) -> None:
        if self._state not in ("stopped", "paused"):
            return
        self._output.resume()
        self._clear_run()
        now = self._output.now()
        self._gain.set_value_at(0.0, now)
        self._gain.linear_ramp_to(1.0, now + self.timing.play_ramp)
        self._set_state("loading")
        self._start_worker()
        await self._issue("play")

    async def pause(self) -> None:
        if self._state not in ("playing", "loading"):
            return
        self._set_state("paused")
        self._clear_run()
        self._fade_out_and_replace_gain()
        await self._issue("pause")

    async def stop(self) -> None:
        if self._state == "stopped":
            return
        self.force_stop()
        await self._issue("stop")

    def force_stop(self) -> None:
        """Go to `stopped` without talking to the session (it is already gone)."""

        if self._state == "stopped" and self._offset is None:
            return
        self._set_state("stopped")
        self._clear_run()
        self._fade_out_and_replace_gain()

    def on_chunk(self, data: ChunkPayload) -> None:
        if self._state not in _ACCEPTS_CHUNKS or self._queue is None:
            _LOGGER.debug("Discarding chunk received while %s.", self._state)
            return
        self._queue.put_nowait(data)

    async def drain(self) -> None:
        """Wait until every chunk received so far has been decoded and scheduled."""

        if self._queue is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        self._clear_run()
        retired = list(self._retired)
        if retired:
            await asyncio.gather(*retired, return_exceptions=True)

    def _start_worker(self) -> None:
        queue: asyncio.Queue[ChunkPayload] = asyncio.Queue()
        self._queue = queue
        self._worker = asyncio.create_task(self._run(queue))

    async def _run(self, queue: asyncio.Queue[ChunkPayload]) -> None:
        while True:
            data = await queue.get()
            try:
                buffer = await asyncio.to_thread(self._output.decode, data)
            except asyncio.CancelledError:
                queue.task_done()
                raise
            except Exception as exc:
                _LOGGER.warning("Dropping undecodable chunk: %s", exc, exc_info=debug_enabled())
                _call_hook("on_decode_error", self.hooks.on_decode_error, exc)
                queue.task_done()
                continue
            try:
                if queue is self._queue and self._state in _ACCEPTS_CHUNKS:
                    self._schedule(buffer)
            finally:
                queue.task_done()

    def _schedule(self, buffer: PCMBuffer) -> None:
        now = self._output.now()
        if self._offset is None:
            self._offset = now + self.timing.lookahead
            self._arm_deadline(self._offset)
        elif self._offset <= now:
            self.underruns += 1
            _LOGGER.warning("Audio underrun at %.3fs; rebuffering.", now)
            self._set_state("loading")
            self._offset = now + self.timing.recovery_lookahead
            self._arm_deadline(self._offset)
            _call_hook("on_underrun", self.hooks.on_underrun, now)
        start = self._offset
        self._output.schedule(buffer, start, self._gain)
        self._offset = start + buffer.duration
        _call_hook(
            "on_buffer_scheduled",
            self.hooks.on_buffer_scheduled,
            ScheduledBuffer(buffer=buffer, start_time=start, gain=self._gain),
        )

    def _arm_deadline(self, deadline: float) -> None:
        self._cancel_deadline()
        delay = max(0.0, deadline - self._output.now())
        self._deadline = asyncio.get_running_loop().call_later(delay, self._on_deadline)

    def _on_deadline(self) -> None:
        self._deadline = None
        if self._state == "loading":
            self._set_state("playing")

    def _cancel_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _clear_run(self) -> None:
        self._cancel_deadline()
        self._offset = None
        self._queue = None
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            self._retired.add(worker)
            worker.add_done_callback(self._retired.discard)

    def _fade_out_and_replace_gain(self) -> None:
        # Old buffers stay bound to the old node, which goes silent after the ramp.
        now = self._output.now()
        old = self._gain
        end = now + self.timing.stop_ramp
        old.set_value_at(old.value_at(now), now)
        old.linear_ramp_to(0.0, end)
        old.disconnect(at=end)
        self._gain = self._output.create_gain()

    def _set_state(self, state: PlaybackState) -> None:
        previous = self._state
        if previous == state:
            return
        self._state = state
        _LOGGER.debug("Playback %s -> %s", previous, state)
        _call_hook("on_state_change", self.hooks.on_state_change, previous, state)

    async def _issue(self, command: SessionCommand) -> None:
        if self._commands is None:
            return
        await self._commands.send(command)
