from __future__ import annotations

import bisect
import logging
import math
import threading
from pathlib import Path
from typing import Any, Protocol

import numpy as np
from pydantic import BaseModel, ConfigDict

from .audio import CHANNELS, SAMPLE_RATE, ChunkPayload, FloatArray, PCMBuffer, decode_pcm16, write_wav
from .errors import PlaybackError

_LOGGER = logging.getLogger("promptdj.output")


class _GainEvent(BaseModel):
    time: float
    value: float
    ramp: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")


class GainNode:
    """Gain automation with step and linear-ramp events.

    Read from the audio thread, written from the event loop.
    """

    def __init__(self, value: float = 1.0) -> None:
        self._initial = value
        self._events: list[_GainEvent] = []
        self._disconnect_at: float | None = None
        self._lock = threading.Lock()

    def set_value_at(self, value: float, when: float) -> None:
        self._insert(_GainEvent(time=when, value=value))

    def linear_ramp_to(self, value: float, end_time: float) -> None:
        self._insert(_GainEvent(time=end_time, value=value, ramp=True))

    def disconnect(self, at: float | None = None) -> None:
        with self._lock:
            self._disconnect_at = -math.inf if at is None else at

    def is_disconnected(self, when: float) -> bool:
        with self._lock:
            return self._disconnect_at is not None and when >= self._disconnect_at

    def value_at(self, when: float) -> float:
        return float(self.values(when, 1, 1)[0])

    def values(self, start_time: float, frames: int, sample_rate: int) -> FloatArray:
        times = start_time + np.arange(frames, dtype=np.float64) / sample_rate
        out = np.empty(frames, dtype=np.float32)
        with self._lock:
            prev_time, prev_value = -math.inf, self._initial
            for event in self._events:
                mask = (times >= prev_time) & (times < event.time)
                if event.ramp and math.isfinite(prev_time) and event.time > prev_time:
                    progress = (times[mask] - prev_time) / (event.time - prev_time)
                    out[mask] = prev_value + (event.value - prev_value) * progress
                else:
                    out[mask] = prev_value
                prev_time, prev_value = event.time, event.value
            out[times >= prev_time] = prev_value
            if self._disconnect_at is not None:
                out[times >= self._disconnect_at] = 0.0
        return out

    def prune(self, before: float) -> None:
        """Fold events that ended before `before` into the initial value."""

        with self._lock:
            while self._events and self._events[0].time <= before:
                following = self._events[1] if len(self._events) > 1 else None
                if following is not None and following.ramp and following.time > before:
                    break
                self._initial = self._events.pop(0).value

    def _insert(self, event: _GainEvent) -> None:
        with self._lock:
            bisect.insort_right(self._events, event, key=lambda item: item.time)


class ScheduledBuffer(BaseModel):
    buffer: PCMBuffer
    start_time: float
    gain: GainNode

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @property
    def end_time(self) -> float:
        return self.start_time + self.buffer.duration


class AudioOutput(Protocol):
    """Audio device capability consumed by the playback scheduler."""

    sample_rate: int
    channels: int

    def now(self) -> float: ...

    def decode(self, data: ChunkPayload) -> PCMBuffer: ...

    def create_gain(self) -> GainNode: ...

    def schedule(self, buffer: PCMBuffer, start_time: float, gain: GainNode) -> None: ...

    def resume(self) -> None: ...

    def close(self) -> None: ...


def _mix_into(
    out: FloatArray,
    block_start: float,
    scheduled: list[ScheduledBuffer],
    sample_rate: int,
) -> None:
    frames = out.shape[0]
    block_frame = int(round(block_start * sample_rate))
    for item in scheduled:
        start_frame = int(round(item.start_time * sample_rate))
        offset = start_frame - block_frame
        src_start = max(0, -offset)
        dst_start = max(0, offset)
        count = min(item.buffer.frames - src_start, frames - dst_start)
        if count <= 0:
            continue
        gains = item.gain.values(
            (block_frame + dst_start) / sample_rate,
            count,
            sample_rate,
        )
        out[dst_start : dst_start + count] += (
            item.buffer.samples[src_start : src_start + count] * gains[:, None]
        )


class OfflineOutput:
    """Virtual-clock output used for rendering and deterministic tests."""

    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        start_time: float = 0.0,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._time = start_time
        self.scheduled: list[ScheduledBuffer] = []
        self.gains: list[GainNode] = []
        self.running = False
        self.closed = False

    def now(self) -> float:
        return self._time

    def advance(self, seconds: float) -> float:
        self._time += seconds
        return self._time

    def decode(self, data: ChunkPayload) -> PCMBuffer:
        return decode_pcm16(data, sample_rate=self.sample_rate, channels=self.channels)

    def create_gain(self) -> GainNode:
        gain = GainNode()
        self.gains.append(gain)
        return gain

    def schedule(self, buffer: PCMBuffer, start_time: float, gain: GainNode) -> None:
        self.scheduled.append(ScheduledBuffer(buffer=buffer, start_time=start_time, gain=gain))

    def resume(self) -> None:
        self.running = True

    def close(self) -> None:
        self.closed = True
        self.running = False

    def render(self, duration: float | None = None) -> FloatArray:
        if duration is None:
            duration = max((item.end_time for item in self.scheduled), default=0.0)
        frames = max(0, int(round(duration * self.sample_rate)))
        out = np.zeros((frames, self.channels), dtype=np.float32)
        _mix_into(out, 0.0, self.scheduled, self.sample_rate)
        return out

    def save(self, path: str | Path, duration: float | None = None) -> Path:
        return write_wav(path, self.render(duration), sample_rate=self.sample_rate)


class SoundDeviceOutput:
    """Realtime output mixing scheduled buffers inside a sounddevice callback."""

    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        blocksize: int = 0,
        latency: str | float = "low",
    ) -> None:
        try:
            import sounddevice as sd_module  # type: ignore[import]
        except (ImportError, OSError) as exc:
            _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
            raise PlaybackError(
                "Realtime playback requires sounddevice and a PortAudio device."
            ) from exc
        sd: Any = sd_module
        self.sample_rate = sample_rate
        self.channels = channels
        self._frame = 0
        self._pending: list[ScheduledBuffer] = []
        self._lock = threading.Lock()
        self.callback_errors = 0
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="float32",
            blocksize=blocksize,
            latency=latency,
            callback=self._callback,
        )

    def now(self) -> float:
        with self._lock:
            return self._frame / self.sample_rate

    def decode(self, data: ChunkPayload) -> PCMBuffer:
        return decode_pcm16(data, sample_rate=self.sample_rate, channels=self.channels)

    def create_gain(self) -> GainNode:
        return GainNode()

    def schedule(self, buffer: PCMBuffer, start_time: float, gain: GainNode) -> None:
        item = ScheduledBuffer(buffer=buffer, start_time=start_time, gain=gain)
        with self._lock:
            self._pending.append(item)

    def resume(self) -> None:
        if not self._stream.active:
            self._stream.start()

    def close(self) -> None:
        try:
            self._stream.stop()
        finally:
            self._stream.close()
        with self._lock:
            self._pending.clear()

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        _ = time_info
        _ = status
        try:
            with self._lock:
                block_start = self._frame / self.sample_rate
                block_end = (self._frame + frames) / self.sample_rate
                self._pending = [
                    item
                    for item in self._pending
                    if item.end_time > block_start and not item.gain.is_disconnected(block_start)
                ]
                active = list(self._pending)
                self._frame += frames
            mix = np.zeros((frames, self.channels), dtype=np.float32)
            _mix_into(mix, block_start, active, self.sample_rate)
            outdata[:] = np.clip(mix, -1.0, 1.0)
            for item in active:
                item.gain.prune(block_end)
        except Exception:
            # Exceptions must not escape into PortAudio.
            outdata.fill(0)
            self.callback_errors += 1
