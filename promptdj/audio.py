from __future__ import annotations

import base64
import binascii
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from .errors import DecodeError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray
ChunkPayload = bytes | bytearray | memoryview | str

SAMPLE_RATE = 48_000
CHANNELS = 2
_SAMPLE_WIDTH = 2
_INT16_SCALE = 32_768.0


def ensure_audio_contract(audio: AudioNumbers, *, channels: int = CHANNELS) -> FloatArray:
    """Coerce samples to a float32 (frames, channels) array in [-1, 1]."""

    array: FloatArray = np.asarray(audio, dtype=np.float32)
    match array.ndim:
        case 1:
            if channels > 1 and array.size % channels == 0:
                array = array.reshape(-1, channels)
            else:
                array = np.repeat(array.reshape(-1, 1), channels, axis=1)
        case 2 if array.shape[1] == channels:
            pass
        case 2 if array.shape[1] == 1:
            array = np.repeat(array, channels, axis=1)
        case _:
            raise DecodeError(f"Audio must have {channels} channels, got shape {array.shape}")
    if array.size == 0:
        return array
    return np.clip(array, -1.0, 1.0)


class PCMBuffer(BaseModel):
    """Decoded audio ready for scheduling."""

    samples: FloatArray
    sample_rate: int = SAMPLE_RATE

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @model_validator(mode="after")
    def _normalize(self) -> "PCMBuffer":
        if self.sample_rate <= 0:
            raise DecodeError("sample_rate must be positive")
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim != 2:
            raise DecodeError("PCM samples must be shaped (frames, channels)")
        object.__setattr__(self, "samples", samples)
        return self

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate


def _as_bytes(data: ChunkPayload) -> bytes:
    match data:
        case str():
            try:
                return base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise DecodeError(f"Chunk is not valid base64: {exc}") from exc
        case bytes():
            return data
        case bytearray() | memoryview():
            return bytes(data)
        case _:
            raise DecodeError(f"Unsupported chunk payload: {type(data).__name__}")


def decode_pcm16(
    data: ChunkPayload,
    *,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> PCMBuffer:
    """Decode interleaved little-endian 16-bit PCM into a float buffer."""

    raw = _as_bytes(data)
    frame_width = _SAMPLE_WIDTH * channels
    if not raw:
        raise DecodeError("Chunk is empty")
    if len(raw) % frame_width:
        raise DecodeError(
            f"Chunk length {len(raw)} is not a multiple of the frame width {frame_width}"
        )
    pcm = np.frombuffer(raw, dtype="<i2").astype(np.float32) / _INT16_SCALE
    return PCMBuffer(samples=pcm.reshape(-1, channels), sample_rate=sample_rate)


def encode_pcm16(samples: AudioNumbers, *, channels: int = CHANNELS) -> bytes:
    """Inverse of decode_pcm16; used by fake sessions and fixtures."""

    normalized = ensure_audio_contract(samples, channels=channels)
    return (normalized * (_INT16_SCALE - 1)).astype("<i2").tobytes()


def write_wav(path: str | Path, audio: AudioNumbers, *, sample_rate: int = SAMPLE_RATE) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    normalized = ensure_audio_contract(audio)
    sf.write(target, normalized, sample_rate, subtype="FLOAT")  # type: ignore[reportUnknownMemberType]
    return target
