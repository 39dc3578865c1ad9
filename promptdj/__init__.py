from __future__ import annotations

from .audio import CHANNELS, SAMPLE_RATE, PCMBuffer, decode_pcm16, encode_pcm16
from .config import GenerationConfig, GenerationSettings, PlaybackTiming, Scale
from .errors import (
    DecodeError,
    InvalidConfigError,
    PlaybackError,
    PromptDJError,
    PublishRejectedError,
    SessionClosedError,
    SessionError,
    TrackNotFoundError,
)
from .logging_utils import configure_logging as _configure_logging
from .notify import Notifier
from .orchestrator import AppContext, PromptDJ
from .output import AudioOutput, GainNode, OfflineOutput, ScheduledBuffer, SoundDeviceOutput
from .publisher import PromptPublisher
from .scheduler import PlaybackHooks, PlaybackScheduler, PlaybackState
from .session import RemoteSession, SessionChannel, SessionEvent, SessionHooks
from .storage import TrackStore
from .throttle import Throttle
from .tracks import FilteredTextSet, Track, TrackModel, WeightedPrompt

__all__ = [
    "CHANNELS",
    "SAMPLE_RATE",
    "AppContext",
    "AudioOutput",
    "DecodeError",
    "FilteredTextSet",
    "GainNode",
    "GenerationConfig",
    "GenerationSettings",
    "InvalidConfigError",
    "Notifier",
    "OfflineOutput",
    "PCMBuffer",
    "PlaybackError",
    "PlaybackHooks",
    "PlaybackScheduler",
    "PlaybackState",
    "PlaybackTiming",
    "PromptDJ",
    "PromptDJError",
    "PromptPublisher",
    "PublishRejectedError",
    "RemoteSession",
    "Scale",
    "ScheduledBuffer",
    "SessionChannel",
    "SessionClosedError",
    "SessionError",
    "SessionEvent",
    "SessionHooks",
    "SoundDeviceOutput",
    "Throttle",
    "Track",
    "TrackModel",
    "TrackNotFoundError",
    "TrackStore",
    "WeightedPrompt",
    "decode_pcm16",
    "encode_pcm16",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
