from __future__ import annotations


class PromptDJError(Exception):
    """Base error for the PromptDJ library."""


class InvalidConfigError(PromptDJError):
    """Raised when settings or track fields cannot be validated."""


class TrackNotFoundError(PromptDJError):
    """Raised when a track id is not present in the track model."""


class SessionError(PromptDJError):
    """Raised when the live generation session fails."""


class SessionClosedError(SessionError):
    """Raised when the live generation session was closed by the remote end."""


class DecodeError(PromptDJError):
    """Raised when an audio chunk cannot be decoded to PCM."""


class PublishRejectedError(PromptDJError):
    """Raised when the remote session rejects a prompt or config update."""


class PlaybackError(PromptDJError):
    """Raised when no audio output backend is available."""
