from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from .audio import ChunkPayload
from .config import AutoField, GenerationConfig, GenerationSettings, PlaybackTiming
from .errors import InvalidConfigError, PromptDJError, TrackNotFoundError
from .logging_utils import log_exception
from .notify import Notifier
from .output import AudioOutput, SoundDeviceOutput
from .publisher import PromptPublisher
from .scheduler import PlaybackHooks, PlaybackScheduler, PlaybackState
from .session import SessionChannel, SessionConnector, SessionHooks
from .storage import TrackStore
from .tracks import Track, TrackModel

_LOGGER = logging.getLogger("promptdj.orchestrator")


class AppContext:
    """Process-scoped audio and session handles with an explicit lifecycle."""

    def __init__(
        self,
        output: AudioOutput,
        connector: SessionConnector,
        *,
        timing: PlaybackTiming | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.output = output
        self.connector = connector
        self.timing = timing or PlaybackTiming()
        self.notifier = notifier or Notifier()
        self.disposed = False

    @classmethod
    def create(
        cls,
        connector: SessionConnector,
        *,
        timing: PlaybackTiming | None = None,
        notifier: Notifier | None = None,
    ) -> "AppContext":
        return cls(SoundDeviceOutput(), connector, timing=timing, notifier=notifier)

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self.output.close()


class PromptDJ:
    """Maps user intent onto the track model, publisher, session and scheduler."""

    def __init__(
        self,
        context: AppContext,
        *,
        tracks: TrackModel | None = None,
        settings: GenerationSettings | None = None,
        store: TrackStore | None = None,
    ) -> None:
        self.context = context
        self.notifier = context.notifier
        self.tracks = tracks if tracks is not None else TrackModel.with_defaults()
        self.settings = settings or GenerationSettings()
        self.channel = SessionChannel(
            context.connector,
            hooks=SessionHooks(
                on_audio_chunk=self._on_audio_chunk,
                on_filtered_prompt=self._on_filtered_prompt,
                on_error=self._on_connection_error,
                on_close=self._on_connection_closed,
            ),
        )
        self.scheduler = PlaybackScheduler(
            context.output,
            self.channel,
            timing=context.timing,
            hooks=PlaybackHooks(
                on_state_change=self._on_state_change,
                on_decode_error=self._on_decode_error,
            ),
        )
        self.publisher = PromptPublisher(
            self.tracks,
            self.settings,
            self.channel,
            interval=context.timing.throttle_interval,
            on_failure=self._on_publish_failed,
        )
        self.publisher.attach()
        self._store = store
        if store is not None:
            self.tracks.subscribe(self._save_tracks)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._resume_timer: asyncio.TimerHandle | None = None
        self._decode_error_reported = False

    @property
    def playback_state(self) -> PlaybackState:
        return self.scheduler.state

    async def start(self) -> None:
        try:
            await self.channel.connect()
        except PromptDJError as exc:
            self.notifier.show(str(exc))
            return
        self.publisher.publish_prompts()
        self.publisher.publish_config()

    async def play_pause(self) -> None:
        match self.scheduler.state:
            case "playing":
                await self.scheduler.pause()
            case "paused" | "stopped":
                await self.play()
            case "loading":
                await self.scheduler.stop()

    async def play(self) -> None:
        if self.channel.connection_error:
            try:
                await self.channel.connect()
                self.publisher.publish_prompts()
                self.publisher.publish_config()
                await self.publisher.flush()
            except PromptDJError as exc:
                self.notifier.show(str(exc) or "Failed to reconnect. Please try again.")
                return
        if self.channel.connection_error:
            return
        await self.scheduler.play()

    async def pause(self) -> None:
        await self.scheduler.pause()

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def reset(self) -> None:
        if self.channel.connection_error:
            try:
                await self.channel.connect()
            except PromptDJError as exc:
                self.notifier.show(str(exc) or "Failed to reconnect for reset.")
                return
            self.publisher.publish_prompts()
        was_active = self.scheduler.state in ("playing", "loading")
        self._cancel_resume()
        await self.scheduler.pause()
        await self.channel.send("reset_context")
        self.settings.reset()
        self.publisher.publish_config()
        if was_active and self.channel.connected:
            loop = asyncio.get_running_loop()
            self._resume_timer = loop.call_later(
                self.context.timing.reset_resume_delay,
                self._resume_after_reset,
            )

    def add_track(self, name_or_text: str) -> str | None:
        try:
            return self.tracks.add(name_or_text)
        except InvalidConfigError as exc:
            self.notifier.show(str(exc))
            return None

    def edit_track(
        self,
        track_id: str,
        *,
        name: str | None = None,
        text: str | None = None,
        weight: float | None = None,
    ) -> Track | None:
        try:
            return self.tracks.edit(track_id, name=name, text=text, weight=weight)
        except (InvalidConfigError, TrackNotFoundError) as exc:
            self.notifier.error("Track update", exc)
            return None

    def remove_track(self, track_id: str) -> None:
        try:
            self.tracks.remove(track_id)
        except TrackNotFoundError as exc:
            self.notifier.error("Track removal", exc)

    def update_settings(self, **fields: Any) -> GenerationConfig:
        """Apply setting changes; invalid values are reported and leave settings as they were."""

        try:
            config = self.settings.update(**fields)
        except InvalidConfigError as exc:
            self.notifier.error("Settings update", exc)
            return self.settings.config
        self.publisher.publish_config(config)
        return config

    def set_auto(self, field: AutoField, enabled: bool) -> GenerationConfig:
        config = self.settings.set_auto(field, enabled)
        self.publisher.publish_config(config)
        return config

    async def aclose(self) -> None:
        self._cancel_resume()
        self.publisher.detach()
        self.publisher.cancel()
        await self.scheduler.aclose()
        await self.channel.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _resume_after_reset(self) -> None:
        self._resume_timer = None
        if self.channel.connected and self.scheduler.state in ("paused", "stopped"):
            self._spawn(self.scheduler.play())

    def _cancel_resume(self) -> None:
        if self._resume_timer is not None:
            self._resume_timer.cancel()
            self._resume_timer = None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _save_tracks(self, snapshot: list[Track]) -> None:
        if self._store is None:
            return
        try:
            self._store.save(snapshot)
        except OSError as exc:
            _LOGGER.warning("Failed to save tracks: %s", exc)
            log_exception("save tracks", exc)

    def _on_audio_chunk(self, data: ChunkPayload) -> None:
        self.scheduler.on_chunk(data)

    def _on_filtered_prompt(self, text: str, reason: str) -> None:
        self.tracks.mark_filtered(text, reason)
        self.notifier.show(reason or f"Prompt filtered: {text}")

    def _on_connection_error(self, exc: Exception) -> None:
        _ = exc
        self._cancel_resume()
        self.scheduler.force_stop()
        # connect() raises and its caller reports the failure.
        if not self.channel.connecting:
            self.notifier.show("Connection error, please restart audio.")

    def _on_connection_closed(self) -> None:
        self._cancel_resume()
        self.scheduler.force_stop()
        if not self.channel.connecting:
            self.notifier.show("Connection closed, please restart audio.")

    def _on_publish_failed(self, exc: Exception) -> None:
        self.notifier.show(str(exc) or "Error setting prompts")
        self._spawn(self.scheduler.pause())

    def _on_decode_error(self, exc: Exception) -> None:
        if self._decode_error_reported:
            return
        self._decode_error_reported = True
        self.notifier.error("Audio decode", exc)

    def _on_state_change(self, previous: PlaybackState, state: PlaybackState) -> None:
        if state == "loading" and previous in ("stopped", "paused"):
            self._decode_error_reported = False
