from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from .config import GenerationConfig, GenerationSettings
from .throttle import Throttle
from .tracks import Track, TrackModel

_LOGGER = logging.getLogger("promptdj.publisher")

DEFAULT_INTERVAL = 0.2


class PublishTarget(Protocol):
    async def set_weighted_prompts(self, prompts: list[dict[str, Any]]) -> bool: ...

    async def set_generation_config(self, config: dict[str, Any]) -> bool: ...


class PromptPublisher:
    """Keeps the remote view of prompts and config in step with local state.

    Prompts and config are throttled independently.
    """

    def __init__(
        self,
        tracks: TrackModel,
        settings: GenerationSettings,
        target: PublishTarget,
        *,
        interval: float = DEFAULT_INTERVAL,
        on_failure: Callable[[Exception], None] | None = None,
    ) -> None:
        self._tracks = tracks
        self._settings = settings
        self._target = target
        self._on_failure = on_failure
        self._prompts: Throttle[list[dict[str, Any]]] = Throttle(
            self._send_prompts,
            interval=interval,
            on_error=self._failed,
            name="prompts",
        )
        self._config: Throttle[dict[str, Any]] = Throttle(
            self._send_config,
            interval=interval,
            on_error=self._failed,
            name="config",
        )
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def prompt_sends(self) -> int:
        return self._prompts.sent

    @property
    def config_sends(self) -> int:
        return self._config.sent

    def attach(self) -> None:
        """Republish prompts after every track mutation."""

        if self._unsubscribe is None:
            self._unsubscribe = self._tracks.subscribe(self._on_tracks_changed)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def publish_prompts(self) -> None:
        self._prompts.submit([prompt.to_wire() for prompt in self._tracks.weighted_prompts()])

    def publish_config(self, config: GenerationConfig | None = None) -> None:
        payload = config.to_wire() if config is not None else self._settings.to_wire()
        self._config.submit(payload)

    async def flush(self) -> None:
        await self._prompts.flush()
        await self._config.flush()

    def cancel(self) -> None:
        self._prompts.cancel()
        self._config.cancel()

    def _on_tracks_changed(self, snapshot: list[Track]) -> None:
        _ = snapshot
        self.publish_prompts()

    async def _send_prompts(self, prompts: list[dict[str, Any]]) -> None:
        if await self._target.set_weighted_prompts(prompts):
            _LOGGER.debug("Published %d weighted prompts.", len(prompts))

    async def _send_config(self, config: dict[str, Any]) -> None:
        if await self._target.set_generation_config(config):
            _LOGGER.debug("Published generation config: %s", config)

    def _failed(self, exc: Exception) -> None:
        if self._on_failure is not None:
            self._on_failure(exc)
