from __future__ import annotations

import logging
import random
import re
from collections.abc import Callable, Iterable, Iterator, Sequence
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidConfigError, TrackNotFoundError

_LOGGER = logging.getLogger("promptdj.tracks")

COLORS: tuple[str, ...] = (
    "#FF6B6B",
    "#FFD166",
    "#06D6A0",
    "#118AB2",
    "#7A28CB",
    "#EF476F",
    "#F78C6B",
    "#6A4C93",
)
MAX_WEIGHT = 2.0
NEW_TRACK_WEIGHT = 0.5
PLACEHOLDER_TEXT = "Describe this musical part..."
_MAX_NAME_CHARS = 20
_ID_PREFIX = "track-"
_ID_PATTERN = re.compile(r"^track-(\d+)$")

DEFAULT_TRACK_DESCRIPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "Drums": "Upbeat electronic drums, driving kick, crisp hi-hats",
        "Bassline": "Funky syncopated electric bass, warm tone",
        "Harmony": "Lush ambient pads, sustained chords, smooth transitions",
        "Melody": "Simple catchy synth lead, slightly detuned, expressive vibrato",
    }
)
_DEFAULT_WEIGHTS: Mapping[str, float] = MappingProxyType(
    {"Drums": 1.0, "Bassline": 1.0, "Harmony": 0.5, "Melody": 0.0}
)

TrackListener = Callable[[list["Track"]], None]


class Track(BaseModel):
    track_id: str = Field(alias="trackId", frozen=True)
    name: str
    text: str
    weight: float = Field(default=NEW_TRACK_WEIGHT, ge=0.0, le=MAX_WEIGHT)
    color: str = Field(frozen=True)

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        populate_by_name=True,
    )

    @property
    def prompt_text(self) -> str:
        return f"{self.name}: {self.text}"


class WeightedPrompt(BaseModel):
    text: str
    weight: float

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text, "weight": self.weight}


class FilteredTextSet:
    """Prompt texts rejected by the remote service, with the stated reason."""

    def __init__(self) -> None:
        self._reasons: dict[str, str] = {}

    def add(self, text: str, reason: str = "") -> None:
        self._reasons[text] = reason

    def discard(self, text: str) -> bool:
        return self._reasons.pop(text, None) is not None

    def reason(self, text: str) -> str | None:
        return self._reasons.get(text)

    def __contains__(self, text: object) -> bool:
        return text in self._reasons

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._reasons))

    def __len__(self) -> int:
        return len(self._reasons)


def pick_color(used: Iterable[str], rng: random.Random | None = None) -> str:
    """Random palette color, preferring one that is not already in use."""

    chooser = rng or random
    in_use = set(used)
    available = [color for color in COLORS if color not in in_use]
    return chooser.choice(available or list(COLORS))


def _seed_counter(track_ids: Sequence[str]) -> int:
    if not track_ids:
        return 0
    suffixes: list[int] = []
    for track_id in track_ids:
        match = _ID_PATTERN.match(track_id)
        if match is None:
            return len(track_ids)
        suffixes.append(int(match.group(1)))
    return max(suffixes) + 1


def default_tracks(rng: random.Random | None = None) -> list[Track]:
    tracks: list[Track] = []
    for index, (name, text) in enumerate(DEFAULT_TRACK_DESCRIPTIONS.items()):
        tracks.append(
            Track(
                track_id=f"{_ID_PREFIX}{index}",
                name=name,
                text=text,
                weight=_DEFAULT_WEIGHTS.get(name, 0.0),
                color=pick_color((track.color for track in tracks), rng),
            )
        )
    return tracks


class TrackModel:
    """Insertion-ordered track set plus the filtered-text bookkeeping."""

    def __init__(
        self,
        tracks: Iterable[Track] = (),
        *,
        filtered: FilteredTextSet | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._tracks: dict[str, Track] = {}
        for track in tracks:
            if track.track_id in self._tracks:
                raise InvalidConfigError(f"Duplicate track id: {track.track_id}")
            self._tracks[track.track_id] = track
        self.filtered = filtered or FilteredTextSet()
        self._rng = rng
        self._next_id = _seed_counter(list(self._tracks))
        self._listeners: list[TrackListener] = []

    @classmethod
    def with_defaults(cls, *, rng: random.Random | None = None) -> "TrackModel":
        return cls(default_tracks(rng), rng=rng)

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._tracks

    def get(self, track_id: str) -> Track:
        try:
            return self._tracks[track_id].model_copy()
        except KeyError:
            raise TrackNotFoundError(f"Unknown track: {track_id}") from None

    def list(self) -> list[Track]:
        return [track.model_copy() for track in self._tracks.values()]

    def subscribe(self, listener: TrackListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def add(self, name_or_text: str) -> str:
        value = name_or_text.strip()
        if not value:
            raise InvalidConfigError("Please enter a name or prompt for the new track.")
        track_id = self._allocate_id()
        if len(value) <= _MAX_NAME_CHARS and " " not in value:
            name, text = value, PLACEHOLDER_TEXT
        else:
            name, text = f"Track {self._next_id}", value
        track = Track(
            track_id=track_id,
            name=name,
            text=text,
            weight=NEW_TRACK_WEIGHT,
            color=pick_color((item.color for item in self._tracks.values()), self._rng),
        )
        self._tracks[track_id] = track
        _LOGGER.debug("Added %s (%s)", track_id, name)
        self._notify()
        return track_id

    def edit(
        self,
        track_id: str,
        *,
        name: str | None = None,
        text: str | None = None,
        weight: float | None = None,
    ) -> Track:
        track = self._tracks.get(track_id)
        if track is None:
            raise TrackNotFoundError(f"Unknown track: {track_id}")
        old_text = track.text
        updates = {
            key: value
            for key, value in (("name", name), ("text", text), ("weight", weight))
            if value is not None
        }
        try:
            edited = track.model_copy()
            for key, value in updates.items():
                setattr(edited, key, value)
        except ValidationError as exc:
            raise InvalidConfigError(str(exc)) from exc
        self._tracks[track_id] = edited
        if edited.text != old_text and self.filtered.discard(old_text):
            _LOGGER.info("Track %s edited away from filtered text; retrying it.", track_id)
        self._notify()
        return edited.model_copy()

    def remove(self, track_id: str) -> Track:
        track = self._tracks.pop(track_id, None)
        if track is None:
            raise TrackNotFoundError(f"Unknown track: {track_id}")
        self.filtered.discard(track.text)
        _LOGGER.debug("Removed %s", track_id)
        self._notify()
        return track

    def is_filtered(self, track: Track) -> bool:
        return track.text in self.filtered

    def mark_filtered(self, text: str, reason: str = "") -> str:
        """Record a filtered prompt and return the track text it suppresses.

        The service may echo either the composed prompt or the raw track text.
        """

        resolved = text
        for track in self._tracks.values():
            if text == track.prompt_text:
                resolved = track.text
                break
        self.filtered.add(resolved, reason)
        self._notify()
        return resolved

    def weighted_prompts(self) -> list[WeightedPrompt]:
        return [
            WeightedPrompt(text=track.prompt_text, weight=track.weight)
            for track in self._tracks.values()
            if track.weight > 0 and track.text.strip() and track.text not in self.filtered
        ]

    def _allocate_id(self) -> str:
        while f"{_ID_PREFIX}{self._next_id}" in self._tracks:
            self._next_id += 1
        track_id = f"{_ID_PREFIX}{self._next_id}"
        self._next_id += 1
        return track_id

    def _notify(self) -> None:
        snapshot = self.list()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                _LOGGER.warning("Track listener failed: %s", exc, exc_info=True)
