from __future__ import annotations

import json
import logging
import os
import random
import tempfile
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from .logging_utils import get_data_dir
from .tracks import Track, default_tracks

_LOGGER = logging.getLogger("promptdj.storage")
_TRACKS_FILE = "tracks.json"
_TRACK_LIST = TypeAdapter(list[Track])


def default_store_path() -> Path:
    return get_data_dir() / _TRACKS_FILE


class TrackStore:
    """JSON persistence for the ordered track list."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else default_store_path()

    def load(self, *, rng: random.Random | None = None) -> list[Track]:
        if not self.path.exists():
            return default_tracks(rng)
        try:
            raw = self.path.read_text(encoding="utf-8")
            return _TRACK_LIST.validate_json(raw)
        except (OSError, ValueError, ValidationError) as exc:
            _LOGGER.warning("Failed to parse stored tracks at %s: %s", self.path, exc)
            return default_tracks(rng)

    def save(self, tracks: list[Track]) -> Path:
        payload = _TRACK_LIST.dump_python(tracks, by_alias=True, mode="json")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tracks-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return self.path
