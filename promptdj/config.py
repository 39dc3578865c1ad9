from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("promptdj.config")

Scale = Literal[
    "SCALE_UNSPECIFIED",
    "C_MAJOR_A_MINOR",
    "D_FLAT_MAJOR_B_FLAT_MINOR",
    "D_MAJOR_B_MINOR",
    "E_FLAT_MAJOR_C_MINOR",
    "E_MAJOR_D_FLAT_MINOR",
    "F_MAJOR_D_MINOR",
    "G_FLAT_MAJOR_E_FLAT_MINOR",
    "G_MAJOR_E_MINOR",
    "A_FLAT_MAJOR_F_MINOR",
    "A_MAJOR_G_FLAT_MINOR",
    "B_FLAT_MAJOR_G_MINOR",
    "B_MAJOR_A_FLAT_MINOR",
]
AutoField = Literal["density", "brightness"]

SCALE_LABELS: Mapping[str, Scale] = MappingProxyType(
    {
        "Auto": "SCALE_UNSPECIFIED",
        "C Maj / A Min": "C_MAJOR_A_MINOR",
        "C# Maj / A# Min": "D_FLAT_MAJOR_B_FLAT_MINOR",
        "D Maj / B Min": "D_MAJOR_B_MINOR",
        "D# Maj / C Min": "E_FLAT_MAJOR_C_MINOR",
        "E Maj / C# Min": "E_MAJOR_D_FLAT_MINOR",
        "F Maj / D Min": "F_MAJOR_D_MINOR",
        "F# Maj / D# Min": "G_FLAT_MAJOR_E_FLAT_MINOR",
        "G Maj / E Min": "G_MAJOR_E_MINOR",
        "G# Maj / F Min": "A_FLAT_MAJOR_F_MINOR",
        "A Maj / F# Min": "A_MAJOR_G_FLAT_MINOR",
        "A# Maj / G Min": "B_FLAT_MAJOR_G_MINOR",
        "B Maj / G# Min": "B_MAJOR_A_FLAT_MINOR",
    }
)

DEFAULT_TEMPERATURE = 1.1
DEFAULT_TOP_K = 40
DEFAULT_GUIDANCE = 4.0
DEFAULT_AUTO_VALUE = 0.5

# Outbound field names expected by the generation service.
_WIRE_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "temperature": "temperature",
        "top_k": "topK",
        "guidance": "guidance",
        "density": "density",
        "brightness": "brightness",
        "bpm": "bpm",
        "seed": "seed",
        "scale": "scale",
        "mute_bass": "muteBass",
        "mute_drums": "muteDrums",
        "only_bass_and_drums": "onlyBassAndDrums",
    }
)


class GenerationConfig(BaseModel):
    """Explicit generation parameters; `None` means the service decides."""

    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=3.0)
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1, le=100)
    guidance: float = Field(default=DEFAULT_GUIDANCE, ge=0.0, le=6.0)
    density: float | None = Field(default=None, ge=0.0, le=1.0)
    brightness: float | None = Field(default=None, ge=0.0, le=1.0)
    bpm: int | None = Field(default=None, ge=60, le=200)
    seed: int | None = None
    scale: Scale | None = None
    mute_bass: bool = False
    mute_drums: bool = False
    only_bass_and_drums: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for field, value in self.model_dump().items():
            if value is None:
                continue
            if field == "scale" and value == "SCALE_UNSPECIFIED":
                continue
            payload[_WIRE_NAMES[field]] = value
        return payload


class GenerationSettings:
    """Mutable settings state: the config plus auto toggles.

    Density and brightness remember the last explicit value so that turning
    auto off restores it.
    """

    def __init__(self, config: GenerationConfig | None = None) -> None:
        self._config = config or GenerationConfig()
        self._auto: dict[AutoField, bool] = {
            "density": self._config.density is None,
            "brightness": self._config.brightness is None,
        }
        self._last: dict[AutoField, float | None] = {
            "density": self._config.density,
            "brightness": self._config.brightness,
        }

    @property
    def config(self) -> GenerationConfig:
        """Effective config with auto fields cleared."""

        return self._config.model_copy(
            update={
                field: (None if self._auto[field] else self._explicit(field))
                for field in ("density", "brightness")
            }
        )

    def is_auto(self, field: AutoField) -> bool:
        return self._auto[field]

    def last_defined(self, field: AutoField) -> float | None:
        return self._last[field]

    def set_auto(self, field: AutoField, enabled: bool) -> GenerationConfig:
        self._auto[field] = enabled
        _LOGGER.debug("auto %s -> %s", field, enabled)
        return self.config

    def update(self, **fields: Any) -> GenerationConfig:
        last = dict(self._last)
        for field in ("density", "brightness"):
            value = fields.pop(field, None)
            if value is not None:
                last[field] = value
        try:
            candidate = GenerationConfig.model_validate(
                {**self._config.model_dump(), **fields, **last}
            )
        except ValidationError as exc:
            raise InvalidConfigError(str(exc)) from exc
        self._config = candidate
        self._last = {"density": candidate.density, "brightness": candidate.brightness}
        return self.config

    def reset(self) -> GenerationConfig:
        self._config = GenerationConfig()
        self._auto = {"density": True, "brightness": True}
        self._last = {"density": None, "brightness": None}
        return self.config

    def to_wire(self) -> dict[str, Any]:
        return self.config.to_wire()

    def _explicit(self, field: AutoField) -> float:
        value = self._last[field]
        return DEFAULT_AUTO_VALUE if value is None else value


class PlaybackTiming(BaseModel):
    """Timing constants for scheduling, throttling and gain ramps (seconds)."""

    lookahead: float = Field(default=2.0, gt=0.0)
    throttle_interval: float = Field(default=0.2, ge=0.0)
    play_ramp: float = Field(default=0.2, ge=0.0)
    stop_ramp: float = Field(default=0.1, ge=0.0)
    reset_resume_delay: float = Field(default=0.2, ge=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def recovery_lookahead(self) -> float:
        return self.lookahead / 2
