# path: aov_grade/settings.py
"""Grade settings: defaults, validation, presets and file loading."""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, Tuple, Union

import numpy as np
import yaml

LOGGER = logging.getLogger("aov_grade")

Vector4 = Tuple[float, float, float, float]
VectorLike = Union[float, int, Sequence[float]]

VECTOR_FIELDS = ("blackpoint", "whitepoint", "lift", "gain", "multiply", "offset", "gamma")
FLAG_FIELDS = ("black_clamp", "white_clamp", "viewaov", "reverse", "unpremult", "use_mask")

# Knob labels and camelCase names used by compositing tools and older configs.
_ALIASES = {
    "useMask": "use_mask",
    "use mask": "use_mask",
    "view AOV": "viewaov",
    "view_aov": "viewaov",
    "viewAov": "viewaov",
    "black clamp": "black_clamp",
    "white clamp": "white_clamp",
    "blackClamp": "black_clamp",
    "whiteClamp": "white_clamp",
    "(un)premult": "unpremult",
}


def _coerce_flag(name: str, value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)) and value in (0, 1):
        return bool(value)
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _coerce_vector(name: str, value: VectorLike, default_alpha: float) -> Vector4:
    if isinstance(value, (int, float)):
        items = [float(value)] * 4
    else:
        try:
            items = [float(v) for v in value]
        except TypeError as exc:
            raise ValueError(f"{name} must be a number or a sequence of numbers, got {value!r}") from exc
        if len(items) == 1:
            items = items * 4
        elif len(items) == 3:
            items.append(default_alpha)
        elif len(items) != 4:
            raise ValueError(f"{name} must have 1, 3 or 4 components, got {len(items)}")
    if not all(math.isfinite(v) for v in items):
        raise ValueError(f"{name} components must be finite, got {tuple(items)}")
    return (items[0], items[1], items[2], items[3])


@dataclasses.dataclass(frozen=True, slots=True)
class GradeSettings:
    """Immutable snapshot of the grade knobs for one processing run.

    Vectors are RGBA; the alpha component is carried for parity with the
    knob layout but never read by the grading math.
    """

    blackpoint: Vector4 = (0.0, 0.0, 0.0, 0.0)
    whitepoint: Vector4 = (1.0, 1.0, 1.0, 1.0)
    lift: Vector4 = (0.0, 0.0, 0.0, 0.0)
    gain: Vector4 = (1.0, 1.0, 1.0, 1.0)
    multiply: Vector4 = (1.0, 1.0, 1.0, 1.0)
    offset: Vector4 = (0.0, 0.0, 0.0, 0.0)
    gamma: Vector4 = (1.0, 1.0, 1.0, 1.0)
    black_clamp: bool = False
    white_clamp: bool = False
    viewaov: bool = False
    reverse: bool = False
    unpremult: bool = False
    mix: float = 1.0
    use_mask: bool = False

    def __post_init__(self) -> None:
        for field in dataclasses.fields(self):
            name = field.name
            if name in VECTOR_FIELDS:
                alpha = field.default[3]  # type: ignore[index]
                object.__setattr__(self, name, _coerce_vector(name, getattr(self, name), alpha))
            elif name in FLAG_FIELDS:
                object.__setattr__(self, name, _coerce_flag(name, getattr(self, name)))
        try:
            mix = float(self.mix)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"mix must be a number, got {self.mix!r}") from exc
        if not math.isfinite(mix):
            raise ValueError(f"mix must be finite, got {mix}")
        object.__setattr__(self, "mix", mix)

    # --- construction helpers ------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GradeSettings":
        """Build settings from a dict, ignoring keys that are not knobs."""
        valid = {f.name for f in dataclasses.fields(cls)}
        filtered: Dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(str(key), str(key))
            if name in valid:
                filtered[name] = value
            elif LOGGER.isEnabledFor(logging.DEBUG):
                LOGGER.debug("Ignoring unknown settings key %r", key)
        return cls(**filtered)

    def with_overrides(self, **overrides: Any) -> "GradeSettings":
        """Return a copy with *overrides* applied (validated again)."""
        if not overrides:
            return self
        return dataclasses.replace(self, **overrides)

    def to_dict(self) -> dict:
        """Plain-dict form for logs and settings files."""
        out: Dict[str, Any] = {}
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            out[field.name] = list(value) if field.name in VECTOR_FIELDS else value
        return out


GRADE_PRESETS: Dict[str, GradeSettings] = {
    "identity": GradeSettings(),
    "double_gain": GradeSettings(gain=(2.0, 2.0, 2.0, 2.0)),
    "half_gain": GradeSettings(gain=(0.5, 0.5, 0.5, 0.5)),
    "lift_shadows": GradeSettings(lift=(0.05, 0.05, 0.05, 0.0), gamma=(1.2, 1.2, 1.2, 1.0)),
    "crush_clamp": GradeSettings(
        blackpoint=(0.02, 0.02, 0.02, 0.0),
        black_clamp=True,
        white_clamp=True,
    ),
}


def get_preset(name: str) -> GradeSettings:
    """Return a preset by name with a clear error on unknown keys."""
    try:
        return GRADE_PRESETS[name]
    except KeyError as exc:
        available = ", ".join(sorted(GRADE_PRESETS))
        raise KeyError(f"Unknown preset {name!r}. Available: {available}") from exc


def settings_from_data(data: Any) -> GradeSettings:
    """Resolve parsed JSON/YAML into settings.

    Supports a plain knob mapping, or ``{"preset": name, ...overrides}``.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"Settings data must be a mapping, got {type(data).__name__}")
    if "preset" in data:
        base = get_preset(str(data["preset"]))
        overrides = {k: v for k, v in data.items() if k != "preset"}
        return GradeSettings.from_mapping({**base.to_dict(), **overrides})
    return GradeSettings.from_mapping(data)


def load_settings(path: Union[str, Path]) -> GradeSettings:
    """Load settings from a JSON or YAML file."""
    settings_path = Path(path)
    text = settings_path.read_text(encoding="utf-8")
    if settings_path.suffix.lower() in {".yml", ".yaml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    settings = settings_from_data(data)
    LOGGER.debug("Loaded settings from %s", settings_path)
    return settings


__all__ = [
    "FLAG_FIELDS",
    "GRADE_PRESETS",
    "GradeSettings",
    "VECTOR_FIELDS",
    "get_preset",
    "load_settings",
    "settings_from_data",
]
