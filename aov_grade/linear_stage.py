# path: aov_grade/linear_stage.py
"""Compile grade settings into the per-channel linear stage coefficients."""

from __future__ import annotations

import dataclasses
import functools
import logging

import numpy as np

from .settings import GradeSettings

LOGGER = logging.getLogger("aov_grade")

# Smallest |whitepoint - blackpoint| used as a divisor.
MIN_RANGE = 1e-6

_CHANNELS = ("R", "G", "B")


def _frozen(values: np.ndarray, dtype: np.dtype = np.dtype(np.float64)) -> np.ndarray:
    arr = np.ascontiguousarray(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


@dataclasses.dataclass(frozen=True, eq=False)
class LinearStage:
    """Slope, offset and gamma terms for the RGB channels.

    ``slope * x + offset`` maps blackpoint to lift and whitepoint to gain
    (scaled by multiply, shifted by offset). Arrays are read-only; a stage is
    only meaningful for the settings it was compiled from.
    """

    slope: np.ndarray
    offset: np.ndarray
    gamma: np.ndarray
    inv_gamma: np.ndarray

    def as_dtype(self, dtype: np.dtype) -> "LinearStage":
        """Return the coefficients cast to *dtype* (used for float32 images)."""
        np_dtype = np.dtype(dtype)
        if np_dtype == self.slope.dtype:
            return self
        return LinearStage(
            slope=_frozen(self.slope, np_dtype),
            offset=_frozen(self.offset, np_dtype),
            gamma=_frozen(self.gamma, np_dtype),
            inv_gamma=_frozen(self.inv_gamma, np_dtype),
        )


def _safe_range(whitepoint: np.ndarray, blackpoint: np.ndarray) -> np.ndarray:
    span = whitepoint - blackpoint
    degenerate = np.abs(span) < MIN_RANGE
    if np.any(degenerate):
        names = ", ".join(ch for ch, bad in zip(_CHANNELS, degenerate) if bad)
        LOGGER.warning(
            "whitepoint and blackpoint (nearly) coincide on %s; clamping range to %g",
            names,
            MIN_RANGE,
        )
        span = np.where(degenerate, np.where(span < 0.0, -MIN_RANGE, MIN_RANGE), span)
    return span


@functools.lru_cache(maxsize=64)
def compile_linear_stage(settings: GradeSettings) -> LinearStage:
    """Derive ``A``, ``B`` and ``1/gamma`` from *settings* (RGB only).

    gamma == 0 yields an infinite inverse; the gamma curve never reads it in
    that branch.
    """
    blackpoint = np.asarray(settings.blackpoint[:3], dtype=np.float64)
    whitepoint = np.asarray(settings.whitepoint[:3], dtype=np.float64)
    lift = np.asarray(settings.lift[:3], dtype=np.float64)
    gain = np.asarray(settings.gain[:3], dtype=np.float64)
    multiply = np.asarray(settings.multiply[:3], dtype=np.float64)
    offset = np.asarray(settings.offset[:3], dtype=np.float64)
    gamma = np.asarray(settings.gamma[:3], dtype=np.float64)

    slope = multiply * (gain - lift) / _safe_range(whitepoint, blackpoint)
    intercept = offset + lift - slope * blackpoint
    with np.errstate(divide="ignore"):
        inv_gamma = 1.0 / gamma

    if LOGGER.isEnabledFor(logging.DEBUG):
        LOGGER.debug("Compiled linear stage A=%s B=%s invGamma=%s", slope, intercept, inv_gamma)
    return LinearStage(
        slope=_frozen(slope),
        offset=_frozen(intercept),
        gamma=_frozen(gamma),
        inv_gamma=_frozen(inv_gamma),
    )


__all__ = ["LinearStage", "MIN_RANGE", "compile_linear_stage"]
