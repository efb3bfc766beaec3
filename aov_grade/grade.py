# path: aov_grade/grade.py
"""Forward and reverse grading of RGB triples.

All functions accept (..., 3) float arrays and return arrays of the same
shape. The clamp policy differs between directions; see
:func:`clamp_forward` and :func:`clamp_reverse`.
"""

from __future__ import annotations

import numpy as np

from .gamma import forward_gamma, reverse_gamma
from .linear_stage import LinearStage

# |A| at or below this is not inverted; the reciprocal saturates to 1.0.
SLOPE_EPSILON = 1e-6


def clamp_forward(lin: np.ndarray, *, black_clamp: bool, white_clamp: bool) -> np.ndarray:
    """Clamp the linear stage output on the forward path.

    The flags are coupled: ``white_clamp`` alone floors at 0 and
    ``black_clamp`` alone caps at 1.
    """
    if not (white_clamp or black_clamp):
        return lin
    if not white_clamp:
        return np.minimum(lin, 1.0)
    if not black_clamp:
        return np.maximum(lin, 0.0)
    return np.clip(lin, 0.0, 1.0)


def clamp_reverse(rev: np.ndarray, *, black_clamp: bool, white_clamp: bool) -> np.ndarray:
    """Clamp the inverted values: black floors at 0, white caps at 1."""
    if black_clamp:
        rev = np.maximum(rev, 0.0)
    if white_clamp:
        rev = np.minimum(rev, 1.0)
    return rev


def safe_reciprocal(slope: np.ndarray) -> np.ndarray:
    """``1 / slope`` per channel, or 1.0 where ``|slope| <= 1e-6``."""
    slope = np.asarray(slope)
    usable = np.abs(slope) > SLOPE_EPSILON
    with np.errstate(divide="ignore"):
        return np.where(usable, 1.0 / np.where(usable, slope, 1.0), 1.0).astype(slope.dtype, copy=False)


def grade_forward(
    rgb: np.ndarray, stage: LinearStage, *, black_clamp: bool = False, white_clamp: bool = False
) -> np.ndarray:
    lin = rgb * stage.slope + stage.offset
    lin = clamp_forward(lin, black_clamp=black_clamp, white_clamp=white_clamp)
    return forward_gamma(lin, stage.gamma, stage.inv_gamma)


def grade_reverse(
    rgb: np.ndarray, stage: LinearStage, *, black_clamp: bool = False, white_clamp: bool = False
) -> np.ndarray:
    rev = reverse_gamma(rgb, stage.gamma)
    inv_slope = safe_reciprocal(stage.slope)
    rev = rev * inv_slope - stage.offset * inv_slope
    return clamp_reverse(rev, black_clamp=black_clamp, white_clamp=white_clamp)


def apply_grade(
    rgb: np.ndarray,
    stage: LinearStage,
    *,
    reverse: bool = False,
    black_clamp: bool = False,
    white_clamp: bool = False,
) -> np.ndarray:
    """Grade (..., 3) RGB values forward, or invert the grade when *reverse*."""
    rgb = np.asarray(rgb)
    if not np.issubdtype(rgb.dtype, np.floating):
        rgb = rgb.astype(np.float64)
    if rgb.shape[-1:] != (3,):
        raise ValueError(f"Expected (..., 3) RGB array; got shape {rgb.shape!r}")
    stage = stage.as_dtype(rgb.dtype)
    if reverse:
        out = grade_reverse(rgb, stage, black_clamp=black_clamp, white_clamp=white_clamp)
    else:
        out = grade_forward(rgb, stage, black_clamp=black_clamp, white_clamp=white_clamp)
    return out.astype(rgb.dtype, copy=False)


__all__ = [
    "SLOPE_EPSILON",
    "apply_grade",
    "clamp_forward",
    "clamp_reverse",
    "grade_forward",
    "grade_reverse",
    "safe_reciprocal",
]
