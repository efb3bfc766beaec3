# path: aov_grade/gamma.py
"""Piecewise forward/reverse gamma matching the Grade node behaviour.

Both functions work per channel on (..., 3) arrays. ``gamma`` and
``inv_gamma`` broadcast against the last axis. Below 0 the curve is left
alone; between 0 and 1 it is a power curve; above 1 a linear tail keeps it
continuous, which makes the forward/reverse pair an exact inverse for any
gamma in (0, inf).
"""

from __future__ import annotations

import numpy as np

# Stand-in for "infinite white" when gamma <= 0; keeps downstream math finite.
HUGE_WHITE = 1e30


def _as_float_array(x: np.ndarray) -> np.ndarray:
    arr = np.asarray(x)
    if not np.issubdtype(arr.dtype, np.floating):
        arr = arr.astype(np.float64)
    return arr


def forward_gamma(x: np.ndarray, gamma: np.ndarray, inv_gamma: np.ndarray) -> np.ndarray:
    """Apply the forward gamma curve (``x ** (1/gamma)`` with a linear tail)."""
    x = _as_float_array(x)
    gamma = np.asarray(gamma, dtype=x.dtype)
    inv_gamma = np.asarray(inv_gamma, dtype=x.dtype)

    with np.errstate(invalid="ignore", divide="ignore", over="ignore", under="ignore"):
        # The power branch only sees [0, 1); clipping keeps pow off negatives.
        curve = np.power(np.clip(x, 0.0, 1.0), inv_gamma)
        tail = 1.0 + (x - 1.0) * inv_gamma
        regular = np.where(x < 0.0, x, np.where(x < 1.0, curve, tail))
        degenerate = np.where(x < 0.0, 0.0, np.where(x > 1.0, HUGE_WHITE, x))

    out = np.where(gamma <= 0.0, degenerate, np.where(gamma == 1.0, x, regular))
    return out.astype(x.dtype, copy=False)


def reverse_gamma(x: np.ndarray, gamma: np.ndarray) -> np.ndarray:
    """Undo :func:`forward_gamma` (``x ** gamma`` with a linear tail)."""
    x = _as_float_array(x)
    gamma = np.asarray(gamma, dtype=x.dtype)

    with np.errstate(invalid="ignore", divide="ignore", over="ignore", under="ignore"):
        curve = np.power(np.clip(x, 0.0, 1.0), gamma)
        tail = 1.0 + (x - 1.0) * gamma
        regular = np.where(x <= 0.0, x, np.where(x < 1.0, curve, tail))
        degenerate = np.where(x > 0.0, 1.0, 0.0)

    out = np.where(gamma <= 0.0, degenerate, np.where(gamma == 1.0, x, regular))
    return out.astype(x.dtype, copy=False)


__all__ = ["HUGE_WHITE", "forward_gamma", "reverse_gamma"]
