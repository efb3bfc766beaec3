# path: aov_grade/compositor.py
"""Blend a graded AOV and swap it back into the beauty pass.

Pixels are (..., 4) RGBA float arrays. The beauty pass is premultiplied by
its own alpha; the AOV is premultiplied by the beauty alpha. The output alpha
is always the beauty alpha.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .grade import apply_grade
from .linear_stage import LinearStage
from .settings import GradeSettings

# Divisor floor used when unpremultiplying by the beauty alpha.
ALPHA_EPSILON = 1e-8

MaskLike = Union[float, np.ndarray, None]


def _as_pixels(arr: Union[np.ndarray, Sequence[float]], dtype: Optional[np.dtype] = None) -> np.ndarray:
    out = np.asarray(arr, dtype=dtype)
    if not np.issubdtype(out.dtype, np.floating):
        out = out.astype(np.float64)
    if out.shape[-1:] != (4,):
        raise ValueError(f"Expected (..., 4) RGBA array; got shape {out.shape!r}")
    return out


def blend_factor(mask_alpha: Union[float, np.ndarray], mix: float) -> np.ndarray:
    """``clamp(mask_alpha * mix, 0, 1)``."""
    return np.clip(np.asarray(mask_alpha) * mix, 0.0, 1.0)


def unpremultiply(pixels: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Divide RGBA by ``max(alpha, 1e-8)``."""
    return pixels / np.maximum(alpha, ALPHA_EPSILON)[..., None]


def premultiply(pixels: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    return pixels * alpha[..., None]


def lerp_pixels(original: np.ndarray, graded: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Interpolate RGBA; where ``t >= 1`` the graded value is taken as is."""
    t = np.asarray(t, dtype=original.dtype)[..., None]
    mixed = original + (graded - original) * t
    return np.where(t >= 1.0, graded, mixed)


def recombine(beauty: np.ndarray, aov: np.ndarray, blended: np.ndarray, *, viewaov: bool) -> np.ndarray:
    """Replace the AOV contribution in *beauty* with *blended*.

    With *viewaov* the blended AOV is returned on its own. Alpha is forced to
    the beauty alpha either way.
    """
    if viewaov:
        out = np.array(blended, dtype=beauty.dtype, copy=True)
    else:
        # beauty - aov + blended, ordered so an unchanged AOV returns beauty exactly
        out = beauty + (blended - aov)
    out[..., 3] = beauty[..., 3]
    return out


def _resolve_mask(mask_alpha: MaskLike, shape: Tuple[int, ...], dtype: np.dtype, use_mask: bool) -> np.ndarray:
    if not use_mask or mask_alpha is None:
        return np.ones(shape, dtype=dtype)
    return np.broadcast_to(np.asarray(mask_alpha, dtype=dtype), shape)


def grade_aov(aov: np.ndarray, beauty_alpha: np.ndarray, stage: LinearStage, settings: GradeSettings) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(original_pm, graded_pm)`` for the AOV, both premultiplied."""
    grade_kwargs = dict(
        reverse=settings.reverse,
        black_clamp=settings.black_clamp,
        white_clamp=settings.white_clamp,
    )
    if settings.unpremult:
        working = unpremultiply(aov, beauty_alpha)
        graded_rgb = apply_grade(working[..., :3], stage, **grade_kwargs)
        graded = np.concatenate([graded_rgb, working[..., 3:]], axis=-1)
        return premultiply(working, beauty_alpha), premultiply(graded, beauty_alpha)

    # Graded while still premultiplied; intentionally no unpremult here.
    graded_rgb = apply_grade(aov[..., :3], stage, **grade_kwargs)
    return aov, np.concatenate([graded_rgb, aov[..., 3:]], axis=-1)


def composite(
    beauty: np.ndarray,
    aov: np.ndarray,
    stage: LinearStage,
    settings: GradeSettings,
    mask_alpha: MaskLike = None,
) -> np.ndarray:
    """Grade *aov*, blend by mask and mix, and merge it back into *beauty*.

    *mask_alpha* is a scalar or an alpha plane matching the pixel shape; it is
    ignored unless ``settings.use_mask`` is set, and treated as 1.0 when absent.
    """
    beauty = _as_pixels(beauty)
    aov = _as_pixels(aov, dtype=beauty.dtype)
    if beauty.shape != aov.shape:
        raise ValueError(f"beauty and aov shapes differ: {beauty.shape!r} vs {aov.shape!r}")

    alpha = beauty[..., 3]
    mask = _resolve_mask(mask_alpha, alpha.shape, beauty.dtype, settings.use_mask)
    skip = (settings.mix <= 0.0) | (mask <= 0.0)

    if np.all(skip):
        blended = aov
    else:
        t = blend_factor(mask, settings.mix)
        with np.errstate(invalid="ignore", over="ignore"):
            original_pm, graded_pm = grade_aov(aov, alpha, stage, settings)
            blended = lerp_pixels(original_pm, graded_pm, t)
        if np.any(skip):
            blended = np.where(skip[..., None], aov, blended)

    return recombine(beauty, aov, blended, viewaov=settings.viewaov)


def composite_pixel(
    beauty: Sequence[float],
    aov: Sequence[float],
    stage: LinearStage,
    settings: GradeSettings,
    mask_alpha: Optional[float] = None,
) -> Tuple[float, float, float, float]:
    """Single-pixel form of :func:`composite`; returns a plain RGBA tuple."""
    out = composite(
        np.asarray(beauty, dtype=np.float64),
        np.asarray(aov, dtype=np.float64),
        stage,
        settings,
        mask_alpha,
    )
    return (float(out[0]), float(out[1]), float(out[2]), float(out[3]))


__all__ = [
    "ALPHA_EPSILON",
    "blend_factor",
    "composite",
    "composite_pixel",
    "grade_aov",
    "lerp_pixels",
    "premultiply",
    "recombine",
    "unpremultiply",
]
