# path: aov_grade/processor.py
"""Thin orchestration tying the settings snapshot to the per-pixel math."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Iterable, Iterator, Optional, Sequence, Tuple

import numpy as np

from .compositor import composite, composite_pixel
from .linear_stage import LinearStage, compile_linear_stage
from .settings import GradeSettings

LOGGER = logging.getLogger("aov_grade")

Pixel = Tuple[float, float, float, float]


def _mask_alpha_plane(mask: Optional[np.ndarray], shape: Tuple[int, ...]) -> Optional[np.ndarray]:
    """Accept an alpha plane ``(...)`` or RGBA pixels ``(..., 4)``; return alpha."""
    if mask is None:
        return None
    arr = np.asarray(mask)
    if arr.shape == shape:
        return arr
    if arr.shape == shape + (4,):
        return arr[..., 3]
    raise ValueError(f"mask shape {arr.shape!r} does not match pixel shape {shape + (4,)!r}")


def _pixel_mask_alpha(mask: Optional[Sequence[float]]) -> Optional[float]:
    if mask is None:
        return None
    if np.ndim(mask) == 0:
        return float(mask)  # type: ignore[arg-type]
    return float(mask[3])


class PixelProcessor:
    """Holds a settings snapshot and its compiled linear stage.

    ``configure`` is the only mutation; it compiles the new stage before
    publishing it, so a pass that took a :meth:`snapshot` keeps a consistent
    ``(settings, stage)`` pair from start to finish.
    """

    def __init__(self, settings: Optional[GradeSettings] = None) -> None:
        self._lock = threading.Lock()
        self._settings = settings if settings is not None else GradeSettings()
        self._stage = compile_linear_stage(self._settings)

    @property
    def settings(self) -> GradeSettings:
        return self._settings

    @property
    def stage(self) -> LinearStage:
        return self._stage

    def configure(self, settings: GradeSettings) -> None:
        """Swap in new settings; the stage is compiled before it is visible."""
        stage = compile_linear_stage(settings)
        with self._lock:
            self._settings = settings
            self._stage = stage
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("Processor configured: %s", settings.to_dict())

    def snapshot(self) -> Tuple[GradeSettings, LinearStage]:
        with self._lock:
            return self._settings, self._stage

    # --- processing --------------------------------------------------------

    def process_pixel(
        self,
        beauty: Sequence[float],
        aov: Sequence[float],
        mask: Optional[Sequence[float]] = None,
    ) -> Pixel:
        """Process one pixel. *mask* is an RGBA pixel or a bare alpha value."""
        settings, stage = self.snapshot()
        return composite_pixel(beauty, aov, stage, settings, _pixel_mask_alpha(mask))

    def process_pixels(
        self,
        beauty: Iterable[Sequence[float]],
        aov: Iterable[Sequence[float]],
        mask: Optional[Iterable[Sequence[float]]] = None,
    ) -> Iterator[Pixel]:
        """Yield output pixels for paired streams of beauty/AOV (and mask) pixels.

        The snapshot is taken when this is called, so reconfiguring while the
        stream is consumed does not affect its pixels. Streams of unequal
        length raise ``ValueError`` when the shorter one runs out.
        """
        settings, stage = self.snapshot()
        return self._iter_pixels(settings, stage, beauty, aov, mask)

    @staticmethod
    def _iter_pixels(
        settings: GradeSettings,
        stage: LinearStage,
        beauty: Iterable[Sequence[float]],
        aov: Iterable[Sequence[float]],
        mask: Optional[Iterable[Sequence[float]]],
    ) -> Iterator[Pixel]:
        sentinel = object()
        mask_iter = iter(mask) if mask is not None else None
        for beauty_px, aov_px in itertools.zip_longest(beauty, aov, fillvalue=sentinel):
            if beauty_px is sentinel or aov_px is sentinel:
                raise ValueError("beauty and aov pixel streams have different lengths")
            mask_alpha = None
            if mask_iter is not None:
                mask_px = next(mask_iter, sentinel)
                if mask_px is sentinel:
                    raise ValueError("mask pixel stream is shorter than the beauty stream")
                mask_alpha = _pixel_mask_alpha(mask_px)  # type: ignore[arg-type]
            yield composite_pixel(beauty_px, aov_px, stage, settings, mask_alpha)  # type: ignore[arg-type]

    def process_arrays(
        self,
        beauty: np.ndarray,
        aov: np.ndarray,
        mask: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Process (..., 4) arrays; *mask* may be RGBA pixels or an alpha plane."""
        settings, stage = self.snapshot()
        beauty = np.asarray(beauty)
        mask_alpha = _mask_alpha_plane(mask, beauty.shape[:-1]) if settings.use_mask else None
        return composite(beauty, aov, stage, settings, mask_alpha)


def grade_pixels(
    beauty: np.ndarray,
    aov: np.ndarray,
    settings: Optional[GradeSettings] = None,
    mask: Optional[np.ndarray] = None,
) -> np.ndarray:
    """One-shot convenience wrapper around :meth:`PixelProcessor.process_arrays`."""
    return PixelProcessor(settings).process_arrays(beauty, aov, mask)


__all__ = ["PixelProcessor", "grade_pixels"]
