# path: aov_grade/pipeline.py
"""Frame and frame-sequence processing shared between the CLI and integrations."""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm import tqdm

from .io_utils import AOVGradeException, ProcessingContext, read_rgba, write_rgba
from .processor import PixelProcessor
from .settings import GradeSettings

LOGGER = logging.getLogger("aov_grade")
WORKER_LOGGER = LOGGER.getChild("worker")

PathLike = Union[str, os.PathLike]

_PRINTF_TOKEN = re.compile(r"%0?(\d*)d")
_HASH_TOKEN = re.compile(r"#+")
_RANGE_TOKEN = re.compile(r"^\s*(-?\d+)\s*(?:-\s*(-?\d+)\s*(?:x\s*(\d+))?)?\s*$")


def _tqdm_progress(
    iterable: Iterable[object], *, total: Optional[int], description: Optional[str]
) -> Iterable[object]:
    """Wrap iterable with a tqdm bar."""
    return tqdm(iterable, total=total, desc=description, unit="frame")


_PROGRESS_WRAPPER = _tqdm_progress


def _wrap_with_progress(
    iterable: Iterable[object],
    *,
    total: Optional[int],
    description: str,
    enabled: bool,
) -> Iterable[object]:
    """Return iterable wrapped with the progress helper when enabled."""
    if not enabled:
        return iterable
    return _PROGRESS_WRAPPER(iterable, total=total, description=description)


# --- arrays ------------------------------------------------------------------


def grade_images(
    beauty: np.ndarray,
    aov: np.ndarray,
    processor: PixelProcessor,
    mask: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Grade whole ``(H, W, 4)`` frames; dimensions must agree."""
    if beauty.shape != aov.shape:
        raise AOVGradeException(f"AOV dimensions {aov.shape[:2]} differ from beauty {beauty.shape[:2]}")
    if mask is not None and mask.shape[:2] != beauty.shape[:2]:
        raise AOVGradeException(f"Mask dimensions {mask.shape[:2]} differ from beauty {beauty.shape[:2]}")
    return processor.process_arrays(beauty, aov, mask)


# --- single frame ------------------------------------------------------------


def process_frame(
    beauty_path: PathLike,
    aov_path: PathLike,
    destination: PathLike,
    settings: GradeSettings,
    *,
    mask_path: Optional[PathLike] = None,
    dtype: Union[np.dtype, type] = np.float32,
    compression: str = "deflate",
    overwrite: bool = False,
    dry_run: bool = False,
) -> bool:
    """Grade one frame from disk; returns ``True`` when an output was written."""
    destination = Path(destination)
    if destination.exists() and not destination.is_file():
        raise ValueError(f"Destination path exists but is not a file: {destination}")
    if destination.exists() and not overwrite and not dry_run:
        LOGGER.warning("Skipping %s (exists, use overwrite to replace)", destination)
        return False

    WORKER_LOGGER.info("Grading %s + %s -> %s", beauty_path, aov_path, destination)
    beauty = read_rgba(beauty_path)
    aov = read_rgba(aov_path)
    mask = None
    if mask_path is not None:
        if settings.use_mask:
            mask = read_rgba(mask_path).array
        else:
            LOGGER.debug("Mask %s supplied but use_mask is off; ignoring it", mask_path)

    result = grade_images(beauty.array, aov.array, PixelProcessor(settings), mask)

    if dry_run:
        WORKER_LOGGER.info("Dry run enabled, skipping save for %s", destination)
        return False

    with ProcessingContext(destination) as staged_path:
        write_rgba(staged_path, result, dtype, compression, icc_profile=beauty.icc_profile)
    return True


# --- sequences ---------------------------------------------------------------


def parse_frame_range(text: str) -> List[int]:
    """Parse ``"1001"``, ``"1001-1010"`` or ``"1001-1010x2"``; comma lists allowed."""
    frames: List[int] = []
    for chunk in text.split(","):
        if not chunk.strip():
            continue
        match = _RANGE_TOKEN.match(chunk)
        if match is None:
            raise ValueError(f"Invalid frame range: {chunk!r}")
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) is not None else start
        step = int(match.group(3)) if match.group(3) is not None else 1
        if step <= 0:
            raise ValueError(f"Frame step must be positive: {chunk!r}")
        if end < start:
            raise ValueError(f"Frame range end precedes start: {chunk!r}")
        frames.extend(range(start, end + 1, step))
    if not frames:
        raise ValueError("Frame range is empty")
    return frames


def expand_frame_pattern(pattern: str, frame: int) -> str:
    """Substitute *frame* into ``%04d`` or ``####`` style sequence patterns."""
    if _PRINTF_TOKEN.search(pattern):
        return _PRINTF_TOKEN.sub(lambda m: f"{frame:0{m.group(1) or 1}d}", pattern, count=1)
    if _HASH_TOKEN.search(pattern):
        return _HASH_TOKEN.sub(lambda m: f"{frame:0{len(m.group(0))}d}", pattern, count=1)
    return pattern


def _sequence_jobs(
    beauty_pattern: str,
    aov_pattern: str,
    output_pattern: str,
    frames: Sequence[int],
    mask_pattern: Optional[str],
) -> List[Tuple[int, str, str, str, Optional[str]]]:
    if expand_frame_pattern(output_pattern, 0) == output_pattern and len(frames) > 1:
        raise ValueError(f"Output pattern {output_pattern!r} has no frame token")
    return [
        (
            frame,
            expand_frame_pattern(beauty_pattern, frame),
            expand_frame_pattern(aov_pattern, frame),
            expand_frame_pattern(output_pattern, frame),
            expand_frame_pattern(mask_pattern, frame) if mask_pattern else None,
        )
        for frame in frames
    ]


def _frame_worker(
    job: Tuple[int, str, str, str, Optional[str]],
    settings: GradeSettings,
    dtype: np.dtype,
    compression: str,
    overwrite: bool,
    dry_run: bool,
) -> Tuple[int, bool, Optional[str]]:
    """Process one frame; returns (frame, written, error-message-or-None)."""
    frame, beauty, aov, output, mask = job
    try:
        written = process_frame(
            beauty,
            aov,
            output,
            settings,
            mask_path=mask,
            dtype=dtype,
            compression=compression,
            overwrite=overwrite,
            dry_run=dry_run,
        )
        return frame, written, None
    except Exception as exc:  # keep other frames running
        return frame, False, f"frame {frame}: {exc}"


def process_sequence(
    beauty_pattern: str,
    aov_pattern: str,
    output_pattern: str,
    frames: Sequence[int],
    settings: GradeSettings,
    *,
    mask_pattern: Optional[str] = None,
    dtype: Union[np.dtype, type] = np.float32,
    compression: str = "deflate",
    method: Literal["auto", "serial", "multiprocessing"] = "auto",
    workers: Optional[int] = None,
    overwrite: bool = False,
    dry_run: bool = False,
    show_progress: bool = True,
) -> Tuple[int, List[str]]:
    """Grade a frame range; returns ``(frames_written, failure_messages)``.

    One frame is one task. ``"auto"`` uses a process pool from 8 frames up
    and falls back to serial processing if the pool cannot be used; frames
    the pool already finished are kept and only the rest are rerun.
    """
    jobs = _sequence_jobs(beauty_pattern, aov_pattern, output_pattern, frames, mask_pattern)
    np_dtype = np.dtype(dtype)
    if method not in ("auto", "serial", "multiprocessing"):
        raise ValueError(f"Unknown method {method!r}; expected auto, serial or multiprocessing")
    if method == "auto":
        method = "multiprocessing" if len(jobs) >= 8 else "serial"

    results: Dict[int, Tuple[int, bool, Optional[str]]] = {}
    if method == "multiprocessing":
        max_workers = workers or max(1, (os.cpu_count() or 1))
        try:
            with ProcessPoolExecutor(max_workers=max_workers) as ex:
                futs = {
                    ex.submit(_frame_worker, job, settings, np_dtype, compression, overwrite, dry_run): idx
                    for idx, job in enumerate(jobs)
                }
                completed = _wrap_with_progress(
                    as_completed(futs), total=len(futs), description="Grading frames", enabled=show_progress
                )
                for fut in completed:
                    results[futs[fut]] = fut.result()  # type: ignore[index,attr-defined]
        except (OSError, RuntimeError) as exc:
            LOGGER.warning(
                "Multiprocessing failed (%s); finishing %d frame(s) serially.", exc, len(jobs) - len(results)
            )
            method = "serial"

    if method == "serial":
        pending = [(idx, job) for idx, job in enumerate(jobs) if idx not in results]
        for idx, job in _wrap_with_progress(
            pending, total=len(pending), description="Grading frames", enabled=show_progress
        ):  # type: ignore[misc]
            results[idx] = _frame_worker(job, settings, np_dtype, compression, overwrite, dry_run)

    ordered = [results[idx] for idx in sorted(results)]
    failures = [err for _frame, _written, err in ordered if err]
    for err in failures:
        LOGGER.error("Failed: %s", err)
    written = sum(1 for _frame, ok, _err in ordered if ok)
    return written, failures


__all__ = [
    "_PROGRESS_WRAPPER",
    "_wrap_with_progress",
    "expand_frame_pattern",
    "grade_images",
    "parse_frame_range",
    "process_frame",
    "process_sequence",
]
