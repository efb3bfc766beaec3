# path: aov_grade/io_utils.py
"""Image I/O for beauty/AOV/mask frames and atomic output staging."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import tifffile
from PIL import Image

LOGGER = logging.getLogger("aov_grade")

TIFF_SUFFIXES = {".tif", ".tiff"}


class AOVGradeException(RuntimeError):
    """Raised when inputs cannot be combined into a graded composite."""


@dataclasses.dataclass(frozen=True)
class RGBAImage:
    """Float RGBA pixels plus what is needed to write them back faithfully."""

    array: np.ndarray
    dtype: np.dtype
    base_channels: int
    has_alpha: bool
    icc_profile: Optional[bytes] = None

    @property
    def shape(self) -> tuple:
        return self.array.shape[:2]


def _tiff_page_array(page: tifffile.TiffPage) -> np.ndarray:
    """Decode a TIFF page as (H, W[, C]); separate planes come back (C, H, W)."""
    arr = page.asarray()
    if page.planarconfig == tifffile.PLANARCONFIG.SEPARATE and page.samplesperpixel > 1:
        return np.moveaxis(arr, -3, -1)
    return arr


def _to_rgba_float(raw: np.ndarray) -> tuple[np.ndarray, int, bool]:
    """Normalise integer data to [0, 1]; float data is left scene-linear."""
    if raw.ndim == 2:
        raw = raw[:, :, None]
    if raw.ndim != 3 or raw.shape[2] not in (1, 2, 3, 4):
        raise AOVGradeException(f"Unsupported channel layout {raw.shape!r}")

    if np.issubdtype(raw.dtype, np.integer):
        info = np.iinfo(raw.dtype)
        scale = float(info.max - info.min)
        working = (raw.astype(np.float32) - float(info.min)) / scale
    elif np.issubdtype(raw.dtype, np.bool_):
        working = raw.astype(np.float32)
    else:
        working = raw.astype(np.float32, copy=False)

    channels = working.shape[2]
    if channels in (1, 2):
        color = np.repeat(working[:, :, :1], 3, axis=2)
        base_channels = 1
    else:
        color = working[:, :, :3]
        base_channels = 3
    has_alpha = channels in (2, 4)
    if has_alpha:
        alpha = working[:, :, -1:]
    else:
        alpha = np.ones(working.shape[:2] + (1,), dtype=np.float32)
    rgba = np.concatenate([color, alpha], axis=2)
    return np.ascontiguousarray(rgba, dtype=np.float32), base_channels, has_alpha


def read_rgba(image_or_path: Union[Image.Image, str, os.PathLike]) -> RGBAImage:
    """Load an image as float32 ``(H, W, 4)`` premultiplied RGBA.

    TIFFs go through tifffile so float and 16-bit data survive; everything
    else is decoded by Pillow. Missing alpha is filled with 1.0.
    """
    icc: Optional[bytes] = None
    if isinstance(image_or_path, Image.Image):
        raw = _pillow_array(image_or_path)
        icc = image_or_path.info.get("icc_profile")
    else:
        path = Path(os.fspath(image_or_path))
        if path.suffix.lower() in TIFF_SUFFIXES:
            with tifffile.TiffFile(path) as tif:
                page = tif.pages[0]
                raw = _tiff_page_array(page)
                icc_tag = page.tags.get(34675)
                if icc_tag is not None:
                    icc = bytes(icc_tag.value)
        else:
            with Image.open(path) as image:
                raw = _pillow_array(image)
                icc = image.info.get("icc_profile")

    rgba, base_channels, has_alpha = _to_rgba_float(raw)
    if LOGGER.isEnabledFor(logging.DEBUG):
        LOGGER.debug("Read %s %s (alpha=%s)", rgba.shape, raw.dtype, has_alpha)
    return RGBAImage(
        array=rgba,
        dtype=np.dtype(raw.dtype),
        base_channels=base_channels,
        has_alpha=has_alpha,
        icc_profile=icc,
    )


def _pillow_array(image: Image.Image) -> np.ndarray:
    supported_modes = {"RGB", "RGBA", "I", "I;16", "I;16L", "I;16B", "F", "L", "LA"}
    if image.mode not in supported_modes:
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    return np.array(image)


def float_to_dtype_array(arr: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Convert float RGBA to *dtype*; integer targets are clipped to [0, 1]."""
    np_dtype = np.dtype(dtype)
    if np.issubdtype(np_dtype, np.integer):
        info = np.iinfo(np_dtype)
        scale = float(info.max - info.min)
        clipped = np.clip(np.nan_to_num(arr, nan=0.0), 0.0, 1.0)
        return np.ascontiguousarray(np.round(clipped * scale + info.min).astype(np_dtype))
    return np.ascontiguousarray(arr, dtype=np_dtype)


def compression_for_tifffile(compression: str) -> Optional[str]:
    """Map compression identifier to tifffile-compatible format name."""
    comp = compression.lower()
    mapping = {
        "tiff_lzw": "lzw",
        "lzw": "lzw",
        "tiff_adobe_deflate": "deflate",
        "adobe_deflate": "deflate",
        "deflate": "deflate",
        "zip": "deflate",
        "tiff_none": None,
        "none": None,
        "raw": None,
    }
    return mapping.get(comp, comp)


def write_rgba(
    destination: Union[str, os.PathLike],
    arr: np.ndarray,
    dtype: Union[np.dtype, type] = np.float32,
    compression: str = "deflate",
    icc_profile: Optional[bytes] = None,
) -> None:
    """Write ``(H, W, 4)`` float RGBA.

    TIFF destinations keep float and 16-bit data (tifffile); other formats
    are written as 8-bit through Pillow.
    """
    destination_fs = os.fspath(destination)
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError(f"Expected (H, W, 4) RGBA array; got shape {arr.shape!r}")
    np_dtype = np.dtype(dtype)
    if Path(destination_fs).suffix.lower() in TIFF_SUFFIXES:
        data = float_to_dtype_array(arr, np_dtype)
        tiff_kwargs: Dict[str, Any] = {
            "photometric": "rgb",
            "extrasamples": (1,),  # associated (premultiplied) alpha
            "compression": compression_for_tifffile(compression),
            "metadata": None,
        }
        if icc_profile:
            tiff_kwargs["extratags"] = [(34675, "B", len(icc_profile), icc_profile, False)]
        tifffile.imwrite(destination_fs, data, **tiff_kwargs)
        return

    if np_dtype != np.uint8:
        LOGGER.warning("Non-TIFF output %s is written as 8-bit; use .tif to keep %s", destination_fs, np_dtype)
    data = float_to_dtype_array(arr, np.dtype(np.uint8))
    image = Image.fromarray(data)
    save_kwargs: Dict[str, Any] = {}
    if icc_profile:
        save_kwargs["icc_profile"] = icc_profile
    image.save(destination_fs, **save_kwargs)


@dataclasses.dataclass
class ProcessingContext:
    """Context manager staging output beside the destination.

    The staged name ends in the destination suffix (``.out.tmp-<hex>.tif``)
    because :func:`write_rgba` picks tifffile or Pillow from the suffix of the
    path it is given. The file is renamed into place on success and removed
    on failure.
    """
    destination: Path
    suffix: str = ".tmp"

    def __post_init__(self) -> None:
        self._staged_path: Optional[Path] = None

    def _temp_path(self) -> Path:
        unique = uuid.uuid4().hex
        name = f".{self.destination.stem}{self.suffix}-{unique}{self.destination.suffix}"
        return self.destination.parent / name

    def __enter__(self) -> Path:
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self._staged_path = self._temp_path()
        return self._staged_path

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._staged_path is None:
            return
        staged = self._staged_path
        self._staged_path = None
        if exc_type is None:
            try:
                os.replace(staged, self.destination)
            except Exception:
                with contextlib.suppress(Exception):
                    staged.unlink()
                raise
        else:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()


__all__ = [
    "AOVGradeException",
    "ProcessingContext",
    "RGBAImage",
    "compression_for_tifffile",
    "float_to_dtype_array",
    "read_rgba",
    "write_rgba",
]
