# path: aov_grade/__init__.py
"""Grade an AOV to Grade-node rules and merge it back into the beauty pass.

Modules:
- gamma / linear_stage / grade: the grading math.
- compositor: premultiplication, mask/mix blending, beauty recombination.
- processor: settings snapshot + compiled stage, per pixel or per array.
- settings: grade knobs, presets, JSON/YAML loading.
- io_utils / pipeline / cli: frame I/O, sequences, Typer CLI.

Top-level exports are lazily loaded to minimize import time while remaining
visible to type checkers and IDEs.
"""
from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any
import logging

# Attach a NullHandler by default; applications may configure logging as needed.
LOGGER = logging.getLogger("aov_grade")
LOGGER.addHandler(logging.NullHandler())

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("aov_grade")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    # settings
    "GRADE_PRESETS",
    "GradeSettings",
    "load_settings",
    # math
    "LinearStage",
    "apply_grade",
    "compile_linear_stage",
    "forward_gamma",
    "reverse_gamma",
    # compositing
    "composite",
    "composite_pixel",
    "PixelProcessor",
    "grade_pixels",
    # io / pipeline
    "AOVGradeException",
    "ProcessingContext",
    "RGBAImage",
    "read_rgba",
    "write_rgba",
    "process_frame",
    "process_sequence",
    # cli
    "app",
    "main",
    # meta
    "__version__",
]

# Map export name → (module path, attribute name)
_EXPORTS = {
    "GRADE_PRESETS": ("aov_grade.settings", "GRADE_PRESETS"),
    "GradeSettings": ("aov_grade.settings", "GradeSettings"),
    "load_settings": ("aov_grade.settings", "load_settings"),
    "LinearStage": ("aov_grade.linear_stage", "LinearStage"),
    "compile_linear_stage": ("aov_grade.linear_stage", "compile_linear_stage"),
    "apply_grade": ("aov_grade.grade", "apply_grade"),
    "forward_gamma": ("aov_grade.gamma", "forward_gamma"),
    "reverse_gamma": ("aov_grade.gamma", "reverse_gamma"),
    "composite": ("aov_grade.compositor", "composite"),
    "composite_pixel": ("aov_grade.compositor", "composite_pixel"),
    "PixelProcessor": ("aov_grade.processor", "PixelProcessor"),
    "grade_pixels": ("aov_grade.processor", "grade_pixels"),
    "AOVGradeException": ("aov_grade.io_utils", "AOVGradeException"),
    "ProcessingContext": ("aov_grade.io_utils", "ProcessingContext"),
    "RGBAImage": ("aov_grade.io_utils", "RGBAImage"),
    "read_rgba": ("aov_grade.io_utils", "read_rgba"),
    "write_rgba": ("aov_grade.io_utils", "write_rgba"),
    "process_frame": ("aov_grade.pipeline", "process_frame"),
    "process_sequence": ("aov_grade.pipeline", "process_sequence"),
    "app": ("aov_grade.cli", "app"),
    "main": ("aov_grade.cli", "main"),
    "__version__": (__name__, "__version__"),
}


def __getattr__(name: str) -> Any:
    """Lazy attribute loader for top-level exports."""
    try:
        module_path, attr = _EXPORTS[name]
    except KeyError as exc:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}") from exc

    module = import_module(module_path)
    value = getattr(module, attr)
    globals()[name] = value  # cache
    return value


def __dir__() -> list[str]:
    """Offer a helpful attribute list in REPL/IDEs."""
    return sorted(set(globals().keys()) | set(__all__))


# Static imports for type checkers only; no runtime side effects.
if TYPE_CHECKING:  # pragma: no cover
    from .cli import app, main  # noqa: F401
    from .compositor import composite, composite_pixel  # noqa: F401
    from .gamma import forward_gamma, reverse_gamma  # noqa: F401
    from .grade import apply_grade  # noqa: F401
    from .io_utils import (  # noqa: F401
        AOVGradeException,
        ProcessingContext,
        RGBAImage,
        read_rgba,
        write_rgba,
    )
    from .linear_stage import LinearStage, compile_linear_stage  # noqa: F401
    from .pipeline import process_frame, process_sequence  # noqa: F401
    from .processor import PixelProcessor, grade_pixels  # noqa: F401
    from .settings import GRADE_PRESETS, GradeSettings, load_settings  # noqa: F401
