"""
conftest.py - shared fixtures for the AOV grading tests
"""

from pathlib import Path

import numpy as np
import pytest

from aov_grade.linear_stage import compile_linear_stage
from aov_grade.settings import GradeSettings


@pytest.fixture(autouse=True)
def _fresh_stage_cache():
    """Compiled stages are cached per settings; start every test cold."""
    compile_linear_stage.cache_clear()
    yield
    compile_linear_stage.cache_clear()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def gain_two() -> GradeSettings:
    """gain=2 with every other knob at its default."""
    return GradeSettings(gain=(2.0, 2.0, 2.0, 2.0))


@pytest.fixture
def scenario_pixels():
    """Beauty and AOV pixels used throughout the recombination checks."""
    beauty = (0.5, 0.5, 0.5, 1.0)
    aov = (0.2, 0.2, 0.2, 1.0)
    return beauty, aov


@pytest.fixture
def random_frames(rng):
    """Premultiplied beauty/AOV frames sharing the beauty alpha."""
    alpha = rng.uniform(0.0, 1.0, size=(6, 5)).astype(np.float32)
    beauty_rgb = rng.uniform(0.0, 2.0, size=(6, 5, 3)).astype(np.float32) * alpha[..., None]
    aov_rgb = rng.uniform(0.0, 1.0, size=(6, 5, 3)).astype(np.float32) * alpha[..., None]
    beauty = np.concatenate([beauty_rgb, alpha[..., None]], axis=-1)
    aov = np.concatenate([aov_rgb, alpha[..., None]], axis=-1)
    return beauty, aov


def write_frame(path: Path, arr: np.ndarray) -> Path:
    from aov_grade.io_utils import write_rgba

    write_rgba(path, np.asarray(arr, dtype=np.float32))
    return path
