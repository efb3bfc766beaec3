from __future__ import annotations

import logging
from concurrent.futures import Future
from concurrent.futures.process import BrokenProcessPool

import numpy as np
import pytest

from aov_grade import pipeline
from aov_grade.io_utils import AOVGradeException, read_rgba
from aov_grade.pipeline import (
    expand_frame_pattern,
    grade_images,
    parse_frame_range,
    process_frame,
    process_sequence,
)
from aov_grade.processor import PixelProcessor
from aov_grade.settings import GradeSettings

from .conftest import write_frame
from .documentation import documents


def _flat(value, alpha=1.0, shape=(4, 5)):
    arr = np.full(shape + (4,), value, dtype=np.float32)
    arr[..., 3] = alpha
    return arr


@pytest.fixture
def frame_files(tmp_path):
    beauty = write_frame(tmp_path / "beauty.tif", _flat(0.5))
    aov = write_frame(tmp_path / "aov.tif", _flat(0.2))
    return beauty, aov


@documents("process_frame reads beauty and AOV, grades and writes the merged frame")
def test_process_frame_writes_graded_frame(tmp_path, frame_files, gain_two):
    beauty, aov = frame_files
    out = tmp_path / "out" / "graded.tif"

    assert process_frame(beauty, aov, out, gain_two) is True

    result = read_rgba(out).array
    np.testing.assert_allclose(result[..., :3], 0.7, rtol=1e-6)
    np.testing.assert_array_equal(result[..., 3], 1.0)
    assert sorted(p.name for p in out.parent.iterdir()) == ["graded.tif"]


def test_process_frame_uses_mask_only_when_enabled(tmp_path, frame_files, gain_two):
    beauty, aov = frame_files
    mask = write_frame(tmp_path / "mask.tif", _flat(0.0, alpha=0.0))

    process_frame(beauty, aov, tmp_path / "on.tif", gain_two.with_overrides(use_mask=True), mask_path=mask)
    process_frame(beauty, aov, tmp_path / "off.tif", gain_two, mask_path=mask)

    np.testing.assert_allclose(read_rgba(tmp_path / "on.tif").array[..., :3], 0.5)
    np.testing.assert_allclose(read_rgba(tmp_path / "off.tif").array[..., :3], 0.7, rtol=1e-6)


def test_process_frame_skips_existing(tmp_path, frame_files, gain_two, caplog):
    beauty, aov = frame_files
    out = tmp_path / "graded.tif"
    out.write_bytes(b"keep")

    with caplog.at_level(logging.WARNING, logger="aov_grade"):
        assert process_frame(beauty, aov, out, gain_two) is False
    assert out.read_bytes() == b"keep"
    assert "Skipping" in caplog.text

    assert process_frame(beauty, aov, out, gain_two, overwrite=True) is True
    assert out.read_bytes() != b"keep"


def test_process_frame_dry_run_writes_nothing(tmp_path, frame_files, gain_two):
    beauty, aov = frame_files
    out = tmp_path / "graded.tif"
    assert process_frame(beauty, aov, out, gain_two, dry_run=True) is False
    assert not out.exists()


def test_process_frame_rejects_directory_destination(tmp_path, frame_files):
    beauty, aov = frame_files
    with pytest.raises(ValueError, match="not a file"):
        process_frame(beauty, aov, tmp_path, GradeSettings())


def test_process_frame_sixteen_bit_output(tmp_path, frame_files, gain_two):
    beauty, aov = frame_files
    out = tmp_path / "graded16.tif"
    process_frame(beauty, aov, out, gain_two, dtype=np.uint16, compression="none")
    loaded = read_rgba(out)
    assert loaded.dtype == np.uint16
    np.testing.assert_allclose(loaded.array[..., :3], 0.7, atol=1 / 65535)


@documents("Beauty and AOV frames must have the same dimensions")
def test_dimension_mismatch_raises(tmp_path):
    beauty = write_frame(tmp_path / "beauty.tif", _flat(0.5, shape=(4, 5)))
    aov = write_frame(tmp_path / "aov.tif", _flat(0.2, shape=(5, 4)))

    with pytest.raises(AOVGradeException, match="differ"):
        process_frame(beauty, aov, tmp_path / "out.tif", GradeSettings())
    assert not (tmp_path / "out.tif").exists()


def test_grade_images_checks_mask_dimensions():
    with pytest.raises(AOVGradeException, match="Mask"):
        grade_images(_flat(0.5), _flat(0.2), PixelProcessor(), mask=np.zeros((2, 2)))


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1001", [1001]),
        ("1001-1004", [1001, 1002, 1003, 1004]),
        ("1-9x4", [1, 5, 9]),
        ("1, 3-4", [1, 3, 4]),
        ("-2--1", [-2, -1]),
    ],
)
def test_parse_frame_range(text, expected):
    assert parse_frame_range(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "5-1", "1-5x0", "1-5y2"])
def test_parse_frame_range_rejects(text):
    with pytest.raises(ValueError):
        parse_frame_range(text)


def test_expand_frame_pattern():
    assert expand_frame_pattern("beauty.%04d.exr", 7) == "beauty.0007.exr"
    assert expand_frame_pattern("beauty.%d.tif", 1001) == "beauty.1001.tif"
    assert expand_frame_pattern("aov.####.tif", 42) == "aov.0042.tif"
    assert expand_frame_pattern("still.tif", 42) == "still.tif"


def _sequence_files(tmp_path, frames):
    for frame in frames:
        write_frame(tmp_path / f"beauty.{frame:04d}.tif", _flat(0.5))
        write_frame(tmp_path / f"aov.{frame:04d}.tif", _flat(0.2))


@documents("Sequences grade one frame per task and report failures without stopping")
def test_process_sequence_serial_reports_failures(tmp_path, monkeypatch, gain_two):
    _sequence_files(tmp_path, [1, 2])  # frame 3 is missing on disk
    calls = []

    def fake_progress(iterable, *, total, description):
        calls.append((total, description))
        return iterable

    monkeypatch.setattr(pipeline, "_PROGRESS_WRAPPER", fake_progress)

    written, failures = process_sequence(
        str(tmp_path / "beauty.%04d.tif"),
        str(tmp_path / "aov.####.tif"),
        str(tmp_path / "out" / "graded.%04d.tif"),
        [1, 2, 3],
        gain_two,
        method="serial",
    )

    assert written == 2
    assert len(failures) == 1 and failures[0].startswith("frame 3")
    assert calls == [(3, "Grading frames")]
    for frame in (1, 2):
        result = read_rgba(tmp_path / "out" / f"graded.{frame:04d}.tif").array
        np.testing.assert_allclose(result[..., :3], 0.7, rtol=1e-6)


def test_process_sequence_multiprocessing(tmp_path, gain_two):
    _sequence_files(tmp_path, [10, 11])

    written, failures = process_sequence(
        str(tmp_path / "beauty.%04d.tif"),
        str(tmp_path / "aov.%04d.tif"),
        str(tmp_path / "graded.%04d.tif"),
        [10, 11],
        gain_two,
        method="multiprocessing",
        workers=2,
        show_progress=False,
    )

    assert (written, failures) == (2, [])
    assert (tmp_path / "graded.0011.tif").exists()


class _BreakingPool:
    """Runs the first *healthy* submissions inline, then reports a broken pool."""

    def __init__(self, healthy: int):
        self.healthy = healthy

    def __call__(self, max_workers=None):
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def submit(self, fn, *args):
        fut = Future()
        if self.healthy > 0:
            self.healthy -= 1
            fut.set_result(fn(*args))
        else:
            fut.set_exception(BrokenProcessPool("worker died"))
        return fut


def test_broken_pool_reruns_only_unfinished_frames(tmp_path, monkeypatch, gain_two):
    _sequence_files(tmp_path, [1, 2, 3])
    seen = []
    real_worker = pipeline._frame_worker

    def counting_worker(job, *args):
        seen.append(job[0])
        return real_worker(job, *args)

    monkeypatch.setattr(pipeline, "_frame_worker", counting_worker)
    monkeypatch.setattr(pipeline, "ProcessPoolExecutor", _BreakingPool(healthy=2))
    monkeypatch.setattr(pipeline, "as_completed", lambda futs: iter(list(futs)))

    written, failures = process_sequence(
        str(tmp_path / "beauty.%04d.tif"),
        str(tmp_path / "aov.%04d.tif"),
        str(tmp_path / "graded.%04d.tif"),
        [1, 2, 3],
        gain_two,
        method="multiprocessing",
        show_progress=False,
    )

    assert (written, failures) == (3, [])
    assert sorted(seen) == [1, 2, 3]
    assert (tmp_path / "graded.0003.tif").exists()


def test_process_sequence_validates_arguments(tmp_path):
    with pytest.raises(ValueError, match="frame token"):
        process_sequence("b.%04d.tif", "a.%04d.tif", str(tmp_path / "out.tif"), [1, 2], GradeSettings())
    with pytest.raises(ValueError, match="Unknown method"):
        process_sequence("b.%04d.tif", "a.%04d.tif", "o.%04d.tif", [1], GradeSettings(), method="threads")  # type: ignore[arg-type]
