from __future__ import annotations

import numpy as np
import pytest

from aov_grade.grade import apply_grade, clamp_forward, clamp_reverse, safe_reciprocal
from aov_grade.linear_stage import compile_linear_stage
from aov_grade.settings import GradeSettings

from .documentation import documents

SAMPLES = np.array([[-0.5, 0.5, 1.5]])


@documents("Default settings grade every value onto itself, both directions")
@pytest.mark.parametrize("reverse", [False, True])
def test_default_grade_is_identity(rng, reverse: bool):
    stage = compile_linear_stage(GradeSettings())
    x = rng.uniform(-3.0, 6.0, size=(50, 3))
    assert np.array_equal(apply_grade(x, stage, reverse=reverse), x)


def test_gain_scales_linearly(gain_two):
    stage = compile_linear_stage(gain_two)
    out = apply_grade(np.array([0.2, 0.2, 0.2]), stage)
    np.testing.assert_allclose(out, [0.4, 0.4, 0.4])


def test_forward_then_reverse_recovers_input(rng):
    settings = GradeSettings(
        blackpoint=(0.02, 0.01, 0.0),
        whitepoint=(0.9, 1.1, 1.0),
        lift=(0.01, 0.0, 0.03),
        gain=(1.3, 0.8, 1.1),
        multiply=1.2,
        offset=(0.0, 0.02, -0.01),
        gamma=(2.2, 0.7, 1.4),
    )
    stage = compile_linear_stage(settings)
    x = rng.uniform(-1.0, 3.0, size=(40, 3))

    graded = apply_grade(x, stage)
    restored = apply_grade(graded, stage, reverse=True)

    np.testing.assert_allclose(restored, x, atol=1e-9)


@documents("Forward clamps are coupled: white alone floors, black alone caps")
@pytest.mark.parametrize(
    "black, white, expected",
    [
        (False, False, [-0.5, 0.5, 1.5]),
        (False, True, [0.0, 0.5, 1.5]),
        (True, False, [-0.5, 0.5, 1.0]),
        (True, True, [0.0, 0.5, 1.0]),
    ],
)
def test_forward_clamp_policy(black: bool, white: bool, expected):
    out = clamp_forward(SAMPLES, black_clamp=black, white_clamp=white)
    assert out[0].tolist() == expected

    stage = compile_linear_stage(GradeSettings())
    graded = apply_grade(SAMPLES, stage, black_clamp=black, white_clamp=white)
    assert graded[0].tolist() == expected


@documents("Reverse clamps act independently: black floors, white caps")
@pytest.mark.parametrize(
    "black, white, expected",
    [
        (False, False, [-0.5, 0.5, 1.5]),
        (True, False, [0.0, 0.5, 1.5]),
        (False, True, [-0.5, 0.5, 1.0]),
        (True, True, [0.0, 0.5, 1.0]),
    ],
)
def test_reverse_clamp_policy(black: bool, white: bool, expected):
    out = clamp_reverse(SAMPLES, black_clamp=black, white_clamp=white)
    assert out[0].tolist() == expected

    stage = compile_linear_stage(GradeSettings())
    graded = apply_grade(SAMPLES, stage, reverse=True, black_clamp=black, white_clamp=white)
    assert graded[0].tolist() == expected


def test_forward_clamp_applies_before_gamma():
    stage = compile_linear_stage(GradeSettings(gain=2.0, gamma=2.0))
    out = apply_grade(np.array([0.8, 0.8, 0.8]), stage, black_clamp=True, white_clamp=True)
    # 1.6 clamps to 1.0 before the curve; 1.0 stays 1.0 under any gamma
    np.testing.assert_allclose(out, [1.0, 1.0, 1.0])


@documents("Near-zero slopes are not inverted; the reciprocal saturates to 1")
def test_reverse_with_flat_slope_uses_unit_reciprocal():
    settings = GradeSettings(lift=0.3, gain=0.3)  # A == 0, B == 0.3
    stage = compile_linear_stage(settings)

    out = apply_grade(np.array([0.5, 0.5, 0.5]), stage, reverse=True)

    np.testing.assert_allclose(out, [0.2, 0.2, 0.2])
    assert np.all(np.isfinite(out))


def test_safe_reciprocal_threshold():
    out = safe_reciprocal(np.array([2.0, 1e-6, -1e-7, -4.0]))
    assert out.tolist() == [0.5, 1.0, 1.0, -0.25]


def test_apply_grade_keeps_float32_and_rejects_bad_shape():
    stage = compile_linear_stage(GradeSettings(gain=2.0))
    x = np.full((2, 2, 3), 0.25, dtype=np.float32)
    assert apply_grade(x, stage).dtype == np.float32

    with pytest.raises(ValueError):
        apply_grade(np.zeros((2, 4)), stage)
