# path: aov_grade/cli.py
"""Typer-based CLI for grading AOVs back into beauty renders.

Install an entrypoint like:
    aov-grade = aov_grade.cli:main
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import typer

from .pipeline import parse_frame_range, process_frame, process_sequence
from .settings import GRADE_PRESETS, VECTOR_FIELDS, GradeSettings, get_preset, load_settings

app = typer.Typer(name="aov-grade", no_args_is_help=True, add_completion=False)

_BIT_DEPTHS = {8: np.uint8, 16: np.uint16, 32: np.float32}

# --------------------------- option declarations ------------------------------

_VECTOR_HELP = "Scalar or comma-separated r,g,b[,a]."

BlackpointOpt = typer.Option(None, "--blackpoint", help=_VECTOR_HELP)
WhitepointOpt = typer.Option(None, "--whitepoint", help=_VECTOR_HELP)
LiftOpt = typer.Option(None, "--lift", help=_VECTOR_HELP)
GainOpt = typer.Option(None, "--gain", help=_VECTOR_HELP)
MultiplyOpt = typer.Option(None, "--multiply", help=_VECTOR_HELP)
OffsetOpt = typer.Option(None, "--offset", help=_VECTOR_HELP)
GammaOpt = typer.Option(None, "--gamma", help=_VECTOR_HELP)
MixOpt = typer.Option(None, "--mix", help="Blend strength between original and graded AOV.")
BlackClampOpt = typer.Option(None, "--black-clamp/--no-black-clamp", help="Black clamp toggle.")
WhiteClampOpt = typer.Option(None, "--white-clamp/--no-white-clamp", help="White clamp toggle.")
ViewAovOpt = typer.Option(None, "--view-aov/--no-view-aov", help="Output the graded AOV alone.")
ReverseOpt = typer.Option(None, "--reverse/--no-reverse", help="Invert the grade.")
UnpremultOpt = typer.Option(None, "--unpremult/--no-unpremult", help="Grade in the unpremultiplied domain.")
UseMaskOpt = typer.Option(None, "--use-mask/--no-use-mask", help="Restrict the grade by the mask alpha.")
SettingsOpt = typer.Option(None, "--settings", exists=True, readable=True, help="JSON/YAML settings file.")
PresetOpt = typer.Option(None, "--preset", help=f"Named settings: {', '.join(sorted(GRADE_PRESETS))}")
BitDepthOpt = typer.Option(32, "--bit-depth", help="Output bit depth: 8, 16 or 32 (float).")
CompressionOpt = typer.Option("deflate", "--compression", help="TIFF compression (deflate, lzw, none).")
LogLevelOpt = typer.Option("WARNING", "--log-level", help="Logging level.")

# --------------------------- internal helpers ---------------------------------


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level: {level!r}")
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _parse_vector(name: str, text: str) -> Any:
    try:
        values = [float(v) for v in text.split(",") if v.strip()]
    except ValueError as exc:
        raise typer.BadParameter(f"{name} expects numbers, got {text!r}") from exc
    if len(values) not in (1, 3, 4):
        raise typer.BadParameter(f"{name} expects 1, 3 or 4 components, got {len(values)}")
    return values[0] if len(values) == 1 else values


def resolve_settings(
    settings_file: Optional[Path],
    preset: Optional[str],
    overrides: Dict[str, Any],
) -> GradeSettings:
    """Layer CLI overrides over a settings file or preset (or the defaults)."""
    if settings_file and preset:
        raise typer.BadParameter("Use either --settings or --preset, not both.")
    try:
        if settings_file:
            base = load_settings(settings_file)
        elif preset:
            base = get_preset(preset)
        else:
            base = GradeSettings()
    except KeyError as exc:
        raise typer.BadParameter(str(exc.args[0])) from exc
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    cleaned: Dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        cleaned[key] = _parse_vector(key, value) if key in VECTOR_FIELDS else value
    try:
        return base.with_overrides(**cleaned)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _output_dtype(bit_depth: int) -> np.dtype:
    try:
        return np.dtype(_BIT_DEPTHS[bit_depth])
    except KeyError as exc:
        raise typer.BadParameter("--bit-depth must be one of 8, 16, 32") from exc


def _knobs(**kwargs: Any) -> Dict[str, Any]:
    return kwargs


# --------------------------------- CLI ---------------------------------------


@app.command("run")
def run(
    beauty: Path = typer.Option(..., "--beauty", exists=True, readable=True, help="Beauty render (premultiplied RGBA)."),
    aov: Path = typer.Option(..., "--aov", exists=True, readable=True, help="AOV to grade (premultiplied by beauty alpha)."),
    out: Path = typer.Option(..., "--out", "-o", help="Output image path."),
    mask: Optional[Path] = typer.Option(None, "--mask", exists=True, readable=True, help="Mask image (alpha is used)."),
    settings_file: Optional[Path] = SettingsOpt,
    preset: Optional[str] = PresetOpt,
    blackpoint: Optional[str] = BlackpointOpt,
    whitepoint: Optional[str] = WhitepointOpt,
    lift: Optional[str] = LiftOpt,
    gain: Optional[str] = GainOpt,
    multiply: Optional[str] = MultiplyOpt,
    offset: Optional[str] = OffsetOpt,
    gamma: Optional[str] = GammaOpt,
    mix: Optional[float] = MixOpt,
    black_clamp: Optional[bool] = BlackClampOpt,
    white_clamp: Optional[bool] = WhiteClampOpt,
    viewaov: Optional[bool] = ViewAovOpt,
    reverse: Optional[bool] = ReverseOpt,
    unpremult: Optional[bool] = UnpremultOpt,
    use_mask: Optional[bool] = UseMaskOpt,
    bit_depth: int = BitDepthOpt,
    compression: str = CompressionOpt,
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite an existing output."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Grade but do not write the output."),
    log_level: str = LogLevelOpt,
) -> None:
    """Grade one AOV frame and merge it back into the beauty frame."""
    _configure_logging(log_level)
    settings = resolve_settings(
        settings_file,
        preset,
        _knobs(
            blackpoint=blackpoint, whitepoint=whitepoint, lift=lift, gain=gain,
            multiply=multiply, offset=offset, gamma=gamma, mix=mix,
            black_clamp=black_clamp, white_clamp=white_clamp, viewaov=viewaov,
            reverse=reverse, unpremult=unpremult, use_mask=use_mask,
        ),
    )
    dtype = _output_dtype(bit_depth)
    try:
        written = process_frame(
            beauty, aov, out, settings,
            mask_path=mask, dtype=dtype, compression=compression,
            overwrite=overwrite, dry_run=dry_run,
        )
    except Exception as exc:
        typer.secho(f"Failed: {beauty} -> {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    if written:
        typer.echo(str(out))
    elif not dry_run:
        typer.secho(f"Skip existing: {out}", fg=typer.colors.YELLOW)


@app.command("sequence")
def sequence(
    beauty: str = typer.Option(..., "--beauty", help="Beauty pattern, e.g. beauty.%04d.tif or beauty.####.tif."),
    aov: str = typer.Option(..., "--aov", help="AOV sequence pattern."),
    out: str = typer.Option(..., "--out", "-o", help="Output sequence pattern."),
    frames: str = typer.Option(..., "--frames", help="Frame range, e.g. 1001-1100 or 1001-1100x2."),
    mask: Optional[str] = typer.Option(None, "--mask", help="Mask sequence pattern."),
    settings_file: Optional[Path] = SettingsOpt,
    preset: Optional[str] = PresetOpt,
    blackpoint: Optional[str] = BlackpointOpt,
    whitepoint: Optional[str] = WhitepointOpt,
    lift: Optional[str] = LiftOpt,
    gain: Optional[str] = GainOpt,
    multiply: Optional[str] = MultiplyOpt,
    offset: Optional[str] = OffsetOpt,
    gamma: Optional[str] = GammaOpt,
    mix: Optional[float] = MixOpt,
    black_clamp: Optional[bool] = BlackClampOpt,
    white_clamp: Optional[bool] = WhiteClampOpt,
    viewaov: Optional[bool] = ViewAovOpt,
    reverse: Optional[bool] = ReverseOpt,
    unpremult: Optional[bool] = UnpremultOpt,
    use_mask: Optional[bool] = UseMaskOpt,
    bit_depth: int = BitDepthOpt,
    compression: str = CompressionOpt,
    method: str = typer.Option("auto", "--method", help="auto | serial | multiprocessing"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Process count for multiprocessing."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing outputs."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Grade but do not write outputs."),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show a progress bar."),
    log_level: str = LogLevelOpt,
) -> None:
    """Grade a frame range of AOVs into the matching beauty frames."""
    _configure_logging(log_level)
    if method not in ("auto", "serial", "multiprocessing"):
        raise typer.BadParameter("--method must be auto, serial or multiprocessing")
    try:
        frame_list = parse_frame_range(frames)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    settings = resolve_settings(
        settings_file,
        preset,
        _knobs(
            blackpoint=blackpoint, whitepoint=whitepoint, lift=lift, gain=gain,
            multiply=multiply, offset=offset, gamma=gamma, mix=mix,
            black_clamp=black_clamp, white_clamp=white_clamp, viewaov=viewaov,
            reverse=reverse, unpremult=unpremult, use_mask=use_mask,
        ),
    )
    try:
        written, failures = process_sequence(
            beauty, aov, out, frame_list, settings,
            mask_pattern=mask, dtype=_output_dtype(bit_depth), compression=compression,
            method=method, workers=workers,  # type: ignore[arg-type]
            overwrite=overwrite, dry_run=dry_run, show_progress=progress,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    for err in failures:
        typer.secho(f"Failed: {err}", fg=typer.colors.RED)
    typer.echo(f"{written} frame(s) written")
    if failures:
        raise typer.Exit(code=1)


@app.command("show-settings")
def show_settings(
    settings_file: Optional[Path] = SettingsOpt,
    preset: Optional[str] = PresetOpt,
    blackpoint: Optional[str] = BlackpointOpt,
    whitepoint: Optional[str] = WhitepointOpt,
    lift: Optional[str] = LiftOpt,
    gain: Optional[str] = GainOpt,
    multiply: Optional[str] = MultiplyOpt,
    offset: Optional[str] = OffsetOpt,
    gamma: Optional[str] = GammaOpt,
    mix: Optional[float] = MixOpt,
    black_clamp: Optional[bool] = BlackClampOpt,
    white_clamp: Optional[bool] = WhiteClampOpt,
    viewaov: Optional[bool] = ViewAovOpt,
    reverse: Optional[bool] = ReverseOpt,
    unpremult: Optional[bool] = UnpremultOpt,
    use_mask: Optional[bool] = UseMaskOpt,
) -> None:
    """Print the resolved settings as JSON."""
    settings = resolve_settings(
        settings_file,
        preset,
        _knobs(
            blackpoint=blackpoint, whitepoint=whitepoint, lift=lift, gain=gain,
            multiply=multiply, offset=offset, gamma=gamma, mix=mix,
            black_clamp=black_clamp, white_clamp=white_clamp, viewaov=viewaov,
            reverse=reverse, unpremult=unpremult, use_mask=use_mask,
        ),
    )
    typer.echo(json.dumps(settings.to_dict(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
