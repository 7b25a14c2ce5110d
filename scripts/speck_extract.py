#!/usr/bin/env python3
"""Fit a spectrometer calibration and extract a spectrograph from a camera frame."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

import numpy as np

from speck_app.engine.audit import log_fit, log_step, start_audit
from speck_app.engine.errors import SpeckError
from speck_app.engine.export import write_spectrograph_csv, write_spectrograph_workbook
from speck_app.engine.recipe_model import load_preset, load_recipe
from speck_app.engine.spectrograph import build_spectrograph, relative_spectrum
from speck_app.io.calibration_file import CalibrationFileError, load_calibration, save_calibration

logger = logging.getLogger("speck_extract")


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("calibration", help="Calibration YAML file with annotated lines.")
    parser.add_argument("frame", help="Camera frame saved with numpy.save (H x W or H x W x 3).")
    recipe = parser.add_mutually_exclusive_group()
    recipe.add_argument(
        "--preset",
        default="speck_default",
        help="Name of a bundled preset (default: speck_default).",
    )
    recipe.add_argument("--recipe", help="Path to a recipe YAML file; overrides --preset.")
    parser.add_argument("--start", type=float, help="First wavelength in nm.")
    parser.add_argument("--stop", type=float, help="Last wavelength in nm (inclusive).")
    parser.add_argument("--step", type=float, help="Wavelength step in nm.")
    parser.add_argument(
        "--reference",
        help="Reference frame; when given the output is the relative spectrum.",
    )
    parser.add_argument(
        "--output",
        "-o",
        help="Output file (.csv or .xlsx). Writes CSV to stdout when omitted.",
    )
    parser.add_argument("--comment", default="", help="Comment written above the CSV columns.")
    parser.add_argument(
        "--save-calibration",
        dest="save_calibration",
        help="Write the calibration including the fitted model to this path.",
    )
    parser.add_argument(
        "--refit",
        action="store_true",
        help="Ignore a model stored in the calibration file and fit again.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log fit progress to stderr.")
    return parser.parse_args(argv)


def _load_frame(path: str) -> np.ndarray:
    frame = np.load(path, allow_pickle=False)
    if frame.ndim not in (2, 3):
        raise ValueError(f"{path}: expected a 2-D or 3-D image array, got shape {frame.shape}")
    return frame


def run(args: argparse.Namespace) -> int:
    recipe = load_recipe(args.recipe) if args.recipe else load_preset(args.preset)
    errs = recipe.validate()
    if errs:
        raise ValueError("; ".join(errs))
    graph_settings = recipe.spectrograph_settings()
    start = graph_settings.start if args.start is None else args.start
    stop = graph_settings.stop if args.stop is None else args.stop
    step = graph_settings.step if args.step is None else args.step

    audit = start_audit()
    # settings stored in the calibration file win over the recipe
    calibration = load_calibration(args.calibration, defaults=recipe.fit_settings())
    if args.refit or calibration.spectral is None:
        spectral = calibration.generate_regression()
        log_fit(audit, calibration.settings, spectral, len(calibration.store))
    else:
        spectral = calibration.spectral
        log_step(audit, "Calibration: using stored model")

    frame = _load_frame(args.frame)
    spectrum = build_spectrograph(frame, spectral, start, stop, step, lightness=graph_settings.lightness)
    log_step(audit, f"Spectrograph: {args.frame} {start:g}..{stop:g} nm step {step:g}")
    if args.reference:
        reference = build_spectrograph(
            _load_frame(args.reference), spectral, start, stop, step, lightness=graph_settings.lightness
        )
        spectrum = relative_spectrum(spectrum, reference)
        log_step(audit, f"Reference: {args.reference}")

    if args.save_calibration:
        save_calibration(args.save_calibration, calibration)

    for entry in audit:
        logger.info(entry)

    if not args.output:
        write_spectrograph_csv(sys.stdout, spectrum, args.comment)
        return 0
    output = Path(args.output)
    if output.suffix.lower() == ".xlsx":
        write_spectrograph_workbook(output, spectrum, args.comment, {"calibration": args.calibration})
    else:
        write_spectrograph_csv(output, spectrum, args.comment)
    logger.info("wrote %s", output)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return run(args)
    except BrokenPipeError:
        return 0
    except (SpeckError, CalibrationFileError, OSError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
