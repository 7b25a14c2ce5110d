from __future__ import annotations

import numpy as np

from speck_app.engine.annotations import CalibrationLine
from speck_app.engine.geometry import FitParameters, wavelength_to_ratio
from speck_app.engine.line_search import LineSearchSettings
from speck_app.engine.spectral_mapper import AnchorLine, BoundaryFit, FitSettings, SpectralLines

SCENARIO_LINES = [
    CalibrationLine(450, (0.1, 0.0), (0.12, 1.0)),
    CalibrationLine(550, (0.5, 0.0), (0.52, 1.0)),
    CalibrationLine(650, (0.9, 0.0), (0.92, 1.0)),
]


def fast_settings(iterations: int = 5000, **changes) -> FitSettings:
    return FitSettings(line_search=LineSearchSettings(max_iterations=iterations), **changes)


def lines_from_model(
    wavelengths,
    start_params: FitParameters,
    end_params: FitParameters,
    grating_const: float = 500.0,
) -> list[CalibrationLine]:
    """Vertical calibration lines from y=0 to y=1 placed exactly where the model puts them."""

    lines = []
    for wavelength in wavelengths:
        ratio = wavelength_to_ratio(wavelength, grating_const)
        lines.append(
            CalibrationLine(
                int(wavelength),
                (start_params.position(ratio), 0.0),
                (end_params.position(ratio), 1.0),
            )
        )
    return lines


def gradient_image(height: int = 40, width: int = 60) -> np.ndarray:
    """Grey uint8 frame whose brightness grows from left to right."""

    row = np.linspace(0, 255, width).round().astype(np.uint8)
    return np.tile(row, (height, 1))


def synthetic_spectral_lines(grating_const: float = 500.0) -> SpectralLines:
    """Vertical model spanning the full image height, redder to the right."""

    params = FitParameters(0.154, -2.0, 0.5)
    return SpectralLines(
        grating_const=grating_const,
        start_boundary=BoundaryFit(AnchorLine(0.0, 0.0), params),
        end_boundary=BoundaryFit(AnchorLine(0.0, 1.0), params),
    )
