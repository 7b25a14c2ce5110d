"""Fit the diffraction model to annotated lines and map wavelengths to lines.

Each boundary of the annotated line family (the start points and the end
points of the drawn segments) is fitted independently: the endpoints are
regressed to an anchor line, projected onto it, and the geometric model is
fitted to the projected positions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from speck_app.engine.annotations import (
    HORIZONTAL,
    VERTICAL,
    CalibrationLine,
    Line,
    Point,
    check_orientation,
    validate_lines,
)
from speck_app.engine.errors import CalibrationValidationError, DomainError
from speck_app.engine.geometry import (
    FitParameters,
    initial_parameters,
    normed_position,
    position_gradient_terms,
    wavelength_grid,
    wavelength_to_ratio,
)
from speck_app.engine.line_search import IterationState, LineSearchSettings, search_minimum

__all__ = [
    "SMALLEST_WAVELENGTH",
    "LARGEST_WAVELENGTH",
    "AnchorLine",
    "BoundaryFit",
    "DiffractionFitProblem",
    "FitSettings",
    "SpectralLines",
    "fit_boundary",
    "fit_spectral_lines",
]

logger = logging.getLogger(__name__)

SMALLEST_WAVELENGTH = 380
LARGEST_WAVELENGTH = 750

ProgressCallback = Callable[[str, IterationState], None]


@dataclass(frozen=True)
class AnchorLine:
    """Regression line through one boundary of the annotated line family.

    For vertical lines it is ``y = slope * x + intercept`` and positions are
    measured along ``x``; for horizontal lines the axes swap.
    """

    slope: float
    intercept: float
    orientation: str = VERTICAL

    @classmethod
    def regress(cls, points: Sequence[Point], orientation: str = VERTICAL) -> "AnchorLine":
        orientation = check_orientation(orientation)
        arr = np.asarray(points, dtype=float).reshape(-1, 2)
        if orientation == VERTICAL:
            along, across = arr[:, 0], arr[:, 1]
        else:
            along, across = arr[:, 1], arr[:, 0]
        if along.size < 2 or np.ptp(along) == 0.0:
            return cls(slope=0.0, intercept=float(np.mean(across)), orientation=orientation)
        result = stats.linregress(along, across)
        return cls(slope=float(result.slope), intercept=float(result.intercept), orientation=orientation)

    def project(self, point: Sequence[float]) -> float:
        """Position of the orthogonal projection of ``point`` along the dispersion axis."""

        x, y = point
        along, across = (x, y) if self.orientation == VERTICAL else (y, x)
        m = self.slope
        return (along + m * (across - self.intercept)) / (1.0 + m * m)

    def point_at(self, position: float) -> Point:
        across = self.slope * position + self.intercept
        if self.orientation == VERTICAL:
            return (float(position), float(across))
        return (float(across), float(position))

    def to_dict(self) -> dict:
        return {"slope": self.slope, "intercept": self.intercept, "orientation": self.orientation}

    @classmethod
    def from_dict(cls, data) -> "AnchorLine":
        return cls(
            slope=float(data["slope"]),
            intercept=float(data["intercept"]),
            orientation=check_orientation(data.get("orientation", VERTICAL)),
        )


class DiffractionFitProblem:
    """Mean squared error of the geometric model over ``(position, ratio)`` pairs."""

    def __init__(self, positions: Sequence[float], ratios: Sequence[float]):
        self.positions = np.asarray(positions, dtype=float)
        self.ratios = np.asarray(ratios, dtype=float)
        if self.positions.shape != self.ratios.shape or self.positions.ndim != 1:
            raise ValueError("Positions and ratios must be 1-D arrays of equal length")
        if self.positions.size == 0:
            raise ValueError("At least one data point is required")

    def residuals(self, parameters) -> np.ndarray:
        return normed_position(self.ratios, parameters) - self.positions

    def cost(self, parameters) -> float:
        return float(np.mean(self.residuals(parameters) ** 2))

    def gradient(self, parameters) -> np.ndarray:
        prefactor = 2.0 * self.residuals(parameters)
        d_a, d_b, d_c = position_gradient_terms(self.ratios, parameters)
        return np.array(
            [np.mean(prefactor * d_a), np.mean(prefactor * d_b), np.mean(prefactor * d_c)],
            dtype=float,
        )


@dataclass(frozen=True)
class BoundaryFit:
    anchor: AnchorLine
    params: FitParameters
    cost: float = float("nan")
    iterations: int = 0

    def point(self, ratio: float) -> Point:
        return self.anchor.point_at(self.params.position(ratio))

    def to_dict(self) -> dict:
        return {
            "anchor": self.anchor.to_dict(),
            "params": list(self.params.as_tuple()),
            "cost": self.cost,
            "iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data) -> "BoundaryFit":
        return cls(
            anchor=AnchorLine.from_dict(data["anchor"]),
            params=FitParameters.from_sequence(data["params"]),
            cost=float(data.get("cost", float("nan"))),
            iterations=int(data.get("iterations", 0)),
        )


@dataclass(frozen=True)
class FitSettings:
    grating_const: float = 500.0
    angle_deg: float = 17.5
    distance_mm: float = 1.0
    sensor_width_mm: float = 0.5
    orientation: str = VERTICAL
    line_search: LineSearchSettings = field(default_factory=LineSearchSettings)

    def validate(self) -> list[str]:
        errs = []
        if not self.grating_const > 0:
            errs.append("Grating constant must be positive")
        if not -90.0 <= self.angle_deg <= 90.0:
            errs.append("Angle must lie between -90 and 90 degrees")
        if not self.distance_mm > 0:
            errs.append("Distance to sensor must be positive")
        if not self.sensor_width_mm > 0:
            errs.append("Sensor width must be positive")
        if self.orientation not in (VERTICAL, HORIZONTAL):
            errs.append(f"Unknown orientation: {self.orientation}")
        errs.extend(self.line_search.validate())
        return errs

    def initial_parameters(self) -> FitParameters:
        return initial_parameters(self.angle_deg, self.distance_mm, self.sensor_width_mm)


@dataclass(frozen=True)
class SpectralLines:
    """Fitted model turning a wavelength into a line segment on the image."""

    grating_const: float
    start_boundary: BoundaryFit
    end_boundary: BoundaryFit
    orientation: str = VERTICAL

    def ratio(self, wavelength: float) -> float:
        return wavelength_to_ratio(wavelength, self.grating_const)

    def line_with_wavelength(self, wavelength: float) -> Line:
        ratio = self.ratio(wavelength)
        return Line(start=self.start_boundary.point(ratio), end=self.end_boundary.point(ratio))

    def lines_between(self, start: float, stop: float, step: float) -> List[Line]:
        return [self.line_with_wavelength(float(wl)) for wl in wavelength_grid(start, stop, step)]

    def preview_lines(
        self,
        count: int = 10,
        smallest: float = SMALLEST_WAVELENGTH,
        largest: float = LARGEST_WAVELENGTH,
    ) -> List[Tuple[float, Line]]:
        """Evenly spaced lines across the visible range for overlaying on the image."""

        if not 3 <= int(count) <= 60:
            raise ValueError("Preview line count must be between 3 and 60")
        step = (largest - smallest) / (int(count) - 1)
        wavelengths = [smallest + i * step for i in range(int(count))]
        return [(wl, self.line_with_wavelength(wl)) for wl in wavelengths]

    def to_dict(self) -> dict:
        return {
            "grating_const": self.grating_const,
            "orientation": self.orientation,
            "start_boundary": self.start_boundary.to_dict(),
            "end_boundary": self.end_boundary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data) -> "SpectralLines":
        return cls(
            grating_const=float(data["grating_const"]),
            start_boundary=BoundaryFit.from_dict(data["start_boundary"]),
            end_boundary=BoundaryFit.from_dict(data["end_boundary"]),
            orientation=check_orientation(data.get("orientation", VERTICAL)),
        )


def fit_boundary(
    points: Sequence[Point],
    ratios: Sequence[float],
    init: FitParameters,
    *,
    orientation: str = VERTICAL,
    line_search: LineSearchSettings = LineSearchSettings(),
    callback: Optional[Callable[[IterationState], None]] = None,
) -> BoundaryFit:
    anchor = AnchorLine.regress(points, orientation)
    positions = [anchor.project(point) for point in points]
    problem = DiffractionFitProblem(positions, ratios)
    result = search_minimum(
        problem,
        init.as_array(),
        line_search.max_iterations,
        line_search.initial_step,
        c=line_search.c,
        tau=line_search.tau,
        condition=line_search.condition,
        max_shrinks=line_search.max_shrinks,
        tolerance=line_search.tolerance,
        report_every=line_search.report_every,
        callback=callback,
    )
    return BoundaryFit(
        anchor=anchor,
        params=FitParameters.from_sequence(result.parameters),
        cost=result.cost,
        iterations=result.iterations,
    )


def fit_spectral_lines(
    lines: Iterable[CalibrationLine],
    settings: FitSettings = FitSettings(),
    *,
    progress: Optional[ProgressCallback] = None,
) -> SpectralLines:
    """Validate ``lines`` and fit both boundaries.

    Raises :class:`CalibrationValidationError` for fewer than two lines or a
    non-monotonic family and :class:`DomainError` when a calibration
    wavelength has no first-order diffraction angle for the grating.
    """

    errs = settings.validate()
    if errs:
        raise ValueError("; ".join(errs))

    valid, ordered = validate_lines(lines, settings.orientation)
    if len(ordered) < 2:
        raise CalibrationValidationError("At least two calibration lines are required")
    if not valid:
        raise CalibrationValidationError(
            f"Calibration lines are not monotonic along the {settings.orientation} dispersion axis"
        )

    wavelengths = np.array([line.wavelength for line in ordered], dtype=float)
    ratios = wavelength_to_ratio(wavelengths, settings.grating_const)
    if np.any(np.abs(ratios) >= 1.0):
        worst = float(wavelengths[np.argmax(np.abs(ratios))])
        raise DomainError(
            f"Wavelength {worst:g} nm exceeds the diffraction limit of a "
            f"{settings.grating_const:g} lines/mm grating"
        )

    init = settings.initial_parameters()
    boundaries: Dict[str, BoundaryFit] = {}
    for name in ("start", "end"):
        points = [line.start if name == "start" else line.end for line in ordered]
        callback = None
        if progress is not None:
            callback = _bind_progress(progress, name)
        boundaries[name] = fit_boundary(
            points,
            ratios,
            init,
            orientation=settings.orientation,
            line_search=settings.line_search,
            callback=callback,
        )
        logger.info(
            "fitted %s boundary: a=%.6g b=%.6g c=%.6g cost=%.3g",
            name,
            *boundaries[name].params.as_tuple(),
            boundaries[name].cost,
        )

    return SpectralLines(
        grating_const=float(settings.grating_const),
        start_boundary=boundaries["start"],
        end_boundary=boundaries["end"],
        orientation=settings.orientation,
    )


def _bind_progress(progress: ProgressCallback, name: str) -> Callable[[IterationState], None]:
    def _callback(state: IterationState) -> None:
        progress(name, state)

    return _callback
