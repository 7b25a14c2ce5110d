"""Diffraction geometry relating wavelength to a normalized sensor position.

With ``a = tan(theta)`` and ``r = sin(phi)`` the model below reduces to
``b * tan(theta - phi) + c``: the position of a diffracted ray on a flat
sensor at relative distance ``b`` whose normal is offset by ``c``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np

from speck_app.engine.errors import DomainError

__all__ = [
    "FitParameters",
    "wavelength_to_ratio",
    "checked_ratio",
    "normed_position",
    "position_gradient_terms",
    "initial_parameters",
    "wavelength_grid",
]

# wavelength in nm times grating constant in lines/mm
RATIO_SCALE = 1_000_000.0


@dataclass(frozen=True)
class FitParameters:
    a: float
    b: float
    c: float

    @classmethod
    def from_sequence(cls, values: Iterable[float]) -> "FitParameters":
        a, b, c = (float(v) for v in values)
        return cls(a=a, b=b, c=c)

    def as_array(self) -> np.ndarray:
        return np.array([self.a, self.b, self.c], dtype=float)

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.a, self.b, self.c)

    def position(self, ratio: float) -> float:
        """Return the normalized position for ``ratio`` or raise :class:`DomainError`."""

        value = float(normed_position(checked_ratio(ratio), self.as_array()))
        if not math.isfinite(value):
            raise DomainError(f"Model is singular at diffraction ratio {ratio:g}")
        return value


def wavelength_to_ratio(wavelength, grating_const: float):
    """Convert wavelength (nm) and grating constant (lines/mm) to ``sin(phi)``."""

    if isinstance(wavelength, np.ndarray):
        return wavelength.astype(float) * grating_const / RATIO_SCALE
    return float(wavelength) * grating_const / RATIO_SCALE


def checked_ratio(ratio: float) -> float:
    value = float(ratio)
    if not math.isfinite(value) or abs(value) >= 1.0:
        raise DomainError(f"Diffraction ratio {value:g} is outside the open interval (-1, 1)")
    return value


def normed_position(ratio, params) -> np.ndarray:
    """Evaluate ``b * ((a*root - r) / (root + a*r)) + c`` with ``root = sqrt(1 - r**2)``.

    ``ratio`` may be a scalar or an array. Ratios with ``|r| > 1`` produce NaN;
    use :func:`checked_ratio` or :meth:`FitParameters.position` where that has
    to be reported instead.
    """

    a, b, c = params
    r = np.asarray(ratio, dtype=float)
    with np.errstate(invalid="ignore", divide="ignore"):
        root = np.sqrt(1.0 - r * r)
        return b * ((a * root - r) / (root + a * r)) + c


def position_gradient_terms(ratio: np.ndarray, params) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Partial derivatives of :func:`normed_position` with respect to ``a``, ``b`` and ``c``."""

    a, b, _c = params
    r = np.asarray(ratio, dtype=float)
    with np.errstate(invalid="ignore", divide="ignore"):
        root = np.sqrt(1.0 - r * r)
        denom = root + a * r
        d_a = b * (root * denom - (a * root - r) * r) / denom ** 2
        d_b = (a * root - r) / denom
    d_c = np.ones_like(r)
    return d_a, d_b, d_c


def initial_parameters(angle_deg: float, distance_mm: float, sensor_width_mm: float) -> FitParameters:
    """Physical starting point for the fit.

    ``angle_deg`` is the full angle between incoming light and sensor normal,
    so the half angle enters the tangent.
    """

    if sensor_width_mm == 0:
        raise ValueError("Sensor width must be non-zero")
    return FitParameters(
        a=math.tan(angle_deg * math.pi / 360.0),
        b=distance_mm / sensor_width_mm,
        c=0.5,
    )


def wavelength_grid(start: float, stop: float, step: float) -> np.ndarray:
    """Wavelengths ``start + i*step`` up to and including ``stop`` when it lies on the grid."""

    start, stop, step = float(start), float(stop), float(step)
    if not step > 0:
        raise ValueError("Wavelength step must be positive")
    if stop < start:
        raise ValueError("Wavelength stop must not be smaller than start")
    count = int(math.floor((stop - start) / step + 1e-9)) + 1
    return start + np.arange(count, dtype=float) * step
