"""Exception types raised by the calibration and extraction engine."""

from __future__ import annotations


class SpeckError(Exception):
    """Base class for engine errors."""


class CalibrationValidationError(SpeckError, ValueError):
    """Raised when annotated calibration lines cannot be fitted."""


class DomainError(SpeckError, ValueError):
    """Raised when a diffraction ratio leaves the physical range."""


class CompatibilityError(SpeckError, ValueError):
    """Raised when spectrographs with different axes are combined."""


class SamplingError(SpeckError):
    """Raised when a sampled line does not touch the image at all."""


class FitError(SpeckError, RuntimeError):
    """Raised when fitting the geometric model fails."""


class LineSearchError(FitError):
    """Raised when the backtracking line search cannot find a step."""

    def __init__(self, iteration: int, shrinks: int, reason: str):
        self.iteration = iteration
        self.shrinks = shrinks
        self.reason = reason
        super().__init__(
            f"Line search failed at iteration {iteration} after {shrinks} shrinks: {reason}"
        )
