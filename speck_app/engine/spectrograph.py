"""Spectrographs: intensity sampled on a regular wavelength grid."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from speck_app.engine.errors import CompatibilityError
from speck_app.engine.geometry import wavelength_grid
from speck_app.engine.sampler import sample_line_or_nan
from speck_app.engine.spectral_mapper import SpectralLines

__all__ = [
    "WAVELENGTH_COLUMN",
    "INTENSITY_COLUMN",
    "AbsSpectrograph",
    "RegularSpectrum",
    "RelativeSpectrum",
    "build_spectrograph",
    "average_spectrographs",
    "relative_spectrum",
    "SpectrographAccumulator",
]

logger = logging.getLogger(__name__)

WAVELENGTH_COLUMN = "wavelengths [nm]"
INTENSITY_COLUMN = "intensity"


@dataclass(frozen=True, eq=False)
class RegularSpectrum:
    start: float
    stop: float
    step: float
    values: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", np.asarray(self.values, dtype=float))

    def __len__(self) -> int:
        return int(self.values.size)

    @property
    def wavelengths(self) -> np.ndarray:
        return self.start + np.arange(self.values.size, dtype=float) * self.step

    @property
    def missing(self) -> np.ndarray:
        return np.isnan(self.values)

    def compare(self, other: "RegularSpectrum") -> bool:
        return self.start == other.start and self.stop == other.stop and self.step == other.step

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({WAVELENGTH_COLUMN: self.wavelengths, INTENSITY_COLUMN: self.values})


class AbsSpectrograph(RegularSpectrum):
    """Absolute lightness sampled at ``start + i * step``."""

    def add(self, other: "AbsSpectrograph") -> "AbsSpectrograph":
        _require_compatible(self, other)
        return AbsSpectrograph(self.start, self.stop, self.step, self.values + other.values)

    def scale(self, factor: float) -> "AbsSpectrograph":
        return AbsSpectrograph(self.start, self.stop, self.step, self.values * factor)


class RelativeSpectrum(RegularSpectrum):
    """Element-wise ratio of a signal spectrograph to a reference one."""


def _require_compatible(first: RegularSpectrum, second: RegularSpectrum) -> None:
    if not first.compare(second):
        raise CompatibilityError(
            "Spectrograph axes differ: "
            f"({first.start}, {first.stop}, {first.step}) vs ({second.start}, {second.stop}, {second.step})"
        )
    if len(first) != len(second):
        raise CompatibilityError(f"Spectrograph lengths differ: {len(first)} vs {len(second)}")


def build_spectrograph(
    image: np.ndarray,
    spectral_lines: SpectralLines,
    start: float,
    stop: float,
    step: float,
    *,
    lightness: str = "mean",
) -> AbsSpectrograph:
    """Sample ``image`` along the fitted line of every wavelength on the grid.

    Both ends of the grid are mapped before any sampling so a range outside
    the grating's diffraction limit raises :class:`DomainError` up front.
    Wavelengths whose line misses the image are stored as ``NaN``.
    """

    wavelengths = wavelength_grid(start, stop, step)
    spectral_lines.line_with_wavelength(float(wavelengths[0]))
    spectral_lines.line_with_wavelength(float(wavelengths[-1]))

    img = np.asarray(image)
    values = np.empty(wavelengths.size, dtype=float)
    for index, wavelength in enumerate(wavelengths):
        line = spectral_lines.line_with_wavelength(float(wavelength))
        values[index] = sample_line_or_nan(img, line, lightness=lightness)

    missing = int(np.count_nonzero(np.isnan(values)))
    if missing:
        logger.warning("%d of %d wavelengths fall outside the image", missing, values.size)
    return AbsSpectrograph(float(start), float(stop), float(step), values)


def average_spectrographs(graphs: Sequence[AbsSpectrograph]) -> AbsSpectrograph:
    if not graphs:
        raise ValueError("Cannot average an empty list of spectrographs")
    first = graphs[0]
    for graph in graphs[1:]:
        _require_compatible(first, graph)
    total = first
    for graph in graphs[1:]:
        total = total.add(graph)
    return total.scale(1.0 / len(graphs))


def relative_spectrum(signal: AbsSpectrograph, reference: AbsSpectrograph) -> RelativeSpectrum:
    """Divide ``signal`` by ``reference``; zero references give ``inf``/``NaN``."""

    _require_compatible(signal, reference)
    with np.errstate(divide="ignore", invalid="ignore"):
        values = signal.values / reference.values
    invalid = int(np.count_nonzero(~np.isfinite(values)))
    if invalid:
        logger.warning("%d relative values are not finite (zero or missing reference)", invalid)
    return RelativeSpectrum(signal.start, signal.stop, signal.step, values)


class SpectrographAccumulator:
    """Collect ``take_average`` spectrographs and publish their mean."""

    def __init__(self, take_average: int = 1):
        self._buffer: List[AbsSpectrograph] = []
        self.current: Optional[AbsSpectrograph] = None
        self.take_average = take_average

    @property
    def take_average(self) -> int:
        return self._take_average

    @take_average.setter
    def take_average(self, value: int) -> None:
        value = int(value)
        if value < 1:
            raise ValueError("At least one spectrograph must be averaged")
        self._take_average = value

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def push(self, graph: AbsSpectrograph) -> Optional[AbsSpectrograph]:
        """Add ``graph``; return the new average once enough frames arrived."""

        if self._buffer and not self._buffer[0].compare(graph):
            logger.info("wavelength axis changed; dropping %d buffered spectrographs", len(self._buffer))
            self._buffer = []
        self._buffer.append(graph)
        if len(self._buffer) < self._take_average:
            return None
        self.current = average_spectrographs(self._buffer)
        self._buffer = []
        return self.current

    def reset(self) -> None:
        self._buffer = []
        self.current = None
