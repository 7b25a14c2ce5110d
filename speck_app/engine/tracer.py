"""Follow the lightness at a few fixed wavelengths across camera frames."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

from speck_app.engine.errors import SamplingError
from speck_app.engine.export import write_columns_csv
from speck_app.engine.sampler import sample_line
from speck_app.engine.spectral_mapper import LARGEST_WAVELENGTH, SMALLEST_WAVELENGTH, SpectralLines

__all__ = ["DEFAULT_TRACE_WAVELENGTH", "TIME_COLUMN", "PeakTrace", "TraceRecorder", "clamp_wavelength"]

logger = logging.getLogger(__name__)

DEFAULT_TRACE_WAVELENGTH = 500.0
TIME_COLUMN = "Time [s]"


def clamp_wavelength(wavelength: float) -> float:
    return float(min(max(float(wavelength), SMALLEST_WAVELENGTH), LARGEST_WAVELENGTH))


class PeakTrace:
    """Lightness history of the line belonging to one wavelength.

    The reference is the absolute value every recorded sample is divided by.
    Until a frame has been seen both ``current`` and ``reference`` are ``NaN``;
    the first sample also becomes the reference.
    """

    def __init__(self, wavelength: float = DEFAULT_TRACE_WAVELENGTH, lightness: str = "mean"):
        self.wavelength = clamp_wavelength(wavelength)
        self.lightness = lightness
        self.reference = math.nan
        self.current = math.nan
        self.values: List[float] = []

    def __repr__(self) -> str:
        return f"PeakTrace(wavelength={self.wavelength:g}, current={self.current:g}, reference={self.reference:g})"

    def update(self, image: np.ndarray, spectral_lines: SpectralLines, record: bool = False) -> float:
        line = spectral_lines.line_with_wavelength(self.wavelength)
        try:
            self.current = sample_line(image, line, lightness=self.lightness)
        except SamplingError:
            logger.warning("line for %g nm misses the image", self.wavelength)
            self.current = math.nan
        if math.isnan(self.reference):
            self.reference = self.current
        if record:
            self.values.append(self.current)
        return self.current

    def take_reference(self) -> None:
        self.reference = self.current

    def clear(self) -> None:
        self.values = []

    @property
    def current_relative(self) -> float:
        if self.reference == 0.0:
            return math.inf if self.current > 0 else math.nan
        return self.current / self.reference

    def relative_values(self) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.asarray(self.values, dtype=float) / self.reference


class TraceRecorder:
    """A set of :class:`PeakTrace` objects sharing one time axis.

    Timestamps are passed in by the caller (seconds on any monotonic clock) so
    recordings stay reproducible.
    """

    def __init__(self, wavelengths=(DEFAULT_TRACE_WAVELENGTH,), lightness: str = "mean"):
        self.lightness = lightness
        self.traces: List[PeakTrace] = [PeakTrace(wl, lightness) for wl in wavelengths]
        self.times: List[float] = []
        self.recording = False
        self._t0: Optional[float] = None
        self._sort()

    @property
    def wavelengths(self) -> List[float]:
        return [trace.wavelength for trace in self.traces]

    def _sort(self) -> None:
        self.traces.sort(key=lambda trace: trace.wavelength)

    def add_trace(self, wavelength: float = DEFAULT_TRACE_WAVELENGTH) -> PeakTrace:
        trace = PeakTrace(wavelength, self.lightness)
        self.traces.append(trace)
        self._reconfigure()
        return trace

    def remove_trace(self, wavelength: float) -> bool:
        for index, trace in enumerate(self.traces):
            if trace.wavelength == clamp_wavelength(wavelength):
                del self.traces[index]
                return True
        return False

    def set_wavelength(self, index: int, wavelength: float) -> None:
        """Move trace ``index`` to a new wavelength; restarts the reference."""

        self.traces[index].wavelength = clamp_wavelength(wavelength)
        # the old lightness belongs to another line
        self.traces[index].current = math.nan
        self.traces[index].reference = math.nan
        self._reconfigure()

    def _reconfigure(self) -> None:
        # every trace must share the time axis, so a changed set restarts the recording
        self._sort()
        if self.recording:
            self.start_recording(self._t0)
        else:
            self.take_reference()

    def update(self, image: np.ndarray, spectral_lines: SpectralLines, timestamp: Optional[float] = None) -> None:
        if self.recording:
            if timestamp is None:
                raise ValueError("A timestamp is required while recording")
            self.times.append(float(timestamp) - float(self._t0))
        for trace in self.traces:
            trace.update(image, spectral_lines, self.recording)

    def start_recording(self, t0: float) -> None:
        self.take_reference()
        self.times = []
        self._t0 = float(t0)
        self.recording = True
        logger.info("recording %d traces", len(self.traces))

    def stop_recording(self) -> None:
        self.recording = False

    def take_reference(self) -> None:
        for trace in self.traces:
            trace.clear()
            trace.take_reference()

    def to_frame(self) -> pd.DataFrame:
        data = {TIME_COLUMN: np.asarray(self.times, dtype=float)}
        for trace in self.traces:
            data[f"{trace.wavelength:g}"] = trace.relative_values()
        return pd.DataFrame(data)

    def save_csv(self, out_path: str | Path, comment: str = "") -> Path:
        headers = [TIME_COLUMN] + [f"{trace.wavelength:g}" for trace in self.traces]
        columns = [np.asarray(self.times, dtype=float)] + [trace.relative_values() for trace in self.traces]
        path = write_columns_csv(out_path, headers, columns, comment)
        logger.info("wrote %d trace samples to %s", len(self.times), path)
        return path
