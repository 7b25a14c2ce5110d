"""Live measurement: turn camera frames into averaged spectrographs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from speck_app.engine.calibration import Calibration
from speck_app.engine.export import write_spectrograph_csv
from speck_app.engine.geometry import wavelength_grid
from speck_app.engine.sampler import LIGHTNESS_WEIGHTS
from speck_app.engine.spectral_mapper import SpectralLines
from speck_app.engine.spectrograph import (
    AbsSpectrograph,
    RegularSpectrum,
    SpectrographAccumulator,
    build_spectrograph,
    relative_spectrum,
)

__all__ = ["FrameSource", "SpectrographSettings", "MeasurementSession"]

logger = logging.getLogger(__name__)

# Returns the latest frame or None when the camera has nothing new.
FrameSource = Callable[[], Optional[np.ndarray]]


@dataclass(frozen=True)
class SpectrographSettings:
    start: float = 400.0
    stop: float = 700.0
    step: float = 1.0
    take_average: int = 1
    lightness: str = "mean"

    def validate(self) -> list[str]:
        errs = []
        try:
            wavelength_grid(self.start, self.stop, self.step)
        except ValueError as exc:
            errs.append(str(exc))
        if int(self.take_average) < 1:
            errs.append("At least one spectrograph must be averaged")
        if self.lightness not in LIGHTNESS_WEIGHTS:
            errs.append(f"Unknown lightness mode: {self.lightness}")
        return errs


class MeasurementSession:
    """Poll ``frame_source``, build spectrographs and keep a reference.

    ``calibration`` may be a :class:`Calibration` (fitted lazily, refitted
    after edits) or an already fitted :class:`SpectralLines`.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        calibration: Union[Calibration, SpectralLines],
        settings: Optional[SpectrographSettings] = None,
    ):
        self.frame_source = frame_source
        self.calibration = calibration
        self.settings = settings or SpectrographSettings()
        errs = self.settings.validate()
        if errs:
            raise ValueError("; ".join(errs))
        self.accumulator = SpectrographAccumulator(self.settings.take_average)
        self.reference: Optional[AbsSpectrograph] = None
        self.relative = False

    @property
    def spectral_lines(self) -> SpectralLines:
        if isinstance(self.calibration, Calibration):
            return self.calibration.ensure_model()
        return self.calibration

    @property
    def current(self) -> Optional[AbsSpectrograph]:
        return self.accumulator.current

    def configure(self, **changes) -> None:
        settings = replace(self.settings, **changes)
        errs = settings.validate()
        if errs:
            raise ValueError("; ".join(errs))
        self.settings = settings
        self.accumulator.take_average = settings.take_average

    def process(self, image: np.ndarray) -> Optional[AbsSpectrograph]:
        """Build a spectrograph of ``image``; return the new average if one completed."""

        graph = build_spectrograph(
            image,
            self.spectral_lines,
            self.settings.start,
            self.settings.stop,
            self.settings.step,
            lightness=self.settings.lightness,
        )
        return self.accumulator.push(graph)

    def poll(self) -> Optional[AbsSpectrograph]:
        frame = self.frame_source()
        if frame is None:
            logger.debug("no frame available")
            return None
        return self.process(frame)

    def take_reference(self) -> AbsSpectrograph:
        if self.current is None:
            raise RuntimeError("No spectrograph has been measured yet")
        self.reference = self.current
        return self.reference

    def result(self) -> Optional[RegularSpectrum]:
        """The latest average, divided by the reference in relative mode."""

        if self.current is None:
            return None
        if not self.relative:
            return self.current
        if self.reference is None:
            raise RuntimeError("Relative mode requires a reference spectrograph")
        return relative_spectrum(self.current, self.reference)

    def save_csv(self, out_path: str | Path, comment: str = "") -> Path:
        spectrum = self.result()
        if spectrum is None:
            raise RuntimeError("Nothing to save: no spectrograph has been measured yet")
        path = write_spectrograph_csv(out_path, spectrum, comment)
        logger.info("saved %s to %s", type(spectrum).__name__, path)
        return path
