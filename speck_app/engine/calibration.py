from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional

from speck_app.engine.annotations import Line, LineAnnotationStore
from speck_app.engine.spectral_mapper import FitSettings, ProgressCallback, SpectralLines, fit_spectral_lines

__all__ = ["Calibration"]

logger = logging.getLogger(__name__)


class Calibration:
    """Annotation store, physical settings and the model fitted from them.

    The model is fitted lazily on first use and dropped whenever the
    annotations or settings change.
    """

    def __init__(self, settings: Optional[FitSettings] = None, store: Optional[LineAnnotationStore] = None):
        self.settings = settings or FitSettings()
        self.store = store or LineAnnotationStore(self.settings.orientation)
        self.store.set_orientation(self.settings.orientation)
        self._spectral: Optional[SpectralLines] = None
        self._fitted_revision: Optional[int] = None

    @property
    def spectral(self) -> Optional[SpectralLines]:
        if self._spectral is not None and self._fitted_revision != self.store.revision:
            self._spectral = None
            self._fitted_revision = None
        return self._spectral

    def update_settings(self, **changes) -> None:
        self.settings = replace(self.settings, **changes)
        self.store.set_orientation(self.settings.orientation)
        self.discard_model()

    def adopt_model(self, spectral: SpectralLines) -> None:
        """Use a previously fitted model for the current annotations."""

        self._spectral = spectral
        self._fitted_revision = self.store.revision

    def discard_model(self) -> None:
        self._spectral = None
        self._fitted_revision = None

    def generate_regression(self, progress: Optional[ProgressCallback] = None) -> SpectralLines:
        try:
            spectral = fit_spectral_lines(self.store.lines, self.settings, progress=progress)
        except ValueError:
            logger.error("calibration is invalid")
            raise
        # keep the store in the canonical, sorted order the fit used
        self.store.validate()
        self.adopt_model(spectral)
        return spectral

    def ensure_model(self) -> SpectralLines:
        spectral = self.spectral
        if spectral is None:
            spectral = self.generate_regression()
        return spectral

    def get_lines(self, start: float, stop: float, step: float) -> List[Line]:
        return self.ensure_model().lines_between(start, stop, step)

    def get_line(self, wavelength: float) -> Line:
        return self.ensure_model().line_with_wavelength(wavelength)
