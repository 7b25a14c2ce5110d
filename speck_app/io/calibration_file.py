from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

import logging
import yaml

from speck_app.engine.annotations import VERTICAL, CalibrationLine, LineAnnotationStore, check_orientation
from speck_app.engine.calibration import Calibration
from speck_app.engine.line_search import LineSearchSettings
from speck_app.engine.spectral_mapper import FitSettings, SpectralLines

FORMAT_VERSION = 1

logger = logging.getLogger(__name__)


class CalibrationFileError(ValueError):
    pass


def settings_to_dict(settings: FitSettings) -> Dict[str, Any]:
    return {
        "grating_const": settings.grating_const,
        "angle_deg": settings.angle_deg,
        "distance_mm": settings.distance_mm,
        "sensor_width_mm": settings.sensor_width_mm,
        "optimizer": asdict(settings.line_search),
    }


def settings_from_dict(
    data: Dict[str, Any], orientation: str = VERTICAL, defaults: Optional[FitSettings] = None
) -> FitSettings:
    """Missing keys fall back to ``defaults``, then to the built-in settings."""

    defaults = defaults or FitSettings()
    optimizer = {**asdict(defaults.line_search), **(data.get("optimizer") or {})}
    unknown = set(optimizer) - set(asdict(defaults.line_search))
    if unknown:
        raise CalibrationFileError(f"Unknown optimizer settings: {', '.join(sorted(unknown))}")
    return FitSettings(
        grating_const=float(data.get("grating_const", defaults.grating_const)),
        angle_deg=float(data.get("angle_deg", defaults.angle_deg)),
        distance_mm=float(data.get("distance_mm", defaults.distance_mm)),
        sensor_width_mm=float(data.get("sensor_width_mm", defaults.sensor_width_mm)),
        orientation=orientation,
        line_search=LineSearchSettings(**optimizer),
    )


def calibration_to_dict(calibration: Calibration) -> Dict[str, Any]:
    spectral = calibration.spectral
    return {
        "version": FORMAT_VERSION,
        "orientation": calibration.settings.orientation,
        "settings": settings_to_dict(calibration.settings),
        "lines": [line.to_dict() for line in calibration.store.lines],
        "model": spectral.to_dict() if spectral is not None else None,
    }


def calibration_from_dict(content: Dict[str, Any], defaults: Optional[FitSettings] = None) -> Calibration:
    if not isinstance(content, dict):
        raise CalibrationFileError("Calibration file must contain a mapping at the top level.")
    version = int(content.get("version", FORMAT_VERSION))
    if version > FORMAT_VERSION:
        raise CalibrationFileError(f"Unsupported calibration file version {version}")
    try:
        fallback = defaults.orientation if defaults is not None else VERTICAL
        orientation = check_orientation(content.get("orientation", fallback))
        settings = settings_from_dict(content.get("settings") or {}, orientation, defaults)
        lines = [CalibrationLine.from_dict(item) for item in content.get("lines") or []]
    except (KeyError, TypeError, ValueError) as exc:
        raise CalibrationFileError(f"Invalid calibration file: {exc}") from exc

    calibration = Calibration(settings, LineAnnotationStore(orientation, lines))
    model = content.get("model")
    if model is not None:
        try:
            calibration.adopt_model(SpectralLines.from_dict(model))
        except (KeyError, TypeError, ValueError) as exc:
            raise CalibrationFileError(f"Invalid fitted model: {exc}") from exc
    return calibration


def save_calibration(path: str | Path, calibration: Calibration) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(calibration_to_dict(calibration), handle, sort_keys=False)
    logger.info("saved calibration with %d lines to %s", len(calibration.store), target)
    return target


def load_calibration(path: str | Path, defaults: Optional[FitSettings] = None) -> Calibration:
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            content = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise CalibrationFileError(f"Could not parse {source}: {exc}") from exc
    calibration = calibration_from_dict(content, defaults)
    logger.info("loaded calibration with %d lines from %s", len(calibration.store), source)
    return calibration
