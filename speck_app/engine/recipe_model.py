from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from speck_app.engine.annotations import ORIENTATIONS
from speck_app.engine.line_search import ACCEPTANCE_CONDITIONS, LineSearchSettings
from speck_app.engine.sampler import LIGHTNESS_WEIGHTS
from speck_app.engine.session import SpectrographSettings
from speck_app.engine.spectral_mapper import FitSettings

PRESET_DIR = Path(__file__).resolve().parent.parent / "config" / "presets"


@dataclass
class Recipe:
    module: str = "speck"
    params: Dict[str, Any] = field(default_factory=dict)
    version: str = "0.1.0"

    def validate(self) -> list[str]:
        errs = []
        calib = self.params.get("calibration", {})
        if calib.get("orientation", "vertical") not in ORIENTATIONS:
            errs.append(f"Orientation must be one of {', '.join(ORIENTATIONS)}")
        for key, label in (
            ("grating_const", "Grating constant"),
            ("distance_mm", "Distance to sensor"),
            ("sensor_width_mm", "Sensor width"),
        ):
            value = calib.get(key)
            if value is None:
                continue
            try:
                if float(value) <= 0:
                    errs.append(f"{label} must be positive")
            except (TypeError, ValueError):
                errs.append(f"{label} must be numeric")
        angle = calib.get("angle_deg")
        if angle is not None:
            try:
                if not -90.0 <= float(angle) <= 90.0:
                    errs.append("Angle must lie between -90 and 90 degrees")
            except (TypeError, ValueError):
                errs.append("Angle must be numeric")

        optimizer = self.params.get("optimizer", {})
        iterations = optimizer.get("max_iterations")
        if iterations is not None:
            try:
                if int(iterations) < 0:
                    errs.append("Iteration count must not be negative")
            except (TypeError, ValueError):
                errs.append("Iteration count must be numeric")
        step = optimizer.get("initial_step")
        if step is not None:
            try:
                if float(step) <= 0:
                    errs.append("Initial step size must be positive")
            except (TypeError, ValueError):
                errs.append("Initial step size must be numeric")
        condition = optimizer.get("condition")
        if condition is not None and condition not in ACCEPTANCE_CONDITIONS:
            errs.append(f"Acceptance condition must be one of {', '.join(ACCEPTANCE_CONDITIONS)}")
        tolerance = optimizer.get("tolerance")
        if tolerance is not None:
            try:
                if float(tolerance) < 0:
                    errs.append("Convergence tolerance must not be negative")
            except (TypeError, ValueError):
                errs.append("Convergence tolerance must be numeric")

        graph = self.params.get("spectrograph", {})
        g_start = graph.get("start")
        g_stop = graph.get("stop")
        try:
            if g_start is not None and g_stop is not None and float(g_start) > float(g_stop):
                errs.append("Spectrograph start must not exceed stop")
        except (TypeError, ValueError):
            errs.append("Spectrograph bounds must be numeric")
        g_step = graph.get("step")
        if g_step is not None:
            try:
                if float(g_step) <= 0:
                    errs.append("Spectrograph step must be positive")
            except (TypeError, ValueError):
                errs.append("Spectrograph step must be numeric")
        average = graph.get("take_average")
        if average is not None:
            try:
                if int(average) < 1:
                    errs.append("At least one spectrograph must be averaged")
            except (TypeError, ValueError):
                errs.append("Spectrograph average count must be numeric")
        lightness = graph.get("lightness")
        if lightness is not None and lightness not in LIGHTNESS_WEIGHTS:
            errs.append(f"Lightness must be one of {', '.join(LIGHTNESS_WEIGHTS)}")
        return errs

    def line_search_settings(self) -> LineSearchSettings:
        optimizer = self.params.get("optimizer", {})
        defaults = LineSearchSettings()
        tolerance = optimizer.get("tolerance", defaults.tolerance)
        return LineSearchSettings(
            max_iterations=int(optimizer.get("max_iterations", defaults.max_iterations)),
            initial_step=float(optimizer.get("initial_step", defaults.initial_step)),
            c=float(optimizer.get("c", defaults.c)),
            tau=float(optimizer.get("tau", defaults.tau)),
            condition=str(optimizer.get("condition", defaults.condition)),
            max_shrinks=int(optimizer.get("max_shrinks", defaults.max_shrinks)),
            report_every=int(optimizer.get("report_every", defaults.report_every)),
            tolerance=None if tolerance is None else float(tolerance),
        )

    def fit_settings(self) -> FitSettings:
        calib = self.params.get("calibration", {})
        defaults = FitSettings()
        return FitSettings(
            grating_const=float(calib.get("grating_const", defaults.grating_const)),
            angle_deg=float(calib.get("angle_deg", defaults.angle_deg)),
            distance_mm=float(calib.get("distance_mm", defaults.distance_mm)),
            sensor_width_mm=float(calib.get("sensor_width_mm", defaults.sensor_width_mm)),
            orientation=str(calib.get("orientation", defaults.orientation)),
            line_search=self.line_search_settings(),
        )

    def spectrograph_settings(self) -> SpectrographSettings:
        graph = self.params.get("spectrograph", {})
        defaults = SpectrographSettings()
        return SpectrographSettings(
            start=float(graph.get("start", defaults.start)),
            stop=float(graph.get("stop", defaults.stop)),
            step=float(graph.get("step", defaults.step)),
            take_average=int(graph.get("take_average", defaults.take_average)),
            lightness=str(graph.get("lightness", defaults.lightness)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"module": self.module, "version": self.version, "params": self.params}

    @classmethod
    def from_dict(cls, content: Dict[str, Any]) -> "Recipe":
        if not isinstance(content, dict):
            raise TypeError("Recipe file must contain a mapping at the top level.")
        params = content.get("params") or {}
        if not isinstance(params, dict):
            raise TypeError("Recipe params must be a mapping")
        return cls(
            module=str(content.get("module", "speck")),
            params=params,
            version=str(content.get("version", "0.1.0")),
        )


def load_recipe(path: Union[str, Path]) -> Recipe:
    with Path(path).open("r", encoding="utf-8") as handle:
        content = yaml.safe_load(handle) or {}
    return Recipe.from_dict(content)


def load_preset(name: str = "speck_default") -> Recipe:
    filename = name if name.lower().endswith((".yaml", ".yml")) else f"{name}.yaml"
    return load_recipe(PRESET_DIR / filename)


def save_recipe(recipe: Recipe, path: Union[str, Path]) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(recipe.to_dict(), handle, sort_keys=False)
    return target
