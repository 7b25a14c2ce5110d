import pytest
import yaml

from speck_app.engine.annotations import HORIZONTAL
from speck_app.engine.calibration import Calibration
from speck_app.engine.line_search import LineSearchSettings
from speck_app.engine.spectral_mapper import FitSettings
from speck_app.io.calibration_file import (
    CalibrationFileError,
    calibration_from_dict,
    load_calibration,
    save_calibration,
)
from speck_app.tests.speck_test_utils import SCENARIO_LINES, fast_settings


def _calibration():
    calibration = Calibration(fast_settings(300, grating_const=600.0))
    for line in SCENARIO_LINES:
        calibration.store.add_line(line.wavelength, line.start, line.end)
    return calibration


def test_annotations_and_settings_survive_a_round_trip(tmp_path):
    calibration = _calibration()
    path = save_calibration(tmp_path / "calib.yaml", calibration)

    loaded = load_calibration(path)
    assert loaded.store.lines == calibration.store.lines
    assert loaded.settings == calibration.settings
    assert loaded.spectral is None


def test_fitted_model_is_stored_and_reused(tmp_path):
    calibration = _calibration()
    spectral = calibration.generate_regression()
    path = save_calibration(tmp_path / "calib.yaml", calibration)

    content = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert content["model"]["grating_const"] == 600.0
    assert [item["wavelength"] for item in content["lines"]] == [450, 550, 650]

    loaded = load_calibration(path)
    assert loaded.spectral == spectral
    assert loaded.get_line(500) == spectral.line_with_wavelength(500)


def test_missing_settings_fall_back_to_defaults():
    content = {
        "orientation": HORIZONTAL,
        "lines": [{"wavelength": 500, "start": [0.0, 0.2], "end": [1.0, 0.2]}],
    }
    defaults = FitSettings(grating_const=300.0, line_search=LineSearchSettings(max_iterations=10))
    calibration = calibration_from_dict(content, defaults)
    assert calibration.settings.orientation == HORIZONTAL
    assert calibration.settings.grating_const == 300.0
    assert calibration.settings.line_search.max_iterations == 10
    assert calibration.store.orientation == HORIZONTAL


def test_malformed_files_are_reported(tmp_path):
    with pytest.raises(CalibrationFileError):
        calibration_from_dict(["not", "a", "mapping"])
    with pytest.raises(CalibrationFileError):
        calibration_from_dict({"lines": [{"wavelength": 500, "start": [0.0, 0.0]}]})
    with pytest.raises(CalibrationFileError):
        calibration_from_dict({"settings": {"optimizer": {"momentum": 0.9}}})
    with pytest.raises(CalibrationFileError):
        calibration_from_dict({"version": 99})

    broken = tmp_path / "broken.yaml"
    broken.write_text("lines: [unclosed\n", encoding="utf-8")
    with pytest.raises(CalibrationFileError):
        load_calibration(broken)
