import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

pytest.importorskip("PyQt6.QtCore", exc_type=ImportError)
from PyQt6 import QtCore

from speck_app.engine.calibration import Calibration
from speck_app.engine.errors import CalibrationValidationError
from speck_app.engine.run_controller import FitController
from speck_app.engine.spectral_mapper import SpectralLines
from speck_app.tests.speck_test_utils import SCENARIO_LINES, fast_settings


@pytest.fixture(scope="module")
def qt_app():
    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    return app


def _run(controller, calibration):
    finished = []
    progress = []
    loop = QtCore.QEventLoop()

    def _stop(result):
        finished.append(result)
        loop.quit()

    controller.job_finished.connect(_stop)
    controller.job_progress.connect(progress.append)
    controller.start(calibration)

    QtCore.QTimer.singleShot(20000, loop.quit)
    loop.exec()
    return finished, progress


def test_fit_controller_adopts_the_fitted_model(qt_app):
    calibration = Calibration(fast_settings(1200))
    for line in SCENARIO_LINES:
        calibration.store.add_line(line.wavelength, line.start, line.end)

    controller = FitController()
    finished, progress = _run(controller, calibration)

    assert finished, "FitController did not emit job_finished"
    assert isinstance(finished[0], SpectralLines)
    assert calibration.spectral is finished[0]
    assert progress[-1] == 100
    assert not controller.is_running()


def test_fit_controller_reports_invalid_calibrations(qt_app):
    calibration = Calibration(fast_settings(10))
    calibration.store.add_line(500, (0.5, 0.0), (0.5, 1.0))

    controller = FitController()
    finished, _progress = _run(controller, calibration)

    assert finished
    assert isinstance(finished[0], CalibrationValidationError)
    assert calibration.spectral is None
