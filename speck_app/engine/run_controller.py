from PyQt6.QtCore import QObject, pyqtSignal, QThreadPool, QRunnable
from typing import Optional

from speck_app.engine.calibration import Calibration
from speck_app.engine.line_search import IterationState
from speck_app.engine.spectral_mapper import SpectralLines, fit_spectral_lines


class FitCancelled(RuntimeError):
    pass


class JobSignals(QObject):
    progress = pyqtSignal(int)
    message = pyqtSignal(str)
    finished = pyqtSignal(object)  # SpectralLines or Exception


class FitRunnable(QRunnable):
    """Fit both boundaries of ``calibration`` off the GUI thread.

    The fit uses a snapshot of the annotations; the caller decides whether to
    adopt the emitted model.
    """

    def __init__(self, calibration: Calibration):
        super().__init__()
        self.lines = calibration.store.lines
        self.settings = calibration.settings
        self.signals = JobSignals()
        self._cancelled = False

    def run(self):
        try:
            self._emit_message("Fitting calibration...")
            self._raise_if_cancelled()
            result = fit_spectral_lines(self.lines, self.settings, progress=self._on_progress)
            self.signals.progress.emit(100)
            self.signals.finished.emit(result)
        except Exception as e:
            self.signals.finished.emit(e)

    def cancel(self):
        self._cancelled = True
        self._emit_message("Cancellation requested")

    def _on_progress(self, boundary: str, state: IterationState):
        self._raise_if_cancelled()
        total = max(self.settings.line_search.max_iterations, 1)
        fraction = min(state.iteration / total, 1.0)
        offset = 0.0 if boundary == "start" else 0.5
        self.signals.progress.emit(int(100 * (offset + fraction / 2)))
        self._emit_message(f"{boundary}: iteration {state.iteration}, cost {state.cost:.3g}")

    def _raise_if_cancelled(self):
        if self._cancelled:
            raise FitCancelled("Cancelled")

    def _emit_message(self, message: str):
        self.signals.message.emit(message)


class FitController(QObject):
    job_started = pyqtSignal()
    job_finished = pyqtSignal(object)
    job_progress = pyqtSignal(int)
    job_message = pyqtSignal(str)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.pool = QThreadPool.globalInstance()
        self._current_runnable: Optional[FitRunnable] = None
        self._calibration: Optional[Calibration] = None
        self._revision: Optional[int] = None

    def start(self, calibration: Calibration):
        runnable = FitRunnable(calibration)
        runnable.signals.finished.connect(self._on_finished)
        runnable.signals.progress.connect(self.job_progress)
        runnable.signals.message.connect(self.job_message)
        self._current_runnable = runnable
        self._calibration = calibration
        self._revision = calibration.store.revision
        self.job_started.emit()
        self.pool.start(runnable)

    def cancel(self) -> bool:
        if self._current_runnable is None:
            return False
        self._current_runnable.cancel()
        return True

    def _on_finished(self, result):
        calibration = self._calibration
        # annotations edited while fitting make the result stale
        if (
            isinstance(result, SpectralLines)
            and calibration is not None
            and calibration.store.revision == self._revision
            and calibration.settings == self._current_runnable.settings
        ):
            calibration.store.validate()
            calibration.adopt_model(result)
        self._current_runnable = None
        self._calibration = None
        self._revision = None
        self.job_finished.emit(result)

    def is_running(self) -> bool:
        return self._current_runnable is not None
