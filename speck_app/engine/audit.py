from datetime import datetime
import platform

from speck_app.engine.spectral_mapper import FitSettings, SpectralLines


def start_audit() -> list[str]:
    return [f"Session start: {datetime.now().isoformat()}",
            f"Platform: {platform.platform()}" ]


def log_step(audit: list[str], msg: str):
    audit.append(msg)


def log_fit(audit: list[str], settings: FitSettings, spectral: SpectralLines, line_count: int):
    log_step(audit, f"Calibration: {line_count} lines, {settings.orientation}, "
                    f"grating {settings.grating_const:g} lines/mm")
    for name, boundary in (("start", spectral.start_boundary), ("end", spectral.end_boundary)):
        a, b, c = boundary.params.as_tuple()
        log_step(audit, f"Fit {name}: a={a:.6g} b={b:.6g} c={c:.6g} "
                        f"cost={boundary.cost:.3g} after {boundary.iterations} iterations")
