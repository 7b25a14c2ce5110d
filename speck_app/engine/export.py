from __future__ import annotations

import csv
import math
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, TextIO

import numpy as np
from openpyxl import Workbook

from speck_app.engine.spectrograph import INTENSITY_COLUMN, WAVELENGTH_COLUMN, RegularSpectrum


def _ensure_parent(path: Path) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)


def _clean_value(value: Any) -> Any:
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return value
    if isinstance(value, (Path, os.PathLike)):
        value = os.fspath(value)
    if isinstance(value, str):
        if value and value[0] in "=+-@":
            if not value.startswith("'"):
                return "'" + value
        return value
    return value


def _comment_lines(comment: str) -> list[str]:
    return [f"# {line}".rstrip() for line in str(comment or "").splitlines()]


def _write_rows(handle: TextIO, headers: Sequence[str], columns: Sequence[Sequence[float]], comment: str) -> None:
    for line in _comment_lines(comment):
        handle.write(line + "\n")
    writer = csv.writer(handle, lineterminator="\n")
    writer.writerow(list(headers))
    for row in zip(*columns):
        writer.writerow([float(value) for value in row])


def write_columns_csv(
    out_path: str | Path | TextIO,
    headers: Sequence[str],
    columns: Sequence[Sequence[float]],
    comment: str = "",
) -> Path | None:
    """Write equally long ``columns`` below a ``#`` comment block.

    ``out_path`` is either a file path or an open text stream such as
    ``sys.stdout``; streams are written to but not closed and ``None`` is
    returned. Non-finite values are written as ``nan``/``inf`` so missing
    samples and zero references stay visible.
    """

    if len(headers) != len(columns):
        raise ValueError("Every column needs exactly one header")
    lengths = {len(column) for column in columns}
    if len(lengths) > 1:
        raise ValueError(f"Columns have different lengths: {sorted(lengths)}")

    if hasattr(out_path, "write"):
        _write_rows(out_path, headers, columns, comment)
        return None

    csv_path = Path(out_path)
    _ensure_parent(csv_path)
    with csv_path.open("w", newline="", encoding="utf-8") as handle:
        _write_rows(handle, headers, columns, comment)
    return csv_path


def write_spectrograph_csv(
    out_path: str | Path | TextIO, spectrum: RegularSpectrum, comment: str = ""
) -> Path | None:
    return write_columns_csv(
        out_path,
        [WAVELENGTH_COLUMN, INTENSITY_COLUMN],
        [spectrum.wavelengths, spectrum.values],
        comment,
    )


def write_spectrograph_workbook(
    out_path: str | Path,
    spectrum: RegularSpectrum,
    comment: str = "",
    metadata: Mapping[str, Any] | None = None,
) -> Path:
    """Write ``spectrum`` to a workbook; missing values become empty cells."""

    workbook_path = Path(out_path)
    _ensure_parent(workbook_path)

    wb = Workbook()
    ws = wb.active
    ws.title = "Spectrograph"
    ws.append([WAVELENGTH_COLUMN, INTENSITY_COLUMN])
    for wavelength, value in zip(spectrum.wavelengths, spectrum.values):
        ws.append([_clean_value(wavelength), _clean_value(value)])

    meta: Dict[str, Any] = {
        "kind": type(spectrum).__name__,
        "start": spectrum.start,
        "stop": spectrum.stop,
        "step": spectrum.step,
        "missing": int(np.count_nonzero(~np.isfinite(spectrum.values))),
    }
    if comment:
        meta["comment"] = comment
    meta.update(metadata or {})

    ws_meta = wb.create_sheet("Metadata")
    ws_meta.append(["key", "value"])
    for key, value in meta.items():
        ws_meta.append([str(key), _clean_value(value)])

    wb.save(workbook_path)
    return workbook_path
