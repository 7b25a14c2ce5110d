import io

import numpy as np
import pytest
from openpyxl import load_workbook

from speck_app.engine.export import write_columns_csv, write_spectrograph_csv, write_spectrograph_workbook
from speck_app.engine.spectrograph import AbsSpectrograph, RelativeSpectrum


def test_csv_has_comment_block_header_and_rows(tmp_path):
    graph = AbsSpectrograph(400, 402, 1, [0.25, 0.5, 0.75])
    path = write_spectrograph_csv(tmp_path / "out" / "graph.csv", graph, "lamp A\nslit 50um")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "# lamp A"
    assert lines[1] == "# slit 50um"
    assert lines[2] == "wavelengths [nm],intensity"
    assert lines[3:] == ["400.0,0.25", "401.0,0.5", "402.0,0.75"]


def test_csv_keeps_missing_and_infinite_values_visible(tmp_path):
    relative = RelativeSpectrum(400, 402, 1, [1.0, np.nan, np.inf])
    path = write_spectrograph_csv(tmp_path / "rel.csv", relative)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "wavelengths [nm],intensity"
    assert lines[2] == "401.0,nan"
    assert lines[3] == "402.0,inf"


def test_csv_can_be_written_to_an_open_stream():
    graph = AbsSpectrograph(400, 401, 1, [0.25, 0.5])
    stream = io.StringIO()

    assert write_spectrograph_csv(stream, graph, "lamp A") is None

    assert stream.getvalue().splitlines() == ["# lamp A", "wavelengths [nm],intensity", "400.0,0.25", "401.0,0.5"]
    assert not stream.closed


def test_column_writer_checks_its_input(tmp_path):
    with pytest.raises(ValueError):
        write_columns_csv(tmp_path / "bad.csv", ["a", "b"], [[1.0]])
    with pytest.raises(ValueError):
        write_columns_csv(tmp_path / "bad.csv", ["a", "b"], [[1.0], [1.0, 2.0]])


def test_workbook_has_data_and_metadata_sheets(tmp_path):
    graph = AbsSpectrograph(400, 402, 1, [0.25, np.nan, 0.75])
    path = write_spectrograph_workbook(tmp_path / "graph.xlsx", graph, "=not a formula", {"frame": "a.npy"})

    wb = load_workbook(path)
    assert wb.sheetnames == ["Spectrograph", "Metadata"]
    rows = list(wb["Spectrograph"].iter_rows(values_only=True))
    assert rows[0] == ("wavelengths [nm]", "intensity")
    assert rows[2] == (401, None)
    meta = dict(wb["Metadata"].iter_rows(min_row=2, values_only=True))
    assert meta["kind"] == "AbsSpectrograph"
    assert meta["missing"] == 1
    assert meta["frame"] == "a.npy"
    assert meta["comment"] == "'=not a formula"
