import logging

import pytest

from speck_app.engine.annotations import (
    HORIZONTAL,
    VERTICAL,
    CalibrationLine,
    Line,
    LineAnnotationStore,
    canonicalize,
    validate_lines,
)


def test_vertical_lines_are_drawn_top_to_bottom():
    line = canonicalize(Line((0.3, 0.9), (0.31, 0.1)), VERTICAL)
    assert line.start == (0.31, 0.1)
    assert line.end == (0.3, 0.9)


def test_horizontal_lines_are_drawn_left_to_right():
    line = canonicalize(Line((0.9, 0.4), (0.1, 0.42)), HORIZONTAL)
    assert line.start == (0.1, 0.42)


def test_validation_sorts_by_wavelength_and_canonicalizes():
    lines = [
        CalibrationLine(650, (0.92, 1.0), (0.9, 0.0)),
        CalibrationLine(450, (0.1, 0.0), (0.12, 1.0)),
        CalibrationLine(550, (0.5, 0.0), (0.52, 1.0)),
    ]
    valid, ordered = validate_lines(lines, VERTICAL)
    assert valid
    assert [line.wavelength for line in ordered] == [450, 550, 650]
    assert ordered[-1].start == (0.9, 0.0)


def test_non_monotonic_lines_are_invalid():
    lines = [
        CalibrationLine(450, (0.5, 0.0), (0.5, 1.0)),
        CalibrationLine(550, (0.2, 0.0), (0.2, 1.0)),
        CalibrationLine(650, (0.9, 0.0), (0.9, 1.0)),
    ]
    valid, ordered = validate_lines(lines, VERTICAL)
    assert not valid
    assert [line.wavelength for line in ordered] == [450, 550, 650]


def test_one_crossing_endpoint_is_enough_to_fail():
    lines = [
        CalibrationLine(450, (0.1, 0.0), (0.6, 1.0)),
        CalibrationLine(550, (0.5, 0.0), (0.5, 1.0)),
    ]
    assert not validate_lines(lines, VERTICAL)[0]


def test_horizontal_orientation_checks_y():
    lines = [
        CalibrationLine(500, (0.0, 0.2), (1.0, 0.25)),
        CalibrationLine(600, (0.0, 0.6), (1.0, 0.65)),
    ]
    assert validate_lines(lines, HORIZONTAL)[0]
    crossed = [lines[0], CalibrationLine(600, (0.0, 0.1), (1.0, 0.1))]
    assert not validate_lines(crossed, HORIZONTAL)[0]
    # the same lines drawn vertically would be judged by x, which is constant
    assert validate_lines(crossed, VERTICAL)[0]


def test_equal_wavelengths_keep_their_order():
    first = CalibrationLine(500, (0.2, 0.0), (0.2, 1.0))
    second = CalibrationLine(500, (0.3, 0.0), (0.3, 1.0))
    _valid, ordered = validate_lines([first, second], VERTICAL)
    assert ordered == [first, second]


def test_gesture_commits_a_line_with_its_wavelength():
    store = LineAnnotationStore()
    store.start_line((0.4, 0.9))
    assert store.pending == (0.4, 0.9)
    store.end_line((0.41, 0.1))
    assert store.completed == Line((0.4, 0.9), (0.41, 0.1))

    line = store.commit_wavelength("546")
    assert line.wavelength == 546
    assert store.lines == (line,)
    assert store.pending is None
    assert store.completed is None


def test_ending_without_start_is_ignored_with_a_warning(caplog):
    store = LineAnnotationStore()
    with caplog.at_level(logging.WARNING):
        store.end_line((0.5, 0.5))
    assert store.completed is None
    assert "without starting" in caplog.text


def test_wavelength_without_line_is_ignored(caplog):
    store = LineAnnotationStore()
    with caplog.at_level(logging.WARNING):
        assert store.commit_wavelength(500) is None
    assert len(store) == 0
    assert "no completed line" in caplog.text


def test_wavelength_text_must_be_an_integer():
    store = LineAnnotationStore()
    store.start_line((0.1, 0.0))
    store.end_line((0.1, 1.0))
    with pytest.raises(ValueError, match="valid integer"):
        store.commit_wavelength("5x0")
    with pytest.raises(ValueError):
        store.commit_wavelength(512.5)
    assert store.completed is not None


def test_calibration_lines_need_positive_whole_wavelengths():
    with pytest.raises(ValueError):
        CalibrationLine(0, (0, 0), (0, 1))
    with pytest.raises(ValueError):
        CalibrationLine(500.5, (0, 0), (0, 1))


def test_revision_tracks_edits_of_the_committed_set():
    store = LineAnnotationStore()
    start = store.revision
    store.add_line(450, (0.1, 0.0), (0.1, 1.0))
    store.add_line(550, (0.5, 0.0), (0.5, 1.0))
    assert store.revision == start + 2
    assert store.validate()
    assert store.revision == start + 2
    store.set_orientation(HORIZONTAL)
    assert store.revision == start + 3
    store.clear()
    assert len(store) == 0
    assert store.revision == start + 4


def test_store_validate_reorders_in_place():
    store = LineAnnotationStore()
    store.add_line(650, (0.9, 1.0), (0.9, 0.0))
    store.add_line(450, (0.1, 0.0), (0.1, 1.0))
    assert store.validate()
    assert [line.wavelength for line in store.lines] == [450, 650]
    assert store.lines[1].start == (0.9, 0.0)


def test_calibration_line_dict_round_trip():
    line = CalibrationLine(589, (0.25, 0.0), (0.3, 1.0))
    assert CalibrationLine.from_dict(line.to_dict()) == line
