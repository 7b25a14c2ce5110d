import numpy as np
import pytest

from speck_app.engine.annotations import Line
from speck_app.engine.errors import SamplingError
from speck_app.engine.sampler import (
    full_scale,
    pixel_lightness,
    sample_line,
    sample_line_or_nan,
    xiaolin_wu,
)


def test_walk_on_pixel_centres_has_unit_weights():
    cols, rows, weights = xiaolin_wu((0.0, 2.0), (4.0, 2.0))
    assert cols.tolist() == [0, 1, 2, 3, 4]
    assert rows.tolist() == [2, 2, 2, 2, 2]
    assert weights.tolist() == [1.0] * 5


def test_walk_splits_coverage_between_neighbours():
    cols, rows, weights = xiaolin_wu((0.0, 2.5), (2.0, 2.5))
    pairs = sorted(zip(cols.tolist(), rows.tolist(), weights.tolist()))
    assert pairs == [(0, 2, 0.5), (0, 3, 0.5), (1, 2, 0.5), (1, 3, 0.5), (2, 2, 0.5), (2, 3, 0.5)]


def test_walk_intercept_starts_at_the_first_pixel_centre():
    cols, rows, weights = xiaolin_wu((0.5, 1.0), (4.5, 3.0))
    first_column = sorted((row, weight) for col, row, weight in zip(cols, rows, weights) if col == 1)
    assert [row for row, _weight in first_column] == [1, 2]
    assert [weight for _row, weight in first_column] == pytest.approx([0.75, 0.25])
    assert cols.min() == 1 and cols.max() == 5


def test_steep_walk_steps_along_rows():
    cols, rows, _weights = xiaolin_wu((1.0, 0.0), (1.0, 3.0))
    assert sorted(rows.tolist()) == [0, 1, 2, 3]
    assert set(cols.tolist()) == {1}


def test_sampling_is_symmetric_in_direction():
    rng = np.random.default_rng(7)
    image = rng.integers(0, 256, size=(50, 70, 3), dtype=np.uint8)
    line = Line((0.13, 0.08), (0.71, 0.93))
    assert sample_line(image, line) == sample_line(image, line.reversed())
    shallow = Line((0.05, 0.4), (0.95, 0.55))
    assert sample_line(image, shallow, lightness="rec709") == sample_line(
        image, shallow.reversed(), lightness="rec709"
    )


def test_uniform_image_gives_its_lightness():
    image = np.full((20, 30), 128, dtype=np.uint8)
    value = sample_line(image, Line((0.2, 0.1), (0.8, 0.9)))
    assert value == pytest.approx(128 / 255)


def test_lightness_modes():
    red = np.array([[255, 0, 0]], dtype=float)
    assert pixel_lightness(red, "mean")[0] == pytest.approx(1 / 3)
    assert pixel_lightness(red, "rec709")[0] == pytest.approx(0.2126)
    green = np.array([[0, 255, 0]], dtype=float)
    assert pixel_lightness(green, "rec709")[0] == pytest.approx(0.7152)
    with pytest.raises(ValueError):
        pixel_lightness(red, "hsv")


def test_full_scale_follows_the_dtype():
    assert full_scale(np.uint8) == 255.0
    assert full_scale(np.uint16) == 65535.0
    assert full_scale(np.float32) == 1.0


def test_pixels_outside_the_image_are_skipped():
    image = np.zeros((10, 10), dtype=np.uint8)
    image[:, :5] = 255
    # the right half of the line leaves the image and does not dilute the mean
    value = sample_line(image, Line((0.0, 0.5), (2.0, 0.5)))
    assert value == pytest.approx(0.5)


def test_line_outside_the_image_cannot_be_sampled():
    image = np.ones((10, 10), dtype=np.uint8)
    line = Line((1.5, 0.2), (1.7, 0.8))
    with pytest.raises(SamplingError):
        sample_line(image, line)
    assert np.isnan(sample_line_or_nan(image, line))


def test_non_finite_endpoints_cannot_be_sampled():
    image = np.ones((10, 10), dtype=np.uint8)
    with pytest.raises(SamplingError):
        sample_line(image, Line((float("nan"), 0.0), (0.5, 1.0)))


def test_single_channel_images_are_accepted():
    image = np.full((8, 8, 1), 51, dtype=np.uint8)
    assert sample_line(image, Line((0.5, 0.0), (0.5, 1.0))) == pytest.approx(0.2)


def test_rejects_images_with_wrong_rank():
    with pytest.raises(ValueError):
        sample_line(np.zeros(10), Line((0.0, 0.0), (1.0, 1.0)))
