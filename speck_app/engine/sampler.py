"""Anti-aliased intensity sampling along a line segment of an image."""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from speck_app.engine.annotations import Line
from speck_app.engine.errors import SamplingError

__all__ = [
    "LIGHTNESS_WEIGHTS",
    "xiaolin_wu",
    "full_scale",
    "pixel_lightness",
    "sample_line",
    "sample_line_or_nan",
]

# Per-channel weights for R, G, B.
LIGHTNESS_WEIGHTS = {
    "mean": (1.0 / 3.0, 1.0 / 3.0, 1.0 / 3.0),
    "rec709": (0.2126, 0.7152, 0.0722),
}


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def xiaolin_wu(
    start: Tuple[float, float], end: Tuple[float, float]
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Pixels covered by the line from ``start`` to ``end`` in pixel coordinates.

    Returns ``(columns, rows, weights)``. Along the major axis every integer
    position between the rounded endpoints is visited; across it the line's
    coverage is split between the two neighbouring pixels by the fractional
    part, the lower one being omitted when the line hits a pixel centre.
    Endpoints are ordered along the major axis first, so a segment and its
    reverse cover the same pixels with the same weights.
    """

    x0, y0 = float(start[0]), float(start[1])
    x1, y1 = float(end[0]), float(end[1])
    steep = abs(y1 - y0) > abs(x1 - x0)
    if steep:
        x0, y0, x1, y1 = y0, x0, y1, x1
    if x0 > x1:
        x0, y0, x1, y1 = x1, y1, x0, y0

    dx = x1 - x0
    gradient = (y1 - y0) / dx if dx != 0.0 else 1.0

    first = _round_half_away(x0)
    last = _round_half_away(x1)
    if last < first:
        empty = np.empty(0, dtype=np.int64)
        return empty, empty.copy(), np.empty(0, dtype=float)

    major = np.arange(first, last + 1, dtype=np.int64)
    minor = y0 + gradient * (np.arange(major.size, dtype=float) + (first - x0))
    base = np.floor(minor)
    frac = minor - base
    base = base.astype(np.int64)

    lower = frac > 0.0
    major_all = np.concatenate([major, major[lower]])
    minor_all = np.concatenate([base, base[lower] + 1])
    weights = np.concatenate([1.0 - frac, frac[lower]])

    if steep:
        return minor_all, major_all, weights
    return major_all, minor_all, weights


def full_scale(dtype: np.dtype) -> float:
    dtype = np.dtype(dtype)
    if dtype == np.uint8:
        return 255.0
    if np.issubdtype(dtype, np.integer):
        return float(np.iinfo(dtype).max)
    return 1.0


def pixel_lightness(pixels: np.ndarray, mode: str = "mean", scale: float = 255.0) -> np.ndarray:
    """Lightness in ``[0, 1]`` of RGB pixels (``(..., 3)``) or grey values.

    ``"mean"`` is ``(R + G + B) / (3 * scale)``; ``"rec709"`` is
    ``(0.2126 R + 0.7152 G + 0.0722 B) / scale``.
    """

    try:
        weights = LIGHTNESS_WEIGHTS[mode]
    except KeyError:
        raise ValueError(f"Unknown lightness mode: {mode}") from None
    arr = np.asarray(pixels, dtype=float)
    if arr.ndim > 1 and arr.shape[-1] in (3, 4):
        rgb = arr[..., :3]
        if mode == "mean":
            return rgb.sum(axis=-1) / (3.0 * scale)
        return (rgb @ np.asarray(weights, dtype=float)) / scale
    return arr / scale


def sample_line(image: np.ndarray, line: Line, *, lightness: str = "mean") -> float:
    """Weighted mean lightness of the pixels under ``line``.

    ``line`` is given in normalized image coordinates. Pixels outside the
    image are skipped and do not count towards the weight. Raises
    :class:`SamplingError` when no pixel of the line lies inside the image.
    """

    img = np.asarray(image)
    if img.ndim not in (2, 3):
        raise ValueError(f"Expected a 2-D grey or 3-D colour image, got shape {img.shape}")
    height, width = img.shape[:2]

    start = (line.start[0] * width, line.start[1] * height)
    end = (line.end[0] * width, line.end[1] * height)
    if not all(math.isfinite(v) for v in (*start, *end)):
        raise SamplingError(f"Line has non-finite endpoints: {line}")

    cols, rows, weights = xiaolin_wu(start, end)
    inside = (cols >= 0) & (cols < width) & (rows >= 0) & (rows < height)
    total_weight = float(weights[inside].sum())
    if total_weight <= 0.0:
        raise SamplingError(f"Line {line} lies outside the {width}x{height} image")

    pixels = img[rows[inside], cols[inside]]
    if img.ndim == 3 and img.shape[2] == 1:
        pixels = pixels[:, 0]
    values = pixel_lightness(pixels, lightness, full_scale(img.dtype))
    return float(np.dot(values, weights[inside]) / total_weight)


def sample_line_or_nan(image: np.ndarray, line: Line, *, lightness: str = "mean") -> float:
    """Like :func:`sample_line` but marks unsampleable lines with ``NaN``."""

    try:
        return sample_line(image, line, lightness=lightness)
    except SamplingError:
        return float("nan")
