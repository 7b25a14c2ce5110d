"""User-drawn calibration lines and their validation.

Coordinates live in the unit square of the calibration image with ``x``
pointing right and ``y`` pointing down. A line is drawn in two phases (press,
release) and is only added to the calibration set once a wavelength has been
entered for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple

__all__ = [
    "Point",
    "VERTICAL",
    "HORIZONTAL",
    "ORIENTATIONS",
    "Line",
    "CalibrationLine",
    "check_orientation",
    "canonicalize",
    "validate_lines",
    "LineAnnotationStore",
]

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

# Lines of equal wavelength run top to bottom, dispersion along x.
VERTICAL = "vertical"
# Lines of equal wavelength run left to right, dispersion along y.
HORIZONTAL = "horizontal"
ORIENTATIONS = (VERTICAL, HORIZONTAL)


def _as_point(value: Sequence[float]) -> Point:
    x, y = value
    return (float(x), float(y))


def check_orientation(orientation: str) -> str:
    text = str(orientation).strip().lower()
    if text not in ORIENTATIONS:
        raise ValueError(f"Orientation must be one of {ORIENTATIONS}, got {orientation!r}")
    return text


@dataclass(frozen=True)
class Line:
    start: Point
    end: Point

    def reversed(self) -> "Line":
        return Line(start=self.end, end=self.start)

    def make_top_to_bottom(self) -> "Line":
        if self.start[1] > self.end[1]:
            return self.reversed()
        return self

    def make_left_to_right(self) -> "Line":
        if self.start[0] > self.end[0]:
            return self.reversed()
        return self

    @property
    def midpoint(self) -> Point:
        return (
            0.5 * (self.start[0] + self.end[0]),
            0.5 * (self.start[1] + self.end[1]),
        )

    def to_dict(self) -> dict:
        return {"start": list(self.start), "end": list(self.end)}


@dataclass(frozen=True)
class CalibrationLine:
    wavelength: int
    start: Point
    end: Point

    def __post_init__(self) -> None:
        wavelength = int(self.wavelength)
        if wavelength <= 0 or wavelength != self.wavelength:
            raise ValueError(f"Wavelength must be a positive integer in nm, got {self.wavelength!r}")
        object.__setattr__(self, "wavelength", wavelength)
        object.__setattr__(self, "start", _as_point(self.start))
        object.__setattr__(self, "end", _as_point(self.end))

    @property
    def line(self) -> Line:
        return Line(start=self.start, end=self.end)

    def canonical(self, orientation: str) -> "CalibrationLine":
        line = canonicalize(self.line, orientation)
        if line.start == self.start:
            return self
        return replace(self, start=line.start, end=line.end)

    def to_dict(self) -> dict:
        return {"wavelength": self.wavelength, "start": list(self.start), "end": list(self.end)}

    @classmethod
    def from_dict(cls, data) -> "CalibrationLine":
        return cls(wavelength=data["wavelength"], start=data["start"], end=data["end"])


def canonicalize(line: Line, orientation: str) -> Line:
    if check_orientation(orientation) == VERTICAL:
        return line.make_top_to_bottom()
    return line.make_left_to_right()


def _is_non_decreasing(values: Sequence[float]) -> bool:
    return all(b >= a for a, b in zip(values, values[1:]))


def validate_lines(
    lines: Iterable[CalibrationLine], orientation: str
) -> Tuple[bool, List[CalibrationLine]]:
    """Canonicalize, sort by wavelength and check monotonic dispersion.

    Returns ``(valid, ordered_lines)``. ``ordered_lines`` is canonicalized and
    stably sorted by wavelength whether or not the check passed. Both endpoints
    must move monotonically (non-decreasing) along the dispersion axis, which
    is ``x`` for vertical lines and ``y`` for horizontal ones.
    """

    orientation = check_orientation(orientation)
    ordered = sorted(
        (line.canonical(orientation) for line in lines),
        key=lambda item: item.wavelength,
    )
    axis = 0 if orientation == VERTICAL else 1
    valid = _is_non_decreasing([line.start[axis] for line in ordered]) and _is_non_decreasing(
        [line.end[axis] for line in ordered]
    )
    return valid, ordered


class LineAnnotationStore:
    """Ordered collection of committed calibration lines plus gesture state.

    ``revision`` increases with every edit of the committed set so that a
    fitted model can tell when it went stale.
    """

    def __init__(self, orientation: str = VERTICAL, lines: Iterable[CalibrationLine] = ()):
        self.orientation = check_orientation(orientation)
        self._lines: List[CalibrationLine] = list(lines)
        self._pending_start: Optional[Point] = None
        self._completed: Optional[Line] = None
        self.revision = 0

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> Tuple[CalibrationLine, ...]:
        return tuple(self._lines)

    @property
    def pending(self) -> Optional[Point]:
        return self._pending_start

    @property
    def completed(self) -> Optional[Line]:
        return self._completed

    def set_orientation(self, orientation: str) -> None:
        orientation = check_orientation(orientation)
        if orientation != self.orientation:
            self.orientation = orientation
            self.revision += 1

    def start_line(self, point: Sequence[float]) -> None:
        if self._pending_start is not None:
            logger.warning("started a calibration line while another one was pending; replacing it")
        self._pending_start = _as_point(point)

    def end_line(self, point: Sequence[float]) -> None:
        if self._pending_start is None:
            logger.warning("tried to end calibration line without starting it")
            return
        self._completed = Line(start=self._pending_start, end=_as_point(point))
        self._pending_start = None

    def commit_wavelength(self, value) -> Optional[CalibrationLine]:
        """Attach ``value`` (nm) to the completed line and append it to the set."""

        wavelength = _parse_wavelength(value)
        if self._completed is None:
            logger.warning("tried to add wavelength %s with no completed line", wavelength)
            return None
        line = CalibrationLine(wavelength, self._completed.start, self._completed.end)
        self._lines.append(line)
        self._completed = None
        self.revision += 1
        return line

    def discard_line(self) -> None:
        self._completed = None

    def add_line(self, wavelength: int, start: Sequence[float], end: Sequence[float]) -> CalibrationLine:
        line = CalibrationLine(wavelength, start, end)
        self._lines.append(line)
        self.revision += 1
        return line

    def validate(self) -> bool:
        valid, ordered = validate_lines(self._lines, self.orientation)
        self._lines = ordered
        if not valid:
            logger.error("calibration lines are not monotonic along the %s dispersion axis", self.orientation)
        return valid

    def clear(self) -> None:
        self._lines = []
        self._pending_start = None
        self._completed = None
        self.revision += 1


def _parse_wavelength(value) -> int:
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            raise ValueError("this has to be a valid integer")
        value = int(text)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Wavelength must be a whole number of nm, got {value!r}")
        value = int(value)
    wavelength = int(value)
    if wavelength <= 0:
        raise ValueError(f"Wavelength must be positive, got {wavelength}")
    return wavelength
