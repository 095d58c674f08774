"""
Interval arithmetic over half-open minute-of-day ranges.

All functions here are pure: no I/O, no clock, no store. Times are integer
minutes since local midnight in ``[0, 1440]``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True, order=True)
class Interval:
    """
    Represents an immutable half-open interval ``[start, end)`` in minutes.

    Invariant: 0 <= start < end <= 1440.
    """
    start: int
    end: int

    def __post_init__(self):
        if not is_valid(self.start, self.end):
            raise ValueError(f"Invalid interval [{self.start}, {self.end})")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        """Check if this interval overlaps with another."""
        return overlaps(self.start, self.end, other.start, other.end)

    def intersect(self, other: "Interval") -> "Interval | None":
        """
        Calculate the intersection of two intervals.
        Returns None if there is no overlap.
        """
        return clamp(self.start, self.end, other.start, other.end)

    def __str__(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)}"


def is_valid(start: int, end: int) -> bool:
    """Return True when ``[start, end)`` is a non-empty range inside one day."""
    if isinstance(start, bool) or isinstance(end, bool):
        return False
    if not isinstance(start, int) or not isinstance(end, int):
        return False
    return 0 <= start < end <= MINUTES_PER_DAY


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open overlap test; touching endpoints do not overlap."""
    return a_start < b_end and a_end > b_start


def clamp(start: int, end: int, lower: int, upper: int) -> Optional[Interval]:
    """
    Intersect ``[start, end)`` with the window ``[lower, upper)``.

    Returns None if the result is empty or inverted.
    """
    clipped_start = max(start, lower)
    clipped_end = min(end, upper)
    if not is_valid(clipped_start, clipped_end):
        return None
    return Interval(clipped_start, clipped_end)


def to_interval(start: int, end: int, *, context: str = "interval") -> Optional[Interval]:
    """
    Build an Interval from raw values, dropping malformed input.

    Malformed data coming out of documents or the ledger must never crash the
    caller, so it is logged and skipped here.
    """
    if not is_valid(start, end):
        logger.warning("Dropping malformed %s [%r, %r)", context, start, end)
        return None
    return Interval(start, end)


def normalize(
    pairs: Iterable[Tuple[int, int]],
    *,
    context: str = "interval"
) -> List[Interval]:
    """Convert raw (start, end) pairs to Intervals, dropping malformed ones."""
    intervals: List[Interval] = []
    for start, end in pairs:
        interval = to_interval(start, end, context=context)
        if interval is not None:
            intervals.append(interval)
    return intervals


def merge(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Merge overlapping or adjacent intervals into a minimal disjoint set.

    Example: [09:00-10:00, 10:00-11:00, 10:30-12:00] -> [09:00-12:00]
    """
    sorted_intervals = sorted(intervals)
    if not sorted_intervals:
        return []

    merged: List[Interval] = [sorted_intervals[0]]

    for current in sorted_intervals[1:]:
        last = merged[-1]

        if current.start <= last.end:
            merged[-1] = Interval(last.start, max(last.end, current.end))
        else:
            merged.append(current)

    return merged


def subtract(base: Interval, busy_merged: Sequence[Interval]) -> List[Interval]:
    """
    Subtract busy intervals from a base interval, yielding free intervals.

    ``busy_merged`` must already be sorted and merged (see ``merge``).

    Example:
    Base: 09:00 - 17:00
    Busy: [10:00-11:00, 14:00-15:00]
    Result: [09:00-10:00, 11:00-14:00, 15:00-17:00]
    """
    free: List[Interval] = []
    cursor = base.start

    for busy in busy_merged:
        if busy.end <= cursor:
            continue
        if busy.start >= base.end:
            break

        if cursor < busy.start:
            free.append(Interval(cursor, busy.start))

        cursor = max(cursor, busy.end)

        if cursor >= base.end:
            break

    if cursor < base.end:
        free.append(Interval(cursor, base.end))

    return free


def parse_hhmm(value: str, *, allow_end_of_day: bool = False) -> int:
    """
    Parse an ``HH:MM`` (24-hour) string into minutes since midnight.

    ``24:00`` is only accepted when ``allow_end_of_day`` is set.

    Raises:
        ValidationError: If the value is not a valid time of day
    """
    if not isinstance(value, str):
        raise ValidationError(f"Invalid time {value!r}. Use HH:MM (24-hour format)")

    text = value.strip()
    if allow_end_of_day and text == "24:00":
        return MINUTES_PER_DAY

    match = _HHMM_PATTERN.match(text)
    if not match:
        raise ValidationError(f"Invalid time {value!r}. Use HH:MM (24-hour format)")

    return int(match.group(1)) * 60 + int(match.group(2))


def format_hhmm(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def parse_range(start: str, end: str) -> Interval:
    """
    Parse a pair of ``HH:MM`` strings into a validated Interval.

    Raises:
        ValidationError: If either time is malformed or end is not after start
    """
    start_minutes = parse_hhmm(start)
    end_minutes = parse_hhmm(end, allow_end_of_day=True)
    if end_minutes <= start_minutes:
        raise ValidationError("End time must be after start time")
    return Interval(start_minutes, end_minutes)
