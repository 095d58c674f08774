"""
Core business logic for calculating bookable slots.

This is the heart of the application - pure domain logic without any
external dependencies (no API calls, no database, no I/O).
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Optional, Set, Tuple

from . import intervals
from .exceptions import ValidationError
from .intervals import Interval
from .models import AvailableSlot, ProfessionalScheduleEntry, VisitType, WorkingHours

logger = logging.getLogger(__name__)


class SlotCalculator:
    """
    Calculates free slots of a fixed duration for one professional on one day.

    Algorithm, for each working-hours range:
    1. Collect breaks, booked slots and extra busy time clamped to the range
    2. Merge them into one disjoint busy set
    3. Subtract the busy set from the range to get free intervals
    4. Tile free intervals into candidates anchored at the range start
    5. Tag every candidate with the visit type and fee of its range
    """

    def __init__(self, fees: Optional[Mapping[VisitType, float]] = None):
        self.fees = dict(fees or {})

    def find_available_slots(
        self,
        entry: ProfessionalScheduleEntry,
        duration_minutes: int,
        visit_type: Optional[VisitType] = None,
        extra_busy: Iterable[Tuple[int, int]] = (),
        fees: Optional[Mapping[VisitType, float]] = None
    ) -> List[AvailableSlot]:
        """
        Find all free slots for a schedule entry.

        Args:
            entry: The professional's schedule for the day
            duration_minutes: Length of every returned slot
            visit_type: Only consider working hours of this visit type (None for all)
            extra_busy: Additional busy (start, end) pairs, e.g. ledger records
                not yet reflected in the cached booked slots
            fees: Fee per visit type, overriding the calculator default

        Returns:
            Slots ordered by start time (possibly empty)

        Raises:
            ValidationError: If the duration is not within (0, 1440]
        """
        validate_duration(duration_minutes)

        if not entry.is_available:
            return []

        fee_table = dict(self.fees)
        if fees:
            fee_table.update(fees)

        busy = self._collect_busy(entry, extra_busy)

        slots: List[AvailableSlot] = []
        seen: Set[Tuple[int, int]] = set()

        for hours in entry.working_hours:
            if visit_type is not None and hours.visit_type != visit_type:
                continue

            working_range = intervals.to_interval(hours.start, hours.end, context="working hours")
            if working_range is None:
                continue

            for candidate in self._slots_in_range(working_range, busy, duration_minutes):
                key = (candidate.start, candidate.end)
                if key in seen:
                    continue
                seen.add(key)
                slots.append(self._to_slot(candidate, hours, fee_table))

        slots.sort(key=lambda slot: (slot.start, slot.end))
        return slots

    def _collect_busy(
        self,
        entry: ProfessionalScheduleEntry,
        extra_busy: Iterable[Tuple[int, int]]
    ) -> List[Interval]:
        """Breaks, booked slots and extra busy time as one merged set."""
        pairs: List[Tuple[int, int]] = []
        pairs.extend((item.start, item.end) for item in entry.breaks)
        pairs.extend((slot.start, slot.end) for slot in entry.booked_slots)
        pairs.extend(extra_busy)
        return intervals.merge(intervals.normalize(pairs, context="busy interval"))

    def _slots_in_range(
        self,
        working_range: Interval,
        busy: List[Interval],
        duration_minutes: int
    ) -> List[Interval]:
        """
        Tile the free parts of one working-hours range.

        Candidates sit on the grid ``range.start + k * duration``; a candidate
        is kept only if it fits entirely inside one free interval.

        Example (duration 30):
        Working: 09:00 - 12:00
        Busy: [10:15-10:45]
        Result: [09:00-09:30, 09:30-10:00, 11:00-11:30, 11:30-12:00]
        """
        clipped_busy = [
            clipped for clipped in (
                busy_interval.intersect(working_range) for busy_interval in busy
            )
            if clipped is not None
        ]
        free = intervals.subtract(working_range, clipped_busy)

        candidates: List[Interval] = []
        for free_interval in free:
            offset = free_interval.start - working_range.start
            steps = -(-offset // duration_minutes)
            cursor = working_range.start + steps * duration_minutes

            while cursor + duration_minutes <= free_interval.end:
                candidates.append(Interval(cursor, cursor + duration_minutes))
                cursor += duration_minutes

        return candidates

    @staticmethod
    def _to_slot(
        candidate: Interval,
        hours: WorkingHours,
        fee_table: Mapping[VisitType, float]
    ) -> AvailableSlot:
        return AvailableSlot(
            start=candidate.start,
            end=candidate.end,
            visit_type=hours.visit_type,
            fee=fee_table.get(hours.visit_type, 0.0)
        )


def validate_duration(duration_minutes: int) -> int:
    """
    Ensure a requested slot duration is usable.

    Raises:
        ValidationError: If the duration is not a whole number of minutes in (0, 1440]
    """
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ValidationError(f"Duration must be a whole number of minutes, got {duration_minutes!r}")
    if not 0 < duration_minutes <= intervals.MINUTES_PER_DAY:
        raise ValidationError(f"Duration must be between 1 and 1440 minutes, got {duration_minutes}")
    return duration_minutes
