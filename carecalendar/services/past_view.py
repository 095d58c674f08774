"""
Read-only calendar views of past periods, built straight from the ledger.

Past availability cannot be reconstructed, so generated days carry booked
slots only. Nothing here touches the calendar store.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from pendulum import Date

from ..domain import intervals
from ..domain.models import (
    HISTORICAL_BOOKING_STATUSES,
    BookedSlot,
    CalendarDay,
    CalendarMonth,
    LedgerRecord,
    MonthKey,
    ProfessionalRef,
    group_records,
)
from .ports import BookingLedger

logger = logging.getLogger(__name__)


class PastPeriodViewGenerator:
    """Synthesizes calendar months and days from historical ledger records."""

    def __init__(self, ledger: BookingLedger) -> None:
        self._ledger = ledger

    async def month_view(
        self,
        key: MonthKey,
        professional: Optional[ProfessionalRef] = None
    ) -> CalendarMonth:
        """Generated view of a whole month; ``generated`` is set on the result."""
        records = await self._ledger.list_bookings_between(
            key.first_day,
            key.last_day,
            statuses=HISTORICAL_BOOKING_STATUSES,
            professional=professional,
        )
        month = CalendarMonth.blank(key)
        month.generated = True

        grouped = self._group(records)
        for day in month.days:
            self._fill_day(day, grouped)

        logger.debug("Generated past view of %s from %s ledger records", key, len(records))
        return month

    async def day_view(
        self,
        day: Date,
        professional: Optional[ProfessionalRef] = None
    ) -> CalendarDay:
        """Generated view of a single day."""
        records = await self._ledger.list_bookings_between(
            day,
            day,
            statuses=HISTORICAL_BOOKING_STATUSES,
            professional=professional,
        )
        view = CalendarDay(date=day)
        self._fill_day(view, self._group(records))
        return view

    @staticmethod
    def _group(records: List[LedgerRecord]) -> Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]]:
        usable = [
            record for record in records
            if intervals.to_interval(record.start, record.end, context=f"ledger record {record.id}") is not None
        ]
        return dict(group_records(usable))

    @staticmethod
    def _fill_day(
        day: CalendarDay,
        grouped: Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]]
    ) -> None:
        target = (day.date.year, day.date.month, day.date.day)
        for (record_date, ref), records in sorted(grouped.items(), key=lambda item: item[0][1]):
            if (record_date.year, record_date.month, record_date.day) != target:
                continue
            entry = day.ensure_entry(ref, is_available=False)
            entry.booked_slots = [
                BookedSlot.from_record(record, status=record.status.value)
                for record in records
            ]
            entry.sort_booked_slots()
