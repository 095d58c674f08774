"""
Application service answering slot-availability queries.

The service fetches the cached schedule entry and the fresh ledger state
through their ports and delegates the actual calculation to the domain-level
``SlotCalculator``. Lookup failures degrade to an empty list; only invalid
input is raised to the caller.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pendulum import Date

from ..domain.exceptions import CalendarError
from ..domain.models import AvailableSlot, ProfessionalRef, VisitType
from ..domain.serialization import format_date
from ..domain.slot_calculator import SlotCalculator, validate_duration
from .calendar_service import CalendarService
from .ports import BookingLedger, ProfessionalDirectory

logger = logging.getLogger(__name__)


class SlotFinderService:
    """
    Orchestrates schedule retrieval and slot calculation.

    Ledger records not yet reflected in the cached booked slots are passed
    to the calculator as extra busy time.
    """

    def __init__(
        self,
        calendar: CalendarService,
        ledger: BookingLedger,
        directory: ProfessionalDirectory,
        slot_calculator: Optional[SlotCalculator] = None,
    ) -> None:
        self._calendar = calendar
        self._ledger = ledger
        self._directory = directory
        self._slot_calculator = slot_calculator or SlotCalculator()

    async def find_slots(
        self,
        *,
        professional: ProfessionalRef,
        day: Date,
        duration_minutes: Optional[int] = None,
        visit_type: Optional[VisitType] = None,
    ) -> List[AvailableSlot]:
        """
        Free slots of one professional on one day.

        Args:
            professional: Whose schedule to search
            day: Canonical local date
            duration_minutes: Slot length (defaults to the configured slot length)
            visit_type: Restrict to clinic or home ranges (None for both)

        Returns:
            Slots ordered by start time; empty when nothing is free or the
            lookup failed

        Raises:
            ValidationError: If the duration is invalid or the date is past
        """
        duration = duration_minutes if duration_minutes is not None else self._calendar.settings.default_slot_minutes
        validate_duration(duration)
        self._calendar.ensure_not_past(day, "query slots")

        try:
            return await self._find(professional, day, duration, visit_type)
        except CalendarError as exc:
            logger.warning(
                "Slot query for %s on %s failed, returning no slots: %s",
                professional,
                format_date(day),
                exc,
            )
            return []

    async def _find(
        self,
        professional: ProfessionalRef,
        day: Date,
        duration: int,
        visit_type: Optional[VisitType],
    ) -> List[AvailableSlot]:
        details = await self._directory.get_details(professional)
        if details is None:
            logger.info("Unknown professional %s; no slots offered", professional)
            return []
        if not details.is_eligible:
            logger.info("%s is not verified and active; no slots offered", professional)
            return []

        entry = await self._calendar.day_schedule(professional, day)
        if entry is None:
            logger.debug("%s has no schedule on %s", professional, format_date(day))
            return []

        records = await self._ledger.list_active_bookings(professional, day)
        extra_busy = [(record.start, record.end) for record in records]

        return self._slot_calculator.find_available_slots(
            entry,
            duration,
            visit_type=visit_type,
            extra_busy=extra_busy,
            fees=details.fees(),
        )
