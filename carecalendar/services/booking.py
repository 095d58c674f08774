"""
Booking transaction: re-validate a reservation against the ledger and append
it to the cached calendar day.

The ledger record is created upstream; this path only mirrors it. If the
calendar write fails the cache stays stale until the next booking sync.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import pendulum
from pendulum import Date, DateTime

from ..domain.exceptions import NotFound, SlotUnavailable, ValidationError
from ..domain.intervals import format_hhmm, parse_range
from ..domain.models import BookedSlot, CalendarDay, ProfessionalRef
from ..domain.serialization import format_date
from .calendar_service import CalendarService
from .ports import BookingLedger, ProfessionalDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    """A reservation of ``[start, end)`` on ``date`` for an existing ledger record."""
    professional: ProfessionalRef
    date: Date
    start: str
    end: str
    booking_id: str
    subject_id: str
    recorded_at: Optional[DateTime] = None


class BookingService:
    """Write path for slot reservations and explicit releases."""

    def __init__(
        self,
        calendar: CalendarService,
        ledger: BookingLedger,
        directory: ProfessionalDirectory,
    ) -> None:
        self._calendar = calendar
        self._ledger = ledger
        self._directory = directory

    async def book_slot(self, request: BookingRequest) -> BookedSlot:
        """
        Reserve a slot.

        Re-booking the same booking id for the same times returns the
        existing slot without writing.

        Returns:
            The booked slot as stored in the calendar

        Raises:
            ValidationError: Malformed times, missing ids, or a past date
            NotFound: If the professional is unknown
            SlotUnavailable: If the professional is not bookable or the ledger
                holds an overlapping active booking
            TransientStoreError: If the calendar could not be written
        """
        interval = parse_range(request.start, request.end)
        if not request.booking_id:
            raise ValidationError("A booking id is required")
        self._calendar.ensure_not_past(request.date, "book a slot")

        professional = request.professional
        details = await self._directory.get_details(professional)
        if details is None:
            raise NotFound(f"Unknown professional {professional}")
        if not details.is_eligible:
            raise SlotUnavailable(f"{professional} is not verified and active")

        # The ledger, not the cache, decides whether the slot is taken
        records = await self._ledger.list_active_bookings(professional, request.date)
        for record in records:
            if record.id != request.booking_id and record.overlaps(interval.start, interval.end):
                raise SlotUnavailable(
                    f"{interval} on {format_date(request.date)} overlaps booking {record.id} "
                    f"({format_hhmm(record.start)}-{format_hhmm(record.end)})"
                )

        recorded_at = request.recorded_at
        if recorded_at is None:
            own = next((record for record in records if record.id == request.booking_id), None)
            recorded_at = own.recorded_at if own is not None else pendulum.now("UTC")

        slot = BookedSlot(
            booking_id=request.booking_id,
            subject_id=request.subject_id,
            start=interval.start,
            end=interval.end,
            recorded_at=recorded_at,
        )

        def apply(day: CalendarDay) -> BookedSlot:
            entry = day.ensure_entry(professional, is_available=False)
            existing = entry.slot_for(slot.booking_id)
            if existing is not None and (existing.start, existing.end) == (slot.start, slot.end):
                return existing

            # Cached slots overlapping the request are stale: the ledger has none
            stale_ids = {
                cached.booking_id for cached in entry.booked_slots
                if cached.booking_id != slot.booking_id and cached.overlaps(slot.start, slot.end)
            }
            if stale_ids:
                logger.info("Dropping stale cached slot(s) %s for %s", ", ".join(sorted(stale_ids)), professional)

            entry.booked_slots = [
                cached for cached in entry.booked_slots
                if cached.booking_id != slot.booking_id and cached.booking_id not in stale_ids
            ]
            entry.booked_slots.append(slot)
            entry.sort_booked_slots()
            return slot

        booked = await self._calendar.mutate_day(request.date, apply)
        logger.info("Booked %s for %s on %s", booked, professional, format_date(request.date))
        return booked

    async def release_slot(self, professional: ProfessionalRef, day: Date, booking_id: str) -> BookedSlot:
        """
        Remove a booked slot from the calendar immediately.

        Cancellations otherwise disappear on the next booking sync. A booking
        still active in the ledger cannot be released: the next sync would
        restore it.

        Raises:
            NotFound: If the slot is not in the calendar
            SlotUnavailable: If the ledger still holds the booking as active
        """
        record = await self._ledger.get_booking(booking_id)
        if record is not None and record.is_active and record.professional == professional:
            raise SlotUnavailable(
                f"Booking {booking_id} is still {record.status.value} in the ledger; cancel it there first"
            )

        def apply(calendar_day: CalendarDay) -> BookedSlot:
            entry = calendar_day.entry_for(professional)
            slot = entry.slot_for(booking_id) if entry is not None else None
            if entry is None or slot is None:
                raise NotFound(f"Booking {booking_id} not found for {professional} on {format_date(day)}")
            entry.booked_slots = [cached for cached in entry.booked_slots if cached.booking_id != booking_id]
            return slot

        released = await self._calendar.mutate_day(day, apply)
        logger.info("Released %s for %s on %s", released, professional, format_date(day))
        return released
