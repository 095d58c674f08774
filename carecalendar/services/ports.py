"""
Protocols describing the collaborators the calendar services depend on.

Every method is a coroutine: store and ledger access are the suspension
points of the subsystem. Adapters live in ``carecalendar.adapters``.
"""

from __future__ import annotations

from typing import Callable, Collection, List, Optional, Protocol

from pendulum import Date

from ..domain.models import (
    AvailabilityTemplate,
    BookingStatus,
    CalendarMonth,
    LedgerRecord,
    MonthKey,
    ProfessionalDetails,
    ProfessionalRef,
)

Clock = Callable[[], Date]


class CalendarStore(Protocol):
    """One document per (year, month); whole-document reads and writes."""

    async def get_month(self, key: MonthKey) -> Optional[CalendarMonth]:
        """Return the stored month or None."""

    async def save_month(self, month: CalendarMonth) -> CalendarMonth:
        """
        Write a whole month document.

        ``month.version`` must match the stored version (0 to create). Returns
        the stored month with its new version.

        Raises:
            ConcurrentModificationError: If the stored version differs
            TransientStoreError: If the write fails
        """

    async def delete_months_before(self, key: MonthKey) -> int:
        """Delete all months strictly before ``key``; return how many went."""

    async def list_month_keys(self) -> List[MonthKey]:
        """Keys of all stored months in ascending order."""


class BookingLedger(Protocol):
    """Read access to the authoritative appointment ledger."""

    async def list_active_bookings(self, professional: ProfessionalRef, day: Date) -> List[LedgerRecord]:
        """Active (pending/confirmed/accepted) bookings of one professional on one day."""

    async def list_bookings_between(
        self,
        start: Date,
        end: Date,
        statuses: Optional[Collection[BookingStatus]] = None,
        professional: Optional[ProfessionalRef] = None,
    ) -> List[LedgerRecord]:
        """Bookings dated within ``[start, end]`` (inclusive), optionally filtered."""

    async def get_booking(self, booking_id: str) -> Optional[LedgerRecord]:
        """Return one ledger record or None."""


class ProfessionalDirectory(Protocol):
    """Identity, eligibility and availability templates of professionals."""

    async def get_details(self, professional: ProfessionalRef) -> Optional[ProfessionalDetails]:
        """Return details or None for an unknown professional."""

    async def get_template(self, professional: ProfessionalRef) -> Optional[AvailabilityTemplate]:
        """Return the weekly template or None when none was set."""

    async def list_eligible(self) -> List[ProfessionalDetails]:
        """All verified and active professionals."""

    async def save_template(self, template: AvailabilityTemplate) -> None:
        """Persist a professional's weekly template."""
