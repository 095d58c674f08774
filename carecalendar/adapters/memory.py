"""
In-memory implementations of the store, ledger and directory protocols.

Used by the test-suite and by the CLI's ``--mock`` mode. The calendar store
keeps serialized documents rather than live objects so that callers get the
same whole-document read-modify-write semantics as with a real store.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Collection, Dict, Iterable, List, Optional

from pendulum import Date

from ..domain.exceptions import ConcurrentModificationError
from ..domain.models import (
    AvailabilityTemplate,
    BookingStatus,
    CalendarMonth,
    LedgerRecord,
    MonthKey,
    ProfessionalDetails,
    ProfessionalRef,
)
from ..domain.serialization import month_from_document, month_to_document


class InMemoryCalendarStore:
    """Calendar documents kept in a dict keyed by (year, month)."""

    def __init__(self) -> None:
        self._documents: Dict[MonthKey, Dict[str, Any]] = {}
        self.writes = 0

    async def get_month(self, key: MonthKey) -> Optional[CalendarMonth]:
        await asyncio.sleep(0)
        document = self._documents.get(key)
        if document is None:
            return None
        return month_from_document(document)

    async def save_month(self, month: CalendarMonth) -> CalendarMonth:
        await asyncio.sleep(0)
        key = month.key
        stored = self._documents.get(key)
        stored_version = stored["version"] if stored is not None else 0

        if stored_version != month.version:
            raise ConcurrentModificationError(
                f"Calendar {key} changed (expected version {month.version}, found {stored_version})"
            )

        saved = replace(month, version=stored_version + 1, generated=False)
        self._documents[key] = month_to_document(saved)
        self.writes += 1
        return month_from_document(self._documents[key])

    async def delete_months_before(self, key: MonthKey) -> int:
        await asyncio.sleep(0)
        doomed = [stored_key for stored_key in self._documents if stored_key < key]
        for stored_key in doomed:
            del self._documents[stored_key]
        return len(doomed)

    async def list_month_keys(self) -> List[MonthKey]:
        await asyncio.sleep(0)
        return sorted(self._documents)

    def document(self, key: MonthKey) -> Optional[Dict[str, Any]]:
        """Raw stored document (for inspection)."""
        return self._documents.get(key)


class InMemoryBookingLedger:
    """Appointment ledger backed by a dict of records."""

    def __init__(self, records: Iterable[LedgerRecord] = ()) -> None:
        self._records: Dict[str, LedgerRecord] = {}
        for record in records:
            self.add(record)

    def add(self, record: LedgerRecord) -> LedgerRecord:
        self._records[record.id] = record
        return record

    def set_status(self, booking_id: str, status: BookingStatus) -> LedgerRecord:
        record = replace(self._records[booking_id], status=status)
        self._records[booking_id] = record
        return record

    def remove(self, booking_id: str) -> None:
        self._records.pop(booking_id, None)

    async def list_active_bookings(self, professional: ProfessionalRef, day: Date) -> List[LedgerRecord]:
        await asyncio.sleep(0)
        return [
            record for record in self._sorted()
            if record.professional == professional and record.date == day and record.is_active
        ]

    async def list_bookings_between(
        self,
        start: Date,
        end: Date,
        statuses: Optional[Collection[BookingStatus]] = None,
        professional: Optional[ProfessionalRef] = None,
    ) -> List[LedgerRecord]:
        await asyncio.sleep(0)
        return [
            record for record in self._sorted()
            if start <= record.date <= end
            and (statuses is None or record.status in statuses)
            and (professional is None or record.professional == professional)
        ]

    async def get_booking(self, booking_id: str) -> Optional[LedgerRecord]:
        await asyncio.sleep(0)
        return self._records.get(booking_id)

    def _sorted(self) -> List[LedgerRecord]:
        return sorted(self._records.values(), key=lambda record: (record.date, record.start, record.id))


class InMemoryProfessionalDirectory:
    """Professional details and weekly templates kept in dicts."""

    def __init__(self) -> None:
        self._details: Dict[ProfessionalRef, ProfessionalDetails] = {}
        self._templates: Dict[ProfessionalRef, AvailabilityTemplate] = {}

    def add(
        self,
        details: ProfessionalDetails,
        template: Optional[AvailabilityTemplate] = None
    ) -> None:
        self._details[details.ref] = details
        if template is not None:
            self._templates[details.ref] = template

    async def get_details(self, professional: ProfessionalRef) -> Optional[ProfessionalDetails]:
        await asyncio.sleep(0)
        return self._details.get(professional)

    async def get_template(self, professional: ProfessionalRef) -> Optional[AvailabilityTemplate]:
        await asyncio.sleep(0)
        return self._templates.get(professional)

    async def list_eligible(self) -> List[ProfessionalDetails]:
        await asyncio.sleep(0)
        return [
            details for ref, details in sorted(self._details.items())
            if details.is_eligible
        ]

    async def save_template(self, template: AvailabilityTemplate) -> None:
        await asyncio.sleep(0)
        self._templates[template.professional] = template
