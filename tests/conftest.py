"""
Shared fixtures: an in-memory marketplace with a fixed clock.
"""

import asyncio
from typing import Dict, List, Optional

import pendulum
import pytest

from carecalendar.adapters.memory import (
    InMemoryBookingLedger,
    InMemoryCalendarStore,
    InMemoryProfessionalDirectory,
)
from carecalendar.config import CalendarSettings
from carecalendar.domain.models import (
    AvailabilityTemplate,
    BookingStatus,
    LedgerRecord,
    MonthKey,
    ProfessionalDetails,
    ProfessionalKind,
    ProfessionalRef,
    ProfessionalScheduleEntry,
    TemplateRange,
    VisitType,
)
from carecalendar.services.availability import AvailabilityService
from carecalendar.services.booking import BookingService
from carecalendar.services.calendar_service import CalendarService
from carecalendar.services.reconciliation import ReconciliationJob
from carecalendar.services.slot_finder import SlotFinderService

TODAY = pendulum.date(2025, 3, 10)  # Monday
NEXT_MONDAY = pendulum.date(2025, 3, 17)
DOCTOR = ProfessionalRef(ProfessionalKind.DOCTOR, "dr-1")
PHYSIO = ProfessionalRef(ProfessionalKind.PHYSIOTHERAPIST, "ph-1")


def hm(value: str) -> int:
    """Minutes since midnight for an HH:MM string."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def make_record(
    record_id: str,
    day,
    start: str,
    end: str,
    status: BookingStatus = BookingStatus.CONFIRMED,
    professional: ProfessionalRef = DOCTOR,
    recorded_at=None,
    subject_id: str = "pat-1",
) -> LedgerRecord:
    return LedgerRecord(
        id=record_id,
        professional=professional,
        date=day,
        start=hm(start),
        end=hm(end),
        subject_id=subject_id,
        status=status,
        recorded_at=recorded_at or pendulum.datetime(2025, 3, 1, 8, 0, tz="UTC"),
    )


def monday_template(professional: ProfessionalRef = DOCTOR) -> AvailabilityTemplate:
    """Template {monday: [09:00-17:00 clinic]}."""
    return AvailabilityTemplate(
        professional=professional,
        days={0: [TemplateRange(hm("09:00"), hm("17:00"), VisitType.CLINIC)]},
    )


class World:
    """Services wired to in-memory adapters and a movable clock."""

    def __init__(self, today=TODAY, settings: Optional[CalendarSettings] = None, store=None):
        self.today = today
        self.store = store or InMemoryCalendarStore()
        self.ledger = InMemoryBookingLedger()
        self.directory = InMemoryProfessionalDirectory()
        self.calendar = CalendarService(
            self.store,
            self.ledger,
            self.directory,
            settings=settings or CalendarSettings(),
            clock=lambda: self.today,
        )
        self.job = ReconciliationJob(self.calendar, self.ledger, self.directory)
        self.booking = BookingService(self.calendar, self.ledger, self.directory)
        self.slots = SlotFinderService(self.calendar, self.ledger, self.directory)
        self.availability = AvailabilityService(self.directory, self.job)

    def add_professional(
        self,
        ref: ProfessionalRef = DOCTOR,
        template: Optional[AvailabilityTemplate] = None,
        eligible: bool = True,
        consultation_fee: float = 500.0,
        home_visit_fee: float = 900.0,
    ) -> ProfessionalDetails:
        details = ProfessionalDetails(
            ref=ref,
            name=f"Professional {ref.id}",
            consultation_fee=consultation_fee,
            home_visit_fee=home_visit_fee,
            is_verified=eligible,
            is_active=True,
        )
        self.directory.add(details, template)
        return details

    def run(self, coroutine):
        return asyncio.run(coroutine)

    def stored_entry(self, day, ref: ProfessionalRef = DOCTOR) -> Optional[ProfessionalScheduleEntry]:
        """Entry as currently stored, without triggering month creation."""
        month = self.run(self.store.get_month(MonthKey.from_date(day)))
        if month is None:
            return None
        calendar_day = month.day_for(day)
        return calendar_day.entry_for(ref) if calendar_day is not None else None

    def stored_days(self) -> Dict[MonthKey, List[dict]]:
        """Day lists of every stored document (version excluded)."""
        keys = self.run(self.store.list_month_keys())
        return {key: self.store.document(key)["days"] for key in keys}


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def doctor_world(world: World) -> World:
    """A world with one eligible doctor working Mondays 09:00-17:00."""
    world.add_professional(DOCTOR, monday_template())
    return world
