"""
Domain models for availability templates, ledger records and calendar documents.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pendulum
from pendulum import Date, DateTime

from .intervals import format_hhmm, overlaps, to_interval

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class ProfessionalKind(str, Enum):
    """Kinds of professionals that own a schedule."""
    DOCTOR = "doctor"
    PHYSIOTHERAPIST = "physiotherapist"
    PATHOLOGY = "pathology"


class VisitType(str, Enum):
    """Where a visit takes place."""
    CLINIC = "clinic"
    HOME = "home"


class BookingStatus(str, Enum):
    """Lifecycle states of a ledger record."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    IN_PROGRESS = "in_progress"


ACTIVE_BOOKING_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.ACCEPTED,
})

# Statuses shown in generated views of past periods
HISTORICAL_BOOKING_STATUSES = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.ACCEPTED,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
})


@dataclass(frozen=True, order=True)
class ProfessionalRef:
    """
    Tagged reference to a professional: ``{kind, id}``.

    The string form ``kind:id`` is used on the command line and in logs.
    """
    kind: ProfessionalKind
    id: str

    @classmethod
    def parse(cls, value: str) -> "ProfessionalRef":
        """
        Parse ``kind:id`` into a reference.

        Raises:
            ValueError: If the kind is unknown or the id is empty
        """
        kind, sep, identifier = value.partition(":")
        if not sep or not identifier.strip():
            raise ValueError(f"Professional reference must look like 'doctor:<id>', got {value!r}")
        return cls(kind=ProfessionalKind(kind.strip().lower()), id=identifier.strip())

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True, order=True)
class MonthKey:
    """Key of one calendar document: ``(year, month)``."""
    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_date(cls, value: Date) -> "MonthKey":
        return cls(value.year, value.month)

    def shift(self, months: int) -> "MonthKey":
        """Return the key ``months`` months later (negative for earlier)."""
        index = self.year * 12 + (self.month - 1) + months
        return MonthKey(index // 12, index % 12 + 1)

    @property
    def first_day(self) -> Date:
        return pendulum.date(self.year, self.month, 1)

    @property
    def last_day(self) -> Date:
        first = self.first_day
        return first.add(days=first.days_in_month - 1)

    def days(self) -> List[Date]:
        """All dates of the month in order."""
        first = self.first_day
        return [first.add(days=offset) for offset in range(first.days_in_month)]

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class TemplateRange:
    """One recurring time range of a weekly availability template."""
    start: int
    end: int
    visit_type: VisitType = VisitType.CLINIC
    capacity: int = 1

    def __str__(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)} ({self.visit_type.value})"


@dataclass
class AvailabilityTemplate:
    """
    Weekly availability template of one professional.

    ``days`` maps ISO weekday index (0=Monday, 6=Sunday) to time ranges.
    """
    professional: ProfessionalRef
    days: Dict[int, List[TemplateRange]] = field(default_factory=dict)

    def ranges_for(self, weekday: int) -> List[TemplateRange]:
        """Return the ranges for a weekday (empty when the day is off)."""
        return list(self.days.get(weekday, []))

    def has_day(self, weekday: int) -> bool:
        return bool(self.days.get(weekday))

    def with_day(self, weekday: int, ranges: Iterable[TemplateRange]) -> "AvailabilityTemplate":
        """Return a copy with one weekday replaced (an empty list clears it)."""
        days = {day: list(day_ranges) for day, day_ranges in self.days.items()}
        new_ranges = list(ranges)
        if new_ranges:
            days[weekday] = new_ranges
        else:
            days.pop(weekday, None)
        return AvailabilityTemplate(professional=self.professional, days=days)


@dataclass(frozen=True)
class ProfessionalDetails:
    """Identity, fees and eligibility of a professional."""
    ref: ProfessionalRef
    name: str
    consultation_fee: float = 0.0
    home_visit_fee: float = 0.0
    is_verified: bool = False
    is_active: bool = False

    @property
    def is_eligible(self) -> bool:
        """Only verified and active professionals are offered slots."""
        return self.is_verified and self.is_active

    def fee_for(self, visit_type: VisitType) -> float:
        if visit_type is VisitType.HOME:
            return self.home_visit_fee
        return self.consultation_fee

    def fees(self) -> Dict[VisitType, float]:
        return {visit_type: self.fee_for(visit_type) for visit_type in VisitType}


@dataclass(frozen=True)
class LedgerRecord:
    """An authoritative booking entry from the appointment ledger."""
    id: str
    professional: ProfessionalRef
    date: Date
    start: int
    end: int
    subject_id: str
    status: BookingStatus
    recorded_at: DateTime

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def overlaps(self, start: int, end: int) -> bool:
        return overlaps(self.start, self.end, start, end)


@dataclass(frozen=True)
class WorkingHours:
    """A working-hours range derived from an availability template."""
    start: int
    end: int
    visit_type: VisitType = VisitType.CLINIC
    capacity: int = 1

    @classmethod
    def from_template_range(cls, template_range: TemplateRange) -> "WorkingHours":
        return cls(
            start=template_range.start,
            end=template_range.end,
            visit_type=template_range.visit_type,
            capacity=template_range.capacity
        )

    def __str__(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)}"


@dataclass(frozen=True)
class Break:
    """Operator-entered unavailability, independent of bookings and templates."""
    start: int
    end: int
    reason: str = "Break"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __str__(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)} {self.reason}"


@dataclass(frozen=True)
class BookedSlot:
    """A calendar-cache entry mirroring one active ledger record."""
    booking_id: str
    subject_id: str
    start: int
    end: int
    recorded_at: DateTime
    status: str = "booked"

    @classmethod
    def from_record(cls, record: LedgerRecord, status: Optional[str] = None) -> "BookedSlot":
        return cls(
            booking_id=record.id,
            subject_id=record.subject_id,
            start=record.start,
            end=record.end,
            recorded_at=record.recorded_at,
            status=status or "booked"
        )

    def overlaps(self, start: int, end: int) -> bool:
        return overlaps(self.start, self.end, start, end)

    def __str__(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)} #{self.booking_id}"


@dataclass
class ProfessionalScheduleEntry:
    """
    Schedule of one professional on one day.

    ``working_hours`` is written only by template derivation and
    ``booked_slots`` only from the ledger or the booking path.
    """
    professional: ProfessionalRef
    working_hours: List[WorkingHours] = field(default_factory=list)
    breaks: List[Break] = field(default_factory=list)
    booked_slots: List[BookedSlot] = field(default_factory=list)
    is_available: bool = True

    @property
    def has_bookings(self) -> bool:
        return bool(self.booked_slots)

    def slot_for(self, booking_id: str) -> Optional[BookedSlot]:
        for slot in self.booked_slots:
            if slot.booking_id == booking_id:
                return slot
        return None

    def sort_booked_slots(self) -> None:
        self.booked_slots.sort(key=lambda slot: (slot.start, slot.end, slot.booking_id))


@dataclass
class CalendarDay:
    """One day of a calendar document."""
    date: Date
    is_holiday: bool = False
    schedules: List[ProfessionalScheduleEntry] = field(default_factory=list)

    @property
    def weekday(self) -> int:
        """ISO weekday index, 0=Monday."""
        return self.date.weekday()

    @property
    def weekday_name(self) -> str:
        return WEEKDAY_NAMES[self.weekday]

    def entry_for(self, professional: ProfessionalRef) -> Optional[ProfessionalScheduleEntry]:
        for entry in self.schedules:
            if entry.professional == professional:
                return entry
        return None

    def ensure_entry(self, professional: ProfessionalRef, *, is_available: bool = True) -> ProfessionalScheduleEntry:
        """Return the entry for a professional, creating an empty one if absent."""
        entry = self.entry_for(professional)
        if entry is None:
            entry = ProfessionalScheduleEntry(professional=professional, is_available=is_available)
            self.schedules.append(entry)
            self.schedules.sort(key=lambda item: item.professional)
        return entry

    def remove_entry(self, professional: ProfessionalRef) -> bool:
        before = len(self.schedules)
        self.schedules = [entry for entry in self.schedules if entry.professional != professional]
        return len(self.schedules) != before

    def filtered(self, professional: Optional[ProfessionalRef]) -> "CalendarDay":
        """Return a shallow copy restricted to one professional (or all when None)."""
        if professional is None:
            return replace(self, schedules=list(self.schedules))
        return replace(
            self,
            schedules=[entry for entry in self.schedules if entry.professional == professional]
        )


@dataclass
class CalendarMonth:
    """
    One calendar document, keyed by ``(year, month)``.

    ``version`` is the optimistic-concurrency counter of the stored document
    (0 means never stored). ``generated`` marks read-only views built from
    the ledger.
    """
    year: int
    month: int
    days: List[CalendarDay] = field(default_factory=list)
    version: int = 0
    generated: bool = False

    @classmethod
    def blank(cls, key: MonthKey) -> "CalendarMonth":
        """A month with one empty day per date."""
        return cls(year=key.year, month=key.month, days=[CalendarDay(date=day) for day in key.days()])

    @property
    def key(self) -> MonthKey:
        return MonthKey(self.year, self.month)

    def day_for(self, value: Date) -> Optional[CalendarDay]:
        """Locate a day by its canonical local date key."""
        target = (value.year, value.month, value.day)
        for day in self.days:
            if (day.date.year, day.date.month, day.date.day) == target:
                return day
        return None

    def filtered(self, professional: Optional[ProfessionalRef]) -> "CalendarMonth":
        return replace(self, days=[day.filtered(professional) for day in self.days])

    def entries(self) -> Iterable[Tuple[CalendarDay, ProfessionalScheduleEntry]]:
        for day in self.days:
            for entry in day.schedules:
                yield day, entry


@dataclass(frozen=True)
class AvailableSlot:
    """A bookable slot produced by the slot computation engine."""
    start: int
    end: int
    visit_type: VisitType
    fee: float

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: HH:MM - HH:MM | clinic | fee 500.00
        """
        return (
            f"{format_hhmm(self.start)} - {format_hhmm(self.end)} | "
            f"{self.visit_type.value} | fee {self.fee:.2f}"
        )


def derive_working_hours(ranges: Iterable[TemplateRange]) -> List[WorkingHours]:
    """
    Working hours for one day, derived from that weekday's template ranges.

    Malformed ranges are logged and dropped.
    """
    hours = [
        WorkingHours.from_template_range(item) for item in ranges
        if to_interval(item.start, item.end, context="template range") is not None
    ]
    return sorted(hours, key=lambda item: (item.start, item.end, item.visit_type.value))


def group_records(
    records: Iterable[LedgerRecord]
) -> Mapping[Tuple[Date, ProfessionalRef], List[LedgerRecord]]:
    """Group ledger records by (local date, professional)."""
    grouped: Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]] = {}
    for record in records:
        key = (pendulum.date(record.date.year, record.date.month, record.date.day), record.professional)
        grouped.setdefault(key, []).append(record)
    return grouped


def select_non_overlapping(
    records: Iterable[LedgerRecord]
) -> Tuple[List[LedgerRecord], List[LedgerRecord]]:
    """
    Reduce one professional-day of ledger records to a non-overlapping set.

    The earliest recorded booking wins (ties broken by id). Returns
    ``(kept, rejected)``; ``kept`` is ordered by start time.
    """
    kept: List[LedgerRecord] = []
    rejected: List[LedgerRecord] = []
    for record in sorted(records, key=lambda item: (item.recorded_at, item.id)):
        if any(record.overlaps(other.start, other.end) for other in kept):
            rejected.append(record)
        else:
            kept.append(record)
    kept.sort(key=lambda item: (item.start, item.end, item.id))
    return kept, rejected
