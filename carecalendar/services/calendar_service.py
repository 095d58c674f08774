"""
Calendar store access: lazy month creation, versioned read-modify-write,
filtered views and operator edits (breaks, per-day availability).

Every write goes through ``mutate_month``, which re-reads the whole month,
applies a mutation and saves it with a version check. Mutations that leave
the document unchanged are not written.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

import pendulum
from pendulum import Date

from ..config import CalendarSettings
from ..domain import intervals
from ..domain.exceptions import (
    ConcurrentModificationError,
    NotFound,
    SlotUnavailable,
    TransientStoreError,
    ValidationError,
)
from ..domain.models import (
    ACTIVE_BOOKING_STATUSES,
    WEEKDAY_NAMES,
    BookedSlot,
    Break,
    CalendarDay,
    CalendarMonth,
    LedgerRecord,
    MonthKey,
    ProfessionalRef,
    ProfessionalScheduleEntry,
    TemplateRange,
    derive_working_hours,
    group_records,
    select_non_overlapping,
)
from ..domain.serialization import format_date, month_to_document
from .past_view import PastPeriodViewGenerator
from .ports import BookingLedger, CalendarStore, Clock, ProfessionalDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")


def local_today() -> Date:
    return pendulum.now().date()


@dataclass
class CalendarStatus:
    """Persisted months grouped by their position relative to the window."""
    today: Date
    current: MonthKey
    window: List[MonthKey]
    retention_floor: MonthKey
    expired: List[MonthKey] = field(default_factory=list)
    retained: List[MonthKey] = field(default_factory=list)
    active: List[MonthKey] = field(default_factory=list)
    beyond_window: List[MonthKey] = field(default_factory=list)

    @property
    def missing(self) -> List[MonthKey]:
        """Window months without a stored document."""
        return [key for key in self.window if key not in self.active]

    @property
    def total(self) -> int:
        return len(self.expired) + len(self.retained) + len(self.active) + len(self.beyond_window)


class InconsistencyKind(str, Enum):
    MISSING_DAY = "MISSING_DAY"
    MISSING_PROFESSIONAL = "MISSING_PROFESSIONAL"
    MISSING_SLOT = "MISSING_SLOT"


@dataclass(frozen=True)
class Inconsistency:
    """An active ledger booking the cached calendar does not show."""
    kind: InconsistencyKind
    booking_id: str
    date: Date
    professional: ProfessionalRef

    def __str__(self) -> str:
        return f"{self.kind.value} {self.booking_id} ({self.professional} on {format_date(self.date)})"


@dataclass
class HealthReport:
    """Drift between the ledger and the stored current month."""
    month: MonthKey
    month_stored: bool
    stored_days: int = 0
    active_bookings: int = 0
    inconsistencies: List[Inconsistency] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "HEALTHY" if not self.inconsistencies else "NEEDS_ATTENTION"

    @property
    def counts(self) -> Dict[str, int]:
        return dict(Counter(item.kind.value for item in self.inconsistencies))


@dataclass
class MonthStatistics:
    """Appointment counts of one month by status, professional kind and weekday."""
    month: MonthKey
    is_past: bool
    stored: bool
    stored_days: int = 0
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_kind: Dict[str, int] = field(default_factory=dict)
    by_weekday: Dict[str, int] = field(default_factory=dict)


def apply_booked_slots(
    day: CalendarDay,
    professional: ProfessionalRef,
    records: Sequence[LedgerRecord]
) -> None:
    """
    Make one entry's booked slots mirror ``records`` exactly.

    ``records`` must already be non-overlapping. A missing entry is created
    only when there is something to book, and never with working hours.
    """
    entry = day.entry_for(professional)
    if entry is None:
        if not records:
            return
        entry = day.ensure_entry(professional, is_available=False)

    entry.booked_slots = [BookedSlot.from_record(record) for record in records]
    entry.sort_booked_slots()


def apply_presence(
    day: CalendarDay,
    professional: ProfessionalRef,
    ranges: Sequence[TemplateRange],
    *,
    has_bookings: bool
) -> None:
    """
    Apply the template x bookings presence rules to one professional-day.

    template present  -> working hours derived from the template
    bookings only     -> kept with no working hours, unavailable
    neither           -> entry removed
    """
    entry = day.entry_for(professional)
    if entry is not None and entry.has_bookings:
        has_bookings = True

    # A weekday whose ranges are all malformed counts as having no template
    hours = derive_working_hours(ranges)
    if hours:
        if entry is None:
            entry = day.ensure_entry(professional)
        elif not entry.working_hours:
            entry.is_available = True
        entry.working_hours = hours
    elif has_bookings:
        entry = day.ensure_entry(professional, is_available=False)
        entry.working_hours = []
        entry.is_available = False
    elif entry is not None:
        day.remove_entry(professional)


def usable_records(records: Iterable[LedgerRecord]) -> List[LedgerRecord]:
    """Active records with a well-formed time range; others are logged and dropped."""
    usable: List[LedgerRecord] = []
    for record in records:
        if not record.is_active:
            continue
        if intervals.to_interval(record.start, record.end, context=f"ledger record {record.id}") is None:
            continue
        usable.append(record)
    return usable


def resolve_conflicts(records: Sequence[LedgerRecord], where: str) -> List[LedgerRecord]:
    kept, rejected = select_non_overlapping(records)
    for record in rejected:
        logger.warning(
            "Ledger record %s overlaps an earlier booking on %s; leaving it out of the calendar",
            record.id,
            where,
        )
    return kept


class CalendarService:
    """
    Access to calendar month documents.

    Current and future months are created lazily on first access; past
    months are never created. Months before the retention floor, or past
    months that are no longer stored, are answered with generated views.
    """

    def __init__(
        self,
        store: CalendarStore,
        ledger: BookingLedger,
        directory: ProfessionalDirectory,
        *,
        settings: Optional[CalendarSettings] = None,
        clock: Optional[Clock] = None,
        past_views: Optional[PastPeriodViewGenerator] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._directory = directory
        self.settings = settings or CalendarSettings()
        self._clock = clock or local_today
        self._past_views = past_views or PastPeriodViewGenerator(ledger)

    # ------------------------------------------------------------------
    # Window arithmetic
    # ------------------------------------------------------------------

    def today(self) -> Date:
        return self._clock()

    def current_key(self) -> MonthKey:
        return MonthKey.from_date(self.today())

    def window_keys(self) -> List[MonthKey]:
        """Current month plus the configured number of future months."""
        current = self.current_key()
        return [current.shift(offset) for offset in range(self.settings.future_months + 1)]

    def window_end(self) -> Date:
        return self.window_keys()[-1].last_day

    def retention_floor(self) -> MonthKey:
        """Oldest month kept in the store; anything earlier is pruned."""
        return self.current_key().shift(-self.settings.retention_months)

    def ensure_not_past(self, day: Date, action: str) -> None:
        if day < self.today():
            raise ValidationError(f"Cannot {action} for a past date ({format_date(day)})")

    # ------------------------------------------------------------------
    # Month documents
    # ------------------------------------------------------------------

    async def get_or_create_month(self, key: MonthKey) -> CalendarMonth:
        """
        Return the stored month, creating current and future months on demand.

        Raises:
            NotFound: If a past month is not stored
            TransientStoreError: If the store fails
        """
        month, _ = await self._load_or_create(key)
        return month

    async def ensure_month(self, key: MonthKey) -> bool:
        """Make sure a current or future month is stored; True if it was created."""
        _, created = await self._load_or_create(key)
        return created

    async def initialize_month(self, year: int, month: int) -> CalendarMonth:
        """
        Admin entry point: create a specific month if it does not exist.

        Raises:
            ValidationError: If the month is invalid or in the past
        """
        key = self._month_key(year, month)
        if key < self.current_key():
            raise ValidationError(f"Cannot initialize past month {key}")
        return await self.get_or_create_month(key)

    async def _load_or_create(self, key: MonthKey) -> Tuple[CalendarMonth, bool]:
        existing = await self._store.get_month(key)
        if existing is not None:
            return existing, False

        if key < self.current_key():
            raise NotFound(f"No calendar stored for past month {key}")

        month = await self._build_month(key)
        try:
            saved = await self._store.save_month(month)
        except ConcurrentModificationError:
            # Someone else created it first
            stored = await self._store.get_month(key)
            if stored is None:
                raise TransientStoreError(f"Calendar {key} vanished while being created")
            return stored, False

        logger.info("Initialized calendar %s", key)
        return saved, True

    async def _build_month(self, key: MonthKey) -> CalendarMonth:
        """A new month with working hours from templates and active bookings from the ledger."""
        month = CalendarMonth.blank(key)
        today = self.today()

        templates = {}
        for details in await self._directory.list_eligible():
            template = await self._directory.get_template(details.ref)
            if template is not None:
                templates[details.ref] = template

        records = await self._ledger.list_bookings_between(
            key.first_day,
            key.last_day,
            statuses=ACTIVE_BOOKING_STATUSES,
        )
        grouped = group_records(usable_records(records))

        for (record_date, ref), day_records in sorted(grouped.items(), key=lambda item: (item[0][0], item[0][1])):
            day = month.day_for(record_date)
            if day is not None:
                apply_booked_slots(day, ref, resolve_conflicts(day_records, f"{format_date(record_date)} for {ref}"))

        for day in month.days:
            if day.date < today:
                continue
            for ref, template in sorted(templates.items()):
                apply_presence(day, ref, template.ranges_for(day.weekday), has_bookings=False)

        return month

    async def mutate_month(self, key: MonthKey, mutator: Callable[[CalendarMonth], T]) -> T:
        """
        Whole-document read-modify-write with an optimistic version check.

        ``mutator`` is applied to a freshly read month and may be applied
        again after a conflict, so it must not keep state between calls.
        Exceptions raised by ``mutator`` abort the write.

        Raises:
            TransientStoreError: If the document kept changing underneath us
        """
        attempts = self.settings.max_write_retries
        for attempt in range(1, attempts + 1):
            month = await self.get_or_create_month(key)
            before = month_to_document(month)
            result = mutator(month)

            if month_to_document(month) == before:
                return result

            try:
                await self._store.save_month(month)
                return result
            except ConcurrentModificationError as exc:
                logger.debug("Write conflict on %s (attempt %s/%s): %s", key, attempt, attempts, exc)

        raise TransientStoreError(f"Calendar {key} kept changing; gave up after {attempts} attempts")

    async def mutate_day(self, day: Date, mutator: Callable[[CalendarDay], T]) -> T:
        """Read-modify-write one day, located by its canonical date key."""
        def apply(month: CalendarMonth) -> T:
            calendar_day = month.day_for(day)
            if calendar_day is None:
                raise NotFound(f"Day {format_date(day)} missing from calendar {month.key}")
            return mutator(calendar_day)

        return await self.mutate_month(MonthKey.from_date(day), apply)

    async def prune_expired(self) -> int:
        """Delete stored months older than the retention window."""
        floor = self.retention_floor()
        deleted = await self._store.delete_months_before(floor)
        if deleted:
            logger.info("Pruned %s calendar month(s) before %s", deleted, floor)
        return deleted

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def query_month(
        self,
        year: int,
        month: int,
        professional: Optional[ProfessionalRef] = None
    ) -> CalendarMonth:
        """
        Calendar month, optionally filtered to one professional.

        Raises:
            ValidationError: If the month is invalid
        """
        key = self._month_key(year, month)

        if key < self.retention_floor():
            return await self._past_views.month_view(key, professional)

        stored = await self._store.get_month(key)
        if stored is not None:
            return stored.filtered(professional)

        if key < self.current_key():
            return await self._past_views.month_view(key, professional)

        created = await self.get_or_create_month(key)
        return created.filtered(professional)

    async def get_day(self, day: Date, professional: Optional[ProfessionalRef] = None) -> CalendarDay:
        """One calendar day, optionally filtered to one professional."""
        key = MonthKey.from_date(day)
        if key < self.retention_floor():
            return await self._past_views.day_view(day, professional)

        stored = await self._store.get_month(key)
        if stored is None:
            if key < self.current_key():
                return await self._past_views.day_view(day, professional)
            stored = await self.get_or_create_month(key)

        calendar_day = stored.day_for(day)
        if calendar_day is None:
            raise NotFound(f"Day {format_date(day)} missing from calendar {key}")
        return calendar_day.filtered(professional)

    async def day_schedule(self, professional: ProfessionalRef, day: Date) -> Optional[ProfessionalScheduleEntry]:
        """Schedule entry of one professional on one day, or None."""
        calendar_day = await self.get_day(day, professional)
        return calendar_day.entry_for(professional)

    async def week_schedule(self, professional: ProfessionalRef, start: Date) -> List[CalendarDay]:
        """Seven consecutive days starting at ``start``, filtered to one professional."""
        return [await self.get_day(start.add(days=offset), professional) for offset in range(7)]

    # ------------------------------------------------------------------
    # Operator edits
    # ------------------------------------------------------------------

    async def add_break(
        self,
        professional: ProfessionalRef,
        day: Date,
        start: str,
        end: str,
        reason: str = "Break"
    ) -> Break:
        """
        Add an operator break to a professional's day.

        Raises:
            ValidationError: Malformed times, past date, or overlap with another break
            SlotUnavailable: If an active booking overlaps the break
            NotFound: If the professional has no schedule that day
        """
        interval = intervals.parse_range(start, end)
        self.ensure_not_past(day, "add a break")

        records = await self._ledger.list_active_bookings(professional, day)
        conflicts = [record for record in records if record.overlaps(interval.start, interval.end)]
        if conflicts:
            raise SlotUnavailable(
                f"Break {interval} overlaps booking {conflicts[0].id} of {professional}"
            )

        new_break = Break(start=interval.start, end=interval.end, reason=reason or "Break")

        def apply(calendar_day: CalendarDay) -> Break:
            entry = self._require_entry(calendar_day, professional)
            for existing in entry.breaks:
                if intervals.overlaps(existing.start, existing.end, interval.start, interval.end):
                    raise ValidationError(f"Break {interval} overlaps existing break {existing}")
            entry.breaks = sorted([*entry.breaks, new_break], key=lambda item: (item.start, item.end))
            return new_break

        created = await self.mutate_day(day, apply)
        logger.info("Added break %s for %s on %s", created, professional, format_date(day))
        return created

    async def remove_break(self, professional: ProfessionalRef, day: Date, break_id: str) -> Break:
        """
        Remove an operator break by id.

        Raises:
            NotFound: If the entry or break does not exist
        """
        def apply(calendar_day: CalendarDay) -> Break:
            entry = self._require_entry(calendar_day, professional)
            for existing in entry.breaks:
                if existing.id == break_id:
                    entry.breaks = [item for item in entry.breaks if item.id != break_id]
                    return existing
            raise NotFound(f"Break {break_id} not found for {professional} on {format_date(day)}")

        removed = await self.mutate_day(day, apply)
        logger.info("Removed break %s for %s on %s", break_id, professional, format_date(day))
        return removed

    async def set_day_availability(
        self,
        professional: ProfessionalRef,
        day: Date,
        is_available: bool
    ) -> ProfessionalScheduleEntry:
        """
        Toggle whether a professional takes bookings on one day.

        Marking a day unavailable is refused while bookings exist.

        Raises:
            ValidationError: Past date, or bookings exist
            NotFound: If the professional has no schedule that day
        """
        self.ensure_not_past(day, "change availability")

        if not is_available:
            records = await self._ledger.list_active_bookings(professional, day)
            if records:
                raise ValidationError(
                    f"Cannot mark {professional} unavailable on {format_date(day)}: "
                    f"{len(records)} active booking(s)"
                )

        def apply(calendar_day: CalendarDay) -> ProfessionalScheduleEntry:
            entry = self._require_entry(calendar_day, professional)
            if not is_available and entry.has_bookings:
                raise ValidationError(
                    f"Cannot mark {professional} unavailable on {format_date(day)}: "
                    f"{len(entry.booked_slots)} booked slot(s)"
                )
            entry.is_available = is_available
            return entry

        return await self.mutate_day(day, apply)

    async def system_status(self) -> CalendarStatus:
        """Stored months grouped by age relative to the window."""
        window = self.window_keys()
        status = CalendarStatus(
            today=self.today(),
            current=self.current_key(),
            window=window,
            retention_floor=self.retention_floor(),
        )

        for key in await self._store.list_month_keys():
            if key < status.retention_floor:
                status.expired.append(key)
            elif key < status.current:
                status.retained.append(key)
            elif key <= window[-1]:
                status.active.append(key)
            else:
                status.beyond_window.append(key)

        return status

    async def health_check(self) -> HealthReport:
        """
        Compare active ledger bookings of the current month with the stored
        document. Read-only: a missing month is reported, never created.

        Records the booking sync deliberately leaves out (malformed or
        losing an overlap) are not counted as drift.
        """
        key = self.current_key()
        month = await self._store.get_month(key)
        records = await self._ledger.list_bookings_between(
            key.first_day, key.last_day, statuses=ACTIVE_BOOKING_STATUSES,
        )

        report = HealthReport(month=key, month_stored=month is not None)
        if month is None:
            report.active_bookings = len(records)
            return report
        report.stored_days = len(month.days)

        for (record_date, ref), grouped in sorted(group_records(usable_records(records)).items()):
            kept, _ = select_non_overlapping(grouped)
            report.active_bookings += len(kept)
            day = month.day_for(record_date)
            entry = day.entry_for(ref) if day is not None else None
            for record in kept:
                if day is None:
                    kind = InconsistencyKind.MISSING_DAY
                elif entry is None:
                    kind = InconsistencyKind.MISSING_PROFESSIONAL
                elif entry.slot_for(record.id) is None:
                    kind = InconsistencyKind.MISSING_SLOT
                else:
                    continue
                report.inconsistencies.append(Inconsistency(kind, record.id, record_date, ref))

        if report.inconsistencies:
            logger.warning("Calendar %s has %s inconsistencies", key, len(report.inconsistencies))
        return report

    async def month_details(self, year: int, month: int) -> MonthStatistics:
        """
        Appointment statistics for one month.

        Past months count every ledger record of the month; the current and
        future months count active bookings only.
        """
        key = self._month_key(year, month)
        is_past = key < self.current_key()
        stored = await self._store.get_month(key)

        records = await self._ledger.list_bookings_between(
            key.first_day,
            key.last_day,
            statuses=None if is_past else ACTIVE_BOOKING_STATUSES,
        )

        stats = MonthStatistics(
            month=key,
            is_past=is_past,
            stored=stored is not None,
            stored_days=len(stored.days) if stored is not None else 0,
            total=len(records),
        )
        stats.by_status = dict(Counter(record.status.value for record in records))
        stats.by_kind = dict(Counter(record.professional.kind.value for record in records))
        stats.by_weekday = dict(Counter(WEEKDAY_NAMES[record.date.weekday()] for record in records))
        return stats

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _month_key(year: int, month: int) -> MonthKey:
        try:
            return MonthKey(int(year), int(month))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid month {year}-{month}: {exc}") from exc

    @staticmethod
    def _require_entry(calendar_day: CalendarDay, professional: ProfessionalRef) -> ProfessionalScheduleEntry:
        entry = calendar_day.entry_for(professional)
        if entry is None:
            raise NotFound(f"{professional} has no schedule on {format_date(calendar_day.date)}")
        return entry


def records_by_month(
    grouped: Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]]
) -> Dict[MonthKey, Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]]]:
    """Split grouped ledger records by calendar month."""
    split: Dict[MonthKey, Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]]] = {}
    for (record_date, ref), records in grouped.items():
        split.setdefault(MonthKey.from_date(record_date), {})[(record_date, ref)] = records
    return split
