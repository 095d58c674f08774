"""
Reconciliation job: converge the calendar cache on the ledger and templates.

A full pass runs four phases in order: booking sync, month initialization,
retention pruning and availability sync. Each phase is idempotent and is
guarded on its own, so one failing phase does not stop the others. All
passes share one lock. A periodic trigger arriving while a pass runs is
skipped; a targeted sync requested by a template update waits its turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

import pendulum
from pendulum import Date, DateTime

from ..domain.models import (
    ACTIVE_BOOKING_STATUSES,
    AvailabilityTemplate,
    CalendarMonth,
    LedgerRecord,
    MonthKey,
    ProfessionalRef,
    group_records,
)
from ..domain.serialization import format_date
from .calendar_service import (
    CalendarService,
    apply_booked_slots,
    apply_presence,
    records_by_month,
    resolve_conflicts,
    usable_records,
)
from .ports import BookingLedger, ProfessionalDirectory

logger = logging.getLogger(__name__)

BOOKING_SYNC = "booking_sync"
MONTH_INITIALIZATION = "month_initialization"
RETENTION_PRUNE = "retention_prune"
AVAILABILITY_SYNC = "availability_sync"

Phase = Tuple[str, Callable[[], Awaitable[int]]]


@dataclass
class PhaseOutcome:
    """Result of one phase: how many items it changed, or why it failed."""
    name: str
    changed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ReconciliationReport:
    """Summary of one triggered pass."""
    trigger: str
    started_at: DateTime
    finished_at: Optional[DateTime] = None
    skipped: bool = False
    phases: List[PhaseOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped and all(phase.ok for phase in self.phases)

    @property
    def failed_phases(self) -> List[str]:
        return [phase.name for phase in self.phases if not phase.ok]

    def phase(self, name: str) -> Optional[PhaseOutcome]:
        for outcome in self.phases:
            if outcome.name == name:
                return outcome
        return None


class ReconciliationJob:
    """
    Periodic, mutually exclusive reconciliation of the calendar cache.

    The lock is owned by the job: overlapping periodic triggers are skipped,
    never queued. Syncs requested with ``wait=True`` queue on the lock.
    """

    def __init__(
        self,
        calendar: CalendarService,
        ledger: BookingLedger,
        directory: ProfessionalDirectory,
    ) -> None:
        self._calendar = calendar
        self._ledger = ledger
        self._directory = directory
        self._lock = asyncio.Lock()
        self.last_report: Optional[ReconciliationReport] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_full_pass(self, trigger: str = "full_pass") -> ReconciliationReport:
        """Run all four phases in order."""
        return await self._run(trigger, [
            (BOOKING_SYNC, self._sync_bookings),
            (MONTH_INITIALIZATION, self._initialize_months),
            (RETENTION_PRUNE, self._prune),
            (AVAILABILITY_SYNC, self._sync_availability),
        ])

    async def run_booking_sync(self, trigger: str = BOOKING_SYNC) -> ReconciliationReport:
        return await self._run(trigger, [(BOOKING_SYNC, self._sync_bookings)])

    async def run_availability_sync(
        self,
        professional: Optional[ProfessionalRef] = None,
        trigger: str = AVAILABILITY_SYNC,
        wait: bool = False
    ) -> ReconciliationReport:
        """
        Re-derive working hours for everyone, or for one professional.

        With ``wait`` the sync runs after any pass in progress instead of
        being skipped.
        """
        return await self._run(trigger, [
            (AVAILABILITY_SYNC, lambda: self._sync_availability(professional)),
        ], wait=wait)

    async def run_retention_prune(self, trigger: str = RETENTION_PRUNE) -> ReconciliationReport:
        return await self._run(trigger, [(RETENTION_PRUNE, self._prune)])

    async def run_month_initialization(self, trigger: str = MONTH_INITIALIZATION) -> ReconciliationReport:
        return await self._run(trigger, [(MONTH_INITIALIZATION, self._initialize_months)])

    async def _run(self, trigger: str, phases: Sequence[Phase], wait: bool = False) -> ReconciliationReport:
        report = ReconciliationReport(trigger=trigger, started_at=pendulum.now("UTC"))

        if self._lock.locked():
            if not wait:
                logger.warning("Reconciliation already in progress; skipping %s", trigger)
                report.skipped = True
                report.finished_at = pendulum.now("UTC")
                return report
            logger.info("Reconciliation already in progress; %s queued", trigger)

        async with self._lock:
            logger.info("Reconciliation %s started", trigger)
            for name, phase in phases:
                outcome = PhaseOutcome(name=name)
                try:
                    outcome.changed = await phase()
                except Exception as exc:
                    # Retried wholesale on the next cycle
                    logger.exception("Reconciliation phase %s failed", name)
                    outcome.error = str(exc) or exc.__class__.__name__
                report.phases.append(outcome)

            report.finished_at = pendulum.now("UTC")
            self.last_report = report

        logger.info(
            "Reconciliation %s finished: %s",
            trigger,
            ", ".join(
                f"{phase.name}={'failed' if not phase.ok else phase.changed}" for phase in report.phases
            ),
        )
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _sync_bookings(self) -> int:
        """Mirror active ledger records into booked slots across the window."""
        keys = self._calendar.window_keys()
        records = await self._ledger.list_bookings_between(
            keys[0].first_day,
            keys[-1].last_day,
            statuses=ACTIVE_BOOKING_STATUSES,
        )
        by_month = records_by_month(dict(group_records(usable_records(records))))

        changed = 0
        for key in keys:
            grouped = by_month.get(key, {})
            changed += await self._calendar.mutate_month(
                key,
                lambda month, grouped=grouped: self._apply_bookings(month, grouped),
            )
        return changed

    @staticmethod
    def _apply_bookings(
        month: CalendarMonth,
        grouped: Dict[Tuple[Date, ProfessionalRef], List[LedgerRecord]]
    ) -> int:
        changed = 0
        for day in month.days:
            refs: Set[ProfessionalRef] = {entry.professional for entry in day.schedules}
            refs.update(ref for (record_date, ref) in grouped if record_date == day.date)

            for ref in sorted(refs):
                entry = day.entry_for(ref)
                before = list(entry.booked_slots) if entry is not None else []
                kept = resolve_conflicts(
                    grouped.get((day.date, ref), []),
                    f"{format_date(day.date)} for {ref}",
                )
                apply_booked_slots(day, ref, kept)

                entry = day.entry_for(ref)
                after = entry.booked_slots if entry is not None else []
                if after != before:
                    changed += 1
        return changed

    async def _initialize_months(self) -> int:
        created = 0
        for key in self._calendar.window_keys():
            if await self._calendar.ensure_month(key):
                created += 1
        return created

    async def _prune(self) -> int:
        return await self._calendar.prune_expired()

    async def _sync_availability(self, professional: Optional[ProfessionalRef] = None) -> int:
        """Re-derive working hours from templates for every day from today on."""
        today = self._calendar.today()
        templates = await self._load_templates(professional)

        records = await self._ledger.list_bookings_between(
            today,
            self._calendar.window_end(),
            statuses=ACTIVE_BOOKING_STATUSES,
            professional=professional,
        )
        booked_days = set(group_records(usable_records(records)))

        changed = 0
        for key in self._calendar.window_keys():
            changed += await self._calendar.mutate_month(
                key,
                lambda month: self._apply_availability(month, today, templates, booked_days, professional),
            )
        return changed

    async def _load_templates(
        self,
        professional: Optional[ProfessionalRef]
    ) -> Dict[ProfessionalRef, Optional[AvailabilityTemplate]]:
        """Templates of eligible professionals; ineligible ones map to None."""
        if professional is not None:
            details = await self._directory.get_details(professional)
            if details is None or not details.is_eligible:
                logger.info("%s is not eligible; treating as having no template", professional)
                return {professional: None}
            return {professional: await self._directory.get_template(professional)}

        templates: Dict[ProfessionalRef, Optional[AvailabilityTemplate]] = {}
        for details in await self._directory.list_eligible():
            templates[details.ref] = await self._directory.get_template(details.ref)
        return templates

    @staticmethod
    def _apply_availability(
        month: CalendarMonth,
        today: Date,
        templates: Dict[ProfessionalRef, Optional[AvailabilityTemplate]],
        booked_days: Set[Tuple[Date, ProfessionalRef]],
        scope: Optional[ProfessionalRef],
    ) -> int:
        changed = 0
        for day in month.days:
            if day.date < today:
                continue

            if scope is not None:
                refs = {scope}
            else:
                refs = set(templates)
                refs.update(entry.professional for entry in day.schedules)
                refs.update(ref for (record_date, ref) in booked_days if record_date == day.date)

            for ref in sorted(refs):
                template = templates.get(ref)
                ranges = template.ranges_for(day.weekday) if template is not None else []

                before = day.entry_for(ref)
                snapshot = (list(before.working_hours), before.is_available) if before is not None else None

                apply_presence(day, ref, ranges, has_bookings=(day.date, ref) in booked_days)

                after = day.entry_for(ref)
                if snapshot != ((list(after.working_hours), after.is_available) if after is not None else None):
                    changed += 1
        return changed
