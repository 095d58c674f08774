"""
Tests for the calendar store service.
"""

import asyncio

import pendulum
import pytest

from carecalendar.adapters.memory import InMemoryCalendarStore
from carecalendar.domain.exceptions import (
    ConcurrentModificationError,
    NotFound,
    SlotUnavailable,
    TransientStoreError,
    ValidationError,
)
from carecalendar.domain.models import BookingStatus, CalendarMonth, MonthKey

from conftest import DOCTOR, NEXT_MONDAY, PHYSIO, World, hm, make_record, monday_template


class FlakyStore(InMemoryCalendarStore):
    """Store that reports a conflict for the next ``conflicts`` saves."""

    def __init__(self):
        super().__init__()
        self.conflicts = 0

    async def save_month(self, month):
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentModificationError(f"Calendar {month.key} changed")
        return await super().save_month(month)


def _store_blank(world: World, year: int, month: int) -> None:
    world.run(world.store.save_month(CalendarMonth.blank(MonthKey(year, month))))


class TestMonthLifecycle:
    """Tests for lazy creation and initialization of months."""

    def test_lazy_creation_from_templates_and_ledger(self, doctor_world):
        """A new month carries template hours from today on plus active bookings."""
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))

        month = doctor_world.run(doctor_world.calendar.get_or_create_month(MonthKey(2025, 3)))

        assert month.version == 1
        entry = month.day_for(NEXT_MONDAY).entry_for(DOCTOR)
        assert [(hours.start, hours.end) for hours in entry.working_hours] == [(hm("09:00"), hm("17:00"))]
        assert [slot.booking_id for slot in entry.booked_slots] == ["apt-1"]
        # Mondays before today are not derived
        assert month.day_for(pendulum.date(2025, 3, 3)).entry_for(DOCTOR) is None
        assert month.day_for(pendulum.date(2025, 3, 10)).entry_for(DOCTOR) is not None

    def test_past_month_is_never_created(self, doctor_world):
        """Test that reading a past month does not create it."""
        with pytest.raises(NotFound):
            doctor_world.run(doctor_world.calendar.get_or_create_month(MonthKey(2025, 2)))
        assert doctor_world.store.writes == 0

    def test_initialize_month(self, doctor_world):
        """Test the admin month initialization."""
        month = doctor_world.run(doctor_world.calendar.initialize_month(2025, 4))

        assert month.key == MonthKey(2025, 4)
        assert month.day_for(pendulum.date(2025, 4, 7)).entry_for(DOCTOR) is not None

    def test_initialize_past_or_invalid_month(self, doctor_world):
        """Test that past or impossible months cannot be initialized."""
        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.calendar.initialize_month(2025, 2))
        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.calendar.initialize_month(2025, 13))

    def test_concurrent_creation_writes_once(self, doctor_world):
        """Two callers racing to create a month end up with the same document."""
        calendar = doctor_world.calendar

        async def race():
            return await asyncio.gather(
                calendar.get_or_create_month(MonthKey(2025, 4)),
                calendar.get_or_create_month(MonthKey(2025, 4)),
            )

        first, second = doctor_world.run(race())

        assert doctor_world.store.writes == 1
        assert first == second

    def test_ensure_month_reports_creation(self, doctor_world):
        """Test that ensure_month reports whether it created the month."""
        assert doctor_world.run(doctor_world.calendar.ensure_month(MonthKey(2025, 5)))
        assert not doctor_world.run(doctor_world.calendar.ensure_month(MonthKey(2025, 5)))


class TestVersionedWrites:
    """Tests for the optimistic read-modify-write loop."""

    def test_unchanged_mutation_is_not_written(self, doctor_world):
        """Test that a mutation changing nothing skips the write."""
        calendar = doctor_world.calendar
        doctor_world.run(calendar.get_or_create_month(MonthKey(2025, 3)))

        doctor_world.run(calendar.mutate_month(MonthKey(2025, 3), lambda month: None))

        assert doctor_world.store.writes == 1

    def test_conflicts_are_retried(self):
        """Test that a version conflict is retried with a fresh read."""
        world = World(store=FlakyStore())
        world.add_professional(DOCTOR, monday_template())
        world.run(world.calendar.get_or_create_month(MonthKey(2025, 3)))
        world.store.conflicts = 2

        world.run(world.calendar.add_break(DOCTOR, NEXT_MONDAY, "12:00", "13:00", "Lunch"))

        assert [item.reason for item in world.stored_entry(NEXT_MONDAY).breaks] == ["Lunch"]

    def test_gives_up_after_repeated_conflicts(self):
        """Test that retries are bounded and end in a transient error."""
        world = World(store=FlakyStore())
        world.add_professional(DOCTOR, monday_template())
        world.run(world.calendar.get_or_create_month(MonthKey(2025, 3)))
        world.store.conflicts = 10

        with pytest.raises(TransientStoreError) as excinfo:
            world.run(world.calendar.add_break(DOCTOR, NEXT_MONDAY, "12:00", "13:00"))

        assert excinfo.type is TransientStoreError
        assert "gave up after 3 attempts" in str(excinfo.value)
        assert world.stored_entry(NEXT_MONDAY).breaks == []


class TestBreaks:
    """Tests for operator breaks."""

    def test_add_and_remove_break(self, doctor_world):
        """Test adding a break and removing it by id."""
        calendar = doctor_world.calendar

        created = doctor_world.run(calendar.add_break(DOCTOR, NEXT_MONDAY, "12:00", "13:00", "Lunch"))
        entry = doctor_world.stored_entry(NEXT_MONDAY)
        assert [(item.start, item.end, item.id) for item in entry.breaks] == [(hm("12:00"), hm("13:00"), created.id)]

        removed = doctor_world.run(calendar.remove_break(DOCTOR, NEXT_MONDAY, created.id))
        assert removed.id == created.id
        assert doctor_world.stored_entry(NEXT_MONDAY).breaks == []

    def test_breaks_are_kept_sorted(self, doctor_world):
        """Test that breaks are stored in start order."""
        calendar = doctor_world.calendar
        doctor_world.run(calendar.add_break(DOCTOR, NEXT_MONDAY, "15:00", "15:30"))
        doctor_world.run(calendar.add_break(DOCTOR, NEXT_MONDAY, "12:00", "13:00"))

        assert [item.start for item in doctor_world.stored_entry(NEXT_MONDAY).breaks] == [hm("12:00"), hm("15:00")]

    def test_break_over_booking_is_refused(self, doctor_world):
        """Test that a break may not cover an active booking."""
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))

        with pytest.raises(SlotUnavailable):
            doctor_world.run(doctor_world.calendar.add_break(DOCTOR, NEXT_MONDAY, "10:15", "10:45"))

    def test_overlapping_break_is_refused(self, doctor_world):
        """Test that breaks may not overlap each other."""
        calendar = doctor_world.calendar
        doctor_world.run(calendar.add_break(DOCTOR, NEXT_MONDAY, "12:00", "13:00"))

        with pytest.raises(ValidationError):
            doctor_world.run(calendar.add_break(DOCTOR, NEXT_MONDAY, "12:30", "13:30"))

    def test_break_needs_a_schedule(self, doctor_world):
        """Test that a break needs a schedule entry for that day."""
        with pytest.raises(NotFound):
            doctor_world.run(doctor_world.calendar.add_break(DOCTOR, pendulum.date(2025, 3, 18), "12:00", "13:00"))

    @pytest.mark.parametrize("start,end,day", [
        ("9:00", "10:00", NEXT_MONDAY),
        ("13:00", "12:00", NEXT_MONDAY),
        ("12:00", "13:00", pendulum.date(2025, 3, 3)),
    ])
    def test_invalid_break(self, doctor_world, start, end, day):
        """Test that malformed or past breaks are refused."""
        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.calendar.add_break(DOCTOR, day, start, end))

    def test_remove_unknown_break(self, doctor_world):
        """Test removing a break id that does not exist."""
        with pytest.raises(NotFound):
            doctor_world.run(doctor_world.calendar.remove_break(DOCTOR, NEXT_MONDAY, "nope"))


class TestDayAvailability:
    """Tests for the per-day availability toggle."""

    def test_unavailable_day_offers_no_slots(self, doctor_world):
        """Test that an unavailable day offers no slots."""
        doctor_world.run(doctor_world.calendar.set_day_availability(DOCTOR, NEXT_MONDAY, False))

        assert not doctor_world.stored_entry(NEXT_MONDAY).is_available
        assert doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=NEXT_MONDAY)) == []

    def test_toggle_survives_availability_sync(self, doctor_world):
        """Test that an operator toggle is kept by the availability sync."""
        doctor_world.run(doctor_world.calendar.set_day_availability(DOCTOR, NEXT_MONDAY, False))

        doctor_world.run(doctor_world.job.run_availability_sync())

        entry = doctor_world.stored_entry(NEXT_MONDAY)
        assert not entry.is_available
        assert entry.working_hours

    def test_refused_while_bookings_exist(self, doctor_world):
        """Test that a booked day cannot be marked unavailable."""
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))

        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.calendar.set_day_availability(DOCTOR, NEXT_MONDAY, False))
        assert doctor_world.stored_entry(NEXT_MONDAY) is None

    def test_past_date_is_refused(self, doctor_world):
        """Test that past days cannot be toggled."""
        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.calendar.set_day_availability(DOCTOR, pendulum.date(2025, 3, 3), True))


class TestViews:
    """Tests for month, day and week queries."""

    def test_query_month_filters_by_professional(self, world):
        """Test the month view filtered to one professional."""
        world.add_professional(DOCTOR, monday_template())
        world.add_professional(PHYSIO, monday_template(PHYSIO))

        everyone = world.run(world.calendar.query_month(2025, 3))
        doctors = world.run(world.calendar.query_month(2025, 3, DOCTOR))

        assert [entry.professional for entry in everyone.day_for(NEXT_MONDAY).schedules] == [DOCTOR, PHYSIO]
        assert [entry.professional for entry in doctors.day_for(NEXT_MONDAY).schedules] == [DOCTOR]

    def test_past_months(self, doctor_world):
        """Stored past months are served as stored; missing ones are generated."""
        _store_blank(doctor_world, 2025, 1)

        stored = doctor_world.run(doctor_world.calendar.query_month(2025, 1))
        missing = doctor_world.run(doctor_world.calendar.query_month(2025, 2))
        expired = doctor_world.run(doctor_world.calendar.query_month(2024, 10))

        assert not stored.generated
        assert missing.generated and expired.generated
        assert MonthKey(2025, 2) not in doctor_world.run(doctor_world.store.list_month_keys())

    def test_week_crosses_month_boundary(self, doctor_world):
        """Test a week view spanning two month documents."""
        days = doctor_world.run(doctor_world.calendar.week_schedule(DOCTOR, pendulum.date(2025, 3, 31)))

        assert [day.date for day in days][-1] == pendulum.date(2025, 4, 6)
        assert [bool(day.schedules) for day in days] == [True, False, False, False, False, False, False]
        assert MonthKey(2025, 4) in doctor_world.run(doctor_world.store.list_month_keys())

    def test_day_schedule_missing_entry(self, doctor_world):
        """Test a day schedule for a professional with no entry."""
        assert doctor_world.run(doctor_world.calendar.day_schedule(DOCTOR, pendulum.date(2025, 3, 18))) is None


class TestRetention:
    """Tests for pruning and the status report."""

    def test_prune_expired(self, world):
        """Test that only months before the retention floor are deleted."""
        _store_blank(world, 2024, 11)
        _store_blank(world, 2024, 12)
        _store_blank(world, 2025, 1)

        assert world.run(world.calendar.prune_expired()) == 1
        assert world.run(world.store.list_month_keys()) == [MonthKey(2024, 12), MonthKey(2025, 1)]

    def test_system_status(self, world):
        """Test grouping of stored months by age."""
        for year, month in [(2024, 11), (2025, 1), (2025, 3), (2025, 7)]:
            _store_blank(world, year, month)

        status = world.run(world.calendar.system_status())

        assert status.retention_floor == MonthKey(2024, 12)
        assert status.expired == [MonthKey(2024, 11)]
        assert status.retained == [MonthKey(2025, 1)]
        assert status.active == [MonthKey(2025, 3)]
        assert status.beyond_window == [MonthKey(2025, 7)]
        assert status.missing == [MonthKey(2025, 4), MonthKey(2025, 5)]
        assert status.total == 4


class TestHealthCheck:
    """Tests for the read-only drift report."""

    def test_missing_month_is_reported_not_created(self, doctor_world):
        """Test that a health check never creates the current month."""
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))

        report = doctor_world.run(doctor_world.calendar.health_check())

        assert not report.month_stored
        assert report.active_bookings == 1
        assert report.status == "HEALTHY"
        assert doctor_world.run(doctor_world.store.list_month_keys()) == []

    def test_converged_calendar_is_healthy(self, doctor_world):
        """Test that a freshly reconciled month has no inconsistencies."""
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))
        doctor_world.run(doctor_world.job.run_full_pass())

        report = doctor_world.run(doctor_world.calendar.health_check())

        assert report.month == MonthKey(2025, 3)
        assert report.stored_days == 31
        assert report.status == "HEALTHY"
        assert report.inconsistencies == []

    def test_drift_is_reported_by_kind(self, doctor_world):
        """Test that unsynced bookings are classified without writing anything."""
        doctor_world.run(doctor_world.job.run_full_pass())
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))
        doctor_world.ledger.add(make_record("apt-2", NEXT_MONDAY, "11:00", "11:30", professional=PHYSIO))
        doctor_world.ledger.add(make_record(
            "apt-3", NEXT_MONDAY, "10:15", "10:45",
            recorded_at=pendulum.datetime(2025, 3, 9, tz="UTC"),
        ))
        writes = doctor_world.store.writes

        report = doctor_world.run(doctor_world.calendar.health_check())

        assert report.status == "NEEDS_ATTENTION"
        assert report.counts == {"MISSING_SLOT": 1, "MISSING_PROFESSIONAL": 1}
        assert sorted(item.booking_id for item in report.inconsistencies) == ["apt-1", "apt-2"]
        assert doctor_world.store.writes == writes

    def test_missing_day(self, doctor_world):
        """Test that a stored month lacking a booked day is reported."""
        month = CalendarMonth.blank(MonthKey(2025, 3))
        month.days = [day for day in month.days if day.date != NEXT_MONDAY]
        doctor_world.run(doctor_world.store.save_month(month))
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))

        report = doctor_world.run(doctor_world.calendar.health_check())

        assert report.counts == {"MISSING_DAY": 1}
        assert report.stored_days == 30


class TestMonthDetails:
    """Tests for monthly appointment statistics."""

    def test_past_month_counts_every_status(self, world):
        """Test that past months include finished and cancelled appointments."""
        for record_id, day, status, ref in [
            ("a", pendulum.date(2025, 2, 3), BookingStatus.COMPLETED, DOCTOR),
            ("b", pendulum.date(2025, 2, 3), BookingStatus.CANCELLED, DOCTOR),
            ("c", pendulum.date(2025, 2, 4), BookingStatus.NO_SHOW, PHYSIO),
        ]:
            world.ledger.add(make_record(record_id, day, "10:00", "10:30", status=status, professional=ref))

        stats = world.run(world.calendar.month_details(2025, 2))

        assert stats.is_past and not stats.stored
        assert stats.total == 3
        assert stats.by_status == {"completed": 1, "cancelled": 1, "no_show": 1}
        assert stats.by_kind == {"doctor": 2, "physiotherapist": 1}
        assert stats.by_weekday == {"Monday": 2, "Tuesday": 1}

    def test_current_month_counts_active_bookings(self, doctor_world):
        """Test that the current month leaves inactive records out."""
        doctor_world.ledger.add(make_record("a", NEXT_MONDAY, "10:00", "10:30"))
        doctor_world.ledger.add(make_record("b", NEXT_MONDAY, "11:00", "11:30", status=BookingStatus.CANCELLED))
        doctor_world.run(doctor_world.job.run_full_pass())

        stats = doctor_world.run(doctor_world.calendar.month_details(2025, 3))

        assert not stats.is_past
        assert stats.stored and stats.stored_days == 31
        assert stats.total == 1
        assert stats.by_status == {"confirmed": 1}

    def test_invalid_month(self, world):
        """Test that month 13 is rejected."""
        with pytest.raises(ValidationError):
            world.run(world.calendar.month_details(2025, 13))
