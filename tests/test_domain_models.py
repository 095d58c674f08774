"""
Tests for domain models.
"""

import pendulum
import pytest

from carecalendar.domain.models import (
    AvailabilityTemplate,
    AvailableSlot,
    BookedSlot,
    BookingStatus,
    CalendarDay,
    CalendarMonth,
    MonthKey,
    ProfessionalDetails,
    ProfessionalKind,
    ProfessionalRef,
    TemplateRange,
    VisitType,
    derive_working_hours,
    group_records,
    select_non_overlapping,
)

from conftest import DOCTOR, PHYSIO, hm, make_record


class TestProfessionalRef:
    """Tests for the tagged professional reference."""

    def test_parse_and_str(self):
        """kind:id round-trips through its string form."""
        ref = ProfessionalRef.parse("Physiotherapist: ph-9 ")
        assert ref == ProfessionalRef(ProfessionalKind.PHYSIOTHERAPIST, "ph-9")
        assert str(ref) == "physiotherapist:ph-9"

    @pytest.mark.parametrize("value", ["doctor", "doctor:", "dentist:d-1", ":d-1"])
    def test_parse_rejects_malformed(self, value):
        """Test that malformed references are refused."""
        with pytest.raises(ValueError):
            ProfessionalRef.parse(value)

    def test_ordering_is_deterministic(self):
        """Test that references sort by kind, then id."""
        assert sorted([PHYSIO, DOCTOR]) == [DOCTOR, PHYSIO]


class TestMonthKey:
    """Tests for month arithmetic."""

    def test_shift_across_years(self):
        """Test month shifts across year boundaries."""
        assert MonthKey(2025, 1).shift(-1) == MonthKey(2024, 12)
        assert MonthKey(2024, 11).shift(3) == MonthKey(2025, 2)
        assert MonthKey(2025, 3).shift(-15) == MonthKey(2023, 12)

    def test_invalid_month(self):
        """Test that month 13 is refused."""
        with pytest.raises(ValueError):
            MonthKey(2025, 13)

    def test_days_of_february(self):
        """Leap years are respected."""
        assert len(MonthKey(2024, 2).days()) == 29
        assert MonthKey(2025, 2).last_day == pendulum.date(2025, 2, 28)

    def test_ordering_and_str(self):
        """Test month ordering and string form."""
        assert MonthKey(2024, 12) < MonthKey(2025, 1)
        assert str(MonthKey(2025, 3)) == "2025-03"


class TestAvailabilityTemplate:
    """Tests for weekly templates."""

    def test_with_day_replaces_and_clears(self):
        """Test replacing and clearing a weekday without mutating the original."""
        template = AvailabilityTemplate(DOCTOR, {0: [TemplateRange(hm("09:00"), hm("12:00"))]})

        updated = template.with_day(2, [TemplateRange(hm("14:00"), hm("18:00"), VisitType.HOME)])
        assert updated.has_day(0) and updated.has_day(2)
        assert not template.has_day(2)

        cleared = updated.with_day(0, [])
        assert not cleared.has_day(0)
        assert cleared.ranges_for(0) == []

    def test_derive_working_hours_is_sorted(self):
        """Test that derived working hours are sorted and keep type and capacity."""
        hours = derive_working_hours([
            TemplateRange(hm("14:00"), hm("17:00")),
            TemplateRange(hm("09:00"), hm("12:00"), VisitType.HOME, capacity=2),
        ])
        assert [(item.start, item.end) for item in hours] == [(540, 720), (840, 1020)]
        assert hours[0].visit_type is VisitType.HOME
        assert hours[0].capacity == 2

    def test_derive_working_hours_drops_malformed_ranges(self):
        """Test that inverted or out-of-day ranges are left out."""
        hours = derive_working_hours([
            TemplateRange(hm("17:00"), hm("09:00")),
            TemplateRange(-1, hm("10:00")),
            TemplateRange(hm("20:00"), 1500),
            TemplateRange(hm("10:00"), hm("12:00")),
        ])
        assert [(item.start, item.end) for item in hours] == [(600, 720)]


class TestProfessionalDetails:
    """Tests for eligibility and fees."""

    def test_eligibility_requires_verified_and_active(self):
        """Test that eligibility needs both verified and active."""
        details = ProfessionalDetails(DOCTOR, "Dr", is_verified=True, is_active=False)
        assert not details.is_eligible
        assert ProfessionalDetails(DOCTOR, "Dr", is_verified=True, is_active=True).is_eligible

    def test_fee_per_visit_type(self):
        """Test fees by visit type."""
        details = ProfessionalDetails(DOCTOR, "Dr", consultation_fee=500, home_visit_fee=900)
        assert details.fee_for(VisitType.CLINIC) == 500
        assert details.fees() == {VisitType.CLINIC: 500, VisitType.HOME: 900}


class TestLedgerRecords:
    """Tests for ledger record helpers."""

    def test_active_statuses(self):
        """Test which statuses count as active."""
        day = pendulum.date(2025, 3, 17)
        assert make_record("a", day, "10:00", "10:30", BookingStatus.PENDING).is_active
        assert make_record("b", day, "10:00", "10:30", BookingStatus.ACCEPTED).is_active
        assert not make_record("c", day, "10:00", "10:30", BookingStatus.CANCELLED).is_active
        assert not make_record("d", day, "10:00", "10:30", BookingStatus.COMPLETED).is_active

    def test_group_records_by_day_and_professional(self):
        """Test grouping records by day and professional."""
        day = pendulum.date(2025, 3, 17)
        records = [
            make_record("a", day, "10:00", "10:30"),
            make_record("b", day, "11:00", "11:30"),
            make_record("c", day, "10:00", "10:30", professional=PHYSIO),
        ]
        grouped = group_records(records)
        assert [record.id for record in grouped[(day, DOCTOR)]] == ["a", "b"]
        assert [record.id for record in grouped[(day, PHYSIO)]] == ["c"]

    def test_select_non_overlapping_keeps_earliest_recorded(self):
        """On overlap, the booking recorded first wins."""
        day = pendulum.date(2025, 3, 17)
        early = make_record("late-id", day, "09:15", "09:45", recorded_at=pendulum.datetime(2025, 3, 1, tz="UTC"))
        late = make_record("early-id", day, "09:00", "09:30", recorded_at=pendulum.datetime(2025, 3, 2, tz="UTC"))
        separate = make_record("z", day, "08:00", "08:30", recorded_at=pendulum.datetime(2025, 3, 3, tz="UTC"))

        kept, rejected = select_non_overlapping([late, separate, early])

        assert [record.id for record in kept] == ["z", "late-id"]
        assert [record.id for record in rejected] == ["early-id"]


class TestCalendarDocuments:
    """Tests for calendar month and day containers."""

    def test_blank_month_has_every_day(self):
        """Test that a blank month holds every day."""
        month = CalendarMonth.blank(MonthKey(2025, 3))
        assert len(month.days) == 31
        assert month.days[0].weekday_name == "Saturday"
        assert month.version == 0

    def test_day_lookup_by_date_key(self):
        """Test day lookup by date."""
        month = CalendarMonth.blank(MonthKey(2025, 3))
        day = month.day_for(pendulum.date(2025, 3, 17))
        assert day is not None and day.weekday == 0
        assert month.day_for(pendulum.date(2025, 4, 1)) is None

    def test_ensure_entry_keeps_schedules_sorted(self):
        """Test that ensure_entry is idempotent and keeps entries sorted."""
        day = CalendarDay(date=pendulum.date(2025, 3, 17))
        day.ensure_entry(PHYSIO)
        day.ensure_entry(DOCTOR, is_available=False)
        day.ensure_entry(PHYSIO)

        assert [entry.professional for entry in day.schedules] == [DOCTOR, PHYSIO]
        assert not day.entry_for(DOCTOR).is_available

    def test_filtered_view(self):
        """Test that filtering returns a copy."""
        month = CalendarMonth.blank(MonthKey(2025, 3))
        month.days[0].ensure_entry(DOCTOR)
        month.days[0].ensure_entry(PHYSIO)

        filtered = month.filtered(PHYSIO)
        assert [entry.professional for entry in filtered.days[0].schedules] == [PHYSIO]
        assert len(month.days[0].schedules) == 2

    def test_booked_slot_from_record(self):
        """Test building a booked slot from a ledger record."""
        record = make_record("apt-1", pendulum.date(2025, 3, 17), "10:00", "10:30", subject_id="pat-7")
        slot = BookedSlot.from_record(record)
        assert (slot.booking_id, slot.subject_id, slot.start, slot.end) == ("apt-1", "pat-7", 600, 630)
        assert slot.status == "booked"
        assert slot.recorded_at == record.recorded_at


class TestAvailableSlot:
    """Tests for AvailableSlot display."""

    def test_format_display(self):
        """Test slot display formatting."""
        slot = AvailableSlot(start=hm("09:00"), end=hm("09:30"), visit_type=VisitType.CLINIC, fee=500)
        assert slot.duration_minutes == 30
        assert slot.format_display() == "09:00 - 09:30 | clinic | fee 500.00"
