"""
Tests for the slot finder service.
"""

import logging

import pendulum
import pytest

from carecalendar.adapters.memory import InMemoryCalendarStore
from carecalendar.domain.exceptions import TransientStoreError, ValidationError
from carecalendar.domain.models import AvailabilityTemplate, TemplateRange, VisitType

from conftest import DOCTOR, NEXT_MONDAY, PHYSIO, World, hm, make_record, monday_template


class OfflineStore(InMemoryCalendarStore):
    async def get_month(self, key):
        raise TransientStoreError("store offline")


class TestSlotFinderService:
    """Tests for SlotFinderService.find_slots."""

    def test_open_day(self, doctor_world):
        """Test the free slots of an open day."""
        slots = doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=NEXT_MONDAY, duration_minutes=30))

        assert len(slots) == 16
        assert (slots[0].start, slots[-1].start) == (hm("09:00"), hm("16:30"))
        assert all(slot.fee == 500.0 for slot in slots)

    def test_default_duration_comes_from_settings(self, doctor_world):
        """Test the default slot duration."""
        slots = doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=NEXT_MONDAY))

        assert len(slots) == 16

    def test_ledger_record_not_yet_synced_blocks_its_slot(self, doctor_world):
        """The fresh ledger is consulted even before the cache catches up."""
        doctor_world.run(doctor_world.job.run_full_pass())
        doctor_world.ledger.add(make_record("apt-1", NEXT_MONDAY, "10:00", "10:30"))

        slots = doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=NEXT_MONDAY))

        assert doctor_world.stored_entry(NEXT_MONDAY).booked_slots == []
        assert len(slots) == 15
        assert hm("10:00") not in [slot.start for slot in slots]

    def test_break_excludes_slots(self, doctor_world):
        """Test that a break removes its slots."""
        doctor_world.run(doctor_world.calendar.add_break(DOCTOR, NEXT_MONDAY, "12:00", "13:00"))

        starts = [slot.start for slot in doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=NEXT_MONDAY))]

        assert len(starts) == 14
        assert hm("12:00") not in starts and hm("12:30") not in starts

    def test_home_visits_use_home_fee(self, world):
        """Test home visit slots and fees."""
        world.add_professional(DOCTOR, AvailabilityTemplate(DOCTOR, {0: [
            TemplateRange(hm("09:00"), hm("12:00"), VisitType.CLINIC),
            TemplateRange(hm("16:00"), hm("19:00"), VisitType.HOME),
        ]}))

        slots = world.run(world.slots.find_slots(
            professional=DOCTOR, day=NEXT_MONDAY, duration_minutes=60, visit_type=VisitType.HOME,
        ))

        assert [slot.start for slot in slots] == [hm("16:00"), hm("17:00"), hm("18:00")]
        assert {slot.fee for slot in slots} == {900.0}

    def test_day_off_has_no_slots(self, doctor_world):
        """Test a weekday without template hours."""
        tuesday = pendulum.date(2025, 3, 18)
        assert doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=tuesday)) == []

    def test_unknown_professional_has_no_slots(self, doctor_world):
        """Test slots for an unknown professional."""
        assert doctor_world.run(doctor_world.slots.find_slots(professional=PHYSIO, day=NEXT_MONDAY)) == []

    def test_ineligible_professional_has_no_slots(self, world):
        """Test slots for an unverified professional."""
        world.add_professional(PHYSIO, monday_template(PHYSIO), eligible=False)

        assert world.run(world.slots.find_slots(professional=PHYSIO, day=NEXT_MONDAY)) == []

    def test_store_failure_degrades_to_no_slots(self, caplog):
        """Test that a store failure gives no slots and a warning."""
        world = World(store=OfflineStore())
        world.add_professional(DOCTOR, monday_template())

        with caplog.at_level(logging.WARNING):
            slots = world.run(world.slots.find_slots(professional=DOCTOR, day=NEXT_MONDAY))

        assert slots == []
        assert any("store offline" in record.message for record in caplog.records)

    @pytest.mark.parametrize("duration", [0, -15, 2000])
    def test_invalid_duration_is_raised(self, doctor_world, duration):
        """Test that invalid durations raise."""
        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.slots.find_slots(
                professional=DOCTOR, day=NEXT_MONDAY, duration_minutes=duration,
            ))

    def test_past_date_is_raised(self, doctor_world):
        """Test that past dates raise."""
        with pytest.raises(ValidationError):
            doctor_world.run(doctor_world.slots.find_slots(professional=DOCTOR, day=pendulum.date(2025, 3, 3)))
