"""
Codecs between domain models and JSON-compatible documents.

Calendar documents and ledger/directory payloads use ``HH:MM`` strings for
times of day and ``YYYY-MM-DD`` strings for dates.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping

import pendulum
from pendulum import Date, DateTime

from .intervals import format_hhmm
from .models import (
    WEEKDAY_NAMES,
    AvailabilityTemplate,
    BookedSlot,
    BookingStatus,
    Break,
    CalendarDay,
    CalendarMonth,
    LedgerRecord,
    ProfessionalDetails,
    ProfessionalKind,
    ProfessionalRef,
    ProfessionalScheduleEntry,
    TemplateRange,
    VisitType,
    WorkingHours,
)

_LENIENT_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")

# Appointment payloads name physiotherapists "physio"
_KIND_ALIASES = {"physio": ProfessionalKind.PHYSIOTHERAPIST}


def parse_date(value: str) -> Date:
    """Parse a ``YYYY-MM-DD`` string into a canonical local date."""
    return pendulum.from_format(value, "YYYY-MM-DD").date()


def format_date(value: Date) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def parse_timestamp(value: str) -> DateTime:
    parsed = pendulum.parse(value)
    if not isinstance(parsed, DateTime):
        raise ValueError(f"Could not parse timestamp: {value}")
    return parsed.in_timezone("UTC")


def format_timestamp(value: DateTime) -> str:
    return value.in_timezone("UTC").to_iso8601_string()


def _document_minutes(value: Any) -> int:
    """
    Read a stored ``HH:MM`` value without rejecting it.

    Out-of-range values are kept so that the interval layer can log and drop
    them; unreadable ones become -1.
    """
    if isinstance(value, str):
        match = _LENIENT_TIME.match(value.strip())
        if match:
            return int(match.group(1)) * 60 + int(match.group(2))
    return -1


def parse_kind(value: str) -> ProfessionalKind:
    key = value.strip().lower()
    if key in _KIND_ALIASES:
        return _KIND_ALIASES[key]
    return ProfessionalKind(key)


# ---------------------------------------------------------------------------
# Calendar documents
# ---------------------------------------------------------------------------

def _entry_to_document(entry: ProfessionalScheduleEntry) -> Dict[str, Any]:
    return {
        "professionalId": entry.professional.id,
        "professionalType": entry.professional.kind.value,
        "workingHours": [
            {
                "startTime": format_hhmm(hours.start),
                "endTime": format_hhmm(hours.end),
                "type": hours.visit_type.value,
                "maxPatients": hours.capacity,
            }
            for hours in entry.working_hours
        ],
        "breaks": [
            {
                "id": item.id,
                "startTime": format_hhmm(item.start),
                "endTime": format_hhmm(item.end),
                "reason": item.reason,
            }
            for item in entry.breaks
        ],
        "bookedSlots": [
            {
                "appointmentId": slot.booking_id,
                "patientId": slot.subject_id,
                "startTime": format_hhmm(slot.start),
                "endTime": format_hhmm(slot.end),
                "bookedAt": format_timestamp(slot.recorded_at),
                "status": slot.status,
            }
            for slot in entry.booked_slots
        ],
        "isAvailable": entry.is_available,
    }


def _entry_from_document(data: Mapping[str, Any]) -> ProfessionalScheduleEntry:
    professional = ProfessionalRef(
        kind=parse_kind(data["professionalType"]),
        id=str(data["professionalId"])
    )
    return ProfessionalScheduleEntry(
        professional=professional,
        working_hours=[
            WorkingHours(
                start=_document_minutes(item.get("startTime")),
                end=_document_minutes(item.get("endTime")),
                visit_type=VisitType(item.get("type", VisitType.CLINIC.value)),
                capacity=int(item.get("maxPatients", 1)),
            )
            for item in data.get("workingHours", [])
        ],
        breaks=[
            Break(
                start=_document_minutes(item.get("startTime")),
                end=_document_minutes(item.get("endTime")),
                reason=item.get("reason") or "Break",
                id=str(item["id"]),
            )
            for item in data.get("breaks", [])
        ],
        booked_slots=[
            BookedSlot(
                booking_id=str(item["appointmentId"]),
                subject_id=str(item.get("patientId", "")),
                start=_document_minutes(item.get("startTime")),
                end=_document_minutes(item.get("endTime")),
                recorded_at=parse_timestamp(item["bookedAt"]),
                status=item.get("status", "booked"),
            )
            for item in data.get("bookedSlots", [])
        ],
        is_available=bool(data.get("isAvailable", True)),
    )


def month_to_document(month: CalendarMonth) -> Dict[str, Any]:
    """Serialize a calendar month into a JSON-compatible document."""
    return {
        "year": month.year,
        "month": month.month,
        "version": month.version,
        "days": [
            {
                "date": format_date(day.date),
                "dayName": day.weekday_name,
                "isHoliday": day.is_holiday,
                "professionals": [_entry_to_document(entry) for entry in day.schedules],
            }
            for day in month.days
        ],
    }


def month_from_document(data: Mapping[str, Any]) -> CalendarMonth:
    """Rebuild a calendar month from its stored document."""
    return CalendarMonth(
        year=int(data["year"]),
        month=int(data["month"]),
        version=int(data.get("version", 0)),
        days=[
            CalendarDay(
                date=parse_date(day["date"]),
                is_holiday=bool(day.get("isHoliday", False)),
                schedules=[_entry_from_document(entry) for entry in day.get("professionals", [])],
            )
            for day in data.get("days", [])
        ],
    )


# ---------------------------------------------------------------------------
# Ledger and directory payloads
# ---------------------------------------------------------------------------

def record_from_payload(data: Mapping[str, Any]) -> LedgerRecord:
    """
    Parse one appointment payload from the booking ledger.

    Raises:
        KeyError: If a required field is missing
        ValueError: If a field cannot be parsed
    """
    return LedgerRecord(
        id=str(data["id"]),
        professional=ProfessionalRef(
            kind=parse_kind(data["professionalType"]),
            id=str(data["professionalId"])
        ),
        date=parse_date(data["date"]),
        start=_document_minutes(data["startTime"]),
        end=_document_minutes(data["endTime"]),
        subject_id=str(data.get("patientId", "")),
        status=BookingStatus(data.get("status", BookingStatus.PENDING.value)),
        recorded_at=parse_timestamp(data["createdAt"]),
    )


def record_to_payload(record: LedgerRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "professionalType": record.professional.kind.value,
        "professionalId": record.professional.id,
        "date": format_date(record.date),
        "startTime": format_hhmm(record.start),
        "endTime": format_hhmm(record.end),
        "patientId": record.subject_id,
        "status": record.status.value,
        "createdAt": format_timestamp(record.recorded_at),
    }


def template_from_payload(professional: ProfessionalRef, data: List[Mapping[str, Any]]) -> AvailabilityTemplate:
    """
    Parse a weekly availability payload.

    Format: ``[{"day": "monday", "slots": [{"startTime", "endTime", "type", "maxPatients"}]}]``
    """
    weekday_index = {name.lower(): index for index, name in enumerate(WEEKDAY_NAMES)}
    days: Dict[int, List[TemplateRange]] = {}

    for day in data:
        weekday = weekday_index[str(day["day"]).lower()]
        ranges = [
            TemplateRange(
                start=_document_minutes(slot["startTime"]),
                end=_document_minutes(slot["endTime"]),
                visit_type=VisitType(slot.get("type", VisitType.CLINIC.value)),
                capacity=int(slot.get("maxPatients", 1)),
            )
            for slot in day.get("slots", [])
        ]
        if ranges:
            days.setdefault(weekday, []).extend(ranges)

    return AvailabilityTemplate(professional=professional, days=days)


def template_to_payload(template: AvailabilityTemplate) -> List[Dict[str, Any]]:
    return [
        {
            "day": WEEKDAY_NAMES[weekday].lower(),
            "slots": [
                {
                    "startTime": format_hhmm(item.start),
                    "endTime": format_hhmm(item.end),
                    "type": item.visit_type.value,
                    "maxPatients": item.capacity,
                }
                for item in ranges
            ],
        }
        for weekday, ranges in sorted(template.days.items())
    ]


def details_from_payload(data: Mapping[str, Any]) -> ProfessionalDetails:
    return ProfessionalDetails(
        ref=ProfessionalRef(kind=parse_kind(data["professionalType"]), id=str(data["id"])),
        name=str(data.get("name", "")),
        consultation_fee=float(data.get("consultationFee", 0) or 0),
        home_visit_fee=float(data.get("homeVisitFee", 0) or 0),
        is_verified=bool(data.get("isVerified", False)),
        is_active=bool(data.get("isActive", False)),
    )
