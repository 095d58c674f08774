"""
Domain layer - Pure business logic without external dependencies.
"""

from .exceptions import (
    CalendarError,
    ConcurrentModificationError,
    NotFound,
    SlotUnavailable,
    TransientStoreError,
    ValidationError,
)
from .intervals import Interval
from .models import (
    AvailabilityTemplate,
    AvailableSlot,
    BookedSlot,
    BookingStatus,
    Break,
    CalendarDay,
    CalendarMonth,
    LedgerRecord,
    MonthKey,
    ProfessionalDetails,
    ProfessionalKind,
    ProfessionalRef,
    ProfessionalScheduleEntry,
    TemplateRange,
    VisitType,
    WorkingHours,
)
from .slot_calculator import SlotCalculator

__all__ = [
    "AvailabilityTemplate",
    "AvailableSlot",
    "BookedSlot",
    "BookingStatus",
    "Break",
    "CalendarDay",
    "CalendarError",
    "CalendarMonth",
    "ConcurrentModificationError",
    "Interval",
    "LedgerRecord",
    "MonthKey",
    "NotFound",
    "ProfessionalDetails",
    "ProfessionalKind",
    "ProfessionalRef",
    "ProfessionalScheduleEntry",
    "SlotCalculator",
    "SlotUnavailable",
    "TemplateRange",
    "TransientStoreError",
    "ValidationError",
    "VisitType",
    "WorkingHours",
]
