"""
Application services orchestrating domain logic and the store/ledger ports.
"""

from .availability import AvailabilityService
from .booking import BookingRequest, BookingService
from .calendar_service import CalendarService, CalendarStatus
from .past_view import PastPeriodViewGenerator
from .reconciliation import PhaseOutcome, ReconciliationJob, ReconciliationReport
from .scheduler import ReconciliationScheduler
from .slot_finder import SlotFinderService

__all__ = [
    "AvailabilityService",
    "BookingRequest",
    "BookingService",
    "CalendarService",
    "CalendarStatus",
    "PastPeriodViewGenerator",
    "PhaseOutcome",
    "ReconciliationJob",
    "ReconciliationReport",
    "ReconciliationScheduler",
    "SlotFinderService",
]
