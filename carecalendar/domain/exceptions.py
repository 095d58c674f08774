"""
Domain-specific exception hierarchy for the calendar subsystem.
"""


class CalendarError(Exception):
    """Base class for all application-level errors."""


class ValidationError(CalendarError):
    """Raised for malformed dates, times or durations before any store access."""


class SlotUnavailable(CalendarError):
    """Raised when a requested slot conflicts with the booking ledger."""


class NotFound(CalendarError):
    """Raised when a professional, day or break cannot be located."""


class TransientStoreError(CalendarError):
    """Raised when the document store or ledger cannot be read or written."""


class ConcurrentModificationError(TransientStoreError):
    """Raised when a calendar document changed between read and write."""
