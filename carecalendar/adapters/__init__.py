"""
Adapters for external services (calendar store, booking ledger, directory).
"""

from .json_store import JsonCalendarStore
from .ledger_client import HttpBookingLedger, HttpProfessionalDirectory, MarketplaceApiClient
from .memory import InMemoryBookingLedger, InMemoryCalendarStore, InMemoryProfessionalDirectory
from .mock_environment import MockEnvironment, load_mock_environment

__all__ = [
    "HttpBookingLedger",
    "HttpProfessionalDirectory",
    "InMemoryBookingLedger",
    "InMemoryCalendarStore",
    "InMemoryProfessionalDirectory",
    "JsonCalendarStore",
    "MarketplaceApiClient",
    "MockEnvironment",
    "load_mock_environment",
]
