"""
Wiring of stores, clients and services from the application config.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import pendulum

from ..adapters.json_store import JsonCalendarStore
from ..adapters.ledger_client import HttpBookingLedger, HttpProfessionalDirectory, MarketplaceApiClient
from ..adapters.memory import InMemoryCalendarStore
from ..adapters.mock_environment import load_mock_environment
from ..config import AppConfig
from ..domain.slot_calculator import SlotCalculator
from .availability import AvailabilityService
from .booking import BookingService
from .calendar_service import CalendarService
from .past_view import PastPeriodViewGenerator
from .ports import BookingLedger, CalendarStore, Clock, ProfessionalDirectory
from .reconciliation import ReconciliationJob
from .scheduler import ReconciliationScheduler
from .slot_finder import SlotFinderService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a caller needs, built around one store, ledger and directory."""
    config: AppConfig
    store: CalendarStore
    ledger: BookingLedger
    directory: ProfessionalDirectory
    calendar: CalendarService
    past_views: PastPeriodViewGenerator
    slots: SlotFinderService
    booking: BookingService
    availability: AvailabilityService
    job: ReconciliationJob
    scheduler: ReconciliationScheduler


def local_clock(timezone: str) -> Clock:
    """Today's canonical date in the configured timezone."""
    return lambda: pendulum.now(timezone).date()


def build_runtime(
    config: AppConfig,
    *,
    mock: bool = False,
    clock: Optional[Clock] = None,
    store: Optional[CalendarStore] = None,
    ledger: Optional[BookingLedger] = None,
    directory: Optional[ProfessionalDirectory] = None,
) -> Runtime:
    """
    Assemble the services.

    With ``mock`` set, the ledger and directory come from the bundled mock
    marketplace and the calendar lives in memory. Otherwise the calendar is
    kept in ``config.store_dir`` and the marketplace API is used.
    """
    clock = clock or local_clock(config.timezone)

    if mock:
        environment = load_mock_environment(clock())
        ledger = ledger or environment.ledger
        directory = directory or environment.directory
        store = store or InMemoryCalendarStore()
        logger.info("Using mock marketplace data")
    else:
        if ledger is None or directory is None:
            client = MarketplaceApiClient(config.ledger)
            ledger = ledger or HttpBookingLedger(client)
            directory = directory or HttpProfessionalDirectory(client)
        store = store or JsonCalendarStore(config.store_dir)

    past_views = PastPeriodViewGenerator(ledger)
    calendar = CalendarService(
        store,
        ledger,
        directory,
        settings=config.calendar,
        clock=clock,
        past_views=past_views,
    )
    job = ReconciliationJob(calendar, ledger, directory)

    return Runtime(
        config=config,
        store=store,
        ledger=ledger,
        directory=directory,
        calendar=calendar,
        past_views=past_views,
        slots=SlotFinderService(calendar, ledger, directory, SlotCalculator()),
        booking=BookingService(calendar, ledger, directory),
        availability=AvailabilityService(directory, job),
        job=job,
        scheduler=ReconciliationScheduler(job, config.scheduler, timezone=config.timezone),
    )
