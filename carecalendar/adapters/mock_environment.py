"""
Mock marketplace for trying the engine without the real API.

Professionals, templates and appointments are loaded from
``mock_marketplace_data.json`` into the in-memory ledger and directory.
Appointment dates are given as day offsets relative to today so the data
never goes stale.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import pendulum
from pendulum import Date

from ..domain.serialization import (
    details_from_payload,
    format_date,
    format_timestamp,
    record_from_payload,
    template_from_payload,
)
from .memory import InMemoryBookingLedger, InMemoryProfessionalDirectory

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "mock_marketplace_data.json"


@dataclass
class MockEnvironment:
    ledger: InMemoryBookingLedger
    directory: InMemoryProfessionalDirectory


def load_mock_environment(today: Date, data_file: Optional[Path] = None) -> MockEnvironment:
    """
    Build an in-memory ledger and directory from the mock data file.

    Args:
        today: Anchor for the ``dayOffset`` of every appointment
        data_file: Alternative JSON file (defaults to the bundled one)
    """
    path = data_file or DEFAULT_DATA_FILE
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    directory = InMemoryProfessionalDirectory()
    for item in data.get("professionals", []):
        details = details_from_payload(item)
        template = None
        if item.get("availability"):
            template = template_from_payload(details.ref, item["availability"])
        directory.add(details, template)

    ledger = InMemoryBookingLedger()
    now = pendulum.now("UTC")
    for item in data.get("appointments", []):
        ledger.add(record_from_payload(_resolve_appointment(item, today, now)))

    logger.debug(
        "Loaded mock marketplace from %s: %s professional(s), %s appointment(s)",
        path,
        len(data.get("professionals", [])),
        len(data.get("appointments", [])),
    )
    return MockEnvironment(ledger=ledger, directory=directory)


def _resolve_appointment(item: Dict[str, Any], today: Date, now: pendulum.DateTime) -> Dict[str, Any]:
    """Turn relative offsets into the absolute fields of an appointment payload."""
    payload = dict(item)
    payload["date"] = format_date(today.add(days=int(item.get("dayOffset", 0))))
    payload["createdAt"] = format_timestamp(now.subtract(hours=int(item.get("bookedHoursAgo", 24))))
    return payload
