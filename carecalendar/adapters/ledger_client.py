"""
HTTP clients for the appointment ledger and the professional directory.

Both talk JSON to the marketplace API using ``requests``; the blocking calls
run in a worker thread. Network and HTTP failures surface as
``TransientStoreError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Collection, Dict, List, Optional

import requests
from pendulum import Date

from ..config import LedgerSettings
from ..domain.exceptions import TransientStoreError
from ..domain.models import (
    ACTIVE_BOOKING_STATUSES,
    AvailabilityTemplate,
    BookingStatus,
    LedgerRecord,
    ProfessionalDetails,
    ProfessionalRef,
)
from ..domain.serialization import (
    details_from_payload,
    format_date,
    record_from_payload,
    template_from_payload,
    template_to_payload,
)

logger = logging.getLogger(__name__)


class MarketplaceApiClient:
    """
    Thin JSON client for the marketplace API.

    Endpoints used:
        GET  /appointments?from=&to=&status=&professionalType=&professionalId=
        GET  /appointments/{id}
        GET  /professionals?eligible=true
        GET  /professionals/{kind}/{id}
        GET  /professionals/{kind}/{id}/availability
        PUT  /professionals/{kind}/{id}/availability
    """

    def __init__(self, settings: LedgerSettings, session: Optional[requests.Session] = None):
        if not settings.base_url:
            raise ValueError("ledger.base_url must be configured to use the marketplace API")

        self.base_url = settings.base_url
        self.timeout = settings.timeout_seconds
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json"}
        if settings.api_token:
            self.headers["Authorization"] = f"Bearer {settings.api_token}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Any] = None,
        allow_missing: bool = False
    ) -> Optional[Any]:
        """
        Perform one request and decode the JSON body.

        Returns None for a 404 when ``allow_missing`` is set.

        Raises:
            TransientStoreError: If the request fails
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                headers=self.headers,
                params=params,
                json=payload,
                timeout=self.timeout
            )
            if allow_missing and response.status_code == 404:
                return None
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()

        except requests.exceptions.RequestException as e:
            raise TransientStoreError(f"{method} {url} failed: {e}") from e
        except ValueError as e:
            raise TransientStoreError(f"{method} {url} returned invalid JSON: {e}") from e

    async def call(self, method: str, path: str, **kwargs: Any) -> Optional[Any]:
        return await asyncio.to_thread(self.request, method, path, **kwargs)


def _professional_path(professional: ProfessionalRef) -> str:
    return f"/professionals/{professional.kind.value}/{professional.id}"


class HttpBookingLedger:
    """Booking ledger backed by the marketplace appointments API."""

    def __init__(self, client: MarketplaceApiClient):
        self.client = client

    async def list_active_bookings(self, professional: ProfessionalRef, day: Date) -> List[LedgerRecord]:
        records = await self.list_bookings_between(
            day,
            day,
            statuses=ACTIVE_BOOKING_STATUSES,
            professional=professional,
        )
        return [record for record in records if record.is_active]

    async def list_bookings_between(
        self,
        start: Date,
        end: Date,
        statuses: Optional[Collection[BookingStatus]] = None,
        professional: Optional[ProfessionalRef] = None,
    ) -> List[LedgerRecord]:
        params: Dict[str, Any] = {"from": format_date(start), "to": format_date(end)}
        if statuses is not None:
            params["status"] = ",".join(sorted(status.value for status in statuses))
        if professional is not None:
            params["professionalType"] = professional.kind.value
            params["professionalId"] = professional.id

        data = await self.client.call("GET", "/appointments", params=params) or {}
        return self._parse_records(data.get("appointments", []))

    async def get_booking(self, booking_id: str) -> Optional[LedgerRecord]:
        data = await self.client.call("GET", f"/appointments/{booking_id}", allow_missing=True)
        if data is None:
            return None
        records = self._parse_records([data])
        return records[0] if records else None

    @staticmethod
    def _parse_records(items: List[Dict[str, Any]]) -> List[LedgerRecord]:
        """Parse appointment payloads, skipping malformed ones."""
        records: List[LedgerRecord] = []
        for item in items:
            try:
                records.append(record_from_payload(item))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed appointment %s: %s", item.get("id", "?"), e)
        return records


class HttpProfessionalDirectory:
    """Professional directory backed by the marketplace professionals API."""

    def __init__(self, client: MarketplaceApiClient):
        self.client = client

    async def get_details(self, professional: ProfessionalRef) -> Optional[ProfessionalDetails]:
        data = await self.client.call("GET", _professional_path(professional), allow_missing=True)
        if data is None:
            return None
        return details_from_payload(data)

    async def get_template(self, professional: ProfessionalRef) -> Optional[AvailabilityTemplate]:
        data = await self.client.call(
            "GET",
            f"{_professional_path(professional)}/availability",
            allow_missing=True
        )
        if not data or not data.get("availability"):
            return None
        return template_from_payload(professional, data["availability"])

    async def list_eligible(self) -> List[ProfessionalDetails]:
        data = await self.client.call("GET", "/professionals", params={"eligible": "true"}) or {}
        professionals: List[ProfessionalDetails] = []
        for item in data.get("professionals", []):
            try:
                details = details_from_payload(item)
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed professional %s: %s", item.get("id", "?"), e)
                continue
            if details.is_eligible:
                professionals.append(details)
        return sorted(professionals, key=lambda details: details.ref)

    async def save_template(self, template: AvailabilityTemplate) -> None:
        await self.client.call(
            "PUT",
            f"{_professional_path(template.professional)}/availability",
            payload={"availability": template_to_payload(template)}
        )
