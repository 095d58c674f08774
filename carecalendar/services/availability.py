"""
Availability template updates.

Templates are persisted through the professional directory; the calendar
follows asynchronously through a targeted availability sync.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Mapping, Sequence, Set

from ..domain import intervals
from ..domain.exceptions import NotFound, ValidationError
from ..domain.models import WEEKDAY_NAMES, AvailabilityTemplate, ProfessionalRef, TemplateRange, VisitType
from .ports import ProfessionalDirectory
from .reconciliation import ReconciliationJob

logger = logging.getLogger(__name__)


def validate_ranges(ranges: Sequence[TemplateRange]) -> None:
    """
    Reject malformed or overlapping template ranges.

    Raises:
        ValidationError: If a range is empty, outside the day, has a
            non-positive capacity or overlaps another range
    """
    ordered = sorted(ranges, key=lambda item: (item.start, item.end))
    for item in ordered:
        if not intervals.is_valid(item.start, item.end):
            raise ValidationError(f"Invalid time range {item}")
        if item.capacity < 1:
            raise ValidationError(f"Capacity must be at least 1, got {item.capacity}")
    for previous, current in zip(ordered, ordered[1:]):
        if intervals.overlaps(previous.start, previous.end, current.start, current.end):
            raise ValidationError(f"Time ranges {previous} and {current} overlap")


class AvailabilityService:
    """Updates weekly templates and schedules targeted calendar syncs."""

    def __init__(self, directory: ProfessionalDirectory, job: ReconciliationJob) -> None:
        self._directory = directory
        self._job = job
        self._pending: Set[asyncio.Task] = set()

    async def get_template(self, professional: ProfessionalRef) -> AvailabilityTemplate:
        await self._require_known(professional)
        template = await self._directory.get_template(professional)
        return template or AvailabilityTemplate(professional=professional)

    async def update_day(
        self,
        professional: ProfessionalRef,
        weekday: int,
        ranges: Sequence[TemplateRange]
    ) -> AvailabilityTemplate:
        """
        Replace one weekday of a template (an empty list clears the day).

        Raises:
            ValidationError: If the weekday or a range is invalid
            NotFound: If the professional is unknown
        """
        if not 0 <= weekday <= 6:
            raise ValidationError(f"Weekday must be between 0 (Monday) and 6 (Sunday), got {weekday}")
        validate_ranges(ranges)

        template = await self.get_template(professional)
        updated = template.with_day(weekday, ranges)
        await self._directory.save_template(updated)

        logger.info(
            "Updated %s availability for %s: %s",
            WEEKDAY_NAMES[weekday],
            professional,
            ", ".join(str(item) for item in ranges) or "off",
        )
        self._schedule_sync(professional)
        return updated

    async def replace_week(
        self,
        professional: ProfessionalRef,
        days: Mapping[int, Sequence[TemplateRange]]
    ) -> AvailabilityTemplate:
        """
        Replace the whole weekly template; weekdays not in ``days`` are off.

        Raises:
            ValidationError: If a weekday or range is invalid
            NotFound: If the professional is unknown
        """
        for weekday, ranges in days.items():
            if not 0 <= weekday <= 6:
                raise ValidationError(f"Weekday must be between 0 (Monday) and 6 (Sunday), got {weekday}")
            validate_ranges(ranges)

        await self._require_known(professional)
        template = AvailabilityTemplate(
            professional=professional,
            days={weekday: list(ranges) for weekday, ranges in sorted(days.items()) if ranges},
        )
        await self._directory.save_template(template)

        logger.info("Replaced weekly availability for %s (%s day(s))", professional, len(template.days))
        self._schedule_sync(professional)
        return template

    async def wait_for_pending(self) -> None:
        """Wait for every scheduled targeted sync to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule_sync(self, professional: ProfessionalRef) -> None:
        task = asyncio.create_task(self._sync(professional))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _sync(self, professional: ProfessionalRef) -> None:
        # Queued behind a running pass, which may have read the old template
        report = await self._job.run_availability_sync(
            professional,
            trigger=f"template update {professional}",
            wait=True,
        )
        if not report.ok:
            logger.warning("Targeted sync for %s failed: %s", professional, ", ".join(report.failed_phases))

    async def _require_known(self, professional: ProfessionalRef) -> None:
        if await self._directory.get_details(professional) is None:
            raise NotFound(f"Unknown professional {professional}")


def parse_template_ranges(
    items: Sequence[str],
    visit_type: VisitType = VisitType.CLINIC,
    capacity: int = 1
) -> List[TemplateRange]:
    """
    Parse ``HH:MM-HH:MM`` strings into template ranges.

    Raises:
        ValidationError: If an item is malformed
    """
    ranges: List[TemplateRange] = []
    for item in items:
        start, sep, end = item.partition("-")
        if not sep:
            raise ValidationError(f"Time range must look like HH:MM-HH:MM, got {item!r}")
        interval = intervals.parse_range(start, end)
        ranges.append(TemplateRange(interval.start, interval.end, visit_type, capacity))
    return ranges
