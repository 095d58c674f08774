"""
Calendar store keeping one JSON document per month on disk.

Files are named ``calendar-YYYY-MM.json``. Writes go to a temporary file
that replaces the document atomically; the version check and the replace
happen under one lock so concurrent writers in this process cannot
interleave.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..domain.exceptions import ConcurrentModificationError, TransientStoreError
from ..domain.models import CalendarMonth, MonthKey
from ..domain.serialization import month_from_document, month_to_document

logger = logging.getLogger(__name__)

_FILE_PATTERN = re.compile(r"^calendar-(\d{4})-(\d{2})\.json$")


class JsonCalendarStore:
    """File-backed calendar store."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def path_for(self, key: MonthKey) -> Path:
        return self.directory / f"calendar-{key}.json"

    async def get_month(self, key: MonthKey) -> Optional[CalendarMonth]:
        document = await asyncio.to_thread(self._read, key)
        if document is None:
            return None
        return month_from_document(document)

    async def save_month(self, month: CalendarMonth) -> CalendarMonth:
        return await asyncio.to_thread(self._save, month)

    async def delete_months_before(self, key: MonthKey) -> int:
        return await asyncio.to_thread(self._delete_before, key)

    async def list_month_keys(self) -> List[MonthKey]:
        return await asyncio.to_thread(self._list_keys)

    # ------------------------------------------------------------------
    # Blocking helpers, run in a worker thread
    # ------------------------------------------------------------------

    def _read(self, key: MonthKey) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            raise TransientStoreError(f"Could not read {path}: {exc}") from exc

    def _save(self, month: CalendarMonth) -> CalendarMonth:
        key = month.key
        with self._lock:
            stored = self._read(key)
            stored_version = int(stored.get("version", 0)) if stored is not None else 0
            if stored_version != month.version:
                raise ConcurrentModificationError(
                    f"Calendar {key} changed (expected version {month.version}, found {stored_version})"
                )

            saved = replace(month, version=stored_version + 1, generated=False)
            document = month_to_document(saved)
            path = self.path_for(key)

            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=self.directory)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(document, f, indent=2)
                    os.replace(tmp_name, path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                raise TransientStoreError(f"Could not write {path}: {exc}") from exc

        logger.debug("Saved %s (version %s)", path, saved.version)
        return month_from_document(document)

    def _delete_before(self, key: MonthKey) -> int:
        deleted = 0
        with self._lock:
            for stored_key in self._list_keys():
                if stored_key >= key:
                    continue
                try:
                    self.path_for(stored_key).unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise TransientStoreError(f"Could not delete calendar {stored_key}: {exc}") from exc
                deleted += 1
        return deleted

    def _list_keys(self) -> List[MonthKey]:
        if not self.directory.exists():
            return []
        keys = []
        for path in self.directory.iterdir():
            match = _FILE_PATTERN.match(path.name)
            if not match:
                continue
            try:
                keys.append(MonthKey(int(match.group(1)), int(match.group(2))))
            except ValueError:
                logger.warning("Ignoring calendar file with invalid month: %s", path.name)
        return sorted(keys)
