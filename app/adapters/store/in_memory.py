"""In-memory record store for development and tests.

Single process, non-durable. All mutations happen under one lock, which is
what makes ``create`` uniqueness, ``atomic_increment`` and ``account_scan``
atomic here.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime

from app.adapters.store.base import AbstractRecordStore, check_increment_fields
from app.core.errors import ConflictAppError, NotFoundAppError
from app.schemas.records import Record, ScanEvent


class InMemoryRecordStore(AbstractRecordStore):
    """Dict-backed implementation of :class:`AbstractRecordStore`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, Record] = {}
        self._dedup_index: dict[tuple[str, str], str] = {}
        self._scans: dict[str, list[ScanEvent]] = defaultdict(list)

    async def get(self, record_id: str) -> Record | None:
        with self._lock:
            return self._records.get(record_id)

    async def create(self, record: Record) -> Record:
        with self._lock:
            if record.id in self._records:
                raise ConflictAppError(
                    code="record_conflict",
                    message="A record with this id already exists.",
                    conflict_on="id",
                )

            if record.owner_id:
                dedup_key = (record.owner_id, record.destination)
                if dedup_key in self._dedup_index:
                    raise ConflictAppError(
                        code="record_conflict",
                        message="The owner already has a record for this destination.",
                        conflict_on="dedup_key",
                    )
                self._dedup_index[dedup_key] = record.id

            self._records[record.id] = record
            return record

    async def find_by_owner_and_destination(
        self, owner_id: str, destination: str
    ) -> Record | None:
        with self._lock:
            record_id = self._dedup_index.get((owner_id, destination))
            return self._records.get(record_id) if record_id else None

    async def atomic_increment(
        self,
        record_id: str,
        field: str,
        delta: int,
        timestamp_field: str | None = None,
        timestamp_value: datetime | None = None,
    ) -> Record:
        check_increment_fields(field, timestamp_field)

        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise NotFoundAppError(
                    code="record_not_found",
                    message="QR code not found.",
                    details={"record_id": record_id},
                )

            update: dict[str, object] = {field: getattr(current, field) + delta}
            if timestamp_field is not None:
                update[timestamp_field] = timestamp_value
            updated = current.model_copy(update=update)
            self._records[record_id] = updated
            return updated

    async def delete(self, record_id: str) -> None:
        with self._lock:
            record = self._records.pop(record_id, None)
            if record is None:
                raise NotFoundAppError(
                    code="record_not_found",
                    message="QR code not found.",
                    details={"record_id": record_id},
                )
            if record.owner_id:
                self._dedup_index.pop((record.owner_id, record.destination), None)

    async def append_scan(self, event: ScanEvent) -> None:
        with self._lock:
            self._scans[event.record_id].append(event)

    async def account_scan(self, event: ScanEvent) -> None:
        with self._lock:
            current = self._records.get(event.record_id)
            if current is None:
                raise NotFoundAppError(
                    code="record_not_found",
                    message="QR code not found.",
                    details={"record_id": event.record_id},
                )

            self._records[event.record_id] = current.model_copy(
                update={"scan_count": current.scan_count + 1, "last_scan_at": event.scan_at}
            )
            self._scans[event.record_id].append(event)

    async def list_by_owner(
        self, owner_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[Record]:
        with self._lock:
            owned = [r for r in self._records.values() if r.owner_id == owner_id]
        # ULIDs sort by creation time
        owned.sort(key=lambda r: r.id, reverse=True)
        return owned[offset : offset + limit]

    async def list_scans(self, record_id: str, *, limit: int = 50) -> list[ScanEvent]:
        with self._lock:
            events = list(self._scans.get(record_id, ()))
        events.sort(key=lambda e: (e.scan_at, e.event_id), reverse=True)
        return events[:limit]

    def stored_scan_events(self, record_id: str) -> int:
        """Number of stored scan events for a record (kept after deletion)."""
        with self._lock:
            return len(self._scans.get(record_id, ()))
