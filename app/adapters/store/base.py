"""Record store interface.

The store is the only component shared across processes. Its
coordination primitives are:

- ``create`` enforcing uniqueness of the record id and of the dedup key
  ``(owner_id, destination)``
- ``atomic_increment`` updating a counter in a single store-side operation
- ``account_scan`` storing a scan event and counting it in one step, only
  while the record exists

Services must never compute counters by read-modify-write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from app.schemas.records import Record, ScanEvent

# Fields the accounting path may touch
COUNTER_FIELDS = frozenset({"scan_count"})
TIMESTAMP_FIELDS = frozenset({"last_scan_at"})


def check_increment_fields(field: str, timestamp_field: str | None) -> None:
    """Reject increments outside the accounting fields.

    Raises:
        ValueError: If ``field`` or ``timestamp_field`` is not allowed.
    """
    if field not in COUNTER_FIELDS:
        raise ValueError(f"{field!r} is not an incrementable field")
    if timestamp_field is not None and timestamp_field not in TIMESTAMP_FIELDS:
        raise ValueError(f"{timestamp_field!r} is not a timestamp field")


class AbstractRecordStore(ABC):
    """Durable storage of records and scan events."""

    @abstractmethod
    async def get(self, record_id: str) -> Record | None:
        """Fetch a record by id, or None if it does not exist."""

    @abstractmethod
    async def create(self, record: Record) -> Record:
        """Persist a new record.

        Raises:
            ConflictAppError: ``conflict_on="id"`` if the id exists,
                ``conflict_on="dedup_key"`` if the owner already has a record
                for this destination.
            UpstreamAppError: If the backend fails.
        """

    @abstractmethod
    async def find_by_owner_and_destination(
        self, owner_id: str, destination: str
    ) -> Record | None:
        """Return the owner's record for ``destination``, if any."""

    @abstractmethod
    async def atomic_increment(
        self,
        record_id: str,
        field: str,
        delta: int,
        timestamp_field: str | None = None,
        timestamp_value: datetime | None = None,
    ) -> Record:
        """Add ``delta`` to ``field`` and stamp ``timestamp_field`` atomically.

        Returns:
            The record after the update.

        Raises:
            NotFoundAppError: If the record does not exist.
            ValueError: If the fields are not accounting fields.
        """

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Delete a record and release its dedup key. Scan events are kept.

        Ownership is checked by the caller before invocation.

        Raises:
            NotFoundAppError: If the record does not exist.
        """

    @abstractmethod
    async def append_scan(self, event: ScanEvent) -> None:
        """Append one scan event."""

    @abstractmethod
    async def account_scan(self, event: ScanEvent) -> None:
        """Store ``event`` and count it on its record atomically.

        Increments ``scan_count`` and stamps ``last_scan_at`` with
        ``event.scan_at``. Nothing is written when the record is missing.

        Raises:
            NotFoundAppError: If the record does not exist.
            UpstreamAppError: If the backend fails.
        """

    @abstractmethod
    async def list_by_owner(
        self, owner_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[Record]:
        """Owner's records, newest first."""

    @abstractmethod
    async def list_scans(self, record_id: str, *, limit: int = 50) -> list[ScanEvent]:
        """Scan events of a record, newest first."""
