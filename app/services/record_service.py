"""Record lifecycle service: generation, tracking, image access and owner commands.

This service is the core business logic behind the QR endpoints. It handles:
- Destination normalization and deduplication per owner
- QR rendering/upload followed by a single persistence step
- Scan accounting through one atomic store write per scan
- Read-through caching with tag invalidation
- Owner management commands (list, delete, scan history)
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar, assert_never

from ulid import ULID

from app.adapters.image.service import ImageService
from app.adapters.store.base import AbstractRecordStore
from app.core.errors import (
    AppError,
    AuthorizationAppError,
    ConflictAppError,
    NotFoundAppError,
    UpstreamAppError,
    ValidationAppError,
)
from app.core.logging import hash_identifier
from app.schemas.records import Record, ScanEvent
from app.utils.simple_cache import RecordCache
from app.utils.url_validators import (
    MAX_REFERER_LENGTH,
    MAX_REGION_LENGTH,
    MAX_SOURCE_ADDRESS_LENGTH,
    MAX_USER_AGENT_LENGTH,
    clip_metadata,
    is_valid_record_id,
    normalize_destination,
    sanitize_label,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SCAN_PAGE_SIZE = 50
MAX_SCAN_PAGE_SIZE = 500
MAX_FILENAME_SLUG_LENGTH = 50

_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")
_HTTP_PREFIX = re.compile(r"^https?://")


# Owner commands. The set is closed: ``manage`` handles exactly these.


@dataclass(frozen=True)
class ListRecords:
    owner_id: str | None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


@dataclass(frozen=True)
class DeleteRecord:
    owner_id: str | None
    record_id: str


@dataclass(frozen=True)
class ListScans:
    owner_id: str | None
    record_id: str
    limit: int = DEFAULT_SCAN_PAGE_SIZE


OwnerOperation = ListRecords | DeleteRecord | ListScans


@dataclass(frozen=True)
class ImageAccess:
    """Time-boxed reference to a record's QR image."""

    id: str
    url: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_ulid() -> str:
    return str(ULID())


def _not_found(record_id: str) -> NotFoundAppError:
    return NotFoundAppError(
        code="record_not_found",
        message="QR code not found.",
        details={"record_id": record_id},
    )


def download_filename(record: Record) -> str:
    """Attachment filename ``qr_<destination slug>_<id>.png``."""
    slug = _FILENAME_UNSAFE.sub("_", _HTTP_PREFIX.sub("", record.destination))
    return f"qr_{slug[:MAX_FILENAME_SLUG_LENGTH]}_{record.id}.png"


class RecordService:
    """Orchestrates the record lifecycle.

    Attributes:
        store: Durable record store (source of truth for counters and dedup).
        images: QR rendering and object storage.
        cache: Process-local record cache.
    """

    def __init__(
        self,
        store: AbstractRecordStore,
        images: ImageService,
        cache: RecordCache,
        *,
        public_base_url: str,
        tracking_path: str = "q",
        image_prefix: str = "qr-images",
        image_extension: str = "png",
        allow_private_destinations: bool = False,
        max_destination_length: int = 2048,
        generate_timeout_seconds: float = 15.0,
        track_timeout_seconds: float = 5.0,
        url_expiry_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_ulid,
    ) -> None:
        self.store = store
        self.images = images
        self.cache = cache
        self.public_base_url = public_base_url.rstrip("/")
        self.tracking_path = tracking_path.strip("/")
        self.image_prefix = image_prefix.strip("/")
        self.image_extension = image_extension.lstrip(".")
        self.allow_private_destinations = allow_private_destinations
        self.max_destination_length = max_destination_length
        self.generate_timeout_seconds = generate_timeout_seconds
        self.track_timeout_seconds = track_timeout_seconds
        self.url_expiry_seconds = url_expiry_seconds
        self._clock = clock
        self._new_id = id_factory
        self._detached: set[asyncio.Future] = set()

    def tracking_address(self, record_id: str) -> str:
        return f"{self.public_base_url}/{self.tracking_path}/{record_id}"

    def image_key_for(self, record_id: str) -> str:
        return f"{self.image_prefix}/{record_id}.{self.image_extension}"

    async def _bounded(
        self, operation: str, work: Awaitable[T], timeout: float | None, default: float
    ) -> T:
        """Await ``work`` with a deadline.

        Raises:
            UpstreamAppError: ``<operation>_timeout`` when the deadline passes.
        """
        limit = default if timeout is None else timeout
        try:
            return await asyncio.wait_for(work, limit)
        except TimeoutError:
            logger.error(
                f"record.{operation}_timeout",
                extra={"timeout_seconds": limit},
            )
            raise UpstreamAppError(
                code=f"{operation}_timeout",
                message="The operation timed out. Please try again.",
                details={"context": {"timeout_seconds": limit}},
            ) from None

    def _shielded(self, operation: str, work: Coroutine[Any, Any, T]) -> Awaitable[T]:
        """Run a store write that must finish even if the caller times out.

        A failure after the caller has given up has nobody to raise to, so it
        is logged as ``record.<operation>_detached_failure``.
        """
        task = asyncio.ensure_future(work)
        outer = asyncio.shield(task)
        self._detached.add(task)

        def _done(finished: asyncio.Future) -> None:
            self._detached.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None and outer.cancelled():
                logger.error(
                    f"record.{operation}_detached_failure",
                    extra={
                        "error_type": type(exc).__name__,
                        "error_code": getattr(exc, "code", None),
                    },
                )

        task.add_done_callback(_done)
        return outer

    # ------------------------------------------------------------------
    # generate
    # ------------------------------------------------------------------

    async def generate(
        self,
        destination_input: str,
        owner_id: str | None = None,
        *,
        label: str | None = None,
        timeout: float | None = None,
    ) -> Record:
        """Create a tracked QR record for a destination.

        For an identified owner the call is idempotent per destination: an
        existing record for ``(owner_id, destination)`` is returned unchanged.

        Args:
            destination_input: Raw destination as supplied by the caller.
            owner_id: Creator identity; None or blank for anonymous.
            label: Optional short label.
            timeout: Deadline in seconds, defaults to ``generate_timeout_seconds``.

        Returns:
            Record: The new (or deduplicated) record, never pending.

        Raises:
            InvalidDestinationAppError: If the destination is rejected.
            ValidationAppError: If the label is rejected.
            UpstreamAppError: On store/image failure or timeout.
        """
        destination = normalize_destination(
            destination_input,
            max_length=self.max_destination_length,
            allow_private_hosts=self.allow_private_destinations,
        )
        clean_label = sanitize_label(label)
        owner = owner_id or None

        return await self._bounded(
            "generate",
            self._generate(destination, owner, clean_label),
            timeout,
            self.generate_timeout_seconds,
        )

    async def _generate(self, destination: str, owner_id: str | None, label: str | None) -> Record:
        if owner_id:
            existing = await self._find_existing(owner_id, destination)
            if existing is not None:
                logger.info("record.dedup_hit", extra={"record_id": existing.id})
                return existing

        record_id = self._new_id()
        image_key = await self.images.render_and_store(
            self.tracking_address(record_id), self.image_key_for(record_id)
        )
        record = Record(
            id=record_id,
            destination=destination,
            image_key=image_key,
            owner_id=owner_id,
            label=label,
            created_at=self._clock(),
        )

        try:
            stored = await self._shielded("generate", self._commit(record))
        except ConflictAppError as exc:
            if exc.conflict_on != "dedup_key" or not owner_id:
                # An id collision shares its image key with the existing record
                raise
            await self._discard_image(image_key)
            winner = await self.store.find_by_owner_and_destination(owner_id, destination)
            if winner is None or winner.is_pending:
                raise
            logger.info(
                "record.dedup_race_lost",
                extra={"record_id": winner.id, "discarded_id": record_id},
            )
            self.cache.set_record(winner)
            return winner
        except Exception:
            await self._discard_image(image_key)
            raise

        logger.info(
            "record.generated",
            extra={
                "record_id": stored.id,
                "owner_hash": hash_identifier(owner_id) if owner_id else None,
                "destination_length": len(destination),
            },
        )
        return stored

    async def _find_existing(self, owner_id: str, destination: str) -> Record | None:
        cached = self.cache.get_owner_records(owner_id) or []
        for record in cached:
            if record.destination == destination and not record.is_pending:
                return record

        found = await self.store.find_by_owner_and_destination(owner_id, destination)
        if found is None or found.is_pending:
            return None
        return found

    async def _commit(self, record: Record) -> Record:
        stored = await self.store.create(record)
        if stored.owner_id:
            self.cache.invalidate_owner(stored.owner_id)
        self.cache.set_record(stored)
        self.cache.set_image_key(stored.id, stored.image_key)
        return stored

    async def _discard_image(self, image_key: str) -> None:
        try:
            await self.images.delete(image_key)
        except AppError as exc:
            # The original failure is the one the caller sees
            logger.warning(
                "record.image_cleanup_failed",
                extra={"image_key": image_key, "error_code": exc.code},
            )

    # ------------------------------------------------------------------
    # track
    # ------------------------------------------------------------------

    async def track(
        self,
        record_id: str,
        *,
        user_agent: str | None = None,
        referer: str | None = None,
        source_address: str | None = None,
        region: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Account one scan of ``record_id`` and return its destination.

        Raises:
            NotFoundAppError: If the id is malformed, unknown or pending.
            UpstreamAppError: On store failure or timeout.
        """
        return await self._bounded(
            "track",
            self._track(record_id, user_agent, referer, source_address, region),
            timeout,
            self.track_timeout_seconds,
        )

    async def _track(
        self,
        record_id: str,
        user_agent: str | None,
        referer: str | None,
        source_address: str | None,
        region: str | None,
    ) -> str:
        record = await self._resolve(record_id)

        event = ScanEvent(
            event_id=self._new_id(),
            record_id=record.id,
            scan_at=self._clock(),
            user_agent=clip_metadata(user_agent, MAX_USER_AGENT_LENGTH),
            referer=clip_metadata(referer, MAX_REFERER_LENGTH),
            source_address=clip_metadata(source_address, MAX_SOURCE_ADDRESS_LENGTH),
            region=clip_metadata(region, MAX_REGION_LENGTH),
        )
        await self._shielded("track", self._account(event))

        logger.info(
            "record.tracked",
            extra={
                "record_id": record.id,
                "region": event.region or None,
            },
        )
        return record.destination

    async def _account(self, event: ScanEvent) -> None:
        try:
            await self.store.account_scan(event)
        finally:
            self.cache.invalidate_record(event.record_id)

    async def _resolve(self, record_id: str) -> Record:
        """Read-through lookup of a consumer-visible record."""
        if not is_valid_record_id(record_id):
            raise _not_found(record_id)

        cached = self.cache.get_record(record_id)
        if cached is not None:
            logger.debug("cache.hit", extra={"record_id": record_id})
            return cached

        record = await self.store.get(record_id)
        if record is None or record.is_pending:
            raise _not_found(record_id)

        self.cache.set_record(record)
        return record

    # ------------------------------------------------------------------
    # images
    # ------------------------------------------------------------------

    async def get_image_key(self, record_id: str) -> str:
        if not is_valid_record_id(record_id):
            raise _not_found(record_id)

        image_key = self.cache.get_image_key(record_id)
        if image_key:
            return image_key

        record = await self._resolve(record_id)
        self.cache.set_image_key(record.id, record.image_key)
        return record.image_key

    async def get_image_access(self, record_id: str) -> ImageAccess:
        image_key = await self.get_image_key(record_id)
        url, expires_at = await self.images.access_url(
            image_key, expires_in=self.url_expiry_seconds
        )
        return ImageAccess(id=record_id, url=url, expires_at=expires_at)

    async def get_image_download(self, record_id: str) -> tuple[str, bytes]:
        """Return ``(filename, png bytes)`` for an attachment download.

        Raises:
            NotFoundAppError: If the record or its stored image is missing.
        """
        record = await self._resolve(record_id)
        data = await self.images.fetch(record.image_key)
        if data is None:
            logger.error("record.image_missing", extra={"record_id": record.id})
            raise NotFoundAppError(
                code="image_not_found",
                message="QR image not found.",
                details={"record_id": record.id},
            )
        return download_filename(record), data

    # ------------------------------------------------------------------
    # owner commands
    # ------------------------------------------------------------------

    async def manage(self, operation: OwnerOperation) -> list[Record] | list[ScanEvent] | str:
        """Run an owner command.

        Returns:
            ``list[Record]`` for ListRecords, the deleted id for DeleteRecord,
            ``list[ScanEvent]`` for ListScans.

        Raises:
            AuthorizationAppError: Anonymous caller or not the record owner.
            NotFoundAppError: Unknown record.
            ValidationAppError: Paging parameters out of range.
        """
        if not operation.owner_id:
            raise AuthorizationAppError(
                code="owner_required",
                message="Sign in to manage QR codes.",
            )

        match operation:
            case ListRecords(owner_id=owner_id, limit=limit, offset=offset):
                return await self._list_records(owner_id, limit, offset)
            case DeleteRecord(owner_id=owner_id, record_id=record_id):
                return await self._delete_record(owner_id, record_id)
            case ListScans(owner_id=owner_id, record_id=record_id, limit=limit):
                return await self._list_scans(owner_id, record_id, limit)
            case _:
                assert_never(operation)

    async def _list_records(self, owner_id: str, limit: int, offset: int) -> list[Record]:
        if not 1 <= limit <= MAX_PAGE_SIZE or offset < 0:
            raise ValidationAppError(
                code="invalid_pagination",
                message=f"limit must be between 1 and {MAX_PAGE_SIZE} and offset must be >= 0.",
            )

        first_page = limit == DEFAULT_PAGE_SIZE and offset == 0
        if first_page:
            cached = self.cache.get_owner_records(owner_id)
            if cached is not None:
                return cached

        records = [
            r
            for r in await self.store.list_by_owner(owner_id, limit=limit, offset=offset)
            if not r.is_pending
        ]
        if first_page:
            self.cache.set_owner_records(owner_id, records)
        return records

    async def _owned_record(self, owner_id: str, record_id: str) -> Record:
        if not is_valid_record_id(record_id):
            raise _not_found(record_id)

        record = await self.store.get(record_id)
        if record is None or record.is_pending:
            raise _not_found(record_id)

        if record.owner_id != owner_id:
            logger.warning(
                "record.owner_mismatch",
                extra={"record_id": record_id, "owner_hash": hash_identifier(owner_id)},
            )
            raise AuthorizationAppError(
                code="not_record_owner",
                message="You can only manage your own QR codes.",
                details={"record_id": record_id},
            )
        return record

    async def _delete_record(self, owner_id: str, record_id: str) -> str:
        record = await self._owned_record(owner_id, record_id)
        await self.store.delete(record.id)
        self.cache.forget(record.id, owner_id)
        logger.info("record.deleted", extra={"record_id": record.id})
        return record.id

    async def _list_scans(self, owner_id: str, record_id: str, limit: int) -> list[ScanEvent]:
        if not 1 <= limit <= MAX_SCAN_PAGE_SIZE:
            raise ValidationAppError(
                code="invalid_pagination",
                message=f"limit must be between 1 and {MAX_SCAN_PAGE_SIZE}.",
            )
        record = await self._owned_record(owner_id, record_id)
        return await self.store.list_scans(record.id, limit=limit)
