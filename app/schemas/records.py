"""Pydantic models for records, scan events and their HTTP payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Record(BaseModel):
    """One generated id → destination mapping plus its scan counters.

    Instances are immutable; stores hand out updated copies.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="ULID, URL-safe and sortable by creation time.")
    destination: str = Field(..., description="Normalized absolute http(s) address.")
    image_key: str = Field(
        default="",
        description="Object storage key of the rendered QR image; empty while pending.",
    )
    owner_id: str | None = Field(default=None, description="Creator identity, None if anonymous.")
    label: str | None = Field(default=None, max_length=100)
    created_at: datetime
    last_scan_at: datetime | None = None
    scan_count: int = Field(default=0, ge=0)

    @property
    def is_pending(self) -> bool:
        return not self.image_key


class ScanEvent(BaseModel):
    """One resolution of a tracking address."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    record_id: str
    scan_at: datetime
    user_agent: str = ""
    referer: str = ""
    source_address: str = ""
    region: str = ""


class CreateRecordRequest(BaseModel):
    """Body of ``POST /v1/records``."""

    destination: str = Field(
        ...,
        description="Address the QR code should lead to. A missing scheme defaults to https.",
        examples=["example.com/landing"],
    )
    label: str | None = Field(
        default=None,
        description="Optional short label shown in the owner's record list.",
    )


class RecordResponse(BaseModel):
    """Public view of a record."""

    id: str
    destination: str
    image_key: str
    tracking_address: str
    label: str | None = None
    created_at: datetime
    last_scan_at: datetime | None = None
    scan_count: int = 0


class RecordListResponse(BaseModel):
    items: list[RecordResponse]
    limit: int
    offset: int


class DeleteRecordResponse(BaseModel):
    success: bool = True
    deleted_id: str


class ScanEventResponse(BaseModel):
    scan_at: datetime
    user_agent: str
    referer: str
    region: str


class ScanListResponse(BaseModel):
    record_id: str
    items: list[ScanEventResponse]


class ImageAccessResponse(BaseModel):
    """Time-boxed reference to a stored QR image."""

    id: str
    url: str = Field(..., description="URL valid until expires_at.")
    expires_at: datetime
