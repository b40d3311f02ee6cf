from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.dependencies import get_record_service
from app.core.auth import get_owner_id, verify_api_key
from app.core.errors import UpstreamAppError
from app.core.rate_limit import RateLimitTicket, enforce_creation_limit
from app.schemas.records import (
    CreateRecordRequest,
    DeleteRecordResponse,
    Record,
    RecordListResponse,
    RecordResponse,
    ScanEventResponse,
    ScanListResponse,
)
from app.services.record_service import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_SCAN_PAGE_SIZE,
    DeleteRecord,
    ListRecords,
    ListScans,
    RecordService,
)

router = APIRouter(tags=["Records"], dependencies=[Depends(verify_api_key)])

ServiceDep = Annotated[RecordService, Depends(get_record_service)]
OwnerDep = Annotated[str | None, Depends(get_owner_id)]


def to_record_response(record: Record, service: RecordService) -> RecordResponse:
    return RecordResponse(
        id=record.id,
        destination=record.destination,
        image_key=record.image_key,
        tracking_address=service.tracking_address(record.id),
        label=record.label,
        created_at=record.created_at,
        last_scan_at=record.last_scan_at,
        scan_count=record.scan_count,
    )


@router.post(
    "/records",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_record(
    body: CreateRecordRequest,
    response: Response,
    service: ServiceDep,
    owner_id: OwnerDep,
    ticket: Annotated[RateLimitTicket, Depends(enforce_creation_limit)],
) -> RecordResponse:
    """Generate a QR code for a destination.

    An identified owner asking twice for the same destination gets the
    existing code back.
    """
    try:
        record = await service.generate(body.destination, owner_id, label=body.label)
    except UpstreamAppError:
        ticket.refund()
        raise

    ticket.apply(response)
    return to_record_response(record, service)


@router.get("/records", response_model=RecordListResponse)
async def list_records(
    service: ServiceDep,
    owner_id: OwnerDep,
    limit: Annotated[int, Query(description="Page size (1-100)")] = DEFAULT_PAGE_SIZE,
    offset: Annotated[int, Query(description="Records to skip")] = 0,
) -> RecordListResponse:
    """List the caller's QR codes, newest first."""
    records = await service.manage(ListRecords(owner_id=owner_id, limit=limit, offset=offset))
    return RecordListResponse(
        items=[to_record_response(r, service) for r in records],
        limit=limit,
        offset=offset,
    )


@router.delete("/records/{record_id}", response_model=DeleteRecordResponse)
async def delete_record(
    record_id: str,
    service: ServiceDep,
    owner_id: OwnerDep,
) -> DeleteRecordResponse:
    """Delete one of the caller's QR codes. Scan history is kept."""
    deleted_id = await service.manage(DeleteRecord(owner_id=owner_id, record_id=record_id))
    return DeleteRecordResponse(success=True, deleted_id=deleted_id)


@router.get("/records/{record_id}/scans", response_model=ScanListResponse)
async def list_scans(
    record_id: str,
    service: ServiceDep,
    owner_id: OwnerDep,
    limit: Annotated[int, Query(description="Maximum events (1-500)")] = DEFAULT_SCAN_PAGE_SIZE,
) -> ScanListResponse:
    """Scan history of one of the caller's QR codes, newest first."""
    events = await service.manage(ListScans(owner_id=owner_id, record_id=record_id, limit=limit))
    return ScanListResponse(
        record_id=record_id,
        items=[
            ScanEventResponse(
                scan_at=e.scan_at,
                user_agent=e.user_agent,
                referer=e.referer,
                region=e.region,
            )
            for e in events
        ],
    )
