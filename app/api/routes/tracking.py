from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from app.api.dependencies import get_record_service
from app.core.errors import UpstreamAppError
from app.core.rate_limit import RateLimitTicket, enforce_tracking_limit, get_client_address
from app.services.record_service import RecordService

router = APIRouter(tags=["Tracking"])


@router.get(
    "/{record_id}",
    response_class=RedirectResponse,
    status_code=302,
    responses={404: {"description": "Unknown QR code"}, 429: {"description": "Rate limited"}},
)
async def track_scan(
    record_id: str,
    request: Request,
    service: Annotated[RecordService, Depends(get_record_service)],
    ticket: Annotated[RateLimitTicket, Depends(enforce_tracking_limit)],
) -> RedirectResponse:
    """Count a scan and redirect to the destination."""
    region_header = request.app.state.settings.app.region_header
    try:
        destination = await service.track(
            record_id,
            user_agent=request.headers.get("user-agent"),
            referer=request.headers.get("referer"),
            source_address=get_client_address(request),
            region=request.headers.get(region_header),
        )
    except UpstreamAppError:
        ticket.refund()
        raise

    response = RedirectResponse(destination, status_code=302)
    # Every scan has to reach the server to be counted
    response.headers["Cache-Control"] = "no-store"
    ticket.apply(response)
    return response
