from typing import Annotated

from fastapi import APIRouter, Depends, Response

from app.api.dependencies import get_record_service
from app.schemas.records import ImageAccessResponse
from app.services.record_service import RecordService

router = APIRouter(tags=["Images"])

ServiceDep = Annotated[RecordService, Depends(get_record_service)]


@router.get("/images/{record_id}", response_model=ImageAccessResponse)
async def get_image(record_id: str, service: ServiceDep) -> ImageAccessResponse:
    """Time-boxed URL of a QR image."""
    access = await service.get_image_access(record_id)
    return ImageAccessResponse(id=access.id, url=access.url, expires_at=access.expires_at)


@router.get(
    "/images/{record_id}/download",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}, 404: {"description": "Unknown QR code"}},
)
async def download_image(record_id: str, service: ServiceDep) -> Response:
    """QR image as a PNG attachment."""
    filename, data = await service.get_image_download(record_id)
    return Response(
        content=data,
        media_type="image/png",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "private, max-age=300",
        },
    )
