"""Photo endpoints: Google Photos picker sessions and local photo storage."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field

from hearth.api.services import Services, get_services

router = APIRouter()


class DownloadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    filename: str = Field(min_length=1)
    mime_type: str | None = Field(default=None, alias="mimeType")
    access_token: str | None = Field(default=None, alias="accessToken")


@router.post("/api/photos/{user_id}/picker", status_code=201)
async def start_picker(user_id: str, services: Services = Depends(get_services)):
    """Open a picker session; the kiosk shows pickerUri as a QR code."""
    return await services.dashboard.start_picker(user_id)


@router.get("/api/photos/picker/{session_id}")
async def picker_status(session_id: str, services: Services = Depends(get_services)):
    return services.dashboard.picker_status(session_id)


@router.delete("/api/photos/picker/{session_id}")
async def cancel_picker(session_id: str, services: Services = Depends(get_services)):
    return await services.dashboard.cancel_picker(session_id)


@router.get("/api/photos")
async def list_photos(
    page: int = Query(1, ge=1),
    limit: int = Query(1000, ge=1),
    services: Services = Depends(get_services),
):
    """Stored photos, newest first."""
    return services.photos.list(page=page, limit=limit)


@router.post("/api/photos/download")
async def download_photo(body: DownloadRequest, services: Services = Depends(get_services)):
    return await services.photos.download(
        body.url, body.filename, mime_type=body.mime_type, access_token=body.access_token
    )


@router.delete("/api/photos/{filename}")
async def delete_photo(filename: str, services: Services = Depends(get_services)):
    services.photos.delete(filename)
    return {"success": True, "message": "Photo deleted"}


@router.get("/api/storage/{filename}")
async def stored_file(filename: str, services: Services = Depends(get_services)):
    return FileResponse(services.photos.path_for(filename))
