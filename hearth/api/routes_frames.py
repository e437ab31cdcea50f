"""Collage frame endpoints (PNG/WebP overlays uploaded by a parent)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse

from hearth.api.services import Services, get_services
from hearth.ports.provider_port import ValidationError

router = APIRouter()


@router.get("/api/frames")
async def list_frames(services: Services = Depends(get_services)):
    return services.frames.list()


@router.post("/api/frames", status_code=201)
async def upload_frame(
    frame: UploadFile | None = File(None),
    services: Services = Depends(get_services),
):
    if frame is None:
        raise ValidationError("No file uploaded")
    # Read at most one byte past the limit
    data = await frame.read(services.frames.max_bytes + 1)
    return services.frames.save(frame.filename or "frame", frame.content_type, data)


@router.delete("/api/frames/{filename}")
async def delete_frame(filename: str, services: Services = Depends(get_services)):
    services.frames.delete(filename)
    return {"success": True, "message": "Frame deleted"}


@router.get("/api/frames/storage/{filename}")
async def frame_file(filename: str, services: Services = Depends(get_services)):
    return FileResponse(services.frames.path_for(filename))
