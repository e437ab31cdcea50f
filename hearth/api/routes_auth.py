"""OAuth endpoints: code exchange, token refresh, disconnect."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from hearth.api.services import Services, get_services

router = APIRouter()


class CallbackBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    code: str
    user_id: str = Field(alias="userId")
    redirect_uri: str | None = None


@router.post("/api/auth/callback")
async def auth_callback(body: CallbackBody, services: Services = Depends(get_services)):
    """Exchange the authorization code; only the access token goes back."""
    tokens = await services.auth.handle_callback(body.code, body.user_id, body.redirect_uri)
    return {"success": True, "tokens": tokens}


@router.get("/api/auth/refresh/{user_id}")
async def auth_refresh(user_id: str, services: Services = Depends(get_services)):
    return await services.auth.refresh(user_id)


@router.delete("/api/auth/{user_id}")
async def auth_disconnect(user_id: str, services: Services = Depends(get_services)):
    return {"success": services.auth.disconnect(user_id)}
