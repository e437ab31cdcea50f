"""User stats (XP / gold / level) and reward redemption endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from hearth.api.services import Services, get_services

router = APIRouter()


class AmountBody(BaseModel):
    amount: int  # may be negative


class RedeemBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    reward_id: str = Field(alias="rewardId")


@router.get("/api/stats/redemptions/all")
async def list_redemptions(unfulfilled: bool = False, services: Services = Depends(get_services)):
    return [r.to_dict() for r in services.stats.redemptions(unfulfilled_only=unfulfilled)]


@router.post("/api/stats/redemptions/{redemption_id}/fulfill")
async def fulfill_redemption(redemption_id: str, services: Services = Depends(get_services)):
    services.stats.fulfill(redemption_id)
    return {"success": True}


@router.get("/api/stats/{user_id}")
async def get_stats(user_id: str, services: Services = Depends(get_services)):
    return services.stats.get_stats(user_id).to_dict()


@router.post("/api/stats/{user_id}/xp")
async def add_xp(user_id: str, body: AmountBody, services: Services = Depends(get_services)):
    stats, leveled_up = services.stats.add_xp(user_id, body.amount)
    return {**stats.to_dict(), "leveledUp": leveled_up}


@router.post("/api/stats/{user_id}/gold")
async def add_gold(user_id: str, body: AmountBody, services: Services = Depends(get_services)):
    stats = services.stats.add_gold(user_id, body.amount)
    return {**stats.to_dict(), "leveledUp": False}


@router.post("/api/stats/{user_id}/redeem")
async def redeem(user_id: str, body: RedeemBody, services: Services = Depends(get_services)):
    stats, redemption = services.stats.redeem(user_id, body.reward_id)
    return {"success": True, "stats": stats.to_dict(), "redemption": redemption.to_dict()}
