"""Reward shop endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from hearth.api.services import Services, get_services

router = APIRouter()


class NewReward(BaseModel):
    title: str = "New Reward"
    cost: int = 50
    icon: str = "🎁"
    description: str = ""


class RewardUpdate(BaseModel):
    title: str | None = None
    cost: int | None = None
    icon: str | None = None
    description: str | None = None


@router.get("/api/rewards")
async def list_rewards(services: Services = Depends(get_services)):
    return [r.to_dict() for r in services.shop.list()]


@router.post("/api/rewards/seed")
async def seed_rewards(services: Services = Depends(get_services)):
    """Fill an empty shop with the default rewards."""
    added = services.shop.seed()
    return {"success": True, "added": added}


@router.post("/api/rewards", status_code=201)
async def create_reward(body: NewReward, services: Services = Depends(get_services)):
    return services.shop.create(**body.model_dump()).to_dict()


@router.get("/api/rewards/{reward_id}")
async def get_reward(reward_id: str, services: Services = Depends(get_services)):
    return services.shop.get(reward_id).to_dict()


@router.put("/api/rewards/{reward_id}")
async def update_reward(reward_id: str, body: RewardUpdate, services: Services = Depends(get_services)):
    return services.shop.update(reward_id, body.model_dump(exclude_none=True)).to_dict()


@router.delete("/api/rewards/{reward_id}")
async def delete_reward(reward_id: str, services: Services = Depends(get_services)):
    services.shop.delete(reward_id)
    return {"success": True}
