"""Weather endpoint (Open-Meteo, cached)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from hearth.api.services import Services, get_services

router = APIRouter()


@router.get("/api/weather")
async def get_weather(lat: float, lon: float, services: Services = Depends(get_services)):
    return await services.weather.get_forecast(lat, lon)
