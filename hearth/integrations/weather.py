"""Open-Meteo weather integration — forecast with a 15-minute cache.

No API key needed. When Open-Meteo is down, the last forecast for the same
location is served again, flagged `stale`, rather than failing the widget.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from hearth.core.ttl_cache import CacheEntry, TTLCache
from hearth.ports.provider_port import TransientFailure, ValidationError

logger = logging.getLogger(__name__)

_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
_TIMEOUT_SECONDS = 5

_FORECAST_PARAMS = {
    "current_weather": "true",
    "daily": "temperature_2m_max,temperature_2m_min,weather_code",
    "hourly": "temperature_2m,weather_code",
    "temperature_unit": "fahrenheit",
    "windspeed_unit": "mph",
    "timezone": "auto",
    "forecast_days": "7",
}


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _validate_coordinates(lat: float, lon: float) -> None:
    if not -90 <= lat <= 90 or not -180 <= lon <= 180:
        raise ValidationError(f"Invalid coordinates: {lat}, {lon}")


class WeatherService:
    """Fetches forecasts and owns the cache they are kept in."""

    def __init__(
        self,
        cache: TTLCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if cache is None:
            from hearth.config import settings

            cache = TTLCache(settings.WEATHER_CACHE_TTL_SECONDS)
        self._cache = cache
        self._transport = transport

    async def get_forecast(self, lat: float, lon: float) -> dict[str, Any]:
        """Return the Open-Meteo forecast plus `cached` / `lastUpdated` metadata.

        Raises:
            ValidationError: coordinates out of range.
            TransientFailure: Open-Meteo failed and nothing is cached.
        """
        _validate_coordinates(lat, lon)
        key = (round(lat, 2), round(lon, 2))

        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Weather served from cache for %s", key)
            entry = self._cache.get_entry(key)
            return {**cached, "cached": True, "lastUpdated": _iso(entry.stored_at)}

        try:
            data = await self._fetch(lat, lon)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Open-Meteo request failed for %s: %s", key, exc)
            stale = self._cache.get_entry(key)
            if stale is None:
                raise TransientFailure(f"Weather unavailable: {exc}") from exc
            logger.info("Returning stale weather for %s", key)
            return self._stale_response(stale)

        entry = self._cache.set(key, data)
        return {**data, "cached": False, "lastUpdated": _iso(entry.stored_at)}

    async def _fetch(self, lat: float, lon: float) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS, transport=self._transport) as client:
            resp = await client.get(
                _FORECAST_URL,
                params={"latitude": lat, "longitude": lon, **_FORECAST_PARAMS},
            )
            resp.raise_for_status()
            data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("Open-Meteo returned a non-object body")
        return data

    @staticmethod
    def _stale_response(entry: CacheEntry) -> dict[str, Any]:
        return {
            **entry.value,
            "cached": True,
            "stale": True,
            "lastUpdated": _iso(entry.stored_at),
            "error": "Using cached data due to API error",
        }
