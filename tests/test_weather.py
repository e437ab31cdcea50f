"""Tests for hearth.integrations.weather and hearth.core.ttl_cache."""

import httpx
import pytest

from hearth.core.ttl_cache import TTLCache
from hearth.integrations.weather import WeatherService
from hearth.ports.provider_port import TransientFailure, ValidationError

FORECAST = {"current_weather": {"temperature": 71.2}, "daily": {}}


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_fresh_and_stale(self):
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.set("k", 1)
        assert cache.get("k") == 1

        clock.now += 61
        assert cache.get("k") is None
        assert cache.get_entry("k").value == 1
        assert len(cache) == 1

    def test_clear(self):
        cache = TTLCache(60)
        cache.set("k", 1)
        cache.clear()
        assert cache.get_entry("k") is None


class TestWeatherService:
    @pytest.mark.asyncio
    async def test_fetch_then_cache_hit(self, google_stub):
        stub = google_stub([httpx.Response(200, json=FORECAST)])
        service = WeatherService(cache=TTLCache(900, clock=FakeClock()), transport=stub.transport)

        first = await service.get_forecast(40.7128, -74.006)
        second = await service.get_forecast(40.7131, -74.0062)

        assert first["cached"] is False
        assert second["cached"] is True
        assert second["current_weather"] == {"temperature": 71.2}
        assert len(stub.requests) == 1
        params = stub.requests[0].url.params
        assert params["temperature_unit"] == "fahrenheit"
        assert params["forecast_days"] == "7"

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, google_stub):
        clock = FakeClock()
        stub = google_stub([httpx.Response(200, json=FORECAST), httpx.Response(200, json=FORECAST)])
        service = WeatherService(cache=TTLCache(900, clock=clock), transport=stub.transport)

        await service.get_forecast(1, 2)
        clock.now += 901
        result = await service.get_forecast(1, 2)

        assert result["cached"] is False
        assert len(stub.requests) == 2

    @pytest.mark.asyncio
    async def test_stale_fallback_on_upstream_error(self, google_stub):
        clock = FakeClock()
        stub = google_stub([httpx.Response(200, json=FORECAST), httpx.Response(500)])
        service = WeatherService(cache=TTLCache(900, clock=clock), transport=stub.transport)

        await service.get_forecast(1, 2)
        clock.now += 901
        result = await service.get_forecast(1, 2)

        assert result["stale"] is True
        assert result["cached"] is True
        assert result["error"] == "Using cached data due to API error"
        assert result["current_weather"] == {"temperature": 71.2}

    @pytest.mark.asyncio
    async def test_error_without_cache_is_transient(self, google_stub):
        stub = google_stub([httpx.ConnectError("down")])
        service = WeatherService(cache=TTLCache(900), transport=stub.transport)

        with pytest.raises(TransientFailure):
            await service.get_forecast(1, 2)

    @pytest.mark.asyncio
    async def test_invalid_coordinates(self, google_stub):
        stub = google_stub([])
        service = WeatherService(cache=TTLCache(900), transport=stub.transport)

        with pytest.raises(ValidationError):
            await service.get_forecast(91, 0)
        assert stub.requests == []
