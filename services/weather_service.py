"""OpenWeather current-conditions lookup, cached for an hour."""
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from core.errors import ConfigError, UpstreamError
from core.logging import logger
from orchestration.cache import WEATHER_TTL, ResponseCache, cache_keys


class WeatherData(BaseModel):
    temperature: float
    condition: str
    description: str = ""
    humidity: Optional[float] = None
    wind_speed: Optional[float] = None
    location: str = ""
    icon: str = ""
    units: str = "metric"

    @property
    def temperature_c(self) -> float:
        if self.units == "imperial":
            return (self.temperature - 32) * 5 / 9
        if self.units == "standard":
            return self.temperature - 273.15
        return self.temperature


class WeatherService:
    def __init__(
        self,
        cache: ResponseCache,
        api_key: Optional[str],
        base_url: str = "https://api.openweathermap.org/data/2.5",
        timeout: float = 10.0,
    ):
        self.cache = cache
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config, cache: ResponseCache) -> "WeatherService":
        app = config.app
        return cls(cache, app.OPENWEATHER_API_KEY, app.OPENWEATHER_BASE_URL, app.HTTP_TIMEOUT_SECONDS)

    async def get_weather(
        self,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        city: Optional[str] = None,
        units: str = "metric",
    ) -> WeatherData:
        if not self.api_key:
            raise ConfigError("OPENWEATHER_API_KEY is not configured")
        if city:
            location = {"q": city.strip()}
        elif lat is not None and lon is not None:
            location = {"lat": round(lat, 2), "lon": round(lon, 2)}
        else:
            raise ValueError("either city or lat/lon is required")

        key = cache_keys.weather({**location, "units": units})
        return await self.cache.with_cache(
            key, lambda: self._fetch({**location, "units": units}), WEATHER_TTL, model=WeatherData
        )

    async def _fetch(self, params: Dict[str, Any]) -> WeatherData:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/weather", params={**params, "appid": self.api_key}
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Weather API request failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(f"Weather API error {response.status_code}", status_code=response.status_code)

        try:
            body = response.json()
            weather = (body.get("weather") or [{}])[0]
            data = WeatherData(
                temperature=body["main"]["temp"],
                condition=weather.get("main", "Unknown"),
                description=weather.get("description", ""),
                humidity=body["main"].get("humidity"),
                wind_speed=(body.get("wind") or {}).get("speed"),
                location=body.get("name", ""),
                icon=weather.get("icon", ""),
                units=params.get("units", "metric"),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise UpstreamError(f"Weather API returned an unexpected body: {e}") from e
        logger.debug(f"Weather for {data.location}: {data.temperature} {data.condition}")
        return data
