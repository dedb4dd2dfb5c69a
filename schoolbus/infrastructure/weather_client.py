"""
Weather provider client.

``XWeatherProvider`` calls the XWeather road-weather endpoint::

    GET {base_url}/roadweather/{lat:.2f},{lon:.2f}?client_id=..&client_secret=..

and reads the first period of the first response item.  Any transport
error, non-2xx status or malformed body is raised as ``WeatherUnavailable``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from schoolbus.config import settings
from schoolbus.domain.errors import WeatherUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeatherReading:
    temperature: float
    conditions: str
    wind_speed: Optional[float] = None
    humidity: Optional[float] = None


class WeatherProvider(Protocol):
    async def get(self, latitude: float, longitude: float) -> WeatherReading: ...


def _first_period(payload: dict) -> dict:
    response = payload.get("response")
    if isinstance(response, list):
        response = response[0] if response else {}
    periods = (response or {}).get("periods") or []
    if not periods:
        raise WeatherUnavailable("Weather response has no periods")
    return periods[0]


class XWeatherProvider:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.weather_timeout_seconds
        )
        self._owns_client = client is None
        self.base_url = (base_url or settings.weather_api_base_url).rstrip("/")
        self.client_id = client_id or settings.weather_client_id
        self.client_secret = client_secret or settings.weather_client_secret

    async def get(self, latitude: float, longitude: float) -> WeatherReading:
        url = f"{self.base_url}/roadweather/{latitude:.2f},{longitude:.2f}"
        params = {}
        if self.client_id:
            params = {"client_id": self.client_id, "client_secret": self.client_secret or ""}
        try:
            resp = await self._client.get(url, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise WeatherUnavailable(f"Weather request failed: {exc}") from exc

        if isinstance(payload, dict) and payload.get("success") is False:
            raise WeatherUnavailable(f"Weather provider error: {payload.get('error')}")
        try:
            period = _first_period(payload)
            return WeatherReading(
                temperature=float(period["temperature"]),
                conditions=str(period.get("conditions") or ""),
                wind_speed=period.get("windSpeed"),
                humidity=period.get("humidity"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise WeatherUnavailable(f"Malformed weather response: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
