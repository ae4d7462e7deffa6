# =============================================================================
# core/services/weather_service.py - Historical Temperature Lookup
# =============================================================================
# Suggests the ambient temperature for a case from Open-Meteo:
#   1. geocode the case's city to coordinates
#   2. read the hourly archive for the case date and take the nearest hour
# =============================================================================

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from app.exceptions import WeatherServiceError

logger = logging.getLogger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"

REQUEST_TIMEOUT_SECONDS = 10.0


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class WeatherService:
    """
    Open-Meteo client.

    `transport` lets tests swap in an httpx.MockTransport.
    """

    def __init__(self, transport: httpx.BaseTransport | None = None):
        self._transport = transport

    def _get(self, url: str, params: dict[str, Any]) -> httpx.Response:
        with httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS, transport=self._transport) as client:
            return client.get(url, params=params)

    def get_coordinates(self, city: str) -> dict[str, float]:
        """
        Geocode a city name.

        Returns:
            {"lat": ..., "long": ...} of the best match

        Raises:
            WeatherServiceError: "City not found" or "Failed to fetch coordinates"
        """
        try:
            response = self._get(
                GEOCODING_URL,
                {"name": city, "count": 1, "language": "en", "format": "json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Geocoding request failed for {city}: {e}")
            raise WeatherServiceError("Failed to fetch coordinates")

        if not response.is_success:
            logger.error(f"Geocoding returned {response.status_code} for {city}")
            raise WeatherServiceError("Failed to fetch coordinates")

        results = response.json().get("results") or []
        if not results:
            raise WeatherServiceError("City not found")

        return {"lat": results[0]["latitude"], "long": results[0]["longitude"]}

    def get_historical_temperature(self, lat: float, long: float, when: datetime) -> dict[str, Any]:
        """
        Hourly 2 m air temperature nearest to `when`.

        Ties between two hours resolve to the earlier one.

        Returns:
            {"value": <°C>, "unit": "C"}

        Raises:
            WeatherServiceError: "Failed to fetch weather data" or
                "No temperature data available"
        """
        target = _as_naive_utc(when)
        day = target.date().isoformat()

        try:
            response = self._get(
                ARCHIVE_URL,
                {
                    "latitude": lat,
                    "longitude": long,
                    "start_date": day,
                    "end_date": day,
                    "hourly": "temperature_2m",
                    "timezone": "GMT",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Weather archive request failed: {e}")
            raise WeatherServiceError("Failed to fetch weather data")

        if not response.is_success:
            logger.error(f"Weather archive returned {response.status_code}")
            raise WeatherServiceError("Failed to fetch weather data")

        hourly = response.json().get("hourly") or {}
        times = hourly.get("time") or []
        temperatures = hourly.get("temperature_2m") or []
        if not times or not temperatures:
            raise WeatherServiceError("No temperature data available")

        best_index = None
        best_distance = None
        for index, stamp in enumerate(times):
            if index >= len(temperatures) or temperatures[index] is None:
                continue
            distance = abs((datetime.fromisoformat(stamp) - target).total_seconds())
            if best_distance is None or distance < best_distance:
                best_index, best_distance = index, distance

        if best_index is None:
            raise WeatherServiceError("No temperature data available")

        return {"value": temperatures[best_index], "unit": "C"}

    def get_case_temperature(self, city: str, when: datetime) -> dict[str, Any]:
        """Geocode + archive lookup in one call (case form helper)."""
        coordinates = self.get_coordinates(city)
        logger.info(f"Looking up temperature for {city} at {when.isoformat()}")
        return self.get_historical_temperature(coordinates["lat"], coordinates["long"], when)
