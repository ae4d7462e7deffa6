# =============================================================================
# tests/test_weather_service.py - Weather Lookup Tests
# =============================================================================
# Open-Meteo responses are served by httpx.MockTransport.
# =============================================================================

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.exceptions import WeatherServiceError
from core.services.weather_service import WeatherService

GEOCODE = {"results": [{"name": "Calamba", "latitude": 14.21, "longitude": 121.16}]}
ARCHIVE = {
    "hourly": {
        "time": ["2025-03-14T08:00", "2025-03-14T09:00", "2025-03-14T10:00"],
        "temperature_2m": [26.1, 27.4, 29.0],
    }
}


def service(handler) -> WeatherService:
    return WeatherService(transport=httpx.MockTransport(handler))


def open_meteo(geocode=GEOCODE, archive=ARCHIVE, status: int = 200):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if "geocoding" in request.url.host:
            return httpx.Response(status, json=geocode)
        return httpx.Response(status, json=archive)

    handler.seen = seen
    return handler


class TestCoordinates:
    """Tests for WeatherService.get_coordinates."""

    def test_first_match(self):
        coordinates = service(open_meteo()).get_coordinates("Calamba")

        assert coordinates == {"lat": 14.21, "long": 121.16}

    def test_city_not_found(self):
        with pytest.raises(WeatherServiceError) as exc:
            service(open_meteo(geocode={})).get_coordinates("Atlantis")

        assert exc.value.message == "City not found"

    def test_http_error(self):
        with pytest.raises(WeatherServiceError) as exc:
            service(open_meteo(status=500)).get_coordinates("Calamba")

        assert exc.value.message == "Failed to fetch coordinates"


class TestHistoricalTemperature:
    """Tests for WeatherService.get_historical_temperature."""

    def test_nearest_hour(self):
        # Arrange
        handler = open_meteo()

        # Act
        result = service(handler).get_historical_temperature(14.21, 121.16, datetime(2025, 3, 14, 9, 20))

        # Assert
        assert result == {"value": 27.4, "unit": "C"}
        assert handler.seen[0].url.params["start_date"] == "2025-03-14"

    def test_tie_goes_to_earlier_hour(self):
        result = service(open_meteo()).get_historical_temperature(0, 0, datetime(2025, 3, 14, 9, 30))

        assert result["value"] == 27.4

    def test_aware_datetime_converted_to_utc(self):
        # 17:10 at UTC+8 is 09:10 UTC
        when = datetime(2025, 3, 14, 17, 10, tzinfo=timezone(timedelta(hours=8)))

        result = service(open_meteo()).get_historical_temperature(0, 0, when)

        assert result["value"] == 27.4

    def test_empty_series(self):
        with pytest.raises(WeatherServiceError) as exc:
            service(open_meteo(archive={"hourly": {"time": [], "temperature_2m": []}})) \
                .get_historical_temperature(0, 0, datetime(2025, 3, 14, 9, 0))

        assert exc.value.message == "No temperature data available"

    def test_case_temperature_combines_both_calls(self):
        handler = open_meteo()

        result = service(handler).get_case_temperature("Calamba", datetime(2025, 3, 14, 10, 0))

        assert result["value"] == 29.0
        assert len(handler.seen) == 2
