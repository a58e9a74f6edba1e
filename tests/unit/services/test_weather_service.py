"""Weather feed, fallback and failure-threshold tests."""

from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
import requests

from dripsim.domain.exceptions import ExternalServiceError
from dripsim.enums import WeatherCondition, WeatherSource
from dripsim.services.application.weather_service import (
    IntelligentFallback,
    OpenWeatherMapFeed,
    WeatherService,
    condition_from_icon,
)

RAINY_AFTERNOON = datetime(2026, 3, 10, 14, 0)


def _response(payload):
    response = Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestOpenWeatherMapFeed:
    def test_fetch_maps_icon(self):
        feed = OpenWeatherMapFeed("key", latitude=-5.1, longitude=119.4, url="http://weather.test")
        with patch(
            "dripsim.services.application.weather_service.requests.get",
            return_value=_response({"weather": [{"icon": "10d"}]}),
        ) as mock_get:
            assert feed.fetch_condition() == WeatherCondition.RAIN

        mock_get.assert_called_once_with(
            "http://weather.test",
            params={"lat": -5.1, "lon": 119.4, "appid": "key", "units": "metric"},
            timeout=10,
        )

    def test_network_error_raises_service_error(self):
        feed = OpenWeatherMapFeed("key", latitude=0, longitude=0)
        with patch(
            "dripsim.services.application.weather_service.requests.get",
            side_effect=requests.ConnectionError("boom"),
        ):
            with pytest.raises(ExternalServiceError):
                feed.fetch_condition()

    def test_http_error_raises_service_error(self):
        feed = OpenWeatherMapFeed("key", latitude=0, longitude=0)
        response = _response({})
        response.raise_for_status.side_effect = requests.HTTPError("401")
        with patch("dripsim.services.application.weather_service.requests.get", return_value=response):
            with pytest.raises(ExternalServiceError):
                feed.fetch_condition()

    @pytest.mark.parametrize("payload", [{}, {"weather": []}, {"weather": [{"icon": "99x"}]}])
    def test_unusable_payload_raises(self, payload):
        feed = OpenWeatherMapFeed("key", latitude=0, longitude=0)
        with patch(
            "dripsim.services.application.weather_service.requests.get",
            return_value=_response(payload),
        ):
            with pytest.raises(ExternalServiceError):
                feed.fetch_condition()


@pytest.mark.parametrize(
    "icon, condition",
    [
        ("01d", WeatherCondition.CLEAR),
        ("02n", WeatherCondition.CLEAR),
        ("04d", WeatherCondition.OVERCAST),
        ("50n", WeatherCondition.OVERCAST),
        ("09d", WeatherCondition.RAIN),
        ("11n", WeatherCondition.RAIN),
    ],
)
def test_condition_from_icon(icon, condition):
    assert condition_from_icon(icon) == condition


class TestIntelligentFallback:
    def test_dry_season_is_clear(self):
        assert IntelligentFallback().condition_at(datetime(2026, 7, 15, 14, 0)) == WeatherCondition.CLEAR

    def test_rainy_season_morning_is_clear(self):
        assert IntelligentFallback().condition_at(datetime(2026, 3, 10, 9, 0)) == WeatherCondition.CLEAR

    def test_rainy_season_afternoon_is_never_clear(self):
        fallback = IntelligentFallback()
        for day in range(1, 29):
            condition = fallback.condition_at(datetime(2026, 2, day, 15, 0))
            assert condition in (WeatherCondition.RAIN, WeatherCondition.OVERCAST)

    def test_same_hour_agrees(self):
        fallback = IntelligentFallback(seed="farm")
        assert fallback.condition_at(RAINY_AFTERNOON) == fallback.condition_at(
            RAINY_AFTERNOON + timedelta(minutes=45)
        )

    @pytest.mark.parametrize("month, rainy", [(11, True), (12, True), (1, True), (4, True), (5, False), (10, False)])
    def test_season_bounds(self, month, rainy):
        assert IntelligentFallback.is_rainy_season(datetime(2026, month, 1)) is rainy


class TestWeatherService:
    @pytest.fixture()
    def feed(self):
        feed = Mock()
        feed.name = "stub"
        feed.fetch_condition.return_value = WeatherCondition.OVERCAST
        return feed

    def test_success_sets_api_condition(self, coordinator, feed, clock):
        service = WeatherService(coordinator, feed=feed, clock=clock)

        assert service.poll() == WeatherCondition.OVERCAST
        assert coordinator.weather.current() == WeatherCondition.OVERCAST
        assert coordinator.weather.source == WeatherSource.API
        assert service.using_fallback is False
        assert service.is_stale() is False

    def test_failures_below_threshold_keep_condition(self, coordinator, feed, clock):
        feed.fetch_condition.side_effect = ExternalServiceError("down")
        service = WeatherService(coordinator, feed=feed, clock=clock, failure_threshold=3)
        clock.set(RAINY_AFTERNOON)

        assert service.poll() == WeatherCondition.CLEAR
        assert service.poll() == WeatherCondition.CLEAR
        assert service.using_fallback is False
        assert service.status()["consecutive_failures"] == 2

        fallback_condition = service.poll()
        assert service.using_fallback is True
        assert fallback_condition == IntelligentFallback().condition_at(RAINY_AFTERNOON)
        assert coordinator.weather.source == WeatherSource.FALLBACK

    def test_feed_recovery_leaves_fallback(self, coordinator, feed, clock):
        feed.fetch_condition.side_effect = ExternalServiceError("down")
        service = WeatherService(coordinator, feed=feed, clock=clock, failure_threshold=1)
        service.poll()
        assert service.using_fallback is True

        feed.fetch_condition.side_effect = None
        feed.fetch_condition.return_value = WeatherCondition.RAIN
        assert service.poll() == WeatherCondition.RAIN
        assert service.using_fallback is False
        assert service.status()["consecutive_failures"] == 0
        assert coordinator.soil.state.moisture >= 75.0

    def test_without_feed_uses_fallback(self, coordinator, clock):
        service = WeatherService(coordinator, clock=clock)
        assert service.poll() == WeatherCondition.CLEAR
        assert service.using_fallback is True
        assert service.status()["feed"] is None

    def test_staleness(self, coordinator, feed, clock):
        service = WeatherService(coordinator, feed=feed, clock=clock, stale_minutes=30)
        assert service.is_stale() is True

        service.poll()
        clock.advance(minutes=30)
        assert service.is_stale() is False
        clock.advance(minutes=1)
        assert service.is_stale() is True
