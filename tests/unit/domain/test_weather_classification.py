from __future__ import annotations

from datetime import date

import pytest

from app.domain.weather import (
    ALERT_COLD,
    ALERT_EXTREME_HEAT,
    ALERT_FUNGAL_RISK,
    ALERT_HEAVY_RAIN,
    ForecastDay,
    classify_day,
    classify_forecast,
    humidity_level,
    rain_level,
    temperature_level,
)
from app.enums.care import HumidityLevel, RainLevel, TemperatureLevel, WateringNeed


def _day(temp_max=30.0, humidity=60.0, rain_mm=0.0) -> ForecastDay:
    return ForecastDay(date=date(2025, 6, 2), temp_min=temp_max - 8, temp_max=temp_max, humidity=humidity, rain_mm=rain_mm)


@pytest.mark.parametrize(
    "temp_max, expected",
    [
        (35.0, TemperatureLevel.VERY_HIGH),
        (34.9, TemperatureLevel.HIGH),
        (32.0, TemperatureLevel.HIGH),
        (28.0, TemperatureLevel.WARM),
        (22.0, TemperatureLevel.NORMAL),
        (15.0, TemperatureLevel.COOL),
        (14.9, TemperatureLevel.COLD),
    ],
)
def test_temperature_breakpoints(temp_max, expected):
    assert temperature_level(temp_max) is expected


@pytest.mark.parametrize(
    "humidity, expected",
    [
        (85.0, HumidityLevel.VERY_HIGH),
        (70.0, HumidityLevel.HIGH),
        (50.0, HumidityLevel.NORMAL),
        (40.0, HumidityLevel.LOW),
        (39.9, HumidityLevel.VERY_LOW),
    ],
)
def test_humidity_breakpoints(humidity, expected):
    assert humidity_level(humidity) is expected


@pytest.mark.parametrize(
    "rain_mm, expected",
    [
        (50.0, RainLevel.HEAVY),
        (20.0, RainLevel.MODERATE),
        (5.0, RainLevel.LIGHT),
        (0.4, RainLevel.DRIZZLE),
        (0.0, RainLevel.NONE),
    ],
)
def test_rain_breakpoints(rain_mm, expected):
    assert rain_level(rain_mm) is expected


class TestWateringNeed:
    def test_rain_always_wins(self):
        classified = classify_day(_day(temp_max=36, humidity=30, rain_mm=5.0))
        assert classified.watering_need is WateringNeed.NO

    def test_light_rain_means_no_watering(self):
        classified = classify_day(_day(temp_max=25, humidity=60, rain_mm=10.0))
        assert classified.rain is RainLevel.LIGHT
        assert classified.watering_need is WateringNeed.NO

    def test_hot_and_dry_needs_high(self):
        assert classify_day(_day(temp_max=33, humidity=35)).watering_need is WateringNeed.HIGH

    def test_hot_with_normal_humidity_is_moderate(self):
        assert classify_day(_day(temp_max=33, humidity=60)).watering_need is WateringNeed.MODERATE

    def test_dry_air_alone_is_moderate(self):
        assert classify_day(_day(temp_max=25, humidity=45)).watering_need is WateringNeed.MODERATE

    def test_normal_day_is_not_mandatory(self):
        classified = classify_day(_day(temp_max=25, humidity=60, rain_mm=1.0))
        assert classified.watering_need is WateringNeed.NORMAL
        assert "NOT mandatory" in classified.watering_reason


class TestAlerts:
    def test_no_alerts_on_mild_day(self):
        assert classify_day(_day()).alerts == ()

    def test_extreme_heat(self):
        assert ALERT_EXTREME_HEAT in classify_day(_day(temp_max=36)).alerts

    def test_cold(self):
        assert classify_day(_day(temp_max=12)).alerts == (ALERT_COLD,)

    def test_heavy_rain_and_fungal_risk(self):
        alerts = classify_day(_day(humidity=90, rain_mm=60)).alerts
        assert ALERT_HEAVY_RAIN in alerts
        assert ALERT_FUNGAL_RISK in alerts


def test_classify_forecast_keeps_order_and_dates(make_forecast):
    days = make_forecast(overrides={3: {"rain_mm": 25.0}})
    classified = classify_forecast(days)
    assert [c.date for c in classified] == [d.date for d in days]
    assert classified[3].rain is RainLevel.MODERATE


def test_forecast_day_round_trips_camel_case_keys():
    day = _day(temp_max=31.5, humidity=72, rain_mm=3.2)
    assert ForecastDay.from_dict(day.to_dict()) == day
