"""
Weather Classification
======================
Converts raw daily forecast numbers into qualitative levels, a watering
recommendation and alert strings.

The breakpoints are tuned for a tropical monsoon climate and are fixed:
given the same numbers every implementation must produce the same labels.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from app.enums.care import HumidityLevel, RainLevel, TemperatureLevel, WateringNeed
from app.utils.time import coerce_date

# (lower bound inclusive, level), checked top-down against tempMax
TEMPERATURE_BREAKPOINTS: tuple[tuple[float, TemperatureLevel], ...] = (
    (35.0, TemperatureLevel.VERY_HIGH),
    (32.0, TemperatureLevel.HIGH),
    (28.0, TemperatureLevel.WARM),
    (22.0, TemperatureLevel.NORMAL),
    (15.0, TemperatureLevel.COOL),
)

HUMIDITY_BREAKPOINTS: tuple[tuple[float, HumidityLevel], ...] = (
    (85.0, HumidityLevel.VERY_HIGH),
    (70.0, HumidityLevel.HIGH),
    (50.0, HumidityLevel.NORMAL),
    (40.0, HumidityLevel.LOW),
)

RAIN_BREAKPOINTS: tuple[tuple[float, RainLevel], ...] = (
    (50.0, RainLevel.HEAVY),
    (20.0, RainLevel.MODERATE),
    (5.0, RainLevel.LIGHT),
)

_HOT = (TemperatureLevel.HIGH, TemperatureLevel.VERY_HIGH)
_DRY = (HumidityLevel.LOW, HumidityLevel.VERY_LOW)
# Light rain (5-20mm) also means no watering. The stated rule only names moderate
# and heavy rain, but the 10mm reference case expects "no"; the reference case wins.
_RAINY = (RainLevel.LIGHT, RainLevel.MODERATE, RainLevel.HEAVY)

ALERT_EXTREME_HEAT = "Extreme heat: shade the plants and water generously"
ALERT_COLD = "Low temperature: cover plants to protect them"
ALERT_HEAVY_RAIN = "Heavy rain: check field drainage"
ALERT_FUNGAL_RISK = "Very high humidity: elevated fungal disease risk"


@dataclass(frozen=True)
class ForecastDay:
    """One day of raw forecast data as delivered by the forecast provider."""

    date: date
    temp_min: float
    temp_max: float
    humidity: float
    rain_mm: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "tempMin": self.temp_min,
            "tempMax": self.temp_max,
            "humidity": self.humidity,
            "rainMm": self.rain_mm,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ForecastDay":
        day = coerce_date(data.get("date"))
        if day is None:
            raise ValueError(f"Forecast day without a valid date: {data!r}")
        return cls(
            date=day,
            temp_min=float(data.get("tempMin", 0.0)),
            temp_max=float(data.get("tempMax", 0.0)),
            humidity=float(data.get("humidity", 0.0)),
            rain_mm=float(data.get("rainMm", 0.0)),
        )


@dataclass(frozen=True)
class ClassifiedWeather:
    """Qualitative reading of a single forecast day."""

    forecast: ForecastDay
    temperature: TemperatureLevel
    humidity: HumidityLevel
    rain: RainLevel
    watering_need: WateringNeed
    watering_reason: str
    alerts: tuple[str, ...] = field(default_factory=tuple)

    @property
    def date(self) -> date:
        return self.forecast.date

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.forecast.date.isoformat(),
            "temp": {
                "min": self.forecast.temp_min,
                "max": self.forecast.temp_max,
                "level": str(self.temperature),
            },
            "humidity": {"value": self.forecast.humidity, "level": str(self.humidity)},
            "rain": {"value": self.forecast.rain_mm, "level": str(self.rain)},
            "wateringNeed": {"level": str(self.watering_need), "reason": self.watering_reason},
            "alerts": list(self.alerts),
        }


def _level(value: float, breakpoints, default):
    for threshold, level in breakpoints:
        if value >= threshold:
            return level
    return default


def temperature_level(temp_max: float) -> TemperatureLevel:
    return _level(temp_max, TEMPERATURE_BREAKPOINTS, TemperatureLevel.COLD)


def humidity_level(humidity: float) -> HumidityLevel:
    return _level(humidity, HUMIDITY_BREAKPOINTS, HumidityLevel.VERY_LOW)


def rain_level(rain_mm: float) -> RainLevel:
    level = _level(rain_mm, RAIN_BREAKPOINTS, RainLevel.NONE)
    if level is RainLevel.NONE and rain_mm > 0:
        return RainLevel.DRIZZLE
    return level


def watering_need(
    temperature: TemperatureLevel,
    humidity: HumidityLevel,
    rain: RainLevel,
) -> tuple[WateringNeed, str]:
    """Return ``(need, reason)``. Rain of 5mm or more always wins."""
    if rain in _RAINY:
        return WateringNeed.NO, "Rain expected, no watering needed"
    if temperature in _HOT:
        if humidity in _DRY:
            return WateringNeed.HIGH, "High temperature and low humidity, water generously"
        return WateringNeed.MODERATE, "High temperature, water moderately"
    if humidity in _DRY:
        return WateringNeed.MODERATE, "Low humidity, supplementary watering needed"
    return (
        WateringNeed.NORMAL,
        "Normal conditions, watering NOT mandatory "
        "(water only if the soil is dry or it has been 2-3 days since the last watering)",
    )


def weather_alerts(temperature: TemperatureLevel, humidity: HumidityLevel, rain: RainLevel) -> tuple[str, ...]:
    alerts: list[str] = []
    if temperature is TemperatureLevel.VERY_HIGH:
        alerts.append(ALERT_EXTREME_HEAT)
    if temperature is TemperatureLevel.COLD:
        alerts.append(ALERT_COLD)
    if rain is RainLevel.HEAVY:
        alerts.append(ALERT_HEAVY_RAIN)
    if humidity is HumidityLevel.VERY_HIGH:
        alerts.append(ALERT_FUNGAL_RISK)
    return tuple(alerts)


def classify_day(day: ForecastDay) -> ClassifiedWeather:
    """Classify one forecast day. Pure and total."""
    temp = temperature_level(day.temp_max)
    hum = humidity_level(day.humidity)
    rain = rain_level(day.rain_mm)
    need, reason = watering_need(temp, hum, rain)
    return ClassifiedWeather(
        forecast=day,
        temperature=temp,
        humidity=hum,
        rain=rain,
        watering_need=need,
        watering_reason=reason,
        alerts=weather_alerts(temp, hum, rain),
    )


def classify_forecast(days: list[ForecastDay]) -> list[ClassifiedWeather]:
    return [classify_day(day) for day in days]
