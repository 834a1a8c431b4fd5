"""
Weather Forecast Service
========================

Fetches the 7-day daily forecast for a plant's coordinates from the
Open-Meteo API (free, no API key needed).

The provider contract is strict: exactly seven days or a failure. A short
or unparsable response raises :class:`UpstreamUnavailableError`, which is
fatal to a plan refresh and absorbed by task re-analysis.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from app.domain.care_plan import PLAN_DAYS
from app.domain.exceptions import UpstreamUnavailableError
from app.domain.weather import ForecastDay
from app.utils.time import coerce_date

logger = logging.getLogger(__name__)

DAILY_FIELDS = (
    "temperature_2m_max",
    "temperature_2m_min",
    "relative_humidity_2m_mean",
    "precipitation_sum",
)


class OpenMeteoForecastProvider:
    """Open-Meteo daily forecast client."""

    BASE_URL = "https://api.open-meteo.com/v1/forecast"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url or self.BASE_URL
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch_forecast(self, lat: float, lon: float) -> list[ForecastDay]:
        """Return exactly :data:`PLAN_DAYS` forecast days starting today (local to the coordinates)."""
        params = {
            "latitude": lat,
            "longitude": lon,
            "daily": ",".join(DAILY_FIELDS),
            "timezone": "auto",
            "forecast_days": PLAN_DAYS,
        }
        try:
            response = self._session.get(self._base_url, params=params, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            logger.error("Weather API error for (%s, %s): %s", lat, lon, exc)
            raise UpstreamUnavailableError(
                "Weather forecast unavailable",
                detail={"lat": lat, "lon": lon},
            ) from exc
        except ValueError as exc:
            logger.error("Weather API returned non-JSON body for (%s, %s)", lat, lon)
            raise UpstreamUnavailableError("Weather forecast response is not JSON") from exc

        return self.parse_daily(payload)

    @staticmethod
    def parse_daily(payload: dict[str, Any]) -> list[ForecastDay]:
        """Convert an Open-Meteo ``daily`` block into :class:`ForecastDay` entries."""
        daily = payload.get("daily") or {}
        dates = daily.get("time") or []
        if len(dates) < PLAN_DAYS:
            raise UpstreamUnavailableError(
                f"Forecast returned {len(dates)} days, expected {PLAN_DAYS}",
                detail={"days": len(dates)},
            )

        def _value(field: str, index: int) -> float:
            series = daily.get(field) or []
            value = series[index] if index < len(series) else None
            try:
                return float(value)
            except (TypeError, ValueError):
                raise UpstreamUnavailableError(
                    f"Forecast is missing {field} for {dates[index]}",
                    detail={"field": field, "day": index},
                ) from None

        days: list[ForecastDay] = []
        for index, raw_date in enumerate(dates[:PLAN_DAYS]):
            day = coerce_date(raw_date)
            if day is None:
                raise UpstreamUnavailableError(f"Forecast contains an invalid date: {raw_date!r}")
            days.append(
                ForecastDay(
                    date=day,
                    temp_min=_value("temperature_2m_min", index),
                    temp_max=_value("temperature_2m_max", index),
                    humidity=_value("relative_humidity_2m_mean", index),
                    rain_mm=_value("precipitation_sum", index),
                )
            )
        return days
