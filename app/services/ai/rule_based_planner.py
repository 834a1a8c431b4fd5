"""
Rule-Based Plan Generator
=========================
Deterministic 7-day plan derived only from classified weather and the
severity tiers of active diseases. Used whenever the text generator is
unavailable, times out or returns something that cannot be assembled
into a plan. Never performs I/O.

Rules:
    * Water on day indices 0, 2 and 4 unless rain reaches 5mm; an extra
      late watering on other days when the watering need is high.
    * Fertilize on day 5 when no disease is active.
    * Treatment (``protect``) actions follow the tier day pattern; the
      critical tier gets a morning and a late afternoon application.
    * Almost-resolved diseases only get recurrence checks.
    * Humid days without disease get a monitoring check, never treatment.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.domain.care_plan import PLAN_DAYS, Action, CarePlan, DayPlan, WeatherSnapshot
from app.domain.weather import ClassifiedWeather
from app.enums.care import (
    ActionCategory,
    ActionType,
    HumidityLevel,
    SeverityTier,
    TemperatureLevel,
    WateringNeed,
)
from app.services.ai.plan_prompt_builder import DiseaseContext, PlanContext
from app.utils.ids import IdGenerator

logger = logging.getLogger(__name__)

WATERING_DAYS = (0, 2, 4)
FERTILIZE_DAY = 5
RAIN_SKIP_MM = 5.0
HEAVY_RAIN_MM = 20.0
APPLICATION_TIMES = ("07:00", "17:00")
RECURRENCE_CHECK_DAYS = (0, 3)
RESPONSE_CHECK_DAY = 4

_ELEVATED_HUMIDITY = (HumidityLevel.HIGH, HumidityLevel.VERY_HIGH)
_HOT = (TemperatureLevel.HIGH, TemperatureLevel.VERY_HIGH)


def weather_snapshot(day: ClassifiedWeather) -> WeatherSnapshot:
    """Plan-day weather block taken from the real forecast."""
    fc = day.forecast
    return WeatherSnapshot(
        temp_min=fc.temp_min,
        temp_max=fc.temp_max,
        humidity=fc.humidity,
        rain_mm=fc.rain_mm,
        alerts=list(day.alerts),
    )


def build_treatment_action(
    ids: IdGenerator,
    diseases: list[DiseaseContext],
    time: str = "07:00",
    reason: str | None = None,
) -> Action:
    """A single ``protect`` action covering every disease in *diseases*."""
    names = [ctx.disease.name for ctx in diseases]
    products: list[str] = []
    for ctx in diseases:
        for product in ctx.preferred_products():
            if product not in products:
                products.append(product)
    if products:
        description = f"Apply {', '.join(products)} to treat {', '.join(names)}"
    else:
        description = f"Treat {', '.join(names)}: remove affected leaves and apply a suitable product"
    return Action(
        id=ids.new_id("act"),
        type=ActionType.PROTECT,
        time=time,
        description=description,
        reason=reason or f"Active disease: {', '.join(names)}",
        products=products,
        category=ActionCategory.TREATMENT,
    )


class RuleBasedPlanGenerator:
    """Builds a :class:`CarePlan` without calling the text generator."""

    def __init__(self, ids: IdGenerator | None = None) -> None:
        self._ids = ids or IdGenerator()

    def generate(self, context: PlanContext, now: datetime) -> CarePlan:
        days = [
            DayPlan(
                date=weather.forecast.date,
                weather=weather_snapshot(weather),
                actions=self._day_actions(index, weather, context),
            )
            for index, weather in enumerate(context.weather[:PLAN_DAYS])
        ]
        logger.info(
            "Rule-based plan for plant %s: %d actions",
            context.plant.id,
            sum(len(day.actions) for day in days),
        )
        return CarePlan(last_updated=now, days=days, summary=self._summary(context), source="rule_based")

    # ------------------------------------------------------------------

    def _day_actions(self, index: int, weather: ClassifiedWeather, context: PlanContext) -> list[Action]:
        actions: list[Action] = []
        actions.extend(self._treatments(index, context))
        actions.extend(self._watering(index, weather))
        actions.extend(self._weather_checks(weather))
        actions.extend(self._disease_checks(index, context))

        if index == FERTILIZE_DAY and not context.has_active_disease:
            actions.append(
                self._action(
                    ActionType.FERTILIZE,
                    "08:00",
                    "Apply a balanced NPK fertilizer around the base of each plant",
                    "Weekly nutrition for healthy growth",
                    category=ActionCategory.CARE,
                )
            )
        if weather.humidity in _ELEVATED_HUMIDITY and not context.has_active_disease:
            actions.append(
                self._action(
                    ActionType.CHECK,
                    "16:00",
                    "Inspect leaves for fungal spots or mildew",
                    f"Humidity {weather.forecast.humidity:.0f}% favours fungal disease",
                    category=ActionCategory.MONITORING,
                )
            )
        actions.sort(key=lambda action: action.time)
        return actions

    def _watering(self, index: int, weather: ClassifiedWeather) -> list[Action]:
        rain = weather.forecast.rain_mm
        if rain >= RAIN_SKIP_MM:
            return []
        amount = "500ml" if weather.temperature in _HOT else "300ml"
        if index in WATERING_DAYS:
            return [
                self._action(
                    ActionType.WATER,
                    "08:00",
                    f"Water {amount} per plant at the base",
                    weather.watering_reason,
                    category=ActionCategory.CARE,
                )
            ]
        if weather.watering_need is WateringNeed.HIGH:
            return [
                self._action(
                    ActionType.WATER,
                    "17:00",
                    f"Extra watering: {amount} per plant in the late afternoon",
                    weather.watering_reason,
                    category=ActionCategory.CARE,
                )
            ]
        return []

    def _weather_checks(self, weather: ClassifiedWeather) -> list[Action]:
        checks = []
        if weather.forecast.rain_mm > HEAVY_RAIN_MM:
            checks.append(
                self._action(
                    ActionType.CHECK,
                    "18:00",
                    "Check drainage and clear standing water around the plants",
                    f"Heavy rain expected ({weather.forecast.rain_mm:.0f}mm)",
                    category=ActionCategory.MONITORING,
                )
            )
        if weather.temperature is TemperatureLevel.COLD:
            checks.append(
                self._action(
                    ActionType.CHECK,
                    "18:00",
                    "Check that young plants are covered for the night",
                    f"Cold day (max {weather.forecast.temp_max:.0f}°C)",
                    category=ActionCategory.MONITORING,
                )
            )
        return checks

    def _treatments(self, index: int, context: PlanContext) -> list[Action]:
        due = [ctx for ctx in context.treating if index in ctx.policy.treatment_days]
        if not due:
            return []
        slots = max(ctx.policy.applications_per_day for ctx in due)
        actions = []
        for slot, time in enumerate(APPLICATION_TIMES[:slots]):
            covered = [ctx for ctx in due if ctx.policy.applications_per_day > slot]
            tiers = ", ".join(f"{ctx.disease.name} ({ctx.policy.tier})" for ctx in covered)
            actions.append(build_treatment_action(self._ids, covered, time, reason=f"Severity tier: {tiers}"))
        return actions

    def _disease_checks(self, index: int, context: PlanContext) -> list[Action]:
        recurring = [
            ctx.disease.name
            for ctx in context.diseases
            if ctx.policy.tier is SeverityTier.ALMOST_RESOLVED and index in RECURRENCE_CHECK_DAYS
        ]
        responding = [
            ctx.disease.name for ctx in context.treating if index == RESPONSE_CHECK_DAY
        ]
        checks = []
        if recurring:
            checks.append(
                self._action(
                    ActionType.CHECK,
                    "09:00",
                    f"Inspect the plants for signs of {', '.join(recurring)} returning",
                    "Disease almost resolved; watch for recurrence",
                    category=ActionCategory.MONITORING,
                )
            )
        if responding:
            checks.append(
                self._action(
                    ActionType.CHECK,
                    "09:00",
                    f"Assess how {', '.join(responding)} responded to treatment",
                    "Follow-up after the treatment days",
                    category=ActionCategory.MONITORING,
                )
            )
        return checks

    def _action(
        self,
        action_type: ActionType,
        time: str,
        description: str,
        reason: str,
        category: ActionCategory,
    ) -> Action:
        return Action(
            id=self._ids.new_id("act"),
            type=action_type,
            time=time,
            description=description,
            reason=reason,
            category=category,
        )

    @staticmethod
    def _summary(context: PlanContext) -> str:
        parts = [f"Automatic 7-day care plan for {context.plant.name or context.plant.crop_name}."]
        if context.diseases:
            tiers = ", ".join(f"{ctx.disease.name}: {ctx.policy.tier}" for ctx in context.diseases)
            parts.append(f"Disease status: {tiers}.")
        rainy = sum(1 for day in context.weather if day.forecast.rain_mm >= RAIN_SKIP_MM)
        if rainy:
            parts.append(f"Watering skipped on {rainy} rainy day(s).")
        return " ".join(parts)
