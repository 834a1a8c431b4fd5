"""
Plan Prompt Builder
===================
Assembles the generation context for a 7-day care plan: classified
weather, active diseases with their severity tier and treatment
candidates, and plant attributes.

The same :class:`PlanContext` feeds both the text generator (via
:meth:`PlanPromptBuilder.build_prompt`) and the rule-based fallback, so
both paths see identical inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.domain.care_plan import PLAN_DAYS, DiseaseRecord, PlantRecord
from app.domain.disease_severity import TierPolicy, policy_for_score
from app.domain.exceptions import RepositoryError, ValidationError
from app.domain.weather import ClassifiedWeather, ForecastDay, classify_forecast

if TYPE_CHECKING:
    from app.services.protocols import TreatmentCatalogClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an agronomist who writes concrete, weather-aware care plans for "
    "smallholder crops. You always answer with a single JSON object and nothing else."
)


@dataclass
class DiseaseContext:
    """An active disease with its treatment intensity and candidate treatments."""

    disease: DiseaseRecord
    policy: TierPolicy
    treatments: list[dict[str, Any]] = field(default_factory=list)

    @property
    def chemical_names(self) -> list[str]:
        return self._names("chemical")

    @property
    def biological_names(self) -> list[str]:
        return self._names("biological")

    def _names(self, kind: str) -> list[str]:
        for group in self.treatments:
            if group.get("kind") == kind:
                return [item.get("name", "") for item in group.get("items", []) if item.get("name")]
        return []

    def preferred_products(self, limit: int = 2) -> list[str]:
        """Chemical products first (user selection already applied), then biological methods."""
        return (self.chemical_names or self.biological_names)[:limit]


@dataclass
class PlanContext:
    plant: PlantRecord
    weather: list[ClassifiedWeather]
    diseases: list[DiseaseContext] = field(default_factory=list)

    @property
    def has_active_disease(self) -> bool:
        return bool(self.diseases)

    @property
    def treating(self) -> list[DiseaseContext]:
        """Diseases whose tier demands treatment actions."""
        return [ctx for ctx in self.diseases if ctx.policy.requires_treatment]

    @property
    def treatment_window(self) -> int:
        """Days from the start of the plan in which a treatment action must appear."""
        return min(4, max((ctx.policy.window for ctx in self.treating), default=0))


class PlanPromptBuilder:
    """Builds :class:`PlanContext` objects and the generation request text."""

    def __init__(self, treatments: "TreatmentCatalogClient") -> None:
        self._treatments = treatments

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def build_context(self, plant: PlantRecord, forecast: list[ForecastDay]) -> PlanContext:
        if len(forecast) != PLAN_DAYS:
            raise ValidationError(f"Plan context needs {PLAN_DAYS} forecast days, got {len(forecast)}")
        diseases = [
            DiseaseContext(
                disease=disease,
                policy=policy_for_score(disease.severity_score),
                treatments=self.treatment_candidates(disease, plant.crop_name),
            )
            for disease in plant.active_diseases()
        ]
        return PlanContext(plant=plant, weather=classify_forecast(forecast), diseases=diseases)

    def treatment_candidates(self, disease: DiseaseRecord, crop_name: str) -> list[dict[str, Any]]:
        """
        Catalog treatments for one disease. A user selection replaces the
        chemical group; biological and cultural groups always come from the
        catalog. Catalog failures degrade to "no candidates".
        """
        try:
            groups = self._treatments.lookup(disease.name, crop_name)
        except RepositoryError as exc:
            logger.warning("Treatment lookup failed for %s: %s", disease.name, exc)
            groups = []

        selected = disease.selected_treatments.chemical if disease.selected_treatments else []
        if not selected:
            return groups

        try:
            known = {item["name"].lower(): item for item in self._treatments.find_products(selected)}
        except RepositoryError as exc:
            logger.warning("Selected product lookup failed for %s: %s", disease.name, exc)
            known = {}
        chemical_items = [
            known.get(name.lower()) or {"name": name, "target_diseases": [disease.name], "target_crops": [crop_name]}
            for name in selected
        ]
        layered = [{"kind": "chemical", "items": chemical_items, "selected": True}]
        layered.extend(group for group in groups if group.get("kind") in ("biological", "cultural"))
        return layered

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    def build_prompt(self, context: PlanContext) -> tuple[str, str]:
        """Return ``(system_prompt, user_prompt)``."""
        sections = [
            self._plant_section(context.plant),
            self._weather_section(context.weather),
        ]
        if context.diseases:
            sections.append(self._disease_section(context.diseases))
        sections.append(self._format_section(context))
        return SYSTEM_PROMPT, "\n\n".join(sections)

    @staticmethod
    def _plant_section(plant: PlantRecord) -> str:
        loc = plant.location
        lines = [
            "PLANT:",
            f"- Crop: {plant.crop_name}",
            f"- Name: {plant.name}",
            f"- Growth stage: {plant.growth_stage}",
            f"- Current health: {plant.current_health}",
            f"- Number of plants: {plant.quantity}",
            f"- Location: {loc.name or 'unspecified'}",
            f"- Sunlight: {loc.sunlight}",
        ]
        if plant.planting_date:
            lines.append(f"- Planted on: {plant.planting_date.isoformat()}")
        if loc.area:
            lines.append(f"- Area: {loc.area} m2")
        if loc.soil_types:
            lines.append(f"- Soil: {', '.join(loc.soil_types)}")
        return "\n".join(lines)

    @staticmethod
    def _weather_section(weather: list[ClassifiedWeather]) -> str:
        lines = ["WEATHER, NEXT 7 DAYS (already analysed, do not re-derive the levels):"]
        for index, day in enumerate(weather, start=1):
            fc = day.forecast
            lines.append(
                f"Day {index} ({fc.date.isoformat()}): "
                f"{fc.temp_min:.0f}-{fc.temp_max:.0f}°C ({day.temperature}), "
                f"humidity {fc.humidity:.0f}% ({day.humidity}), "
                f"rain {fc.rain_mm:.1f}mm ({day.rain}); "
                f"watering need: {day.watering_need} ({day.watering_reason})"
            )
            for alert in day.alerts:
                lines.append(f"  ! {alert}")
        return "\n".join(lines)

    @staticmethod
    def _disease_section(diseases: list[DiseaseContext]) -> str:
        lines = ["ACTIVE DISEASES AND REQUIRED TREATMENT INTENSITY:"]
        for ctx in diseases:
            disease = ctx.disease
            lines.append(
                f'- "{disease.name}" severity {disease.severity_score}/10 '
                f"(tier: {ctx.policy.tier}, status: {disease.status})"
            )
            if disease.symptoms:
                lines.append(f"  Symptoms: {disease.symptoms}")
            lines.append(f"  Guidance: {ctx.policy.guidance}")
            for group in ctx.treatments:
                names = [item.get("name", "") for item in group.get("items", [])][:3]
                if not names:
                    continue
                label = group["kind"]
                if group.get("selected"):
                    label += " (chosen by the grower, use these)"
                lines.append(f"  {label}: {', '.join(names)}")
                if group["kind"] == "chemical":
                    for item in group["items"][:2]:
                        if item.get("dosage"):
                            lines.append(f"    {item['name']} dosage: {item['dosage']}")
        lines.append(
            "Treatment actions MUST use type \"protect\" and category \"treatment\". "
            "Follow each tier's day pattern exactly."
        )
        return "\n".join(lines)

    @staticmethod
    def _format_section(context: PlanContext) -> str:
        first = context.weather[0].forecast.date.isoformat()
        return (
            "OUTPUT FORMAT, a single JSON object:\n"
            "{\n"
            '  "next7Days": [\n'
            "    {\n"
            f'      "date": "{first}",\n'
            '      "actions": [\n'
            "        {\n"
            '          "type": "water | fertilize | prune | check | protect",\n'
            '          "category": "treatment | monitoring | care",\n'
            '          "time": "HH:MM",\n'
            '          "description": "Concrete action with amounts, e.g. Water 500ml per plant",\n'
            '          "reason": "Why, based on the weather or disease above",\n'
            '          "products": ["product names used, if any"]\n'
            "        }\n"
            "      ]\n"
            "    }\n"
            "  ],\n"
            '  "summary": "Two or three sentences summarising the week"\n'
            "}\n"
            "RULES:\n"
            "- Exactly 7 entries in next7Days, one per forecast day, in order.\n"
            "- Do NOT include weather in the output; it is filled in from the forecast.\n"
            "- Watering is optional on 'normal' days; never water when rain is expected.\n"
            "- Valid JSON only: no markdown, no comments, no trailing commas."
        )
