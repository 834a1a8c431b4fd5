"""
Task Analysis Service
=====================
Detailed execution guidance for a single plan action: steps, materials,
precautions, tips and duration from the text generator, plus a
deterministic dosage calculation scaled to the planting.

Results are cached on the action for :data:`CACHE_TTL`; persistence of
the cached value is the caller's job. Generation failures never
propagate: a minimal fixed analysis is returned instead.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError as PydanticValidationError

from app.domain.care_plan import Action, DosageCalculation, PlantRecord, TaskAnalysis, WeatherSnapshot
from app.domain.exceptions import GenerationMalformedError, RepositoryError, UpstreamUnavailableError
from app.enums.care import ActionType
from app.schemas.care_plan import GeneratedTaskAnalysis
from app.services.ai.llm_backends import LLMBackend
from app.utils.concurrency import call_with_timeout
from app.utils.llm_json import extract_json

if TYPE_CHECKING:
    from app.services.protocols import TreatmentCatalogClient

logger = logging.getLogger(__name__)

CACHE_TTL = timedelta(hours=24)
PURCHASE_RESERVE = 1.15
FALLBACK_DURATION = "30-60 minutes"

# Dosage adjustment per soil type; unknown soils count as 1.0
SOIL_MULTIPLIERS: dict[str, float] = {
    "sandy": 1.125,
    "clay": 0.875,
    "loam": 1.0,
    "alluvial": 1.0,
}
_SOIL_ALIASES = {
    "sand": "sandy",
    "đất cát": "sandy",
    "đất sét": "clay",
    "đất thịt": "loam",
    "phù sa": "alluvial",
}

_DOSAGE_RE = re.compile(
    r"(?P<amount>\d+(?:[.,]\d+)?)\s*(?P<unit>kg|g|gr|gram|ml|cc|l|lít|lit)\b\s*/\s*"
    r"(?P<water>\d+(?:[.,]\d+)?)?\s*(?P<water_unit>ml|l|lít|lit|liter|litre)\b",
    re.IGNORECASE,
)
_UNIT_NAMES = {"gr": "g", "gram": "g", "cc": "ml", "lít": "l", "lit": "l"}

SYSTEM_PROMPT = (
    "You are a hands-on agricultural extension officer. Explain exactly how to carry out "
    "one farm task. Answer with a single JSON object and nothing else."
)


def soil_multiplier(soil_types: list[str]) -> float:
    """Average multiplier over the listed soil types (1.0 when none are known)."""
    values = []
    for raw in soil_types:
        key = raw.strip().lower()
        key = _SOIL_ALIASES.get(key, key)
        if key not in SOIL_MULTIPLIERS:
            for alias, canonical in _SOIL_ALIASES.items():
                if alias in key:
                    key = canonical
                    break
        values.append(SOIL_MULTIPLIERS.get(key, 1.0))
    if not values:
        return 1.0
    return round(sum(values) / len(values), 4)


def parse_dosage(text: str | None) -> tuple[float, str, float | None] | None:
    """
    Parse strings such as ``"20g/10L"`` or ``"15 ml / 16 lít"``.

    Returns ``(amount, unit, water_litres)`` or ``None`` when unparsable.
    """
    if not text:
        return None
    match = _DOSAGE_RE.search(text)
    if not match:
        return None
    amount = float(match.group("amount").replace(",", "."))
    unit = match.group("unit").lower()
    unit = _UNIT_NAMES.get(unit, unit)
    water = float(match.group("water").replace(",", ".")) if match.group("water") else 1.0
    if match.group("water_unit").lower() == "ml":
        water = water / 1000
    return amount, unit, water


def calculate_dosage(
    product: str,
    dosage: str,
    quantity: int,
    soil_types: list[str],
) -> DosageCalculation | None:
    parsed = parse_dosage(dosage)
    if parsed is None:
        return None
    amount, unit, water = parsed
    multiplier = soil_multiplier(soil_types)
    total = round(amount * quantity * multiplier, 2)
    total_water = round(water * quantity, 2) if water is not None else None
    notes = ""
    if multiplier != 1.0:
        notes = f"Adjusted x{multiplier} for soil: {', '.join(soil_types)}"
    return DosageCalculation(
        product=product,
        base_dosage=dosage,
        amount_per_unit=amount,
        unit=unit,
        water_per_unit_l=water,
        quantity=quantity,
        soil_multiplier=multiplier,
        total_amount=total,
        total_water_l=total_water,
        purchase_amount=round(total * PURCHASE_RESERVE, 2),
        notes=notes,
    )


class TaskAnalysisService:
    """Computes and caches :class:`TaskAnalysis` for plan actions."""

    def __init__(
        self,
        backend: LLMBackend | None,
        treatments: "TreatmentCatalogClient",
        *,
        timeout: float = 20.0,
        max_tokens: int = 1500,
        temperature: float = 0.3,
        cache_ttl: timedelta = CACHE_TTL,
    ) -> None:
        self._backend = backend
        self._treatments = treatments
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._cache_ttl = cache_ttl

    def is_fresh(self, analysis: TaskAnalysis | None, now: datetime) -> bool:
        return analysis is not None and now - analysis.analyzed_at < self._cache_ttl

    def get_or_analyze(
        self,
        plant: PlantRecord,
        action: Action,
        weather: WeatherSnapshot,
        now: datetime,
        *,
        force: bool = False,
        refresh_weather: Callable[[WeatherSnapshot], WeatherSnapshot] | None = None,
    ) -> tuple[TaskAnalysis, bool]:
        """
        Return ``(analysis, cache_hit)``.

        ``refresh_weather`` maps the stored weather to a current reading and
        is only called when the analysis is recomputed.
        """
        if not force and self.is_fresh(action.task_analysis, now):
            logger.debug("Task analysis cache hit for action %s", action.id)
            return action.task_analysis, True  # type: ignore[return-value]
        if refresh_weather is not None:
            weather = refresh_weather(weather)
        return self.analyze(plant, action, weather, now), False

    def analyze(self, plant: PlantRecord, action: Action, weather: WeatherSnapshot, now: datetime) -> TaskAnalysis:
        catalog = self._catalog_entries(plant, action)
        dosage = self._dosage(plant, catalog)
        details = self._product_details(catalog) if action.type is ActionType.PROTECT else []

        try:
            generated = self._generate(plant, action, weather, catalog)
        except (UpstreamUnavailableError, GenerationMalformedError) as exc:
            logger.warning("Task analysis for action %s fell back: %s", action.id, exc)
            return self.fallback(action, now, dosage=dosage, product_details=details)

        return TaskAnalysis(
            steps=generated.steps,
            materials=generated.materials or list(action.products),
            precautions=generated.precautions,
            tips=generated.tips,
            duration=generated.duration or FALLBACK_DURATION,
            analyzed_at=now,
            dosage_calculation=dosage,
            product_details=details,
            source="llm",
        )

    @staticmethod
    def fallback(
        action: Action,
        now: datetime,
        *,
        dosage: DosageCalculation | None = None,
        product_details: list[dict[str, Any]] | None = None,
    ) -> TaskAnalysis:
        return TaskAnalysis(
            steps=[
                "Prepare the tools and materials listed below",
                f"Carry out the task: {action.description}",
                "Check the plants afterwards and note anything unusual",
            ],
            materials=list(action.products),
            precautions=["Follow the product label instructions", "Wear gloves when handling any product"],
            tips=[f"Do the task around {action.time} as scheduled"],
            duration=FALLBACK_DURATION,
            analyzed_at=now,
            dosage_calculation=dosage,
            product_details=product_details or [],
            source="fallback",
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _generate(
        self,
        plant: PlantRecord,
        action: Action,
        weather: WeatherSnapshot,
        catalog: list[dict[str, Any]],
    ) -> GeneratedTaskAnalysis:
        if self._backend is None or not self._backend.is_available:
            raise UpstreamUnavailableError("No text generator configured")
        try:
            response = call_with_timeout(
                self._backend.generate,
                SYSTEM_PROMPT,
                self.build_prompt(plant, action, weather, catalog),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                json_mode=True,
                timeout=self._timeout,
                label="task analysis",
            )
        except UpstreamUnavailableError:
            raise
        except Exception as exc:
            raise UpstreamUnavailableError(f"task analysis failed: {exc}") from exc

        data = extract_json(response.text)
        if not isinstance(data, dict):
            raise GenerationMalformedError("Task analysis output is not a JSON object")
        try:
            return GeneratedTaskAnalysis.model_validate(data)
        except PydanticValidationError as exc:
            raise GenerationMalformedError(f"Task analysis failed validation: {exc.error_count()} error(s)") from exc

    @staticmethod
    def build_prompt(
        plant: PlantRecord,
        action: Action,
        weather: WeatherSnapshot,
        catalog: list[dict[str, Any]],
    ) -> str:
        loc = plant.location
        lines = [
            "TASK:",
            f"- Type: {action.type}",
            f"- Time: {action.time}",
            f"- Description: {action.description}",
        ]
        if action.reason:
            lines.append(f"- Reason: {action.reason}")
        if action.products:
            lines.append(f"- Products: {', '.join(action.products)}")
        lines += [
            "",
            "WEATHER THAT DAY:",
            f"- {weather.temp_min:.0f}-{weather.temp_max:.0f}°C, humidity {weather.humidity:.0f}%, "
            f"rain {weather.rain_mm:.1f}mm",
            "",
            "PLANTING:",
            f"- Crop: {plant.crop_name} ({plant.growth_stage})",
            f"- Number of plants: {plant.quantity}",
        ]
        if loc.area:
            lines.append(f"- Area: {loc.area} m2")
        if loc.soil_types:
            lines.append(f"- Soil: {', '.join(loc.soil_types)}")
        if catalog:
            lines += ["", "PRODUCT INFORMATION:"]
            for item in catalog[:3]:
                line = f"- {item.get('name')}"
                if item.get("dosage"):
                    line += f", dosage {item['dosage']}"
                if item.get("usage"):
                    line += f", usage: {item['usage']}"
                lines.append(line)
        lines += [
            "",
            "Answer with this JSON object:",
            '{"detailedSteps": ["step 1", "step 2"], "materials": ["..."], '
            '"precautions": ["..."], "tips": ["..."], "estimatedDuration": "e.g. 30 minutes"}',
            "Scale every quantity to the number of plants above. Valid JSON only.",
        ]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Catalog helpers
    # ------------------------------------------------------------------

    def _catalog_entries(self, plant: PlantRecord, action: Action) -> list[dict[str, Any]]:
        try:
            if action.products:
                found = self._treatments.find_products(action.products)
                if found:
                    return found
            if action.type is not ActionType.PROTECT:
                return []
            entries: list[dict[str, Any]] = []
            for disease in plant.active_diseases():
                for group in self._treatments.lookup(disease.name, plant.crop_name):
                    if group.get("kind") == "chemical":
                        entries.extend(group.get("items", [])[:2])
            return entries
        except RepositoryError as exc:
            logger.warning("Catalog lookup for action %s failed: %s", action.id, exc)
            return []

    @staticmethod
    def _dosage(plant: PlantRecord, catalog: list[dict[str, Any]]) -> DosageCalculation | None:
        for item in catalog:
            calculation = calculate_dosage(
                item.get("name", ""),
                item.get("dosage") or "",
                plant.quantity,
                plant.location.soil_types,
            )
            if calculation is not None:
                return calculation
        return None

    @staticmethod
    def _product_details(catalog: list[dict[str, Any]]) -> list[dict[str, Any]]:
        seen: set[str] = set()
        details = []
        for item in catalog:
            name = item.get("name")
            if not name or name in seen:
                continue
            seen.add(name)
            details.append(
                {
                    "name": name,
                    "target_diseases": list(item.get("target_diseases") or []),
                    "target_crops": list(item.get("target_crops") or []),
                }
            )
        return details
