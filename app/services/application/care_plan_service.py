"""
Care Plan Service
=================

Application-level operations on plants, their diseases and their 7-day
care plans:

- ``refresh_plan``: fetch forecast, synthesize, write the plan back
- ``submit_disease_feedback``: advance the severity state machine
- ``analyze_action``: cached per-action guidance
- ``toggle_action``: mark an action done / not done
- plant and disease lifecycle (create, delete, treatment selection)

Actions are addressed by their stable id within a day, never by list
position, so field-level edits cannot land on the wrong action after a
concurrent regeneration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from app.domain.care_plan import (
    Action,
    CarePlan,
    DiseaseRecord,
    PlantRecord,
    SelectedTreatments,
    TaskAnalysis,
    validate_day_index,
)
from app.domain.disease_severity import apply_feedback, initial_score, status_for_new_score
from app.domain.exceptions import (
    CarePlanError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.domain.weather import classify_day
from app.enums.care import ActionType, NotificationEventType, SeverityHint
from app.services.ai.rule_based_planner import weather_snapshot
from app.utils.ids import IdGenerator
from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.domain.care_plan import DayPlan, WeatherSnapshot
    from app.services.ai.plan_prompt_builder import PlanPromptBuilder
    from app.services.ai.plan_synthesis import PlanSynthesisOrchestrator
    from app.services.ai.task_analysis import TaskAnalysisService
    from app.services.protocols import ForecastProvider, Notifier
    from infrastructure.database.repositories.plants import PlantRepository
    from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class FeedbackResult:
    disease: DiseaseRecord
    should_regenerate_plan: bool
    plan_refreshed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "disease": self.disease.to_dict(),
            "should_regenerate_plan": self.should_regenerate_plan,
            "plan_refreshed": self.plan_refreshed,
        }


def preserve_completion(previous: CarePlan | None, plan: CarePlan) -> int:
    """
    Carry ids and completion flags over from *previous* for actions that
    keep the same date, type and time. Returns how many were carried.
    """
    if previous is None:
        return 0
    carried: dict[tuple, Action] = {}
    for _, day, action in previous.iter_actions():
        carried.setdefault((day.date, action.type, action.time), action)

    count = 0
    for _, day, action in plan.iter_actions():
        old = carried.pop((day.date, action.type, action.time), None)
        if old is None:
            continue
        action.id = old.id
        action.completed = old.completed
        action.completed_at = old.completed_at
        count += 1
    return count


class CarePlanService:
    """Plant, disease and care plan operations."""

    def __init__(
        self,
        plants: "PlantRepository",
        forecast: "ForecastProvider",
        prompt_builder: "PlanPromptBuilder",
        synthesizer: "PlanSynthesisOrchestrator",
        task_analysis: "TaskAnalysisService",
        *,
        ids: IdGenerator | None = None,
        notifier: "Notifier | None" = None,
        audit_logger: "AuditLogger | None" = None,
        auto_refresh_on_resolve: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._plants = plants
        self._forecast = forecast
        self._prompt_builder = prompt_builder
        self._synthesizer = synthesizer
        self._task_analysis = task_analysis
        self._ids = ids or IdGenerator()
        self._notifier = notifier
        self._audit = audit_logger
        self._auto_refresh = auto_refresh_on_resolve
        self._clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_plant(self, plant_id: str) -> PlantRecord:
        plant = self._plants.get(plant_id)
        if plant is None or not plant.is_active:
            raise NotFoundError(f"Plant {plant_id} not found", detail={"plant_id": plant_id})
        return plant

    @staticmethod
    def _day(plant: PlantRecord, day_index: int) -> "DayPlan":
        validate_day_index(day_index)
        if plant.care_plan is None:
            raise NotFoundError(f"Plant {plant.id} has no care plan", detail={"plant_id": plant.id})
        return plant.care_plan.day(day_index)

    @classmethod
    def _action(cls, plant: PlantRecord, day_index: int, action_id: str) -> Action:
        action = cls._day(plant, day_index).find_action(action_id)
        if action is None:
            raise NotFoundError(
                "Action not found",
                detail={"plant_id": plant.id, "day_index": day_index, "action_id": action_id},
            )
        return action

    @staticmethod
    def _disease(plant: PlantRecord, disease_id: str) -> DiseaseRecord:
        disease = plant.find_disease(disease_id)
        if disease is None:
            raise NotFoundError(
                "Disease not found",
                detail={"plant_id": plant.id, "disease_id": disease_id},
            )
        return disease

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def refresh_plan(self, plant_id: str, *, notify: bool = False) -> CarePlan:
        """
        Regenerate the plant's 7-day plan.

        Raises:
            NotFoundError: unknown or inactive plant.
            ValidationError: the plant has no coordinates.
            UpstreamUnavailableError: the forecast could not be fetched.
        """
        plant = self.get_plant(plant_id)
        if not plant.location.has_coordinates:
            raise ValidationError(
                "Plant location has no coordinates; cannot fetch a forecast",
                detail={"plant_id": plant_id},
            )

        forecast = self._forecast.fetch_forecast(plant.location.lat, plant.location.lon)
        context = self._prompt_builder.build_context(plant, forecast)
        plan = self._synthesizer.synthesize(context, self._clock())

        def _replace(record: PlantRecord) -> None:
            carried = preserve_completion(record.care_plan, plan)
            if carried:
                logger.debug("Carried %d action(s) into the new plan for %s", carried, plant_id)
            record.care_plan = plan

        record = self._plants.update(plant_id, _replace)
        logger.info("Refreshed care plan for plant %s (source=%s)", plant_id, plan.source)
        if notify:
            self._emit(
                record,
                {
                    "type": str(NotificationEventType.PLAN_REFRESHED),
                    "plant_id": record.id,
                    "plant_name": record.name,
                    "summary": plan.summary,
                },
            )
        return record.care_plan  # type: ignore[return-value]

    def toggle_action(self, plant_id: str, day_index: int, action_id: str, completed: bool) -> CarePlan:
        validate_day_index(day_index)
        now = self._clock()

        def _toggle(record: PlantRecord) -> None:
            action = self._action(record, day_index, action_id)
            action.completed = bool(completed)
            action.completed_at = now if completed else None

        record = self._plants.update(plant_id, _toggle)
        return record.care_plan  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Task analysis
    # ------------------------------------------------------------------

    def analyze_action(self, plant_id: str, day_index: int, action_id: str, *, force: bool = False) -> TaskAnalysis:
        """
        Guidance for one action, served from the action's cache when fresh.

        A recomputation re-checks the day's weather for ``force`` requests
        and protect actions; a failed lookup reuses the stored forecast.
        Fallback guidance is cached like generated guidance, so a failing
        generator is retried once per cache window and not on every view.
        """
        plant = self.get_plant(plant_id)
        day = self._day(plant, day_index)
        action = self._action(plant, day_index, action_id)
        now = self._clock()

        def _refresh(stored: "WeatherSnapshot") -> "WeatherSnapshot":
            return self._current_weather(plant, day.date, stored)

        refresh = _refresh if force or action.type is ActionType.PROTECT else None
        analysis, hit = self._task_analysis.get_or_analyze(
            plant, action, day.weather, now, force=force, refresh_weather=refresh
        )
        if hit:
            return analysis

        def _attach(record: PlantRecord) -> None:
            if record.care_plan is None:
                return
            target = record.care_plan.day(day_index).find_action(action_id)
            if target is not None:
                target.task_analysis = analysis

        self._plants.update(plant_id, _attach)
        return analysis

    def _current_weather(self, plant: PlantRecord, day_date, stored: "WeatherSnapshot") -> "WeatherSnapshot":
        if not plant.location.has_coordinates:
            return stored
        try:
            forecast = self._forecast.fetch_forecast(plant.location.lat, plant.location.lon)
        except UpstreamUnavailableError as exc:
            logger.warning("Weather refresh for plant %s failed, using stored forecast: %s", plant.id, exc)
            return stored
        for entry in forecast:
            if entry.date == day_date:
                return weather_snapshot(classify_day(entry))
        return stored

    # ------------------------------------------------------------------
    # Diseases
    # ------------------------------------------------------------------

    def submit_disease_feedback(
        self,
        plant_id: str,
        disease_id: str,
        status: str,
        notes: str = "",
    ) -> FeedbackResult:
        now = self._clock()
        outcome_holder: dict[str, Any] = {}

        def _apply(record: PlantRecord) -> None:
            disease = self._disease(record, disease_id)
            outcome_holder["outcome"] = apply_feedback(disease, status, now=now, notes=notes)
            invalidated = self._invalidate_protect_analyses(record)
            if invalidated:
                logger.debug("Invalidated %d protect analyses on plant %s", invalidated, record.id)

        self._plants.update(plant_id, _apply)
        outcome = outcome_holder["outcome"]

        if self._audit:
            self._audit.log_event(
                actor="user",
                action="disease_feedback",
                resource=f"plant:{plant_id}/disease:{disease_id}",
                outcome="success",
                feedback=str(status),
                score_before=outcome.previous_score,
                score_after=outcome.disease.severity_score,
                status_after=str(outcome.disease.status),
            )

        result = FeedbackResult(disease=outcome.disease, should_regenerate_plan=outcome.should_regenerate_plan)
        if outcome.should_regenerate_plan and self._auto_refresh:
            try:
                self.refresh_plan(plant_id)
                result.plan_refreshed = True
            except CarePlanError as exc:
                logger.warning("Automatic refresh after resolution failed for %s: %s", plant_id, exc)
        return result

    @staticmethod
    def _invalidate_protect_analyses(record: PlantRecord) -> int:
        if record.care_plan is None:
            return 0
        count = 0
        for _, _, action in record.care_plan.iter_actions():
            if action.type is ActionType.PROTECT and action.task_analysis is not None:
                action.task_analysis = None
                count += 1
        return count

    def add_disease(
        self,
        plant_id: str,
        name: str,
        *,
        symptoms: str = "",
        severity_hint: SeverityHint | str | None = None,
        source: str = "user",
    ) -> DiseaseRecord:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Disease name is required")
        score = initial_score(severity_hint)
        disease = DiseaseRecord(
            id=self._ids.new_id("dis"),
            name=name,
            severity_score=score,
            status=status_for_new_score(score),
            symptoms=symptoms or "",
            severity_hint=SeverityHint(severity_hint) if severity_hint else None,
            reported_at=self._clock(),
            source=source,
        )
        self._plants.update(plant_id, lambda record: record.diseases.append(disease))
        logger.info("Added disease %s (%s, score %d) to plant %s", disease.id, name, score, plant_id)
        return disease

    def delete_disease(self, plant_id: str, disease_id: str) -> None:
        def _remove(record: PlantRecord) -> None:
            disease = self._disease(record, disease_id)
            record.diseases.remove(disease)

        self._plants.update(plant_id, _remove)

    def update_disease_treatments(self, plant_id: str, disease_id: str, chemical: list[str]) -> DiseaseRecord:
        """Store the user's chemical product selection (empty clears it)."""
        names = [item.strip() for item in chemical or [] if isinstance(item, str) and item.strip()]
        now = self._clock()
        holder: dict[str, DiseaseRecord] = {}

        def _select(record: PlantRecord) -> None:
            disease = self._disease(record, disease_id)
            disease.selected_treatments = SelectedTreatments(chemical=names, updated_at=now) if names else None
            holder["disease"] = disease

        self._plants.update(plant_id, _select)
        return holder["disease"]

    # ------------------------------------------------------------------
    # Plants
    # ------------------------------------------------------------------

    def create_plant(self, user_id: str, data: dict[str, Any], *, generate_plan: bool = True) -> PlantRecord:
        """
        Create a plant from a payload dict. When the location has
        coordinates an initial plan is generated; a failure there is
        logged and the plant is still created.
        """
        payload = dict(data or {})
        payload.update({"id": self._ids.new_id("plant"), "user_id": user_id, "care_plan": None, "is_active": True})
        if not (payload.get("crop_name") or "").strip():
            raise ValidationError("crop_name is required")
        hints = payload.pop("diseases", None) or []
        for item in hints:
            if not isinstance(item, dict) or not (item.get("name") or "").strip():
                raise ValidationError("Each reported disease needs a name")
            initial_score(item.get("severity"))
        try:
            plant = PlantRecord.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid plant payload: {exc}") from exc

        self._plants.put(plant)
        for item in hints:
            self.add_disease(
                plant.id,
                item.get("name", ""),
                symptoms=item.get("symptoms", ""),
                severity_hint=item.get("severity"),
            )

        if generate_plan and plant.location.has_coordinates:
            try:
                self.refresh_plan(plant.id)
            except CarePlanError as exc:
                logger.warning("Initial plan for plant %s failed: %s", plant.id, exc)
        return self.get_plant(plant.id)

    def soft_delete_plant(self, plant_id: str) -> None:
        self._plants.soft_delete(plant_id)
        logger.info("Deactivated plant %s", plant_id)

    # ------------------------------------------------------------------

    def _emit(self, plant: PlantRecord, event: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(plant.user_id, event)
        except Exception as exc:
            logger.warning("Notification %s for plant %s failed: %s", event.get("type"), plant.id, exc)
