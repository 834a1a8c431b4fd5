"""
Plan Synthesis Orchestrator
===========================
Turns a :class:`PlanContext` into a persisted-ready :class:`CarePlan`.

Pipeline::

    build prompt -> generate (bounded) -> repair JSON -> validate shape
        -> pad/truncate to 7 days -> treatment safety net -> real weather

Any failure along the way (no backend, timeout, SDK error, unparsable or
structurally invalid output) routes to :class:`RuleBasedPlanGenerator`.
The caller always receives a plan.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.domain.care_plan import PLAN_DAYS, Action, CarePlan, DayPlan
from app.domain.exceptions import GenerationMalformedError, UpstreamUnavailableError
from app.enums.care import ActionCategory, ActionType
from app.schemas.care_plan import GeneratedAction, GeneratedDay, GeneratedPlan
from app.services.ai.llm_backends import LLMBackend
from app.services.ai.plan_prompt_builder import PlanContext, PlanPromptBuilder
from app.services.ai.rule_based_planner import RuleBasedPlanGenerator, build_treatment_action, weather_snapshot
from app.utils.concurrency import call_with_timeout
from app.utils.ids import IdGenerator
from app.utils.llm_json import extract_json

logger = logging.getLogger(__name__)

# Used only when an action arrives without a category tag.
_TREATMENT_WORDS = (
    "spray",
    "treat",
    "fungicide",
    "pesticide",
    "insecticide",
    "bactericide",
    "apply",
    "phun",
    "thuốc",
    "trị",
)
_MONITORING_WORDS = ("check", "inspect", "monitor", "observe", "kiểm tra", "theo dõi")

SAFETY_NET_MAX_DAYS = 3


def infer_category(action_type: ActionType, description: str, products: list[str]) -> ActionCategory:
    """Keyword fallback for untagged actions."""
    text = description.lower()
    if action_type is ActionType.CHECK:
        return ActionCategory.MONITORING
    if action_type is ActionType.PROTECT:
        if products or any(word in text for word in _TREATMENT_WORDS):
            return ActionCategory.TREATMENT
        if any(word in text for word in _MONITORING_WORDS):
            return ActionCategory.MONITORING
        return ActionCategory.TREATMENT
    return ActionCategory.CARE


def is_treatment_action(action: Action) -> bool:
    return action.type is ActionType.PROTECT and action.category is ActionCategory.TREATMENT


class PlanSynthesisOrchestrator:
    """Generates care plans through a text generator with a deterministic fallback."""

    def __init__(
        self,
        backend: LLMBackend | None,
        prompt_builder: PlanPromptBuilder,
        fallback: RuleBasedPlanGenerator | None = None,
        ids: IdGenerator | None = None,
        *,
        timeout: float = 45.0,
        max_tokens: int = 4096,
        temperature: float = 0.4,
    ) -> None:
        self._backend = backend
        self._prompt_builder = prompt_builder
        self._ids = ids or IdGenerator()
        self._fallback = fallback or RuleBasedPlanGenerator(self._ids)
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def backend_name(self) -> str:
        return self._backend.name if self._backend is not None else "none"

    def synthesize(self, context: PlanContext, now: datetime) -> CarePlan:
        """Return a 7-day plan for *context*. Never raises for generation problems."""
        if self._backend is None or not self._backend.is_available:
            logger.info("No text generator available, using rule-based plan for %s", context.plant.id)
            return self._fallback.generate(context, now)

        system_prompt, user_prompt = self._prompt_builder.build_prompt(context)
        try:
            response = call_with_timeout(
                self._backend.generate,
                system_prompt,
                user_prompt,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                json_mode=True,
                timeout=self._timeout,
                label="plan generation",
            )
            plan = self.assemble(response.text, context, now)
        except (UpstreamUnavailableError, GenerationMalformedError) as exc:
            logger.warning("Plan generation failed for %s, falling back: %s", context.plant.id, exc)
            return self._fallback.generate(context, now)
        except Exception as exc:
            logger.error("Unexpected plan generation error for %s: %s", context.plant.id, exc, exc_info=True)
            return self._fallback.generate(context, now)

        logger.info(
            "Generated plan for %s via %s (%d actions)",
            context.plant.id,
            self.backend_name,
            sum(len(day.actions) for day in plan.days),
        )
        return plan

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(self, raw_text: str, context: PlanContext, now: datetime) -> CarePlan:
        """
        Build a plan from generator output.

        Raises:
            GenerationMalformedError: the output is not JSON or lacks a
                ``next7Days`` list.
        """
        data = extract_json(raw_text)
        if not isinstance(data, dict):
            raise GenerationMalformedError("Plan output is not a JSON object")
        try:
            generated = GeneratedPlan.model_validate(data)
        except PydanticValidationError as exc:
            raise GenerationMalformedError(f"Plan output failed validation: {exc.error_count()} error(s)") from exc

        raw_days = generated.next_7_days
        if len(raw_days) != PLAN_DAYS:
            logger.info("Generator returned %d days for %s, normalising to %d", len(raw_days), context.plant.id, PLAN_DAYS)

        days = []
        for index, weather in enumerate(context.weather[:PLAN_DAYS]):
            raw_day = raw_days[index] if index < len(raw_days) else None
            days.append(
                DayPlan(
                    date=weather.forecast.date,
                    weather=weather_snapshot(weather),
                    actions=self._parse_actions(raw_day),
                )
            )

        self.ensure_treatment(days, context)
        summary = generated.summary or f"7-day care plan for {context.plant.name or context.plant.crop_name}."
        return CarePlan(last_updated=now, days=days, summary=summary, source="llm")

    def _parse_actions(self, raw_day: Any) -> list[Action]:
        if not isinstance(raw_day, dict):
            return []
        try:
            day = GeneratedDay.model_validate(raw_day)
        except PydanticValidationError:
            return []

        actions = []
        for raw_action in day.actions:
            if not isinstance(raw_action, dict):
                continue
            try:
                item = GeneratedAction.model_validate(raw_action)
            except PydanticValidationError as exc:
                logger.debug("Dropping malformed generated action: %s", exc)
                continue
            actions.append(
                Action(
                    id=self._ids.new_id("act"),
                    type=item.type,
                    time=item.time,
                    description=item.description,
                    reason=item.reason,
                    products=item.products,
                    category=item.category or infer_category(item.type, item.description, item.products),
                )
            )
        return actions

    def ensure_treatment(self, days: list[DayPlan], context: PlanContext) -> bool:
        """
        Inject treatment actions when diseases need treatment but none is
        scheduled inside the treatment window. Returns ``True`` if injected.
        """
        treating = context.treating
        if not treating:
            return False
        window = context.treatment_window
        if any(is_treatment_action(action) for day in days[:window] for action in day.actions):
            return False

        longest = max(len(ctx.policy.treatment_days) for ctx in treating)
        span = max(1, min(SAFETY_NET_MAX_DAYS, longest, window))
        names = ", ".join(ctx.disease.name for ctx in treating)
        for day in days[:span]:
            day.actions.insert(
                0,
                build_treatment_action(
                    self._ids,
                    treating,
                    reason=f"Added automatically: {names} needs treatment and none was scheduled",
                ),
            )
        logger.warning("Injected %d treatment action(s) for %s", span, context.plant.id)
        return True
