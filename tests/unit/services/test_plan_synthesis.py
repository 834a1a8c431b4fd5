"""Tests for PlanSynthesisOrchestrator: assembly, safety net and fallback."""

from __future__ import annotations

import json

import pytest

from app.domain.care_plan import PLAN_DAYS
from app.domain.exceptions import GenerationMalformedError
from app.enums.care import ActionCategory, ActionType
from app.services.ai.plan_prompt_builder import PlanPromptBuilder
from app.services.ai.plan_synthesis import PlanSynthesisOrchestrator, infer_category


def _reply(days, summary="A calm week."):
    return json.dumps({"next7Days": days, "summary": summary})


def _day(*actions):
    return {"date": "ignored", "weather": {"tempMax": 99}, "actions": list(actions)}


WATER = {"type": "water", "time": "8:00", "description": "Water 300ml per plant", "category": "care"}


@pytest.fixture()
def builder(seeded_catalog):
    return PlanPromptBuilder(seeded_catalog)


@pytest.fixture()
def orchestrator(backend, builder, ids):
    return PlanSynthesisOrchestrator(backend, builder, ids=ids, timeout=2.0)


class TestSynthesize:
    def test_generated_plan_uses_real_weather(self, orchestrator, backend, builder, make_plant, make_forecast, clock):
        backend.replies.append(_reply([_day(WATER) for _ in range(PLAN_DAYS)]))
        forecast = make_forecast(overrides={0: {"temp_max": 31.5, "rain_mm": 2.0}})

        plan = orchestrator.synthesize(builder.build_context(make_plant(), forecast), clock())

        assert plan.source == "llm"
        assert plan.summary == "A calm week."
        assert plan.last_updated == clock.now
        assert [day.date for day in plan.days] == [day.date for day in forecast]
        assert plan.day(0).weather.temp_max == 31.5
        assert plan.day(0).weather.rain_mm == 2.0
        assert plan.day(0).actions[0].time == "08:00"
        assert backend.calls[0]["json_mode"] is True
        assert "next7Days" in backend.calls[0]["user"]

    @pytest.mark.parametrize("returned", [0, 3, 7, 12])
    def test_day_count_is_normalised(
        self, returned, orchestrator, backend, builder, make_plant, make_forecast, clock
    ):
        forecast = make_forecast()
        backend.replies.append(_reply([_day(WATER) for _ in range(returned)]))

        plan = orchestrator.synthesize(builder.build_context(make_plant(), forecast), clock())

        kept = min(returned, PLAN_DAYS)
        assert plan.source == "llm"
        assert [day.date for day in plan.days] == [day.date for day in forecast]
        assert [len(day.actions) for day in plan.days] == [1] * kept + [0] * (PLAN_DAYS - kept)
        assert all(day.weather.temp_max == 30.0 for day in plan.days)

    def test_malformed_actions_are_dropped_individually(
        self, orchestrator, backend, builder, make_plant, make_forecast, clock
    ):
        bad_type = {"type": "dance", "description": "Do a rain dance"}
        no_description = {"type": "check"}
        spray = {"type": "spray", "time": "7", "description": "Spray fungicide", "products": "Anvil 5SC"}
        backend.replies.append(_reply([_day(bad_type, WATER, no_description, spray, "junk")] + [_day()] * 6))

        plan = orchestrator.synthesize(builder.build_context(make_plant(), make_forecast()), clock())

        actions = plan.day(0).actions
        assert [a.type for a in actions] == [ActionType.WATER, ActionType.PROTECT]
        assert actions[1].time == "07:00"
        assert actions[1].products == ["Anvil 5SC"]
        assert actions[1].category is ActionCategory.TREATMENT

    @pytest.mark.parametrize(
        "reply",
        [
            "I'm sorry, I cannot help with that.",
            '{"plan": []}',
            "[1, 2, 3]",
            RuntimeError("model endpoint exploded"),
        ],
    )
    def test_failures_fall_back_to_rules(self, orchestrator, backend, builder, make_plant, make_forecast, clock, reply):
        backend.replies.append(reply)
        plan = orchestrator.synthesize(builder.build_context(make_plant(), make_forecast()), clock())
        assert plan.source == "rule_based"
        assert len(plan.days) == PLAN_DAYS

    def test_unavailable_backend_is_not_called(self, orchestrator, backend, builder, make_plant, make_forecast, clock):
        backend.available = False
        plan = orchestrator.synthesize(builder.build_context(make_plant(), make_forecast()), clock())
        assert plan.source == "rule_based"
        assert backend.calls == []

    def test_no_backend(self, builder, ids, make_plant, make_forecast, clock):
        orchestrator = PlanSynthesisOrchestrator(None, builder, ids=ids)
        assert orchestrator.backend_name == "none"
        plan = orchestrator.synthesize(builder.build_context(make_plant(), make_forecast()), clock())
        assert plan.source == "rule_based"


class TestTreatmentSafetyNet:
    def test_missing_treatment_is_injected(
        self, orchestrator, backend, builder, make_plant, make_forecast, make_disease, clock
    ):
        plant = make_plant(diseases=[make_disease(score=5)])
        backend.replies.append(_reply([_day(WATER) for _ in range(PLAN_DAYS)]))

        plan = orchestrator.synthesize(builder.build_context(plant, make_forecast()), clock())

        injected = [
            index for index, _day, action in plan.iter_actions() if action.type is ActionType.PROTECT
        ]
        # moderate tier treats on two days, so the net covers days 0 and 1
        assert injected == [0, 1]
        first = plan.day(0).actions[0]
        assert first.category is ActionCategory.TREATMENT
        assert "Added automatically" in first.reason
        assert first.products == ["Anvil 5SC", "Ridomil Gold"]

    def test_critical_net_spans_three_days(
        self, orchestrator, backend, builder, make_plant, make_forecast, make_disease, clock
    ):
        plant = make_plant(diseases=[make_disease(score=10)])
        backend.replies.append(_reply([_day() for _ in range(PLAN_DAYS)]))
        plan = orchestrator.synthesize(builder.build_context(plant, make_forecast()), clock())
        assert [i for i, _d, a in plan.iter_actions() if a.type is ActionType.PROTECT] == [0, 1, 2]

    def test_existing_treatment_inside_window_is_respected(
        self, orchestrator, backend, builder, make_plant, make_forecast, make_disease, clock
    ):
        plant = make_plant(diseases=[make_disease(score=7)])
        spray = {"type": "protect", "category": "treatment", "time": "07:00", "description": "Spray Anvil 5SC"}
        days = [_day(), _day(), _day(), _day(spray)] + [_day()] * 3
        backend.replies.append(_reply(days))

        plan = orchestrator.synthesize(builder.build_context(plant, make_forecast()), clock())
        assert [i for i, _d, a in plan.iter_actions() if a.type is ActionType.PROTECT] == [3]

    def test_monitoring_protect_does_not_count_as_treatment(
        self, orchestrator, backend, builder, make_plant, make_forecast, make_disease, clock
    ):
        plant = make_plant(diseases=[make_disease(score=3)])
        watch = {"type": "protect", "category": "monitoring", "description": "Monitor the lesions"}
        backend.replies.append(_reply([_day(watch)] + [_day()] * 6))

        plan = orchestrator.synthesize(builder.build_context(plant, make_forecast()), clock())
        protect = [a for a in plan.day(0).actions if a.type is ActionType.PROTECT]
        assert [a.category for a in protect] == [ActionCategory.TREATMENT, ActionCategory.MONITORING]

    def test_almost_resolved_needs_no_net(
        self, orchestrator, backend, builder, make_plant, make_forecast, make_disease, clock
    ):
        plant = make_plant(diseases=[make_disease(score=1)])
        backend.replies.append(_reply([_day() for _ in range(PLAN_DAYS)]))
        plan = orchestrator.synthesize(builder.build_context(plant, make_forecast()), clock())
        assert list(plan.iter_actions()) == []


def test_assemble_rejects_missing_days_key(orchestrator, builder, make_plant, make_forecast, clock):
    with pytest.raises(GenerationMalformedError):
        orchestrator.assemble('{"summary": "x"}', builder.build_context(make_plant(), make_forecast()), clock())


@pytest.mark.parametrize(
    "action_type, description, products, expected",
    [
        (ActionType.CHECK, "Spray everything", [], ActionCategory.MONITORING),
        (ActionType.PROTECT, "Monitor leaf spots", [], ActionCategory.MONITORING),
        (ActionType.PROTECT, "Monitor after you apply the product", [], ActionCategory.TREATMENT),
        (ActionType.PROTECT, "Cover the seedlings", ["Net"], ActionCategory.TREATMENT),
        (ActionType.WATER, "Water deeply", [], ActionCategory.CARE),
    ],
)
def test_infer_category(action_type, description, products, expected):
    assert infer_category(action_type, description, products) is expected
