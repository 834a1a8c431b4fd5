"""Tests for CarePlanService against a real SQLite store and scripted generators."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from app.domain.care_plan import TaskAnalysis
from app.domain.exceptions import NotFoundError, UpstreamUnavailableError, ValidationError
from app.enums.care import ActionType, DiseaseStatus
from app.services.ai.plan_prompt_builder import PlanPromptBuilder
from app.services.ai.plan_synthesis import PlanSynthesisOrchestrator
from app.services.ai.task_analysis import TaskAnalysisService
from app.services.application.care_plan_service import CarePlanService, preserve_completion

ANALYSIS_REPLY = json.dumps({"detailedSteps": ["Mix", "Spray"], "estimatedDuration": "40 minutes"})


@pytest.fixture()
def build_service(
    plant_repo, seeded_catalog, forecast_provider, backend, ids, mock_notifier, mock_audit_logger, clock
):
    def _build(**kwargs):
        builder = PlanPromptBuilder(seeded_catalog)
        return CarePlanService(
            plant_repo,
            forecast_provider,
            builder,
            PlanSynthesisOrchestrator(backend, builder, ids=ids, timeout=2.0),
            TaskAnalysisService(backend, seeded_catalog, timeout=2.0),
            ids=ids,
            notifier=mock_notifier,
            audit_logger=mock_audit_logger,
            clock=clock,
            **kwargs,
        )

    return _build


@pytest.fixture()
def service(build_service, backend):
    # rule-based plans unless a test scripts a reply
    backend.available = False
    return build_service()


@pytest.fixture()
def stored_plant(plant_repo, make_plant, make_plan, make_action, make_disease):
    plan = make_plan(
        actions_by_day={
            0: [make_action("act_water"), make_action("act_spray", ActionType.PROTECT, "07:00", products=["Anvil 5SC"])],
        }
    )
    return plant_repo.put(make_plant(diseases=[make_disease(score=5)], care_plan=plan))


class TestRefreshPlan:
    def test_refresh_writes_plan_and_notifies(self, service, plant_repo, make_plant, mock_notifier, clock):
        plant_repo.put(make_plant())

        plan = service.refresh_plan("plant_1", notify=True)

        assert plan.source == "rule_based"
        assert plan.last_updated == clock.now
        stored = plant_repo.get("plant_1").care_plan
        assert stored.summary == plan.summary
        assert len(list(stored.iter_actions())) == len(list(plan.iter_actions()))
        user_id, event = mock_notifier.notify.call_args.args
        assert user_id == "user_1"
        assert event["type"] == "plan_refreshed"

    def test_refresh_with_generated_plan(self, build_service, backend, plant_repo, make_plant):
        backend.replies.append(json.dumps({"next7Days": [{"actions": []}] * 7, "summary": "quiet week"}))
        plant_repo.put(make_plant())
        plan = build_service().refresh_plan("plant_1")
        assert plan.source == "llm"
        assert plan.summary == "quiet week"

    def test_missing_coordinates(self, service, plant_repo, make_plant, forecast_provider):
        plant_repo.put(make_plant(lat=None, lon=None))
        with pytest.raises(ValidationError):
            service.refresh_plan("plant_1")
        assert forecast_provider.calls == 0

    def test_unknown_or_inactive_plant(self, service, plant_repo, make_plant):
        with pytest.raises(NotFoundError):
            service.refresh_plan("ghost")
        plant_repo.put(make_plant(is_active=False))
        with pytest.raises(NotFoundError):
            service.refresh_plan("plant_1")

    def test_forecast_outage_keeps_previous_plan(self, service, plant_repo, stored_plant, forecast_provider):
        forecast_provider.error = UpstreamUnavailableError("weather down")
        with pytest.raises(UpstreamUnavailableError):
            service.refresh_plan(stored_plant.id)
        assert plant_repo.get(stored_plant.id).care_plan.summary == "test plan"

    def test_refresh_keeps_completed_work(self, service, plant_repo, make_plant):
        plant_repo.put(make_plant())
        first = service.refresh_plan("plant_1")
        water = first.day(0).actions[0]
        assert water.type is ActionType.WATER
        service.toggle_action("plant_1", 0, water.id, True)

        second = service.refresh_plan("plant_1")

        carried = second.day(0).find_action(water.id)
        assert carried is not None
        assert carried.completed


def test_preserve_completion_matches_date_type_and_time(make_plan, make_action, clock):
    previous = make_plan(
        actions_by_day={
            0: [make_action("old_water", completed=True, completed_at=clock.now)],
            1: [make_action("old_check", ActionType.CHECK, "09:00", completed=True)],
        }
    )
    plan = make_plan(
        actions_by_day={
            0: [make_action("new_water")],
            1: [make_action("new_check", ActionType.CHECK, "10:00")],
        }
    )

    assert preserve_completion(previous, plan) == 1
    water = plan.day(0).actions[0]
    assert (water.id, water.completed, water.completed_at) == ("old_water", True, clock.now)
    check = plan.day(1).actions[0]
    assert (check.id, check.completed) == ("new_check", False)
    assert preserve_completion(None, plan) == 0


class TestToggleAction:
    def test_toggle_on_and_off(self, service, plant_repo, stored_plant, clock):
        service.toggle_action(stored_plant.id, 0, "act_water", True)
        action = plant_repo.get(stored_plant.id).care_plan.day(0).find_action("act_water")
        assert action.completed
        assert action.completed_at == clock.now

        service.toggle_action(stored_plant.id, 0, "act_water", False)
        action = plant_repo.get(stored_plant.id).care_plan.day(0).find_action("act_water")
        assert not action.completed
        assert action.completed_at is None

    def test_bad_addresses(self, service, plant_repo, stored_plant, make_plant):
        with pytest.raises(ValidationError):
            service.toggle_action(stored_plant.id, 7, "act_water", True)
        with pytest.raises(NotFoundError):
            service.toggle_action(stored_plant.id, 1, "act_water", True)
        plant_repo.put(make_plant("bare"))
        with pytest.raises(NotFoundError):
            service.toggle_action("bare", 0, "act_water", True)


class TestDiseaseFeedback:
    def test_better_feedback_is_persisted_and_audited(self, service, plant_repo, stored_plant, mock_audit_logger):
        result = service.submit_disease_feedback(stored_plant.id, "dis_1", "better", notes="fewer spots")

        assert result.disease.severity_score == 4
        assert not result.should_regenerate_plan
        stored = plant_repo.get(stored_plant.id).find_disease("dis_1")
        assert stored.status is DiseaseStatus.TREATING
        assert stored.feedback[0].notes == "fewer spots"
        kwargs = mock_audit_logger.log_event.call_args.kwargs
        assert (kwargs["score_before"], kwargs["score_after"]) == (5, 4)

    def test_feedback_invalidates_protect_analyses(self, service, plant_repo, stored_plant, clock):
        def _cache(record):
            for action in record.care_plan.day(0).actions:
                action.task_analysis = TaskAnalysisService.fallback(action, clock.now)

        plant_repo.update(stored_plant.id, _cache)
        service.submit_disease_feedback(stored_plant.id, "dis_1", "worse")

        day = plant_repo.get(stored_plant.id).care_plan.day(0)
        assert day.find_action("act_spray").task_analysis is None
        assert day.find_action("act_water").task_analysis is not None

    def test_resolution_triggers_refresh_when_enabled(self, build_service, backend, plant_repo, stored_plant):
        backend.available = False
        service = build_service(auto_refresh_on_resolve=True)

        result = service.submit_disease_feedback(stored_plant.id, "dis_1", "resolved")

        assert result.should_regenerate_plan
        assert result.plan_refreshed
        plan = plant_repo.get(stored_plant.id).care_plan
        assert plan.source == "rule_based"
        assert not [a for _, _, a in plan.iter_actions() if a.type is ActionType.PROTECT]

    def test_resolution_without_auto_refresh(self, service, plant_repo, stored_plant, forecast_provider):
        result = service.submit_disease_feedback(stored_plant.id, "dis_1", "resolved")
        assert result.should_regenerate_plan
        assert not result.plan_refreshed
        assert forecast_provider.calls == 0

    def test_unknown_disease_changes_nothing(self, service, plant_repo, stored_plant):
        with pytest.raises(NotFoundError):
            service.submit_disease_feedback(stored_plant.id, "dis_404", "better")
        with pytest.raises(ValidationError):
            service.submit_disease_feedback(stored_plant.id, "dis_1", "meh")
        assert plant_repo.get(stored_plant.id).find_disease("dis_1").feedback == []


class TestAnalyzeAction:
    def test_generated_analysis_is_cached_on_the_action(self, build_service, backend, plant_repo, stored_plant):
        backend.replies.append(ANALYSIS_REPLY)
        service = build_service()

        first = service.analyze_action(stored_plant.id, 0, "act_water")
        second = service.analyze_action(stored_plant.id, 0, "act_water")

        assert first.source == "llm"
        assert second.steps == first.steps == ["Mix", "Spray"]
        assert len(backend.calls) == 1
        stored = plant_repo.get(stored_plant.id).care_plan.day(0).find_action("act_water")
        assert isinstance(stored.task_analysis, TaskAnalysis)

    def test_fallback_is_cached_until_stale(self, build_service, backend, plant_repo, stored_plant, clock):
        backend.replies.extend(["not json", "still not json", ANALYSIS_REPLY])
        service = build_service()

        first = service.analyze_action(stored_plant.id, 0, "act_water")
        second = service.analyze_action(stored_plant.id, 0, "act_water")

        assert first.source == second.source == "fallback"
        assert len(backend.calls) == 1
        stored = plant_repo.get(stored_plant.id).care_plan.day(0).find_action("act_water")
        assert stored.task_analysis.source == "fallback"
        assert stored.task_analysis.analyzed_at == clock.now

        clock.now += timedelta(hours=25)
        # stale fallback retries the generator once
        assert service.analyze_action(stored_plant.id, 0, "act_water").source == "fallback"
        assert len(backend.calls) == 2

    def test_unavailable_generator_fallback_is_cached(self, service, plant_repo, stored_plant):
        analysis = service.analyze_action(stored_plant.id, 0, "act_water")
        assert analysis.source == "fallback"
        stored = plant_repo.get(stored_plant.id).care_plan.day(0).find_action("act_water")
        assert stored.task_analysis.source == "fallback"
        assert stored.task_analysis.steps == analysis.steps

    def test_protect_action_rechecks_weather(self, service, stored_plant, forecast_provider):
        analysis = service.analyze_action(stored_plant.id, 0, "act_spray")
        assert forecast_provider.calls == 1
        assert analysis.dosage_calculation.product == "Anvil 5SC"

        # cache hit skips the weather lookup
        service.analyze_action(stored_plant.id, 0, "act_spray")
        assert forecast_provider.calls == 1

    def test_weather_outage_uses_stored_forecast(self, service, stored_plant, forecast_provider):
        forecast_provider.error = UpstreamUnavailableError("down")
        analysis = service.analyze_action(stored_plant.id, 0, "act_spray", force=True)
        assert analysis.source == "fallback"

    def test_stale_cache_is_recomputed(self, build_service, backend, plant_repo, stored_plant, clock):
        backend.replies.append(ANALYSIS_REPLY)
        service = build_service()

        def _stale(record):
            action = record.care_plan.day(0).find_action("act_water")
            action.task_analysis = TaskAnalysisService.fallback(action, clock.now - timedelta(hours=25))

        plant_repo.update(stored_plant.id, _stale)
        assert service.analyze_action(stored_plant.id, 0, "act_water").source == "llm"


class TestDiseaseLifecycle:
    def test_add_disease_scores_from_hint(self, service, plant_repo, stored_plant, clock):
        disease = service.add_disease(stored_plant.id, "  Powdery mildew ", severity_hint="severe")

        assert disease.name == "Powdery mildew"
        assert disease.severity_score == 7
        assert disease.status is DiseaseStatus.ACTIVE
        assert disease.reported_at == clock.now
        assert plant_repo.get(stored_plant.id).find_disease(disease.id) is not None

    @pytest.mark.parametrize("name, hint", [("", None), ("Rust", "catastrophic")])
    def test_add_disease_validation(self, service, stored_plant, name, hint):
        with pytest.raises(ValidationError):
            service.add_disease(stored_plant.id, name, severity_hint=hint)

    def test_delete_disease(self, service, plant_repo, stored_plant):
        service.delete_disease(stored_plant.id, "dis_1")
        assert plant_repo.get(stored_plant.id).diseases == []
        with pytest.raises(NotFoundError):
            service.delete_disease(stored_plant.id, "dis_1")

    def test_treatment_selection_set_and_clear(self, service, plant_repo, stored_plant, clock):
        disease = service.update_disease_treatments(stored_plant.id, "dis_1", ["Ridomil Gold", " ", 3])
        assert disease.selected_treatments.chemical == ["Ridomil Gold"]
        assert disease.selected_treatments.updated_at == clock.now

        cleared = service.update_disease_treatments(stored_plant.id, "dis_1", [])
        assert cleared.selected_treatments is None
        assert plant_repo.get(stored_plant.id).find_disease("dis_1").selected_treatments is None


class TestPlantLifecycle:
    PAYLOAD = {
        "name": "Back garden",
        "crop_name": "tomato",
        "quantity": 6,
        "location": {"name": "Garden", "lat": 10.8, "lon": 106.6, "soil_types": ["sandy"]},
        "notifications": {"enabled": True, "email": True, "email_address": "grower@example.com"},
    }

    def test_create_plant_with_diseases_and_plan(self, service):
        payload = dict(self.PAYLOAD, diseases=[{"name": "Leaf blight", "severity": "mild"}, {"name": "Rust"}])

        plant = service.create_plant("user_9", payload)

        assert plant.user_id == "user_9"
        assert plant.quantity == 6
        assert [(d.name, d.severity_score) for d in plant.diseases] == [("Leaf blight", 3), ("Rust", 5)]
        assert plant.care_plan is not None
        assert plant.care_plan.source == "rule_based"

    def test_create_plant_without_coordinates_has_no_plan(self, service, forecast_provider):
        payload = dict(self.PAYLOAD, location={"name": "Unknown"})
        plant = service.create_plant("user_9", payload)
        assert plant.care_plan is None
        assert forecast_provider.calls == 0

    def test_plan_failure_does_not_block_creation(self, service, forecast_provider):
        forecast_provider.error = UpstreamUnavailableError("down")
        plant = service.create_plant("user_9", dict(self.PAYLOAD))
        assert plant.care_plan is None

    @pytest.mark.parametrize(
        "override",
        [{"crop_name": ""}, {"diseases": [{"severity": "mild"}]}, {"diseases": [{"name": "Rust", "severity": "x"}]}, {"quantity": -2}],
    )
    def test_invalid_payloads(self, service, plant_repo, override):
        with pytest.raises(ValidationError):
            service.create_plant("user_9", dict(self.PAYLOAD, **override))
        assert plant_repo.list_for_user("user_9") == []

    def test_soft_delete(self, service, stored_plant):
        service.soft_delete_plant(stored_plant.id)
        with pytest.raises(NotFoundError):
            service.get_plant(stored_plant.id)
