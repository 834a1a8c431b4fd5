"""
Shared test fixtures for the care plan engine test suite.

Provides:
- SQLite database (per-test temporary file) with all tables created
- Repository instances wired to the test database
- A scripted text-generation backend and a fake forecast provider
- Deterministic ids and a frozen clock
- Builder fixtures for plants, diseases, forecasts, plans and actions

Usage:
    def test_example(plant_repo, make_plant):
        plant = plant_repo.put(make_plant())
        assert plant_repo.get(plant.id) is not None
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from app.domain.care_plan import (
    Action,
    CarePlan,
    DayPlan,
    DiseaseRecord,
    Location,
    NotificationPreferences,
    PlantRecord,
    WeatherSnapshot,
)
from app.domain.weather import ForecastDay
from app.enums.care import ActionCategory, ActionType, DiseaseStatus
from app.services.ai.llm_backends import LLMBackend
from app.utils.ids import SequentialIdGenerator
from infrastructure.database.repositories.completion_tokens import CompletionTokenRepository
from infrastructure.database.repositories.plants import PlantRepository
from infrastructure.database.repositories.treatments import TreatmentCatalogRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)

FROZEN_NOW = datetime(2025, 6, 2, 1, 0, tzinfo=timezone.utc)
PLAN_START = date(2025, 6, 2)


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler(tmp_path):
    """SQLite database on a temporary file with all tables created.

    Each test gets a fresh database; no cross-test contamination.
    """
    handler = SQLiteDatabaseHandler(str(tmp_path / "careplan.db"))
    handler.create_tables()
    yield handler
    handler.close_db()


@pytest.fixture()
def plant_repo(db_handler):
    return PlantRepository(db_handler)


@pytest.fixture()
def token_repo(db_handler):
    return CompletionTokenRepository(db_handler)


@pytest.fixture()
def treatment_repo(db_handler):
    return TreatmentCatalogRepository(db_handler)


@pytest.fixture()
def seeded_catalog(treatment_repo):
    """A small catalog covering leaf blight on tomato."""
    treatment_repo.add_entry(
        "chemical",
        "Anvil 5SC",
        target_diseases=["leaf blight", "early blight"],
        target_crops=["tomato", "potato"],
        details={"dosage": "20ml/16L", "usage": "Spray both leaf surfaces"},
    )
    treatment_repo.add_entry(
        "chemical",
        "Ridomil Gold",
        target_diseases=["late blight"],
        target_crops=["tomato"],
        details={"dosage": "50g/10L"},
    )
    treatment_repo.add_entry(
        "biological",
        "Trichoderma",
        target_diseases=["leaf blight", "root rot"],
        details={"usage": "Mix into the soil around the base"},
    )
    treatment_repo.add_entry(
        "cultural",
        "Remove lower leaves",
        target_crops=["tomato"],
    )
    return treatment_repo


# ========================== Fakes ==========================================


class ScriptedBackend(LLMBackend):
    """Text generator returning queued replies; an Exception entry is raised."""

    name = "scripted"

    def __init__(self, replies: list[Any] | None = None, available: bool = True):
        super().__init__("scripted-key", "scripted")
        self.replies = list(replies or [])
        self.calls: list[dict[str, Any]] = []
        self.available = available

    @property
    def is_available(self) -> bool:
        return self.available

    def _connect(self):
        return object()

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode):
        self.calls.append({"system": system_prompt, "user": user_prompt, "json_mode": json_mode})
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply, "scripted", {}


class FakeForecastProvider:
    """Returns a fixed forecast; set ``error`` to make every call raise it."""

    def __init__(self, days: list[ForecastDay] | None = None):
        self.days = days if days is not None else build_forecast()
        self.error: Exception | None = None
        self.calls = 0

    def fetch_forecast(self, lat: float, lon: float) -> list[ForecastDay]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.days)


@pytest.fixture()
def backend():
    return ScriptedBackend()


@pytest.fixture()
def forecast_provider():
    return FakeForecastProvider()


@pytest.fixture()
def ids():
    return SequentialIdGenerator()


@pytest.fixture()
def clock():
    """Mutable frozen clock: ``clock.now`` can be reassigned in a test."""

    class _Clock:
        now = FROZEN_NOW

        def __call__(self) -> datetime:
            return self.now

    return _Clock()


@pytest.fixture()
def mock_notifier():
    notifier = MagicMock()
    notifier.notify = MagicMock(return_value=MagicMock(delivered=True))
    return notifier


@pytest.fixture()
def mock_audit_logger():
    audit = MagicMock()
    audit.log_event = MagicMock()
    return audit


# ========================== Builders =======================================


def build_forecast(
    start: date = PLAN_START,
    *,
    temp_max: float = 30.0,
    humidity: float = 60.0,
    rain_mm: float = 0.0,
    overrides: dict[int, dict[str, float]] | None = None,
) -> list[ForecastDay]:
    """Seven forecast days; ``overrides`` maps day index to field values."""
    days = []
    for index in range(7):
        values = {"temp_max": temp_max, "humidity": humidity, "rain_mm": rain_mm}
        values.update((overrides or {}).get(index, {}))
        days.append(
            ForecastDay(
                date=start + timedelta(days=index),
                temp_min=values["temp_max"] - 8,
                temp_max=values["temp_max"],
                humidity=values["humidity"],
                rain_mm=values["rain_mm"],
            )
        )
    return days


def build_disease(
    disease_id: str = "dis_1",
    name: str = "Leaf blight",
    score: int = 5,
    status: DiseaseStatus = DiseaseStatus.ACTIVE,
) -> DiseaseRecord:
    return DiseaseRecord(id=disease_id, name=name, severity_score=score, status=status)


def build_plan(
    start: date = PLAN_START,
    actions_by_day: dict[int, list[Action]] | None = None,
    last_updated: datetime = FROZEN_NOW,
) -> CarePlan:
    days = [
        DayPlan(
            date=start + timedelta(days=index),
            weather=WeatherSnapshot(temp_min=22, temp_max=30, humidity=60, rain_mm=0),
            actions=list((actions_by_day or {}).get(index, [])),
        )
        for index in range(7)
    ]
    return CarePlan(last_updated=last_updated, days=days, summary="test plan")


def build_action(
    action_id: str = "act_water",
    action_type: ActionType = ActionType.WATER,
    time: str = "08:00",
    **kwargs: Any,
) -> Action:
    kwargs.setdefault("description", f"{action_type} task")
    if action_type is ActionType.PROTECT:
        kwargs.setdefault("category", ActionCategory.TREATMENT)
    return Action(id=action_id, type=action_type, time=time, **kwargs)


@pytest.fixture()
def make_plant():
    def _make(
        plant_id: str = "plant_1",
        *,
        diseases: list[DiseaseRecord] | None = None,
        care_plan: CarePlan | None = None,
        email: str | None = "grower@example.com",
        lat: float | None = 10.8,
        lon: float | None = 106.6,
        **kwargs: Any,
    ) -> PlantRecord:
        kwargs.setdefault("user_id", "user_1")
        kwargs.setdefault("name", "Balcony tomatoes")
        kwargs.setdefault("crop_name", "tomato")
        kwargs.setdefault("timezone", "UTC")
        return PlantRecord(
            id=plant_id,
            location=Location(name="Balcony", lat=lat, lon=lon, soil_types=["loam"]),
            diseases=list(diseases or []),
            care_plan=care_plan,
            notifications=NotificationPreferences(enabled=True, email=True, email_address=email),
            **kwargs,
        )

    return _make


@pytest.fixture()
def make_forecast():
    return build_forecast


@pytest.fixture()
def make_disease():
    return build_disease


@pytest.fixture()
def make_plan():
    return build_plan


@pytest.fixture()
def make_action():
    return build_action
