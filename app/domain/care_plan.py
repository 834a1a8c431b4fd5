"""
Care Plan Domain Objects
========================
Typed records for plants, their diseases and their 7-day care plans.

Persisted documents are plain dicts produced by ``to_dict``; ``from_dict``
is the validation boundary used by the repositories. Timestamps are
timezone-aware UTC datetimes and serialise to ISO-8601.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from app.domain.exceptions import ValidationError
from app.enums.care import ActionCategory, ActionType, DiseaseStatus, FeedbackStatus, SeverityHint
from app.utils.time import coerce_date, coerce_datetime

PLAN_DAYS = 7


def validate_day_index(day_index: int) -> int:
    """Return *day_index* if it addresses a plan day, else raise ValidationError."""
    if not isinstance(day_index, int) or isinstance(day_index, bool) or not 0 <= day_index < PLAN_DAYS:
        raise ValidationError(
            f"Day index must be between 0 and {PLAN_DAYS - 1}",
            detail={"day_index": day_index},
        )
    return day_index


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _enum_or_none(enum_cls, value):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Plant
# ---------------------------------------------------------------------------


@dataclass
class Location:
    name: str = ""
    lat: float | None = None
    lon: float | None = None
    area: float | None = None  # square metres
    soil_types: list[str] = field(default_factory=list)
    sunlight: str = "full"  # full | partial | shade

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "lat": self.lat,
            "lon": self.lon,
            "area": self.area,
            "soil_types": list(self.soil_types),
            "sunlight": self.sunlight,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Location":
        data = data or {}
        return cls(
            name=data.get("name") or "",
            lat=data.get("lat"),
            lon=data.get("lon"),
            area=data.get("area"),
            soil_types=list(data.get("soil_types") or []),
            sunlight=data.get("sunlight") or "full",
        )


@dataclass
class NotificationPreferences:
    enabled: bool = True
    email: bool = True
    sms: bool = False
    frequency: str = "daily"
    email_address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "email": self.email,
            "sms": self.sms,
            "frequency": self.frequency,
            "email_address": self.email_address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NotificationPreferences":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            email=bool(data.get("email", True)),
            sms=bool(data.get("sms", False)),
            frequency=data.get("frequency") or "daily",
            email_address=data.get("email_address"),
        )


# ---------------------------------------------------------------------------
# Disease
# ---------------------------------------------------------------------------


@dataclass
class FeedbackEntry:
    """One user report on a disease. Append-only."""

    status: FeedbackStatus
    created_at: datetime
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"status": str(self.status), "notes": self.notes, "created_at": _iso(self.created_at)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedbackEntry":
        created = coerce_datetime(data.get("created_at"))
        if created is None:
            raise ValueError("Feedback entry without timestamp")
        return cls(status=FeedbackStatus(data["status"]), created_at=created, notes=data.get("notes") or "")


@dataclass
class SelectedTreatments:
    """User-chosen subset of chemical products for one disease."""

    chemical: list[str] = field(default_factory=list)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"chemical": list(self.chemical), "updated_at": _iso(self.updated_at)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SelectedTreatments | None":
        if not data:
            return None
        return cls(chemical=list(data.get("chemical") or []), updated_at=coerce_datetime(data.get("updated_at")))


@dataclass
class DiseaseRecord:
    """
    A disease reported on a plant.

    ``severity_score`` (0-10) is authoritative; ``status`` is derived from
    it by :mod:`app.domain.disease_severity` and ``severity_hint`` only
    seeds the initial score.
    """

    id: str
    name: str
    severity_score: int
    status: DiseaseStatus
    symptoms: str = ""
    severity_hint: SeverityHint | None = None
    feedback: list[FeedbackEntry] = field(default_factory=list)
    selected_treatments: SelectedTreatments | None = None
    reported_at: datetime | None = None
    source: str = "user"  # user | diagnosis

    @property
    def is_active(self) -> bool:
        return self.status is not DiseaseStatus.RESOLVED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "symptoms": self.symptoms,
            "severity_hint": str(self.severity_hint) if self.severity_hint else None,
            "severity_score": self.severity_score,
            "status": str(self.status),
            "feedback": [entry.to_dict() for entry in self.feedback],
            "selected_treatments": self.selected_treatments.to_dict() if self.selected_treatments else None,
            "reported_at": _iso(self.reported_at),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiseaseRecord":
        score = int(data.get("severity_score", 0))
        if not 0 <= score <= 10:
            raise ValueError(f"severity_score out of range: {score}")
        status = DiseaseStatus(data["status"])
        if (status is DiseaseStatus.RESOLVED) != (score == 0):
            raise ValueError(f"status {status} contradicts severity_score {score}")
        return cls(
            id=str(data["id"]),
            name=data["name"],
            severity_score=score,
            status=status,
            symptoms=data.get("symptoms") or "",
            severity_hint=_enum_or_none(SeverityHint, data.get("severity_hint")),
            feedback=[FeedbackEntry.from_dict(item) for item in data.get("feedback") or []],
            selected_treatments=SelectedTreatments.from_dict(data.get("selected_treatments")),
            reported_at=coerce_datetime(data.get("reported_at")),
            source=data.get("source") or "user",
        )


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass
class DosageCalculation:
    """Product quantity scaled to the planting."""

    product: str
    base_dosage: str
    amount_per_unit: float
    unit: str
    water_per_unit_l: float | None
    quantity: int
    soil_multiplier: float
    total_amount: float
    total_water_l: float | None
    purchase_amount: float
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product,
            "base_dosage": self.base_dosage,
            "amount_per_unit": self.amount_per_unit,
            "unit": self.unit,
            "water_per_unit_l": self.water_per_unit_l,
            "quantity": self.quantity,
            "soil_multiplier": self.soil_multiplier,
            "total_amount": self.total_amount,
            "total_water_l": self.total_water_l,
            "purchase_amount": self.purchase_amount,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DosageCalculation | None":
        if not data:
            return None
        return cls(
            product=data.get("product") or "",
            base_dosage=data.get("base_dosage") or "",
            amount_per_unit=float(data.get("amount_per_unit", 0.0)),
            unit=data.get("unit") or "",
            water_per_unit_l=data.get("water_per_unit_l"),
            quantity=int(data.get("quantity", 1)),
            soil_multiplier=float(data.get("soil_multiplier", 1.0)),
            total_amount=float(data.get("total_amount", 0.0)),
            total_water_l=data.get("total_water_l"),
            purchase_amount=float(data.get("purchase_amount", 0.0)),
            notes=data.get("notes") or "",
        )


@dataclass
class TaskAnalysis:
    """Detailed execution guidance for one action, cached on the action."""

    steps: list[str]
    materials: list[str]
    precautions: list[str]
    tips: list[str]
    duration: str
    analyzed_at: datetime
    dosage_calculation: DosageCalculation | None = None
    product_details: list[dict[str, Any]] = field(default_factory=list)
    source: str = "llm"  # llm | fallback

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": list(self.steps),
            "materials": list(self.materials),
            "precautions": list(self.precautions),
            "tips": list(self.tips),
            "duration": self.duration,
            "analyzed_at": _iso(self.analyzed_at),
            "dosage_calculation": self.dosage_calculation.to_dict() if self.dosage_calculation else None,
            "product_details": [dict(item) for item in self.product_details],
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TaskAnalysis | None":
        if not data:
            return None
        analyzed_at = coerce_datetime(data.get("analyzed_at"))
        if analyzed_at is None:
            return None
        return cls(
            steps=list(data.get("steps") or []),
            materials=list(data.get("materials") or []),
            precautions=list(data.get("precautions") or []),
            tips=list(data.get("tips") or []),
            duration=data.get("duration") or "",
            analyzed_at=analyzed_at,
            dosage_calculation=DosageCalculation.from_dict(data.get("dosage_calculation")),
            product_details=list(data.get("product_details") or []),
            source=data.get("source") or "llm",
        )


@dataclass
class Action:
    id: str
    type: ActionType
    time: str
    description: str
    reason: str = ""
    products: list[str] = field(default_factory=list)
    category: ActionCategory | None = None
    completed: bool = False
    completed_at: datetime | None = None
    task_analysis: TaskAnalysis | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": str(self.type),
            "time": self.time,
            "description": self.description,
            "reason": self.reason,
            "products": list(self.products),
            "category": str(self.category) if self.category else None,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "task_analysis": self.task_analysis.to_dict() if self.task_analysis else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        return cls(
            id=str(data["id"]),
            type=ActionType(data["type"]),
            time=data.get("time") or "08:00",
            description=data.get("description") or "",
            reason=data.get("reason") or "",
            products=list(data.get("products") or []),
            category=_enum_or_none(ActionCategory, data.get("category")),
            completed=bool(data.get("completed", False)),
            completed_at=coerce_datetime(data.get("completed_at")),
            task_analysis=TaskAnalysis.from_dict(data.get("task_analysis")),
        )


@dataclass
class WeatherSnapshot:
    """Real forecast values for a plan day. Never taken from generated content."""

    temp_min: float
    temp_max: float
    humidity: float
    rain_mm: float
    alerts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "temp_min": self.temp_min,
            "temp_max": self.temp_max,
            "humidity": self.humidity,
            "rain_mm": self.rain_mm,
            "alerts": list(self.alerts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WeatherSnapshot":
        return cls(
            temp_min=float(data.get("temp_min", 0.0)),
            temp_max=float(data.get("temp_max", 0.0)),
            humidity=float(data.get("humidity", 0.0)),
            rain_mm=float(data.get("rain_mm", 0.0)),
            alerts=list(data.get("alerts") or []),
        )


@dataclass
class DayPlan:
    date: date
    weather: WeatherSnapshot
    actions: list[Action] = field(default_factory=list)

    def find_action(self, action_id: str) -> Action | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "weather": self.weather.to_dict(),
            "actions": [action.to_dict() for action in self.actions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DayPlan":
        day = coerce_date(data.get("date"))
        if day is None:
            raise ValueError("Day plan without a valid date")
        return cls(
            date=day,
            weather=WeatherSnapshot.from_dict(data.get("weather") or {}),
            actions=[Action.from_dict(item) for item in data.get("actions") or []],
        )


@dataclass
class CarePlan:
    """Seven consecutive days of actions plus a free-text summary."""

    last_updated: datetime
    days: list[DayPlan]
    summary: str = ""
    source: str = "llm"  # llm | rule_based

    def __post_init__(self):
        if len(self.days) != PLAN_DAYS:
            raise ValueError(f"A care plan holds exactly {PLAN_DAYS} days, got {len(self.days)}")

    def day(self, day_index: int) -> DayPlan:
        return self.days[day_index]

    def iter_actions(self):
        """Yield ``(day_index, day, action)`` for every action in the plan."""
        for index, day in enumerate(self.days):
            for action in day.actions:
                yield index, day, action

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_updated": _iso(self.last_updated),
            "days": [day.to_dict() for day in self.days],
            "summary": self.summary,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CarePlan | None":
        if not data:
            return None
        last_updated = coerce_datetime(data.get("last_updated"))
        if last_updated is None:
            raise ValueError("Care plan without last_updated")
        return cls(
            last_updated=last_updated,
            days=[DayPlan.from_dict(item) for item in data.get("days") or []],
            summary=data.get("summary") or "",
            source=data.get("source") or "llm",
        )


@dataclass
class PlantRecord:
    """A user's plant box: attributes, diseases and the current care plan."""

    id: str
    user_id: str
    name: str
    crop_name: str
    location: Location = field(default_factory=Location)
    planting_date: date | None = None
    quantity: int = 1
    growth_stage: str = "vegetative"  # seed | seedling | vegetative | flowering | fruiting
    current_health: str = "good"  # excellent | good | fair | poor
    diseases: list[DiseaseRecord] = field(default_factory=list)
    care_plan: CarePlan | None = None
    notifications: NotificationPreferences = field(default_factory=NotificationPreferences)
    timezone: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def active_diseases(self) -> list[DiseaseRecord]:
        return [disease for disease in self.diseases if disease.is_active]

    def find_disease(self, disease_id: str) -> DiseaseRecord | None:
        for disease in self.diseases:
            if disease.id == disease_id:
                return disease
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "crop_name": self.crop_name,
            "location": self.location.to_dict(),
            "planting_date": self.planting_date.isoformat() if self.planting_date else None,
            "quantity": self.quantity,
            "growth_stage": self.growth_stage,
            "current_health": self.current_health,
            "diseases": [disease.to_dict() for disease in self.diseases],
            "care_plan": self.care_plan.to_dict() if self.care_plan else None,
            "notifications": self.notifications.to_dict(),
            "timezone": self.timezone,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlantRecord":
        quantity = int(data.get("quantity") or 1)
        if quantity < 1:
            raise ValueError(f"quantity must be positive, got {quantity}")
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            name=data.get("name") or data.get("crop_name") or "",
            crop_name=data.get("crop_name") or "",
            location=Location.from_dict(data.get("location")),
            planting_date=coerce_date(data.get("planting_date")),
            quantity=quantity,
            growth_stage=data.get("growth_stage") or "vegetative",
            current_health=data.get("current_health") or "good",
            diseases=[DiseaseRecord.from_dict(item) for item in data.get("diseases") or []],
            care_plan=CarePlan.from_dict(data.get("care_plan")),
            notifications=NotificationPreferences.from_dict(data.get("notifications")),
            timezone=data.get("timezone"),
            is_active=bool(data.get("is_active", True)),
            created_at=coerce_datetime(data.get("created_at")),
            updated_at=coerce_datetime(data.get("updated_at")),
        )


@dataclass(slots=True)
class CompletionTokenRecord:
    """Persisted side of a completion link. Only the hash of the raw token is kept."""

    plant_id: str
    day_index: int
    action_id: str
    token_hash: str
    expires_at: datetime
    used: bool = False
    id: int | None = None
    user_id: str | None = None
    created_at: datetime | None = None
    used_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
