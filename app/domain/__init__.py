"""
Domain Package
==============
Typed records and pure rules of the care plan engine: weather
classification, the disease severity engine and the plan data model.
"""

from .care_plan import (
    PLAN_DAYS,
    Action,
    CarePlan,
    CompletionTokenRecord,
    DayPlan,
    DiseaseRecord,
    DosageCalculation,
    FeedbackEntry,
    Location,
    NotificationPreferences,
    PlantRecord,
    SelectedTreatments,
    TaskAnalysis,
    WeatherSnapshot,
)
from .disease_severity import FeedbackOutcome, TierPolicy, apply_feedback, policy_for_score, tier_for_score
from .weather import ClassifiedWeather, ForecastDay, classify_day, classify_forecast

__all__ = [
    "PLAN_DAYS",
    # Plan model
    "Action",
    "CarePlan",
    "CompletionTokenRecord",
    "DayPlan",
    "DiseaseRecord",
    "DosageCalculation",
    "FeedbackEntry",
    "Location",
    "NotificationPreferences",
    "PlantRecord",
    "SelectedTreatments",
    "TaskAnalysis",
    "WeatherSnapshot",
    # Severity
    "FeedbackOutcome",
    "TierPolicy",
    "apply_feedback",
    "policy_for_score",
    "tier_for_score",
    # Weather
    "ClassifiedWeather",
    "ForecastDay",
    "classify_day",
    "classify_forecast",
]
