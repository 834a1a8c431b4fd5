"""
Care Plan Enumerations
======================

Enums shared by the weather classifier, the disease severity engine,
plan synthesis and the completion-token flow.
"""

from enum import Enum


class ActionType(str, Enum):
    """Kind of scheduled care action."""

    WATER = "water"
    FERTILIZE = "fertilize"
    PRUNE = "prune"
    CHECK = "check"
    PROTECT = "protect"

    def __str__(self) -> str:
        return self.value


class ActionCategory(str, Enum):
    """
    Structured tag on an action.
    Used by: the treatment invariant check in plan synthesis
    """

    TREATMENT = "treatment"
    MONITORING = "monitoring"
    CARE = "care"

    def __str__(self) -> str:
        return self.value


class DiseaseStatus(str, Enum):
    ACTIVE = "active"
    TREATING = "treating"
    RESOLVED = "resolved"

    def __str__(self) -> str:
        return self.value


class FeedbackStatus(str, Enum):
    """User-reported disease progression."""

    WORSE = "worse"
    SAME = "same"
    BETTER = "better"
    RESOLVED = "resolved"

    def __str__(self) -> str:
        return self.value


class SeverityHint(str, Enum):
    """Initial severity reported together with a disease."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    def __str__(self) -> str:
        return self.value


class SeverityTier(str, Enum):
    """
    Treatment-intensity tier derived from a severity score.
    Used by: plan prompt builder, rule-based planner
    """

    RESOLVED = "resolved"
    ALMOST_RESOLVED = "almost_resolved"
    IMPROVING = "improving"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"

    def __str__(self) -> str:
        return self.value


class TemperatureLevel(str, Enum):
    COLD = "cold"
    COOL = "cool"
    NORMAL = "normal"
    WARM = "warm"
    HIGH = "high"
    VERY_HIGH = "very_high"

    def __str__(self) -> str:
        return self.value


class HumidityLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    VERY_HIGH = "very_high"

    def __str__(self) -> str:
        return self.value


class RainLevel(str, Enum):
    NONE = "none"
    DRIZZLE = "drizzle"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"

    def __str__(self) -> str:
        return self.value


class WateringNeed(str, Enum):
    NO = "no"
    NORMAL = "normal"
    MODERATE = "moderate"
    HIGH = "high"

    def __str__(self) -> str:
        return self.value


class NotificationEventType(str, Enum):
    """Events emitted through the fire-and-forget notifier."""

    TASK_COMPLETED = "task_completed"
    TASK_REMINDER = "task_reminder"
    TASK_MISSED = "task_missed"
    PLAN_REFRESHED = "plan_refreshed"

    def __str__(self) -> str:
        return self.value
