"""
Enums Module
============

Enumeration types for the care plan engine.
"""

from app.enums.care import (
    ActionCategory,
    ActionType,
    DiseaseStatus,
    FeedbackStatus,
    HumidityLevel,
    NotificationEventType,
    RainLevel,
    SeverityHint,
    SeverityTier,
    TemperatureLevel,
    WateringNeed,
)

__all__ = [
    "ActionCategory",
    "ActionType",
    "DiseaseStatus",
    "FeedbackStatus",
    "HumidityLevel",
    "NotificationEventType",
    "RainLevel",
    "SeverityHint",
    "SeverityTier",
    "TemperatureLevel",
    "WateringNeed",
]
