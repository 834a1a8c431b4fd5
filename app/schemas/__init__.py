"""
Schemas Module
==============

Pydantic models that validate the structure of generated plan and
task-analysis payloads before they are turned into domain records.
"""

from app.schemas.care_plan import GeneratedAction, GeneratedDay, GeneratedPlan, GeneratedTaskAnalysis

__all__ = [
    "GeneratedAction",
    "GeneratedDay",
    "GeneratedPlan",
    "GeneratedTaskAnalysis",
]
