"""
Care Plan Generation Schemas
============================

Pydantic models for the JSON the text generator returns. They check
structure only; agronomic content is not judged.

Days are validated leniently: a malformed action is dropped on its own
instead of failing the whole plan.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.enums.care import ActionCategory, ActionType

_CLOCK_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?")

# Loose words models use for action types
_TYPE_SYNONYMS = {
    "watering": "water",
    "irrigate": "water",
    "fertilizer": "fertilize",
    "fertilise": "fertilize",
    "pruning": "prune",
    "inspect": "check",
    "inspection": "check",
    "monitor": "check",
    "spray": "protect",
    "treatment": "protect",
    "treat": "protect",
}


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


class GeneratedAction(BaseModel):
    """One action as produced by the generator."""

    type: ActionType = Field(..., description="water | fertilize | prune | check | protect")
    time: str = Field("08:00", description="Local clock time HH:MM")
    description: str = Field(..., min_length=1)
    reason: str = ""
    products: list[str] = Field(default_factory=list)
    category: ActionCategory | None = Field(None, description="treatment | monitoring | care")

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = value.strip().lower()
            return _TYPE_SYNONYMS.get(key, key)
        return value

    @field_validator("time", mode="before")
    @classmethod
    def _normalise_time(cls, value: Any) -> str:
        match = _CLOCK_RE.match(str(value or ""))
        if not match:
            return "08:00"
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        if hours > 23 or minutes > 59:
            return "08:00"
        return f"{hours:02d}:{minutes:02d}"

    @field_validator("reason", mode="before")
    @classmethod
    def _reason_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("products", mode="before")
    @classmethod
    def _normalise_products(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("category", mode="before")
    @classmethod
    def _normalise_category(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        return key if key in {c.value for c in ActionCategory} else None


class GeneratedDay(BaseModel):
    """A generated day. ``actions`` stays raw so each one validates independently."""

    date: str | None = None
    actions: list[Any] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("actions", mode="before")
    @classmethod
    def _actions_list(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []


class GeneratedPlan(BaseModel):
    """Top-level plan payload: ``{"next7Days": [...], "summary": "..."}``."""

    next_7_days: list[Any] = Field(..., alias="next7Days")
    summary: str = ""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class GeneratedTaskAnalysis(BaseModel):
    """Detailed guidance for a single action."""

    steps: list[str] = Field(..., min_length=1, alias="detailedSteps")
    materials: list[str] = Field(default_factory=list)
    precautions: list[str] = Field(default_factory=list)
    tips: list[str] = Field(default_factory=list)
    duration: str = Field("", alias="estimatedDuration")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("steps", "materials", "precautions", "tips", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("duration", mode="before")
    @classmethod
    def _duration_text(cls, value: Any) -> str:
        return "" if value is None else str(value)
