"""
AI Services
===========
Text-generation backed planning with deterministic fallbacks.

Services:
- PlanPromptBuilder: generation context and request text for a 7-day plan
- PlanSynthesisOrchestrator: generate, repair, validate and assemble plans
- RuleBasedPlanGenerator: deterministic plan when generation fails
- TaskAnalysisService: per-action guidance with dosage scaling

All public symbols are importable via ``from app.services.ai import X``.
Imports are **lazy** so the SDK-backed modules are only loaded on first
access.
"""

from __future__ import annotations

import importlib
from typing import Any

# ── Symbol → submodule mapping ──────────────────────────────────────
_LAZY_IMPORTS: dict[str, str] = {
    # llm_backends
    "AnthropicBackend": "app.services.ai.llm_backends",
    "LLMBackend": "app.services.ai.llm_backends",
    "LLMResponse": "app.services.ai.llm_backends",
    "OpenAIBackend": "app.services.ai.llm_backends",
    "create_backend": "app.services.ai.llm_backends",
    # plan_prompt_builder
    "DiseaseContext": "app.services.ai.plan_prompt_builder",
    "PlanContext": "app.services.ai.plan_prompt_builder",
    "PlanPromptBuilder": "app.services.ai.plan_prompt_builder",
    # plan_synthesis
    "PlanSynthesisOrchestrator": "app.services.ai.plan_synthesis",
    "infer_category": "app.services.ai.plan_synthesis",
    "is_treatment_action": "app.services.ai.plan_synthesis",
    # rule_based_planner
    "RuleBasedPlanGenerator": "app.services.ai.rule_based_planner",
    # task_analysis
    "TaskAnalysisService": "app.services.ai.task_analysis",
    "calculate_dosage": "app.services.ai.task_analysis",
    "parse_dosage": "app.services.ai.task_analysis",
    "soil_multiplier": "app.services.ai.task_analysis",
}

__all__ = list(_LAZY_IMPORTS.keys())


def __getattr__(name: str) -> Any:
    """Lazy-load symbols on first access."""
    module_path = _LAZY_IMPORTS.get(name)
    if module_path is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = importlib.import_module(module_path)
    value = getattr(module, name)
    # Cache on the module so subsequent accesses skip __getattr__
    globals()[name] = value
    return value
