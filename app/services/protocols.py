"""
Service protocols (structural typing interfaces).

Protocols let the care plan services declare the *minimal* surface they
need from external collaborators without importing concrete classes,
which keeps tests trivially mockable.

Usage
-----
In a consumer service::

    from __future__ import annotations
    from typing import TYPE_CHECKING
    if TYPE_CHECKING:
        from app.services.protocols import TreatmentCatalogClient

    class PlanSynthesisOrchestrator:
        def __init__(self, treatments: "TreatmentCatalogClient", ...): ...

At runtime ``TreatmentCatalogRepository`` already satisfies the protocol
via structural subtyping — no explicit inheritance needed.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from app.domain.weather import ForecastDay


@runtime_checkable
class ForecastProvider(Protocol):
    """7-day daily forecast source."""

    def fetch_forecast(self, lat: float, lon: float) -> list[ForecastDay]:
        """Return exactly seven days, or raise ``UpstreamUnavailableError``."""
        ...


@runtime_checkable
class TreatmentCatalogClient(Protocol):
    """Treatment candidates for a disease on a crop."""

    def lookup(self, disease_name: str | None, crop_name: str | None = None) -> list[dict[str, Any]]:
        """Return ``[{"kind": "chemical"|"biological"|"cultural", "items": [...]}]``."""
        ...

    def find_products(self, names: Any) -> list[dict[str, Any]]:
        """Return chemical products by exact (case-insensitive) name."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget user notification sink."""

    def notify(self, user_id: str, event: dict[str, Any]) -> Any:
        """Deliver *event*; must never raise into the caller."""
        ...
