"""Repositories over the SQLite record store."""

from infrastructure.database.repositories.completion_tokens import CompletionTokenRepository
from infrastructure.database.repositories.plants import PlantRepository
from infrastructure.database.repositories.treatments import TreatmentCatalogRepository

__all__ = [
    "CompletionTokenRepository",
    "PlantRepository",
    "TreatmentCatalogRepository",
]
