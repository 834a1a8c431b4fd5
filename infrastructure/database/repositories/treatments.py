"""
Treatment Catalog Repository
============================

Chemical products, biological methods and cultural practices, matched to
a disease and crop by keyword.

Matching rules:

* filler words ("disease", "bệnh", "cây", ...) are stripped and only
  keywords longer than two characters are kept
* an entry matches when ANY keyword is a case-insensitive substring of
  ANY of its targets; with no usable keyword the full name is used
* chemical products must match the disease and (when given) the crop;
  biological methods match the disease; cultural practices match the crop
* each kind is capped at :data:`MAX_RESULTS_PER_KIND`
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from typing import Any, Iterable

from app.domain.exceptions import RepositoryError, ValidationError

logger = logging.getLogger(__name__)

TREATMENT_KINDS = ("chemical", "biological", "cultural")
MAX_RESULTS_PER_KIND = 5

_DISEASE_FILLER_RE = re.compile(r"bệnh|disease|gây hại|trên|của|cây", re.IGNORECASE)
_CROP_FILLER_RE = re.compile(r"cây|plant", re.IGNORECASE)
_SPLIT_RE = re.compile(r"[\s,]+")


def extract_keywords(text: str | None, filler: re.Pattern = _DISEASE_FILLER_RE) -> list[str]:
    """Lower-case, drop filler words, keep tokens longer than two characters."""
    if not text:
        return []
    stripped = filler.sub("", text.lower()).strip()
    return [token for token in _SPLIT_RE.split(stripped) if len(token) > 2]


def _matches(targets: Iterable[str], name: str | None, filler: re.Pattern) -> bool:
    if not name:
        return True
    lowered = [target.lower() for target in targets]
    keywords = extract_keywords(name, filler) or [name.lower().strip()]
    return any(keyword in target for keyword in keywords for target in lowered)


class TreatmentCatalogRepository:
    """Repository for treatment-catalog entries."""

    def __init__(self, backend: Any) -> None:
        self._backend = backend

    def add_entry(
        self,
        kind: str,
        name: str,
        *,
        target_diseases: list[str] | None = None,
        target_crops: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> int:
        """Insert a catalog entry and return its id."""
        if kind not in TREATMENT_KINDS:
            raise ValidationError(f"Unknown treatment kind: {kind!r}")
        if not name or not name.strip():
            raise ValidationError("Treatment name is required")
        try:
            with self._backend.transaction() as db:
                cursor = db.execute(
                    """
                    INSERT INTO TreatmentCatalog (kind, name, target_diseases, target_crops, details)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        kind,
                        name.strip(),
                        json.dumps(target_diseases or [], ensure_ascii=False),
                        json.dumps(target_crops or [], ensure_ascii=False),
                        json.dumps(details or {}, ensure_ascii=False),
                    ),
                )
                return int(cursor.lastrowid)
        except sqlite3.Error as exc:
            logger.error("add_entry %s failed: %s", name, exc)
            raise RepositoryError(f"Failed to add treatment {name}") from exc

    def _entries(self, kind: str) -> list[dict[str, Any]]:
        with self._backend.connection() as db:
            rows = db.execute(
                """
                SELECT entry_id, name, target_diseases, target_crops, details
                FROM TreatmentCatalog WHERE kind = ? ORDER BY entry_id
                """,
                (kind,),
            ).fetchall()
        entries = []
        for row in rows:
            item = dict(json.loads(row["details"] or "{}"))
            item.update(
                {
                    "id": row["entry_id"],
                    "name": row["name"],
                    "target_diseases": json.loads(row["target_diseases"] or "[]"),
                    "target_crops": json.loads(row["target_crops"] or "[]"),
                }
            )
            entries.append(item)
        return entries

    def lookup(self, disease_name: str | None, crop_name: str | None = None) -> list[dict[str, Any]]:
        """
        Return ``[{"kind": ..., "items": [...]}, ...]`` in chemical,
        biological, cultural order. Kinds without matches are omitted.
        A healthy plant (no disease name) only gets cultural practices.
        """
        try:
            chemical: list[dict[str, Any]] = []
            biological: list[dict[str, Any]] = []
            if disease_name:
                chemical = [
                    item
                    for item in self._entries("chemical")
                    if _matches(item["target_diseases"], disease_name, _DISEASE_FILLER_RE)
                    and _matches(item["target_crops"], crop_name, _CROP_FILLER_RE)
                ][:MAX_RESULTS_PER_KIND]
                biological = [
                    item
                    for item in self._entries("biological")
                    if _matches(item["target_diseases"], disease_name, _DISEASE_FILLER_RE)
                ][:MAX_RESULTS_PER_KIND]
            cultural = [
                item
                for item in self._entries("cultural")
                if _matches(item["target_crops"], crop_name, _CROP_FILLER_RE)
            ][:MAX_RESULTS_PER_KIND]
        except (sqlite3.Error, json.JSONDecodeError) as exc:
            logger.error("Treatment lookup failed for %s / %s: %s", disease_name, crop_name, exc)
            raise RepositoryError("Treatment lookup failed") from exc

        groups = []
        for kind, items in (("chemical", chemical), ("biological", biological), ("cultural", cultural)):
            if items:
                groups.append({"kind": kind, "items": items})
        logger.debug(
            "Treatment lookup %s / %s: %d chemical, %d biological, %d cultural",
            disease_name,
            crop_name,
            len(chemical),
            len(biological),
            len(cultural),
        )
        return groups

    def find_products(self, names: Iterable[str]) -> list[dict[str, Any]]:
        """Chemical products whose name matches one of *names* (case-insensitive)."""
        wanted = {name.strip().lower() for name in names if name and name.strip()}
        if not wanted:
            return []
        try:
            return [item for item in self._entries("chemical") if item["name"].lower() in wanted]
        except (sqlite3.Error, json.JSONDecodeError) as exc:
            logger.error("find_products failed: %s", exc)
            raise RepositoryError("Product lookup failed") from exc
