"""
Plant Repository
================

Stores each plant box (attributes, diseases, care plan) as one JSON
document. Records are validated into :class:`PlantRecord` on the way out,
so a malformed row surfaces as :class:`RepositoryError` rather than as a
half-populated dict deep inside a service.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable

from app.domain.care_plan import PlantRecord
from app.domain.exceptions import NotFoundError, RepositoryError
from app.utils.time import sortable_iso, utc_now

logger = logging.getLogger(__name__)


class PlantRepository:
    """Repository for plant-record persistence."""

    def __init__(self, backend: Any) -> None:
        """
        Args:
            backend: Database handler exposing ``connection()`` and
                     ``transaction()`` context managers (SQLiteDatabaseHandler).
        """
        self._backend = backend

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_record(row: sqlite3.Row) -> PlantRecord:
        try:
            return PlantRecord.from_dict(json.loads(row["document"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise RepositoryError(
                f"Corrupt plant record {row['plant_id']}: {exc}",
                detail={"plant_id": row["plant_id"]},
            ) from exc

    @staticmethod
    def _row_values(record: PlantRecord) -> tuple:
        plan_updated = sortable_iso(record.care_plan.last_updated) if record.care_plan else None
        created = (record.created_at or utc_now()).isoformat()
        updated = (record.updated_at or utc_now()).isoformat()
        return (
            record.id,
            record.user_id,
            1 if record.is_active else 0,
            json.dumps(record.to_dict(), ensure_ascii=False),
            plan_updated,
            created,
            updated,
        )

    def _fetch(self, db: sqlite3.Connection, plant_id: str) -> PlantRecord | None:
        row = db.execute(
            "SELECT plant_id, document FROM PlantRecords WHERE plant_id = ?",
            (plant_id,),
        ).fetchone()
        return self._to_record(row) if row else None

    def _write(self, db: sqlite3.Connection, record: PlantRecord) -> None:
        db.execute(
            """
            INSERT INTO PlantRecords
                (plant_id, user_id, is_active, document, plan_updated_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(plant_id) DO UPDATE SET
                user_id = excluded.user_id,
                is_active = excluded.is_active,
                document = excluded.document,
                plan_updated_at = excluded.plan_updated_at,
                updated_at = excluded.updated_at
            """,
            self._row_values(record),
        )

    # ------------------------------------------------------------------
    # Record store contract
    # ------------------------------------------------------------------

    def get(self, plant_id: str) -> PlantRecord | None:
        try:
            with self._backend.connection() as db:
                return self._fetch(db, plant_id)
        except sqlite3.Error as exc:
            logger.error("get plant %s failed: %s", plant_id, exc)
            raise RepositoryError(f"Failed to load plant {plant_id}") from exc

    def put(self, record: PlantRecord) -> PlantRecord:
        """Insert or replace the whole record."""
        now = utc_now()
        if record.created_at is None:
            record.created_at = now
        record.updated_at = now
        try:
            with self._backend.transaction() as db:
                self._write(db, record)
        except sqlite3.Error as exc:
            logger.error("put plant %s failed: %s", record.id, exc)
            raise RepositoryError(f"Failed to save plant {record.id}") from exc
        return record

    def update(self, plant_id: str, mutator: Callable[[PlantRecord], Any]) -> PlantRecord:
        """
        Read, mutate and write back one record inside a single write transaction.

        The mutator receives the live record and edits it in place; any
        exception it raises rolls the transaction back and propagates.
        """
        try:
            with self._backend.transaction() as db:
                record = self._fetch(db, plant_id)
                if record is None:
                    raise NotFoundError(f"Plant {plant_id} not found", detail={"plant_id": plant_id})
                mutator(record)
                record.updated_at = utc_now()
                self._write(db, record)
                return record
        except sqlite3.Error as exc:
            logger.error("update plant %s failed: %s", plant_id, exc)
            raise RepositoryError(f"Failed to update plant {plant_id}") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_active(self) -> list[PlantRecord]:
        """All active plants. Corrupt rows are logged and skipped."""
        try:
            with self._backend.connection() as db:
                rows = db.execute(
                    "SELECT plant_id, document FROM PlantRecords WHERE is_active = 1 ORDER BY created_at"
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("list_active failed: %s", exc)
            raise RepositoryError("Failed to list active plants") from exc

        records: list[PlantRecord] = []
        for row in rows:
            try:
                records.append(self._to_record(row))
            except RepositoryError as exc:
                logger.warning("Skipping plant row: %s", exc)
        return records

    def list_needing_refresh(self, older_than: datetime) -> list[str]:
        """Ids of active plants whose plan is missing or last updated before *older_than*."""
        try:
            with self._backend.connection() as db:
                rows = db.execute(
                    """
                    SELECT plant_id FROM PlantRecords
                    WHERE is_active = 1
                      AND (plan_updated_at IS NULL OR plan_updated_at < ?)
                    ORDER BY plan_updated_at
                    """,
                    (sortable_iso(older_than),),
                ).fetchall()
                return [row["plant_id"] for row in rows]
        except sqlite3.Error as exc:
            logger.error("list_needing_refresh failed: %s", exc)
            raise RepositoryError("Failed to query plants needing refresh") from exc

    def list_for_user(self, user_id: str) -> list[PlantRecord]:
        try:
            with self._backend.connection() as db:
                rows = db.execute(
                    """
                    SELECT plant_id, document FROM PlantRecords
                    WHERE user_id = ? AND is_active = 1
                    ORDER BY created_at
                    """,
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("list_for_user %s failed: %s", user_id, exc)
            raise RepositoryError(f"Failed to list plants for user {user_id}") from exc
        return [self._to_record(row) for row in rows]

    def soft_delete(self, plant_id: str) -> PlantRecord:
        """Flag the plant inactive. Rows are never removed."""

        def _deactivate(record: PlantRecord) -> None:
            record.is_active = False

        return self.update(plant_id, _deactivate)
