"""
Completion Token Repository
===========================

Persistence for single-use completion links. Only the SHA-256 hash of a
token is stored; the raw value lives in the emailed link alone.

Expiry is enforced on read by the service (a row past ``expires_at`` is
treated as absent) and physically by :meth:`purge_expired`, which the
token-sweep job runs periodically.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from app.domain.care_plan import CompletionTokenRecord
from app.domain.exceptions import ConflictError, RepositoryError, TokenAlreadyUsedError
from app.utils.time import coerce_datetime, sortable_iso

logger = logging.getLogger(__name__)


class CompletionTokenRepository:
    """Repository for completion-token database operations."""

    def __init__(self, backend: Any) -> None:
        self._backend = backend

    @staticmethod
    def _to_record(row: sqlite3.Row) -> CompletionTokenRecord:
        return CompletionTokenRecord(
            id=row["token_id"],
            plant_id=row["plant_id"],
            user_id=row["user_id"],
            day_index=int(row["day_index"]),
            action_id=row["action_id"],
            token_hash=row["token_hash"],
            used=bool(row["used"]),
            expires_at=coerce_datetime(row["expires_at"]),
            created_at=coerce_datetime(row["created_at"]),
            used_at=coerce_datetime(row["used_at"]),
        )

    def create(self, record: CompletionTokenRecord) -> CompletionTokenRecord:
        """Insert a new token row and return it with its generated id."""
        try:
            with self._backend.transaction() as db:
                cursor = db.execute(
                    """
                    INSERT INTO CompletionTokens
                        (plant_id, user_id, day_index, action_id, token_hash, used, expires_at, created_at)
                    VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        record.plant_id,
                        record.user_id,
                        record.day_index,
                        record.action_id,
                        record.token_hash,
                        sortable_iso(record.expires_at),
                        sortable_iso(record.created_at or record.expires_at),
                    ),
                )
                record.id = cursor.lastrowid
                return record
        except sqlite3.IntegrityError as exc:
            logger.error("create completion token failed: %s", exc)
            raise ConflictError("Completion token collision or invalid day index") from exc
        except sqlite3.Error as exc:
            logger.error("create completion token failed: %s", exc)
            raise RepositoryError("Failed to store completion token") from exc

    def find_by_hash(self, token_hash: str) -> CompletionTokenRecord | None:
        """Return the token row for *token_hash*, used or not, expired or not."""
        try:
            with self._backend.connection() as db:
                row = db.execute(
                    """
                    SELECT token_id, plant_id, user_id, day_index, action_id, token_hash,
                           used, expires_at, created_at, used_at
                    FROM CompletionTokens
                    WHERE token_hash = ?
                    """,
                    (token_hash,),
                ).fetchone()
                return self._to_record(row) if row else None
        except sqlite3.Error as exc:
            logger.error("find_by_hash failed: %s", exc)
            raise RepositoryError("Failed to look up completion token") from exc

    def mark_used(self, token_id: int, used_at: datetime) -> None:
        """
        Consume the token. Conditional on ``used = 0`` so two concurrent
        redemptions cannot both succeed.

        Raises:
            TokenAlreadyUsedError: the token was consumed in the meantime.
        """
        try:
            with self._backend.transaction() as db:
                cursor = db.execute(
                    "UPDATE CompletionTokens SET used = 1, used_at = ? WHERE token_id = ? AND used = 0",
                    (sortable_iso(used_at), token_id),
                )
                if cursor.rowcount != 1:
                    raise TokenAlreadyUsedError(
                        "Completion token already used",
                        detail={"token_id": token_id},
                    )
        except sqlite3.Error as exc:
            logger.error("mark_used failed: %s", exc)
            raise RepositoryError("Failed to consume completion token") from exc

    def purge_expired(self, now: datetime) -> int:
        """Delete expired tokens. Returns count of deleted rows."""
        try:
            with self._backend.transaction() as db:
                cursor = db.execute(
                    "DELETE FROM CompletionTokens WHERE expires_at <= ?",
                    (sortable_iso(now),),
                )
                return cursor.rowcount
        except sqlite3.Error as exc:
            logger.error("purge_expired failed: %s", exc)
            raise RepositoryError("Failed to purge expired completion tokens") from exc
