import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class SQLiteDatabaseHandler:
    """Thread-safe SQLite handler backing the plant record store."""

    def __init__(self, database_path: str) -> None:
        self._database_path = database_path
        self._local = threading.local()

        if database_path != ":memory:":
            db_path = Path(database_path)
            if not db_path.parent.exists():
                db_path.parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", db_path.parent)

    @property
    def database_path(self) -> str:
        return self._database_path

    # --- Lifecycle ------------------------------------------------------------
    def init_app(self) -> None:
        self.create_tables()

    def get_db(self) -> sqlite3.Connection:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is None:
            try:
                connection = self._open_connection()
            except sqlite3.DatabaseError as exc:
                if self._is_corruption_error(exc):
                    logger.error("Database appears corrupt (%s). Recreating a fresh database.", exc)
                    self._quarantine_corrupt_db()
                    connection = self._open_connection()
                else:
                    raise
            self._local.connection = connection
        return connection

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path, check_same_thread=False)
        try:
            connection.row_factory = sqlite3.Row
            self._configure_connection(connection)
            return connection
        except Exception:
            connection.close()
            raise

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        message = str(exc).lower()
        return (
            "database disk image is malformed" in message
            or "file is not a database" in message
            or "file is encrypted or is not a database" in message
        )

    def _quarantine_corrupt_db(self) -> Optional[Path]:
        db_path = Path(self._database_path)
        if not db_path.exists():
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        quarantine_dir = db_path.parent / "corrupt"
        quarantine_dir.mkdir(parents=True, exist_ok=True)

        suffix = db_path.suffix or ".db"
        quarantined = quarantine_dir / f"{db_path.stem}_corrupt_{timestamp}{suffix}"
        try:
            shutil.move(str(db_path), str(quarantined))
            for sidecar_suffix in ("-wal", "-shm"):
                sidecar = Path(f"{db_path}{sidecar_suffix}")
                if sidecar.exists():
                    shutil.move(str(sidecar), str(quarantine_dir / f"{sidecar.name}_{timestamp}"))
            logger.warning("Quarantined corrupt database to %s", quarantined)
            return quarantined
        except OSError as exc:
            logger.error("Failed to quarantine corrupt database %s: %s", db_path, exc)
            return None

    def _configure_connection(self, connection: sqlite3.Connection) -> None:
        """WAL for concurrent readers while the scheduler jobs write; busy timeout for writer contention."""
        connection.execute("PRAGMA journal_mode=WAL")
        connection.execute("PRAGMA synchronous=NORMAL")
        connection.execute("PRAGMA foreign_keys=ON")
        connection.execute("PRAGMA busy_timeout=5000")
        connection.execute("PRAGMA temp_store=MEMORY")
        connection.commit()

    def close_db(self, _e: Optional[BaseException] = None) -> None:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            delattr(self._local, "connection")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_db()
        try:
            yield conn
        finally:
            if not getattr(self._local, "tx_depth", 0):
                conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Exclusive write transaction (``BEGIN IMMEDIATE``).

        Nested calls on the same thread join the outer transaction, so a
        repository write issued inside another repository's transaction
        commits or rolls back together with it.
        """
        conn = self.get_db()
        depth = getattr(self._local, "tx_depth", 0)
        if depth:
            self._local.tx_depth = depth + 1
            try:
                yield conn
            finally:
                self._local.tx_depth = depth
            return

        if conn.in_transaction:
            conn.commit()
        conn.execute("BEGIN IMMEDIATE")
        self._local.tx_depth = 1
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            self._local.tx_depth = 0

    # --- Schema ----------------------------------------------------------------
    def create_tables(self) -> None:
        """Creates the necessary tables in the database if they do not already exist."""
        try:
            with self.connection() as db:
                # One JSON document per plant box
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PlantRecords (
                        plant_id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        is_active BOOLEAN NOT NULL DEFAULT 1,
                        document TEXT NOT NULL,
                        plan_updated_at TIMESTAMP,
                        created_at TIMESTAMP NOT NULL,
                        updated_at TIMESTAMP NOT NULL
                    )
                    """
                )
                db.execute("CREATE INDEX IF NOT EXISTS idx_plant_records_user ON PlantRecords(user_id)")
                db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_plant_records_active ON PlantRecords(is_active, plan_updated_at)"
                )
                # Single-use completion links; only the hash is stored
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS CompletionTokens (
                        token_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        plant_id TEXT NOT NULL,
                        user_id TEXT,
                        day_index INTEGER NOT NULL CHECK (day_index BETWEEN 0 AND 6),
                        action_id TEXT NOT NULL,
                        token_hash TEXT NOT NULL UNIQUE,
                        used BOOLEAN NOT NULL DEFAULT 0,
                        expires_at TIMESTAMP NOT NULL,
                        created_at TIMESTAMP NOT NULL,
                        used_at TIMESTAMP
                    )
                    """
                )
                db.execute("CREATE INDEX IF NOT EXISTS idx_completion_tokens_expiry ON CompletionTokens(expires_at)")
                # Treatment products and practices
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TreatmentCatalog (
                        entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        kind TEXT NOT NULL CHECK (kind IN ('chemical', 'biological', 'cultural')),
                        name TEXT NOT NULL,
                        target_diseases TEXT NOT NULL DEFAULT '[]',
                        target_crops TEXT NOT NULL DEFAULT '[]',
                        details TEXT NOT NULL DEFAULT '{}',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                db.execute("CREATE INDEX IF NOT EXISTS idx_treatment_catalog_kind ON TreatmentCatalog(kind)")
            logger.info("Database tables ensured at %s", self._database_path)
        except sqlite3.Error as exc:
            logger.error("Failed to create tables: %s", exc)
            raise
