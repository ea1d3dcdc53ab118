"""SQLite checkpoint for the allocation state.

Stores the allocation after every committed tick so a restarted process can
resume from where it left off instead of the configured initial allocation.
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

import pandas as pd

from yield_rebalancer.utils.exceptions import StorageError
from yield_rebalancer.utils.logging import get_logger

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS allocation_checkpoints (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    saved_at TEXT NOT NULL,
    allocation TEXT NOT NULL
);
"""


class AllocationCheckpoint:
    """Persists allocation snapshots in SQLite.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """Initialize checkpoint store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self.create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(self.db_path)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    def create_tables(self) -> None:
        try:
            conn = self._get_connection()
            conn.executescript(SCHEMA)
            conn.commit()
            logger.info("Allocation checkpoint initialized at %s", self.db_path)
        except sqlite3.Error as e:
            logger.error("Failed to create checkpoint tables: %s", e)
            raise StorageError(f"Checkpoint initialization failed: {e}") from e

    def save(self, allocation: Dict[str, float]) -> None:
        """Append an allocation snapshot.

        Args:
            allocation: {pool: fraction}
        """
        conn = self._get_connection()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO allocation_checkpoints (saved_at, allocation) VALUES (?, ?)",
                    (datetime.now().isoformat(), json.dumps(allocation)),
                )
            logger.debug("Saved allocation checkpoint for %d pools", len(allocation))
        except sqlite3.Error as e:
            logger.error("Failed to save allocation checkpoint: %s", e)
            raise StorageError(f"Failed to save checkpoint: {e}") from e

    def load_latest(self, pools: Optional[Iterable[str]] = None) -> Optional[Dict[str, float]]:
        """Load the most recent allocation.

        Args:
            pools: Configured pool set. A stored allocation over a different
                set is ignored (returns None).

        Returns:
            {pool: fraction} or None if nothing usable is stored
        """
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT allocation FROM allocation_checkpoints ORDER BY id DESC LIMIT 1"
            ).fetchone()
        except sqlite3.Error as e:
            logger.error("Failed to load allocation checkpoint: %s", e)
            raise StorageError(f"Failed to load checkpoint: {e}") from e

        if row is None:
            return None

        try:
            allocation = {str(k): float(v) for k, v in json.loads(row["allocation"]).items()}
        except (ValueError, TypeError, AttributeError) as e:
            raise StorageError(f"Stored allocation cannot be decoded: {e}") from e

        if pools is not None and set(allocation) != set(pools):
            logger.warning(
                "Checkpointed pools %s differ from configured pools, ignoring checkpoint",
                sorted(allocation),
            )
            return None

        return allocation

    def load_history(self) -> pd.DataFrame:
        """Load all checkpoints as a DataFrame indexed by save time.

        Returns:
            DataFrame with one column per pool
        """
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT saved_at, allocation FROM allocation_checkpoints ORDER BY id ASC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load checkpoint history: {e}") from e

        if not rows:
            return pd.DataFrame()

        index = pd.DatetimeIndex([pd.Timestamp(r["saved_at"]) for r in rows], name="saved_at")
        return pd.DataFrame([json.loads(r["allocation"]) for r in rows], index=index)

    def close(self):
        """Close the thread-local connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
