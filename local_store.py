# local_store.py
"""
SQLite-backed store for pending notifications.

This is the authoritative record of what still has to fire. Rows that came
from the remote service keep the remote id so repeated syncs update the same
row instead of inserting a copy.
"""
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from errors import LocalStoreError
from models import Notification

logger = logging.getLogger("local_store")


class LocalStore:
    """Notification table in a local SQLite file."""

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=5)
        except sqlite3.Error as e:
            raise LocalStoreError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise LocalStoreError(str(e)) from e
        finally:
            conn.close()

    def _init_db(self):
        """Initialize the database schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS alarms (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    remote_id INTEGER UNIQUE,
                    title TEXT NOT NULL,
                    payload TEXT,
                    fire_at INTEGER NOT NULL  -- epoch milliseconds (UTC)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_alarms_fire_at ON alarms(fire_at)
            """)

    # -----------------------------
    # WRITES
    # -----------------------------
    def insert(self, notification: Notification) -> int:
        """Persist a notification. Returns the new local id."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO alarms (remote_id, title, payload, fire_at) VALUES (?, ?, ?, ?)",
                (notification.remote_id, notification.title,
                 notification.payload, notification.fire_at),
            )
            local_id = cursor.lastrowid
        logger.debug("Inserted notification %s", local_id)
        return local_id

    def delete_by_id(self, local_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM alarms WHERE id = ?", (local_id,))
            deleted = cursor.rowcount > 0
        logger.info("Deleted notification %s from db (found=%s)", local_id, deleted)
        return deleted

    def delete_by_remote_id(self, remote_id: int) -> Optional[int]:
        """Delete the row mirroring a remote notification. Returns its local id."""
        existing = self.find_by_remote_id(remote_id)
        if existing is None:
            return None
        self.delete_by_id(existing.local_id)
        return existing.local_id

    def upsert_by_remote_id(self, notification: Notification) -> Notification:
        """Insert a remote notification, or update the row that already mirrors it.

        The returned record always carries the canonical local id.
        """
        if notification.remote_id is None:
            raise LocalStoreError("upsert_by_remote_id needs a remote id")

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM alarms WHERE remote_id = ?", (notification.remote_id,)
            ).fetchone()
            if row is None:
                cursor = conn.execute(
                    "INSERT INTO alarms (remote_id, title, payload, fire_at) VALUES (?, ?, ?, ?)",
                    (notification.remote_id, notification.title,
                     notification.payload, notification.fire_at),
                )
                logger.info("Imported remote notification %s as %s",
                            notification.remote_id, cursor.lastrowid)
                return notification.with_ids(local_id=cursor.lastrowid)

            existing = Notification.from_row(dict(row))
            if (existing.title, existing.payload, existing.fire_at) != (
                    notification.title, notification.payload, notification.fire_at):
                conn.execute(
                    "UPDATE alarms SET title = ?, payload = ?, fire_at = ? WHERE id = ?",
                    (notification.title, notification.payload,
                     notification.fire_at, existing.local_id),
                )
                logger.info("Updated notification %s from remote %s",
                            existing.local_id, notification.remote_id)
            return notification.with_ids(local_id=existing.local_id)

    # -----------------------------
    # READS
    # -----------------------------
    def find_by_id(self, local_id: int) -> Optional[Notification]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM alarms WHERE id = ?", (local_id,)).fetchone()
        return Notification.from_row(dict(row)) if row else None

    def find_by_remote_id(self, remote_id: int) -> Optional[Notification]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM alarms WHERE remote_id = ?", (remote_id,)
            ).fetchone()
        return Notification.from_row(dict(row)) if row else None

    def find_earliest(self, n: int) -> List[Notification]:
        """Return up to n notifications with the smallest fire time."""
        if n <= 0:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM alarms ORDER BY fire_at, id LIMIT ?", (n,)
            ).fetchall()
        return [Notification.from_row(dict(r)) for r in rows]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM alarms").fetchone()[0]
