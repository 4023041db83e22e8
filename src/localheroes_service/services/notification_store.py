"""SQLite-backed notification storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any


class NotificationStore:
    """SQLite-backed storage for user notifications."""

    _NOTIFICATION_COLUMNS: tuple[str, ...] = (
        "notification_id",
        "user_id",
        "type",
        "title",
        "message",
        "task_id",
        "from_user_id",
        "read",
        "metadata",
        "created_at",
    )
    _NOTIFICATION_COLUMNS_SQL = ", ".join(_NOTIFICATION_COLUMNS)

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    task_id TEXT,
                    from_user_id TEXT,
                    read INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_notifications_user
                    ON notifications(user_id, created_at);
                """
            )
            self._db.commit()

    def _row_to_notification(self, row: sqlite3.Row) -> dict[str, Any]:
        notification = {column: row[column] for column in self._NOTIFICATION_COLUMNS}
        notification["read"] = bool(notification["read"])
        notification["metadata"] = json.loads(notification["metadata"])
        return notification

    def insert_notification(self, data: dict[str, Any]) -> None:
        """Insert a notification row."""
        values = (
            data["notification_id"],
            data["user_id"],
            data["type"],
            data["title"],
            data["message"],
            data["task_id"],
            data["from_user_id"],
            int(data["read"]),
            json.dumps(data["metadata"]),
            data["created_at"],
        )
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    f"INSERT INTO notifications ({self._NOTIFICATION_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_notification(self, notification_id: str) -> dict[str, Any] | None:
        """Fetch a notification by ID."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._NOTIFICATION_COLUMNS_SQL} FROM notifications "  # nosec B608
                "WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    def list_for_user(self, user_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        """List a user's notifications, newest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._NOTIFICATION_COLUMNS_SQL} FROM notifications "  # nosec B608
                "WHERE user_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (user_id, limit, offset),
            ).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def count_for_user(self, user_id: str, *, unread_only: bool) -> int:
        """Count a user's notifications."""
        query = "SELECT COUNT(*) FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        with self._lock:
            row = self._db.execute(query, (user_id,)).fetchone()
        return int(row[0]) if row is not None else 0

    def mark_read(self, notification_id: str, user_id: str) -> int:
        """Mark one notification read. Returns the matched row count."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE notifications SET read = 1 WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user read. Returns the changed count."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0",
                (user_id,),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def delete_notification(self, notification_id: str, user_id: str) -> int:
        """Delete one notification of a user. Returns the affected row count."""
        with self._lock:
            cursor = self._db.execute(
                "DELETE FROM notifications WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
