"""SQLite-backed chat message storage."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any


class MessageStore:
    """SQLite-backed storage for direct messages between users."""

    _MESSAGE_COLUMNS: tuple[str, ...] = (
        "message_id",
        "sender_id",
        "receiver_id",
        "content",
        "read",
        "created_at",
    )
    _MESSAGE_COLUMNS_SQL = ", ".join(_MESSAGE_COLUMNS)

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
                CREATE TABLE IF NOT EXISTS messages (
                    message_id TEXT PRIMARY KEY,
                    sender_id TEXT NOT NULL,
                    receiver_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_messages_receiver
                    ON messages(receiver_id, read);
                CREATE INDEX IF NOT EXISTS idx_messages_sender
                    ON messages(sender_id, created_at);
                """
            )
            self._db.commit()

    def _row_to_message(self, row: sqlite3.Row) -> dict[str, Any]:
        message = {column: row[column] for column in self._MESSAGE_COLUMNS}
        message["read"] = bool(message["read"])
        return message

    def insert_message(self, data: dict[str, Any]) -> None:
        """Insert a message row."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    f"INSERT INTO messages ({self._MESSAGE_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        data["message_id"],
                        data["sender_id"],
                        data["receiver_id"],
                        data["content"],
                        int(data["read"]),
                        data["created_at"],
                    ),
                )
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Fetch a message by ID."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._MESSAGE_COLUMNS_SQL} FROM messages "  # nosec B608
                "WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_message(row)

    def list_for_user(self, user_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        """Messages sent or received by a user, newest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._MESSAGE_COLUMNS_SQL} FROM messages "  # nosec B608
                "WHERE sender_id = ? OR receiver_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (user_id, user_id, limit, offset),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def list_conversation(self, user_a: str, user_b: str) -> list[dict[str, Any]]:
        """Messages exchanged between two users, oldest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._MESSAGE_COLUMNS_SQL} FROM messages "  # nosec B608
                "WHERE (sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?) "
                "ORDER BY created_at ASC, rowid ASC",
                (user_a, user_b, user_b, user_a),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def mark_read(self, message_id: str, receiver_id: str) -> int:
        """Mark a received message read. Returns the matched row count."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE messages SET read = 1 WHERE message_id = ? AND receiver_id = ?",
                (message_id, receiver_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def count_unread(self, receiver_id: str) -> int:
        """Count unread messages addressed to a user."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM messages WHERE receiver_id = ? AND read = 0",
                (receiver_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
