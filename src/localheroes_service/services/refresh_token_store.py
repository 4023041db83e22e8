"""SQLite-backed refresh token records."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any


class RefreshTokenStore:
    """
    Persists one row per issued refresh token.

    Only the SHA-256 hash of the token string is stored, keyed by the
    token's ``jti``. Timestamps are ISO 8601 UTC strings with a ``Z``
    suffix, so lexicographic comparison matches chronological order.
    """

    _TOKEN_COLUMNS: tuple[str, ...] = (
        "jti",
        "user_id",
        "token_hash",
        "expires_at",
        "revoked",
        "created_at",
    )
    _TOKEN_COLUMNS_SQL = ", ".join(_TOKEN_COLUMNS)

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
                CREATE TABLE IF NOT EXISTS refresh_tokens (
                    jti TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token_hash TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    revoked INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_refresh_tokens_user
                    ON refresh_tokens(user_id, expires_at);
                """
            )
            self._db.commit()

    def _row_to_token(self, row: sqlite3.Row) -> dict[str, Any]:
        token = {column: row[column] for column in self._TOKEN_COLUMNS}
        token["revoked"] = bool(token["revoked"])
        return token

    def insert_token(self, token_data: dict[str, Any]) -> None:
        """Insert a new refresh token record."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    f"INSERT INTO refresh_tokens ({self._TOKEN_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        token_data["jti"],
                        token_data["user_id"],
                        token_data["token_hash"],
                        token_data["expires_at"],
                        int(token_data["revoked"]),
                        token_data["created_at"],
                    ),
                )
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_token(self, jti: str) -> dict[str, Any] | None:
        """Fetch a token record by jti."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._TOKEN_COLUMNS_SQL} FROM refresh_tokens WHERE jti = ?",  # nosec B608
                (jti,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_token(row)

    def list_active_tokens(self, user_id: str, now: str) -> list[dict[str, Any]]:
        """List a user's non-revoked, unexpired tokens, soonest expiry first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._TOKEN_COLUMNS_SQL} FROM refresh_tokens "  # nosec B608
                "WHERE user_id = ? AND revoked = 0 AND expires_at > ? "
                "ORDER BY expires_at ASC, created_at ASC, rowid ASC",
                (user_id, now),
            ).fetchall()
        return [self._row_to_token(row) for row in rows]

    def delete_token(self, jti: str) -> int:
        """Delete a token record. Returns the affected row count."""
        with self._lock:
            cursor = self._db.execute("DELETE FROM refresh_tokens WHERE jti = ?", (jti,))
            self._db.commit()
        return int(cursor.rowcount)

    def revoke_token(self, jti: str) -> int:
        """Mark a token revoked. Returns the affected row count."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE refresh_tokens SET revoked = 1 WHERE jti = ? AND revoked = 0", (jti,)
            )
            self._db.commit()
        return int(cursor.rowcount)

    def revoke_tokens_for_user(self, user_id: str) -> int:
        """Mark every unrevoked token of a user revoked."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE refresh_tokens SET revoked = 1 WHERE user_id = ? AND revoked = 0",
                (user_id,),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def delete_expired(self, now: str) -> int:
        """Delete every record whose expiry is in the past."""
        with self._lock:
            cursor = self._db.execute("DELETE FROM refresh_tokens WHERE expires_at < ?", (now,))
            self._db.commit()
        return int(cursor.rowcount)

    def count_tokens(self) -> int:
        """Count stored token records, revoked or not."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM refresh_tokens").fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
