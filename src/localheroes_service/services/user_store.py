"""SQLite-backed user storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any


class DuplicateEmailError(Exception):
    """Raised when attempting to insert a user whose email is already registered."""


class InsufficientFundsError(Exception):
    """Raised when a balance change would drive a balance below zero."""


class UserStore:
    """SQLite-backed storage for users, credentials and balances."""

    _USER_COLUMNS: tuple[str, ...] = (
        "user_id",
        "email",
        "password_hash",
        "role",
        "first_name",
        "last_name",
        "phone",
        "address",
        "bio",
        "skills",
        "profile_picture",
        "email_verified_at",
        "balance",
        "created_at",
        "updated_at",
        "version",
    )
    _USER_COLUMNS_SQL = ", ".join(_USER_COLUMNS)
    _USER_INSERT_SQL = (
        f"INSERT INTO users ({_USER_COLUMNS_SQL}) "  # nosec B608
        f"VALUES ({', '.join('?' for _ in _USER_COLUMNS)})"
    )
    _UPDATABLE_COLUMNS: frozenset[str] = frozenset(
        {
            "password_hash",
            "first_name",
            "last_name",
            "phone",
            "address",
            "bio",
            "skills",
            "profile_picture",
            "email_verified_at",
            "updated_at",
        }
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'USER',
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    phone TEXT,
                    address TEXT,
                    bio TEXT,
                    skills TEXT NOT NULL DEFAULT '[]',
                    profile_picture TEXT,
                    email_verified_at TEXT,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                );
                """
            )
            self._db.commit()

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        user = {column: row[column] for column in self._USER_COLUMNS}
        user["skills"] = json.loads(user["skills"])
        return user

    def insert_user(self, user_data: dict[str, Any]) -> None:
        """Insert a new user row."""
        values = tuple(
            json.dumps(user_data[column]) if column == "skills" else user_data[column]
            for column in self._USER_COLUMNS
        )

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(self._USER_INSERT_SQL, values)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                error_msg = str(exc).lower()
                if "unique" in error_msg and "email" in error_msg:
                    raise DuplicateEmailError(
                        f"User with email {user_data['email']} already exists."
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user by ID."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._USER_COLUMNS_SQL} FROM users WHERE user_id = ?",  # nosec B608
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        """Fetch a user by email (case-insensitive)."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._USER_COLUMNS_SQL} FROM users WHERE email = ?",  # nosec B608
                (email.strip().lower(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_users_by_ids(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch several users at once, keyed by user_id. Unknown ids are omitted."""
        unique_ids = list(dict.fromkeys(user_ids))
        if len(unique_ids) == 0:
            return {}
        placeholders = ", ".join("?" for _ in unique_ids)
        query = (
            f"SELECT {self._USER_COLUMNS_SQL} FROM users "  # nosec B608
            f"WHERE user_id IN ({placeholders})"
        )
        with self._lock:
            rows = self._db.execute(query, unique_ids).fetchall()
        return {str(row["user_id"]): self._row_to_user(row) for row in rows}

    def update_user(
        self,
        user_id: str,
        updates: dict[str, Any],
        *,
        expected_version: int | None,
    ) -> int:
        """
        Update profile/credential columns and bump the version.

        Returns the number of affected rows: 0 when the user is missing or
        its version no longer matches ``expected_version``.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._UPDATABLE_COLUMNS for column in updates):
            msg = "Attempted to update a protected or unknown user column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            json.dumps(value) if column == "skills" else value for column, value in updates.items()
        ]

        query = (
            "UPDATE users SET " + set_clause + ", version = version + 1 WHERE user_id = ?"  # nosec B608
        )
        params.append(user_id)
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def adjust_balance(self, user_id: str, delta: int, updated_at: str) -> int | None:
        """
        Atomically add ``delta`` to a user's balance.

        Returns the new balance, or None when the user does not exist.

        Raises:
            InsufficientFundsError: If the result would be negative
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    "SELECT balance FROM users WHERE user_id = ?", (user_id,)
                ).fetchone()
                if row is None:
                    self._db.execute("ROLLBACK")
                    return None
                new_balance = int(row["balance"]) + delta
                if new_balance < 0:
                    self._db.execute("ROLLBACK")
                    raise InsufficientFundsError(
                        f"Balance of {user_id} cannot cover a change of {delta}"
                    )
                self._db.execute(
                    "UPDATE users SET balance = ?, updated_at = ?, version = version + 1 "
                    "WHERE user_id = ?",
                    (new_balance, updated_at, user_id),
                )
                self._db.commit()
            except InsufficientFundsError:
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return new_balance

    def list_users(self, limit: int, offset: int) -> list[dict[str, Any]]:
        """List users, oldest registration first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._USER_COLUMNS_SQL} FROM users "  # nosec B608
                "ORDER BY created_at ASC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self) -> int:
        """Count registered users."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM users").fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
