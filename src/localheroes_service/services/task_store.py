"""SQLite-backed task storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class VersionConflictError(Exception):
    """Raised when a conditional write finds the row at a different version."""


class PaymentDeclinedError(Exception):
    """Raised when the payer cannot cover a settlement inside the transaction."""


class PayeeNotFoundError(Exception):
    """Raised when the credited account of a settlement does not exist."""


TASK_STATUSES: tuple[str, ...] = ("OPEN", "IN_PROGRESS", "COMPLETED", "CANCELLED", "PAID")

_SORT_ORDERS: dict[str, str] = {
    "newest": "created_at DESC",
    "oldest": "created_at ASC",
    "price_asc": "price ASC, created_at DESC",
    "price_desc": "price DESC, created_at DESC",
    "due_date": "due_date IS NULL, due_date ASC, created_at DESC",
}

SORT_OPTIONS: tuple[str, ...] = tuple(_SORT_ORDERS)


def _like_pattern(value: str) -> str:
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass
class TaskQuery:
    """Filters, ordering and paging for a task search."""

    poster_id: str | None = None
    worker_id: str | None = None
    search: str | None = None
    location: str | None = None
    category: str | None = None
    min_price: int | None = None
    max_price: int | None = None
    status: str | None = None
    created_after: str | None = None
    tags: list[str] = field(default_factory=list)
    sort: str = "newest"
    limit: int = 10
    offset: int = 0


class TaskStore:
    """SQLite-backed storage for tasks and their applicant pools."""

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "poster_id",
        "worker_id",
        "title",
        "description",
        "price",
        "status",
        "category",
        "tags",
        "experience_level",
        "due_date",
        "location_address",
        "latitude",
        "longitude",
        "created_at",
        "updated_at",
        "accepted_at",
        "completed_at",
        "cancelled_at",
        "version",
    )
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        f"INSERT INTO tasks ({_TASK_COLUMNS_SQL}) "  # nosec B608
        f"VALUES ({', '.join('?' for _ in _TASK_COLUMNS)})"
    )
    _TASK_SELECT_BASE_SQL = f"SELECT {_TASK_COLUMNS_SQL} FROM tasks"  # nosec B608
    _IMMUTABLE_COLUMNS: frozenset[str] = frozenset({"task_id", "poster_id", "created_at", "version"})

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
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    poster_id TEXT NOT NULL,
                    worker_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    price INTEGER NOT NULL CHECK (price >= 0),
                    status TEXT NOT NULL DEFAULT 'OPEN',
                    category TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    experience_level TEXT,
                    due_date TEXT,
                    location_address TEXT,
                    latitude REAL,
                    longitude REAL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    accepted_at TEXT,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    version INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS task_applicants (
                    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (task_id, user_id)
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS idx_tasks_poster ON tasks(poster_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_worker ON tasks(worker_id);
                """
            )
            self._db.commit()

    def _row_to_task(self, row: sqlite3.Row, applicants: list[str]) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        task["tags"] = json.loads(task["tags"])
        task["applicants"] = applicants
        return task

    def _load_applicants(self, task_ids: list[str]) -> dict[str, list[str]]:
        if len(task_ids) == 0:
            return {}
        placeholders = ", ".join("?" for _ in task_ids)
        rows = self._db.execute(
            "SELECT task_id, user_id FROM task_applicants "  # nosec B608
            f"WHERE task_id IN ({placeholders}) ORDER BY position ASC",
            task_ids,
        ).fetchall()
        applicants: dict[str, list[str]] = {task_id: [] for task_id in task_ids}
        for row in rows:
            applicants[str(row["task_id"])].append(str(row["user_id"]))
        return applicants

    def _write_applicants(self, task_id: str, applicants: list[str]) -> None:
        self._db.execute("DELETE FROM task_applicants WHERE task_id = ?", (task_id,))
        self._db.executemany(
            "INSERT INTO task_applicants (task_id, user_id, position) VALUES (?, ?, ?)",
            [(task_id, user_id, position) for position, user_id in enumerate(applicants)],
        )

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        return json.dumps(value) if column == "tags" else value

    def _update_statement(
        self, task_id: str, updates: dict[str, Any], expected_version: int | None
    ) -> tuple[str, list[object]]:
        if any(
            column not in self._TASK_COLUMNS or column in self._IMMUTABLE_COLUMNS
            for column in updates
        ):
            msg = "Attempted to update an unknown or immutable task column"
            raise ValueError(msg)

        assignments = [f"{column} = ?" for column in updates]
        assignments.append("version = version + 1")
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]

        query = "UPDATE tasks SET " + ", ".join(assignments) + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)
        return query, params

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row with an empty applicant pool."""
        values = tuple(
            self._encode(column, task_data[column]) for column in self._TASK_COLUMNS
        )

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(self._TASK_INSERT_SQL, values)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                error_msg = str(exc).lower()
                if "unique" in error_msg:
                    raise DuplicateTaskError(
                        f"A task with task_id={task_data['task_id']} already exists"
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID, including its ordered applicant ids."""
        with self._lock:
            row = self._db.execute(
                self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?", (task_id,)
            ).fetchone()
            if row is None:
                return None
            applicants = self._load_applicants([task_id])[task_id]
        return self._row_to_task(row, applicants)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_version: int | None,
        applicants: list[str] | None = None,
    ) -> int:
        """
        Update task columns and, optionally, replace the applicant pool.

        The version is bumped on every successful write. When
        ``expected_version`` is given the write only applies if the row is
        still at that version. Returns the number of affected task rows.
        """
        if len(updates) == 0 and applicants is None:
            return 0

        query, params = self._update_statement(task_id, updates, expected_version)

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                cursor = self._db.execute(query, params)
                if cursor.rowcount == 0:
                    self._db.execute("ROLLBACK")
                    return 0
                if applicants is not None:
                    self._write_applicants(task_id, applicants)
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return int(cursor.rowcount)

    def delete_task(self, task_id: str) -> int:
        """Delete a task and its applicant rows. Returns the affected row count."""
        with self._lock:
            cursor = self._db.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
            self._db.commit()
        return int(cursor.rowcount)

    def settle_payment(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_version: int,
        payer_id: str,
        payee_id: str,
        amount: int,
    ) -> None:
        """
        Apply a task status change and move ``amount`` from payer to payee.

        All three writes share one transaction against the users table that
        lives in the same database file, so either all of them land or none.

        Raises:
            VersionConflictError: The task is no longer at expected_version
            PaymentDeclinedError: The payer's balance is below amount
            PayeeNotFoundError: The payee account does not exist
        """
        query, params = self._update_statement(task_id, updates, expected_version)
        timestamp = updates.get("updated_at")

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                if self._db.execute(query, params).rowcount == 0:
                    raise VersionConflictError(f"Task {task_id} changed during settlement")

                debited = self._db.execute(
                    "UPDATE users SET balance = balance - ?, updated_at = ?, "
                    "version = version + 1 WHERE user_id = ? AND balance >= ?",
                    (amount, timestamp, payer_id, amount),
                )
                if debited.rowcount == 0:
                    raise PaymentDeclinedError(f"User {payer_id} cannot cover {amount}")

                credited = self._db.execute(
                    "UPDATE users SET balance = balance + ?, updated_at = ?, "
                    "version = version + 1 WHERE user_id = ?",
                    (amount, timestamp, payee_id),
                )
                if credited.rowcount == 0:
                    raise PayeeNotFoundError(f"User {payee_id} does not exist")

                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def search_tasks(self, query: TaskQuery) -> tuple[list[dict[str, Any]], int]:
        """Search tasks. Returns the requested page and the total match count."""
        clauses: list[str] = []
        params: list[object] = []

        if query.poster_id is not None:
            clauses.append("poster_id = ?")
            params.append(query.poster_id)
        if query.worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(query.worker_id)
        if query.search:
            pattern = _like_pattern(query.search)
            clauses.append(
                "(LOWER(title) LIKE ? ESCAPE '\\' OR LOWER(description) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        if query.location:
            clauses.append("LOWER(location_address) LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(query.location))
        if query.category:
            clauses.append("LOWER(category) LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(query.category))
        if query.min_price is not None:
            clauses.append("price >= ?")
            params.append(query.min_price)
        if query.max_price is not None:
            clauses.append("price <= ?")
            params.append(query.max_price)
        if query.status is not None:
            clauses.append("status = ?")
            params.append(query.status)
        if query.created_after is not None:
            clauses.append("created_at >= ?")
            params.append(query.created_after)
        if len(query.tags) > 0:
            placeholders = ", ".join("?" for _ in query.tags)
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(tasks.tags) "  # nosec B608
                f"WHERE json_each.value IN ({placeholders}))"
            )
            params.extend(query.tags)

        where = " WHERE " + " AND ".join(clauses) if len(clauses) > 0 else ""
        order = _SORT_ORDERS.get(query.sort, _SORT_ORDERS["newest"])

        with self._lock:
            total_row = self._db.execute(
                "SELECT COUNT(*) FROM tasks" + where, params  # nosec B608
            ).fetchone()
            rows = self._db.execute(
                self._TASK_SELECT_BASE_SQL + where + f" ORDER BY {order} LIMIT ? OFFSET ?",
                [*params, query.limit, query.offset],
            ).fetchall()
            applicants = self._load_applicants([str(row["task_id"]) for row in rows])

        total = int(total_row[0]) if total_row is not None else 0
        tasks = [self._row_to_task(row, applicants[str(row["task_id"])]) for row in rows]
        return tasks, total

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
