"""SQLite-backed storage for the task registry."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class OwnerMismatchError(Exception):
    """Raised when a database is opened with a different owner than it was created with."""


class RegistryStore:
    """
    SQLite-backed storage for tasks, per-user task lists, completion
    counters, registry-level settings and the notification log.

    Mutations are grouped with ``transaction()``; the store lock is held
    for the whole transaction, which serializes every registry write.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "title",
        "description",
        "reward",
        "client_id",
        "freelancer_id",
        "status",
        "deadline",
        "freelancer_submitted",
        "client_approved",
        "escrow_balance",
    )
    _BOOL_COLUMNS = frozenset({"freelancer_submitted", "client_approved"})
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _UPDATABLE_COLUMNS = frozenset(
        {"freelancer_id", "status", "freelancer_submitted", "client_approved", "escrow_balance"}
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        if db_path != ":memory:":
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
                CREATE TABLE IF NOT EXISTS registry_meta (
                    singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
                    owner_id TEXT NOT NULL,
                    task_counter INTEGER NOT NULL DEFAULT 0,
                    platform_fee_percentage INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    reward INTEGER NOT NULL CHECK (reward > 0),
                    client_id TEXT NOT NULL,
                    freelancer_id TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    deadline INTEGER NOT NULL,
                    freelancer_submitted INTEGER NOT NULL DEFAULT 0,
                    client_approved INTEGER NOT NULL DEFAULT 0,
                    escrow_balance INTEGER NOT NULL CHECK (escrow_balance >= 0)
                );

                CREATE TABLE IF NOT EXISTS user_tasks (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    task_id INTEGER NOT NULL REFERENCES tasks(task_id)
                );

                CREATE TABLE IF NOT EXISTS completed_counts (
                    agent_id TEXT PRIMARY KEY,
                    completed INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS events (
                    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    task_id INTEGER NOT NULL,
                    agent_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_user_tasks_agent
                    ON user_tasks(agent_id, entry_id);
                CREATE INDEX IF NOT EXISTS ix_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS ix_events_task ON events(task_id, event_id);
                """
            )
            self._db.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed block as one atomic write; roll back on any exception."""
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._db.rollback()
                raise
            self._db.commit()

    # ------------------------------------------------------------------
    # Registry-level state
    # ------------------------------------------------------------------

    def init_meta(self, owner_id: str, platform_fee_percentage: int) -> dict[str, Any]:
        """
        Record the owner and initial fee on first start.

        An existing database keeps its owner and current fee; opening it
        with a different owner raises OwnerMismatchError.
        """
        with self._lock:
            self._db.execute(
                "INSERT OR IGNORE INTO registry_meta "
                "(singleton, owner_id, task_counter, platform_fee_percentage) VALUES (1, ?, 0, ?)",
                (owner_id, platform_fee_percentage),
            )
            self._db.commit()
            meta = self.get_meta()
            if meta["owner_id"] != owner_id:
                msg = (
                    f"Registry database belongs to owner '{meta['owner_id']}', "
                    f"not '{owner_id}'"
                )
                raise OwnerMismatchError(msg)
            return meta

    def get_meta(self) -> dict[str, Any]:
        with self._lock:
            row = self._db.execute(
                "SELECT owner_id, task_counter, platform_fee_percentage "
                "FROM registry_meta WHERE singleton = 1"
            ).fetchone()
            if row is None:
                msg = "Registry metadata not initialized"
                raise RuntimeError(msg)
            return dict(row)

    def next_task_id(self) -> int:
        """Advance the task counter and return the new id."""
        with self._lock:
            self._db.execute("UPDATE registry_meta SET task_counter = task_counter + 1")
            return int(self.get_meta()["task_counter"])

    def set_platform_fee(self, platform_fee_percentage: int) -> None:
        with self._lock:
            self._db.execute(
                "UPDATE registry_meta SET platform_fee_percentage = ?",
                (platform_fee_percentage,),
            )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = dict(row)
        for column in self._BOOL_COLUMNS:
            task[column] = bool(task[column])
        return task

    def insert_task(self, task: dict[str, Any]) -> None:
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        sql = f"INSERT INTO tasks ({self._TASK_COLUMNS_SQL}) VALUES ({placeholders})"  # nosec B608
        with self._lock:
            self._db.execute(
                sql,
                tuple(task[column] for column in self._TASK_COLUMNS),
            )

    def get_task(self, task_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks WHERE task_id = ?",  # nosec B608
                (task_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_task(row)

    def update_task(
        self,
        task_id: int,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """
        Apply column updates to a task.

        When expected_status is given the update only applies if the task
        is still in that status. Returns the number of rows changed.
        """
        unknown = set(updates) - self._UPDATABLE_COLUMNS
        if unknown:
            msg = f"Cannot update task columns: {sorted(unknown)}"
            raise ValueError(msg)

        assignments = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            int(value) if isinstance(value, bool) else value for value in updates.values()
        ]
        sql = f"UPDATE tasks SET {assignments} WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status)

        with self._lock:
            cursor = self._db.execute(sql, tuple(params))
            return cursor.rowcount

    def list_tasks(
        self,
        status: str | None,
        client_id: str | None,
        freelancer_id: str | None,
        offset: int | None,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        conditions: list[str] = []
        params: list[object] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status)
        if client_id is not None:
            conditions.append("client_id = ?")
            params.append(client_id)
        if freelancer_id is not None:
            conditions.append("freelancer_id = ?")
            params.append(freelancer_id)

        sql = f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks"  # nosec B608
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY task_id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        elif offset is not None:
            sql += " LIMIT -1"
        if offset is not None:
            sql += " OFFSET ?"
            params.append(offset)

        with self._lock:
            rows = self._db.execute(sql, tuple(params)).fetchall()
            return [self._row_to_task(row) for row in rows]

    def count_tasks_by_status(self) -> dict[str, int]:
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) AS total FROM tasks GROUP BY status"
            ).fetchall()
            return {row["status"]: int(row["total"]) for row in rows}

    # ------------------------------------------------------------------
    # Per-user state
    # ------------------------------------------------------------------

    def append_user_task(self, agent_id: str, task_id: int) -> None:
        with self._lock:
            self._db.execute(
                "INSERT INTO user_tasks (agent_id, task_id) VALUES (?, ?)",
                (agent_id, task_id),
            )

    def get_user_tasks(self, agent_id: str) -> list[int]:
        with self._lock:
            rows = self._db.execute(
                "SELECT task_id FROM user_tasks WHERE agent_id = ? ORDER BY entry_id",
                (agent_id,),
            ).fetchall()
            return [int(row["task_id"]) for row in rows]

    def increment_completed(self, agent_id: str) -> None:
        with self._lock:
            self._db.execute(
                "INSERT INTO completed_counts (agent_id, completed) VALUES (?, 1) "
                "ON CONFLICT(agent_id) DO UPDATE SET completed = completed + 1",
                (agent_id,),
            )

    def get_completed_count(self, agent_id: str) -> int:
        with self._lock:
            row = self._db.execute(
                "SELECT completed FROM completed_counts WHERE agent_id = ?",
                (agent_id,),
            ).fetchone()
            return 0 if row is None else int(row["completed"])

    # ------------------------------------------------------------------
    # Notification log
    # ------------------------------------------------------------------

    def insert_event(
        self,
        event_type: str,
        task_id: int,
        agent_id: str,
        payload: dict[str, Any],
        timestamp: int,
    ) -> int:
        with self._lock:
            cursor = self._db.execute(
                "INSERT INTO events (event_type, task_id, agent_id, payload, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (event_type, task_id, agent_id, json.dumps(payload, sort_keys=True), timestamp),
            )
            if cursor.lastrowid is None:
                msg = "Event insert did not return an id"
                raise RuntimeError(msg)
            return cursor.lastrowid

    def list_events(
        self,
        after: int | None,
        limit: int,
        task_id: int | None,
        event_type: str | None,
    ) -> list[dict[str, Any]]:
        """Events in emission order, oldest first."""
        conditions: list[str] = []
        params: list[object] = []
        if after is not None:
            conditions.append("event_id > ?")
            params.append(after)
        if task_id is not None:
            conditions.append("task_id = ?")
            params.append(task_id)
        if event_type is not None:
            conditions.append("event_type = ?")
            params.append(event_type)

        where = " AND ".join(conditions) if conditions else "1=1"
        sql = (
            "SELECT event_id, event_type, task_id, agent_id, payload, timestamp "
            f"FROM events WHERE {where} ORDER BY event_id LIMIT ?"  # nosec B608
        )
        params.append(limit)

        with self._lock:
            rows = self._db.execute(sql, tuple(params)).fetchall()
            return [
                {
                    "event_id": row["event_id"],
                    "event_type": row["event_type"],
                    "task_id": row["task_id"],
                    "agent_id": row["agent_id"],
                    "timestamp": row["timestamp"],
                    "payload": json.loads(row["payload"]),
                }
                for row in rows
            ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
