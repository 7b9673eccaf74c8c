# src/vectask/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import secrets
import sqlite3
import time
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..core.errors import BackendError

logger = logging.getLogger(__name__)

# Columns a client may write; id/slug/created_at/updated_at are server-owned.
WRITABLE_COLUMNS = (
    "title",
    "description",
    "status",
    "parent_id",
    "importance",
    "estimate_minutes",
    "deadline",
    "planned_start",
    "planned_end",
    "actual_minutes",
    "completed_at",
    "recurrence",
    "calendar_event_id",
    "calendar_id",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_slug() -> str:
    """Timestamp + random suffix, e.g. '1734850000123-k3v9q'."""
    alphabet = "abcdefghijklmnopqrstuvwxyz0123456789"
    suffix = "".join(secrets.choice(alphabet) for _ in range(5))
    return f"{int(time.time() * 1000)}-{suffix}"


class SqliteTaskBackend:
    """
    SQLite implementation of the backend data service.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection (calls arrive from
      asyncio.to_thread workers)
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except BackendError:
            total = -1
        logger.info("SqliteTaskBackend ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    slug TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'todo',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("SqliteTaskBackend migration: added column %s", name)

            add_col("description", "TEXT")
            add_col("parent_id", "TEXT REFERENCES tasks(id) ON DELETE CASCADE")
            add_col("importance", "INTEGER")
            add_col("estimate_minutes", "INTEGER")
            add_col("deadline", "TEXT")
            add_col("planned_start", "TEXT")
            add_col("planned_end", "TEXT")
            add_col("actual_minutes", "INTEGER NOT NULL DEFAULT 0")
            add_col("completed_at", "TEXT")
            add_col("recurrence", "TEXT")
            add_col("calendar_event_id", "TEXT")
            add_col("calendar_id", "TEXT")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_dependencies (
                    predecessor_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    successor_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (predecessor_id, successor_id),
                    CHECK (predecessor_id <> successor_id)
                )
                """
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent_id ON tasks(parent_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_deps_successor ON task_dependencies(successor_id)")

            conn.commit()
        except sqlite3.Error as e:
            raise BackendError(f"Schema setup failed: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _clean_fields(fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - set(WRITABLE_COLUMNS)
        if unknown:
            raise BackendError(f"Unknown or read-only columns: {', '.join(sorted(unknown))}")
        return dict(fields)

    def _select_row(self, conn: sqlite3.Connection, task_id: str) -> dict[str, Any] | None:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return dict(row) if row else None

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        except sqlite3.Error as e:
            raise BackendError(f"count failed: {e}") from e
        finally:
            conn.close()

    def select_tasks(self) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC, rowid DESC").fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as e:
            raise BackendError(f"select tasks failed: {e}") from e
        finally:
            conn.close()

    def insert_task(self, fields: dict[str, Any]) -> dict[str, Any]:
        data = self._clean_fields(fields)
        title = str(data.get("title") or "").strip()
        if not title:
            raise BackendError("title is required")
        data["title"] = title
        data.setdefault("status", "todo")

        now = _now_iso()
        task_id = uuid.uuid4().hex

        conn = self._get_conn()
        try:
            # Slug collisions are astronomically rare; retry a couple of times anyway.
            for attempt in range(3):
                row = {"id": task_id, "slug": new_slug(), "created_at": now, "updated_at": now, **data}
                cols = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                try:
                    conn.execute(f"INSERT INTO tasks({cols}) VALUES ({placeholders})", tuple(row.values()))
                    conn.commit()
                    break
                except sqlite3.IntegrityError as e:
                    if "slug" not in str(e) or attempt == 2:
                        raise
                    logger.debug("Slug collision on insert, retrying")

            stored = self._select_row(conn, task_id)
            if stored is None:
                raise BackendError("Inserted task could not be read back")
            logger.debug("Task inserted id=%s slug=%s", task_id, stored["slug"])
            return stored
        except sqlite3.Error as e:
            raise BackendError(f"insert failed: {e}") from e
        finally:
            conn.close()

    def update_task(self, task_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        data = self._clean_fields(fields)
        if "title" in data and not str(data["title"] or "").strip():
            raise BackendError("title must not be empty")

        conn = self._get_conn()
        try:
            if data:
                assignments = [f"{name} = ?" for name in data]
                params = [*data.values(), _now_iso(), task_id]
                cur = conn.execute(
                    f"UPDATE tasks SET {', '.join(assignments)}, updated_at = ? WHERE id = ?",
                    params,
                )
                conn.commit()
                if cur.rowcount != 1:
                    raise BackendError(f"Task {task_id} not found")

            stored = self._select_row(conn, task_id)
            if stored is None:
                raise BackendError(f"Task {task_id} not found")
            return stored
        except sqlite3.Error as e:
            raise BackendError(f"update failed: {e}") from e
        finally:
            conn.close()

    def delete_tasks(self, task_ids: Iterable[str]) -> None:
        ids = [str(i) for i in task_ids]
        if not ids:
            return
        conn = self._get_conn()
        try:
            placeholders = ",".join("?" for _ in ids)
            cur = conn.execute(f"DELETE FROM tasks WHERE id IN ({placeholders})", ids)
            conn.commit()
            logger.debug("Deleted %d task rows (requested %d)", cur.rowcount, len(ids))
        except sqlite3.Error as e:
            raise BackendError(f"delete failed: {e}") from e
        finally:
            conn.close()

    # ---- dependencies ----

    def select_dependencies(self) -> list[tuple[str, str]]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT predecessor_id, successor_id FROM task_dependencies ORDER BY created_at, rowid"
            ).fetchall()
            return [(r["predecessor_id"], r["successor_id"]) for r in rows]
        except sqlite3.Error as e:
            raise BackendError(f"select dependencies failed: {e}") from e
        finally:
            conn.close()

    def insert_dependency(self, predecessor_id: str, successor_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO task_dependencies(predecessor_id, successor_id, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(predecessor_id, successor_id) DO NOTHING
                """,
                (predecessor_id, successor_id, _now_iso()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise BackendError(f"insert dependency failed: {e}") from e
        finally:
            conn.close()

    def delete_dependency(self, predecessor_id: str, successor_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM task_dependencies WHERE predecessor_id = ? AND successor_id = ?",
                (predecessor_id, successor_id),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise BackendError(f"delete dependency failed: {e}") from e
        finally:
            conn.close()
