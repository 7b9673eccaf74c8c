# tests/fakes.py

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from vectask.core.errors import BackendError, SyncError


class FakeClock:
    """Deterministic clock for the store (advance() moves time forward)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 12, 22, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeBackend:
    """
    In-memory TaskBackend with failure injection.

    - fail_on(method) makes every call of that method raise BackendError
      until heal(method) is called
    - calls are recorded as (method, args) for assertions
    - delete_tasks cascades to subtasks and edges like the SQLite schema
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.edges: list[tuple[str, str]] = []
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._fail: dict[str, BackendError] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def fail_on(self, method: str, message: str = "backend unavailable") -> None:
        self._fail[method] = BackendError(message)

    def heal(self, method: str | None = None) -> None:
        if method is None:
            self._fail.clear()
        else:
            self._fail.pop(method, None)

    def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        err = self._fail.get(method)
        if err is not None:
            raise err

    def calls_of(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def _new_row(self, fields: dict[str, Any]) -> dict[str, Any]:
        self._seq += 1
        stamp = (datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=self._seq)).isoformat()
        row: dict[str, Any] = {
            "id": f"t{self._seq:04d}",
            "slug": f"slug-{self._seq}",
            "status": "todo",
            "actual_minutes": 0,
            "created_at": stamp,
            "updated_at": stamp,
        }
        row.update(fields)
        self.rows[row["id"]] = row
        return dict(row)

    def seed(self, **fields: Any) -> dict[str, Any]:
        """Insert a row directly (no call recorded, no failure injection)."""
        with self._lock:
            return self._new_row(fields)

    # ---- TaskBackend ----

    def select_tasks(self) -> list[dict[str, Any]]:
        self._enter("select_tasks")
        with self._lock:
            return [dict(r) for r in sorted(self.rows.values(), key=lambda r: r["created_at"], reverse=True)]

    def insert_task(self, fields: dict[str, Any]) -> dict[str, Any]:
        self._enter("insert_task", dict(fields))
        with self._lock:
            return self._new_row(fields)

    def update_task(self, task_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._enter("update_task", task_id, dict(fields))
        with self._lock:
            row = self.rows.get(task_id)
            if row is None:
                raise BackendError(f"Task {task_id} not found")
            row.update(fields)
            return dict(row)

    def delete_tasks(self, task_ids) -> None:
        ids = list(task_ids)
        self._enter("delete_tasks", ids)
        with self._lock:
            doomed = set(ids)
            changed = True
            while changed:
                extra = {r["id"] for r in self.rows.values() if r.get("parent_id") in doomed} - doomed
                doomed |= extra
                changed = bool(extra)
            for tid in doomed:
                self.rows.pop(tid, None)
            self.edges = [(p, s) for p, s in self.edges if p not in doomed and s not in doomed]

    def select_dependencies(self) -> list[tuple[str, str]]:
        self._enter("select_dependencies")
        return list(self.edges)

    def insert_dependency(self, predecessor_id: str, successor_id: str) -> None:
        self._enter("insert_dependency", predecessor_id, successor_id)
        if (predecessor_id, successor_id) not in self.edges:
            self.edges.append((predecessor_id, successor_id))

    def delete_dependency(self, predecessor_id: str, successor_id: str) -> None:
        self._enter("delete_dependency", predecessor_id, successor_id)
        self.edges = [e for e in self.edges if e != (predecessor_id, successor_id)]


class FakeCalendarClient:
    """
    In-memory CalendarClient recording every call as (method, calendar_id, event_id).

    fail_on(method) makes that method raise SyncError; hold(method) parks
    calls of that method until the returned event is set.
    """

    def __init__(self) -> None:
        self.events: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.tokens: list[str] = []
        self._fail: dict[str, SyncError] = {}
        self._gates: dict[str, asyncio.Event] = {}
        self._seq = 0

    def fail_on(self, method: str, message: str = "calendar unavailable") -> None:
        self._fail[method] = SyncError(message)

    def hold(self, method: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[method] = gate
        return gate

    async def _pass(self, method: str) -> None:
        gate = self._gates.get(method)
        if gate is not None:
            await gate.wait()

    def _enter(self, method: str, calendar_id: str, event_id: str | None, token: str) -> None:
        self.calls.append((method, calendar_id, event_id))
        self.tokens.append(token)
        err = self._fail.get(method)
        if err is not None:
            raise err

    def methods(self) -> list[str]:
        return [c[0] for c in self.calls]

    def add_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> None:
        self.events[(calendar_id, event_id)] = {**body, "id": event_id}

    async def create_event(self, calendar_id: str, body: dict[str, Any], *, token: str) -> dict[str, Any]:
        self._enter("create", calendar_id, None, token)
        await self._pass("create")
        self._seq += 1
        event_id = f"evt{self._seq}"
        self.add_event(calendar_id, event_id, body)
        return dict(self.events[(calendar_id, event_id)])

    async def replace_event(
            self,
            calendar_id: str,
            event_id: str,
            body: dict[str, Any],
            *,
            token: str,
    ) -> dict[str, Any] | None:
        self._enter("replace", calendar_id, event_id, token)
        await self._pass("replace")
        if (calendar_id, event_id) not in self.events:
            return None
        self.add_event(calendar_id, event_id, body)
        return dict(self.events[(calendar_id, event_id)])

    async def get_event(self, calendar_id: str, event_id: str, *, token: str) -> dict[str, Any] | None:
        self._enter("get", calendar_id, event_id, token)
        await self._pass("get")
        event = self.events.get((calendar_id, event_id))
        return dict(event) if event is not None else None

    async def delete_event(self, calendar_id: str, event_id: str, *, token: str) -> bool:
        self._enter("delete", calendar_id, event_id, token)
        await self._pass("delete")
        return self.events.pop((calendar_id, event_id), None) is not None
