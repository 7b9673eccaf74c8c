# src/vectask/tasks/task_state.py

from __future__ import annotations

"""
Task state store.

Owns the canonical in-memory task and dependency collections. Every
mutation is optimistic:

    snapshot -> apply locally -> backend command -> keep (server row) | restore

Mutations of one task are serialized by a per-task asyncio.Lock; distinct
tasks proceed concurrently. Calendar reconciliation and recurrence
successors run as follow-up asyncio tasks that the mutating call does not
await; their outcomes are published to subscribers as StoreEvents.
"""

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

from ..calendar.sync import CalendarReconciler, SyncOutcome
from ..core.errors import BackendError, IntegrityError, SyncError, ValidationError
from ..core.ports import CredentialProvider, PreferencesRepo, TaskBackend
from ..core.prefs import StoreConfig
from .dependency_check import (
    DependencyWarning,
    assign_levels,
    dependency_warnings,
    would_create_cycle,
)
from .recurrence import next_due_date
from .task_models import (
    SYNC_FIELDS,
    UPDATABLE_FIELDS,
    WHEN_FIELDS,
    DependencyEdge,
    Linkage,
    RecurrenceRule,
    Task,
    TaskData,
    TaskStatus,
    encode_fields,
    parse_when,
    to_datetime,
)

logger = logging.getLogger(__name__)

_CURRENT_SCOPE: Any = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventKind(StrEnum):
    NOTICE = "notice"
    SYNC = "sync"
    RECURRENCE = "recurrence"


class Level(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StoreEvent:
    kind: EventKind
    level: Level
    message: str
    task_id: str | None = None
    outcome: SyncOutcome | None = None
    error: Exception | None = None


StoreListener = Callable[[StoreEvent], None]

_SYNC_MESSAGES: dict[SyncOutcome, tuple[Level, str]] = {
    SyncOutcome.CREATE_SUCCEEDED: (Level.SUCCESS, "Synced to calendar"),
    SyncOutcome.CREATE_FAILED: (Level.WARNING, "Saved, but calendar sync failed"),
    SyncOutcome.UPDATE_SUCCEEDED: (Level.SUCCESS, "Calendar event updated"),
    SyncOutcome.UPDATE_FAILED: (Level.WARNING, "Saved, but calendar update failed"),
    SyncOutcome.DELETE_SUCCEEDED: (Level.SUCCESS, "Calendar event removed"),
    SyncOutcome.DELETE_FAILED: (Level.WARNING, "Saved, but calendar event could not be removed"),
}


class TaskStateStore:
    def __init__(
            self,
            backend: TaskBackend,
            *,
            reconciler: CalendarReconciler | None = None,
            credentials: CredentialProvider | None = None,
            preferences: PreferencesRepo | None = None,
            config: StoreConfig | None = None,
            clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self._reconciler = reconciler
        self._credentials = credentials
        self._prefs = preferences
        if config is None:
            config = StoreConfig.from_dict(preferences.load() if preferences is not None else {})
        self.config = config
        self._clock = clock

        self._tasks: list[Task] = []
        self._edges: list[DependencyEdge] = []

        self._locks: dict[str, asyncio.Lock] = {}
        self._sync_locks: dict[str, asyncio.Lock] = {}
        self._edges_lock = asyncio.Lock()
        self._followups: set[asyncio.Task[None]] = set()
        self._listeners: list[StoreListener] = []

    # ---- read access ----

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    @property
    def dependencies(self) -> list[DependencyEdge]:
        return list(self._edges)

    def get_task(self, task_id: str) -> Task | None:
        idx = self._find(task_id)
        return self._tasks[idx] if idx is not None else None

    def resolve_id(self, prefix: str) -> str:
        """Full id for a unique id prefix (or an exact id)."""
        prefix = (prefix or "").strip()
        if not prefix:
            raise ValidationError("Task id is required")
        if self._find(prefix) is not None:
            return prefix
        matches = [t.id for t in self._tasks if t.id.startswith(prefix)]
        if not matches:
            raise ValidationError(f"No task matches {prefix!r}")
        if len(matches) > 1:
            raise ValidationError(f"Ambiguous task id {prefix!r} ({len(matches)} matches)")
        return matches[0]

    # ---- events ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed on %s event", event.kind.value)

    def _notice(self, level: Level, message: str, task_id: str | None = None, error: Exception | None = None) -> None:
        self._publish(StoreEvent(EventKind.NOTICE, level, message, task_id=task_id, error=error))

    # ---- loading ----

    async def load(self) -> None:
        """Fetch all tasks and dependency edges from the backend."""
        rows = await asyncio.to_thread(self._backend.select_tasks)
        pairs = await asyncio.to_thread(self._backend.select_dependencies)
        self._tasks = [Task.from_row(r) for r in rows]
        self._edges = [DependencyEdge(p, s) for p, s in pairs]
        logger.info("Loaded %d tasks and %d dependencies", len(self._tasks), len(self._edges))

    # ---- task mutations ----

    async def add_task(self, data: TaskData, *, use_scope: bool = True) -> Task:
        """
        Insert a task. Without an explicit parent it goes into the current
        scope (unless use_scope=False).
        """
        if use_scope and data.parent_id is None and self.get_task(self.config.current_scope or "") is not None:
            data = replace(data, parent_id=self.config.current_scope)
        raw = data.to_fields()
        unknown = set(raw) - UPDATABLE_FIELDS - {"status"}
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        fields = self._validate_changes(None, {k: v for k, v in raw.items() if k != "status"})
        fields["status"] = TaskStatus.parse(data.status)
        if fields["status"] == TaskStatus.DONE:
            fields["completed_at"] = self._clock()

        provisional = Task(id=f"local-{uuid.uuid4().hex}", **fields, created_at=self._clock())
        self._tasks.insert(0, provisional)

        committed: Task | None = None
        try:
            row = await asyncio.to_thread(self._backend.insert_task, encode_fields(fields))
            committed = Task.from_row(row)
        except BackendError as e:
            self._notice(Level.ERROR, f"Failed to create task: {e}", error=e)
            raise
        finally:
            idx = self._find(provisional.id)
            if idx is not None:
                if committed is None:
                    del self._tasks[idx]
                else:
                    self._tasks[idx] = committed

        logger.info("Task created id=%s title=%r", committed.id, committed.title)
        self._notice(Level.SUCCESS, "Task created", committed.id)
        if committed.has_dates:
            self._spawn(self._run_sync(committed.id, None), f"sync:{committed.id}")
        return committed

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        if not changes:
            raise ValidationError("No changes given")
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self._lock(task_id):
            original = self._require(task_id)
            fields = self._validate_changes(original, changes)
            committed = await self._commit(original, fields, action="update task")

        self._notice(Level.SUCCESS, "Task updated", task_id)
        if SYNC_FIELDS & set(fields):
            self._spawn(self._run_sync(task_id, original.linkage), f"sync:{task_id}")
        return committed

    async def update_status(self, task_id: str, status: str | TaskStatus) -> Task:
        new_status = TaskStatus.parse(status)
        async with self._lock(task_id):
            original = self._require(task_id)
            became_done = new_status == TaskStatus.DONE and not original.is_done
            if new_status == TaskStatus.DONE:
                completed_at = original.completed_at if original.is_done else self._clock()
            else:
                completed_at = None
            committed = await self._commit(
                original,
                {"status": new_status, "completed_at": completed_at},
                action="update status",
            )

        logger.info("Task %s status %s -> %s", task_id, original.status.value, new_status.value)
        self._notice(Level.SUCCESS, "Status updated", task_id)
        if became_done and original.recurrence is not None:
            self._spawn(self._create_successor(original), f"recurrence:{task_id}")
        return committed

    async def complete_task(self, task_id: str) -> Task:
        return await self.update_status(task_id, TaskStatus.DONE)

    async def update_importance(self, task_id: str, importance: int | None) -> Task:
        async with self._lock(task_id):
            original = self._require(task_id)
            fields = self._validate_changes(original, {"importance": importance})
            committed = await self._commit(original, fields, action="update importance")
        self._notice(Level.SUCCESS, "Importance updated", task_id)
        return committed

    async def delete_task(self, task_id: str) -> list[str]:
        return await self.delete_tasks([task_id])

    async def delete_tasks(self, task_ids: Iterable[str]) -> list[str]:
        """
        Delete tasks together with their subtasks. Returns the removed ids.

        Calendar events of the removed tasks are released first. If one of
        them cannot be removed, nothing is deleted and SyncError is raised,
        so the surviving linkage can be retried.
        """
        roots = list(dict.fromkeys(task_ids))
        if not roots:
            return []
        for tid in roots:
            self._require(tid)

        doomed = self._with_descendants(roots)
        async with self._locks_for(doomed, include_sync=True):
            linked = [t for t in self._tasks if t.id in doomed and t.linkage is not None]
            released = await self._sever_linkages(linked)

            removed = [(i, t) for i, t in enumerate(self._tasks) if t.id in doomed]
            dropped_edges = [e for e in self._edges if e.predecessor_id in doomed or e.successor_id in doomed]

            self._tasks = [t for t in self._tasks if t.id not in doomed]
            self._edges = [e for e in self._edges if e not in dropped_edges]

            ok = False
            try:
                await asyncio.to_thread(self._backend.delete_tasks, [t.id for _, t in removed])
                ok = True
            except BackendError as e:
                self._notice(Level.ERROR, f"Failed to delete: {e}", error=e)
                raise
            finally:
                if not ok:
                    for idx, task in removed:
                        self._tasks.insert(min(idx, len(self._tasks)), task)
                    self._edges.extend(e for e in dropped_edges if e not in self._edges)
                    await self._clear_linkages(released)

        removed_ids = [t.id for _, t in removed]
        for tid in removed_ids:
            self._locks.pop(tid, None)
            self._sync_locks.pop(tid, None)
        logger.info("Deleted %d task(s): %s", len(removed_ids), removed_ids)
        self._notice(Level.SUCCESS, f"Deleted {len(removed_ids)} task(s)")

        if self.config.timer_task_id in doomed:
            self._clear_timer()
        if self.config.current_scope in doomed:
            self.set_scope(None)
        return removed_ids

    async def complete_tasks(self, task_ids: Iterable[str], completed: bool = True) -> list[Task]:
        """
        Bulk complete / reopen. Commits task by task: on a backend failure the
        tasks not yet committed are rolled back and BackendError is raised.
        """
        ids = list(dict.fromkeys(task_ids))
        for tid in ids:
            self._require(tid)
        target = TaskStatus.DONE if completed else TaskStatus.TODO
        now = self._clock()

        committed: list[Task] = []
        spawned: list[Task] = []
        async with self._locks_for(ids):
            originals = {tid: self._require(tid) for tid in ids}
            changes: dict[str, dict[str, Any]] = {}
            for tid, task in originals.items():
                if completed:
                    stamp = task.completed_at if task.is_done else now
                else:
                    stamp = None
                changes[tid] = {"status": target, "completed_at": stamp}
                self._tasks[self._find_required(tid)] = replace(task, **changes[tid])

            pending = list(ids)
            try:
                for tid in ids:
                    row = await asyncio.to_thread(self._backend.update_task, tid, encode_fields(changes[tid]))
                    self._tasks[self._find_required(tid)] = Task.from_row(row)
                    committed.append(self._tasks[self._find_required(tid)])
                    pending.remove(tid)
                    if completed and not originals[tid].is_done and originals[tid].recurrence is not None:
                        spawned.append(originals[tid])
            except BackendError as e:
                for tid in pending:
                    self._restore(originals[tid])
                self._notice(Level.ERROR, f"Bulk update failed: {e}", error=e)
                raise
            finally:
                for task in spawned:
                    self._spawn(self._create_successor(task), f"recurrence:{task.id}")

        verb = "completed" if completed else "reopened"
        self._notice(Level.SUCCESS, f"{len(committed)} task(s) {verb}")
        return committed

    # ---- dependencies ----

    async def add_dependency(self, predecessor_id: str, successor_id: str) -> DependencyEdge:
        if predecessor_id == successor_id:
            raise ValidationError("A task cannot depend on itself")
        self._require(predecessor_id)
        self._require(successor_id)

        edge = DependencyEdge(predecessor_id, successor_id)
        async with self._edges_lock:
            if edge in self._edges:
                return edge
            if would_create_cycle(self._edges, predecessor_id, successor_id):
                raise ValidationError(
                    f"Dependency {predecessor_id} -> {successor_id} would create a cycle"
                )
            try:
                await asyncio.to_thread(self._backend.insert_dependency, predecessor_id, successor_id)
            except BackendError as e:
                self._notice(Level.ERROR, f"Failed to add dependency: {e}", error=e)
                raise
            self._edges.append(edge)

        logger.info("Dependency added %s -> %s", predecessor_id, successor_id)
        return edge

    async def remove_dependency(self, predecessor_id: str, successor_id: str) -> None:
        edge = DependencyEdge(predecessor_id, successor_id)
        async with self._edges_lock:
            try:
                await asyncio.to_thread(self._backend.delete_dependency, predecessor_id, successor_id)
            except BackendError as e:
                self._notice(Level.ERROR, f"Failed to remove dependency: {e}", error=e)
                raise
            self._edges = [e for e in self._edges if e != edge]
        logger.info("Dependency removed %s -> %s", predecessor_id, successor_id)

    # ---- derived views ----

    def scoped_tasks(self, parent_id: str | None = _CURRENT_SCOPE) -> list[Task]:
        """Direct children of parent_id, or roots when parent_id is None."""
        if parent_id is _CURRENT_SCOPE:
            parent_id = self.config.current_scope
        return [t for t in self._tasks if t.parent_id == parent_id]

    def unscheduled_tasks(self) -> list[Task]:
        return [t for t in self._tasks if t.planned_start is None or t.planned_end is None]

    def visible_tasks(self, tasks: Iterable[Task] | None = None, *, show_completed: bool | None = None) -> list[Task]:
        """
        Apply the completed-tasks toggle and the done-age filter.

        Done tasks without completed_at (legacy data) are kept when the
        age filter is on.
        """
        source = self._tasks if tasks is None else list(tasks)
        show = self.config.show_completed if show_completed is None else show_completed
        if not show:
            return [t for t in source if not t.is_done]

        days = self.config.done_filter_days
        if days is None:
            return list(source)
        cutoff = self._clock() - timedelta(days=days)
        out: list[Task] = []
        for t in source:
            if t.is_done and t.completed_at is not None:
                done_at, limit = t.completed_at, cutoff
                if done_at.tzinfo is None:
                    limit = limit.replace(tzinfo=None)
                if done_at <= limit:
                    continue
            out.append(t)
        return out

    def warnings_for(self, task_id: str) -> list[DependencyWarning]:
        return dependency_warnings(self._require(task_id), self._tasks, self._edges)

    def levels(self, tasks: Iterable[Task] | None = None) -> dict[str, int]:
        visible = self.visible_tasks(self.scoped_tasks()) if tasks is None else list(tasks)
        return assign_levels(visible, self._edges)

    def breadcrumb(self, task_id: str | None) -> list[Task]:
        """Ancestors of task_id (root first), ending with the task itself."""
        chain: list[Task] = []
        seen: set[str] = set()
        current = self.get_task(task_id) if task_id else None
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            current = self.get_task(current.parent_id) if current.parent_id else None
        chain.reverse()
        return chain

    # ---- timer ----

    async def start_timer(self, task_id: str) -> None:
        if self.config.timer_task_id and self.config.timer_task_id != task_id:
            await self.stop_timer()
        await self.update_status(task_id, TaskStatus.DOING)
        self.config.timer_task_id = task_id
        self.config.timer_started_at = self._clock()
        self._save_prefs()
        logger.info("Timer started for task %s", task_id)

    async def stop_timer(self) -> int | None:
        """Stop the timer and add the elapsed minutes to actual_minutes."""
        task_id, started = self.config.timer_task_id, self.config.timer_started_at
        if not task_id or started is None:
            return None

        elapsed = round(self.timer_elapsed_seconds() / 60)
        async with self._lock(task_id):
            original = self.get_task(task_id)
            if original is None:
                logger.info("Timer task %s no longer exists; clearing timer", task_id)
            else:
                await self._commit(
                    original,
                    {"actual_minutes": original.actual_minutes + elapsed},
                    action="record time",
                )
        self._clear_timer()
        logger.info("Timer stopped for task %s (+%d min)", task_id, elapsed)
        return elapsed

    def timer_elapsed_seconds(self) -> int:
        started = self.config.timer_started_at
        if started is None:
            return 0
        now = self._clock()
        if started.tzinfo is None:
            now = now.replace(tzinfo=None)
        return max(0, int((now - started).total_seconds()))

    def _clear_timer(self) -> None:
        self.config.timer_task_id = None
        self.config.timer_started_at = None
        self._save_prefs()

    # ---- preferences ----

    def set_scope(self, parent_id: str | None) -> None:
        if parent_id is not None:
            self._require(parent_id)
        self.config.current_scope = parent_id
        self._save_prefs()

    def set_show_completed(self, value: bool) -> None:
        self.config.show_completed = bool(value)
        self._save_prefs()

    def toggle_show_completed(self) -> bool:
        self.set_show_completed(not self.config.show_completed)
        return self.config.show_completed

    def set_target_calendar(self, calendar_id: str) -> None:
        calendar_id = (calendar_id or "").strip()
        if not calendar_id:
            raise ValidationError("Calendar id is required")
        self.config.target_calendar_id = calendar_id
        self._save_prefs()

    def set_done_filter_days(self, days: int | None) -> None:
        if days is not None and days < 0:
            raise ValidationError("done_filter_days must be >= 0")
        self.config.done_filter_days = days
        self._save_prefs()

    def _save_prefs(self) -> None:
        if self._prefs is not None:
            self._prefs.save(self.config.to_dict())

    # ---- follow-ups ----

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._followups.add(task)
        task.add_done_callback(self._followup_done)

    def _followup_done(self, task: asyncio.Task[None]) -> None:
        self._followups.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Follow-up %s crashed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait until all follow-up work (sync, recurrence) has finished."""
        while self._followups:
            await asyncio.gather(*list(self._followups), return_exceptions=True)

    async def _run_sync(self, task_id: str, previous_linkage: Linkage | None) -> None:
        if self._reconciler is None:
            return
        async with self._sync_lock(task_id):
            task = self.get_task(task_id)
            if task is None:
                logger.debug("Sync skipped: task %s no longer exists", task_id)
                return

            token = self._credentials.token() if self._credentials is not None else None
            try:
                result = await self._reconciler.reconcile(
                    task,
                    previous_linkage,
                    token,
                    target_calendar_id=self.config.target_calendar_id,
                )
            except IntegrityError as e:
                self._publish(
                    StoreEvent(
                        EventKind.SYNC,
                        Level.ERROR,
                        f"Refused to delete a calendar event not created by this app ({e.event_id})",
                        task_id=task_id,
                        outcome=SyncOutcome.DELETE_FAILED,
                        error=e,
                    )
                )
                return

            if result.linkage_changed:
                linkage = result.linkage
                async with self._lock(task_id):
                    idx = self._find(task_id)
                    if idx is not None:
                        self._tasks[idx] = replace(
                            self._tasks[idx],
                            calendar_event_id=linkage.event_id if linkage else None,
                            calendar_id=linkage.calendar_id if linkage else None,
                        )

        if result.outcome != SyncOutcome.NOOP:
            level, message = _SYNC_MESSAGES[result.outcome]
            self._publish(
                StoreEvent(EventKind.SYNC, level, message, task_id=task_id, outcome=result.outcome, error=result.error)
            )

    async def _sever_linkages(self, tasks: list[Task]) -> list[str]:
        """
        Release the calendar events of tasks about to be deleted.

        Returns the ids whose event is gone. A failed release clears the
        linkage of those already released and raises SyncError. A foreign
        event is reported and left alone; the task may still be deleted.
        """
        if self._reconciler is None or not tasks:
            return []
        token = self._credentials.token() if self._credentials is not None else None

        released: list[str] = []
        for task in tasks:
            linkage = task.linkage
            if linkage is None:
                continue
            try:
                result = await self._reconciler.release(linkage, token)
            except IntegrityError as e:
                self._publish(
                    StoreEvent(
                        EventKind.SYNC,
                        Level.ERROR,
                        f"Refused to delete a calendar event not created by this app ({e.event_id})",
                        task_id=task.id,
                        outcome=SyncOutcome.DELETE_FAILED,
                        error=e,
                    )
                )
                continue

            if result.outcome == SyncOutcome.DELETE_FAILED:
                await self._clear_linkages(released)
                self._notice(Level.ERROR, "Not deleted: calendar event could not be removed", task.id, error=result.error)
                raise SyncError(f"Calendar event of task {task.id} could not be removed; nothing was deleted") from result.error
            if result.outcome == SyncOutcome.DELETE_SUCCEEDED:
                released.append(task.id)
                level, message = _SYNC_MESSAGES[result.outcome]
                self._publish(StoreEvent(EventKind.SYNC, level, message, task_id=task.id, outcome=result.outcome))
        return released

    async def _clear_linkages(self, task_ids: list[str]) -> None:
        """Forget linkages whose event is already gone (callers hold the task locks)."""
        for tid in task_ids:
            try:
                row = await asyncio.to_thread(
                    self._backend.update_task, tid, {"calendar_event_id": None, "calendar_id": None}
                )
            except BackendError as e:
                logger.warning("Failed to clear calendar linkage of %s: %s", tid, e)
                continue
            idx = self._find(tid)
            if idx is not None:
                self._tasks[idx] = Task.from_row(row)

    async def _create_successor(self, done: Task) -> None:
        rule = done.recurrence
        if rule is None:
            return
        if done.deadline is None:
            logger.info("Recurring task %s has no deadline; no next occurrence created", done.id)
            return

        due = next_due_date(done.deadline, rule)
        data = TaskData(
            title=done.title,
            description=done.description,
            parent_id=done.parent_id,
            importance=done.importance,
            estimate_minutes=done.estimate_minutes,
            deadline=due,
            recurrence=rule,
        )
        try:
            created = await self.add_task(data, use_scope=False)
        except (BackendError, ValidationError) as e:
            logger.error("Failed to create next occurrence of %s: %s", done.id, e)
            self._publish(
                StoreEvent(EventKind.RECURRENCE, Level.ERROR, "Failed to create next occurrence", task_id=done.id, error=e)
            )
            return
        logger.info("Next occurrence of %s created id=%s due=%s", done.id, created.id, due)
        self._publish(StoreEvent(EventKind.RECURRENCE, Level.SUCCESS, "Next occurrence created", task_id=created.id))

    # ---- internals ----

    def _lock(self, task_id: str) -> asyncio.Lock:
        return self._locks.setdefault(task_id, asyncio.Lock())

    def _sync_lock(self, task_id: str) -> asyncio.Lock:
        return self._sync_locks.setdefault(task_id, asyncio.Lock())

    @contextlib.asynccontextmanager
    async def _locks_for(self, task_ids: Iterable[str], *, include_sync: bool = False) -> AsyncIterator[None]:
        # Sorted acquisition keeps bulk operations deadlock-free. Sync locks
        # come first, matching _run_sync (sync lock, then task lock).
        ids = sorted(set(task_ids))
        async with contextlib.AsyncExitStack() as stack:
            if include_sync:
                for tid in ids:
                    await stack.enter_async_context(self._sync_lock(tid))
            for tid in ids:
                await stack.enter_async_context(self._lock(tid))
            yield

    def _find(self, task_id: str | None) -> int | None:
        for i, t in enumerate(self._tasks):
            if t.id == task_id:
                return i
        return None

    def _find_required(self, task_id: str) -> int:
        idx = self._find(task_id)
        if idx is None:
            raise ValidationError(f"Unknown task {task_id}")
        return idx

    def _require(self, task_id: str) -> Task:
        return self._tasks[self._find_required(task_id)]

    def _restore(self, original: Task) -> None:
        idx = self._find(original.id)
        if idx is not None:
            self._tasks[idx] = original

    async def _commit(self, original: Task, fields: dict[str, Any], *, action: str) -> Task:
        """Apply fields optimistically, persist, keep the server row or roll back."""
        idx = self._find_required(original.id)
        self._tasks[idx] = replace(original, **fields)

        committed: Task | None = None
        try:
            row = await asyncio.to_thread(self._backend.update_task, original.id, encode_fields(fields))
            committed = Task.from_row(row)
        except BackendError as e:
            logger.warning("Failed to %s %s, rolling back: %s", action, original.id, e)
            self._notice(Level.ERROR, f"Failed to {action}: {e}", original.id, error=e)
            raise
        finally:
            if committed is None:
                self._restore(original)
            else:
                self._tasks[self._find_required(original.id)] = committed
        return committed

    def _with_descendants(self, roots: Iterable[str]) -> set[str]:
        children: dict[str, list[str]] = {}
        for t in self._tasks:
            if t.parent_id:
                children.setdefault(t.parent_id, []).append(t.id)
        out: set[str] = set()
        stack = list(roots)
        while stack:
            tid = stack.pop()
            if tid in out:
                continue
            out.add(tid)
            stack.extend(children.get(tid, ()))
        return out

    def _validate_changes(self, task: Task | None, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize caller input; raise ValidationError before any state change."""
        out: dict[str, Any] = {}
        for key, value in changes.items():
            if key == "title":
                title = str(value or "").strip()
                if not title:
                    raise ValidationError("Title must not be empty")
                out[key] = title
            elif key == "description":
                out[key] = (str(value).strip() or None) if value is not None else None
            elif key == "importance":
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100):
                    raise ValidationError(f"Importance must be an integer 0-100, got {value!r}")
                out[key] = value
            elif key == "estimate_minutes":
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                    raise ValidationError(f"Estimate must be a non-negative integer, got {value!r}")
                out[key] = value
            elif key in WHEN_FIELDS:
                out[key] = parse_when(value)
            elif key == "recurrence":
                if value is None or isinstance(value, RecurrenceRule):
                    out[key] = value
                else:
                    out[key] = RecurrenceRule.from_dict(value)
            elif key == "parent_id":
                out[key] = self._check_parent(task, value)
            else:
                out[key] = value

        start = out.get("planned_start", task.planned_start if task else None)
        end = out.get("planned_end", task.planned_end if task else None)
        if start is not None and end is not None:
            s, e = to_datetime(start), to_datetime(end)
            if (s.tzinfo is None) == (e.tzinfo is None) and e < s:
                raise ValidationError("Planned end is before planned start")
        return out

    def _check_parent(self, task: Task | None, parent_id: str | None) -> str | None:
        if parent_id is None or parent_id == "":
            return None
        self._require(parent_id)
        if task is None:
            return parent_id
        if parent_id == task.id:
            raise ValidationError("A task cannot be its own parent")
        ancestor = self.get_task(parent_id)
        seen: set[str] = set()
        while ancestor is not None and ancestor.id not in seen:
            if ancestor.id == task.id:
                raise ValidationError("A task cannot be moved under its own subtask")
            seen.add(ancestor.id)
            ancestor = self.get_task(ancestor.parent_id) if ancestor.parent_id else None
        return parent_id
