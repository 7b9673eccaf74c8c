# src/vectask/tasks/dependency_check.py

"""
Dependency conflict analysis and DAG layering.

Only time is checked: a predecessor that is not done yet is not a warning
by itself, only an overlapping or missing plan is.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from .task_models import DependencyEdge, Task, When, to_datetime

logger = logging.getLogger(__name__)


class WarningType(StrEnum):
    SCHEDULE = "schedule"
    UNPLANNED = "unplanned"


@dataclass(frozen=True, slots=True)
class DependencyWarning:
    predecessor_id: str
    predecessor_title: str
    type: WarningType
    reason: str
    predecessor_end: When | None = None
    successor_start: When | None = None


def _instants(a: When, b: When) -> tuple[datetime, datetime]:
    """Make two dates/datetimes comparable (date -> midnight, borrow tz if needed)."""
    da, db = to_datetime(a), to_datetime(b)
    if (da.tzinfo is None) != (db.tzinfo is None):
        if da.tzinfo is None:
            da = da.replace(tzinfo=db.tzinfo)
        else:
            db = db.replace(tzinfo=da.tzinfo)
    return da, db


def _fmt(value: When) -> str:
    if isinstance(value, datetime):
        return value.strftime("%m/%d %H:%M")
    return value.strftime("%m/%d")


def predecessors_of(task_id: str, edges: Iterable[DependencyEdge]) -> list[str]:
    return [e.predecessor_id for e in edges if e.successor_id == task_id]


def dependency_warnings(
    task: Task,
    all_tasks: Sequence[Task],
    all_edges: Iterable[DependencyEdge],
) -> list[DependencyWarning]:
    by_id = {t.id: t for t in all_tasks}
    warnings: list[DependencyWarning] = []

    for pred_id in predecessors_of(task.id, all_edges):
        pred = by_id.get(pred_id)
        if pred is None:
            logger.warning("Predecessor %s of task %s not found; skipping", pred_id, task.id)
            continue

        if task.planned_start is None:
            continue

        if pred.planned_end is not None:
            pred_end, start = _instants(pred.planned_end, task.planned_start)
            if pred_end > start:
                warnings.append(
                    DependencyWarning(
                        predecessor_id=pred.id,
                        predecessor_title=pred.title,
                        type=WarningType.SCHEDULE,
                        reason=(
                            f"Scheduled to start ({_fmt(task.planned_start)}) before "
                            f"{pred.title} is planned to end ({_fmt(pred.planned_end)})"
                        ),
                        predecessor_end=pred.planned_end,
                        successor_start=task.planned_start,
                    )
                )
        else:
            warnings.append(
                DependencyWarning(
                    predecessor_id=pred.id,
                    predecessor_title=pred.title,
                    type=WarningType.UNPLANNED,
                    reason=f"{pred.title} has no planned schedule",
                    successor_start=task.planned_start,
                )
            )

    logger.debug("Dependency check task=%s warnings=%d", task.id, len(warnings))
    return warnings


def has_unsatisfied_dependencies(
    task: Task, all_tasks: Sequence[Task], all_edges: Iterable[DependencyEdge]
) -> bool:
    return bool(dependency_warnings(task, all_tasks, all_edges))


def unsatisfied_predecessors(
    task_id: str, all_tasks: Sequence[Task], all_edges: Iterable[DependencyEdge]
) -> list[Task]:
    """Predecessor tasks that produce at least one warning for task_id."""
    task = next((t for t in all_tasks if t.id == task_id), None)
    if task is None:
        return []
    flagged = {w.predecessor_id for w in dependency_warnings(task, all_tasks, all_edges)}
    return [t for t in all_tasks if t.id in flagged]


def assign_levels(visible_tasks: Sequence[Task], all_edges: Iterable[DependencyEdge]) -> dict[str, int]:
    """
    Topological level per visible task (0 = no visible predecessors).

    Edges with an endpoint outside visible_tasks are ignored. A node met
    again on the current recursion path counts as level 0, so a cycle in
    stored data truncates instead of recursing forever.
    """
    visible = {t.id for t in visible_tasks}
    preds: dict[str, list[str]] = {tid: [] for tid in visible}
    for e in all_edges:
        if e.predecessor_id in visible and e.successor_id in visible:
            preds[e.successor_id].append(e.predecessor_id)

    levels: dict[str, int] = {}
    on_path: set[str] = set()

    def level_of(tid: str) -> int:
        if tid in levels:
            return levels[tid]
        if tid in on_path:
            logger.warning("Dependency cycle through task %s; truncating level", tid)
            return 0
        if not preds[tid]:
            levels[tid] = 0
            return 0

        on_path.add(tid)
        try:
            lvl = 1 + max(level_of(p) for p in preds[tid])
        finally:
            on_path.discard(tid)
        levels[tid] = lvl
        return lvl

    for t in visible_tasks:
        level_of(t.id)
    return levels


def group_by_level(visible_tasks: Sequence[Task], all_edges: Iterable[DependencyEdge]) -> list[list[Task]]:
    """Rows of tasks per level, in input order within a row (for graph layout)."""
    levels = assign_levels(visible_tasks, all_edges)
    if not levels:
        return []
    rows: list[list[Task]] = [[] for _ in range(max(levels.values()) + 1)]
    for t in visible_tasks:
        rows[levels.get(t.id, 0)].append(t)
    return rows


def would_create_cycle(edges: Iterable[DependencyEdge], predecessor_id: str, successor_id: str) -> bool:
    """True if adding predecessor -> successor closes a cycle (incl. self-loop)."""
    if predecessor_id == successor_id:
        return True
    succs: dict[str, list[str]] = {}
    for e in edges:
        succs.setdefault(e.predecessor_id, []).append(e.successor_id)

    # Cycle iff predecessor is already reachable from successor.
    stack = [successor_id]
    seen: set[str] = set()
    while stack:
        node = stack.pop()
        if node == predecessor_id:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(succs.get(node, ()))
    return False
