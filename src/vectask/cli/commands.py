# src/vectask/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar, cast

from ..core.errors import BackendError, SyncError, ValidationError
from ..core.state import AppState
from ..tasks.dependency_check import group_by_level
from ..tasks.recurrence import describe_recurrence
from ..tasks.task_models import RecurrenceRule, RecurrenceType, Task, TaskData, format_when, parse_when

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

T = TypeVar("T")

logger = logging.getLogger(__name__)

_NONE_WORDS = {"none", "-", "clear", "off"}


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Engine errors are turned into a one-line reply; anything else
        propagates to the connector.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except ValidationError as e:
            return f"Invalid input: {e}"
        except BackendError as e:
            logger.info("Command /%s failed in backend: %s", name, e)
            return f"Not saved (changes rolled back): {e}"
        except SyncError as e:
            return f"Calendar error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _run(state: AppState, coro: Coroutine[Any, Any, T]) -> T:
    return state.engine.run(coro)


def _short(task_id: str) -> str:
    return task_id[:8]


def _resolve(state: AppState, raw: str) -> str:
    return state.store.resolve_id(raw)


def _need(args: list[str], n: int, usage: str) -> None:
    if len(args) < n:
        raise ValidationError(f"Usage: {usage}")


def _fmt_task(state: AppState, task: Task) -> str:
    mark = {"todo": " ", "doing": ">", "pending": "~", "done": "x"}[task.status.value]
    bits: list[str] = []
    if task.deadline is not None:
        bits.append(f"due {format_when(task.deadline)}")
    if task.is_scheduled:
        bits.append(f"plan {format_when(task.planned_start)}..{format_when(task.planned_end)}")
    if task.importance is not None:
        bits.append(f"imp {task.importance}")
    if task.recurrence is not None:
        bits.append(describe_recurrence(task.recurrence).lower())
    if task.linkage is not None:
        bits.append("cal")
    warn = " !" if state.store.warnings_for(task.id) else ""
    extra = f"  ({', '.join(bits)})" if bits else ""
    return f"[{mark}] {_short(task.id)} {task.title}{extra}{warn}"


def _fmt_list(state: AppState, tasks: list[Task], empty: str) -> str:
    if not tasks:
        return empty
    return "\n".join(_fmt_task(state, t) for t in tasks)


def _when_arg(raw: str) -> Any:
    return None if raw.lower() in _NONE_WORDS else parse_when(raw)


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list       -> tasks in the current scope
    /list all   -> every task, ignoring scope
    """
    store = state.store
    source = store.tasks if args and args[0].lower() == "all" else store.scoped_tasks()
    crumbs = " / ".join(t.title for t in store.breadcrumb(store.config.current_scope)) or "(root)"
    body = _fmt_list(state, store.visible_tasks(source), "No tasks.")
    return f"Scope: {crumbs}\n{body}"


def cmd_scope(state: AppState, args: list[str]) -> str:
    """
    /scope        -> show breadcrumb
    /scope <id>   -> enter a task
    /scope ..     -> go up one level
    /scope /      -> back to root
    """
    store = state.store
    if args:
        target = args[0]
        if target == "/":
            store.set_scope(None)
        elif target == "..":
            current = store.get_task(store.config.current_scope or "")
            store.set_scope(current.parent_id if current else None)
        else:
            store.set_scope(_resolve(state, target))
    crumbs = store.breadcrumb(store.config.current_scope)
    return "Scope: " + (" / ".join(t.title for t in crumbs) or "(root)")


def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    _need(args, 1, "/add <title>")
    task = _run(state, state.store.add_task(TaskData(title=" ".join(args))))
    return f"Added {_short(task.id)} {task.title}"


def cmd_show(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/show <id>")
    store = state.store
    task = store.get_task(_resolve(state, args[0]))
    if task is None:
        # Deleted by a concurrent command between resolve and lookup.
        raise ValidationError(f"No task matches {args[0]!r}")
    lines = [
        f"{task.title}  [{task.status.value}]",
        f"  id: {task.id}",
        f"  slug: {task.slug}",
    ]
    if task.description:
        lines.append(f"  description: {task.description}")
    for label, value in (
        ("deadline", task.deadline),
        ("planned start", task.planned_start),
        ("planned end", task.planned_end),
        ("completed at", task.completed_at),
    ):
        if value is not None:
            lines.append(f"  {label}: {format_when(value)}")
    if task.importance is not None:
        lines.append(f"  importance: {task.importance}")
    if task.estimate_minutes is not None:
        lines.append(f"  estimate: {task.estimate_minutes} min")
    lines.append(f"  actual: {task.actual_minutes} min")
    lines.append(f"  repeat: {describe_recurrence(task.recurrence)}")
    if task.linkage is not None:
        lines.append(f"  calendar: {task.linkage.calendar_id} / {task.linkage.event_id}")
    for w in store.warnings_for(task.id):
        lines.append(f"  ! {w.reason}")
    return "\n".join(lines)


def cmd_status(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/status <id> <todo|doing|pending|done>")
    task = _run(state, state.store.update_status(_resolve(state, args[0]), args[1]))
    return f"{_short(task.id)} is now {task.status.value}"


def cmd_done(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/done <id> [<id> ...]")
    ids = [_resolve(state, a) for a in args]
    if len(ids) == 1:
        _run(state, state.store.complete_task(ids[0]))
        return f"Done: {_short(ids[0])}"
    done = _run(state, state.store.complete_tasks(ids))
    return f"Done: {len(done)} task(s)"


def cmd_due(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/due <id> <YYYY-MM-DD[THH:MM]|none>")
    task = _run(state, state.store.update_task(_resolve(state, args[0]), deadline=_when_arg(args[1])))
    return f"Deadline of {_short(task.id)}: {format_when(task.deadline) or 'none'}"


def cmd_plan(state: AppState, args: list[str]) -> str:
    """
    /plan <id> <start> <end>
    /plan <id> none
    """
    _need(args, 2, "/plan <id> <start> <end> | /plan <id> none")
    task_id = _resolve(state, args[0])
    if args[1].lower() in _NONE_WORDS:
        changes = {"planned_start": None, "planned_end": None}
    else:
        _need(args, 3, "/plan <id> <start> <end>")
        changes = {"planned_start": _when_arg(args[1]), "planned_end": _when_arg(args[2])}
    task = _run(state, state.store.update_task(task_id, **changes))
    if not task.is_scheduled:
        return f"Plan of {_short(task.id)} cleared"
    return f"Planned {_short(task.id)}: {format_when(task.planned_start)} .. {format_when(task.planned_end)}"


def cmd_repeat(state: AppState, args: list[str]) -> str:
    """
    /repeat <id> daily|weekly|monthly [interval] [days]
    /repeat <id> none

    days: comma-separated weekday indexes, 0=Sunday (weekly only), e.g. 2,4
    """
    _need(args, 2, "/repeat <id> daily|weekly|monthly [interval] [days] | none")
    task_id = _resolve(state, args[0])
    kind = args[1].lower()
    rule: RecurrenceRule | None
    if kind in _NONE_WORDS:
        rule = None
    else:
        try:
            rtype = RecurrenceType(kind)
        except ValueError:
            raise ValidationError(f"Unknown repeat type {kind!r}") from None
        interval = 1
        if len(args) > 2:
            if not args[2].isdigit():
                raise ValidationError(f"Interval must be a positive number, got {args[2]!r}")
            interval = int(args[2])
        days = _parse_days(args[3]) if len(args) > 3 else ()
        if days and rtype != RecurrenceType.WEEKLY:
            raise ValidationError("Weekdays only apply to weekly repeats")
        rule = RecurrenceRule(type=rtype, interval=interval, days_of_week=days)
    task = _run(state, state.store.update_task(task_id, recurrence=rule))
    return f"Repeat of {_short(task.id)}: {describe_recurrence(task.recurrence)}"


def _parse_days(raw: str) -> tuple[int, ...]:
    try:
        return tuple(sorted({int(p) for p in raw.split(",") if p.strip()}))
    except ValueError:
        raise ValidationError(f"Weekdays must be numbers 0-6, got {raw!r}") from None


def cmd_importance(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/importance <id> <0-100|none>")
    raw = args[1]
    if raw.lower() in _NONE_WORDS:
        value = None
    elif raw.isdigit():
        value = int(raw)
    else:
        raise ValidationError(f"Importance must be a number 0-100, got {raw!r}")
    task = _run(state, state.store.update_importance(_resolve(state, args[0]), value))
    return f"Importance of {_short(task.id)}: {task.importance if task.importance is not None else 'none'}"


def cmd_dep(state: AppState, args: list[str]) -> str:
    """
    /dep add <before> <after>
    /dep rm <before> <after>
    /dep <id>                  -> list predecessors of a task
    """
    _need(args, 1, "/dep add|rm <before> <after> | /dep <id>")
    store = state.store
    sub = args[0].lower()
    if sub in ("add", "rm"):
        _need(args, 3, f"/dep {sub} <before> <after>")
        pred, succ = _resolve(state, args[1]), _resolve(state, args[2])
        if sub == "add":
            _run(state, store.add_dependency(pred, succ))
            return f"{_short(succ)} now depends on {_short(pred)}"
        _run(state, store.remove_dependency(pred, succ))
        return f"Dependency {_short(pred)} -> {_short(succ)} removed"

    task_id = _resolve(state, args[0])
    preds = [store.get_task(e.predecessor_id) for e in store.dependencies if e.successor_id == task_id]
    lines = [f"Predecessors of {_short(task_id)}:"]
    lines.extend(f"  {_fmt_task(state, t)}" for t in preds if t is not None)
    return "\n".join(lines) if len(lines) > 1 else f"{_short(task_id)} has no predecessors."


def cmd_warn(state: AppState, args: list[str]) -> str:
    store = state.store
    targets = [_resolve(state, a) for a in args] or [t.id for t in store.visible_tasks(store.scoped_tasks())]
    lines: list[str] = []
    for tid in targets:
        task = store.get_task(tid)
        for w in store.warnings_for(tid):
            lines.append(f"{_short(tid)} {task.title if task else ''}: {w.reason}")
    return "\n".join(lines) or "No dependency warnings."


def cmd_flow(state: AppState, args: list[str]) -> str:
    store = state.store
    rows = group_by_level(store.visible_tasks(store.scoped_tasks()), store.dependencies)
    if not rows:
        return "No tasks."
    lines: list[str] = []
    for level, row in enumerate(rows):
        lines.append(f"Level {level}:")
        lines.extend(f"  {_fmt_task(state, t)}" for t in row)
    return "\n".join(lines)


def cmd_unscheduled(state: AppState, args: list[str]) -> str:
    store = state.store
    return _fmt_list(state, store.visible_tasks(store.unscheduled_tasks()), "Everything is scheduled.")


def cmd_timer(state: AppState, args: list[str]) -> str:
    """
    /timer            -> show running timer
    /timer start <id> -> start (marks the task as doing)
    /timer stop       -> stop and record elapsed minutes
    """
    store = state.store
    sub = args[0].lower() if args else ""
    if sub == "start":
        _need(args, 2, "/timer start <id>")
        task_id = _resolve(state, args[1])
        _run(state, store.start_timer(task_id))
        return f"Timer started for {_short(task_id)}"
    if sub == "stop":
        minutes = _run(state, store.stop_timer())
        return "No timer running." if minutes is None else f"Timer stopped (+{minutes} min)"

    task_id = store.config.timer_task_id
    if not task_id:
        return "No timer running."
    secs = store.timer_elapsed_seconds()
    return f"Timer on {_short(task_id)}: {secs // 3600:02d}:{secs % 3600 // 60:02d}:{secs % 60:02d}"


def cmd_completed(state: AppState, args: list[str]) -> str:
    """
    /completed              -> toggle showing done tasks
    /completed on|off
    /completed days <N|all> -> hide done tasks older than N days
    """
    store = state.store
    if not args:
        shown = store.toggle_show_completed()
    elif args[0].lower() == "days":
        _need(args, 2, "/completed days <N|all>")
        raw = args[1].lower()
        if raw == "all":
            store.set_done_filter_days(None)
        elif raw.isdigit():
            store.set_done_filter_days(int(raw))
        else:
            raise ValidationError(f"Expected a number of days, got {raw!r}")
        shown = store.config.show_completed
    else:
        store.set_show_completed(args[0].lower() in ("on", "1", "true", "yes"))
        shown = store.config.show_completed
    days = store.config.done_filter_days
    window = f", last {days} day(s)" if days is not None else ""
    return f"Completed tasks: {'shown' if shown else 'hidden'}{window}"


def cmd_calendar(state: AppState, args: list[str]) -> str:
    store = state.store
    if args:
        store.set_target_calendar(args[0])
    sync = "on" if state.calendar is not None else "off"
    return f"Target calendar: {store.config.target_calendar_id} (sync {sync})"


def cmd_rm(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    _need(args, 1, "/rm <id> [<id> ...]")
    ids = [_resolve(state, a) for a in args]
    removed = _run(state, state.store.delete_tasks(ids))
    return f"Deleted {len(removed)} task(s) (including subtasks)."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="List tasks in scope: /list [all].", aliases=["ls"])
registry.register("scope", cmd_scope, help_text="Navigate: /scope <id> | .. | /.", aliases=["cd"])
registry.register("add", cmd_add, help_text="Add a task to the current scope: /add <title>.")
registry.register("show", cmd_show, help_text="Task details: /show <id>.")
registry.register("status", cmd_status, help_text="Set status: /status <id> todo|doing|pending|done.")
registry.register("done", cmd_done, help_text="Complete tasks: /done <id> [<id> ...].")
registry.register("due", cmd_due, help_text="Set deadline: /due <id> <date|none>.")
registry.register("plan", cmd_plan, help_text="Set planned window: /plan <id> <start> <end> | none.")
registry.register("repeat", cmd_repeat, help_text="Recurrence: /repeat <id> daily|weekly|monthly [n] [days] | none.")
registry.register("importance", cmd_importance, help_text="Importance: /importance <id> <0-100|none>.")
registry.register("dep", cmd_dep, help_text="Dependencies: /dep add|rm <before> <after> | /dep <id>.")
registry.register("warn", cmd_warn, help_text="Dependency warnings: /warn [<id> ...].")
registry.register("flow", cmd_flow, help_text="Tasks grouped by dependency level.")
registry.register("unscheduled", cmd_unscheduled, help_text="Tasks without a full planned window.")
registry.register("timer", cmd_timer, help_text="Time tracking: /timer start <id> | stop.")
registry.register("completed", cmd_completed, help_text="Done tasks: /completed [on|off] | days <N|all>.")
registry.register("calendar", cmd_calendar, help_text="Show or set the target calendar: /calendar [id].")
registry.register("rm", cmd_rm, help_text="Delete tasks and their subtasks: /rm <id> [<id> ...].")
