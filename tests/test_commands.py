# tests/test_commands.py

from __future__ import annotations

import pytest

from vectask.cli.commands import CommandRegistry, registry
from vectask.core.errors import BackendError


def run(state, line: str) -> str:
    reply = registry.handle(state, line)
    assert reply is not None
    return reply


def first_id(state, title: str) -> str:
    return next(t.id for t in state.store.tasks if t.title == title)


def test_command_registry_routes_2_and_3_params(app_state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2"

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b")

    assert reg.handle(app_state, "/a x") == "h2"
    assert reg.handle(app_state, "/b y", emit=lambda _: None) == "h3"
    assert called == {"h2": 1, "h3": 1}


def test_command_registry_unknown_and_non_command(app_state) -> None:
    reg = CommandRegistry()
    assert reg.handle(app_state, "hello") is None
    assert "Unknown command" in (reg.handle(app_state, "/nope") or "")
    assert "Empty command" in (reg.handle(app_state, "/") or "")


def test_add_list_and_done(app_state) -> None:
    assert run(app_state, "/add Write report").startswith("Added ")
    task_id = first_id(app_state, "Write report")

    assert "Write report" in run(app_state, "/list")
    assert run(app_state, f"/done {task_id[:10]}") == f"Done: {task_id[:8]}"
    assert "Write report" not in run(app_state, "/list")

    run(app_state, "/completed on")
    assert "[x]" in run(app_state, "/list")


def test_scope_navigation(app_state) -> None:
    run(app_state, "/add Project")
    project = first_id(app_state, "Project")

    assert run(app_state, f"/scope {project}") == "Scope: Project"
    run(app_state, "/add Phase one")
    assert app_state.store.get_task(first_id(app_state, "Phase one")).parent_id == project
    assert run(app_state, "/scope ..") == "Scope: (root)"


def test_dates_repeat_and_show(app_state) -> None:
    run(app_state, "/add Review")
    tid = first_id(app_state, "Review")

    assert "2025-12-24" in run(app_state, f"/due {tid} 2025-12-24")
    assert "2025-12-22 .. 2025-12-23" in run(app_state, f"/plan {tid} 2025-12-22 2025-12-23")
    assert run(app_state, f"/repeat {tid} weekly 2 2,4").endswith("Every 2 weeks (Tue, Thu)")
    assert "importance" not in run(app_state, f"/show {tid}")
    run(app_state, f"/importance {tid} 80")

    shown = run(app_state, f"/show {tid}")
    assert "importance: 80" in shown
    assert "repeat: Every 2 weeks (Tue, Thu)" in shown
    assert "Plan of" in run(app_state, f"/plan {tid} none")


def test_validation_errors_become_replies(app_state) -> None:
    run(app_state, "/add A")
    tid = first_id(app_state, "A")

    assert run(app_state, f"/due {tid} someday").startswith("Invalid input")
    assert run(app_state, f"/importance {tid} 500").startswith("Invalid input")
    assert run(app_state, "/show nothing-like-this").startswith("Invalid input")
    assert run(app_state, "/done").startswith("Invalid input: Usage")


def test_dependencies_flow_and_warnings(app_state) -> None:
    run(app_state, "/add First")
    run(app_state, "/add Second")
    a, b = first_id(app_state, "First"), first_id(app_state, "Second")

    assert "depends on" in run(app_state, f"/dep add {a} {b}")
    assert run(app_state, f"/dep add {b} {a}").startswith("Invalid input")

    flow = run(app_state, "/flow")
    assert flow.index("First") < flow.index("Level 1") < flow.index("Second")

    run(app_state, f"/plan {b} 2025-12-22T10:00 2025-12-22T11:00")
    assert "has no planned schedule" in run(app_state, f"/warn {b}")
    assert "First" in run(app_state, f"/dep {b}")

    assert "removed" in run(app_state, f"/dep rm {a} {b}")
    assert run(app_state, "/warn") == "No dependency warnings."


def test_backend_failure_reports_rollback(app_state, monkeypatch: pytest.MonkeyPatch) -> None:
    run(app_state, "/add A")
    tid = first_id(app_state, "A")

    def broken(task_id, fields):
        raise BackendError("disk full")

    monkeypatch.setattr(app_state.backend, "update_task", broken)

    assert run(app_state, f"/due {tid} 2025-12-24").startswith("Not saved")
    assert app_state.store.get_task(tid).deadline is None


def test_timer_and_rm(app_state) -> None:
    run(app_state, "/add Parent")
    parent = first_id(app_state, "Parent")
    run(app_state, f"/scope {parent}")
    run(app_state, "/add Child")
    run(app_state, "/scope /")

    assert run(app_state, "/timer") == "No timer running."
    assert run(app_state, f"/timer start {parent}").startswith("Timer started")
    assert run(app_state, "/timer").startswith(f"Timer on {parent[:8]}")
    assert run(app_state, "/timer stop").startswith("Timer stopped")

    assert run(app_state, f"/rm {parent}") == "Deleted 2 task(s) (including subtasks)."
    assert app_state.store.tasks == []


def test_calendar_target_and_unscheduled(app_state) -> None:
    assert run(app_state, "/calendar work") == "Target calendar: work (sync off)"
    run(app_state, "/add Loose end")
    assert "Loose end" in run(app_state, "/unscheduled")
    assert "/add" in run(app_state, "/help")


def test_console_formats_follow_up_events() -> None:
    from vectask.calendar.sync import SyncOutcome
    from vectask.connectors.console_connector import format_event
    from vectask.tasks.task_state import EventKind, Level, StoreEvent

    notice = StoreEvent(EventKind.NOTICE, Level.SUCCESS, "Task created", task_id="abcdef123456")
    assert format_event(notice) is None

    sync = StoreEvent(
        EventKind.SYNC,
        Level.WARNING,
        "Saved, but calendar sync failed",
        task_id="abcdef123456",
        outcome=SyncOutcome.CREATE_FAILED,
    )
    assert format_event(sync) == "[SYNC][WARN] abcdef12 Saved, but calendar sync failed"


def test_show_reports_task_removed_after_lookup(app_state, monkeypatch: pytest.MonkeyPatch) -> None:
    run(app_state, "/add Write report")
    tid = first_id(app_state, "Write report")
    monkeypatch.setattr(app_state.store, "get_task", lambda task_id: None)

    assert run(app_state, f"/show {tid[:8]}").startswith("Invalid input")
