# tests/test_calendar_sync.py

from __future__ import annotations

from datetime import date

import pytest

from vectask.calendar.events import build_event
from vectask.calendar.sync import CalendarReconciler, SyncOutcome
from vectask.core.errors import IntegrityError
from vectask.tasks.task_models import Linkage, Task

from .fakes import FakeBackend, FakeCalendarClient


def make_reconciler(**fields) -> tuple[CalendarReconciler, FakeBackend, FakeCalendarClient, Task]:
    backend = FakeBackend()
    calendar = FakeCalendarClient()
    row = backend.seed(title="Write report", **fields)
    return CalendarReconciler(calendar, backend), backend, calendar, Task.from_row(row)


@pytest.mark.asyncio
async def test_no_linkage_and_no_dates_is_noop() -> None:
    rec, backend, calendar, task = make_reconciler()
    result = await rec.reconcile(task, None, "tok")
    assert result.outcome == SyncOutcome.NOOP
    assert calendar.calls == []


@pytest.mark.asyncio
async def test_missing_credential_is_noop() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24")
    result = await rec.reconcile(task, None, None)
    assert result.outcome == SyncOutcome.NOOP
    assert calendar.calls == []


@pytest.mark.asyncio
async def test_dates_without_linkage_creates_and_persists_linkage() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24")

    result = await rec.reconcile(task, None, "tok", target_calendar_id="work")

    assert result.outcome == SyncOutcome.CREATE_SUCCEEDED
    assert result.linkage == Linkage("evt1", "work")
    assert result.linkage_changed
    assert backend.rows[task.id]["calendar_event_id"] == "evt1"
    assert backend.rows[task.id]["calendar_id"] == "work"
    assert calendar.tokens == ["tok"]


@pytest.mark.asyncio
async def test_create_failure_reports_and_leaves_no_linkage() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24")
    calendar.fail_on("create")

    result = await rec.reconcile(task, None, "tok")

    assert result.outcome == SyncOutcome.CREATE_FAILED
    assert result.linkage is None
    assert backend.rows[task.id].get("calendar_event_id") is None


@pytest.mark.asyncio
async def test_linkage_save_failure_removes_orphan_event() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24")
    backend.fail_on("update_task")

    result = await rec.reconcile(task, None, "tok")

    assert result.outcome == SyncOutcome.CREATE_FAILED
    assert calendar.methods() == ["create", "delete"]
    assert calendar.events == {}


@pytest.mark.asyncio
async def test_linked_task_with_dates_replaces_event() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24", calendar_event_id="e1", calendar_id="primary")
    calendar.add_event("primary", "e1", build_event(task))

    result = await rec.reconcile(task, None, "tok")

    assert result.outcome == SyncOutcome.UPDATE_SUCCEEDED
    assert calendar.methods() == ["replace"]
    assert not result.linkage_changed


@pytest.mark.asyncio
async def test_update_of_vanished_event_counts_as_success() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24", calendar_event_id="gone", calendar_id="primary")
    result = await rec.reconcile(task, None, "tok")
    assert result.outcome == SyncOutcome.UPDATE_SUCCEEDED


@pytest.mark.asyncio
async def test_update_failure_is_reported() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2025-12-24", calendar_event_id="e1", calendar_id="primary")
    calendar.fail_on("replace")
    result = await rec.reconcile(task, None, "tok")
    assert result.outcome == SyncOutcome.UPDATE_FAILED
    assert result.error is not None


@pytest.mark.asyncio
async def test_dates_removed_deletes_owned_event_and_clears_linkage() -> None:
    rec, backend, calendar, task = make_reconciler(calendar_event_id="e1", calendar_id="primary")
    calendar.add_event("primary", "e1", build_event(Task(id=task.id, title="x", deadline=date(2025, 12, 24))))

    result = await rec.reconcile(task, None, "tok")

    assert result.outcome == SyncOutcome.DELETE_SUCCEEDED
    assert result.linkage is None
    assert calendar.methods() == ["get", "delete"]
    assert backend.rows[task.id]["calendar_event_id"] is None


@pytest.mark.asyncio
async def test_cleared_previous_linkage_is_not_updated_in_place() -> None:
    rec, backend, calendar, task = make_reconciler(deadline="2026-02-01")

    # e9 was removed by an earlier sync; the task itself holds no linkage now.
    result = await rec.reconcile(task, Linkage("e9", "primary"), "tok")

    assert result.outcome == SyncOutcome.CREATE_SUCCEEDED
    assert calendar.methods() == ["create"]
    assert result.linkage == Linkage("evt1", "primary")
    assert backend.rows[task.id]["calendar_event_id"] == "evt1"


@pytest.mark.asyncio
async def test_foreign_event_is_never_deleted() -> None:
    rec, backend, calendar, task = make_reconciler(calendar_event_id="e1", calendar_id="primary")
    calendar.add_event("primary", "e1", {"summary": "Dentist", "description": "bring card"})

    with pytest.raises(IntegrityError):
        await rec.reconcile(task, None, "tok")

    assert "delete" not in calendar.methods()
    assert ("primary", "e1") in calendar.events


@pytest.mark.asyncio
async def test_already_deleted_event_counts_as_deleted() -> None:
    rec, backend, calendar, task = make_reconciler(calendar_event_id="e1", calendar_id="primary")
    result = await rec.reconcile(task, None, "tok")
    assert result.outcome == SyncOutcome.DELETE_SUCCEEDED
    assert calendar.methods() == ["get"]


@pytest.mark.asyncio
async def test_release() -> None:
    rec, backend, calendar, task = make_reconciler()
    calendar.add_event("primary", "e1", build_event(Task(id="t", title="x", deadline=date(2025, 12, 24))))

    assert (await rec.release(Linkage("e1", "primary"), None)).outcome == SyncOutcome.NOOP
    assert (await rec.release(Linkage("e1", "primary"), "tok")).outcome == SyncOutcome.DELETE_SUCCEEDED
    calendar.fail_on("get")
    failed = await rec.release(Linkage("e2", "primary"), "tok")
    assert failed.outcome == SyncOutcome.DELETE_FAILED
    assert failed.linkage == Linkage("e2", "primary")
    assert failed.error is not None
