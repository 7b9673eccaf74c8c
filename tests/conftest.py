# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from vectask.calendar.credentials import StaticTokenProvider
from vectask.calendar.sync import CalendarReconciler
from vectask.cli.bootstrap import create_initial_state, shutdown_state
from vectask.core.prefs import MemoryPreferences
from vectask.tasks.task_state import StoreEvent, TaskStateStore

from .fakes import FakeBackend, FakeCalendarClient, FakeClock


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def prefs() -> MemoryPreferences:
    return MemoryPreferences()


@pytest.fixture()
def token() -> StaticTokenProvider:
    return StaticTokenProvider("secret-token")


@pytest.fixture()
def store(backend, calendar, clock, prefs, token) -> TaskStateStore:
    """
    Store wired with in-memory fakes (backend, calendar, preferences).

    NOTE: asyncio locks are created lazily, so building the store outside
    the event loop is fine.
    """
    return TaskStateStore(
        backend,
        reconciler=CalendarReconciler(calendar, backend),
        credentials=token,
        preferences=prefs,
        clock=clock,
    )


@pytest.fixture()
def events(store: TaskStateStore) -> list[StoreEvent]:
    received: list[StoreEvent] = []
    store.subscribe(received.append)
    return received


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="vectask-test",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        prefs_path=tmp_path / "prefs.json",
        calendar_enabled=False,
        calendar_token=None,
    )


@pytest.fixture()
def app_state(settings: SimpleNamespace):
    """
    AppState wired through the real bootstrap (SQLite backend, no calendar).

    The engine loop thread is stopped on teardown.
    """
    state = create_initial_state(settings=settings)
    yield state
    shutdown_state(state)
