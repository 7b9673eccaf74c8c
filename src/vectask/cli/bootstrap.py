# src/vectask/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (SQLite backend, Google Calendar client,
  token provider, JSON preferences) into a TaskStateStore inside AppState.
"""

from __future__ import annotations

import logging

from ..calendar.credentials import StaticTokenProvider
from ..calendar.google_client import GoogleCalendarClient
from ..calendar.sync import CalendarReconciler
from ..config import Settings, get_settings
from ..core.prefs import LocalPreferences
from ..core.state import AppState, EngineLoop
from ..tasks.task_state import TaskStateStore
from ..tasks.task_store import SqliteTaskBackend

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.prefs_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings: Settings | None = None, engine: EngineLoop | None = None) -> AppState:
    """
    Create AppState from the provided settings and load the task collection.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    backend = SqliteTaskBackend(settings.tasks_db_path)

    calendar: GoogleCalendarClient | None = None
    reconciler: CalendarReconciler | None = None
    if settings.calendar_enabled:
        calendar = GoogleCalendarClient(
            base_url=settings.calendar_base_url,
            timeout_seconds=settings.calendar_timeout_seconds,
        )
        reconciler = CalendarReconciler(calendar, backend, time_zone=settings.calendar_time_zone)
        if not settings.calendar_token:
            logger.warning("Calendar sync enabled but no token configured; events will not be synced.")
    else:
        logger.info("Calendar sync disabled.")

    store = TaskStateStore(
        backend,
        reconciler=reconciler,
        credentials=StaticTokenProvider(settings.calendar_token),
        preferences=LocalPreferences(settings.prefs_path),
    )

    engine = engine or EngineLoop()
    try:
        engine.run(store.load())
    except Exception:
        engine.stop()
        raise

    return AppState(settings=settings, store=store, backend=backend, engine=engine, calendar=calendar)


def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown: finish follow-up work, close clients, stop the loop."""
    try:
        state.engine.run(state.store.drain(), timeout=30.0)
    except Exception:
        logger.exception("Failed to drain pending sync work.")

    if state.calendar is not None:
        try:
            state.engine.run(state.calendar.aclose(), timeout=5.0)
        except Exception:
            logger.debug("Calendar client close failed.", exc_info=True)

    state.backend.close()
    state.engine.stop()
