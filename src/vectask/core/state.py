# src/vectask/core/state.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..calendar.google_client import GoogleCalendarClient
from ..tasks.task_state import TaskStateStore
from ..tasks.task_store import SqliteTaskBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineLoop:
    """
    asyncio event loop running in a background thread.

    The console REPL is blocking (input()), while the store and its
    follow-up work (calendar sync, recurrence) are async and need a loop
    that keeps running between commands.
    """

    def __init__(self) -> None:
        ready = threading.Event()
        holder: dict[str, asyncio.AbstractEventLoop] = {}

        def runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            holder["loop"] = loop
            ready.set()
            try:
                loop.run_forever()
            finally:
                with contextlib.suppress(Exception):
                    loop.close()

        self._thread = threading.Thread(target=runner, name="vectask-engine", daemon=True)
        self._thread.start()
        if not ready.wait(timeout=5.0) or "loop" not in holder:
            raise RuntimeError("Engine loop thread did not initialize")
        self._loop = holder["loop"]
        logger.debug("Engine loop thread started.")

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Submit a coroutine to the engine loop and wait for its result."""
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result(timeout=timeout)

    def stop(self, timeout: float = 10.0) -> None:
        if not self._loop.is_running():
            return
        try:
            self._loop.call_soon_threadsafe(self._loop.stop)
        except RuntimeError:
            logger.debug("Engine loop already closed.", exc_info=True)
        self._thread.join(timeout=timeout)


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    store: TaskStateStore
    backend: SqliteTaskBackend
    engine: EngineLoop
    calendar: GoogleCalendarClient | None = None
