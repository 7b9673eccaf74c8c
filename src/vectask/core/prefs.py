# src/vectask/core/prefs.py

"""
Local durable preferences (UX continuity only).

Stored as a small JSON file. Losing or corrupting it only resets the
current scope, the completed-tasks toggle, the calendar target and the
running timer; task data is never kept here.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "primary"


@dataclass(slots=True)
class StoreConfig:
    """Explicit per-store settings that were ambient globals in the UI layer."""

    current_scope: str | None = None
    show_completed: bool = False
    target_calendar_id: str = DEFAULT_CALENDAR_ID
    done_filter_days: int | None = None
    timer_task_id: str | None = None
    timer_started_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        cfg = cls()
        scope = data.get("current_scope")
        cfg.current_scope = scope if isinstance(scope, str) and scope else None
        cfg.show_completed = bool(data.get("show_completed", False))

        cal = data.get("target_calendar_id")
        cfg.target_calendar_id = cal if isinstance(cal, str) and cal.strip() else DEFAULT_CALENDAR_ID

        days = data.get("done_filter_days")
        cfg.done_filter_days = days if isinstance(days, int) and not isinstance(days, bool) and days >= 0 else None

        timer = data.get("timer")
        if isinstance(timer, dict) and timer.get("active_task_id") and timer.get("started_at"):
            try:
                cfg.timer_started_at = datetime.fromisoformat(str(timer["started_at"]))
                cfg.timer_task_id = str(timer["active_task_id"])
            except ValueError:
                logger.warning("Ignoring malformed timer state in preferences")
        return cfg

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "current_scope": self.current_scope,
            "show_completed": self.show_completed,
            "target_calendar_id": self.target_calendar_id,
            "done_filter_days": self.done_filter_days,
        }
        if self.timer_task_id and self.timer_started_at:
            out["timer"] = {
                "active_task_id": self.timer_task_id,
                "started_at": self.timer_started_at.isoformat(),
            }
        return out


class LocalPreferences:
    """JSON-file preferences repo (best-effort; never raises on I/O)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except Exception:
            logger.exception("Failed to load preferences from %s", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Preferences file %s is not an object; ignoring", self._path)
            return {}
        return data

    def save(self, values: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(values, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, self._path)
            with contextlib.suppress(Exception):
                os.chmod(self._path, 0o600)
            logger.debug("Saved preferences to %s", self._path)
        except Exception:
            logger.exception("Failed to save preferences to %s", self._path)


class MemoryPreferences:
    """In-process preferences (no persistence)."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})

    def load(self) -> dict[str, Any]:
        return dict(self.values)

    def save(self, values: dict[str, Any]) -> None:
        self.values = dict(values)
