# src/vectask/calendar/events.py

"""
Task -> calendar event conversion and ownership checks.

Bounds follow the provider's conventions: all-day events use date-only
bounds with an exclusive end date, timed events use instants.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from ..core.errors import ValidationError
from ..tasks.task_models import Task, When, has_time, to_datetime

OWNERSHIP_MARKER = "[Created by Vectask]"
OWNER_TAG = "vectask"

DEFAULT_EVENT_DURATION = timedelta(hours=1)


def _day(value: When) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _all_day(start: date, end_exclusive: date) -> tuple[dict[str, str], dict[str, str]]:
    return {"date": start.isoformat()}, {"date": end_exclusive.isoformat()}


def _timed(value: When, time_zone: str | None) -> dict[str, str]:
    dt = to_datetime(value)
    out = {"dateTime": dt.isoformat()}
    if dt.tzinfo is None and time_zone:
        out["timeZone"] = time_zone
    return out


def event_bounds(task: Task, *, time_zone: str | None = None) -> tuple[dict[str, str], dict[str, str]]:
    """
    Pick the event's start/end from the task's date fields.

    Order: full planned window, then deadline (single all-day event), then
    planned start only (one hour), then planned end only (one hour ending there).
    """
    start, end = task.planned_start, task.planned_end

    if start is not None and end is not None:
        if has_time(start) or has_time(end):
            return _timed(start, time_zone), _timed(end, time_zone)
        # planned_end is the last day of the window; the event end is exclusive.
        return _all_day(_day(start), _day(end) + timedelta(days=1))

    if task.deadline is not None:
        day = _day(task.deadline)
        return _all_day(day, day + timedelta(days=1))

    if start is not None:
        begin = to_datetime(start)
        return _timed(begin, time_zone), _timed(begin + DEFAULT_EVENT_DURATION, time_zone)

    if end is not None:
        finish = to_datetime(end)
        return _timed(finish - DEFAULT_EVENT_DURATION, time_zone), _timed(finish, time_zone)

    raise ValidationError(f"Task {task.id} has no date information")


def attribution(task_id: str) -> str:
    return f"{OWNERSHIP_MARKER} task:{task_id}"


def build_event(task: Task, *, time_zone: str | None = None) -> dict[str, Any]:
    start, end = event_bounds(task, time_zone=time_zone)
    tag = attribution(task.id)
    description = f"{task.description}\n\n{tag}" if task.description else tag
    return {
        "summary": task.title,
        "description": description,
        "start": start,
        "end": end,
        "extendedProperties": {
            "private": {
                "createdBy": OWNER_TAG,
                "vectaskTaskId": task.id,
            }
        },
    }


def is_owned_event(event: dict[str, Any]) -> bool:
    """True if the event carries our marker (description or private properties)."""
    description = event.get("description") or ""
    if OWNERSHIP_MARKER in description:
        return True
    private = (event.get("extendedProperties") or {}).get("private") or {}
    return private.get("createdBy") == OWNER_TAG
