# src/vectask/tasks/task_models.py

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, tzinfo
from enum import StrEnum
from typing import Any, Union

from ..core.errors import ValidationError

logger = logging.getLogger(__name__)

# A date-only value (all-day) or an instant with a time of day.
When = Union[date, datetime]

WHEN_FIELDS = ("deadline", "planned_start", "planned_end")

# Fields a caller may change through update_task().
UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "parent_id",
        "importance",
        "estimate_minutes",
        "deadline",
        "planned_start",
        "planned_end",
        "recurrence",
    }
)

# Changes to these fields alter the remote calendar event.
SYNC_FIELDS = frozenset({"title", "description", *WHEN_FIELDS})


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Input is case-insensitive and a few historical spellings are accepted
    (IN_PROGRESS, in-progress, completed, to_do). Everything past the
    boundary works with the enum only.
    """

    TODO = "todo"
    DOING = "doing"
    PENDING = "pending"
    DONE = "done"

    @classmethod
    def parse(cls, raw: str | TaskStatus | None) -> TaskStatus:
        if isinstance(raw, TaskStatus):
            return raw
        key = (raw or "").strip().lower().replace("-", "_")
        if not key:
            return cls.TODO
        status = _STATUS_ALIASES.get(key)
        if status is None:
            raise ValidationError(f"Unknown task status: {raw!r}")
        return status

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        try:
            return cls.parse(raw)
        except ValidationError:
            logger.warning("Unknown status %r in stored task; treating as todo", raw)
            return cls.TODO


_STATUS_ALIASES: dict[str, TaskStatus] = {
    "todo": TaskStatus.TODO,
    "to_do": TaskStatus.TODO,
    "doing": TaskStatus.DOING,
    "in_progress": TaskStatus.DOING,
    "inprogress": TaskStatus.DOING,
    "pending": TaskStatus.PENDING,
    "done": TaskStatus.DONE,
    "completed": TaskStatus.DONE,
}


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """
    "Every N days/weeks/months", optionally pinned to weekdays (weekly only).

    days_of_week uses 0=Sunday ... 6=Saturday.
    """

    type: RecurrenceType
    interval: int = 1
    days_of_week: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.interval, int) or isinstance(self.interval, bool) or self.interval < 1:
            raise ValidationError(f"Recurrence interval must be a positive integer, got {self.interval!r}")
        for d in self.days_of_week:
            if not isinstance(d, int) or not 0 <= d <= 6:
                raise ValidationError(f"Weekday index must be within 0..6, got {d!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RecurrenceRule:
        if not isinstance(data, Mapping):
            raise ValidationError("Recurrence must be an object")
        try:
            rtype = RecurrenceType(str(data.get("type", "")).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown recurrence type: {data.get('type')!r}") from None

        interval = data.get("interval", 1)
        if interval is None:
            interval = 1
        if isinstance(interval, str) and interval.strip().isdigit():
            interval = int(interval)
        days = data.get("days_of_week") or ()
        if not isinstance(days, (list, tuple)):
            raise ValidationError("days_of_week must be a list")
        if not all(isinstance(d, int) and not isinstance(d, bool) for d in days):
            raise ValidationError(f"days_of_week must contain integers, got {days!r}")
        return cls(
            type=rtype,
            interval=interval,
            days_of_week=tuple(sorted(set(days))),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type.value, "interval": self.interval}
        if self.days_of_week:
            out["days_of_week"] = list(self.days_of_week)
        return out


@dataclass(frozen=True, slots=True)
class Linkage:
    """(remote event id, remote calendar id) tying a task to its calendar event."""

    event_id: str
    calendar_id: str


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    predecessor_id: str
    successor_id: str


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    slug: str = ""
    status: TaskStatus = TaskStatus.TODO
    description: str | None = None
    parent_id: str | None = None
    importance: int | None = None
    estimate_minutes: int | None = None
    deadline: When | None = None
    planned_start: When | None = None
    planned_end: When | None = None
    actual_minutes: int = 0
    completed_at: datetime | None = None
    recurrence: RecurrenceRule | None = None
    calendar_event_id: str | None = None
    calendar_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    @property
    def has_dates(self) -> bool:
        return any(getattr(self, name) is not None for name in WHEN_FIELDS)

    @property
    def is_scheduled(self) -> bool:
        return self.planned_start is not None and self.planned_end is not None

    @property
    def linkage(self) -> Linkage | None:
        if self.calendar_event_id and self.calendar_id:
            return Linkage(self.calendar_event_id, self.calendar_id)
        return None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Task:
        """Build a Task from a backend row (strings/ints as stored)."""
        return cls(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            slug=str(row.get("slug") or ""),
            status=TaskStatus.from_db(row.get("status")),
            description=row.get("description"),
            parent_id=row.get("parent_id"),
            importance=_opt_int(row.get("importance")),
            estimate_minutes=_opt_int(row.get("estimate_minutes")),
            deadline=parse_when(row.get("deadline")),
            planned_start=parse_when(row.get("planned_start")),
            planned_end=parse_when(row.get("planned_end")),
            actual_minutes=int(row.get("actual_minutes") or 0),
            completed_at=_opt_datetime(row.get("completed_at")),
            recurrence=decode_recurrence(row.get("recurrence")),
            calendar_event_id=row.get("calendar_event_id"),
            calendar_id=row.get("calendar_id"),
            created_at=_opt_datetime(row.get("created_at")),
            updated_at=_opt_datetime(row.get("updated_at")),
        )


@dataclass(slots=True)
class TaskData:
    """Payload for creating a task (server assigns id, slug and timestamps)."""

    title: str
    description: str | None = None
    parent_id: str | None = None
    importance: int | None = None
    estimate_minutes: int | None = None
    deadline: When | None = None
    planned_start: When | None = None
    planned_end: When | None = None
    recurrence: RecurrenceRule | None = None
    status: TaskStatus = TaskStatus.TODO
    extra: dict[str, Any] = field(default_factory=dict)

    def to_fields(self) -> dict[str, Any]:
        fields = {
            "title": self.title,
            "description": self.description,
            "parent_id": self.parent_id,
            "importance": self.importance,
            "estimate_minutes": self.estimate_minutes,
            "deadline": self.deadline,
            "planned_start": self.planned_start,
            "planned_end": self.planned_end,
            "recurrence": self.recurrence,
            "status": self.status,
        }
        fields.update(self.extra)
        return fields


# ---- value codecs ----


def parse_when(raw: Any) -> When | None:
    """
    Parse a stored date/instant.

    Strings with a time part ("2025-12-22T13:00") become datetimes,
    plain "2025-12-22" stays a date (all-day).
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, (date, datetime)):
        return raw
    s = str(raw).strip()
    try:
        if "T" in s or " " in s:
            return datetime.fromisoformat(s)
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Not an ISO date/datetime: {raw!r}") from None


def format_when(value: When | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def has_time(value: When | None) -> bool:
    return isinstance(value, datetime)


def to_datetime(value: When, tz: tzinfo | None = None) -> datetime:
    """Promote a date to midnight of that day; datetimes pass through."""
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min, tzinfo=tz)


def decode_recurrence(raw: Any) -> RecurrenceRule | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, RecurrenceRule):
        return raw
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        return RecurrenceRule.from_dict(data)
    except (ValueError, ValidationError):
        logger.warning("Ignoring malformed stored recurrence %r", raw)
        return None


def encode_fields(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Convert Python values into the backend's column representation."""
    out: dict[str, Any] = {}
    for key, value in changes.items():
        if key in WHEN_FIELDS or key in ("completed_at", "created_at", "updated_at"):
            out[key] = format_when(value)
        elif key == "status":
            out[key] = TaskStatus.parse(value).value
        elif key == "recurrence":
            out[key] = json.dumps(value.to_dict()) if value is not None else None
        else:
            out[key] = value
    return out


def _opt_int(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    return int(raw)


def _opt_datetime(raw: Any) -> datetime | None:
    value = parse_when(raw)
    if value is None:
        return None
    return to_datetime(value)
