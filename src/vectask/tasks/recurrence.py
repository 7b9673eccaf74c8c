# src/vectask/tasks/recurrence.py

"""
Recurrence calculator.

Given the due date of the occurrence that was just completed and its
recurrence rule, compute the due date of the next occurrence.
"""

from __future__ import annotations

from datetime import timedelta

from dateutil.relativedelta import relativedelta

from .task_models import RecurrenceRule, RecurrenceType, When

_DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
_WEEKDAYS = (1, 2, 3, 4, 5)


def weekday_index(value: When) -> int:
    """Weekday with 0=Sunday ... 6=Saturday."""
    return (value.weekday() + 1) % 7


def next_due_date(current_due: When, rule: RecurrenceRule) -> When:
    """
    Return the next due date after current_due.

    Time of day (and date vs datetime) is preserved. The result is always
    strictly later than current_due.
    """
    if rule.type == RecurrenceType.WEEKLY and rule.days_of_week:
        return _next_matching_weekday(current_due, rule.interval, rule.days_of_week)

    if rule.type == RecurrenceType.DAILY:
        return current_due + timedelta(days=rule.interval)
    if rule.type == RecurrenceType.WEEKLY:
        return current_due + timedelta(days=rule.interval * 7)
    # Monthly: relativedelta clamps to the last day of shorter months.
    return current_due + relativedelta(months=rule.interval)


def _next_matching_weekday(current: When, interval: int, days_of_week: tuple[int, ...]) -> When:
    current_day = weekday_index(current)
    days = sorted(days_of_week)

    later_this_week = [d for d in days if d > current_day]
    if later_this_week:
        return current + timedelta(days=later_this_week[0] - current_day)

    # Roll over to Sunday of next week, skip (interval - 1) more weeks,
    # then land on the first listed weekday.
    days_to_next_week = 7 - current_day
    total = days_to_next_week + days[0] + (interval - 1) * 7
    return current + timedelta(days=total)


def describe_recurrence(rule: RecurrenceRule | None) -> str:
    if rule is None:
        return "No repeat"

    names = ", ".join(_DAY_NAMES[d] for d in rule.days_of_week)

    if rule.interval == 1:
        if rule.type == RecurrenceType.DAILY:
            return "Every day"
        if rule.type == RecurrenceType.MONTHLY:
            return "Every month"
        if rule.days_of_week:
            if tuple(sorted(rule.days_of_week)) == _WEEKDAYS:
                return "Weekdays"
            return f"Every week ({names})"
        return "Every week"

    unit = {RecurrenceType.DAILY: "days", RecurrenceType.WEEKLY: "weeks", RecurrenceType.MONTHLY: "months"}[
        rule.type
    ]
    if rule.type == RecurrenceType.WEEKLY and rule.days_of_week:
        return f"Every {rule.interval} weeks ({names})"
    return f"Every {rule.interval} {unit}"
