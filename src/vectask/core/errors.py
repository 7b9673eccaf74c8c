# src/vectask/core/errors.py

"""
Error taxonomy shared by the store, the backend and the calendar sync.

- ValidationError: rejected before any state change
- BackendError:    data service rejected a command (store rolls back)
- SyncError:       calendar call failed (logged, never rolls back)
- IntegrityError:  remote event is not ours, deletion refused
"""

from __future__ import annotations


class VectaskError(Exception):
    """Base class for all engine errors."""


class ValidationError(VectaskError, ValueError):
    pass


class BackendError(VectaskError):
    pass


class SyncError(VectaskError):
    pass


class CalendarAuthError(SyncError):
    """401/403 from the calendar provider (token expired or missing scope)."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"Calendar authentication failed ({status_code})")


class CalendarHTTPError(SyncError):
    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"Calendar request failed ({status_code})")


class IntegrityError(VectaskError):
    """Remote event lacks the ownership marker; it must not be deleted."""

    def __init__(self, event_id: str, summary: str | None = None) -> None:
        self.event_id = event_id
        self.summary = summary
        super().__init__(
            f"Refusing to delete event {event_id}: ownership marker missing"
        )
