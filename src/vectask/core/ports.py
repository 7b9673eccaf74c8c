# src/vectask/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The store and the reconciler depend on Protocols instead of concrete
implementations, so the backend, the calendar provider and the token source
can be swapped (SQLite vs remote service, Google vs a fake in tests).
"""

from typing import Any, Iterable, Protocol

Row = dict[str, Any]
# Backend row: column name -> stored value (strings for dates, JSON text for recurrence).

EventBody = dict[str, Any]
# Calendar event resource as sent to / returned by the provider.


class TaskBackend(Protocol):
    """
    Command/query interface of the backend data service.

    Inserts and updates return the authoritative row, including
    server-assigned fields (id, slug, timestamps). Any rejection is raised
    as BackendError.
    """

    def select_tasks(self) -> list[Row]: ...
    def insert_task(self, fields: Row) -> Row: ...
    def update_task(self, task_id: str, fields: Row) -> Row: ...
    def delete_tasks(self, task_ids: Iterable[str]) -> None: ...

    def select_dependencies(self) -> list[tuple[str, str]]: ...
    def insert_dependency(self, predecessor_id: str, successor_id: str) -> None: ...
    def delete_dependency(self, predecessor_id: str, successor_id: str) -> None: ...


class CalendarClient(Protocol):
    """
    REST-like event resource addressed by (calendar_id, event_id).

    get_event returns None and delete_event returns False when the event
    does not exist (404). Other failures raise SyncError subclasses.
    """

    async def create_event(self, calendar_id: str, body: EventBody, *, token: str) -> EventBody: ...

    async def replace_event(
            self,
            calendar_id: str,
            event_id: str,
            body: EventBody,
            *,
            token: str,
    ) -> EventBody | None: ...

    async def get_event(self, calendar_id: str, event_id: str, *, token: str) -> EventBody | None: ...
    async def delete_event(self, calendar_id: str, event_id: str, *, token: str) -> bool: ...


class CredentialProvider(Protocol):
    """Bearer token for the calendar provider (None when not signed in)."""
    def token(self) -> str | None: ...


class PreferencesRepo(Protocol):
    def load(self) -> dict[str, Any]: ...
    def save(self, values: dict[str, Any]) -> None: ...
