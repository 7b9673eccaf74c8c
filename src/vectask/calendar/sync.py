# src/vectask/calendar/sync.py

from __future__ import annotations

"""
Calendar sync reconciler.

Decision table on the task's current state:

    linkage | dates | action
    --------+-------+-------------------------------------------
    no      | no    | nothing
    no      | yes   | create event, persist linkage
    yes     | yes   | replace event in place
    yes     | no    | delete event (ownership-checked), clear linkage

Sync is best-effort: failures become *_FAILED outcomes and never undo the
task mutation that triggered them. The only exception that escapes is
IntegrityError, raised when the event to delete is not ours.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum

from ..core.errors import BackendError, IntegrityError, SyncError
from ..core.ports import CalendarClient, TaskBackend
from ..tasks.task_models import Linkage, Task
from .events import build_event, is_owned_event

logger = logging.getLogger(__name__)


class SyncOutcome(StrEnum):
    NOOP = "noop"
    CREATE_SUCCEEDED = "create_succeeded"
    CREATE_FAILED = "create_failed"
    UPDATE_SUCCEEDED = "update_succeeded"
    UPDATE_FAILED = "update_failed"
    DELETE_SUCCEEDED = "delete_succeeded"
    DELETE_FAILED = "delete_failed"

    @property
    def failed(self) -> bool:
        return self.value.endswith("_failed")


@dataclass(frozen=True, slots=True)
class SyncResult:
    outcome: SyncOutcome
    linkage: Linkage | None
    error: Exception | None = None

    @property
    def linkage_changed(self) -> bool:
        return self.outcome in (SyncOutcome.CREATE_SUCCEEDED, SyncOutcome.DELETE_SUCCEEDED)


class CalendarReconciler:
    def __init__(
            self,
            client: CalendarClient,
            backend: TaskBackend,
            *,
            time_zone: str | None = None,
    ) -> None:
        self._client = client
        self._backend = backend
        self._time_zone = time_zone

    async def reconcile(
            self,
            task: Task,
            previous_linkage: Linkage | None,
            credential: str | None,
            *,
            target_calendar_id: str = "primary",
    ) -> SyncResult:
        """
        Bring the remote event in line with the task's current state.

        previous_linkage is what the caller saw before its mutation. The
        decision uses task.linkage only: a linkage that an earlier sync has
        already cleared must not be updated in place.
        """
        linkage = task.linkage
        if previous_linkage is not None and previous_linkage != linkage:
            logger.debug(
                "Sync task=%s: linkage changed since the mutation (%s -> %s)",
                task.id,
                previous_linkage.event_id,
                linkage.event_id if linkage else None,
            )
        has_dates = task.has_dates

        if linkage is None and not has_dates:
            logger.debug("Sync task=%s: no linkage and no dates, nothing to do", task.id)
            return SyncResult(SyncOutcome.NOOP, None)

        if not credential:
            logger.info("Sync task=%s skipped: no calendar credential", task.id)
            return SyncResult(SyncOutcome.NOOP, linkage)

        if linkage is None:
            return await self._create(task, credential, target_calendar_id)
        if has_dates:
            return await self._update(task, linkage, credential)
        return await self._delete(task, linkage, credential)

    async def release(self, linkage: Linkage, credential: str | None) -> SyncResult:
        """
        Remove the event of a task that is about to be deleted.

        Nothing is persisted here: the caller deletes the task row once the
        event is gone. Raises IntegrityError for a foreign event.
        """
        if not credential:
            logger.warning("Release of event %s skipped: no calendar credential", linkage.event_id)
            return SyncResult(SyncOutcome.NOOP, linkage)
        try:
            await self._safe_delete(linkage, credential)
        except SyncError as e:
            logger.warning("Release of event %s failed: %s", linkage.event_id, e)
            return SyncResult(SyncOutcome.DELETE_FAILED, linkage, e)
        return SyncResult(SyncOutcome.DELETE_SUCCEEDED, None)

    # ---- branches ----

    async def _create(self, task: Task, token: str, calendar_id: str) -> SyncResult:
        logger.info("Sync task=%s: creating event in calendar %s", task.id, calendar_id)
        try:
            created = await self._client.create_event(
                calendar_id, build_event(task, time_zone=self._time_zone), token=token
            )
        except SyncError as e:
            logger.warning("Sync task=%s: create failed: %s", task.id, e)
            return SyncResult(SyncOutcome.CREATE_FAILED, None, e)

        linkage = Linkage(str(created["id"]), calendar_id)
        try:
            await asyncio.to_thread(
                self._backend.update_task,
                task.id,
                {"calendar_event_id": linkage.event_id, "calendar_id": linkage.calendar_id},
            )
        except BackendError as e:
            # Event exists remotely but nothing points at it: take it back down.
            logger.error("Sync task=%s: failed to save linkage (%s); removing event %s", task.id, e, linkage.event_id)
            try:
                await self._client.delete_event(calendar_id, linkage.event_id, token=token)
            except SyncError:
                logger.exception("Sync task=%s: cleanup of event %s failed", task.id, linkage.event_id)
            return SyncResult(SyncOutcome.CREATE_FAILED, None, e)

        return SyncResult(SyncOutcome.CREATE_SUCCEEDED, linkage)

    async def _update(self, task: Task, linkage: Linkage, token: str) -> SyncResult:
        logger.info("Sync task=%s: updating event %s", task.id, linkage.event_id)
        try:
            replaced = await self._client.replace_event(
                linkage.calendar_id,
                linkage.event_id,
                build_event(task, time_zone=self._time_zone),
                token=token,
            )
        except SyncError as e:
            logger.warning("Sync task=%s: update failed: %s", task.id, e)
            return SyncResult(SyncOutcome.UPDATE_FAILED, linkage, e)
        if replaced is None:
            logger.info("Sync task=%s: event %s already gone, treating update as success", task.id, linkage.event_id)
        return SyncResult(SyncOutcome.UPDATE_SUCCEEDED, linkage)

    async def _delete(self, task: Task, linkage: Linkage, token: str) -> SyncResult:
        logger.info("Sync task=%s: dates removed, deleting event %s", task.id, linkage.event_id)
        try:
            await self._safe_delete(linkage, token)
        except SyncError as e:
            logger.warning("Sync task=%s: delete failed: %s", task.id, e)
            return SyncResult(SyncOutcome.DELETE_FAILED, linkage, e)

        try:
            await asyncio.to_thread(
                self._backend.update_task,
                task.id,
                {"calendar_event_id": None, "calendar_id": None},
            )
        except BackendError as e:
            logger.error("Sync task=%s: event deleted but linkage not cleared: %s", task.id, e)
            return SyncResult(SyncOutcome.DELETE_FAILED, linkage, e)
        return SyncResult(SyncOutcome.DELETE_SUCCEEDED, None)

    async def _safe_delete(self, linkage: Linkage, token: str) -> None:
        """Fetch, verify ownership, delete. A missing event counts as deleted."""
        event = await self._client.get_event(linkage.calendar_id, linkage.event_id, token=token)
        if event is None:
            logger.info("Event %s already deleted", linkage.event_id)
            return

        if not is_owned_event(event):
            logger.error(
                "SAFETY: refusing to delete foreign event id=%s summary=%r",
                linkage.event_id,
                event.get("summary"),
            )
            raise IntegrityError(linkage.event_id, event.get("summary"))

        await self._client.delete_event(linkage.calendar_id, linkage.event_id, token=token)
