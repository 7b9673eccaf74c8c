# src/vectask/calendar/google_client.py

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..core.errors import CalendarAuthError, CalendarHTTPError, SyncError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.googleapis.com/calendar/v3"

_GONE = (404, 410)


def _timeout(seconds: float) -> httpx.Timeout:
    return httpx.Timeout(connect=min(5.0, seconds), read=seconds, write=seconds, pool=min(5.0, seconds))


class GoogleCalendarClient:
    """
    Minimal async client for the Google Calendar v3 events resource.

    - 404/410 on fetch/replace/delete means "already gone" and is reported
      through the return value, not an exception.
    - 401/403 raise CalendarAuthError, other non-2xx raise CalendarHTTPError,
      transport errors are wrapped into SyncError.
    - The bearer token is never logged (only whether one was present).
    """

    def __init__(
            self,
            *,
            base_url: str = DEFAULT_BASE_URL,
            timeout_seconds: float = 15.0,
            http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=_timeout(timeout_seconds))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ---- helpers ----

    def _events_url(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{self._base_url}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            url += f"/{quote(event_id, safe='')}"
        return url

    async def _request(
            self,
            method: str,
            url: str,
            *,
            token: str,
            json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        logger.debug("Calendar API %s %s (auth: %s)", method, url, "yes" if token else "no")
        try:
            resp = await self._http.request(
                method,
                url,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise SyncError(f"Calendar {method} failed: {e.__class__.__name__}") from e
        logger.debug("Calendar API response %s %s", resp.status_code, resp.reason_phrase)
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response, action: str) -> None:
        if resp.is_success:
            return
        status = resp.status_code
        body = resp.text[:500]
        if status in (401, 403):
            logger.error("Calendar %s: %s (token invalid/expired or insufficient scope)", action, status)
            raise CalendarAuthError(status, f"Calendar {action} not authorized ({status})")
        logger.error("Calendar %s failed: %s %s", action, status, body)
        raise CalendarHTTPError(status, f"Failed to {action} event: {status}")

    # ---- events resource ----

    async def create_event(self, calendar_id: str, body: dict[str, Any], *, token: str) -> dict[str, Any]:
        resp = await self._request("POST", self._events_url(calendar_id), token=token, json=body)
        self._raise_for_status(resp, "create")
        data = resp.json()
        if not isinstance(data, dict) or not data.get("id"):
            raise SyncError("Calendar create returned no event id")
        logger.info("Calendar event created id=%s calendar=%s", data["id"], calendar_id)
        return data

    async def replace_event(
            self,
            calendar_id: str,
            event_id: str,
            body: dict[str, Any],
            *,
            token: str,
    ) -> dict[str, Any] | None:
        resp = await self._request("PUT", self._events_url(calendar_id, event_id), token=token, json=body)
        if resp.status_code in _GONE:
            logger.info("Calendar event %s not found on update", event_id)
            return None
        self._raise_for_status(resp, "update")
        return resp.json()

    async def get_event(self, calendar_id: str, event_id: str, *, token: str) -> dict[str, Any] | None:
        resp = await self._request("GET", self._events_url(calendar_id, event_id), token=token)
        if resp.status_code in _GONE:
            return None
        self._raise_for_status(resp, "fetch")
        return resp.json()

    async def delete_event(self, calendar_id: str, event_id: str, *, token: str) -> bool:
        resp = await self._request("DELETE", self._events_url(calendar_id, event_id), token=token)
        if resp.status_code in _GONE:
            logger.info("Calendar event %s already deleted", event_id)
            return False
        self._raise_for_status(resp, "delete")
        logger.info("Calendar event deleted id=%s calendar=%s", event_id, calendar_id)
        return True
