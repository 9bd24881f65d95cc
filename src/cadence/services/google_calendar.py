from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..core.timezone import get_zone
from ..domain import Attendee, CalendarEvent, CalendarStats, EventDraft, EventPatch
from .calendar import (
    CalendarAuthError,
    CalendarRequestError,
    CalendarUnavailableError,
    EventNotFoundError,
    compute_stats,
    stats_window,
)

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"


def _google_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.reason_phrase


class GoogleCalendarBackend:
    """Google Calendar v3 client authenticated with a caller-supplied access token."""

    def __init__(
        self,
        *,
        calendar_id: str = "primary",
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        time_zone: str = "UTC",
        timeout: float = 30.0,
        max_results: int = 500,
        stats_window_days: int = 7,
        stats_top_attendees: int = 5,
        stats_max_results: int = 100,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._calendar_path = f"/calendars/{quote(calendar_id, safe='')}"
        self._base_url = base_url.rstrip("/")
        self._tz = get_zone(time_zone)
        self._max_results = max_results
        self._stats_window_days = stats_window_days
        self._stats_top_attendees = stats_top_attendees
        self._stats_max_results = stats_max_results
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------ transport

    async def _request(
        self,
        token: str,
        method: str,
        path: str,
        *,
        event_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}{self._calendar_path}{path}"
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise CalendarUnavailableError(f"Google Calendar request failed: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            raise CalendarAuthError(_safe_google_error_message(response))
        if status in (404, 410) and event_id is not None:
            raise EventNotFoundError(event_id)
        if status >= 500:
            raise CalendarUnavailableError(
                f"Google Calendar returned {status}: {_safe_google_error_message(response)}"
            )
        if status < 200 or status >= 300:
            raise CalendarRequestError(status_code=status, message=_safe_google_error_message(response))
        if status == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarUnavailableError("Google Calendar returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise CalendarUnavailableError("Google Calendar returned an unexpected payload shape")
        return payload

    def _event_path(self, event_id: str) -> str:
        return f"/events/{quote(event_id, safe='')}"

    # ------------------------------------------------------------------ backend API

    async def list_events(
        self,
        token: str,
        start: datetime,
        end: datetime,
        *,
        max_results: Optional[int] = None,
    ) -> List[CalendarEvent]:
        params = {
            "timeMin": _google_rfc3339(start),
            "timeMax": _google_rfc3339(end),
            "maxResults": min(max_results or self._max_results, 2500),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        payload = await self._request(token, "GET", "/events", params=params)
        items = payload.get("items") or []
        events: list[CalendarEvent] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                events.append(CalendarEvent.from_record(item))
            except ValueError:
                logger.warning("Skipping malformed event payload id=%s", item.get("id"))
        return events

    async def get_event(self, token: str, event_id: str) -> CalendarEvent:
        payload = await self._request(token, "GET", self._event_path(event_id), event_id=event_id)
        event = CalendarEvent.from_record(payload)
        if event.status.value == "cancelled":
            raise EventNotFoundError(event_id)
        return event

    async def create_event(self, token: str, draft: EventDraft) -> CalendarEvent:
        payload = await self._request(token, "POST", "/events", json_body=draft.to_record())
        return CalendarEvent.from_record(payload)

    async def update_event(self, token: str, patch: EventPatch) -> CalendarEvent:
        payload = await self._request(
            token,
            "PATCH",
            self._event_path(patch.event_id),
            event_id=patch.event_id,
            json_body=patch.to_record(),
        )
        return CalendarEvent.from_record(payload)

    async def delete_event(self, token: str, event_id: str) -> str:
        event = await self.get_event(token, event_id)
        await self._request(token, "DELETE", self._event_path(event_id), event_id=event_id)
        return event.title

    async def add_attendee(self, token: str, event_id: str, email: str) -> CalendarEvent:
        event = await self.get_event(token, event_id)
        attendees = [attendee.to_record() for attendee in event.attendees]
        if not event.has_attendee(email):
            attendees.append(Attendee(email=email).to_record())
        return await self._patch_attendees(token, event_id, attendees)

    async def remove_attendee(self, token: str, event_id: str, email: str) -> CalendarEvent:
        event = await self.get_event(token, event_id)
        attendees = [
            attendee.to_record() for attendee in event.attendees if attendee.email.lower() != email.strip().lower()
        ]
        return await self._patch_attendees(token, event_id, attendees)

    async def _patch_attendees(self, token: str, event_id: str, attendees: List[Dict[str, Any]]) -> CalendarEvent:
        payload = await self._request(
            token,
            "PATCH",
            self._event_path(event_id),
            event_id=event_id,
            params={"sendUpdates": "all"},
            json_body={"attendees": attendees},
        )
        return CalendarEvent.from_record(payload)

    async def get_stats(self, token: str) -> CalendarStats:
        window_start, window_end = stats_window(datetime.now(self._tz), self._stats_window_days)
        events = await self.list_events(token, window_start, window_end, max_results=self._stats_max_results)
        return compute_stats(
            events,
            window_start=window_start,
            window_end=window_end,
            tz=self._tz,
            top_n=self._stats_top_attendees,
        )
