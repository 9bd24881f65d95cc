from __future__ import annotations

from copy import deepcopy
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import orjson

from ..domain import Attendee, CalendarEvent, CalendarStats, EventDraft, EventPatch, EventTime
from ..services.calendar import EventNotFoundError, compute_stats, stats_window
from .config import DATA_DIR, ensure_data_dir
from .timezone import get_zone, to_local


CALENDAR_STATE_FILE = DATA_DIR / "calendar_state.json"

DEFAULT_CALENDAR_STATE: Dict[str, Any] = {
    "calendars": {},
    "counters": {"event": 0},
}


class CalendarStore:
    """JSON-file calendar backend, one event list per access token.

    Implements the same async surface as the Google backend so the CLI and
    the test-suite can run the full chat loop without network access.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        time_zone: str = "UTC",
        stats_window_days: int = 7,
        stats_top_attendees: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if path is None:
            ensure_data_dir()
        self._path = path or CALENDAR_STATE_FILE
        self._state: Optional[Dict[str, Any]] = None
        self._tz: tzinfo = get_zone(time_zone)
        self._stats_window_days = stats_window_days
        self._stats_top_attendees = stats_top_attendees
        self._clock = clock or (lambda: datetime.now(self._tz))

    # ------------------------------------------------------------------ persistence

    def _ensure_materialized(self) -> None:
        if self._state is not None:
            return
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._state = deepcopy(DEFAULT_CALENDAR_STATE)
            self.persist()
            return
        raw = self._path.read_bytes()
        if not raw:
            self._state = deepcopy(DEFAULT_CALENDAR_STATE)
            return
        self._state = orjson.loads(raw)
        # Backfill missing keys when upgrading.
        for key, value in DEFAULT_CALENDAR_STATE.items():
            if key not in self._state:
                self._state[key] = deepcopy(value)

    @property
    def data(self) -> Dict[str, Any]:
        self._ensure_materialized()
        assert self._state is not None
        return self._state

    def persist(self) -> None:
        if self._state is None:
            return
        payload = orjson.dumps(self._state, option=orjson.OPT_INDENT_2)
        self._path.write_bytes(payload + b"\n")

    def mutate(self, callback: Callable[[Dict[str, Any]], Any]) -> Any:
        self._ensure_materialized()
        assert self._state is not None
        result = callback(self._state)
        self.persist()
        return result

    def consume_id(self, state: Dict[str, Any], prefix: str) -> str:
        counters = state.setdefault("counters", {})
        current = counters.get(prefix, 0) + 1
        counters[prefix] = current
        return f"{prefix}_{current:04d}"

    def _records(self, state: Dict[str, Any], token: str) -> List[Dict[str, Any]]:
        return state.setdefault("calendars", {}).setdefault(token, {"events": []})["events"]

    def _find(self, state: Dict[str, Any], token: str, event_id: str) -> Dict[str, Any]:
        for record in self._records(state, token):
            if record.get("id") == event_id:
                return record
        raise EventNotFoundError(event_id)

    # ------------------------------------------------------------------ backend API

    async def aclose(self) -> None:
        """Nothing to release; every mutation is persisted immediately."""

    async def list_events(
        self,
        token: str,
        start: datetime,
        end: datetime,
        *,
        max_results: Optional[int] = None,
    ) -> List[CalendarEvent]:
        events = [CalendarEvent.from_record(record) for record in self._records(self.data, token)]
        selected = [event for event in events if self._overlaps(event, start, end)]
        selected.sort(key=self._sort_key)
        return selected[:max_results] if max_results else selected

    async def get_event(self, token: str, event_id: str) -> CalendarEvent:
        return CalendarEvent.from_record(self._find(self.data, token, event_id))

    async def create_event(self, token: str, draft: EventDraft) -> CalendarEvent:
        def _insert(state: Dict[str, Any]) -> Dict[str, Any]:
            event_id = self.consume_id(state, "event")
            record = draft.to_record()
            record.update(
                {
                    "id": event_id,
                    "status": "confirmed",
                    "htmlLink": f"cadence://events/{event_id}",
                    "attendees": [{"email": email, "responseStatus": "needsAction"} for email in draft.attendees],
                }
            )
            self._records(state, token).append(record)
            return record

        return CalendarEvent.from_record(self.mutate(_insert))

    async def update_event(self, token: str, patch: EventPatch) -> CalendarEvent:
        def _patch(state: Dict[str, Any]) -> Dict[str, Any]:
            record = self._find(state, token, patch.event_id)
            record.update(patch.to_record())
            return record

        return CalendarEvent.from_record(self.mutate(_patch))

    async def delete_event(self, token: str, event_id: str) -> str:
        def _delete(state: Dict[str, Any]) -> str:
            record = self._find(state, token, event_id)
            self._records(state, token).remove(record)
            return str(record.get("summary") or "(No title)")

        return self.mutate(_delete)

    async def add_attendee(self, token: str, event_id: str, email: str) -> CalendarEvent:
        def _add(state: Dict[str, Any]) -> Dict[str, Any]:
            record = self._find(state, token, event_id)
            attendees = record.setdefault("attendees", [])
            if not any(str(item.get("email", "")).lower() == email.lower() for item in attendees):
                attendees.append(Attendee(email=email).to_record())
            return record

        return CalendarEvent.from_record(self.mutate(_add))

    async def remove_attendee(self, token: str, event_id: str, email: str) -> CalendarEvent:
        def _remove(state: Dict[str, Any]) -> Dict[str, Any]:
            record = self._find(state, token, event_id)
            record["attendees"] = [
                item for item in record.get("attendees", []) if str(item.get("email", "")).lower() != email.lower()
            ]
            return record

        return CalendarEvent.from_record(self.mutate(_remove))

    async def get_stats(self, token: str) -> CalendarStats:
        window_start, window_end = stats_window(self._clock(), self._stats_window_days)
        events = await self.list_events(token, window_start, window_end)
        return compute_stats(
            events,
            window_start=window_start,
            window_end=window_end,
            tz=self._tz,
            top_n=self._stats_top_attendees,
        )

    # ------------------------------------------------------------------ helpers

    def _as_local(self, moment: EventTime) -> datetime:
        if moment.date_time is not None:
            return to_local(moment.date_time, self._tz)
        assert moment.day is not None
        # All-day end dates are exclusive, matching the Google wire format.
        return datetime.combine(moment.day, datetime.min.time(), tzinfo=self._tz)

    def _overlaps(self, event: CalendarEvent, start: datetime, end: datetime) -> bool:
        event_start = self._as_local(event.start)
        event_end = max(self._as_local(event.end), event_start)
        if event_start == event_end:
            return start <= event_start < end
        return event_start < end and event_end > start

    def _sort_key(self, event: CalendarEvent) -> datetime:
        return self._as_local(event.start)


__all__ = ["CalendarStore", "CALENDAR_STATE_FILE", "DEFAULT_CALENDAR_STATE"]
