from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .enums import EventStatus, ResponseStatus


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise ValueError(f"Unsupported datetime value: {value!r}")


@dataclass(slots=True, frozen=True)
class EventTime:
    """Either a timed instant or an all-day date, mirroring the calendar wire format."""

    date_time: Optional[datetime] = None
    day: Optional[date] = None
    time_zone: Optional[str] = None

    @property
    def is_all_day(self) -> bool:
        return self.date_time is None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EventTime":
        raw_date_time = record.get("dateTime")
        if raw_date_time:
            return cls(date_time=_parse_datetime(raw_date_time), time_zone=record.get("timeZone"))
        raw_date = record.get("date")
        if raw_date:
            return cls(day=date.fromisoformat(str(raw_date)[:10]), time_zone=record.get("timeZone"))
        raise ValueError("event time needs either dateTime or date")

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        if self.date_time is not None:
            record["dateTime"] = self.date_time.isoformat()
        elif self.day is not None:
            record["date"] = self.day.isoformat()
        if self.time_zone:
            record["timeZone"] = self.time_zone
        return record


@dataclass(slots=True, frozen=True)
class Attendee:
    email: str
    display_name: Optional[str] = None
    response_status: Optional[ResponseStatus] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Attendee":
        status = record.get("responseStatus")
        return cls(
            email=str(record.get("email") or ""),
            display_name=record.get("displayName") or None,
            response_status=ResponseStatus(status) if status in {item.value for item in ResponseStatus} else None,
        )

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"email": self.email}
        if self.display_name:
            record["displayName"] = self.display_name
        if self.response_status:
            record["responseStatus"] = self.response_status.value
        return record


@dataclass(slots=True)
class CalendarEvent:
    id: str
    title: str
    start: EventTime
    end: EventTime
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[Attendee] = field(default_factory=list)
    status: EventStatus = EventStatus.CONFIRMED
    html_link: Optional[str] = None

    @property
    def is_all_day(self) -> bool:
        return self.start.is_all_day or self.end.is_all_day

    def has_attendee(self, email: str) -> bool:
        wanted = email.strip().lower()
        return any(attendee.email.lower() == wanted for attendee in self.attendees)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "CalendarEvent":
        status = record.get("status") or EventStatus.CONFIRMED.value
        return cls(
            id=str(record.get("id") or ""),
            title=str(record.get("summary") or "(No title)"),
            start=EventTime.from_record(record.get("start") or {}),
            end=EventTime.from_record(record.get("end") or {}),
            description=record.get("description") or None,
            location=record.get("location") or None,
            attendees=[Attendee.from_record(item) for item in record.get("attendees") or []],
            status=EventStatus(status) if status in {item.value for item in EventStatus} else EventStatus.CONFIRMED,
            html_link=record.get("htmlLink") or None,
        )

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "id": self.id,
            "summary": self.title,
            "start": self.start.to_record(),
            "end": self.end.to_record(),
            "status": self.status.value,
            "attendees": [attendee.to_record() for attendee in self.attendees],
        }
        if self.description is not None:
            record["description"] = self.description
        if self.location is not None:
            record["location"] = self.location
        if self.html_link:
            record["htmlLink"] = self.html_link
        return record


@dataclass(slots=True, frozen=True)
class EventDraft:
    title: str
    start: datetime
    end: datetime
    time_zone: str
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Tuple[str, ...] = ()

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "summary": self.title,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.time_zone},
        }
        if self.description is not None:
            record["description"] = self.description
        if self.location is not None:
            record["location"] = self.location
        if self.attendees:
            record["attendees"] = [{"email": email} for email in self.attendees]
        return record


@dataclass(slots=True, frozen=True)
class EventPatch:
    """Partial update; ``None`` means "leave unchanged"."""

    event_id: str
    time_zone: str
    title: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.to_record()

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        if self.title is not None:
            record["summary"] = self.title
        if self.description is not None:
            record["description"] = self.description
        if self.location is not None:
            record["location"] = self.location
        if self.start is not None:
            record["start"] = {"dateTime": self.start.isoformat(), "timeZone": self.time_zone}
        if self.end is not None:
            record["end"] = {"dateTime": self.end.isoformat(), "timeZone": self.time_zone}
        return record


@dataclass(slots=True, frozen=True)
class AttendeeFrequency:
    email: str
    meeting_count: int


@dataclass(slots=True, frozen=True)
class CalendarStats:
    window_start: datetime
    window_end: datetime
    total_events: int
    total_meeting_minutes: float
    minutes_by_weekday: Dict[str, float]
    top_attendees: Tuple[AttendeeFrequency, ...]

    @property
    def total_meeting_hours(self) -> float:
        return round(self.total_meeting_minutes / 60, 1)

    @property
    def window_days(self) -> int:
        return max((self.window_end - self.window_start).days, 1)

    @property
    def average_meetings_per_day(self) -> float:
        return round(self.total_events / self.window_days, 1)


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """One user message plus the prior history it was sent with."""

    message: str
    history: Tuple[ChatMessage, ...] = ()

    def as_messages(self) -> List[Dict[str, Any]]:
        return [*(item.to_dict() for item in self.history), {"role": "user", "content": self.message}]
