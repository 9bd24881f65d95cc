from __future__ import annotations

from enum import Enum


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ResponseStatus(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    NEEDS_ACTION = "needsAction"


class ActionKind(str, Enum):
    """What the user asked for, as far as calendar side effects go."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ATTENDEES = "attendees"
    READ = "read"
    NONE = "none"

    @property
    def is_mutation(self) -> bool:
        return self in {ActionKind.CREATE, ActionKind.UPDATE, ActionKind.DELETE, ActionKind.ATTENDEES}
