from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, Optional

import orjson


@dataclass
class _CacheEntry:
    data: Any
    stored_at: float


@dataclass
class RequestCache:
    """Short-lived memo for read-only tool results within a single chat request."""

    ttl: timedelta = timedelta(seconds=60)
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, _CacheEntry] = field(default_factory=dict)

    @staticmethod
    def key(name: str, params: Mapping[str, Any]) -> str:
        return f"{name}:{orjson.dumps(dict(params), option=orjson.OPT_SORT_KEYS, default=str).decode()}"

    def get(self, name: str, params: Mapping[str, Any]) -> Optional[Any]:
        key = self.key(name, params)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.stored_at > self.ttl.total_seconds():
            self._entries.pop(key, None)
            return None
        return entry.data

    def set(self, name: str, params: Mapping[str, Any], data: Any) -> None:
        self._entries[self.key(name, params)] = _CacheEntry(data=data, stored_at=self.clock())

    def prune(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if now - entry.stored_at > self.ttl.total_seconds()]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
