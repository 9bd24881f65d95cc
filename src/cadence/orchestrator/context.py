from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Optional

from ..core.timezone import get_zone
from .cache import RequestCache
from .temporal import VerificationLedger


@dataclass
class RequestContext:
    """Everything scoped to one chat request.

    Created fresh for each request and passed explicitly through the
    resolver, validator and executor; nothing here outlives the request.
    """

    access_token: str
    user_message: str
    now: datetime
    tz: tzinfo
    ledger: VerificationLedger = field(default_factory=VerificationLedger)
    cache: RequestCache = field(default_factory=RequestCache)

    @classmethod
    def create(
        cls,
        *,
        access_token: str,
        user_message: str,
        time_zone: str,
        now: Optional[datetime] = None,
        cache_ttl: timedelta = timedelta(seconds=60),
    ) -> "RequestContext":
        tz = get_zone(time_zone)
        reference = now.astimezone(tz) if now is not None else datetime.now(tz)
        return cls(
            access_token=access_token,
            user_message=user_message,
            now=reference,
            tz=tz,
            cache=RequestCache(ttl=cache_ttl),
        )

    @property
    def time_zone_name(self) -> str:
        return str(self.tz)
