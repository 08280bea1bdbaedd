"""TTL cooldown: earliest time a fresh resource may be fetched again."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from seosync.core.staleness import compute_staleness


def next_allowed_time(last_updated_at: Optional[datetime], ttl: timedelta) -> Optional[datetime]:
    if last_updated_at is None:
        return None
    return compute_staleness(last_updated_at, ttl)["expires_at"]


def is_in_cooldown(*, last_updated_at: Optional[datetime], ttl: timedelta, now: datetime) -> bool:
    return not compute_staleness(last_updated_at, ttl, now=now)["is_stale"]


__all__ = ["next_allowed_time", "is_in_cooldown"]
