"""Refresh decision engine based on TTL policy and stored freshness."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Union

from models import RefreshDecision, ResourceKey, TenantClass
from seosync.core.clock import as_utc, utc_now
from seosync.core.staleness import FreshnessOracle
from seosync.refresh.cooldown import is_in_cooldown, next_allowed_time
from seosync.refresh.policy import TtlTable


def evaluate_refresh(
    last_updated_at: Optional[datetime],
    ttl: timedelta,
    *,
    force: bool = False,
    now: Optional[datetime] = None,
) -> RefreshDecision:
    now = as_utc(now) or utc_now()
    last_updated_at = as_utc(last_updated_at)

    if force:
        return RefreshDecision(True, ttl, "forced", last_updated_at=last_updated_at)

    if last_updated_at is None:
        return RefreshDecision(True, ttl, "never refreshed")

    if ttl <= timedelta(0):
        return RefreshDecision(True, ttl, "no ttl configured", last_updated_at=last_updated_at)

    if not is_in_cooldown(last_updated_at=last_updated_at, ttl=ttl, now=now):
        overdue = int((now - last_updated_at - ttl).total_seconds())
        return RefreshDecision(True, ttl, f"stale by {overdue}s", last_updated_at=last_updated_at)

    next_time = next_allowed_time(last_updated_at, ttl)
    remaining = int((next_time - now).total_seconds())
    return RefreshDecision(
        False,
        ttl,
        f"fresh (next refresh in {remaining}s)",
        last_updated_at=last_updated_at,
        next_allowed_at=next_time,
    )


class RefreshPolicy:
    """
    Decides whether a resource should be fetched now.
    Forced requests skip the freshness read entirely.
    """

    def __init__(self, oracle: FreshnessOracle, ttl_table: Optional[TtlTable] = None):
        self.oracle = oracle
        self.ttl_table = ttl_table or TtlTable()

    async def should_refresh(
        self,
        key: ResourceKey,
        tenant_class: Union[str, TenantClass, None] = None,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> RefreshDecision:
        ttl = self.ttl_table.ttl_for(key.resource_type, tenant_class)
        if force:
            return evaluate_refresh(None, ttl, force=True, now=now)
        last_updated_at = await self.oracle.last_updated_at(key)
        return evaluate_refresh(last_updated_at, ttl, now=now)


__all__ = ["RefreshPolicy", "evaluate_refresh"]
