"""Freshness of cached provider data, derived from the tables each resource writes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import (
    Backlink,
    BacklinkTimeseries,
    Base,
    RankedKeywordsHistory,
    RefreshLog,
    TopPage,
    TrafficSource,
)
from db.repository import DataRepository
from models import FreshnessRecord, ResourceKey, ResourceType
from seosync.core.clock import as_utc, utc_now
from seosync.core.errors import StaleCheckError


@dataclass(frozen=True, slots=True)
class FreshnessSource:
    table: str
    model: Type[Base]
    # column that must be non-null for a row to count (provider-sourced rows only)
    provider_marker: Optional[str] = None
    timestamp_column: str = "updated_at"
    # (column, allowed values) pairs a row must match to count
    filters: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()


BACKLINKS_SOURCE = FreshnessSource("backlinks", Backlink, provider_marker="first_seen")
TIMESERIES_SOURCE = FreshnessSource("backlink_timeseries", BacklinkTimeseries)
TOP_PAGES_SOURCE = FreshnessSource("top_pages", TopPage)
TRAFFIC_SOURCE = FreshnessSource("traffic_sources", TrafficSource)
RANKED_KEYWORDS_SOURCE = FreshnessSource("ranked_keywords_history", RankedKeywordsHistory)

SUCCESSFUL_REFRESH_STATUSES = ("success", "partial")


def refresh_log_source(*resource_types: ResourceType) -> FreshnessSource:
    """Completed refreshes count even when they wrote no rows (empty provider result)."""
    return FreshnessSource(
        "refresh_logs",
        RefreshLog,
        timestamp_column="created_at",
        filters=(
            ("resource_type", tuple(rt.value for rt in resource_types)),
            ("status", SUCCESSFUL_REFRESH_STATUSES),
        ),
    )


RESOURCE_TABLES: Dict[ResourceType, Tuple[FreshnessSource, ...]] = {
    ResourceType.BACKLINKS: (BACKLINKS_SOURCE, TIMESERIES_SOURCE, refresh_log_source(ResourceType.BACKLINKS)),
    ResourceType.TOP_PAGES: (TOP_PAGES_SOURCE, refresh_log_source(ResourceType.TOP_PAGES)),
    ResourceType.TRAFFIC_SOURCES: (TRAFFIC_SOURCE, refresh_log_source(ResourceType.TRAFFIC_SOURCES)),
    ResourceType.RANKED_KEYWORDS: (RANKED_KEYWORDS_SOURCE, refresh_log_source(ResourceType.RANKED_KEYWORDS)),
    ResourceType.DASHBOARD: (
        TRAFFIC_SOURCE,
        RANKED_KEYWORDS_SOURCE,
        BACKLINKS_SOURCE,
        TOP_PAGES_SOURCE,
        refresh_log_source(*ResourceType),
    ),
}


def compute_staleness(
    last_updated_at: Optional[datetime],
    ttl: timedelta,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return expiry details; data with no timestamp or a zero TTL is always stale."""

    now = as_utc(now) or utc_now()
    last_updated_at = as_utc(last_updated_at)

    expires_at: Optional[datetime] = None
    if last_updated_at is not None:
        expires_at = last_updated_at + ttl

    is_stale = True
    if last_updated_at is not None and ttl > timedelta(0):
        is_stale = now - last_updated_at >= ttl

    return {
        "last_updated_at": last_updated_at,
        "ttl": ttl,
        "expires_at": expires_at,
        "is_stale": is_stale,
    }


class FreshnessOracle:
    """
    Read-only view of when a resource was last written.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resource_tables: Optional[Mapping[ResourceType, Tuple[FreshnessSource, ...]]] = None,
    ):
        self.session_factory = session_factory
        self.resource_tables = resource_tables or RESOURCE_TABLES

    async def freshness(self, key: ResourceKey) -> FreshnessRecord:
        sources = self.resource_tables.get(key.resource_type)
        if not sources:
            raise StaleCheckError(
                f"No tables mapped for resource {key.resource_type.value}",
                tenant_id=key.tenant_id,
                resource_type=key.resource_type,
            )

        stamps: Dict[str, Optional[datetime]] = {}
        try:
            async with self.session_factory() as session:
                repo = DataRepository(session)
                for source in sources:
                    stamps[source.table] = await repo.latest_updated_at(
                        source.model,
                        key.tenant_id,
                        source.provider_marker,
                        timestamp_column=source.timestamp_column,
                        filters=source.filters,
                    )
        except SQLAlchemyError as exc:
            raise StaleCheckError(
                f"Could not read freshness for {key}: {exc}",
                tenant_id=key.tenant_id,
                resource_type=key.resource_type,
            ) from exc

        present = [stamp for stamp in stamps.values() if stamp is not None]
        return FreshnessRecord(last_updated_at=max(present) if present else None, tables=stamps)

    async def last_updated_at(self, key: ResourceKey) -> Optional[datetime]:
        return (await self.freshness(key)).last_updated_at

    async def is_fresh(self, key: ResourceKey, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        last = await self.last_updated_at(key)
        return not compute_staleness(last, ttl, now=now)["is_stale"]


__all__ = [
    "FreshnessOracle",
    "FreshnessSource",
    "RESOURCE_TABLES",
    "compute_staleness",
    "refresh_log_source",
]
