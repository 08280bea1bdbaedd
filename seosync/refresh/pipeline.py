"""
Fetch+persist pipeline for one (tenant, resource) refresh.

Every provider call for the resource completes before the first write, and
all writes for the cycle share one transaction.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.repository import DataRepository
from models import RefreshSummary, ResourceKey, ResourceType, TenantRecord
from seosync.core.clock import utc_now
from seosync.core.errors import PersistError, ProviderFetchError, StaleCheckError, TenantNotFoundError
from seosync.core.validators import DomainValidationError, normalize_domain
from seosync.sources.dataforseo import DataForSEOClient
from seosync.utils.logger import get_logger

log = get_logger(__name__)

FetchFn = Callable[[str, ResourceKey], Awaitable[Any]]
PersistFn = Callable[[DataRepository, str, Any, datetime], Awaitable[int]]


@dataclass(frozen=True, slots=True)
class SyncStep:
    name: str
    fetch: FetchFn
    persist: PersistFn
    optional: bool = False


async def load_tenant(
    session_factory: async_sessionmaker[AsyncSession],
    key: ResourceKey,
    *,
    require_domain: bool = True,
) -> TenantRecord:
    try:
        async with session_factory() as session:
            tenant = await DataRepository(session).get_tenant(key.tenant_id)
    except SQLAlchemyError as exc:
        raise StaleCheckError(
            f"Could not load tenant {key.tenant_id}: {exc}",
            tenant_id=key.tenant_id,
            resource_type=key.resource_type,
            phase="tenant_lookup",
        ) from exc

    if tenant is None:
        raise TenantNotFoundError(
            f"Tenant {key.tenant_id} not found", tenant_id=key.tenant_id, resource_type=key.resource_type
        )
    if require_domain and not (tenant.domain or "").strip():
        raise TenantNotFoundError(
            f"Tenant {key.tenant_id} has no domain configured",
            tenant_id=key.tenant_id,
            resource_type=key.resource_type,
        )
    return tenant


class RefreshPipeline:
    """
    Runs the declared SyncSteps for a resource: fetch everything, then persist in one transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: DataForSEOClient,
        steps: Optional[Mapping[ResourceType, Tuple[SyncStep, ...]]] = None,
    ):
        self.session_factory = session_factory
        self.client = client
        self.steps = dict(steps) if steps is not None else self.default_steps()

    # ------------------------------------------------------------------ steps

    @staticmethod
    def _context(key: ResourceKey) -> Dict[str, Any]:
        return {"tenant_id": key.tenant_id, "resource_type": key.resource_type}

    async def _fetch_backlinks(self, target: str, key: ResourceKey):
        return await self.client.fetch_backlinks(target, **self._context(key))

    async def _fetch_timeseries(self, target: str, key: ResourceKey):
        return await self.client.fetch_backlink_timeseries(target, **self._context(key))

    async def _fetch_top_pages(self, target: str, key: ResourceKey):
        return await self.client.fetch_top_pages(target, **self._context(key))

    async def _fetch_traffic_sources(self, target: str, key: ResourceKey):
        return await self.client.fetch_traffic_sources(target, **self._context(key))

    async def _fetch_ranked_keywords(self, target: str, key: ResourceKey):
        return await self.client.fetch_ranked_keywords_summary(target, **self._context(key))

    def default_steps(self) -> Dict[ResourceType, Tuple[SyncStep, ...]]:
        backlinks = SyncStep("backlinks", self._fetch_backlinks, DataRepository.replace_backlinks)
        timeseries = SyncStep(
            "backlink_timeseries", self._fetch_timeseries, DataRepository.replace_backlink_timeseries, optional=True
        )
        top_pages = SyncStep("top_pages", self._fetch_top_pages, DataRepository.replace_top_pages)
        traffic = SyncStep("traffic_sources", self._fetch_traffic_sources, DataRepository.replace_traffic_sources)
        ranked = SyncStep("ranked_keywords", self._fetch_ranked_keywords, DataRepository.upsert_ranked_keywords)
        ranked_optional = SyncStep(
            "ranked_keywords", self._fetch_ranked_keywords, DataRepository.upsert_ranked_keywords, optional=True
        )
        return {
            ResourceType.BACKLINKS: (backlinks, timeseries),
            ResourceType.TOP_PAGES: (top_pages,),
            ResourceType.TRAFFIC_SOURCES: (traffic,),
            ResourceType.RANKED_KEYWORDS: (ranked,),
            ResourceType.DASHBOARD: (traffic, ranked_optional),
        }

    # ---------------------------------------------------------------- refresh

    async def _fetch_all(
        self, steps: Tuple[SyncStep, ...], target: str, key: ResourceKey
    ) -> Tuple[List[Tuple[SyncStep, Any]], List[str]]:
        outcomes = await asyncio.gather(*(step.fetch(target, key) for step in steps), return_exceptions=True)

        fetched: List[Tuple[SyncStep, Any]] = []
        warnings: List[str] = []
        primary_error: Optional[BaseException] = None
        for step, outcome in zip(steps, outcomes):
            if not isinstance(outcome, BaseException):
                fetched.append((step, outcome))
                continue
            if step.optional and isinstance(outcome, ProviderFetchError):
                log.warning(f"[refresh] optional step {step.name} failed for {key}: {outcome.message}")
                warnings.append(f"{step.name}: {outcome.message}")
                continue
            if primary_error is None:
                primary_error = outcome

        if primary_error is not None:
            raise primary_error
        return fetched, warnings

    async def refresh(self, key: ResourceKey, tenant: Optional[TenantRecord] = None) -> RefreshSummary:
        started = time.perf_counter()
        tenant = tenant or await load_tenant(self.session_factory, key)
        try:
            target = normalize_domain(tenant.domain)
        except DomainValidationError as exc:
            raise TenantNotFoundError(str(exc), tenant_id=key.tenant_id, resource_type=key.resource_type) from exc

        steps = self.steps.get(key.resource_type)
        if not steps:
            raise ValueError(f"No sync steps declared for {key.resource_type.value}")

        try:
            fetched, warnings = await self._fetch_all(steps, target, key)
        except ProviderFetchError as exc:
            log.error(f"[refresh] FAIL {key} fetch: {exc.message}")
            await self._log_failure(key, exc, started)
            raise

        now = utc_now()
        written = 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = DataRepository(session)
                    for step, payload in fetched:
                        count = await step.persist(repo, key.tenant_id, payload, now)
                        log.debug(f"[refresh] {key} {step.name}: {count} rows")
                        written += count
                    await repo.log_refresh(
                        key.tenant_id,
                        key.resource_type.value,
                        "partial" if warnings else "success",
                        message="; ".join(warnings) or None,
                        duration_ms=int((time.perf_counter() - started) * 1000),
                        items=written,
                        created_at=now,
                    )
        except SQLAlchemyError as exc:
            log.error(f"[refresh] FAIL {key} persist: {exc}")
            error = PersistError(
                f"Failed to persist {key}: {exc}",
                operation="upsert",
                tenant_id=key.tenant_id,
                resource_type=key.resource_type,
            )
            await self._log_failure(key, error, started)
            raise error from exc

        log.info(f"[refresh] DONE {key} items={written} warnings={len(warnings)}")
        return RefreshSummary(items_written=written, last_refreshed_at=now, warnings=warnings)

    async def _log_failure(self, key: ResourceKey, error: Exception, started: float) -> None:
        """Audit row for a failed cycle, written outside the refresh transaction."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await DataRepository(session).log_refresh(
                        key.tenant_id,
                        key.resource_type.value,
                        "failed",
                        message=str(error)[:1000],
                        duration_ms=int((time.perf_counter() - started) * 1000),
                    )
        except SQLAlchemyError as exc:
            log.warning(f"Could not record failed refresh for {key}: {exc}")


__all__ = ["RefreshPipeline", "SyncStep", "load_tenant"]
