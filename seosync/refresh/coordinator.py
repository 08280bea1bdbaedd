"""Trigger surface for interactive and scheduled refreshes."""

from __future__ import annotations

from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.manager import DatabaseManager
from models import RefreshOutcome, ResourceKey, ResourceType
from seosync.core.errors import PolicyViolation
from seosync.core.fetcher import Fetcher
from seosync.core.settings import Settings
from seosync.core.staleness import FreshnessOracle
from seosync.refresh.decision import RefreshPolicy
from seosync.refresh.inflight import InFlightDeduplicator
from seosync.refresh.pipeline import RefreshPipeline, load_tenant
from seosync.refresh.policy import TtlTable
from seosync.sources.dataforseo import DataForSEOClient
from seosync.utils.logger import get_logger

log = get_logger(__name__)


class RefreshCoordinator:
    """
    policy -> dedup -> pipeline.

    A fresh, unforced request comes back as a skipped outcome rather than an error.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: RefreshPolicy,
        deduplicator: InFlightDeduplicator,
        pipeline: RefreshPipeline,
    ):
        self.session_factory = session_factory
        self.policy = policy
        self.deduplicator = deduplicator
        self.pipeline = pipeline

    async def refresh(
        self,
        tenant_id: str,
        resource_type: Union[str, ResourceType],
        force: bool = False,
        *,
        authorized: bool = False,
    ) -> RefreshOutcome:
        key = ResourceKey(tenant_id, resource_type)
        if force and not authorized:
            raise PolicyViolation(
                "Forced refresh requires an authorized caller",
                tenant_id=key.tenant_id,
                resource_type=key.resource_type,
            )

        tenant = await load_tenant(self.session_factory, key)
        decision = await self.policy.should_refresh(key, tenant.tenant_class, force=force)

        if not decision.perform:
            log.info(f"[refresh] SKIP {key.tenant_id} {key.resource_type.value} reason={decision.reason}")
            return RefreshOutcome(
                skipped=True,
                reason=decision.reason,
                last_refreshed_at=decision.last_updated_at,
                next_allowed_at=decision.next_allowed_at,
            )

        log.info(f"[refresh] RUN {key.tenant_id} {key.resource_type.value} reason={decision.reason}")
        summary = await self.deduplicator.run_exclusive(key, lambda: self.pipeline.refresh(key, tenant))
        return RefreshOutcome(
            skipped=False,
            reason=decision.reason,
            last_refreshed_at=summary.last_refreshed_at,
            next_allowed_at=summary.last_refreshed_at + decision.ttl,
            items_written=summary.items_written,
            warnings=list(summary.warnings),
        )

    async def shutdown(self) -> None:
        await self.deduplicator.wait_idle()


def build_coordinator(
    settings: Settings,
    db_manager: DatabaseManager,
    fetcher: Optional[Fetcher] = None,
) -> RefreshCoordinator:
    """Wire the refresh components from settings."""

    fetcher = fetcher or Fetcher(
        settings.provider.base_url,
        credentials_b64=settings.provider.credentials_b64,
        timeout=settings.provider.timeout_seconds,
        max_retries=settings.provider.max_retries,
    )
    session_factory = db_manager.session_factory
    oracle = FreshnessOracle(session_factory)
    policy = RefreshPolicy(oracle, TtlTable.from_settings(settings.ttl))
    pipeline = RefreshPipeline(session_factory, DataForSEOClient(fetcher, settings.provider))
    return RefreshCoordinator(session_factory, policy, InFlightDeduplicator(), pipeline)


__all__ = ["RefreshCoordinator", "build_coordinator"]
