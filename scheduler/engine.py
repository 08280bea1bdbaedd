import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.repository import DataRepository
from models import ResourceType, TenantRecord
from scheduler.cursor import CursorStore, InMemoryCursorStore
from seosync.core.errors import SeoSyncError
from seosync.utils.logger import get_logger

log = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(slots=True)
class BatchReport:
    tenants: List[str] = field(default_factory=list)
    performed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    wrapped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenants": list(self.tenants),
            "performed": list(self.performed),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "wrapped": self.wrapped,
        }


class BatchRotationScheduler:
    """
    Walks the eligible tenant population in id order, a bounded batch per tick.

    The cursor moves to the last tenant of each batch regardless of per-tenant
    results; an empty page resets it so the next pass starts from the first tenant.
    """

    def __init__(
        self,
        coordinator,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_size: int = 5,
        resource_type: Union[str, ResourceType] = ResourceType.DASHBOARD,
        max_concurrency: int = 1,
        cursor_store: Optional[CursorStore] = None,
        job_name: str = "auto_refresh",
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.coordinator = coordinator
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.resource_type = ResourceType.parse(resource_type)
        self.max_concurrency = max(1, max_concurrency)
        self.cursor_store = cursor_store or InMemoryCursorStore()
        self.job_name = job_name
        self.state = SchedulerState.IDLE

    async def _load_batch(self, after: Optional[str]) -> List[TenantRecord]:
        async with self.session_factory() as session:
            return await DataRepository(session).list_eligible_tenants(after, self.batch_size)

    async def _refresh_tenant(self, tenant: TenantRecord, report: BatchReport, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            try:
                outcome = await self.coordinator.refresh(tenant.id, self.resource_type, force=False)
            except SeoSyncError as e:
                log.error(f"Auto-refresh failed for {tenant.id}: {e.as_dict()}")
                report.failed[tenant.id] = e.message
                return
            except Exception as e:
                log.exception(f"Unexpected error auto-refreshing {tenant.id}: {e}")
                report.failed[tenant.id] = str(e)
                return

        if outcome.skipped:
            report.skipped.append(tenant.id)
        else:
            report.performed.append(tenant.id)

    async def tick(self) -> Optional[BatchReport]:
        """
        Process one batch. Returns None when a previous tick is still running.
        """
        if self.state is SchedulerState.RUNNING:
            log.warning(f"[{self.job_name}] previous tick still running; skipping")
            return None

        self.state = SchedulerState.RUNNING
        start_time = time.time()
        try:
            cursor = await self.cursor_store.get(self.job_name)
            tenants = await self._load_batch(cursor)
            wrapped = False
            if not tenants and cursor is not None:
                log.info(f"[{self.job_name}] reached end of tenant list; wrapping around")
                await self.cursor_store.reset(self.job_name)
                wrapped = True
                tenants = await self._load_batch(None)

            report = BatchReport(tenants=[tenant.id for tenant in tenants], wrapped=wrapped)
            if not tenants:
                log.info(f"[{self.job_name}] no eligible tenants")
                return report

            semaphore = asyncio.Semaphore(self.max_concurrency)
            await asyncio.gather(*(self._refresh_tenant(tenant, report, semaphore) for tenant in tenants))
            await self.cursor_store.set(self.job_name, tenants[-1].id)

            elapsed = time.time() - start_time
            log.info(
                f"[{self.job_name}] batch done in {elapsed:.2f}s: "
                f"{len(report.performed)} refreshed, {len(report.skipped)} skipped, "
                f"{len(report.failed)} failed, cursor={tenants[-1].id}"
            )
            return report
        finally:
            self.state = SchedulerState.IDLE
