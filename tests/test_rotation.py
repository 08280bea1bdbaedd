import asyncio
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from models import RefreshOutcome, ResourceType
from scheduler.cron import AUTO_REFRESH_JOB_ID, schedule_auto_refresh
from scheduler.cursor import InMemoryCursorStore
from scheduler.engine import BatchRotationScheduler, SchedulerState
from seosync.core.errors import ProviderFetchError
from seosync.core.settings import load_settings

ELIGIBLE = [{"id": f"t{index}", "domain": f"tenant{index}.com"} for index in range(1, 8)]
INELIGIBLE = [
    {"id": "t0-archived", "domain": "old.com", "status": "ARCHIVED"},
    {"id": "t3-suspended", "domain": "late.com", "status": "SUSPENDED"},
    {"id": "t4-nodomain", "domain": None},
    {"id": "t5-blank", "domain": ""},
    {"id": "t6-optout", "domain": "quiet.com", "auto_refresh_enabled": False},
]


class RecordingCoordinator:
    def __init__(self, fail=(), skip=(), gate=None, delay=0.0):
        self.calls = []
        self.fail = set(fail)
        self.skip = set(skip)
        self.gate = gate
        self.delay = delay
        self.active = 0
        self.peak = 0

    async def refresh(self, tenant_id, resource_type, force=False, **kwargs):
        self.calls.append((tenant_id, resource_type, force))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if tenant_id in self.fail:
                raise ProviderFetchError("upstream 500", tenant_id=tenant_id, status_code=500)
            return RefreshOutcome(skipped=tenant_id in self.skip, reason="test")
        finally:
            self.active -= 1


def test_rotation_covers_every_eligible_tenant_then_wraps(make_db):
    async def scenario():
        manager = await make_db(*ELIGIBLE, *INELIGIBLE)
        coordinator = RecordingCoordinator()
        rotation = BatchRotationScheduler(coordinator, manager.session_factory, batch_size=2)
        reports = [await rotation.tick() for _ in range(5)]
        await manager.close()
        return coordinator, reports

    coordinator, reports = asyncio.run(scenario())

    assert [report.tenants for report in reports] == [
        ["t1", "t2"], ["t3", "t4"], ["t5", "t6"], ["t7"], ["t1", "t2"],
    ]
    assert [report.wrapped for report in reports] == [False, False, False, False, True]
    visited = {call[0] for call in coordinator.calls}
    assert visited == {tenant["id"] for tenant in ELIGIBLE}
    assert all(resource is ResourceType.DASHBOARD and force is False for _, resource, force in coordinator.calls)


def test_failure_does_not_stop_the_batch_or_the_cursor(make_db):
    async def scenario():
        manager = await make_db(*ELIGIBLE)
        coordinator = RecordingCoordinator(fail={"t2"}, skip={"t3"})
        cursors = InMemoryCursorStore()
        rotation = BatchRotationScheduler(
            coordinator, manager.session_factory, batch_size=3, cursor_store=cursors
        )
        report = await rotation.tick()
        cursor = await cursors.get("auto_refresh")
        following = await rotation.tick()
        await manager.close()
        return report, cursor, following

    report, cursor, following = asyncio.run(scenario())

    assert report.performed == ["t1"]
    assert report.skipped == ["t3"]
    assert report.failed == {"t2": "upstream 500"}
    assert cursor == "t3"
    assert following.tenants == ["t4", "t5", "t6"]
    assert report.to_dict()["failed"] == {"t2": "upstream 500"}


def test_overlapping_tick_is_skipped(make_db):
    async def scenario():
        manager = await make_db(*ELIGIBLE)
        gate = asyncio.Event()
        coordinator = RecordingCoordinator(gate=gate)
        rotation = BatchRotationScheduler(coordinator, manager.session_factory, batch_size=2)

        first = asyncio.create_task(rotation.tick())
        while not coordinator.calls:
            await asyncio.sleep(0.01)
        assert rotation.state is SchedulerState.RUNNING
        overlapping = await rotation.tick()
        gate.set()
        report = await first
        await manager.close()
        return overlapping, report, rotation.state

    overlapping, report, state = asyncio.run(scenario())

    assert overlapping is None
    assert report.tenants == ["t1", "t2"]
    assert state is SchedulerState.IDLE


def test_concurrency_is_bounded(make_db):
    async def scenario():
        manager = await make_db(*ELIGIBLE)
        coordinator = RecordingCoordinator(delay=0.02)
        rotation = BatchRotationScheduler(
            coordinator, manager.session_factory, batch_size=6, max_concurrency=2
        )
        await rotation.tick()
        await manager.close()
        return coordinator

    coordinator = asyncio.run(scenario())

    assert len(coordinator.calls) == 6
    assert coordinator.peak == 2


def test_empty_population_returns_empty_report(make_db):
    async def scenario():
        manager = await make_db(*INELIGIBLE)
        report = await BatchRotationScheduler(RecordingCoordinator(), manager.session_factory).tick()
        await manager.close()
        return report

    report = asyncio.run(scenario())

    assert report.tenants == []
    assert not report.wrapped


def test_schedule_auto_refresh_registers_single_instance_job():
    settings = load_settings({"scheduler": {"interval_minutes": 30}}, environ={})

    async def scenario():
        # AsyncIOScheduler binds to the running loop
        return schedule_auto_refresh(AsyncIOScheduler(), rotation=object(), settings=settings)

    job = asyncio.run(scenario())

    assert job.id == AUTO_REFRESH_JOB_ID
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.trigger.interval == timedelta(minutes=30)


def test_schedule_auto_refresh_disabled():
    settings = load_settings({"scheduler": {"auto_refresh_enabled": False}}, environ={})

    async def scenario():
        return schedule_auto_refresh(AsyncIOScheduler(), rotation=object(), settings=settings)

    assert asyncio.run(scenario()) is None
