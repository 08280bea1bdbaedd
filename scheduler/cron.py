import asyncio
import sys
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from seosync.utils.logger import setup_logging, get_logger
from seosync.core.settings import Settings, get_settings
from seosync.refresh.coordinator import build_coordinator
from db.manager import DatabaseManager
from scheduler.engine import BatchRotationScheduler

log = get_logger(__name__)

AUTO_REFRESH_JOB_ID = "auto_refresh_rotation"


async def rotation_job(rotation: BatchRotationScheduler):
    """The task executed by the scheduler on every interval."""
    try:
        report = await rotation.tick()
        if report is None:
            return
        if report.failed:
            log.warning(f"Auto-refresh batch had failures: {report.failed}")
    except Exception as e:
        log.exception(f"Critical failure in rotation_job: {e}")


def schedule_auto_refresh(
    scheduler: AsyncIOScheduler,
    rotation: BatchRotationScheduler,
    settings: Settings,
) -> Optional[Job]:
    """
    Registers the rotation tick as an interval job. Returns None when auto-refresh is disabled.
    """
    if not settings.scheduler.auto_refresh_enabled:
        log.info("Auto-refresh disabled; no rotation job registered")
        return None

    job = scheduler.add_job(
        rotation_job,
        IntervalTrigger(minutes=settings.scheduler.interval_minutes),
        args=[rotation],
        id=AUTO_REFRESH_JOB_ID,
        name="tenant_auto_refresh",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    log.info(
        f"Auto-refresh every {settings.scheduler.interval_minutes} min, "
        f"batch={settings.scheduler.batch_size}, resource={settings.scheduler.resource_type.value}"
    )
    return job


async def main(run_now: bool = False):
    # 1. Setup Logging
    load_dotenv()
    setup_logging()
    log.info("=== SEO Sync Refresh Scheduler Starting ===")

    settings = get_settings()

    # 2. Initialize Database
    db_manager = DatabaseManager(settings.database_url)
    if not await db_manager.check_connection():
        log.critical("Could not connect to database. Scheduler exiting.")
        return

    # 3. Wire refresh components
    coordinator = build_coordinator(settings, db_manager)
    rotation = BatchRotationScheduler(
        coordinator,
        db_manager.session_factory,
        batch_size=settings.scheduler.batch_size,
        resource_type=settings.scheduler.resource_type,
        max_concurrency=settings.scheduler.max_concurrency,
    )

    # 4. Setup Scheduler
    scheduler = AsyncIOScheduler()
    job = schedule_auto_refresh(scheduler, rotation, settings)
    scheduler.start()

    if run_now and job is not None:
        log.info("Running rotation immediately (--now flag detected)")
        await rotation_job(rotation)

    # Keep the process running
    try:
        while True:
            await asyncio.sleep(100)
    except (KeyboardInterrupt, SystemExit):
        log.info("Scheduler shutting down...")
    finally:
        scheduler.shutdown(wait=False)
        await coordinator.shutdown()
        await coordinator.pipeline.client.fetcher.close()
        await db_manager.close()


if __name__ == "__main__":
    asyncio.run(main(run_now="--now" in sys.argv))
