"""One-shot refresh runner.

Refreshes explicit tenants, or runs a single rotation batch when no tenant is
given. Intended for operators and external cron; forced refreshes from this
runner count as authorized.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from db.manager import DatabaseManager
from models import ResourceType
from scheduler.engine import BatchRotationScheduler
from seosync.core.errors import SeoSyncError
from seosync.core.settings import Settings, get_settings
from seosync.core.validators import normalize_tenant_ids
from seosync.refresh.coordinator import RefreshCoordinator, build_coordinator
from seosync.utils.logger import get_logger, setup_logging

log = get_logger(__name__)


async def refresh_tenants(
    coordinator: RefreshCoordinator,
    tenant_ids: List[str],
    resource_type: ResourceType,
    *,
    force: bool = False,
) -> Dict[str, Dict[str, Any]]:
    results: Dict[str, Dict[str, Any]] = {}
    for tenant_id in tenant_ids:
        try:
            outcome = await coordinator.refresh(tenant_id, resource_type, force=force, authorized=force)
            results[tenant_id] = outcome.to_dict()
        except SeoSyncError as e:
            log.error(f"Refresh failed for {tenant_id}: {e.message}")
            results[tenant_id] = {"error": e.as_dict()}
    return results


async def run(
    tenant_ids: Optional[List[str]] = None,
    resource: Optional[str] = None,
    force: bool = False,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    settings = settings or get_settings()
    resource_type = ResourceType.parse(resource) if resource else settings.scheduler.resource_type

    db_manager = DatabaseManager(settings.database_url)
    await db_manager.create_all()
    coordinator = build_coordinator(settings, db_manager)
    try:
        if tenant_ids:
            return {"results": await refresh_tenants(coordinator, tenant_ids, resource_type, force=force)}

        rotation = BatchRotationScheduler(
            coordinator,
            db_manager.session_factory,
            batch_size=settings.scheduler.batch_size,
            resource_type=resource_type,
            max_concurrency=settings.scheduler.max_concurrency,
        )
        report = await rotation.tick()
        return {"batch": report.to_dict() if report else None}
    finally:
        await coordinator.shutdown()
        await coordinator.pipeline.client.fetcher.close()
        await db_manager.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SEO data refresh runner")
    parser.add_argument(
        "--tenant",
        dest="tenants",
        action="append",
        help="Tenant id to refresh. Repeat or comma-separate for multiple tenants.",
    )
    parser.add_argument(
        "--resource",
        choices=[rt.value for rt in ResourceType],
        help="Resource type to refresh (default: scheduler.resource_type from settings)",
    )
    parser.add_argument("--force", action="store_true", help="Bypass the TTL check")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    load_dotenv()
    setup_logging()

    result = asyncio.run(run(normalize_tenant_ids(args.tenants), args.resource, args.force))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
