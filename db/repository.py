import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    Backlink,
    BacklinkTimeseries,
    Base,
    Client,
    RankedKeywordsHistory,
    RefreshLog,
    TopPage,
    TrafficSource,
    url_hash,
)
from models import EXCLUDED_STATUSES, TenantRecord
from seosync.core.clock import as_utc

log = logging.getLogger(__name__)

# keeps multi-row VALUES under SQLite's bound-parameter limit
UPSERT_CHUNK_SIZE = 50


class DataRepository:
    """
    Store operations for the refresh layer. Never commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    # ------------------------------------------------------------------ tenants

    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        result = await self.session.execute(select(Client).where(Client.id == tenant_id))
        client = result.scalar_one_or_none()
        return TenantRecord.from_row(client) if client else None

    async def list_eligible_tenants(self, after: Optional[str], limit: int) -> List[TenantRecord]:
        """
        Next page of auto-refreshable tenants ordered by id, strictly after the cursor.
        """
        stmt = select(Client).where(
            Client.domain.isnot(None),
            Client.domain != "",
            Client.auto_refresh_enabled.is_(True),
            func.upper(Client.status).notin_(sorted(EXCLUDED_STATUSES)),
        )
        if after is not None:
            stmt = stmt.where(Client.id > after)
        stmt = stmt.order_by(Client.id).limit(limit)
        result = await self.session.execute(stmt)
        return [TenantRecord.from_row(row) for row in result.scalars().all()]

    # ---------------------------------------------------------------- freshness

    async def latest_updated_at(
        self,
        model: Type[Base],
        client_id: str,
        provider_marker: Optional[str] = None,
        *,
        timestamp_column: str = "updated_at",
        filters: Sequence[Tuple[str, Sequence[str]]] = (),
    ) -> Optional[datetime]:
        """
        MAX(timestamp_column) for the tenant's rows; optionally only rows carrying the
        provider marker and matching every (column, allowed values) filter.
        """
        stmt = select(func.max(getattr(model, timestamp_column))).where(model.client_id == client_id)
        if provider_marker:
            stmt = stmt.where(getattr(model, provider_marker).isnot(None))
        for column, allowed in filters:
            stmt = stmt.where(getattr(model, column).in_(list(allowed)))
        return as_utc(await self.session.scalar(stmt))

    # ------------------------------------------------------------------ upserts

    def _insert(self, model: Type[Base]):
        dialect = self.dialect
        if dialect == "sqlite":
            return sqlite_insert(model)
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect in ("mysql", "mariadb"):
            return mysql_insert(model)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    async def upsert_rows(
        self,
        model: Type[Base],
        rows: Sequence[Dict[str, Any]],
        conflict_columns: Sequence[str],
        guard_column: Optional[str] = None,
    ) -> int:
        """
        INSERT ... ON CONFLICT/ON DUPLICATE KEY UPDATE keyed on the natural key.
        Every non-key column except created_at is overwritten on conflict.

        With ``guard_column`` an existing row is only updated while that column
        IS NOT NULL; otherwise the conflicting row is left untouched.
        """
        if not rows:
            return 0

        update_columns = [
            key for key in rows[0].keys()
            if key not in conflict_columns and key != "created_at"
        ]
        if guard_column in update_columns:
            # MySQL applies assignments left to right; the guard must still read the old value
            update_columns.remove(guard_column)
            update_columns.append(guard_column)

        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            chunk = list(rows[start:start + UPSERT_CHUNK_SIZE])
            stmt = self._insert(model).values(chunk)
            if self.dialect in ("mysql", "mariadb"):
                if guard_column:
                    current = model.__table__.c
                    guard = current[guard_column].isnot(None)
                    assignments = [
                        (column, func.if_(guard, stmt.inserted[column], current[column]))
                        for column in update_columns
                    ]
                else:
                    assignments = [(column, stmt.inserted[column]) for column in update_columns]
                stmt = stmt.on_duplicate_key_update(assignments)
            else:
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(conflict_columns),
                    set_={column: stmt.excluded[column] for column in update_columns},
                    where=getattr(model, guard_column).isnot(None) if guard_column else None,
                )
            await self.session.execute(stmt)

        return len(rows)

    async def _delete_absent(
        self,
        model: Type[Base],
        client_id: str,
        key_columns: Sequence[str],
        keep: Iterable[tuple],
        provider_marker: Optional[str] = None,
    ) -> int:
        """Deletes the tenant's rows whose natural key is not in `keep`."""
        columns = [model.id] + [getattr(model, column) for column in key_columns]
        stmt = select(*columns).where(model.client_id == client_id)
        if provider_marker:
            stmt = stmt.where(getattr(model, provider_marker).isnot(None))
        result = await self.session.execute(stmt)

        keep = set(keep)
        stale_ids = [row[0] for row in result.all() if tuple(row[1:]) not in keep]
        if stale_ids:
            await self.session.execute(delete(model).where(model.id.in_(stale_ids)))
        return len(stale_ids)

    @staticmethod
    def _stamp(client_id: str, rows: Iterable[Dict[str, Any]], now: datetime) -> List[Dict[str, Any]]:
        return [{**row, "client_id": client_id, "created_at": now, "updated_at": now} for row in rows]

    async def replace_backlinks(self, client_id: str, rows: List[Dict[str, Any]], now: datetime) -> int:
        """
        Upserts provider backlinks and drops provider rows missing from the payload.
        Manual rows (no first_seen) are left alone, even when a provider row shares their key.
        """
        manual = await self.session.execute(
            select(Backlink.url_hash).where(
                Backlink.client_id == client_id,
                Backlink.first_seen.is_(None),
            )
        )
        manual_keys = set(manual.scalars().all())

        staged: Dict[str, Dict[str, Any]] = {}
        skipped = 0
        for row in rows:
            key = url_hash(row["source_url"], row["target_url"])
            if key in manual_keys:
                skipped += 1
                continue
            staged[key] = {**row, "url_hash": key}
        if skipped:
            log.info(f"Skipped {skipped} provider backlinks colliding with manual entries for {client_id}")

        # guard covers a manual row inserted after manual_keys was read
        written = await self.upsert_rows(
            Backlink,
            self._stamp(client_id, staged.values(), now),
            ("client_id", "url_hash"),
            guard_column="first_seen",
        )
        removed = await self._delete_absent(
            Backlink, client_id, ("url_hash",), ((key,) for key in staged), provider_marker="first_seen"
        )
        log.debug(f"Backlinks for {client_id}: {written} upserted, {removed} removed")
        return written

    async def replace_backlink_timeseries(self, client_id: str, rows: List[Dict[str, Any]], now: datetime) -> int:
        staged = {row["date"]: row for row in rows}
        written = await self.upsert_rows(
            BacklinkTimeseries, self._stamp(client_id, staged.values(), now), ("client_id", "date")
        )
        await self._delete_absent(BacklinkTimeseries, client_id, ("date",), ((day,) for day in staged))
        return written

    async def replace_top_pages(self, client_id: str, rows: List[Dict[str, Any]], now: datetime) -> int:
        staged = {url_hash(row["url"]): {**row, "url_hash": url_hash(row["url"])} for row in rows}
        written = await self.upsert_rows(
            TopPage, self._stamp(client_id, staged.values(), now), ("client_id", "url_hash")
        )
        await self._delete_absent(TopPage, client_id, ("url_hash",), ((key,) for key in staged))
        return written

    async def replace_traffic_sources(self, client_id: str, rows: List[Dict[str, Any]], now: datetime) -> int:
        staged = {row["name"]: row for row in rows}
        written = await self.upsert_rows(
            TrafficSource, self._stamp(client_id, staged.values(), now), ("client_id", "name")
        )
        await self._delete_absent(TrafficSource, client_id, ("name",), ((name,) for name in staged))
        return written

    async def upsert_ranked_keywords(self, client_id: str, row: Dict[str, Any], now: datetime) -> int:
        """Monthly history accumulates; only the (month, year) row is touched."""
        return await self.upsert_rows(
            RankedKeywordsHistory,
            self._stamp(client_id, [row], now),
            ("client_id", "month", "year"),
        )

    # ------------------------------------------------------------------ logging

    async def log_refresh(
        self,
        client_id: Optional[str],
        resource_type: str,
        status: str,
        message: Optional[str] = None,
        duration_ms: int = 0,
        items: int = 0,
        created_at: Optional[datetime] = None,
    ):
        """
        Records a refresh attempt (Internal use only).
        Successful and partial rows double as freshness stamps, so pass the cycle's timestamp.
        """
        entry = RefreshLog(
            client_id=client_id,
            resource_type=resource_type,
            status=status,
            message=message,
            duration_ms=duration_ms,
            items_written=items,
        )
        if created_at is not None:
            entry.created_at = created_at
        self.session.add(entry)
        await self.session.flush()
