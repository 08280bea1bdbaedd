import asyncio

import httpx
import pytest
from sqlalchemy import select, text

from db.models import Backlink, BacklinkTimeseries, RefreshLog, TopPage
from db.repository import DataRepository
from models import ResourceKey, ResourceType
from seosync.core.errors import PersistError, ProviderFetchError, TenantNotFoundError
from seosync.refresh.pipeline import RefreshPipeline, SyncStep
from seosync.sources.dataforseo import DataForSEOClient

TENANT = {"id": "acme", "domain": "https://www.Acme.com/"}

PAGES = [
    {
        "page_address": "https://acme.com/pricing",
        "metrics": {"organic": {"pos_1": 2, "pos_2_3": 1, "count": 14, "etv": 120.5}, "paid": {"count": 1, "etv": 3.0}},
    },
    {"page_address": "https://acme.com/blog", "metrics": {"organic": {"count": 4, "etv": 8}}},
]

BACKLINKS = [
    {
        "url_from": "https://blog.example/post",
        "url_to": "https://acme.com/",
        "anchor": "acme tools",
        "domain_from_rank": 41,
        "page_from_rank": 12,
        "dofollow": True,
        "first_seen": "2024-01-04 12:30:00 +00:00",
        "last_seen": "2024-05-01 00:00:00 +00:00",
    },
    {
        "url_from": "https://news.example/story",
        "url_to": "https://acme.com/pricing",
        "anchor": "pricing",
        "dofollow": False,
        "first_seen": "2024-02-10 08:00:00 +00:00",
    },
]

TIMESERIES = [
    {"date": "2024-05-01 00:00:00 +00:00", "new_backlinks": 3, "lost_backlinks": 1},
    {"date": "2024-05-02 00:00:00 +00:00", "new_backlinks": 0, "lost_backlinks": 2},
]


async def _all(manager, model):
    async with manager.session_factory() as session:
        result = await session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


def test_top_pages_refresh_is_idempotent(make_db, provider_stub, envelope):
    provider_stub.on(DataForSEOClient.RELEVANT_PAGES, envelope(PAGES))
    key = ResourceKey("acme", ResourceType.TOP_PAGES)

    async def scenario():
        manager = await make_db(TENANT)
        client = provider_stub.client()
        pipeline = RefreshPipeline(manager.session_factory, client)
        first = await pipeline.refresh(key)
        second = await pipeline.refresh(key)
        pages = await _all(manager, TopPage)
        logs = await _all(manager, RefreshLog)
        await client.fetcher.close()
        await manager.close()
        return first, second, pages, logs

    first, second, pages, logs = asyncio.run(scenario())

    assert first.items_written == second.items_written == 2
    assert second.last_refreshed_at >= first.last_refreshed_at
    assert [page.url for page in pages] == ["https://acme.com/pricing", "https://acme.com/blog"]
    assert pages[0].organic_pos1 == 2
    assert pages[0].organic_etv == 120.5
    assert pages[0].paid_count == 1
    assert [entry.status for entry in logs] == ["success", "success"]
    assert logs[0].items_written == 2

    body = provider_stub.calls_to(DataForSEOClient.RELEVANT_PAGES)[0]["body"]
    assert body == [{"target": "acme.com", "location_code": 2840, "language_name": "English", "limit": 20}]


def test_backlinks_refresh_keeps_manual_rows(make_db, provider_stub, envelope, utc):
    provider_stub.on(DataForSEOClient.BACKLINKS, envelope(BACKLINKS))
    provider_stub.on(DataForSEOClient.BACKLINK_TIMESERIES, envelope(TIMESERIES))

    async def scenario():
        manager = await make_db(TENANT)
        async with manager.session_factory() as session:
            async with session.begin():
                session.add_all([
                    # same link the provider reports; must stay manual
                    Backlink(client_id="acme", source_url="https://blog.example/post",
                             target_url="https://acme.com/", anchor_text="manual entry"),
                    Backlink(client_id="acme", source_url="https://friend.example/",
                             target_url="https://acme.com/", anchor_text="partner"),
                    Backlink(client_id="acme", source_url="https://gone.example/",
                             target_url="https://acme.com/", first_seen=utc(2023, 1, 1)),
                ])

        client = provider_stub.client()
        summary = await RefreshPipeline(manager.session_factory, client).refresh(
            ResourceKey("acme", ResourceType.BACKLINKS)
        )
        backlinks = await _all(manager, Backlink)
        series = await _all(manager, BacklinkTimeseries)
        await client.fetcher.close()
        await manager.close()
        return summary, backlinks, series

    summary, backlinks, series = asyncio.run(scenario())

    by_source = {row.source_url: row for row in backlinks}
    assert set(by_source) == {
        "https://blog.example/post",
        "https://friend.example/",
        "https://news.example/story",
    }
    assert by_source["https://blog.example/post"].anchor_text == "manual entry"
    assert by_source["https://blog.example/post"].first_seen is None
    assert by_source["https://friend.example/"].first_seen is None
    assert by_source["https://news.example/story"].first_seen is not None
    assert by_source["https://news.example/story"].is_follow is False

    assert [row.date.isoformat() for row in series] == ["2024-05-01", "2024-05-02"]
    assert series[0].new_backlinks == 3
    assert summary.items_written == 3
    assert summary.warnings == []


def test_optional_step_failure_degrades_to_warning(make_db, provider_stub, envelope):
    provider_stub.on(DataForSEOClient.BACKLINKS, envelope(BACKLINKS))
    provider_stub.on(DataForSEOClient.BACKLINK_TIMESERIES, {"error": "boom"}, status_code=500)

    async def scenario():
        manager = await make_db(TENANT)
        client = provider_stub.client()
        summary = await RefreshPipeline(manager.session_factory, client).refresh(
            ResourceKey("acme", ResourceType.BACKLINKS)
        )
        backlinks = await _all(manager, Backlink)
        logs = await _all(manager, RefreshLog)
        await client.fetcher.close()
        await manager.close()
        return summary, backlinks, logs

    summary, backlinks, logs = asyncio.run(scenario())

    assert len(backlinks) == 2
    assert summary.items_written == 2
    assert len(summary.warnings) == 1
    assert summary.warnings[0].startswith("backlink_timeseries")
    assert logs[-1].status == "partial"


def test_primary_failure_writes_nothing(make_db, provider_stub, envelope, utc):
    provider_stub.on(DataForSEOClient.BACKLINKS, {"error": "boom"}, status_code=502)
    provider_stub.on(DataForSEOClient.BACKLINK_TIMESERIES, envelope(TIMESERIES))

    async def scenario():
        manager = await make_db(TENANT)
        async with manager.session_factory() as session:
            async with session.begin():
                session.add(Backlink(client_id="acme", source_url="https://old.example/",
                                     target_url="https://acme.com/", first_seen=utc(2023, 1, 1)))
        client = provider_stub.client()
        try:
            with pytest.raises(ProviderFetchError) as excinfo:
                await RefreshPipeline(manager.session_factory, client).refresh(
                    ResourceKey("acme", ResourceType.BACKLINKS)
                )
            backlinks = await _all(manager, Backlink)
            series = await _all(manager, BacklinkTimeseries)
            logs = await _all(manager, RefreshLog)
        finally:
            await client.fetcher.close()
            await manager.close()
        return excinfo.value, backlinks, series, logs

    error, backlinks, series, logs = asyncio.run(scenario())

    assert error.status_code == 502
    assert error.tenant_id == "acme"
    assert error.resource_type == "backlinks"
    assert [row.source_url for row in backlinks] == ["https://old.example/"]
    assert series == []
    assert [entry.status for entry in logs] == ["failed"]


def test_persist_failure_rolls_back_every_step(make_db):
    async def fetch_pages(target, key):
        return [{"url": f"https://{target}/"}]

    async def broken(repo, client_id, payload, now):
        await repo.session.execute(text("INSERT INTO missing_table VALUES (1)"))
        return 1

    steps = {
        ResourceType.TOP_PAGES: (
            SyncStep("top_pages", fetch_pages, DataRepository.replace_top_pages),
            SyncStep("broken", fetch_pages, broken),
        )
    }

    async def scenario():
        manager = await make_db(TENANT)
        pipeline = RefreshPipeline(manager.session_factory, client=None, steps=steps)
        try:
            with pytest.raises(PersistError) as excinfo:
                await pipeline.refresh(ResourceKey("acme", ResourceType.TOP_PAGES))
            pages = await _all(manager, TopPage)
            logs = await _all(manager, RefreshLog)
        finally:
            await manager.close()
        return excinfo.value, pages, logs

    error, pages, logs = asyncio.run(scenario())

    assert error.phase == "persist"
    assert error.details["operation"] == "upsert"
    assert pages == []
    assert [entry.status for entry in logs] == ["failed"]


def test_missing_tenant_or_domain(make_db, provider_stub, envelope):
    async def scenario():
        manager = await make_db({"id": "nodomain", "domain": ""})
        client = provider_stub.client()
        pipeline = RefreshPipeline(manager.session_factory, client)
        errors = []
        for tenant_id in ("ghost", "nodomain"):
            try:
                await pipeline.refresh(ResourceKey(tenant_id, ResourceType.TOP_PAGES))
            except TenantNotFoundError as e:
                errors.append(e)
        await client.fetcher.close()
        await manager.close()
        return errors

    errors = asyncio.run(scenario())

    assert [error.tenant_id for error in errors] == ["ghost", "nodomain"]
    assert provider_stub.calls == []


def test_missing_credentials_fail_before_any_call(make_db, provider_stub, envelope):
    async def scenario():
        manager = await make_db(TENANT)
        client = provider_stub.client(credentials_b64=None)
        try:
            with pytest.raises(ProviderFetchError) as excinfo:
                await RefreshPipeline(manager.session_factory, client).refresh(
                    ResourceKey("acme", ResourceType.TOP_PAGES)
                )
        finally:
            await client.fetcher.close()
            await manager.close()
        return excinfo.value

    error = asyncio.run(scenario())

    assert "credentials" in error.message
    assert provider_stub.calls == []


def test_second_refresh_updates_rows_in_place(make_db, provider_stub, envelope):
    payloads = [
        envelope(BACKLINKS),
        envelope([{**BACKLINKS[0], "anchor": "acme toolkit", "domain_from_rank": 44}, BACKLINKS[1]]),
    ]
    provider_stub.on(DataForSEOClient.BACKLINKS, handler=lambda request: httpx.Response(200, json=payloads.pop(0)))
    provider_stub.on(DataForSEOClient.BACKLINK_TIMESERIES, envelope(TIMESERIES))
    key = ResourceKey("acme", ResourceType.BACKLINKS)

    async def scenario():
        manager = await make_db(TENANT)
        client = provider_stub.client()
        pipeline = RefreshPipeline(manager.session_factory, client)
        await pipeline.refresh(key)
        before = await _all(manager, Backlink)
        await pipeline.refresh(key)
        after = await _all(manager, Backlink)
        await client.fetcher.close()
        await manager.close()
        return before, after

    before, after = asyncio.run(scenario())

    assert [row.id for row in after] == [row.id for row in before]
    assert len(after) == 2
    assert before[0].anchor_text == "acme tools"
    assert after[0].anchor_text == "acme toolkit"
    assert after[0].domain_rating == 44
    assert after[1].anchor_text == "pricing"
