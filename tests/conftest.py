import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from db.manager import DatabaseManager
from db.models import Client
from seosync.core.fetcher import Fetcher
from seosync.core.settings import ProviderSettings
from seosync.sources.dataforseo import DataForSEOClient


def dataforseo_envelope(
    items: Optional[List[Dict[str, Any]]] = None,
    *,
    task_status: int = 20000,
    **result_fields,
) -> Dict[str, Any]:
    result = {"items": items or [], "items_count": len(items or []), **result_fields}
    return {
        "status_code": 20000,
        "status_message": "Ok.",
        "tasks": [
            {
                "status_code": task_status,
                "status_message": "Ok." if task_status == 20000 else "Task failed.",
                "result": [result] if task_status == 20000 else None,
            }
        ],
    }


class ProviderStub:
    """httpx.MockTransport handler keyed by request path; records every call."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def on(self, path: str, payload: Any = None, *, status_code: int = 200, handler=None):
        if handler is None:
            def handler(request, payload=payload, status_code=status_code):
                return httpx.Response(status_code, json=payload)
        self.routes[path] = handler
        return self

    def calls_to(self, path: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["path"] == path]

    def __call__(self, request: httpx.Request):
        body = json.loads(request.content) if request.content else None
        self.calls.append({"path": request.url.path, "body": body, "headers": dict(request.headers)})
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"status_code": 40400, "status_message": "Not Found."})
        return handler(request)

    def fetcher(self, **kwargs) -> Fetcher:
        kwargs.setdefault("credentials_b64", "dXNlcjpzZWNyZXQ=")
        kwargs.setdefault("backoff_base", 0)
        return Fetcher("https://api.dataforseo.test", transport=httpx.MockTransport(self), **kwargs)

    def client(self, **kwargs) -> DataForSEOClient:
        return DataForSEOClient(self.fetcher(**kwargs), ProviderSettings())


@pytest.fixture
def envelope():
    return dataforseo_envelope


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'seosync.db'}"


@pytest.fixture
def make_db(database_url):
    """Async factory: a DatabaseManager with all tables created, bound to the running loop."""

    async def _make(*clients: Dict[str, Any]) -> DatabaseManager:
        manager = DatabaseManager(database_url)
        await manager.create_all()
        if clients:
            async with manager.session_factory() as session:
                async with session.begin():
                    for data in clients:
                        session.add(Client(**{"name": data["id"].title(), **data}))
        return manager

    return _make


@pytest.fixture
def utc():
    def _utc(*args) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)

    return _utc
