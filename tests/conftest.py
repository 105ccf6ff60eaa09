import asyncio
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from pimsync.config import Settings
from pimsync.db import create_tables, make_engine
from pimsync.pim.client import PimClient
from pimsync.store.catalog_store import CatalogStore
from pimsync.sync.history import RunState


@pytest.fixture
def run_db(tmp_path):
    """
    run_db(scenario) runs `async scenario(store, run_state)` against a fresh
    sqlite file and returns its result.
    """
    def _run(scenario: Callable, **state_kwargs):
        async def _main():
            engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
            await create_tables(engine)
            sm = async_sessionmaker(engine, expire_on_commit=False)
            try:
                return await scenario(CatalogStore(sm), RunState(sm, **state_kwargs))
            finally:
                await engine.dispose()
        return asyncio.run(_main())
    return _run


@pytest.fixture
def make_settings():
    def _make(**overrides):
        base = dict(
            PIM_ENDPOINT="https://pim.test/jsonrpc",
            PIM_TOKEN="secret-token",
            PIM_BATCH_SIZE=2,
            PIM_LANGUAGE="en",
            PIM_INCLUDE_LANGUAGES=[],
            PIM_COLLECTION_IDS=[],
            PIM_SYNC_CATEGORIES=True,
            PIM_SUPER_CATEGORY_ID=0,
            PIM_SYNC_GROUPED_PRODUCTS=True,
            PIM_SYNC_CUSTOM_CLASSES=False,
            PIM_SYNC_TRADE_ITEM_CUSTOM_CLASSES=False,
            PIM_CUSTOM_CLASS_FILTER_MODE="",
            PIM_CUSTOM_CLASS_FILTER_IDS="",
            PIM_PURGE_STALE_PRODUCTS=False,
        )
        base.update(overrides)
        return Settings(**base)
    return _make


class FakePim:
    """
    JSON-RPC stand-in. `handlers` maps method → callable(params) returning the
    `result` payload (or a full response dict when it carries "error").
    Every request is recorded in `calls` as (method, params).
    """

    def __init__(self, handlers: Dict[str, Callable[[Dict[str, Any]], Any]]):
        self.handlers = handlers
        self.calls: List[tuple] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body.get("params") or {}
        self.calls.append((method, params))
        handler = self.handlers.get(method)
        if handler is None:
            return httpx.Response(200, json={"jsonrpc": "2.0", "result": {}, "id": body["id"]})
        out = handler(params)
        if isinstance(out, dict) and "error" in out:
            return httpx.Response(200, json={"jsonrpc": "2.0", "error": out["error"], "id": body["id"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "result": out, "id": body["id"]})

    def methods(self) -> List[str]:
        return [m for m, _ in self.calls]

    def client(self, **kwargs) -> PimClient:
        kwargs.setdefault("backoff_base", 0)
        return PimClient("https://pim.test/jsonrpc", "secret-token", transport=httpx.MockTransport(self), **kwargs)


@pytest.fixture
def fake_pim():
    return FakePim
