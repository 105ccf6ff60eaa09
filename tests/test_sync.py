from datetime import datetime

from pimsync.store.catalog_store import CatalogStore
from pimsync.sync.history import RunState
from pimsync.sync.sync import SyncService, product_params


def _simple(pid, sku, **extra):
    rec = {
        "product_id": pid,
        "internal_product_code": sku,
        "_product_translations": [{"language": "en", "product_model": f"Product {sku}"}],
        "_trade_items": [{"_trade_item_prices": [{"net_price": 10}]}],
    }
    rec.update(extra)
    return rec


GROUP = {
    "grouped_product_id": 9,
    "grouped_product_name": "Desk lamp family",
    "grouped_product_code": "FAM-9",
    "virtual_product_id": 900,
    "_products": [
        {"product_id": 101, "internal_product_code": "L-1"},
        {"product_id": 102, "internal_product_code": "L-2"},
    ],
}


def _paged(pages):
    return lambda params: {"products": pages.get(params["page"], [])}


def _run(run_db, pim, settings, delta=False, prepare=None):
    async def scenario(store, run_state):
        if prepare is not None:
            await prepare(store, run_state)
        async with pim.client() as client:
            service = SyncService(settings, client=client, store=store, run_state=run_state)
            result = await service.run_sync(delta=delta)
        return result, {
            "entries": await store.list_remote_entries(),
            "history": await run_state.history(),
            "last_sync": await run_state.get_last_sync(),
            "running": await run_state.is_running(),
        }
    return run_db(scenario)


def test_full_run_counts_families_members_and_skips(run_db, make_settings, fake_pim):
    pages = {
        1: [_simple(1, "S-1", brand_name="Acme"), _simple(101, "L-1")],
        2: [_simple(102, "L-2"), {"product_id": 900, "product_type": "VIRTUAL", "_attachments": [
            {"product_attachment_type_code": "IMG", "source_url": "https://cdn.test/family.jpg"},
        ]}],
        3: [{"product_id": 950, "product_type": "VIRTUAL"}, {"product_model": "no identity"}],
    }
    pim = fake_pim({
        "getBrands": lambda params: {"brands": [{"brand_name": "Acme"}]},
        "getGroupedProducts": lambda params: {"grouped_products": [GROUP] if params["page"] == 1 else []},
        "getProducts": _paged(pages),
    })

    result, state = _run(run_db, pim, make_settings())
    assert result["success"] is True
    assert result["created"] == 4      # family + S-1 + two members
    assert result["updated"] == 0
    assert result["failed"] == 1
    assert result["skipped"] == 1
    assert result["with_attributes"] == 1
    assert result["without_attributes"] == 2
    assert pim.methods()[:2] == ["getBrands", "getGroupedProducts"]
    assert [p["page"] for m, p in pim.calls if m == "getProducts"] == [1, 2, 3, 4]

    by_sku = {e.sku: e for e in state["entries"]}
    assert by_sku["S-1"].kind == "simple"
    assert by_sku["L-1"].kind == "member"
    assert by_sku["L-1"].parent_id == by_sku["FAM-9"].id
    assert [i["url"] for i in by_sku["FAM-9"].images] == ["https://cdn.test/family.jpg"]
    assert 900 not in {e.remote_product_id for e in state["entries"]}

    assert state["last_sync"] is not None
    assert state["history"][0]["created"] == 4
    assert state["running"] is False


def test_second_full_run_updates_instead_of_creating(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProducts": _paged({1: [_simple(1, "S-1")]})})
    s = make_settings(PIM_SYNC_GROUPED_PRODUCTS=False)

    async def scenario(store, run_state):
        async with pim.client() as client:
            service = SyncService(s, client=client, store=store, run_state=run_state)
            first = await service.run_sync()
            second = await service.run_sync()
        return first, second, await store.list_remote_entries()

    first, second, entries = run_db(scenario)
    assert (first["created"], first["updated"]) == (1, 0)
    assert (second["created"], second["updated"]) == (0, 1)
    assert len(entries) == 1


def test_delta_run_uses_filter_call(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProductsByFilter": _paged({1: [_simple(1, "S-1")]})})

    async def prepare(store, run_state):
        await run_state.set_last_sync("2024-05-01T00:00:00Z")

    result, state = _run(run_db, pim, make_settings(), delta=True, prepare=prepare)
    assert result["success"] is True
    assert result["created"] == 1
    assert "getProducts" not in pim.methods()
    params = [p for m, p in pim.calls if m == "getProductsByFilter"][0]
    assert params["filter"] == {"updated_on": {"datetime": "2024-05-01T00:00:00Z", "operator": ">="}}
    assert params["page"] == 1 and params["limit"] == 2
    assert "page" not in params["options"]
    assert state["last_sync"] != "2024-05-01T00:00:00Z"


def test_empty_delta_keeps_last_sync(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProductsByFilter": _paged({})})

    async def prepare(store, run_state):
        await run_state.set_last_sync("2024-05-01T00:00:00Z")

    result, state = _run(run_db, pim, make_settings(), delta=True, prepare=prepare)
    assert result["success"] is True
    assert result["created"] == 0
    assert state["last_sync"] == "2024-05-01T00:00:00Z"


def test_delta_without_last_sync_runs_full(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProducts": _paged({1: [_simple(1, "S-1")]})})
    result, _ = _run(run_db, pim, make_settings(), delta=True)
    assert result["created"] == 1
    assert "getProductsByFilter" not in pim.methods()


def test_first_page_failure_is_a_structured_error(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProducts": lambda params: {"error": {"code": -32000, "message": "backend down"}}})
    result, state = _run(run_db, pim, make_settings())
    assert result["success"] is False
    assert result["error"] == "backend down"
    assert state["history"][0]["error"] == "backend down"
    assert state["last_sync"] is None
    assert state["running"] is False


def test_run_is_rejected_while_another_holds_the_lease(run_db, make_settings, fake_pim):
    pim = fake_pim({})

    async def prepare(store, run_state):
        await RunState(run_state._sm).acquire()

    result, state = _run(run_db, pim, make_settings(), prepare=prepare)
    assert result["success"] is False
    assert result["rejected"] is True
    assert result["error"] == "Sync already running"
    assert pim.calls == []


def test_full_run_purges_stale_entries_when_enabled(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProducts": _paged({1: [_simple(1, "S-1")]})})

    async def prepare(store, run_state):
        await store.create_entry("simple", sku="GONE", external_key="sku:GONE", synced_at=datetime(2020, 1, 1))

    result, state = _run(run_db, pim, make_settings(PIM_PURGE_STALE_PRODUCTS=True), prepare=prepare)
    assert result["trashed"] == 1
    assert [e.sku for e in state["entries"]] == ["S-1"]


def test_collection_filter_disables_purge(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProducts": _paged({1: [_simple(1, "S-1")]})})

    async def prepare(store, run_state):
        await store.create_entry("simple", sku="GONE", external_key="sku:GONE", synced_at=datetime(2020, 1, 1))

    s = make_settings(PIM_PURGE_STALE_PRODUCTS=True, PIM_COLLECTION_IDS=[3])
    result, state = _run(run_db, pim, s, prepare=prepare)
    assert result["trashed"] == 0
    assert sorted(e.sku for e in state["entries"]) == ["GONE", "S-1"]
    assert [p for m, p in pim.calls if m == "getProducts"][0]["collection_ids"] == [3]


def test_later_page_failure_keeps_stale_entries_and_last_sync(run_db, make_settings, fake_pim):
    def products(params):
        if params["page"] == 1:
            return {"products": [_simple(1, "S-1"), _simple(2, "S-2")]}
        return {"error": {"code": -32000, "message": "timeout"}}

    pim = fake_pim({"getProducts": products})

    async def prepare(store, run_state):
        await store.create_entry("simple", sku="S-3", external_key="sku:S-3", synced_at=datetime(2020, 1, 1))

    result, state = _run(run_db, pim, make_settings(PIM_PURGE_STALE_PRODUCTS=True), prepare=prepare)
    assert result["success"] is False
    assert "Page 2" in result["error"] and "timeout" in result["error"]
    assert result["created"] == 2
    assert result["trashed"] == 0
    assert sorted(e.sku for e in state["entries"]) == ["S-1", "S-2", "S-3"]
    assert state["last_sync"] is None
    assert state["history"][0]["success"] is False
    assert state["running"] is False


class FlakyStore(CatalogStore):
    async def create_entry(self, kind, **fields):
        if fields.get("sku") == "BAD":
            raise RuntimeError("disk full")
        return await super().create_entry(kind, **fields)


def test_failing_record_is_counted_and_the_run_continues(run_db, make_settings, fake_pim):
    pim = fake_pim({"getProducts": _paged({
        1: [_simple(1, "BAD"), _simple(2, "S-2")],
        2: [_simple(3, "S-3")],
    })})
    s = make_settings(PIM_SYNC_GROUPED_PRODUCTS=False)

    async def scenario(store, run_state):
        async with pim.client() as client:
            service = SyncService(s, client=client, store=FlakyStore(store._sm), run_state=run_state)
            result = await service.run_sync()
        return result, await store.list_remote_entries(), await run_state.get_last_sync()

    result, entries, last_sync = run_db(scenario)
    assert result["success"] is True
    assert (result["created"], result["failed"], result["skipped"]) == (2, 1, 0)
    assert sorted(e.sku for e in entries) == ["S-2", "S-3"]
    assert last_sync is not None

def test_product_params_follow_settings(make_settings):
    s = make_settings(
        PIM_INCLUDE_LANGUAGES=["nl-NL"],
        PIM_SYNC_CUSTOM_CLASSES=True,
        PIM_CUSTOM_CLASS_FILTER_MODE="whitelist",
        PIM_CUSTOM_CLASS_FILTER_IDS="4,5",
        PIM_SYNC_CATEGORIES=False,
        PIM_SYNC_GROUPED_PRODUCTS=False,
    )
    params = product_params(s)
    assert params["include_languages"] == ["nl-NL"]
    assert params["include_custom_classes"] is True
    assert params["include_custom_class_id"] == [4, 5]
    assert params["include_categories"] is False
    assert params["include_product_groups"] is False
    assert "collection_ids" not in params
