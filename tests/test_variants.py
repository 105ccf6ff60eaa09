from datetime import datetime

from pimsync.sync.variants import FamilyIndex, axis_slug, build_families, build_family, upsert_member

CLOCK = datetime(2024, 5, 1, 12, 0, 0)

COLOUR_AXIS = [{
    "etim_feature_code": "EF000008",
    "order": 1,
    "_etim_feature_translations": [{"language": "en", "etim_feature_description": "Colour"}],
}]


def _group(gid=9, features=None, **extra):
    raw = {
        "grouped_product_id": gid,
        "grouped_product_name": "Desk lamp family",
        "grouped_product_code": f"FAM-{gid}",
        "_products": [
            {"product_id": 101, "internal_product_code": "L-1", "order": 1},
            {"product_id": 102, "internal_product_code": "L-2", "order": 2},
        ],
    }
    if features is not None:
        raw["_etim_features"] = features
    raw.update(extra)
    return raw


def _member(pid, sku, colour=None, price=10):
    rec = {
        "product_id": pid,
        "internal_product_code": sku,
        "_trade_items": [{"_trade_item_prices": [{"net_price": price}]}],
    }
    if colour:
        rec["_etim"] = {"_etim_features": [{
            "etim_feature_code": "EF000008",
            "etim_feature_type": "A",
            "etim_value_code": "EV" + colour.upper(),
            "_etim_value_translations": [{"language": "en", "etim_value_description": colour}],
        }]}
    return rec


def test_axis_slug_is_bounded():
    assert axis_slug("EF000008") == "etim_ef000008"
    assert len(axis_slug("X" * 60)) == 28


def test_family_without_axis_codes_gets_variant_axis_seeded_with_skus(run_db):
    async def scenario(store, _):
        index = FamilyIndex()
        family_id = await build_family(store, _group(), index, lang="en", run_clock=CLOCK)
        axes = await store.get_family_axes(family_id)
        options = [(await store.get_attr_term(t)).name for t in axes[0]["options"]]
        return await store.get_entry(family_id), axes, options, index

    family, axes, options, index = run_db(scenario)
    assert family.kind == "family"
    assert family.sku == "FAM-9"
    assert family.grouped_product_id == 9
    assert [a["slug"] for a in axes] == ["variant"]
    assert options == ["L-1", "L-2"]
    assert index.created == 1
    assert index.lookup(101, "")["family_entry_id"] == family.id
    assert index.lookup(None, "L-2")["order"] == 2
    assert index.lookup(999, "nope") is None


def test_rebuild_updates_family_in_place(run_db):
    async def scenario(store, _):
        index = FamilyIndex()
        first = await build_family(store, _group(), index, lang="en", run_clock=CLOCK)
        second = await build_family(store, _group(grouped_product_name="Renamed"), index, lang="en", run_clock=CLOCK)
        return first, second, await store.get_entry(second), index

    first, second, family, index = run_db(scenario)
    assert first == second
    assert family.name == "Renamed"
    assert (index.created, index.updated) == (1, 1)


def test_member_axis_term_is_registered_on_family(run_db):
    async def scenario(store, _):
        index = FamilyIndex()
        family_id = await build_family(store, _group(features=COLOUR_AXIS), index, lang="en", run_clock=CLOCK)
        info = index.lookup(101, "L-1")
        outcome = await upsert_member(store, _member(101, "L-1", "Red", price=12.5), info, lang="en", run_clock=CLOCK)
        again = await upsert_member(store, _member(101, "L-1", "Red", price=12.5), info, lang="en", run_clock=CLOCK)
        await upsert_member(store, _member(102, "L-2", "Blue", price=8), index.lookup(102, "L-2"), lang="en", run_clock=CLOCK)
        axes = await store.get_family_axes(family_id)
        names = [(await store.get_attr_term(t)).name for t in axes[0]["options"]]
        return outcome, again, axes, names, await store.list_members(family_id), await store.get_entry(family_id)

    outcome, again, axes, names, members, family = run_db(scenario)
    assert (outcome, again) == ("created", "updated")
    assert [a["slug"] for a in axes] == ["etim_ef000008"]
    assert axes[0]["label"] == "Colour"
    assert names == ["Red", "Blue"]
    assert [m.variation_attributes for m in members] == [{"etim_ef000008": "red"}, {"etim_ef000008": "blue"}]
    assert family.min_price == "8"
    assert family.max_price == "12.5"
    assert family.stock_status == "instock"


def test_member_without_axis_values_falls_back_to_variant_axis(run_db):
    async def scenario(store, _):
        index = FamilyIndex()
        family_id = await build_family(store, _group(features=COLOUR_AXIS), index, lang="en", run_clock=CLOCK)
        await upsert_member(store, _member(101, "L-1"), index.lookup(101, ""), lang="en", run_clock=CLOCK)
        return await store.list_members(family_id), await store.get_family_axes(family_id)

    members, axes = run_db(scenario)
    assert members[0].variation_attributes == {"variant": "l-1"}
    assert "variant" in [a["slug"] for a in axes]


def test_member_price_on_request_is_out_of_stock(run_db):
    async def scenario(store, _):
        index = FamilyIndex()
        family_id = await build_family(store, _group(), index, lang="en", run_clock=CLOCK)
        rec = _member(101, "L-1")
        rec["_trade_items"] = [{"_trade_item_prices": [{"price_on_request": True}]}]
        await upsert_member(store, rec, index.lookup(101, ""), lang="en", run_clock=CLOCK)
        return (await store.list_members(family_id))[0], await store.get_entry(family_id)

    member, family = run_db(scenario)
    assert member.regular_price == ""
    assert member.stock_status == "outofstock"
    assert family.stock_status == "outofstock"
    assert family.min_price is None


def test_member_retires_simple_entry_of_same_product(run_db):
    async def scenario(store, _):
        simple_id = await store.create_entry("simple", sku="L-1", name="Old", remote_product_id=101, external_key="sku:L-1")
        index = FamilyIndex()
        await build_family(store, _group(), index, lang="en", run_clock=CLOCK)
        await upsert_member(store, _member(101, "L-1"), index.lookup(101, ""), lang="en", run_clock=CLOCK)
        return await store.get_entry(simple_id)

    assert run_db(scenario).status == "trash"


def test_build_families_pages_and_indexes_virtual_products(run_db, make_settings, fake_pim):
    pages = {
        1: [_group(9), _group(10, _products=[{"product_id": 201, "internal_product_code": "M-1"}])],
        2: [_group(11, _products=[{"product_id": 301, "internal_product_code": "N-1"}], virtual_product_id=900)],
    }
    pim = fake_pim({"getGroupedProducts": lambda params: {"grouped_products": pages.get(params["page"], [])}})

    async def scenario(store, _):
        async with pim.client() as client:
            return await build_families(client, store, make_settings(), run_clock=CLOCK)

    index = run_db(scenario)
    assert index.created == 3
    assert index.lookup(201, "")["grouped_product_id"] == 10
    assert index.virtual(900)["grouped_product_id"] == 11
    assert [p["page"] for _, p in pim.calls] == [1, 2]
    assert pim.calls[0][1]["include_products"] is True


def test_trashed_group_reuses_its_family_on_every_run(run_db):
    async def scenario(store, _):
        index = FamilyIndex()
        trashed = _group(product_trashed_on="2024-04-01")
        ids = [await build_family(store, trashed, index, lang="en", run_clock=CLOCK) for _ in range(3)]
        revived = await build_family(store, _group(), index, lang="en", run_clock=CLOCK)
        return ids, revived, await store.get_entry(revived), index, await store.list_remote_entries()

    ids, revived, family, index, live = run_db(scenario)
    assert len(set(ids)) == 1
    assert revived == ids[0]
    assert family.status == "publish"
    assert (index.created, index.updated) == (1, 3)
    assert [e.id for e in live] == [revived]
