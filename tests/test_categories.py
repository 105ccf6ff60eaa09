from pimsync.sync.categories import CategoryNode, CategoryResolver, root_first


def _chain_record():
    return {
        "product_id": 1,
        "_categories": [{
            "category_id": 3,
            "category_name": "Leaf",
            "_parent_category": {
                "category_id": 2,
                "category_name": "Mid",
                "_parent_category": {"category_id": 1, "category_name": "Root"},
            },
        }],
    }


def test_root_first_orders_parents_before_children_and_cuts_cycles():
    arena = {
        "c": CategoryNode("c", "C", parent_key="b"),
        "b": CategoryNode("b", "B", parent_key="a"),
        "a": CategoryNode("a", "A"),
        "x": CategoryNode("x", "X", parent_key="y"),
        "y": CategoryNode("y", "Y", parent_key="x"),
    }
    keys = [n.key for n in root_first(arena)]
    assert keys.index("a") < keys.index("b") < keys.index("c")
    assert sorted(keys) == ["a", "b", "c", "x", "y"]


def test_parent_chain_is_materialized_root_first(run_db):
    async def scenario(store, _):
        entry_id = await store.create_entry("simple", name="Lamp")
        resolver = CategoryResolver(store, "en")
        assigned = await resolver.assign_categories(entry_id, _chain_record())
        terms = {t.name: t for t in await store.list_terms()}
        return assigned, terms, resolver.seen_ids, await store.get_entry_category_ids(entry_id)

    assigned, terms, seen, on_entry = run_db(scenario)
    assert terms["Root"].parent_id is None
    assert terms["Mid"].parent_id == terms["Root"].id
    assert terms["Leaf"].parent_id == terms["Mid"].id
    assert terms["Leaf"].remote_id == "3"
    assert assigned == [terms["Root"].id, terms["Mid"].id, terms["Leaf"].id]
    assert on_entry == sorted(assigned)
    assert seen == {"1", "2", "3"}


def test_rerun_with_fresh_resolver_creates_no_duplicates(run_db):
    async def scenario(store, _):
        a = await store.create_entry("simple", name="A")
        b = await store.create_entry("simple", name="B")
        await CategoryResolver(store, "en").assign_categories(a, _chain_record())
        await CategoryResolver(store, "en").assign_categories(b, _chain_record())
        return await store.list_terms()

    assert len(run_db(scenario)) == 3


def test_name_match_under_same_parent_stamps_remote_id(run_db):
    async def scenario(store, _):
        root = await store.create_term("Root")
        await store.create_term("mid", root)
        entry_id = await store.create_entry("simple", name="Lamp")
        await CategoryResolver(store, "en").assign_categories(entry_id, _chain_record())
        return await store.list_terms()

    terms = run_db(scenario)
    assert len(terms) == 3
    by_name = {t.name: t for t in terms}
    assert by_name["Root"].remote_id == "1"
    assert by_name["mid"].remote_id == "2"
    assert by_name["Leaf"].parent_id == by_name["mid"].id


def test_super_category_is_skipped_and_its_children_become_roots(run_db):
    async def scenario(store, _):
        entry_id = await store.create_entry("simple", name="Lamp")
        await CategoryResolver(store, "en", super_category_id=1).assign_categories(entry_id, _chain_record())
        return {t.name: t for t in await store.list_terms()}

    terms = run_db(scenario)
    assert "Root" not in terms
    assert terms["Mid"].parent_id is None


def test_sync_category_tree_walks_children(run_db, fake_pim):
    tree = {"categories": [{
        "category_id": 100,
        "category_name": "Everything",
        "_children": [
            {"category_id": 101, "category_name": "Lighting", "_children": [
                {"category_id": 102, "category_name": "Spots"},
            ]},
            {"category_id": 103, "category_name": "Cables"},
        ],
    }]}
    pim = fake_pim({"getCategories": lambda params: tree})

    async def scenario(store, _):
        async with pim.client() as client:
            out = await CategoryResolver(store, "en", super_category_id=100).sync_category_tree(client, ["en"])
        return out, {t.name: t for t in await store.list_terms()}

    out, terms = run_db(scenario)
    assert out == {"success": True, "terms": 3}
    assert set(terms) == {"Lighting", "Spots", "Cables"}
    assert terms["Spots"].parent_id == terms["Lighting"].id
    method, params = pim.calls[0]
    assert method == "getCategories"
    assert params["category_id"] == 100 and params["include_children"] is True
    assert params["include_languages"] == ["en"]


def test_same_leaf_name_under_two_parents_keeps_both_chains(run_db):
    record = {"product_id": 1, "_categories": [
        {"category_id": 10, "category_name": "Accessories",
         "_parent_category": {"category_id": 1, "category_name": "Lamps"}},
        {"category_id": 20, "category_name": "Accessories",
         "_parent_category": {"category_id": 2, "category_name": "Cables"}},
    ]}

    async def scenario(store, _):
        entry_id = await store.create_entry("simple", name="Clip")
        resolver = CategoryResolver(store, "en")
        assigned = await resolver.assign_categories(entry_id, record)
        return assigned, await store.list_terms(), resolver.seen_ids

    assigned, terms, seen = run_db(scenario)
    assert seen == {"1", "2", "10", "20"}
    assert len(assigned) == 4
    by_remote = {t.remote_id: t for t in terms}
    assert by_remote["10"].parent_id == by_remote["1"].id
    assert by_remote["20"].parent_id == by_remote["2"].id
