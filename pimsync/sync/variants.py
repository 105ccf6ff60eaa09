#===========================================================================
# pimsync/sync/variants.py
# Variant families.
# Phase A (build_families): page through grouped products, create/update the
#   family entries and their variation axes, and index every member.
# Phase B (upsert_member): write one member under its family and register
#   its axis terms on the family's option sets.
#===========================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pimsync.models.catalog import KIND_FAMILY, KIND_MEMBER, KIND_SIMPLE, STATUS_PUBLISH, STATUS_TRASH
from pimsync.pim.records import AxisCode, GroupedProduct, grouped_product
from pimsync.sync.components import mapper
from pimsync.sync.components.brands import assign_brand
from pimsync.sync.components.features import feature_values_for_codes
from pimsync.sync.components.media import collect_media
from pimsync.sync.components.price import resolve_price
from pimsync.sync.components.translations import normalize_translations, pick_text
from pimsync.sync.components.util import fmt_price

logger = logging.getLogger("uvicorn.error")

VARIANT_AXIS_SLUG = "variant"
VARIANT_AXIS_LABEL = "Variant"
_AXIS_SLUG_MAX = 28


def axis_slug(code: str) -> str:
    return ("etim_" + str(code).strip().lower())[:_AXIS_SLUG_MAX]


def axis_codes(group: GroupedProduct, lang: str) -> List[AxisCode]:
    """Distinguishing feature codes of a group, sorted by order, labelled per language."""
    out: List[AxisCode] = []
    seen: set[str] = set()
    for f in group.axis_features:
        code = str(f.get("etim_feature_code") or "").strip().upper()
        if not code or code in seen:
            continue
        seen.add(code)
        try:
            order = int(f.get("order", 999))
        except (TypeError, ValueError):
            order = 999
        trans = normalize_translations(f.get("_etim_feature_translations"))
        label = pick_text(trans, lang, "etim_feature_description") or code
        out.append(AxisCode(code=code, order=order, label=label))
    out.sort(key=lambda a: a.order)
    return out


class FamilyIndex:
    """
    Membership map built in Phase A.
      product id     -> group info
      "sku:<sku>"    -> group info
      "virtual:<id>" -> group info of the family that the virtual product feeds
    """

    def __init__(self) -> None:
        self._map: Dict[Any, Dict[str, Any]] = {}
        self.created = 0
        self.updated = 0

    def __len__(self) -> int:
        return len(self._map)

    def add(self, key: Any, info: Dict[str, Any]) -> None:
        self._map[key] = info

    def lookup(self, product_id: Optional[int], sku: str) -> Optional[Dict[str, Any]]:
        if product_id is not None and product_id in self._map:
            return self._map[product_id]
        if sku:
            return self._map.get(f"sku:{sku}")
        return None

    def virtual(self, product_id: Optional[int]) -> Optional[Dict[str, Any]]:
        if product_id is None:
            return None
        return self._map.get(f"virtual:{product_id}")


# ---------------------------------------------------------------------------
# Phase A
# ---------------------------------------------------------------------------

async def _family_axes(store, family_id: int, group: GroupedProduct, codes: List[AxisCode]) -> List[Tuple[int, List[int]]]:
    # option sets survive a rebuild for axes that stay
    existing = {a["axis_id"]: a["options"] for a in await store.get_family_axes(family_id)}
    axes: List[Tuple[int, List[int]]] = []
    if codes:
        for ac in codes:
            axis = await store.ensure_axis(axis_slug(ac.code), ac.label, raw_label=ac.code)
            axes.append((axis.id, existing.get(axis.id, [])))
        return axes

    axis = await store.ensure_axis(VARIANT_AXIS_SLUG, VARIANT_AXIS_LABEL)
    options: List[int] = []
    for m in group.members:
        term_id = await store.find_or_create_attr_term(axis.id, m.sku)
        if term_id not in options:
            options.append(term_id)
    return [(axis.id, options)]


async def build_family(store, raw: Dict[str, Any], index: FamilyIndex, *, lang: str, run_clock, resolver=None) -> Optional[int]:
    group = grouped_product(raw)
    if group is None:
        return None
    gid = group.grouped_product_id

    existing = await store.find_family_by_grouped_id(gid)
    if existing is not None and existing.kind != KIND_FAMILY:
        logger.warning("[VARIANTS] entry %s carries grouped id %s but is %s; retiring it", existing.id, gid, existing.kind)
        await store.retire_entry(existing.id)
        existing = None

    name = str(raw.get("grouped_product_name") or raw.get("grouped_product_code") or f"Product {gid}")
    sku = group.code or None
    if sku and await store.sku_owner(sku, exclude_id=existing.id if existing else None):
        logger.warning("[VARIANTS] family SKU %s already in use; family %s stored without SKU", sku, gid)
        sku = None

    fields = {
        "name": name,
        "sku": sku,
        "status": STATUS_TRASH if group.trashed else STATUS_PUBLISH,
        "grouped_product_id": gid,
        "virtual_product_id": group.virtual_product_id,
        "synced_at": run_clock,
    }
    if existing is None:
        family_id = await store.create_entry(KIND_FAMILY, **fields)
        index.created += 1
        logger.info("[VARIANTS] created family %s for group %s (%s)", family_id, gid, name)
    else:
        family_id = existing.id
        await store.update_entry(family_id, **fields)
        index.updated += 1

    codes = axis_codes(group, lang)
    await store.set_family_axes(family_id, await _family_axes(store, family_id, group, codes))

    if resolver is not None:
        await resolver.assign_categories(family_id, raw)
    await assign_brand(store, family_id, raw)

    for m in group.members:
        info = {
            "grouped_product_id": gid,
            "order": m.order,
            "sku": m.sku,
            "family_entry_id": family_id,
            "axis_codes": [a.model_dump() for a in codes],
            "virtual_product_id": group.virtual_product_id,
        }
        index.add(m.product_id, info)
        index.add(f"sku:{m.sku}", info)
    if group.virtual_product_id:
        index.add(f"virtual:{group.virtual_product_id}", {
            "grouped_product_id": gid,
            "order": 0,
            "sku": "",
            "family_entry_id": family_id,
            "axis_codes": [a.model_dump() for a in codes],
            "virtual_product_id": group.virtual_product_id,
        })
    return family_id


async def build_families(client, store, s, *, run_clock, resolver=None, heartbeat=None) -> FamilyIndex:
    """
    Page through getGroupedProducts until no groups come back or the last
    page is reached. One failing group is logged and skipped.
    """
    index = FamilyIndex()
    lang = s.language
    page = 1
    families = 0
    while True:
        params: Dict[str, Any] = {
            "page": page,
            "limit": s.PIM_BATCH_SIZE,
            "include_products": True,
            "include_etim_features": True,
        }
        if s.PIM_INCLUDE_LANGUAGES:
            params["include_languages"] = s.PIM_INCLUDE_LANGUAGES
        if s.PIM_COLLECTION_IDS:
            params["collection_ids"] = s.PIM_COLLECTION_IDS

        result = await client.call("getGroupedProducts", params)
        if not result.get("success"):
            logger.error("[VARIANTS] getGroupedProducts page %s failed: %s", page, (result.get("error") or {}).get("message"))
            break

        data = result.get("result") or {}
        groups = data.get("grouped_products") or data.get("groups") or data.get("products") or []
        if not groups:
            break

        for raw in groups:
            if heartbeat is not None:
                await heartbeat()
            if not isinstance(raw, dict):
                continue
            try:
                if await build_family(store, raw, index, lang=lang, run_clock=run_clock, resolver=resolver):
                    families += 1
            except Exception as e:
                logger.error("[VARIANTS] group %s failed: %s", raw.get("grouped_product_id"), e, exc_info=True)

        paging = data.get("page") or {}
        try:
            current = int(paging.get("current_page", page))
            pages = int(paging.get("number_of_pages", 0))
        except (TypeError, ValueError):
            current, pages = page, 0
        if pages:
            if current >= pages:
                break
        elif len(groups) < s.PIM_BATCH_SIZE:
            break
        page += 1

    logger.info(
        "[VARIANTS] %s families built (%s created, %s updated), %s membership keys",
        families, index.created, index.updated, len(index),
    )
    return index


# ---------------------------------------------------------------------------
# Phase B
# ---------------------------------------------------------------------------

def _member_price(record: Dict[str, Any], sku: str) -> Dict[str, Any]:
    on_request, price = resolve_price(record)
    if on_request:
        return {"regular_price": "", "price_on_request": True, "stock_status": "outofstock"}
    if price is not None and price > 0:
        return {"regular_price": fmt_price(price), "price_on_request": False, "stock_status": "instock"}
    logger.warning("[VARIANTS] member %s has no price, setting 0 (product %s)", sku, record.get("product_id", "?"))
    return {"regular_price": "0", "price_on_request": False, "stock_status": "instock"}


async def upsert_member(store, record: Dict[str, Any], info: Dict[str, Any], *, lang: str, run_clock) -> str:
    """Write one member of a family. Returns "created" or "updated"."""
    family_id = info["family_entry_id"]
    sku = info.get("sku") or mapper.sku(record)
    member = await store.find_member(family_id, sku)

    owner_id = await store.sku_owner(sku, exclude_id=member.id if member is not None else None)
    if owner_id:
        owner = await store.get_entry(owner_id)
        if owner is not None and owner.kind == KIND_SIMPLE and owner.remote_product_id == mapper.remote_product_id(record):
            logger.info("[VARIANTS] %s moved into family %s; retiring simple entry %s", sku, family_id, owner_id)
            await store.retire_entry(owner_id)
        else:
            logger.warning("[VARIANTS] member SKU %s is also used by entry %s", sku, owner_id)

    codes = [AxisCode(**a) for a in info.get("axis_codes") or []]
    selection: Dict[str, str] = {}
    if codes:
        values = feature_values_for_codes(record, [a.code for a in codes], lang)
        for ac in codes:
            data = values.get(ac.code)
            if not data:
                continue
            slug = axis_slug(ac.code)
            label = data["label"] if data["label"] and data["label"] != ac.code else ac.label
            axis = await store.ensure_axis(slug, label, raw_label=ac.code)
            term_id = await store.find_or_create_attr_term(axis.id, data["value"], data["slug"])
            # the family must list the term before the member selects it
            await store.add_option_to_family(family_id, axis.id, term_id)
            term = await store.get_attr_term(term_id)
            selection[slug] = term.slug if term is not None else data["slug"]

    if not selection:
        if codes:
            logger.warning(
                "[VARIANTS] member %s has no values for axes %s; using the variant axis",
                sku, [a.code for a in codes],
            )
        axis = await store.ensure_axis(VARIANT_AXIS_SLUG, VARIANT_AXIS_LABEL)
        term_id = await store.find_or_create_attr_term(axis.id, sku)
        await store.add_option_to_family(family_id, axis.id, term_id)
        term = await store.get_attr_term(term_id)
        selection[VARIANT_AXIS_SLUG] = term.slug if term is not None else sku

    images = collect_media(record, lang)["images"]
    fields: Dict[str, Any] = {
        "sku": sku,
        "name": mapper.name(record, lang) or sku,
        "status": STATUS_PUBLISH,
        "variation_attributes": selection,
        "images": images[:1],
        "external_key": mapper.unique_key(record),
        "remote_product_id": mapper.remote_product_id(record),
        "synced_at": run_clock,
        **_member_price(record, sku),
    }

    if member is None:
        member_id = await store.create_entry(KIND_MEMBER, parent_id=family_id, **fields)
        outcome = "created"
    else:
        member_id = member.id
        await store.update_entry(member_id, **fields)
        outcome = "updated"

    await store.recompute_family(family_id)
    logger.debug("[VARIANTS] member %s (%s) %s under family %s", member_id, sku, outcome, family_id)
    return outcome
