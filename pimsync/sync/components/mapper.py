# pimsync/sync/components/mapper.py
# Remote product dict → local entry fields (identity keys, text, status, categories).
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pimsync.pim.records import CategoryRef, category_ref
from pimsync.sync.components.translations import normalize_translations, pick_translation

logger = logging.getLogger("uvicorn.error")


def _str(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


def unique_key(product: Dict[str, Any]) -> Optional[str]:
    """ext:<external id> → sku:<internal code> → sku:<manufacturer code> → id:<product_id>"""
    ext = _str(product.get("external_product_id"))
    if ext:
        return f"ext:{ext}"
    for field in ("internal_product_code", "manufacturer_product_code"):
        code = _str(product.get(field))
        if code:
            return f"sku:{code}"
    pid = _str(product.get("product_id"))
    if pid:
        return f"id:{pid}"
    return None


def remote_product_id(product: Dict[str, Any]) -> Optional[int]:
    raw = product.get("product_id", product.get("id"))
    try:
        return int(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None


def sku(product: Dict[str, Any], sku_field: str = "internal_product_code") -> str:
    if sku_field == "manufacturer_product_code":
        val = _str(product.get("manufacturer_product_code")) or _str(product.get("internal_product_code"))
    else:
        val = _str(product.get("internal_product_code")) or _str(product.get("manufacturer_product_code"))
    if not val and _str(product.get("product_id")):
        return f"SKW-{_str(product.get('product_id'))}"
    return val


def identity(product: Dict[str, Any]) -> str:
    """Short label for log lines."""
    return _str(product.get("internal_product_code")) or _str(product.get("product_id")) or "?"


def _translation(product: Dict[str, Any], lang: str) -> Dict[str, Any]:
    return pick_translation(normalize_translations(product.get("_product_translations")), lang)


def name(product: Dict[str, Any], lang: str) -> str:
    erp = _str(product.get("product_erp_description"))
    if erp:
        return erp
    t = _translation(product, lang)
    return _str(t.get("product_model")) or _str(t.get("product_description"))


def short_description(product: Dict[str, Any], lang: str) -> str:
    return _str(_translation(product, lang).get("product_description"))


def long_description(product: Dict[str, Any], lang: str) -> str:
    t = _translation(product, lang)
    for field in ("product_long_description", "product_marketing_text", "product_web_text"):
        if _str(t.get(field)):
            return _str(t.get(field))
    return ""


def status(product: Dict[str, Any]) -> str:
    if product.get("product_trashed_on"):
        return "trash"
    st = product.get("_product_status") or {}
    desc = _str(st.get("product_status_description")) if isinstance(st, dict) else ""
    if "draft" in desc.lower():
        return "draft"
    return "publish"


def base_attributes(product: Dict[str, Any]) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    for label, field in (("Brand", "brand_name"), ("Manufacturer", "manufacturer_name"), ("GTIN", "product_gtin")):
        val = _str(product.get(field))
        if val:
            attrs[label] = val
    return attrs


def categories(product: Dict[str, Any], lang: str) -> List[CategoryRef]:
    """
    Category references for a product. Primary source is _categories (each may
    nest a _parent_category chain); legacy fallback is _product_groups.
    Deduplicated by remote id (by name and parent when there is no id), first wins.
    """
    refs: List[CategoryRef] = []
    for raw in product.get("_categories") or []:
        ref = category_ref(raw, lang)
        if ref and ref.name:
            refs.append(ref)

    if not refs:
        for g in product.get("_product_groups") or []:
            if not isinstance(g, dict):
                continue
            gname = _str(g.get("product_group_name"))
            if not gname:
                continue
            gid = g.get("product_group_id", g.get("id"))
            try:
                gid = int(gid) if gid not in (None, "") else None
            except (TypeError, ValueError):
                gid = None
            refs.append(CategoryRef(id=gid, name=gname))

    unique: List[CategoryRef] = []
    keys: set = set()
    for ref in refs:
        if ref.id is not None:
            k = f"id:{ref.id}"
        else:
            parent = ref.parent_id if ref.parent_id is not None else ref.parent_name.lower()
            k = f"name:{ref.name.lower()}@{parent}"
        if k in keys:
            continue
        keys.add(k)
        unique.append(ref)
    return unique
