# pimsync/sync/components/features.py
# =======================================================
# Typed feature extraction (ETIM + shared formatting)
# - collect ETIM feature containers from a product
# - format any TypedFeature into a display string
# - build label → value attribute maps (first occurrence wins)
# =======================================================
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pimsync.pim.records import ATTRIBUTE_TYPES, TypedFeature, etim_feature, normalize_feature_container
from pimsync.sync.components.translations import pick_text
from pimsync.sync.components.util import as_list, fmt_number, slugify

logger = logging.getLogger("uvicorn.error")

YES = "Yes"
NO = "No"
RANGE_SEP = " – "
_MAX_SEARCH_DEPTH = 10


# ---- ETIM containers ---------------------------------------------------------

def _find_feature_lists(product: Dict[str, Any]) -> List[List[Dict[str, Any]]]:
    """Last resort: any list (up to depth 10) whose items carry etim_feature_code."""
    found: List[List[Dict[str, Any]]] = []
    stack: List[tuple] = [(product, 0)]
    while stack:
        node, depth = stack.pop(0)
        if depth > _MAX_SEARCH_DEPTH:
            continue
        children = node.values() if isinstance(node, dict) else node
        for val in children:
            if not isinstance(val, (dict, list)):
                continue
            if isinstance(val, list) and any(isinstance(v, dict) and "etim_feature_code" in v for v in val):
                found.append(val)
            else:
                stack.append((val, depth + 1))
    return found


def collect_etim_containers(product: Dict[str, Any]) -> List[Any]:
    containers: List[Any] = []
    for etim in as_list(product.get("_etim")):
        if isinstance(etim, dict) and etim.get("_etim_features"):
            containers.append(etim["_etim_features"])
    # some API versions put _etim_features directly on the product
    if not containers and product.get("_etim_features"):
        containers.append(product["_etim_features"])
    for g in product.get("_product_groups") or []:
        if not isinstance(g, dict):
            continue
        for etim in as_list(g.get("_etim")):
            if isinstance(etim, dict) and etim.get("_etim_features"):
                containers.append(etim["_etim_features"])
        if g.get("_etim_features"):
            containers.append(g["_etim_features"])
    if not containers:
        containers.extend(_find_feature_lists(product))
    return containers


def etim_features(product: Dict[str, Any]) -> List[TypedFeature]:
    out: List[TypedFeature] = []
    for container in collect_etim_containers(product):
        for raw in normalize_feature_container(container):
            out.append(etim_feature(raw))
    return out


# ---- formatting --------------------------------------------------------------

def feature_label(f: TypedFeature, lang: str) -> str:
    return pick_text(f.label_translations, lang, "text") or f.code or f.key


def _unit(f: TypedFeature, lang: str) -> str:
    if f.unit_translations:
        return pick_text(f.unit_translations, lang, "abbreviation", "description")
    if f.source == "custom":
        return str(f.unit_code or "")
    return ""


def _with_unit(s: str, unit: str) -> str:
    return f"{s} {unit}" if unit else s


def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and v.strip() == "")


def format_feature(f: TypedFeature, lang: str) -> Optional[str]:
    if f.not_applicable:
        return None
    t = f.type

    if t == "A":
        for v in f.values:
            desc = pick_text(v.translations, lang, "text")
            if desc:
                return desc
        if f.values and f.values[0].code:
            return f.values[0].code
        if f.value_code:
            return f.value_code
        if f.source == "etim" and not _blank(f.numeric_value):
            return fmt_number(f.numeric_value)
        return None

    if t == "M":
        parts = []
        for v in f.values:
            label = pick_text(v.translations, lang, "text") or v.code
            if label:
                parts.append(label)
        if not parts and f.value_code:
            parts.append(f.value_code)
        return ", ".join(parts) if parts else None

    if t == "L":
        if f.logical_value is None:
            return None
        return YES if f.logical_value else NO

    if t == "N":
        if _blank(f.numeric_value):
            return None
        return _with_unit(fmt_number(f.numeric_value), _unit(f, lang))

    if t == "R":
        lo = "" if _blank(f.range_min) else fmt_number(f.range_min)
        hi = "" if _blank(f.range_max) else fmt_number(f.range_max)
        if not lo and not hi:
            return None
        s = lo + (RANGE_SEP if lo and hi else "") + hi
        return _with_unit(s, _unit(f, lang))

    if t == "D":
        return f.date_value or None

    if t == "I":
        return pick_text(f.translated_texts, lang, "text") or None

    if t in ("T", "B"):
        return f.text_value or None

    return None


# ---- attribute maps ----------------------------------------------------------

def collect_attributes(
    features: Iterable[TypedFeature],
    lang: str,
    types: Optional[set] = None,
) -> Dict[str, str]:
    """
    label → value. Duplicate feature codes across containers: the first
    occurrence that produces a value wins, later ones are dropped.
    """
    types = types or ATTRIBUTE_TYPES
    attrs: Dict[str, str] = {}
    seen: set = set()
    for f in features:
        if f.type not in types:
            continue
        value = format_feature(f, lang)
        if value is None or value == "":
            continue
        if f.key in seen:
            continue
        seen.add(f.key)
        attrs.setdefault(feature_label(f, lang), value)
    return attrs


def feature_values_for_codes(
    product: Dict[str, Any],
    codes: Iterable[str],
    lang: str,
) -> Dict[str, Dict[str, str]]:
    """CODE → {label, value, slug} for the requested (variant axis) codes."""
    wanted = {str(c).strip().upper() for c in codes if str(c or "").strip()}
    if not wanted:
        return {}
    out: Dict[str, Dict[str, str]] = {}
    for f in etim_features(product):
        code = f.code.upper()
        if code not in wanted or code in out:
            continue
        value = format_feature(f, lang)
        if value is None or value == "":
            continue
        out[code] = {
            "label": feature_label(f, lang) or code,
            "value": value,
            "slug": slugify(value) or f"val-{code.lower()}",
        }
    return out
