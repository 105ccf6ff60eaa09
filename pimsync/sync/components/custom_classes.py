# pimsync/sync/components/custom_classes.py
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from pimsync.pim.records import ATTRIBUTE_TYPES, TEXT_META_TYPES, TypedFeature, custom_feature
from pimsync.sync.components.features import collect_attributes, format_feature
from pimsync.sync.components.util import sanitize_key

logger = logging.getLogger("uvicorn.error")

TEXT_META_PREFIX = "cc_"


def parse_custom_class_filter(raw: str | None) -> Dict[str, List[Any]]:
    """'12, 15 LIGHTING' → {"ids": [12, 15], "codes": ["lighting"]}"""
    ids: List[int] = []
    codes: List[str] = []
    for part in re.split(r"[\s,]+", raw or ""):
        part = part.strip()
        if not part:
            continue
        if part.isdigit():
            ids.append(int(part))
        else:
            codes.append(part.lower())
    return {"ids": ids, "codes": codes}


def collect_custom_classes(product: Dict[str, Any], include_trade_items: bool = False) -> List[Dict[str, Any]]:
    classes = [
        cc for cc in (product.get("_custom_classes") or [])
        if isinstance(cc, dict) and cc.get("_custom_features")
    ]
    if include_trade_items:
        for ti in product.get("_trade_items") or []:
            if not isinstance(ti, dict):
                continue
            for cc in ti.get("_trade_item_custom_classes") or []:
                if isinstance(cc, dict) and cc.get("_custom_features"):
                    classes.append(cc)
    return classes


def class_matches(cc: Dict[str, Any], ids: List[int], codes: List[str]) -> bool:
    cid = cc.get("custom_class_id")
    code = cc.get("custom_class_code")
    try:
        if cid is not None and int(cid) in ids:
            return True
    except (TypeError, ValueError):
        pass
    return code is not None and str(code).lower() in codes


def filter_custom_classes(classes: List[Dict[str, Any]], mode: str, ids: List[int], codes: List[str]) -> List[Dict[str, Any]]:
    mode = (mode or "").strip().lower()
    if mode not in ("whitelist", "blacklist") or (not ids and not codes):
        return classes
    if mode == "whitelist":
        return [cc for cc in classes if class_matches(cc, ids, codes)]
    return [cc for cc in classes if not class_matches(cc, ids, codes)]


def custom_features(product: Dict[str, Any], s) -> List[TypedFeature]:
    """Normalized features of every custom class that passes the configured filter."""
    if not s.sync_custom_classes_any:
        return []
    parsed = parse_custom_class_filter(s.PIM_CUSTOM_CLASS_FILTER_IDS)
    classes = collect_custom_classes(product, include_trade_items=s.PIM_SYNC_TRADE_ITEM_CUSTOM_CLASSES)
    classes = filter_custom_classes(classes, s.PIM_CUSTOM_CLASS_FILTER_MODE, parsed["ids"], parsed["codes"])
    out: List[TypedFeature] = []
    for cc in classes:
        for raw in cc.get("_custom_features") or []:
            if isinstance(raw, dict):
                out.append(custom_feature(raw, cc))
    return out


def custom_class_attributes(features: List[TypedFeature], lang: str) -> Dict[str, str]:
    return collect_attributes(features, lang, types=ATTRIBUTE_TYPES)


def custom_class_text_meta(features: List[TypedFeature], lang: str) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for f in features:
        if f.type not in TEXT_META_TYPES:
            continue
        value = format_feature(f, lang)
        if not value:
            continue
        meta[TEXT_META_PREFIX + sanitize_key(f.code or f.key)] = value
    return meta


async def sync_all_custom_classes(client, s) -> Dict[str, Any]:
    """
    Fetch the custom-class catalogue once per run. Values are assigned per
    product; this pass only reports which attribute features exist.
    """
    parsed = parse_custom_class_filter(s.PIM_CUSTOM_CLASS_FILTER_IDS)
    mode = (s.PIM_CUSTOM_CLASS_FILTER_MODE or "").lower()
    params: Dict[str, Any] = {}
    if mode == "whitelist" and parsed["ids"]:
        params["custom_class_id"] = parsed["ids"]
    if s.PIM_INCLUDE_LANGUAGES:
        params["include_languages"] = s.PIM_INCLUDE_LANGUAGES

    result = await client.call("getCustomClasses", params)
    if not result.get("success"):
        logger.error("[CUSTOM CLASSES] getCustomClasses API error: %s", (result.get("error") or {}).get("message"))
        return {"success": False, "classes": 0, "features": 0}

    data = result.get("result") or {}
    classes = data.get("custom_classes", data) if isinstance(data, dict) else data
    if not isinstance(classes, list):
        logger.warning("[CUSTOM CLASSES] unexpected getCustomClasses format: %s", type(classes).__name__)
        return {"success": False, "classes": 0, "features": 0}

    if mode == "blacklist":
        classes = filter_custom_classes(classes, mode, parsed["ids"], parsed["codes"])

    features = 0
    for cc in classes:
        for feat in cc.get("_custom_class_features") or cc.get("features") or []:
            ftype = str(feat.get("custom_feature_type") or "").upper()
            if ftype in TEXT_META_TYPES:
                continue
            if feat.get("custom_feature_description") or feat.get("custom_feature_code"):
                features += 1

    logger.info("[CUSTOM CLASSES] synced: %s classes, %s attribute features", len(classes), features)
    return {"success": True, "classes": len(classes), "features": features}
