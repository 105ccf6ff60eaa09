from __future__ import annotations

import logging
from typing import Any, Dict, List

logger = logging.getLogger("uvicorn.error")


def extract_brand(record: Dict[str, Any]) -> str:
    """
    Brand name of a remote product or group:
      1) brand_name / brand / manufacturer_name
      2) a nested _brand object
    """
    if not isinstance(record, dict):
        return ""
    for k in ("brand_name", "brand", "manufacturer_name"):
        v = record.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
    nested = record.get("_brand")
    if isinstance(nested, dict):
        v = nested.get("brand_name") or nested.get("name")
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ""


def brand_names(result: Any) -> List[str]:
    """Unique trimmed brand names out of a getBrands result."""
    rows = result.get("brands", result) if isinstance(result, dict) else result
    if isinstance(rows, dict):
        rows = list(rows.values())
    if not isinstance(rows, list):
        return []
    names: List[str] = []
    seen: set[str] = set()
    for b in rows:
        if not isinstance(b, dict):
            continue
        name = str(b.get("brand_name") or b.get("name") or "").strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        names.append(name)
    return names


async def sync_all_brands(client, store) -> Dict[str, Any]:
    result = await client.call("getBrands", {})
    if not result.get("success"):
        logger.error("[BRANDS] getBrands API error: %s", (result.get("error") or {}).get("message"))
        return {"success": False, "created": 0, "existing": 0}

    created = existing = 0
    for name in brand_names(result.get("result")):
        _, was_created = await store.find_or_create_brand(name)
        if was_created:
            created += 1
        else:
            existing += 1
    logger.info("[BRANDS] synced: %s created, %s existing", created, existing)
    return {"success": True, "created": created, "existing": existing}


async def assign_brand(store, entry_id: int, record: Dict[str, Any]) -> None:
    name = extract_brand({"brand_name": record.get("brand_name"), "_brand": record.get("_brand")})
    if not name:
        return
    brand_id, _ = await store.find_or_create_brand(name)
    await store.set_entry_brand(entry_id, brand_id)
