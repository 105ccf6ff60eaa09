# pimsync/sync/components/media.py
# Attachment collaborator: normalizes image/document references and stores
# them on the entry. Downloading and rendering happen elsewhere.
from __future__ import annotations

import os
from typing import Any, Dict, List
from urllib.parse import urlparse

from pimsync.sync.components.translations import normalize_translations, pick_translation
from pimsync.sync.components.util import clean_url

IMAGE_TYPES = {"IMG", "PPI", "PHI", "LOG", "SCH", "PRT", "OTV"}
DOCUMENT_TYPE_LABELS = {
    "MAN": "Manual",
    "DAT": "Datasheet",
    "CER": "Certificate",
    "WAR": "Warranty",
    "OTV": "Other document",
}


def _valid_url(url: str) -> bool:
    u = urlparse(url)
    return u.scheme in ("http", "https") and bool(u.netloc)


def _caption(att: Dict[str, Any], lang: str) -> Dict[str, str]:
    trans = normalize_translations(att.get("_attachment_translations"))
    if not trans:
        return {"title": str(att.get("file_name") or ""), "description": ""}
    t = pick_translation(trans, lang)
    return {
        "title": str(t.get("product_attachment_title") or att.get("file_name") or ""),
        "description": str(t.get("product_attachment_description") or ""),
    }


def _attachments(product: Dict[str, Any]) -> List[Dict[str, Any]]:
    raw = product.get("_attachments") or product.get("attachments") or []
    if isinstance(raw, dict):
        raw = list(raw.values())
    return [a for a in raw if isinstance(a, dict) and not a.get("for_internal_use")]


def collect_media(product: Dict[str, Any], lang: str) -> Dict[str, List[Dict[str, Any]]]:
    """{"images": [...ordered, first = featured], "documents": [...]}"""
    images: List[Dict[str, Any]] = []
    documents: List[Dict[str, Any]] = []
    seen: set = set()
    for att in _attachments(product):
        code = str(att.get("product_attachment_type_code") or att.get("attachment_type_code") or "").upper()
        url = clean_url(att.get("source_url") or att.get("file_source_url") or att.get("url"))
        if not url or not _valid_url(url) or url in seen:
            continue
        seen.add(url)
        order = att.get("product_attachment_order", att.get("order", 999))
        try:
            order = int(order)
        except (TypeError, ValueError):
            order = 999
        caption = _caption(att, lang)
        if code in IMAGE_TYPES:
            images.append({"url": url, "order": order, "type": code, **caption})
            continue
        name = str(att.get("file_name") or att.get("product_attachment_title") or "")
        if not name:
            name = os.path.basename(urlparse(url).path) or "Document"
        documents.append({
            "url": url,
            "order": order,
            "name": name,
            "type": code,
            "type_label": DOCUMENT_TYPE_LABELS.get(code, code),
            **caption,
        })
    images.sort(key=lambda x: x["order"])
    documents.sort(key=lambda x: x["order"])
    return {"images": images, "documents": documents}


async def attach_media(store, entry_id: int, media: Dict[str, List[Dict[str, Any]]]) -> None:
    await store.update_entry(entry_id, images=media.get("images") or [], documents=media.get("documents") or [])
