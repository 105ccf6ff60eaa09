#===========================================================================
# pimsync/sync/reconciler.py
# Upsert one remote product as a simple catalog entry.
# Identity chain: natural SKU → external key → remote product id.
#===========================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from pimsync.models.catalog import KIND_SIMPLE, CatalogEntry
from pimsync.sync.components import mapper
from pimsync.sync.components.brands import assign_brand
from pimsync.sync.components.custom_classes import (
    custom_class_attributes,
    custom_class_text_meta,
    custom_features,
)
from pimsync.sync.components.features import collect_attributes, etim_features
from pimsync.sync.components.media import attach_media, collect_media
from pimsync.sync.components.price import resolve_price
from pimsync.sync.components.util import fmt_price

logger = logging.getLogger("uvicorn.error")


class SkipRecord(Exception):
    """A record that cannot be reconciled (no identity, kind collision)."""


def feature_attributes(record: Dict[str, Any], s, lang: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    (attributes, text_meta) for one record.
    Custom-class values go in first; base fields then ETIM values overwrite
    on a label collision.
    """
    merged: Dict[str, str] = {}
    text_meta: Dict[str, str] = {}
    if s.sync_custom_classes_any:
        cfeatures = custom_features(record, s)
        merged.update(custom_class_attributes(cfeatures, lang))
        text_meta = custom_class_text_meta(cfeatures, lang)
    merged.update(mapper.base_attributes(record))
    merged.update(collect_attributes(etim_features(record), lang))
    return merged, text_meta


class Reconciler:
    def __init__(self, store, s, resolver=None):
        self.store = store
        self.s = s
        self.lang = s.language
        self.resolver = resolver

    async def _resolve(self, record: Dict[str, Any], key: str, sku: str) -> Optional[CatalogEntry]:
        entry = await self.store.find_entry_by_sku(sku)
        sku_holder = None
        if entry is not None and entry.kind != KIND_SIMPLE:
            logger.debug("[SYNC] SKU %s belongs to %s entry %s, continuing lookup", sku, entry.kind, entry.id)
            sku_holder, entry = entry, None
        if entry is None:
            entry = await self.store.find_entry_by_external_key(key)
        if entry is None:
            pid = mapper.remote_product_id(record)
            entry = await self.store.find_entry_by_product_id(pid)
            if entry is not None:
                logger.info("[SYNC] product %s found via remote id fallback (entry %s)", pid, entry.id)
        if entry is None and sku_holder is not None:
            # a simple entry never takes over a family or member SKU
            return sku_holder
        return entry

    async def _unique_sku(self, sku: str, record: Dict[str, Any], entry_id: Optional[int]) -> str:
        owner = await self.store.sku_owner(sku, exclude_id=entry_id)
        if not owner:
            return sku
        new_sku = f"{sku}-{record.get('product_id')}"
        if entry_id is None:
            logger.warning("[SYNC] duplicate SKU on create: %s → %s (owned by entry %s)", sku, new_sku, owner)
        else:
            logger.warning("[SYNC] SKU conflict on update of entry %s: %s → %s (owned by entry %s)", entry_id, sku, new_sku, owner)
        return new_sku

    def _fields(self, record: Dict[str, Any], sku: str, key: str, run_clock) -> Dict[str, Any]:
        attributes, text_meta = feature_attributes(record, self.s, self.lang)
        fields: Dict[str, Any] = {
            "sku": sku,
            "name": mapper.name(record, self.lang),
            "short_description": mapper.short_description(record, self.lang),
            "description": mapper.long_description(record, self.lang),
            "status": mapper.status(record),
            "attributes": attributes,
            "text_meta": text_meta,
            "external_key": key,
            "remote_product_id": mapper.remote_product_id(record),
            "synced_at": run_clock,
        }
        on_request, price = resolve_price(record)
        if on_request:
            fields.update(regular_price="", price_on_request=True)
        elif price is not None:
            fields.update(regular_price=fmt_price(price), price_on_request=False)
        return fields

    async def upsert(self, record: Dict[str, Any], run_clock) -> str:
        """Returns "created", "updated" or "skipped"."""
        try:
            return await self._upsert(record, run_clock)
        except SkipRecord as e:
            logger.warning("[SYNC] skipped %s: %s", mapper.identity(record), e)
            return "skipped"

    async def _upsert(self, record: Dict[str, Any], run_clock) -> str:
        key = mapper.unique_key(record)
        if not key:
            raise SkipRecord("no unique key")

        sku = mapper.sku(record, self.s.PIM_USE_SKU_FIELD)
        entry = await self._resolve(record, key, sku)
        if entry is not None and entry.kind != KIND_SIMPLE:
            raise SkipRecord(f"entry {entry.id} is a {entry.kind}, not overwriting as simple")

        entry_id = entry.id if entry is not None else None
        sku = await self._unique_sku(sku, record, entry_id)
        fields = self._fields(record, sku, key, run_clock)

        if entry_id is None:
            entry_id = await self.store.create_entry(KIND_SIMPLE, **fields)
            outcome = "created"
        else:
            await self.store.update_entry(entry_id, **fields)
            outcome = "updated"

        await attach_media(self.store, entry_id, collect_media(record, self.lang))
        if self.resolver is not None:
            await self.resolver.assign_categories(entry_id, record)
        await assign_brand(self.store, entry_id, record)

        logger.debug("[SYNC] %s entry %s (%s, key %s)", outcome, entry_id, sku, key)
        return outcome
