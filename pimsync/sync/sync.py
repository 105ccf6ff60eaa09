# pimsync/sync/sync.py
# ==========================================
# PIM → local catalog sync (full / delta, grouped products first)
# ==========================================
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pimsync.config import settings as default_settings
from pimsync.pim.client import PimClient
from pimsync.store.catalog_store import CatalogStore
from pimsync.sync import purge
from pimsync.sync.categories import CategoryResolver
from pimsync.sync.components import mapper
from pimsync.sync.components.brands import sync_all_brands
from pimsync.sync.components.custom_classes import parse_custom_class_filter, sync_all_custom_classes
from pimsync.sync.components.media import attach_media, collect_media
from pimsync.sync.history import TRIGGER_MANUAL, TRIGGER_PURGE, RunState, outcome_record
from pimsync.sync.reconciler import Reconciler, feature_attributes
from pimsync.sync.variants import FamilyIndex, build_families, upsert_member
from pimsync.sync.components.util import iso_z, utcnow

logger = logging.getLogger("uvicorn.error")


def product_params(s) -> Dict[str, Any]:
    """getProducts parameters for a full run (page 1)."""
    params: Dict[str, Any] = {
        "page": 1,
        "limit": s.PIM_BATCH_SIZE,
        "include_product_status": True,
        "include_product_translations": True,
        "include_attachments": True,
        "include_trade_items": True,
        "include_trade_item_prices": True,
        "include_categories": bool(s.PIM_SYNC_CATEGORIES),
        # ETIM can be nested under product groups
        "include_product_groups": bool(s.PIM_SYNC_CATEGORIES or s.PIM_SYNC_GROUPED_PRODUCTS),
        "include_grouped_products": bool(s.PIM_SYNC_GROUPED_PRODUCTS),
        "include_etim": True,
        "include_etim_translations": True,
        "include_contexts": [1],
    }
    if s.PIM_INCLUDE_LANGUAGES:
        params["include_languages"] = s.PIM_INCLUDE_LANGUAGES

    whitelist_ids: List[int] = []
    if (s.PIM_CUSTOM_CLASS_FILTER_MODE or "").lower() == "whitelist":
        whitelist_ids = parse_custom_class_filter(s.PIM_CUSTOM_CLASS_FILTER_IDS)["ids"]
    if s.PIM_SYNC_CUSTOM_CLASSES:
        params["include_custom_classes"] = True
        if whitelist_ids:
            params["include_custom_class_id"] = whitelist_ids
    if s.PIM_SYNC_TRADE_ITEM_CUSTOM_CLASSES:
        params["include_trade_item_custom_classes"] = True
        if whitelist_ids:
            params["include_trade_item_custom_class_id"] = whitelist_ids

    if s.PIM_COLLECTION_IDS:
        params["collection_ids"] = s.PIM_COLLECTION_IDS
    return params


class SyncService:
    def __init__(self, s=None, *, client: Optional[PimClient] = None, store: Optional[CatalogStore] = None,
                 run_state: Optional[RunState] = None):
        self.s = s or default_settings
        self._owns_client = client is None
        self.client = client or PimClient.from_settings(self.s)
        self.store = store or CatalogStore()
        self.run_state = run_state or RunState()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    async def _fetch_page(self, params: Dict[str, Any], page: int, delta_since: Optional[str]) -> Dict[str, Any]:
        if delta_since:
            options = {k: v for k, v in params.items() if k not in ("page", "limit")}
            return await self.client.call("getProductsByFilter", {
                "filter": {"updated_on": {"datetime": delta_since, "operator": ">="}},
                "options": options,
                "page": page,
                "limit": params["limit"],
            })
        return await self.client.call("getProducts", {**params, "page": page})

    # ------------------------------------------------------------------
    # Per record
    # ------------------------------------------------------------------
    async def _process(self, record: Dict[str, Any], index: FamilyIndex, reconciler: Reconciler, run_clock) -> Optional[str]:
        """created | updated | skipped, or None for records that donate to a family / are ignored."""
        lang = self.s.language
        pid = mapper.remote_product_id(record)

        vinfo = index.virtual(pid)
        if vinfo is not None:
            media = collect_media(record, lang)
            await attach_media(self.store, vinfo["family_entry_id"], media)
            logger.info(
                "[SYNC] virtual product %s: %s images, %s documents assigned to family %s",
                pid, len(media["images"]), len(media["documents"]), vinfo["family_entry_id"],
            )
            return None
        if str(record.get("product_type") or "").upper() == "VIRTUAL":
            logger.debug("[SYNC] skipping virtual product %s (no family uses it)", pid)
            return None

        sku_for_lookup = str(
            record.get("internal_product_code")
            or record.get("manufacturer_product_code")
            or mapper.sku(record, self.s.PIM_USE_SKU_FIELD)
        )
        info = index.lookup(pid, sku_for_lookup)
        if info is not None and info.get("family_entry_id"):
            return await upsert_member(self.store, record, info, lang=lang, run_clock=run_clock)
        return await reconciler.upsert(record, run_clock)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    async def run_sync(self, delta: bool = False, trigger: str = TRIGGER_MANUAL) -> Dict[str, Any]:
        if not await self.run_state.acquire(trigger):
            return outcome_record(success=False, error="Sync already running", trigger=trigger, rejected=True)
        try:
            result = await self._run(delta, trigger)
        except Exception as e:
            logger.error("[SYNC] run aborted: %s", e, exc_info=True)
            result = outcome_record(success=False, error=str(e) or e.__class__.__name__, trigger=trigger)
        try:
            await self.run_state.record_result(result)
        except Exception as e:
            logger.error("[SYNC] could not record run outcome: %s", e)
        finally:
            await self.run_state.release()
        return result

    async def _run(self, delta: bool, trigger: str) -> Dict[str, Any]:
        s = self.s
        run_started_at = utcnow()
        await self.run_state.heartbeat(force=True)

        resolver = CategoryResolver(self.store, s.language, s.PIM_SUPER_CATEGORY_ID) if s.PIM_SYNC_CATEGORIES else None
        if resolver is not None and s.PIM_SUPER_CATEGORY_ID:
            await resolver.sync_category_tree(self.client, s.PIM_INCLUDE_LANGUAGES)
            await self.run_state.heartbeat(force=True)

        await sync_all_brands(self.client, self.store)
        await self.run_state.heartbeat(force=True)

        if s.sync_custom_classes_any:
            await sync_all_custom_classes(self.client, s)
            await self.run_state.heartbeat(force=True)

        index = FamilyIndex()
        if s.PIM_SYNC_GROUPED_PRODUCTS:
            index = await build_families(
                self.client, self.store, s,
                run_clock=run_started_at, resolver=resolver, heartbeat=self.run_state.heartbeat,
            )
            await self.run_state.heartbeat(force=True)

        counts = {
            "created": index.created,
            "updated": index.updated,
            "failed": 0,
            "skipped": 0,
            "with_attributes": 0,
            "without_attributes": 0,
        }

        delta_since = await self.run_state.get_last_sync() if delta else None
        params = product_params(s)
        logger.info(
            "[SYNC] started (%s, trigger %s, batch %s, collections %s)",
            f"delta since {delta_since}" if delta_since else "full", trigger, params["limit"], s.PIM_COLLECTION_IDS or "all",
        )

        page = 1
        result = await self._fetch_page(params, page, delta_since)
        if not result.get("success"):
            err = result.get("error") or {}
            logger.error("[SYNC] product fetch failed: %s", err.get("message"))
            return outcome_record(success=False, error=err.get("message") or "API error", trigger=trigger, **counts)

        products = (result.get("result") or {}).get("products") or []
        if delta_since and not products:
            logger.info("[SYNC] delta: nothing changed since %s", delta_since)
            return outcome_record(success=True, trigger=trigger)

        reconciler = Reconciler(self.store, s, resolver)
        lang = s.language
        while products:
            for record in products:
                await self.run_state.heartbeat()
                if not isinstance(record, dict):
                    counts["failed"] += 1
                    continue
                try:
                    outcome = await self._process(record, index, reconciler, run_started_at)
                except Exception as e:
                    counts["failed"] += 1
                    logger.error("[SYNC] product %s failed: %s", mapper.identity(record), e, exc_info=True)
                    continue
                if outcome is None:
                    continue
                if outcome != "skipped":
                    attrs, _ = feature_attributes(record, s, lang)
                    counts["with_attributes" if attrs else "without_attributes"] += 1
                if outcome in ("created", "updated"):
                    counts[outcome] += 1
                else:
                    counts["failed"] += 1
                    counts["skipped"] += 1

            if len(products) < params["limit"]:
                break
            page += 1
            result = await self._fetch_page(params, page, delta_since)
            if not result.get("success"):
                err = result.get("error") or {}
                logger.error("[SYNC] pagination failed at page %s: %s", page, err.get("message"))
                # an unfinished listing must not purge or advance last_sync
                return outcome_record(
                    success=False,
                    error=f"Page {page} fetch failed: {err.get('message') or 'API error'}",
                    trigger=trigger,
                    **counts,
                )
            products = (result.get("result") or {}).get("products") or []

        trashed = 0
        categories_removed = 0
        if s.PIM_PURGE_STALE_PRODUCTS:
            if delta_since:
                logger.info("[PURGE] skipped: delta run")
            elif s.PIM_COLLECTION_IDS:
                logger.warning("[PURGE] skipped: collection filter %s active", s.PIM_COLLECTION_IDS)
            else:
                await self.run_state.heartbeat(force=True)
                trashed = await purge.purge_stale_records(self.store, run_started_at)
                if resolver is not None:
                    categories_removed = await purge.purge_stale_categories(self.store, resolver.seen_ids)

        await self.run_state.set_last_sync(iso_z())
        logger.info(
            "[SYNC] completed: %s created, %s updated, %s failed (%s skipped), %s trashed, %s categories removed",
            counts["created"], counts["updated"], counts["failed"], counts["skipped"], trashed, categories_removed,
        )
        return outcome_record(
            success=True,
            trigger=trigger,
            trashed=trashed,
            categories_removed=categories_removed,
            **counts,
        )

    async def purge_all(self) -> Dict[str, Any]:
        if not await self.run_state.acquire(TRIGGER_PURGE):
            return outcome_record(success=False, error="Sync already running", trigger=TRIGGER_PURGE, rejected=True)
        try:
            return await purge.purge_all(self.store, self.run_state)
        finally:
            await self.run_state.release()


async def run_sync(delta: bool = False, trigger: str = TRIGGER_MANUAL, **kwargs) -> Dict[str, Any]:
    """Entry point for the worker. Never raises."""
    service = SyncService(**kwargs)
    try:
        return await service.run_sync(delta=delta, trigger=trigger)
    finally:
        await service.aclose()


async def purge_all_entries(**kwargs) -> Dict[str, Any]:
    service = SyncService(**kwargs)
    try:
        return await service.purge_all()
    finally:
        await service.aclose()
