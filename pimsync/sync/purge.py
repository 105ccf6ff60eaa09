#===========================================================================
# pimsync/sync/purge.py
# Retire entries a full run did not see; delete categories the remote no
# longer has, unless live entries still use them.
#===========================================================================
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable

from pimsync.models.catalog import KIND_FAMILY, KIND_MEMBER
from pimsync.sync.history import TRIGGER_PURGE, outcome_record

logger = logging.getLogger("uvicorn.error")


async def purge_stale_records(store, run_started_at: datetime) -> int:
    """Trash remote-owned entries whose synced_at predates this run. Returns the number retired."""
    stale = await store.list_stale_entries(run_started_at)
    trashed = 0
    handled: set[int] = set()
    # families first so their members are counted once
    stale.sort(key=lambda e: 0 if e.kind == KIND_FAMILY else 1)
    for entry in stale:
        if entry.id in handled:
            continue
        if entry.kind == KIND_MEMBER and entry.parent_id in handled:
            continue
        n = await store.retire_entry(entry.id)
        handled.add(entry.id)
        trashed += n
        logger.info("[PURGE] retired %s %s (%s), last synced %s", entry.kind, entry.id, entry.sku, entry.synced_at)
    if trashed:
        logger.info("[PURGE] %s stale entries retired", trashed)
    return trashed


async def purge_stale_categories(store, seen_ids: Iterable[str]) -> int:
    """Delete remote-owned terms not seen this run. Terms with live entries stay."""
    seen = {str(s) for s in seen_ids}
    removed = 0
    for term in await store.list_terms_with_remote_id():
        if term.remote_id in seen:
            continue
        active = await store.count_active_entries_for_term(term.id)
        if active:
            logger.warning(
                "[PURGE] category '%s' (remote %s) is gone upstream but still has %s active entries; keeping it",
                term.name, term.remote_id, active,
            )
            continue
        await store.delete_term(term.id)
        removed += 1
        logger.info("[PURGE] deleted category '%s' (remote %s)", term.name, term.remote_id)
    return removed


async def purge_all(store, run_state) -> Dict[str, Any]:
    """Retire every remote-owned entry, drop unused remote terms, forget the last sync."""
    trashed = 0
    for entry in await store.list_remote_entries():
        trashed += await store.retire_entry(entry.id)

    removed = 0
    for term in await store.list_terms_with_remote_id():
        if await store.count_active_entries_for_term(term.id):
            continue
        await store.delete_term(term.id)
        removed += 1

    await run_state.set_last_sync(None)
    result = outcome_record(success=True, trashed=trashed, categories_removed=removed, trigger=TRIGGER_PURGE)
    await run_state.record_result(result)
    logger.info("[PURGE] purge all: %s entries retired, %s categories removed", trashed, removed)
    return result
