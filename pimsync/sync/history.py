#===========================================================================
# pimsync/sync/history.py
# Run lease (single logical run), last-sync timestamp and outcome history.
#===========================================================================
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pimsync.db import get_sessionmaker
from pimsync.models.sync_state import RunLease, SyncHistoryEntry, SyncStateValue
from pimsync.sync.components.util import iso_z, monotonic, utcnow

logger = logging.getLogger("uvicorn.error")

LEASE_TTL_SECONDS = 60
HEARTBEAT_MIN_INTERVAL = 1.0
MAX_HISTORY = 20
LAST_SYNC_KEY = "last_sync"

TRIGGER_MANUAL = "manual"
TRIGGER_SCHEDULED = "scheduled"
TRIGGER_PURGE = "purge"


def outcome_record(**kwargs: Any) -> Dict[str, Any]:
    """A run outcome with every field present."""
    rec: Dict[str, Any] = {
        "success": False,
        "created": 0,
        "updated": 0,
        "failed": 0,
        "skipped": 0,
        "trashed": 0,
        "categories_removed": 0,
        "with_attributes": 0,
        "without_attributes": 0,
        "error": None,
        "trigger": TRIGGER_MANUAL,
        "timestamp": iso_z(),
    }
    rec.update(kwargs)
    return rec


class RunState:
    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None, ttl: int = LEASE_TTL_SECONDS):
        self._sm = sessionmaker or get_sessionmaker()
        self.ttl = ttl
        self.owner: Optional[str] = None
        self._last_beat = 0.0

    def _fresh(self, lease: Optional[RunLease], now: datetime) -> bool:
        if lease is None or lease.owner is None or lease.heartbeat_at is None:
            return False
        return now - lease.heartbeat_at < timedelta(seconds=self.ttl)

    # ---- lease ---------------------------------------------------------------
    async def acquire(self, trigger: str = TRIGGER_MANUAL) -> bool:
        now = utcnow()
        async with self._sm.begin() as session:
            lease = await session.get(RunLease, 1)
            if self._fresh(lease, now):
                logger.warning("[SYNC] run already in progress (owner %s, heartbeat %s)", lease.owner, lease.heartbeat_at)
                return False
            if lease is not None and lease.owner is not None:
                logger.warning("[SYNC] taking over stale lease of %s (heartbeat %s)", lease.owner, lease.heartbeat_at)
            if lease is None:
                lease = RunLease(id=1)
                session.add(lease)
            self.owner = uuid.uuid4().hex
            lease.owner = self.owner
            lease.trigger = trigger
            lease.started_at = now
            lease.heartbeat_at = now
        self._last_beat = monotonic()
        return True

    async def heartbeat(self, force: bool = False) -> None:
        if self.owner is None:
            return
        if not force and monotonic() - self._last_beat < HEARTBEAT_MIN_INTERVAL:
            return
        async with self._sm.begin() as session:
            lease = await session.get(RunLease, 1)
            if lease is not None and lease.owner == self.owner:
                lease.heartbeat_at = utcnow()
        self._last_beat = monotonic()

    async def release(self) -> None:
        if self.owner is None:
            return
        async with self._sm.begin() as session:
            lease = await session.get(RunLease, 1)
            if lease is not None and lease.owner == self.owner:
                lease.owner = None
                lease.heartbeat_at = None
        self.owner = None

    async def is_running(self) -> bool:
        async with self._sm() as session:
            return self._fresh(await session.get(RunLease, 1), utcnow())

    # ---- state values --------------------------------------------------------
    async def get_last_sync(self) -> Optional[str]:
        async with self._sm() as session:
            row = await session.get(SyncStateValue, LAST_SYNC_KEY)
            return row.value if row is not None and row.value else None

    async def set_last_sync(self, value: Optional[str]) -> None:
        async with self._sm.begin() as session:
            row = await session.get(SyncStateValue, LAST_SYNC_KEY)
            if row is None:
                session.add(SyncStateValue(key=LAST_SYNC_KEY, value=value))
            else:
                row.value = value

    # ---- history -------------------------------------------------------------
    async def record_result(self, result: Dict[str, Any]) -> None:
        async with self._sm.begin() as session:
            session.add(SyncHistoryEntry(payload=dict(result), created_at=utcnow()))
            await session.flush()
            keep = (
                select(SyncHistoryEntry.id)
                .order_by(SyncHistoryEntry.created_at.desc(), SyncHistoryEntry.id.desc())
                .limit(MAX_HISTORY)
            )
            await session.execute(delete(SyncHistoryEntry).where(SyncHistoryEntry.id.not_in(keep.scalar_subquery())))

    async def history(self) -> List[Dict[str, Any]]:
        async with self._sm() as session:
            q = (
                select(SyncHistoryEntry)
                .order_by(SyncHistoryEntry.created_at.desc(), SyncHistoryEntry.id.desc())
                .limit(MAX_HISTORY)
            )
            return [dict(h.payload or {}) for h in (await session.execute(q)).scalars().all()]

    async def status(self) -> Dict[str, Any]:
        async with self._sm() as session:
            lease = await session.get(RunLease, 1)
        running = self._fresh(lease, utcnow())
        hist = await self.history()
        return {
            "running": running,
            "heartbeat_at": iso_z(lease.heartbeat_at) if running and lease.heartbeat_at else None,
            "last_sync": await self.get_last_sync(),
            "last_result": hist[0] if hist else None,
        }
