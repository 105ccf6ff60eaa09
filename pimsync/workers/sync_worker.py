# ---------------------------
# pimsync/workers/sync_worker.py
# ---------------------------
import asyncio
import logging
from typing import Any, Dict

from pimsync.sync.history import TRIGGER_MANUAL, TRIGGER_SCHEDULED
from pimsync.sync.sync import purge_all_entries, run_sync

logger = logging.getLogger("uvicorn.error")

_QUEUE: "asyncio.Queue[dict]" = asyncio.Queue()

JOB_SYNC_RUN = "sync.run"
JOB_PURGE_ALL = "sync.purge_all"


async def enqueue_job(job: Dict[str, Any]) -> bool:
    try:
        _QUEUE.put_nowait(job)
        return True
    except asyncio.QueueFull:
        logger.error("[WORKER] queue full; dropping job: %s", job.get("type"))
        return False


def queued_jobs() -> int:
    return _QUEUE.qsize()


async def handle_job(job: Dict[str, Any]) -> Dict[str, Any]:
    jtype = (job.get("type") or "").strip()
    if jtype == JOB_SYNC_RUN:
        delta = bool(job.get("delta"))
        trigger = job.get("trigger") or TRIGGER_MANUAL
        logger.info("[WORKER] sync run (delta=%s, trigger=%s)", delta, trigger)
        return await run_sync(delta=delta, trigger=trigger)
    if jtype == JOB_PURGE_ALL:
        logger.info("[WORKER] purge all")
        return await purge_all_entries()
    logger.info("[WORKER] unknown job type=%s", jtype)
    return {"success": False, "error": f"Unknown job type: {jtype}"}


async def worker_loop(stop_event: asyncio.Event) -> None:
    logger.info("[WORKER] started")
    while not stop_event.is_set():
        try:
            job = await asyncio.wait_for(_QUEUE.get(), timeout=1.0)
        except asyncio.TimeoutError:
            continue

        try:
            result = await handle_job(job)
            logger.info(
                "[WORKER] job %s finished: success=%s error=%s",
                job.get("type"), result.get("success"), result.get("error"),
            )
        except Exception as e:
            logger.error("[WORKER] failed job type=%s: %s", job.get("type"), e, exc_info=True)
        finally:
            _QUEUE.task_done()

    logger.info("[WORKER] stopped")


async def scheduler_loop(stop_event: asyncio.Event, interval_minutes: int, delta: bool = True) -> None:
    """Enqueue a scheduled run every interval_minutes until stopped."""
    if interval_minutes <= 0:
        return
    logger.info("[WORKER] scheduler every %s min (delta=%s)", interval_minutes, delta)
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_minutes * 60)
        except asyncio.TimeoutError:
            await enqueue_job({"type": JOB_SYNC_RUN, "delta": delta, "trigger": TRIGGER_SCHEDULED})
