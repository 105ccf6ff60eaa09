import asyncio

from pimsync.workers import sync_worker


def test_handle_job_dispatches_sync_run(monkeypatch):
    seen = []

    async def fake_run_sync(delta=False, trigger="manual"):
        seen.append((delta, trigger))
        return {"success": True}

    monkeypatch.setattr(sync_worker, "run_sync", fake_run_sync)
    job = {"type": sync_worker.JOB_SYNC_RUN, "delta": True, "trigger": "scheduled"}
    assert asyncio.run(sync_worker.handle_job(job)) == {"success": True}
    assert seen == [(True, "scheduled")]


def test_handle_job_dispatches_purge(monkeypatch):
    async def fake_purge():
        return {"success": True, "trigger": "purge"}

    monkeypatch.setattr(sync_worker, "purge_all_entries", fake_purge)
    assert asyncio.run(sync_worker.handle_job({"type": sync_worker.JOB_PURGE_ALL}))["trigger"] == "purge"


def test_unknown_job_type():
    result = asyncio.run(sync_worker.handle_job({"type": "nope"}))
    assert result["success"] is False


def test_worker_loop_drains_queue(monkeypatch):
    done = []

    async def fake_run_sync(delta=False, trigger="manual"):
        done.append(trigger)
        return {"success": True}

    monkeypatch.setattr(sync_worker, "run_sync", fake_run_sync)

    async def main():
        # a fresh queue bound to this loop
        monkeypatch.setattr(sync_worker, "_QUEUE", asyncio.Queue())
        stop = asyncio.Event()
        await sync_worker.enqueue_job({"type": sync_worker.JOB_SYNC_RUN, "trigger": "manual"})
        task = asyncio.create_task(sync_worker.worker_loop(stop))
        await sync_worker._QUEUE.join()
        stop.set()
        await task

    asyncio.run(main())
    assert done == ["manual"]
