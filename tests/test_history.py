from pimsync.sync.history import MAX_HISTORY, RunState, outcome_record


def test_second_acquire_is_rejected_until_release(run_db):
    async def scenario(store, run_state):
        other = RunState(run_state._sm)
        first = await run_state.acquire()
        rejected = await other.acquire()
        running = await other.is_running()
        await run_state.release()
        after = await other.acquire()
        await other.release()
        return first, rejected, running, after, await run_state.is_running()

    assert run_db(scenario) == (True, False, True, True, False)


def test_stale_lease_is_taken_over(run_db):
    async def scenario(store, run_state):
        crashed = RunState(run_state._sm, ttl=0)
        await crashed.acquire()
        survivor = RunState(run_state._sm, ttl=0)
        took_over = await survivor.acquire()
        # the crashed owner can no longer release someone else's lease
        await crashed.release()
        still_held = await RunState(run_state._sm).is_running()
        await survivor.release()
        return took_over, still_held

    took_over, still_held = run_db(scenario)
    assert took_over is True
    assert still_held is True


def test_history_is_capped_and_newest_first(run_db):
    async def scenario(store, run_state):
        for i in range(MAX_HISTORY + 5):
            await run_state.record_result(outcome_record(success=True, created=i))
        return await run_state.history()

    history = run_db(scenario)
    assert len(history) == MAX_HISTORY
    assert history[0]["created"] == MAX_HISTORY + 4
    assert history[-1]["created"] == 5


def test_status_and_last_sync(run_db):
    async def scenario(store, run_state):
        empty = await run_state.status()
        await run_state.set_last_sync("2024-05-01T12:00:00Z")
        await run_state.record_result(outcome_record(success=True, created=2))
        await run_state.acquire()
        busy = await run_state.status()
        await run_state.release()
        return empty, busy

    empty, busy = run_db(scenario)
    assert empty == {"running": False, "heartbeat_at": None, "last_sync": None, "last_result": None}
    assert busy["running"] is True
    assert busy["heartbeat_at"].endswith("Z")
    assert busy["last_sync"] == "2024-05-01T12:00:00Z"
    assert busy["last_result"]["created"] == 2


def test_outcome_record_has_every_field():
    rec = outcome_record(success=True, created=1)
    for field in ("updated", "failed", "skipped", "trashed", "categories_removed",
                  "with_attributes", "without_attributes", "error", "trigger", "timestamp"):
        assert field in rec
    assert rec["trigger"] == "manual"
