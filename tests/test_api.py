import pytest
from fastapi.testclient import TestClient

from pimsync import routes
from pimsync.main_app import app
from pimsync.workers.sync_worker import JOB_PURGE_ALL, JOB_SYNC_RUN

AUTH = ("admin", "adminpass")


class StubRunState:
    def __init__(self, running=False):
        self.running = running

    async def is_running(self):
        return self.running

    async def status(self):
        return {"running": self.running, "heartbeat_at": None, "last_sync": "2024-05-01T12:00:00Z", "last_result": None}

    async def history(self):
        return [{"success": True, "created": 3, "trigger": "manual"}]


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setattr(routes.settings, "ADMIN_USER", "admin")
    monkeypatch.setattr(routes.settings, "ADMIN_PASS", "adminpass")
    jobs = []

    async def fake_enqueue(job):
        jobs.append(job)
        return True

    monkeypatch.setattr(routes, "enqueue_job", fake_enqueue)
    monkeypatch.setattr(routes, "queued_jobs", lambda: len(jobs))
    app.dependency_overrides[routes.get_run_state] = lambda: StubRunState()
    client = TestClient(app)
    client.jobs = jobs
    yield client
    app.dependency_overrides.clear()


def test_root():
    assert TestClient(app).get("/").json() == {"status": "running", "service": "PIM Catalog Sync"}


def test_requires_admin_credentials(api):
    assert api.get("/api/sync/status").status_code == 401
    assert api.get("/api/sync/status", auth=("admin", "wrong")).status_code == 401


def test_sync_run_is_queued(api):
    response = api.post("/api/sync/run", json={"delta": True}, auth=AUTH)
    assert response.status_code == 202
    assert response.json() == {"status": "queued", "delta": True, "queued_jobs": 1}
    assert api.jobs == [{"type": JOB_SYNC_RUN, "delta": True, "trigger": "manual"}]


def test_sync_run_without_body_is_full(api):
    response = api.post("/api/sync/run", auth=AUTH)
    assert response.status_code == 202
    assert api.jobs[0]["delta"] is False


def test_sync_run_conflicts_with_live_run(api):
    app.dependency_overrides[routes.get_run_state] = lambda: StubRunState(running=True)
    response = api.post("/api/sync/run", json={}, auth=AUTH)
    assert response.status_code == 409
    assert api.jobs == []


def test_purge_all_is_queued(api):
    response = api.post("/api/sync/purge-all", auth=AUTH)
    assert response.status_code == 202
    assert api.jobs == [{"type": JOB_PURGE_ALL}]


def test_status_and_history(api):
    status = api.get("/api/sync/status", auth=AUTH).json()
    assert status["running"] is False
    assert status["last_sync"] == "2024-05-01T12:00:00Z"
    history = api.get("/api/sync/history", auth=AUTH).json()
    assert history == {"history": [{"success": True, "created": 3, "trigger": "manual"}]}


def test_connection_test_reports_rpc_outcome(api, fake_pim):
    pim = fake_pim({"getProducts": lambda params: {"error": {"code": -32001, "message": "Invalid token"}}})

    async def client_override():
        client = pim.client()
        try:
            yield client
        finally:
            await client.aclose()

    app.dependency_overrides[routes.get_pim_client] = client_override
    body = api.post("/api/connection/test", auth=AUTH).json()
    assert body["success"] is False
    assert body["error"]["message"] == "Invalid token"
    assert pim.methods() == ["getProducts"]
