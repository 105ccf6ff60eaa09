#=======================================================================================
# pimsync/routes.py
# Admin API for the PIM sync: trigger runs, read status/history, test the connection.
#
# Everything lives under /api/* and requires HTTP Basic (admin).
# Runs are queued for the background worker; no engine logic here.
#=======================================================================================

import json
import secrets
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Request, Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.responses import JSONResponse

from pimsync.config import settings
from pimsync.pim.client import PimClient
from pimsync.sync.history import TRIGGER_MANUAL, RunState
from pimsync.workers.sync_worker import JOB_PURGE_ALL, JOB_SYNC_RUN, enqueue_job, queued_jobs

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Sync API"])

# ---------------------------
# HTTP Basic (admin)
# ---------------------------
security = HTTPBasic()


def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )


# ---------------------------
# Dependencies / helpers
# ---------------------------
def get_run_state() -> RunState:
    return RunState()


async def get_pim_client() -> AsyncIterator[PimClient]:
    client = PimClient.from_settings(settings)
    try:
        yield client
    finally:
        await client.aclose()


async def _safe_json(req: Request) -> Dict[str, Any]:
    """Best-effort JSON body parsing; an empty or broken body is {}."""
    raw = (await req.body()).decode("utf-8", "ignore")
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _get_bool(payload: Dict[str, Any], *keys: str, default: bool = False) -> bool:
    for k in keys:
        if k in payload:
            v = payload.get(k)
            if isinstance(v, str):
                return v.strip().lower() in {"1", "true", "yes", "on", "y"}
            return bool(v)
    return default


# ---------------------------
# Sync runs
# ---------------------------
@router.post("/sync/run", dependencies=[Depends(verify_admin)])
async def api_sync_run(request: Request, run_state: RunState = Depends(get_run_state)):
    """
    Queue a sync run.

    Body: { "delta": bool (default False) }

    202 { status: "queued" } or 409 when a live run holds the lease.
    """
    payload = await _safe_json(request)
    delta = _get_bool(payload, "delta", "incremental", default=False)

    if await run_state.is_running():
        logger.info("[SYNC] run request rejected: a run is in progress")
        return JSONResponse(status_code=409, content={"status": "rejected", "detail": "Sync already running"})

    job = {"type": JOB_SYNC_RUN, "delta": delta, "trigger": TRIGGER_MANUAL}
    if not await enqueue_job(job):
        raise HTTPException(status_code=503, detail="Job queue full")
    return JSONResponse(
        status_code=202,
        content={"status": "queued", "delta": delta, "queued_jobs": queued_jobs()},
        headers={"Location": "/api/sync/status"},
    )


@router.post("/sync/purge-all", dependencies=[Depends(verify_admin)])
async def api_sync_purge_all():
    if not await enqueue_job({"type": JOB_PURGE_ALL}):
        raise HTTPException(status_code=503, detail="Job queue full")
    return JSONResponse(status_code=202, content={"status": "queued"})


@router.get("/sync/status", dependencies=[Depends(verify_admin)])
async def api_sync_status(run_state: RunState = Depends(get_run_state)):
    return JSONResponse(content=await run_state.status())


@router.get("/sync/history", dependencies=[Depends(verify_admin)])
async def api_sync_history(run_state: RunState = Depends(get_run_state)):
    return JSONResponse(content={"history": await run_state.history()})


# ---------------------------
# Connection
# ---------------------------
@router.post("/connection/test", dependencies=[Depends(verify_admin)])
async def api_connection_test(client: PimClient = Depends(get_pim_client)):
    if not client.endpoint:
        return JSONResponse(content={"success": False, "error": {"message": "PIM_ENDPOINT is not configured"}})
    result = await client.test_connection()
    if result.get("success"):
        return JSONResponse(content={"success": True})
    return JSONResponse(content={"success": False, "error": result.get("error")})
