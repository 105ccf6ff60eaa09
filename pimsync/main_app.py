#=================================================================
# pimsync/main_app.py
# FastAPI application entry-point for the PIM sync service.
#=================================================================

import logging, asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from pimsync import logging_filters
from pimsync.routes import router as api_router
from pimsync.workers.sync_worker import scheduler_loop, worker_loop
from pimsync.db import init_db, dispose_db
from pimsync.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="PIM Catalog Sync",
    description="Synchronizes the remote PIM catalog into the local catalog store.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()

# --- CORS ---
origins = settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(api_router)           # /api/*


# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "PIM Catalog Sync"}


# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Request failed: {str(exc)}"},
    )


# ---- Background worker lifecycle ----
_worker_task: asyncio.Task | None = None
_scheduler_task: asyncio.Task | None = None
_worker_stop: asyncio.Event | None = None


@app.on_event("startup")
async def _startup():
    await init_db()
    global _worker_task, _scheduler_task, _worker_stop
    _worker_stop = asyncio.Event()
    _worker_task = asyncio.create_task(worker_loop(_worker_stop))
    if settings.PIM_SYNC_INTERVAL_MINUTES > 0:
        _scheduler_task = asyncio.create_task(
            scheduler_loop(_worker_stop, settings.PIM_SYNC_INTERVAL_MINUTES, settings.PIM_SYNC_INTERVAL_DELTA)
        )


@app.on_event("shutdown")
async def _shutdown():
    global _worker_task, _scheduler_task, _worker_stop
    if _worker_stop:
        _worker_stop.set()
    for task in (_scheduler_task, _worker_task):
        if task is None:
            continue
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.TimeoutError:
            task.cancel()
    await dispose_db()
