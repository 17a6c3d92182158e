"""
Execution daemon HTTP API.

    GET  /health    liveness and load
    POST /execute   run one compiled flow
    POST /shutdown  stop the process after a short delay
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, HTTPException

from flowshapr.config import DaemonSettings
from flowshapr.daemon.errors import DaemonFault, ExecutionConflictError
from flowshapr.daemon.executor import ExecuteRequest, FlowExecutor, utc_timestamp

logger = logging.getLogger(__name__)


def _terminate_self() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(
    settings: DaemonSettings | None = None,
    shutdown_hook: Callable[[], None] = _terminate_self,
) -> FastAPI:
    settings = settings or DaemonSettings.from_env()
    executor = FlowExecutor(settings)
    started_at = time.monotonic()
    pending: set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage daemon lifespan: sweep the scratch dir on startup.
        """
        executor.prepare()
        logger.info("Execution daemon %s ready (scratch dir %s)", settings.executor_id, executor.scratch_dir)

        yield

        logger.info("Execution daemon %s shutting down", settings.executor_id)

    app = FastAPI(
        title="Flowshapr Execution Daemon",
        description="Runs compiled flows in an isolated executor process.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.executor = executor

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "executorId": settings.executor_id,
            "timestamp": utc_timestamp(),
            "uptime": round(time.monotonic() - started_at, 3),
            "activeExecutions": executor.active_count,
        }

    @app.post("/execute")
    async def execute(request: ExecuteRequest):
        """
        Run the posted flow code once. Flow errors are reported in the body
        with `success: false`; only daemon faults use error status codes.
        """
        try:
            return await executor.execute(request)
        except ExecutionConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except DaemonFault as exc:
            logger.error("Daemon fault: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc))

    @app.post("/shutdown")
    async def shutdown():
        logger.info("Shutdown requested; stopping in %.1fs", settings.shutdown_delay_seconds)

        async def stop_later() -> None:
            await asyncio.sleep(settings.shutdown_delay_seconds)
            shutdown_hook()

        task = asyncio.create_task(stop_later())
        pending.add(task)
        task.add_done_callback(pending.discard)
        return {"status": "shutting down"}

    return app
