"""GET /health - Admin API status.

Reports version, uptime, whether the downstream writer is configured and the
outcome of the last reconciliation run.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from admin_api import __version__

router = APIRouter()
logger = logging.getLogger(__name__)

# Module-level start time, a proxy for app start
_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Return admin API health status."""
    uptime_seconds = int(time.time() - _start_time)

    scheduler = getattr(request.app.state, "scheduler", None)
    last_outcome = None
    last_run_time = None
    if scheduler is not None:
        state = scheduler.load_state()
        last_outcome = state.last_outcome or None
        last_run_time = state.last_run_time or None

    return JSONResponse(
        content={
            "status": "ok",
            "version": __version__,
            "uptime_seconds": uptime_seconds,
            "downstream_configured": getattr(request.app.state, "writer", None) is not None,
            "last_run_outcome": last_outcome,
            "last_run_time": last_run_time,
        }
    )
