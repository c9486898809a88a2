"""FastAPI application for the ServiceSync admin API.

Wires together configuration, structured logging, lifespan management,
route registration, and HTTP request logging middleware.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response

from admin_api import __version__
from admin_api.routes import health, pending
from reconciliation.existence import FirestoreDownstreamStore
from reconciliation.scheduler import ReconciliationScheduler
from shared.logging_config import configure_logging
from shared_lib.firestore_client import FirestoreClient
from staging.repository import SQLiteStagingRepository
from validation.config import get_settings

logger = logging.getLogger(__name__)


def _print_startup_banner(settings, writer_ok: bool) -> None:  # type: ignore[no-untyped-def]
    """Log the startup banner at info level."""
    store_names = [s.name for s in settings.downstream_stores]

    logger.info(
        "ServiceSync admin API starting",
        extra={
            "version": __version__,
            "port": settings.admin_port,
            "staging_db": settings.staging_db_path,
            "staging_collection": settings.staging_collection,
            "downstream_configured": writer_ok,
            "promote_store": settings.promote_store,
            "stores": store_names,
        },
    )
    # Also emit a human-readable summary for log tailing
    logger.info(
        f"ServiceSync admin API v{__version__} | "
        f"Port: {settings.admin_port} | "
        f"Staging: {settings.staging_db_path}:{settings.staging_collection} | "
        f"Downstream: {'configured' if writer_ok else 'not configured'} | "
        f"Stores: {', '.join(store_names)}"
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI lifespan context manager.

    Runs on startup: load config, configure logging, open the staging
    repository and (if configured) the downstream Firestore client.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app.state.config = settings
    app.state.repository = SQLiteStagingRepository(settings.staging_db_path, settings.staging_collection)
    app.state.scheduler = ReconciliationScheduler(settings.data_dir)

    client = None
    app.state.writer = None
    if settings.firestore_enabled:
        client = FirestoreClient(
            settings.firestore_project_id,
            token=settings.firestore_token,
            base_url=settings.firestore_base_url,
            timeout=settings.firestore_timeout,
        )
        app.state.writer = FirestoreDownstreamStore(client, settings.downstream_stores)

    _print_startup_banner(settings, client is not None)

    yield

    if client is not None:
        await client.close()
    logger.info("ServiceSync admin API shutting down")


# ── Application ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="ServiceSync admin",
    version=__version__,
    lifespan=lifespan,
)

# Route registration
app.include_router(pending.router)
app.include_router(health.router)


# ── Request logging middleware ────────────────────────────────────────────────

@app.middleware("http")
async def log_requests(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Log all incoming requests with method, path, status, and response time."""
    start = time.perf_counter()
    response: Response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000

    logger.info(
        "HTTP request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    return response


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "admin_api.main:app",
        host="0.0.0.0",
        port=settings.admin_port,
        log_level=settings.log_level.lower(),
        access_log=False,  # We handle request logging ourselves
    )
