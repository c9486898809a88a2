"""Request-scoped access to the objects built by the application lifespan.

Routes depend on these functions so tests can swap them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from reconciliation.existence import DownstreamWriter
from staging.repository import StagingRepository
from validation.config import ServiceSyncConfig


def get_config(request: Request) -> ServiceSyncConfig:
    return request.app.state.config


def get_repository(request: Request) -> StagingRepository:
    return request.app.state.repository


def get_writer(request: Request) -> DownstreamWriter:
    writer: Optional[DownstreamWriter] = getattr(request.app.state, "writer", None)
    if writer is None:
        raise HTTPException(status_code=503, detail="Downstream store is not configured")
    return writer
