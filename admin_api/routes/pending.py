"""Staging set endpoints.

GET  /pending                 list staged records
POST /pending/delete          discard records by id
POST /pending/{id}/promote    create the downstream record and mark imported
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException

from admin_api.dependencies import get_config, get_repository, get_writer
from admin_api.models import (
    DeleteRequest,
    DeleteResponse,
    PendingListResponse,
    PromoteRequest,
    PromoteResponse,
)
from reconciliation.existence import DownstreamWriter
from staging.admin import delete_pending, list_pending, promote
from staging.repository import StagingRepository
from validation.config import ServiceSyncConfig
from validation.errors import CredentialError, PersistenceError, PromotionRefused
from validation.normalizer import normalize_id

router = APIRouter(prefix="/pending")
logger = logging.getLogger(__name__)


@router.get("", response_model=PendingListResponse)
def get_pending(
    include_blocked: bool = True,
    repo: StagingRepository = Depends(get_repository),
) -> PendingListResponse:
    """List staged records ordered by id."""
    try:
        records = list_pending(repo, include_blocked=include_blocked)
    except PersistenceError as exc:
        logger.error("Listing staged records failed", extra={"error": str(exc)})
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return PendingListResponse.from_records(records)


@router.post("/delete", response_model=DeleteResponse)
def post_delete(
    body: DeleteRequest,
    repo: StagingRepository = Depends(get_repository),
) -> DeleteResponse:
    """Delete staged records; unknown or malformed ids are ignored."""
    try:
        deleted = delete_pending(repo, body.ids)
    except PersistenceError as exc:
        logger.error("Deleting staged records failed", extra={"error": str(exc)})
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    logger.info("Staged records deleted", extra={"requested": len(body.ids), "deleted": deleted})
    return DeleteResponse(requested=len(body.ids), deleted=deleted)


@router.post("/{record_id}/promote", response_model=PromoteResponse)
async def post_promote(
    record_id: str,
    body: PromoteRequest | None = Body(default=None),
    repo: StagingRepository = Depends(get_repository),
    writer: DownstreamWriter = Depends(get_writer),
    config: ServiceSyncConfig = Depends(get_config),
) -> PromoteResponse:
    """Promote one staged record into a downstream store.

    404 if the record is not staged, 409 if promotion is refused, 422 for an
    unknown store, 502 if the downstream or staging write fails.
    """
    body = body or PromoteRequest()
    normalized = normalize_id(record_id)
    if normalized is None:
        raise HTTPException(status_code=422, detail=f"Malformed service id: {record_id}")

    try:
        store_config = config.store(body.store or config.promote_store)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        if repo.get(normalized) is None:
            raise HTTPException(status_code=404, detail=f"Service {normalized} is not staged")
        record = await promote(
            repo,
            writer,
            normalized,
            store_config,
            config.provider_name,
            keyed_by_service_number=body.keyed_by_service_number,
        )
    except PromotionRefused as exc:
        logger.info("Promotion refused", extra={"id": normalized, "reason": exc.reason})
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (PersistenceError, CredentialError) as exc:
        logger.error("Promotion failed", extra={"id": normalized, "error": str(exc)})
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return PromoteResponse(
        id=record.id,
        store=store_config.name,
        downstreamRef=record.downstream_ref,
        record=record.to_document(),
    )
