"""
Administrative operations over the staging set.

Used by the admin API: list what is staged, discard records an operator
rejected, and promote a validated record into a downstream store.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional, TYPE_CHECKING

from reconciliation.reconciler import to_timestamp
from shared.log import create_logger
from shared_lib.records import DetailFields, InternalStatus, PendingRecord
from validation.errors import PromotionRefused
from validation.normalizer import UNKNOWN_CLIENT, UNKNOWN_PHONE, has_minimum_data, normalize_id

if TYPE_CHECKING:
    from reconciliation.existence import DownstreamWriter
    from staging.repository import StagingRepository
    from validation.config import DownstreamStoreConfig

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Admin")

# Status given to records created downstream, as the scheduling app expects
DOWNSTREAM_INITIAL_STATUS = "pendingStart"

# downstreamStatus written on the staging record after promotion
PROMOTED_STATUS = "enviado_a_alta"


def list_pending(repo: "StagingRepository", include_blocked: bool = True) -> list[PendingRecord]:
    """All staged records ordered by id, optionally without blocked ones."""
    records = repo.list_records()
    if include_blocked:
        return records
    return [r for r in records if r.internal_status != InternalStatus.BLOCKED.value]


def delete_pending(repo: "StagingRepository", ids: Iterable) -> int:
    """Delete staged records by id. Malformed ids are ignored.

    Returns:
        Number of records actually deleted
    """
    normalized = {normalize_id(raw) for raw in ids}
    normalized.discard(None)
    if not normalized:
        return 0
    deleted = repo.delete_many(normalized)
    log_info(f"Deleted {deleted} staged records ({len(normalized)} requested)")
    return deleted


def _content_detail(record: PendingRecord) -> DetailFields:
    """Rebuild a DetailFields view of a staged record for the data check."""
    return DetailFields(
        service_number=record.id,
        client_name='' if record.client_name == UNKNOWN_CLIENT else record.client_name,
        street=record.address,
        phone='' if record.phone == UNKNOWN_PHONE else record.phone,
    )


def downstream_fields(record: PendingRecord, provider_name: str, created_at: str) -> dict:
    """Fields of the downstream record created by a promotion."""
    return {
        'serviceNumber': record.id,
        'clientName': record.client_name,
        'address': record.address,
        'phone': record.phone,
        'company': record.company,
        'description': record.description,
        'status': DOWNSTREAM_INITIAL_STATUS,
        'createdAt': created_at,
        'source': provider_name,
    }


async def promote(
    repo: "StagingRepository",
    writer: "DownstreamWriter",
    record_id: str,
    store_config: "DownstreamStoreConfig",
    provider_name: str,
    keyed_by_service_number: bool = True,
    now: Optional[datetime] = None,
) -> PendingRecord:
    """
    Create a downstream record for a staged service and mark it imported.

    Args:
        repo: Staging repository
        writer: DownstreamWriter creating the downstream record
        record_id: Identifier of the staged record (normalized here)
        store_config: Downstream store receiving the record
        provider_name: Written as the downstream record's ``source``
        keyed_by_service_number: Use the service number as the downstream
            document id (otherwise the store generates one)
        now: Current time (default: UTC now). For testing.

    Returns:
        The staging record as stored after promotion

    Raises:
        PromotionRefused: unknown, blocked, missing, already imported, or
            lacking minimum data
        PersistenceError / CredentialError: the downstream or staging write failed
    """
    normalized = normalize_id(record_id)
    if normalized is None:
        raise PromotionRefused(str(record_id), "malformed identifier")

    record = repo.get(normalized)
    if record is None:
        raise PromotionRefused(normalized, "not staged")
    if record.internal_status == InternalStatus.BLOCKED.value:
        raise PromotionRefused(normalized, "detail is not accessible (blocked)")
    if record.internal_status == InternalStatus.IMPORTED.value:
        raise PromotionRefused(normalized, "already imported")
    if record.missing_from_source:
        raise PromotionRefused(normalized, "no longer listed by the provider")
    if not has_minimum_data(_content_detail(record)):
        raise PromotionRefused(normalized, "insufficient data")

    ts = to_timestamp(now or datetime.now(timezone.utc))
    doc_id = normalized if keyed_by_service_number else None
    downstream_ref = await writer.create_record(
        store_config.name, doc_id, downstream_fields(record, provider_name, ts)
    )
    log_info(f"Promoted {normalized} to {store_config.name} as {downstream_ref}")

    return repo.upsert(normalized, {
        'internalStatus': InternalStatus.IMPORTED.value,
        'integratedIn': store_config.tag,
        'downstreamStatus': PROMOTED_STATUS,
        'downstreamRef': downstream_ref,
        'importedAt': ts,
        'updatedAt': ts,
    })
