"""
Downstream existence resolution.

Given the identifiers of a run, find out which ones already exist in the
systems of record (scheduled appointments, onboarded services, onboarding
requests) and with which status. Stores are queried with bounded "IN"
queries, so identifiers are sent in batches of at most 10 per query.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Optional, Protocol, TYPE_CHECKING

from shared.log import create_logger
from shared_lib.firestore_client import (
    FirestoreClient,
    FirestoreConflict,
    FirestoreConnectionError,
    FirestoreRequestError,
    FirestoreResponseError,
)
from shared_lib.records import DownstreamMatch, ExistenceRow
from validation.errors import (
    CredentialError,
    ExistenceQueryError,
    PersistenceError,
    PromotionRefused,
    classify_http_error,
)
from validation.normalizer import normalize_id

if TYPE_CHECKING:
    from validation.config import DownstreamStoreConfig

_, log_debug, log_info, log_warn, log_error = create_logger("Existence")

MAX_BATCH_SIZE = 10

DEFAULT_COMPLETED_STATUSES = frozenset({'completed', 'finalizado', 'finished', 'done'})

INBOX_TAG = 'inbox'


class DownstreamStore(Protocol):
    """Read side of the downstream systems of record."""

    async def query_existence(self, ids_batch: list[str], store_name: str) -> list[ExistenceRow]:
        """Rows of ``store_name`` whose service number is in ``ids_batch``."""
        ...


class DownstreamWriter(Protocol):
    """Write side used by promotion: create one downstream record."""

    async def create_record(self, store_name: str, doc_id: Optional[str], fields: dict[str, Any]) -> str:
        """Create a record (keyed by ``doc_id`` or a generated id); returns its id."""
        ...


def chunked(ids: list[str], size: int) -> list[list[str]]:
    """Split ids into consecutive batches of at most ``size``."""
    return [ids[i:i + size] for i in range(0, len(ids), size)]


class FirestoreDownstreamStore:
    """
    DownstreamStore and DownstreamWriter over Firestore collections.

    Args:
        client: FirestoreClient for the downstream project
        stores: Configured downstream stores (name -> collection/fields)
    """

    def __init__(self, client: FirestoreClient, stores: Iterable["DownstreamStoreConfig"]):
        self.client = client
        self.stores = {store.name: store for store in stores}

    def _store(self, store_name: str) -> "DownstreamStoreConfig":
        try:
            return self.stores[store_name]
        except KeyError:
            raise ValueError(f"Unknown downstream store: {store_name}") from None

    async def query_existence(self, ids_batch: list[str], store_name: str) -> list[ExistenceRow]:
        store = self._store(store_name)
        try:
            documents = await self.client.query_in(store.collection, store.id_field, ids_batch)
        except FirestoreRequestError as e:
            error_cls = classify_http_error(e.status_code, default=ExistenceQueryError)
            if error_cls is CredentialError:
                raise CredentialError(f"Firestore rejected credentials for '{store.collection}'") from e
            raise ExistenceQueryError(store_name, ids_batch, str(e)) from e
        except (FirestoreConnectionError, FirestoreResponseError) as e:
            raise ExistenceQueryError(store_name, ids_batch, str(e)) from e

        rows = []
        for doc_id, fields in documents:
            raw_id = fields.get(store.id_field, doc_id)
            record_id = normalize_id(raw_id)
            if record_id is None:
                continue
            tags = fields.get('tags') or []
            rows.append(ExistenceRow(
                id=record_id,
                status=str(fields.get(store.status_field) or ''),
                tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            ))
        return rows

    async def create_record(self, store_name: str, doc_id: Optional[str], fields: dict[str, Any]) -> str:
        store = self._store(store_name)
        try:
            return await self.client.create_document(store.collection, fields, doc_id=doc_id)
        except FirestoreConflict as e:
            raise PromotionRefused(doc_id or "", f"already exists in {store.collection}") from e
        except FirestoreRequestError as e:
            error_cls = classify_http_error(e.status_code, default=PersistenceError)
            raise error_cls(f"Creating {store.collection}/{doc_id or '<auto>'} failed: {e}") from e
        except (FirestoreConnectionError, FirestoreResponseError) as e:
            raise PersistenceError(f"Creating {store.collection}/{doc_id or '<auto>'} failed: {e}") from e


class ExistenceResolver:
    """
    Resolves downstream existence for a set of identifiers.

    Each configured store is queried in batches; batches run concurrently up
    to ``concurrency``. Results are merged in configured store order with
    first-match-wins, so a match found in an earlier store is never
    overwritten by a later one.

    A failed batch is logged and recorded in ``errors``; its identifiers are
    simply left unmatched for this run. Credential failures propagate.

    Args:
        store: DownstreamStore to query
        store_configs: Stores to check, in precedence order
        batch_size: Identifiers per query (capped at 10)
        concurrency: Maximum batches in flight
        completed_statuses: Statuses meaning the downstream work is finished
    """

    def __init__(
        self,
        store: DownstreamStore,
        store_configs: Iterable["DownstreamStoreConfig"],
        batch_size: int = MAX_BATCH_SIZE,
        concurrency: int = 4,
        completed_statuses: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.store_configs = list(store_configs)
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.concurrency = max(1, concurrency)
        statuses = completed_statuses if completed_statuses is not None else DEFAULT_COMPLETED_STATUSES
        self.completed_statuses = frozenset(s.strip().lower() for s in statuses)
        self.errors: list[ExistenceQueryError] = []
        self.queries_issued = 0

    def is_completed(self, status: Optional[str]) -> bool:
        """Case-insensitive check against the completion synonyms."""
        if not status:
            return False
        return status.strip().lower() in self.completed_statuses

    async def _query_batch(
        self,
        semaphore: asyncio.Semaphore,
        store_name: str,
        batch: list[str],
    ) -> list[ExistenceRow]:
        async with semaphore:
            self.queries_issued += 1
            try:
                return await self.store.query_existence(batch, store_name)
            except ExistenceQueryError as e:
                self.errors.append(e)
                log_warn(f"Existence batch on '{store_name}' failed ({len(batch)} ids), "
                         f"treating as no match this run: {e}")
                return []

    def _to_match(self, row: ExistenceRow, store_config: "DownstreamStoreConfig") -> DownstreamMatch:
        return DownstreamMatch(
            found=True,
            store=store_config.name,
            tag=store_config.tag,
            status=row.status,
            is_inbox_pending=any(t.strip().lower() == INBOX_TAG for t in row.tags),
            completed=self.is_completed(row.status),
        )

    async def resolve(self, ids: Iterable[str]) -> dict[str, DownstreamMatch]:
        """
        Resolve existence for ``ids`` across all configured stores.

        Returns:
            Dict of id -> DownstreamMatch, only for ids found somewhere.
        """
        self.errors = []
        self.queries_issued = 0
        wanted = sorted(set(ids))
        if not wanted or not self.store_configs:
            return {}

        batches = chunked(wanted, self.batch_size)
        semaphore = asyncio.Semaphore(self.concurrency)

        tasks = [
            [asyncio.ensure_future(self._query_batch(semaphore, cfg.name, batch)) for batch in batches]
            for cfg in self.store_configs
        ]
        all_tasks = [task for store_tasks in tasks for task in store_tasks]
        try:
            # Collected per store so merge order stays the configured
            # precedence regardless of which batch finished first
            per_store = [await asyncio.gather(*store_tasks) for store_tasks in tasks]
        except BaseException:
            # Credential failure (or cancellation): stop the sibling batches
            # before the caller closes the client under them
            for task in all_tasks:
                task.cancel()
            await asyncio.gather(*all_tasks, return_exceptions=True)
            raise

        wanted_set = set(wanted)
        matches: dict[str, DownstreamMatch] = {}
        for cfg, batch_results in zip(self.store_configs, per_store):
            for rows in batch_results:
                for row in rows:
                    if row.id not in wanted_set or row.id in matches:
                        continue
                    matches[row.id] = self._to_match(row, cfg)

        log_info(f"Existence resolved: {len(matches)}/{len(wanted)} ids found downstream "
                 f"({self.queries_issued} queries, {len(self.errors)} failed batches)")
        return matches
