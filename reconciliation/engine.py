"""
Reconciliation engine orchestrator.

Connects the pure Reconciler to its collaborators (source extractor,
existence resolver, staging repository) and runs one reconciliation batch:
collect the snapshot, resolve downstream existence, write per-identifier
decisions, then sweep staged identifiers that vanished from the source.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TYPE_CHECKING

from reconciliation.reconciler import (
    CREATE,
    SKIP,
    SKIP_INSUFFICIENT_DATA,
    TOUCH,
    UPDATE,
    Decision,
    Reconciler,
    TRANSITION_ARCHIVED,
    TRANSITION_BLOCKED,
    TRANSITION_MISSING,
    TRANSITION_REVIVED,
)
from shared.log import create_logger
from shared_lib.records import PendingRecord, SnapshotEntry
from validation.errors import PersistenceError, ServiceSyncError, SnapshotError
from validation.normalizer import normalize_id

if TYPE_CHECKING:
    from reconciliation.existence import ExistenceResolver
    from shared_lib.snapshot_source import SourceExtractor
    from staging.repository import StagingRepository

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Engine")


@dataclass
class ReconciliationResult:
    """Result summary of one reconciliation run.

    Attributes:
        snapshot_size: Distinct valid identifiers in the snapshot
        malformed_ids: Listing entries rejected by normalization
        inaccessible: Identifiers whose detail could not be opened
        created: New staging records
        updated: Records with at least one user-visible change
        unchanged: Records seen again with nothing new (bookkeeping only)
        skipped_insufficient: New/unmatched ids skipped for lack of data
        blocked: Transitions into blocked
        archived: Transitions into archived
        revived: Archived records brought back
        missing: Records newly flagged missing from source
        absent_checked: Staged ids examined by the disappearance pass
        persistence_errors: Identifier writes/reads that failed
        existence_errors: Existence batches that failed
        dry_run: Decisions were computed but not written
        errors: Non-fatal error messages
    """
    snapshot_size: int = 0
    malformed_ids: int = 0
    inaccessible: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_insufficient: int = 0
    blocked: int = 0
    archived: int = 0
    revived: int = 0
    missing: int = 0
    absent_checked: int = 0
    persistence_errors: int = 0
    existence_errors: int = 0
    dry_run: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return self.created + self.updated

    def counts(self) -> dict[str, int]:
        """Operator-facing counters (no error messages)."""
        return {
            'snapshot_size': self.snapshot_size,
            'malformed_ids': self.malformed_ids,
            'inaccessible': self.inaccessible,
            'created': self.created,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'skipped_insufficient': self.skipped_insufficient,
            'blocked': self.blocked,
            'archived': self.archived,
            'revived': self.revived,
            'missing': self.missing,
            'absent_checked': self.absent_checked,
            'persistence_errors': self.persistence_errors,
            'existence_errors': self.existence_errors,
        }


class ReconciliationEngine:
    """Runs one reconciliation batch against a staging collection.

    Precondition: no other run writes to the same staging collection
    concurrently (enforced by scheduling, not here).

    Args:
        source: SourceExtractor providing the listing and per-id details
        resolver: ExistenceResolver for downstream lookups
        repository: StagingRepository holding PendingRecords
        reconciler: Reconciler state machine (default: HomeServe provider)
        dry_run: If True, decisions are computed and logged but not written
        clock: Returns the current time (default: UTC now). For testing.
    """

    def __init__(
        self,
        source: "SourceExtractor",
        resolver: "ExistenceResolver",
        repository: "StagingRepository",
        reconciler: Optional[Reconciler] = None,
        dry_run: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.resolver = resolver
        self.repository = repository
        self.reconciler = reconciler or Reconciler()
        self.dry_run = dry_run
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self) -> ReconciliationResult:
        """Run one reconciliation batch.

        Returns:
            ReconciliationResult with counts and non-fatal errors

        Raises:
            SnapshotError: The snapshot could not be obtained. Nothing has
                been written when this is raised.

        Execution steps:
            1. List snapshot ids and normalize them
            2. Fetch each detail sequentially (failures -> inaccessible)
            3. List ids already staged
            4. Resolve downstream existence for accessible + vanished ids
            5. Decide and write each present id
            6. Decide and write each vanished id (after all of step 5)
        """
        result = ReconciliationResult(dry_run=self.dry_run)

        # Steps 1-2: everything that can abort the run happens before any write
        entries = self._collect_snapshot(result)
        log_info(f"Snapshot: {result.snapshot_size} services "
                 f"({result.malformed_ids} malformed entries, {result.inaccessible} inaccessible)")

        # Step 3
        staged_ids: Optional[set[str]]
        try:
            staged_ids = self.repository.list_all_ids()
            log_debug(f"{len(staged_ids)} ids already staged")
        except PersistenceError as e:
            staged_ids = None
            result.persistence_errors += 1
            result.errors.append(f"Could not list staged ids, disappearance pass skipped: {e}")
            log_error(f"Could not list staged ids, disappearance pass skipped: {e}")

        snapshot_ids = {entry.id for entry in entries}
        absent_ids = sorted(staged_ids - snapshot_ids) if staged_ids is not None else []

        # Step 4
        lookup_ids = {entry.id for entry in entries if entry.accessible} | set(absent_ids)
        matches = await self.resolver.resolve(lookup_ids)
        for error in self.resolver.errors:
            result.existence_errors += 1
            result.errors.append(str(error))

        # Step 5
        for entry in entries:
            self._apply(
                entry.id, result,
                lambda existing, now, entry=entry: self.reconciler.decide_present(
                    entry, matches.get(entry.id), existing, now),
            )

        # Step 6: runs strictly after every present-id write above
        result.absent_checked = len(absent_ids)
        for record_id in absent_ids:
            self._apply(
                record_id, result,
                lambda existing, now, record_id=record_id: self.reconciler.decide_absent(
                    record_id, matches.get(record_id), existing, now),
            )

        log_info(
            f"Run complete{' (dry run)' if self.dry_run else ''}: "
            f"{result.created} created, {result.updated} updated, {result.unchanged} unchanged, "
            f"{result.blocked} blocked, {result.archived} archived, {result.revived} revived, "
            f"{result.missing} missing, {result.skipped_insufficient} skipped"
        )
        if result.errors:
            log_warn(f"{len(result.errors)} non-fatal errors during run")
        return result

    def _collect_snapshot(self, result: ReconciliationResult) -> list[SnapshotEntry]:
        """Steps 1-2: list, normalize, de-duplicate and fetch details.

        Raises:
            SnapshotError: listing failed, or the source lost its session
                while fetching details
        """
        try:
            raw_ids = self.source.list_snapshot_ids()
        except SnapshotError:
            raise
        except Exception as e:
            raise SnapshotError(f"Failed to load snapshot listing: {e}") from e

        seen: set[str] = set()
        ordered_ids: list[str] = []
        for raw in raw_ids or []:
            record_id = normalize_id(raw)
            if record_id is None:
                result.malformed_ids += 1
                log_trace(f"Ignoring malformed listing entry: {raw!r}")
                continue
            if record_id in seen:
                continue
            seen.add(record_id)
            ordered_ids.append(record_id)
        result.snapshot_size = len(ordered_ids)

        entries = []
        for record_id in ordered_ids:
            try:
                detail = self.source.fetch_detail(record_id)
            except SnapshotError:
                raise
            except Exception as e:
                # DetailAccessError or any extractor failure scoped to this id
                log_warn(f"Detail for {record_id} not accessible: {e}")
                detail = None
            if detail is None:
                result.inaccessible += 1
                entries.append(SnapshotEntry(id=record_id, accessible=False))
            else:
                entries.append(SnapshotEntry(id=record_id, detail=detail))
        return entries

    def _apply(
        self,
        record_id: str,
        result: ReconciliationResult,
        decide: Callable[[Optional[PendingRecord], datetime], Decision],
    ) -> None:
        """Read, decide and write one identifier; failures stay scoped to it."""
        try:
            existing = self.repository.get(record_id)
            decision = decide(existing, self.clock())
            if decision.writes and not self.dry_run:
                self.repository.upsert(record_id, decision.fields)
        except PersistenceError as e:
            result.persistence_errors += 1
            result.errors.append(f"{record_id}: {e}")
            log_error(f"Persistence failed for {record_id}, continuing: {e}")
            return
        except ServiceSyncError as e:
            result.errors.append(f"{record_id}: {e}")
            log_warn(f"Skipping {record_id}: {e}")
            return

        self._count(decision, result)
        log_trace(f"{record_id}: {decision.action} {decision.transition or ''} ({decision.reason})")

    @staticmethod
    def _count(decision: Decision, result: ReconciliationResult) -> None:
        if decision.action == CREATE:
            result.created += 1
        elif decision.action == UPDATE:
            result.updated += 1
        elif decision.action == TOUCH:
            result.unchanged += 1
        elif decision.action == SKIP:
            if decision.skip_reason == SKIP_INSUFFICIENT_DATA:
                result.skipped_insufficient += 1
            else:
                result.unchanged += 1

        if decision.transition == TRANSITION_BLOCKED:
            result.blocked += 1
        elif decision.transition == TRANSITION_ARCHIVED:
            result.archived += 1
        elif decision.transition == TRANSITION_REVIVED:
            result.revived += 1
        elif decision.transition == TRANSITION_MISSING:
            result.missing += 1
