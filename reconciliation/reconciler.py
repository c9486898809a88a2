"""State machine deciding the next staging state of each observed service."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from shared_lib.records import (
    ARCHIVED_COMPLETED,
    DetailFields,
    DownstreamMatch,
    InternalStatus,
    PendingRecord,
    SnapshotEntry,
)
from validation.normalizer import has_minimum_data, to_record_fields

# Fields whose change is worth a write (and an audit trail entry)
USER_VISIBLE_FIELDS = (
    'clientName',
    'address',
    'phone',
    'company',
    'description',
    'externalStatus',
    'dateLabel',
    'internalStatus',
    'integratedIn',
    'downstreamStatus',
    'missingFromSource',
    'missingAt',
    'archivedAt',
    'archivedReason',
)

# Fields refreshed on every observation, never by themselves a "change"
BOOKKEEPING_FIELDS = ('lastSeenAt', 'updatedAt')

CREATE = 'create'
UPDATE = 'update'
TOUCH = 'touch'
SKIP = 'skip'

# Transitions reported to the operator
TRANSITION_BLOCKED = 'blocked'
TRANSITION_ARCHIVED = 'archived'
TRANSITION_REVIVED = 'revived'
TRANSITION_MISSING = 'missing'

# Why a decision is a skip
SKIP_INSUFFICIENT_DATA = 'insufficient_data'
SKIP_UNCHANGED = 'unchanged'
SKIP_NOT_STAGED = 'not_staged'


@dataclass
class Decision:
    """Outcome of reconciling one identifier.

    Attributes:
        record_id: Normalized identifier
        action: 'create', 'update', 'touch' (bookkeeping only) or 'skip'
        fields: camelCase fields to upsert (merge); None values clear a field
        transition: Status transition worth reporting ('blocked', 'archived',
                    'revived', 'missing') or '' if none
        reason: Human-readable explanation for logs
        skip_reason: For 'skip' decisions, one of the SKIP_* constants
    """
    record_id: str
    action: str
    fields: dict[str, Any] = field(default_factory=dict)
    transition: str = ''
    reason: str = ''
    skip_reason: str = ''

    @property
    def writes(self) -> bool:
        return self.action != SKIP


def to_timestamp(now: datetime) -> str:
    """ISO-8601 UTC timestamp as stored on staging records."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def diff_fields(existing: Optional[PendingRecord], candidate: dict[str, Any]) -> dict[str, Any]:
    """Subset of ``candidate`` that differs from what is stored.

    A None candidate value means "clear"; it only counts as a change when
    the stored record actually has a value for that field.
    """
    stored = existing.to_document() if existing is not None else {}
    changed = {}
    for key, value in candidate.items():
        current = stored.get(key)
        if value is None:
            if current is not None:
                changed[key] = None
        elif current != value:
            changed[key] = value
    return changed


def _status(record: Optional[PendingRecord]) -> Optional[str]:
    if record is None:
        return None
    status = record.internal_status
    return status.value if isinstance(status, InternalStatus) else status


class Reconciler:
    """Computes staging decisions for present and vanished identifiers.

    Pure logic: no I/O, the clock is passed in. The engine supplies the
    stored record (if any) and the downstream match (if any) for each id.

    Rules for an identifier present in the current snapshot, in order:
    1. Detail inaccessible -> blocked (content left alone)
    2. Downstream match, completed -> archived (completed_in_system)
    3. Downstream match, not completed -> in_system (revives archived)
    4. No match, minimum data -> pending_validation (diffed update)
    5. No match, insufficient data -> skip, stored record untouched

    Rules for a staged identifier absent from the snapshot:
    - completed match -> archived (the only way disappearance archives)
    - other match -> in_system, flagged missing
    - no match -> status unchanged, flagged missing

    Args:
        provider_name: Provider label used to normalize company names
    """

    def __init__(self, provider_name: str = "HomeServe"):
        self.provider_name = provider_name

    def decide_present(
        self,
        entry: SnapshotEntry,
        match: Optional[DownstreamMatch],
        existing: Optional[PendingRecord],
        now: datetime,
    ) -> Decision:
        """Decide the next state of an identifier observed in this run."""
        ts = to_timestamp(now)
        record_id = entry.id
        previous = _status(existing)

        if not entry.accessible:
            candidate = {
                'internalStatus': InternalStatus.BLOCKED.value,
                'missingFromSource': False,
                'missingAt': None,
            }
            transition = TRANSITION_BLOCKED if previous != InternalStatus.BLOCKED.value else ''
            return self._finish(record_id, existing, candidate, ts, transition,
                                seen=True, reason='detail inaccessible')

        detail = entry.detail or DetailFields()
        sufficient = has_minimum_data(detail)
        content = to_record_fields(detail, self.provider_name) if sufficient else {}

        if match is not None and match.found:
            candidate = {
                **content,
                'integratedIn': match.tag,
                'downstreamStatus': match.status,
                'missingFromSource': False,
                'missingAt': None,
            }
            candidate.update(self._match_status(match, existing, ts))
            transition = self._transition(previous, candidate['internalStatus'])
            return self._finish(record_id, existing, candidate, ts, transition, seen=True,
                                reason=f"found in {match.store} ({match.status or 'no status'})")

        if not sufficient:
            return Decision(record_id, SKIP, skip_reason=SKIP_INSUFFICIENT_DATA,
                            reason='insufficient detail, no downstream match')

        candidate = {
            **content,
            'missingFromSource': False,
            'missingAt': None,
            'archivedAt': None,
            'archivedReason': None,
        }
        if previous == InternalStatus.IMPORTED.value:
            # Promotion is terminal until a downstream store reports the record
            candidate['internalStatus'] = InternalStatus.IMPORTED.value
        else:
            candidate['internalStatus'] = InternalStatus.PENDING_VALIDATION.value
            candidate['integratedIn'] = ''
            candidate['downstreamStatus'] = ''
        transition = self._transition(previous, candidate['internalStatus'])
        return self._finish(record_id, existing, candidate, ts, transition, seen=True,
                            reason='not found downstream')

    def decide_absent(
        self,
        record_id: str,
        match: Optional[DownstreamMatch],
        existing: Optional[PendingRecord],
        now: datetime,
    ) -> Decision:
        """Decide the next state of a staged identifier missing from this run's snapshot."""
        if existing is None:
            return Decision(record_id, SKIP, skip_reason=SKIP_NOT_STAGED, reason='no longer staged')

        ts = to_timestamp(now)
        previous = _status(existing)
        candidate: dict[str, Any] = {'missingFromSource': True}
        if not existing.missing_from_source or not existing.missing_at:
            candidate['missingAt'] = ts

        if match is not None and match.found:
            candidate['integratedIn'] = match.tag
            candidate['downstreamStatus'] = match.status
            candidate.update(self._match_status(match, existing, ts))

        new_status = candidate.get('internalStatus', previous)
        transition = self._transition(previous, new_status)
        if not transition and not existing.missing_from_source:
            transition = TRANSITION_MISSING
        return self._finish(record_id, existing, candidate, ts, transition, seen=False,
                            reason='absent from snapshot')

    def _match_status(
        self,
        match: DownstreamMatch,
        existing: Optional[PendingRecord],
        ts: str,
    ) -> dict[str, Any]:
        """Status fields implied by a downstream match (rules 2 and 3)."""
        if match.completed:
            fields: dict[str, Any] = {
                'internalStatus': InternalStatus.ARCHIVED.value,
                'archivedReason': ARCHIVED_COMPLETED,
            }
            already = (existing is not None
                       and _status(existing) == InternalStatus.ARCHIVED.value
                       and existing.archived_at)
            if not already:
                fields['archivedAt'] = ts
            return fields
        return {
            'internalStatus': InternalStatus.IN_SYSTEM.value,
            'archivedAt': None,
            'archivedReason': None,
        }

    @staticmethod
    def _transition(previous: Optional[str], new: Optional[str]) -> str:
        if new == previous:
            return ''
        if new == InternalStatus.ARCHIVED.value:
            return TRANSITION_ARCHIVED
        if new == InternalStatus.BLOCKED.value:
            return TRANSITION_BLOCKED
        if previous == InternalStatus.ARCHIVED.value:
            return TRANSITION_REVIVED
        return ''

    @staticmethod
    def _finish(
        record_id: str,
        existing: Optional[PendingRecord],
        candidate: dict[str, Any],
        ts: str,
        transition: str,
        seen: bool,
        reason: str,
    ) -> Decision:
        """Turn a candidate state into a minimal write."""
        bookkeeping = {'updatedAt': ts}
        if seen:
            bookkeeping['lastSeenAt'] = ts

        if existing is None:
            fields = {k: v for k, v in candidate.items() if v is not None}
            fields.update(bookkeeping)
            fields['createdAt'] = ts
            return Decision(record_id, CREATE, fields, transition, reason)

        changed = diff_fields(existing, candidate)
        if changed:
            changed.update(bookkeeping)
            return Decision(record_id, UPDATE, changed, transition, reason)

        if not seen:
            return Decision(record_id, SKIP, skip_reason=SKIP_UNCHANGED, reason=f'{reason}, unchanged')
        return Decision(record_id, TOUCH, bookkeeping, '', f'{reason}, unchanged')
