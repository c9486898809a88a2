"""
shared_lib.records - Typed models for staging records and their inputs.

Design notes:
- PendingRecord is stored as a camelCase JSON document (the field names the
  admin surface and downstream tooling read). Python code uses snake_case
  attributes; aliases carry the stored names.
- DetailFields is the explicit, all-optional shape of one scraped detail
  page. Missing values are '' here; the placeholders shown to humans are
  applied once, in validation.normalizer.to_record_fields.
- DownstreamMatch / ExistenceRow are transient: produced by the existence
  resolver and never persisted.

Exports:
    InternalStatus    -- staging lifecycle status
    PendingRecord     -- one staged service, keyed by normalized id
    DetailFields      -- raw scraped detail of one service
    SnapshotEntry     -- one identifier observed in the current run
    ExistenceRow      -- raw row returned by a downstream store query
    DownstreamMatch   -- resolved downstream existence for one identifier
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from validation.sanitizers import join_address


class InternalStatus(str, Enum):
    """Staging lifecycle status of a PendingRecord."""

    PENDING_VALIDATION = "pending_validation"
    IN_SYSTEM = "in_system"
    ARCHIVED = "archived"
    BLOCKED = "blocked"
    IMPORTED = "imported"


ARCHIVED_COMPLETED = "completed_in_system"


# ---------------------------------------------------------------------------
# Staging record
# ---------------------------------------------------------------------------


class PendingRecord(BaseModel):
    """
    One staged external service.

    ``id`` is the normalized identifier (digits only, ≥4 digits) and never
    changes once written. Timestamps are ISO-8601 UTC strings.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, extra="ignore")

    id: str
    client_name: str = Field(default="", alias="clientName")
    address: str = ""
    phone: str = ""
    company: str = ""
    description: str = ""
    external_status: str = Field(default="", alias="externalStatus")
    date_label: str = Field(default="", alias="dateLabel")

    internal_status: InternalStatus = Field(
        default=InternalStatus.PENDING_VALIDATION, alias="internalStatus"
    )
    integrated_in: str = Field(default="", alias="integratedIn")
    downstream_status: str = Field(default="", alias="downstreamStatus")
    downstream_ref: Optional[str] = Field(default=None, alias="downstreamRef")
    missing_from_source: bool = Field(default=False, alias="missingFromSource")

    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    last_seen_at: Optional[str] = Field(default=None, alias="lastSeenAt")
    missing_at: Optional[str] = Field(default=None, alias="missingAt")
    archived_at: Optional[str] = Field(default=None, alias="archivedAt")
    archived_reason: Optional[str] = Field(default=None, alias="archivedReason")
    imported_at: Optional[str] = Field(default=None, alias="importedAt")

    @classmethod
    def from_document(cls, record_id: str, document: dict[str, Any]) -> "PendingRecord":
        """Build a record from a stored camelCase document."""
        return cls.model_validate({**document, "id": record_id})

    def to_document(self) -> dict[str, Any]:
        """Stored camelCase representation, without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def stored_value(self, alias: str) -> Any:
        """Value of a field addressed by its stored (camelCase) name."""
        return self.to_document().get(alias)


# ---------------------------------------------------------------------------
# Source observations
# ---------------------------------------------------------------------------


class DetailFields(BaseModel):
    """Raw detail of one service as extracted from the provider portal."""

    service_number: str = ""
    client_name: str = ""
    street: str = ""
    locality: str = ""
    phone: str = ""
    company: str = ""
    description: str = ""
    external_status: str = ""
    date_label: str = ""

    @property
    def address(self) -> str:
        """Street and locality joined with a single space, trimmed."""
        return join_address(self.street, self.locality)


class SnapshotEntry(BaseModel):
    """One identifier observed in the current run's snapshot."""

    id: str
    detail: Optional[DetailFields] = None
    accessible: bool = True


# ---------------------------------------------------------------------------
# Downstream existence
# ---------------------------------------------------------------------------


class ExistenceRow(BaseModel):
    """A row returned by a downstream store existence query."""

    id: str
    status: str = ""
    tags: list[str] = []


class DownstreamMatch(BaseModel):
    """Resolved downstream existence for one identifier."""

    found: bool = True
    store: str = ""          # configured store name, e.g. "appointments"
    tag: str = ""            # integratedIn label, e.g. "calendar"
    status: str = ""
    is_inbox_pending: bool = False
    completed: bool = False
