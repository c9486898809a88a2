"""Request and response models for the admin API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from shared_lib.records import PendingRecord


class PendingListResponse(BaseModel):
    """Staged records, serialized with their stored (camelCase) field names."""

    count: int
    records: list[dict] = Field(default_factory=list)

    @classmethod
    def from_records(cls, records: list[PendingRecord]) -> "PendingListResponse":
        return cls(
            count=len(records),
            records=[{"id": r.id, **r.to_document()} for r in records],
        )


class DeleteRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    requested: int
    deleted: int


class PromoteRequest(BaseModel):
    """Optional promotion parameters; defaults come from configuration."""

    store: str | None = None
    keyed_by_service_number: bool = True


class PromoteResponse(BaseModel):
    id: str
    store: str
    downstreamRef: str | None = None
    record: dict
