"""
Shared pytest fixtures for ServiceSync tests.

Provides reusable fixtures for:
- Configuration objects (isolated from the caller's SSYNC_ environment)
- Staging repositories on tmp_path SQLite databases
- In-memory fakes for the source extractor and downstream stores
- Sample detail data

The fakes stand in for the browser agent export and Firestore so the
reconciliation core can be exercised without any network access.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from shared_lib.records import DetailFields, ExistenceRow
from staging.repository import SQLiteStagingRepository
from validation.config import DownstreamStoreConfig, ServiceSyncConfig, get_settings
from validation.errors import DetailAccessError, ExistenceQueryError


# =============================================================================
# Environment isolation
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Drop SSYNC_ variables and point the YAML source at a missing file."""
    for key in list(os.environ):
        if key.startswith("SSYNC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SSYNC_CONFIG_FILE", str(tmp_path / "absent.yml"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def store_configs():
    """Default downstream stores, in precedence order."""
    return [
        DownstreamStoreConfig(name="appointments", collection="appointments", tag="calendar"),
        DownstreamStoreConfig(name="services", collection="services", tag="services"),
        DownstreamStoreConfig(name="alta", collection="alta_servicios", tag="alta"),
    ]


@pytest.fixture
def config(tmp_path):
    """ServiceSyncConfig rooted in tmp_path."""
    return ServiceSyncConfig(
        data_dir=str(tmp_path / "data"),
        firestore_project_id="test-project",
        firestore_token="test-token-123456",
    )


# =============================================================================
# Staging
# =============================================================================

@pytest.fixture
def repo(tmp_path):
    """Empty SQLite staging repository."""
    return SQLiteStagingRepository(str(tmp_path / "staging.db"), "pending_services")


# =============================================================================
# Clock
# =============================================================================

T0 = datetime(2026, 10, 18, 6, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock advanced explicitly by tests."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# Sample data
# =============================================================================

def make_detail(
    service_number: str = "14852976",
    client_name: str = "Ana Pérez",
    street: str = "C/ Mayor 3",
    locality: str = "Madrid",
    phone: str = "612345678",
    **kwargs: Any,
) -> DetailFields:
    """DetailFields with enough data to stage, overridable per field."""
    return DetailFields(
        service_number=service_number,
        client_name=client_name,
        street=street,
        locality=locality,
        phone=phone,
        company=kwargs.pop("company", "Mapfre"),
        description=kwargs.pop("description", "Fuga en baño"),
        external_status=kwargs.pop("external_status", "Pendiente"),
        date_label=kwargs.pop("date_label", "17/10/2026"),
        **kwargs,
    )


@pytest.fixture
def detail():
    return make_detail()


# =============================================================================
# Fakes
# =============================================================================

class FakeSource:
    """
    In-memory SourceExtractor.

    Args:
        listing: Raw ids returned by list_snapshot_ids (junk allowed)
        details: normalized id -> DetailFields; ids missing here are inaccessible
        raise_on: ids whose fetch raises DetailAccessError
    """

    def __init__(self, listing=None, details=None, raise_on=()):
        self.listing = list(listing or [])
        self.details = dict(details or {})
        self.raise_on = set(raise_on)
        self.listing_error: Optional[Exception] = None
        self.fetched: list[str] = []

    def list_snapshot_ids(self):
        if self.listing_error is not None:
            raise self.listing_error
        return list(self.listing)

    def fetch_detail(self, record_id):
        self.fetched.append(record_id)
        if record_id in self.raise_on:
            raise DetailAccessError(record_id)
        return self.details.get(record_id)


class FakeDownstreamStore:
    """
    In-memory DownstreamStore and DownstreamWriter.

    Args:
        rows: store name -> list of (id, status, tags)
        failing: store names whose queries raise ExistenceQueryError
    """

    def __init__(self, rows=None, failing=()):
        self.rows = {name: list(items) for name, items in (rows or {}).items()}
        self.failing = set(failing)
        self.queries: list[tuple[str, list[str]]] = []
        self.created: list[tuple[str, Optional[str], dict]] = []

    async def query_existence(self, ids_batch, store_name):
        self.queries.append((store_name, list(ids_batch)))
        if store_name in self.failing:
            raise ExistenceQueryError(store_name, ids_batch)
        wanted = set(ids_batch)
        return [
            ExistenceRow(id=rid, status=status, tags=list(tags))
            for rid, status, tags in self.rows.get(store_name, [])
            if rid in wanted
        ]

    async def create_record(self, store_name, doc_id, fields):
        self.created.append((store_name, doc_id, dict(fields)))
        return doc_id or f"auto-{len(self.created)}"


@pytest.fixture
def downstream():
    return FakeDownstreamStore()


@pytest.fixture
def detail_factory():
    """The make_detail helper, for tests that need several details."""
    return make_detail


@pytest.fixture
def source_factory():
    """FakeSource class, for tests that build their own snapshot."""
    return FakeSource


@pytest.fixture
def downstream_factory():
    """FakeDownstreamStore class, for tests that seed downstream rows."""
    return FakeDownstreamStore
