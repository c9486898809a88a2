"""
Tests for staging.repository: merge semantics and the SQLite repository.
"""

import sqlite3

import pytest

from shared_lib.records import InternalStatus
from staging.repository import SQLiteStagingRepository, merge_document
from validation.errors import PersistenceError


class TestMergeDocument:

    def test_merge_into_existing(self):
        merged = merge_document({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert merged == {"a": 1, "b": 3, "c": 4}

    def test_none_removes_key(self):
        assert merge_document({"a": 1, "b": 2}, {"b": None}) == {"a": 1}

    def test_replace(self):
        assert merge_document({"a": 1}, {"b": 2, "c": None}, merge=False) == {"b": 2}

    def test_created_at_write_once(self):
        existing = {"createdAt": "2026-10-17T00:00:00Z"}
        assert merge_document(existing, {"createdAt": "2026-10-18T00:00:00Z"})["createdAt"] == "2026-10-17T00:00:00Z"
        assert merge_document(existing, {"x": 1}, merge=False)["createdAt"] == "2026-10-17T00:00:00Z"

    def test_created_at_set_on_first_write(self):
        assert merge_document(None, {"createdAt": "2026-10-18T00:00:00Z"}) == {"createdAt": "2026-10-18T00:00:00Z"}

    def test_id_never_stored(self):
        assert merge_document(None, {"id": "1234", "a": 1}) == {"a": 1}

    def test_does_not_alias_existing(self):
        existing = {"a": 1}
        merge_document(existing, {"a": 2})
        assert existing == {"a": 1}


class TestSQLiteStagingRepository:

    def test_get_missing(self, repo):
        assert repo.get("1234") is None

    def test_upsert_creates(self, repo):
        record = repo.upsert("1234", {"clientName": "Ana", "internalStatus": "pending_validation"})
        assert record.id == "1234"
        assert record.client_name == "Ana"
        assert repo.get("1234").client_name == "Ana"

    def test_upsert_merges(self, repo):
        repo.upsert("1234", {"clientName": "Ana", "phone": "612345678"})
        repo.upsert("1234", {"phone": "699999999"})
        record = repo.get("1234")
        assert record.client_name == "Ana"
        assert record.phone == "699999999"

    def test_upsert_none_clears_field(self, repo):
        repo.upsert("1234", {"archivedAt": "2026-10-18T06:00:00Z", "archivedReason": "completed_in_system"})
        repo.upsert("1234", {"archivedAt": None, "archivedReason": None})
        record = repo.get("1234")
        assert record.archived_at is None
        assert "archivedAt" not in record.to_document()

    def test_upsert_replace_keeps_created_at(self, repo):
        repo.upsert("1234", {"clientName": "Ana", "createdAt": "2026-10-17T00:00:00Z"})
        repo.upsert("1234", {"phone": "612345678"}, merge=False)
        record = repo.get("1234")
        assert record.client_name == ""
        assert record.phone == "612345678"
        assert record.created_at == "2026-10-17T00:00:00Z"

    def test_repeated_upsert_is_idempotent(self, repo):
        fields = {"clientName": "Ana", "internalStatus": InternalStatus.IN_SYSTEM.value}
        repo.upsert("1234", fields)
        first = _raw(repo, "1234")
        repo.upsert("1234", fields)
        assert _raw(repo, "1234") == first

    def test_delete_many(self, repo):
        for rid in ("1111", "2222", "3333"):
            repo.upsert(rid, {"clientName": rid})
        assert repo.delete_many(["1111", "3333", "9999"]) == 2
        assert repo.list_all_ids() == {"2222"}

    def test_delete_many_empty(self, repo):
        assert repo.delete_many([]) == 0

    def test_delete_many_large_batch(self, repo):
        ids = [f"{n:05d}" for n in range(1200)]
        for rid in ids[:3]:
            repo.upsert(rid, {})
        assert repo.delete_many(ids) == 3

    def test_list_records_ordered(self, repo):
        for rid in ("3333", "1111", "2222"):
            repo.upsert(rid, {"clientName": rid})
        assert [r.id for r in repo.list_records()] == ["1111", "2222", "3333"]

    def test_collections_are_isolated(self, tmp_path):
        db = str(tmp_path / "staging.db")
        a = SQLiteStagingRepository(db, "pending_a")
        b = SQLiteStagingRepository(db, "pending_b")
        a.upsert("1234", {"clientName": "Ana"})
        assert b.get("1234") is None

    def test_creates_parent_directory(self, tmp_path):
        repo = SQLiteStagingRepository(str(tmp_path / "nested" / "dir" / "staging.db"))
        assert repo.list_all_ids() == set()

    @pytest.mark.parametrize("name", ["bad-name", "1table", "drop table x"])
    def test_invalid_collection(self, tmp_path, name):
        with pytest.raises(ValueError):
            SQLiteStagingRepository(str(tmp_path / "staging.db"), name)

    def test_sqlite_errors_become_persistence_errors(self, repo):
        with sqlite3.connect(repo.db_path) as conn:
            conn.execute(f"DROP TABLE {repo.collection}")
        with pytest.raises(PersistenceError):
            repo.get("1234")
        with pytest.raises(PersistenceError):
            repo.upsert("1234", {"clientName": "Ana"})
        with pytest.raises(PersistenceError):
            repo.list_all_ids()

    @pytest.mark.parametrize("stored", [
        '{"internalStatus": "enviado_a_alta"}',
        '[1, 2]',
        '{"missingFromSource": "sometimes"}',
        'not json',
    ])
    def test_corrupt_document_becomes_persistence_error(self, repo, stored):
        repo.upsert("1001", {"clientName": "Ana"})
        with sqlite3.connect(repo.db_path) as conn:
            conn.execute(f"INSERT INTO {repo.collection} (id, data) VALUES (?, ?)", ("1002", stored))

        with pytest.raises(PersistenceError, match="1002"):
            repo.get("1002")
        with pytest.raises(PersistenceError):
            repo.list_records()
        assert repo.get("1001").client_name == "Ana"
        assert repo.list_all_ids() == {"1001", "1002"}


def _raw(repo, record_id):
    with sqlite3.connect(repo.db_path) as conn:
        return conn.execute(
            f"SELECT data FROM {repo.collection} WHERE id = ?", (record_id,)
        ).fetchone()[0]
