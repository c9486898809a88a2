"""
Tests for shared_lib.snapshot_source: the JSON export reader.
"""

import json

import pytest

from shared_lib.snapshot_source import JsonSnapshotSource, parse_detail
from validation.errors import CredentialError, SnapshotError


def write_export(tmp_path, payload):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


ROW = {
    "serviceNumber": "14.852-976",
    "clientName": "Ana Pérez",
    "street": "C/ Mayor 3",
    "locality": "Madrid",
    "phone": "612 345 678",
    "company": "Mapfre",
    "description": "Fuga en baño",
    "status": "Pendiente",
    "date": "17/10/2026",
}


class TestParseDetail:

    def test_robot_field_names(self):
        detail = parse_detail(ROW)
        assert detail.service_number == "14.852-976"
        assert detail.client_name == "Ana Pérez"
        assert detail.address == "C/ Mayor 3 Madrid"
        assert detail.external_status == "Pendiente"
        assert detail.date_label == "17/10/2026"

    def test_combined_address(self):
        detail = parse_detail({"serviceNumber": "1234", "address": "C/ Mayor 3, Madrid"})
        assert detail.street == "C/ Mayor 3, Madrid"
        assert detail.address == "C/ Mayor 3, Madrid"

    def test_nested_detail(self):
        detail = parse_detail({"serviceNumber": "1234", "detail": {"clientName": "Ana", "phone": "612345678"}})
        assert detail.client_name == "Ana"
        assert detail.phone == "612345678"

    def test_numbers_become_text(self):
        assert parse_detail({"serviceNumber": 1234, "phone": 612345678}).phone == "612345678"


class TestJsonSnapshotSource:

    def test_wrapped_export(self, tmp_path):
        path = write_export(tmp_path, {"loginOk": True, "services": [ROW, {"serviceNumber": "SERVICIO"}]})
        source = JsonSnapshotSource(path)
        assert source.list_snapshot_ids() == ["14.852-976", "SERVICIO"]
        detail = source.fetch_detail("14852976")
        assert detail.client_name == "Ana Pérez"

    def test_bare_list_export(self, tmp_path):
        path = write_export(tmp_path, [ROW])
        source = JsonSnapshotSource(path)
        assert source.list_snapshot_ids() == ["14.852-976"]

    def test_fetch_before_list_loads_file(self, tmp_path):
        path = write_export(tmp_path, [ROW])
        assert JsonSnapshotSource(path).fetch_detail("14852976") is not None

    def test_inaccessible_row(self, tmp_path):
        path = write_export(tmp_path, {"services": [{**ROW, "accessible": False}]})
        source = JsonSnapshotSource(path)
        source.list_snapshot_ids()
        assert source.fetch_detail("14852976") is None

    def test_unknown_id(self, tmp_path):
        source = JsonSnapshotSource(write_export(tmp_path, [ROW]))
        source.list_snapshot_ids()
        assert source.fetch_detail("99999999") is None

    def test_duplicate_rows_first_wins(self, tmp_path):
        second = {**ROW, "serviceNumber": "14852976", "clientName": "Otro"}
        source = JsonSnapshotSource(write_export(tmp_path, [ROW, second]))
        assert len(source.list_snapshot_ids()) == 2
        assert source.fetch_detail("14852976").client_name == "Ana Pérez"

    def test_missing_file(self, tmp_path):
        with pytest.raises(SnapshotError, match="not found"):
            JsonSnapshotSource(tmp_path / "missing.json").list_snapshot_ids()

    def test_unparsable_file(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text("{not json")
        with pytest.raises(SnapshotError):
            JsonSnapshotSource(path).list_snapshot_ids()

    def test_missing_services_list(self, tmp_path):
        with pytest.raises(SnapshotError, match="services"):
            JsonSnapshotSource(write_export(tmp_path, {"loginOk": True})).list_snapshot_ids()

    def test_login_failure_is_credential_error(self, tmp_path):
        path = write_export(tmp_path, {"loginOk": False, "error": "bad password", "services": []})
        with pytest.raises(CredentialError, match="bad password"):
            JsonSnapshotSource(path).list_snapshot_ids()
