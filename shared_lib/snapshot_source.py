"""
shared_lib.snapshot_source - Source extractor contract and JSON export reader.

The browser agent that logs into the provider portal is a separate process.
It writes what it saw to a JSON export; the reconciliation core reads that
export through the SourceExtractor protocol and never deals with sessions,
clicks or delays.

Export format (either form is accepted)::

    [{"serviceNumber": "14.852-976", "clientName": "...", ...}, ...]

    {
        "loginOk": true,
        "listedAt": "2026-10-18T06:00:00Z",
        "services": [
            {
                "serviceNumber": "14852976",
                "accessible": true,
                "clientName": "Ana Pérez",
                "street": "C/ Mayor 3",
                "locality": "Madrid",
                "phone": "612 345 678",
                "company": "Mapfre",
                "description": "Fuga en baño",
                "status": "Pendiente",
                "date": "17/10/2026"
            }
        ]
    }

Rows may carry a combined ``address`` instead of ``street``/``locality``, and
may nest the detail fields under ``detail``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from shared_lib.records import DetailFields
from validation.errors import CredentialError, SnapshotError
from validation.normalizer import normalize_id

log = logging.getLogger("shared_lib.snapshot_source")


class SourceExtractor(Protocol):
    """What the reconciliation engine needs from the extraction side."""

    def list_snapshot_ids(self) -> list[Any]:
        """Best-effort listing of raw references; may contain junk entries.

        Raises:
            SnapshotError: The listing could not be obtained.
        """
        ...

    def fetch_detail(self, record_id: str) -> Optional[DetailFields]:
        """Detail of one normalized id, or None if it could not be opened.

        May raise DetailAccessError instead of returning None.
        """
        ...


def _text(row: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = row.get(key)
        if value not in (None, ''):
            return str(value)
    return ''


def parse_detail(row: dict[str, Any]) -> DetailFields:
    """Map an export row (robot field names) onto DetailFields."""
    source = row.get("detail") if isinstance(row.get("detail"), dict) else row
    street = _text(source, "street", "address", "direccion")
    locality = _text(source, "locality", "city", "poblacion")
    return DetailFields(
        service_number=_text(row, "serviceNumber", "ref", "id"),
        client_name=_text(source, "clientName", "cliente"),
        street=street,
        locality=locality,
        phone=_text(source, "phone", "telefono"),
        company=_text(source, "company", "compania"),
        description=_text(source, "description", "descripcion"),
        external_status=_text(source, "status", "externalStatus", "estado"),
        date_label=_text(source, "date", "dateLabel", "fecha"),
    )


class JsonSnapshotSource:
    """
    SourceExtractor backed by the browser agent's JSON export.

    The file is read once, lazily, on the first list_snapshot_ids() call.

    Args:
        path: Path to the export file.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._rows: Optional[list[dict[str, Any]]] = None
        self._by_id: dict[str, dict[str, Any]] = {}

    def _load(self) -> list[dict[str, Any]]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except FileNotFoundError as e:
            raise SnapshotError(f"Snapshot export not found: {self.path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Snapshot export unreadable: {e}") from e

        if isinstance(payload, dict):
            if payload.get("loginOk") is False:
                raise CredentialError(
                    f"Extraction agent could not log in: {payload.get('error', 'no details')}"
                )
            rows = payload.get("services")
        else:
            rows = payload

        if not isinstance(rows, list):
            raise SnapshotError("Snapshot export has no 'services' list")
        return [row for row in rows if isinstance(row, dict)]

    def list_snapshot_ids(self) -> list[Any]:
        if self._rows is None:
            self._rows = self._load()
            for row in self._rows:
                record_id = normalize_id(row.get("serviceNumber", row.get("id")))
                if record_id is not None and record_id not in self._by_id:
                    self._by_id[record_id] = row
            log.debug("Loaded %d rows (%d distinct ids) from %s",
                      len(self._rows), len(self._by_id), self.path)
        return [row.get("serviceNumber", row.get("id")) for row in self._rows]

    def fetch_detail(self, record_id: str) -> Optional[DetailFields]:
        if self._rows is None:
            self.list_snapshot_ids()
        row = self._by_id.get(record_id)
        if row is None or row.get("accessible") is False:
            return None
        return parse_detail(row)
