"""
shared_lib.firestore_client - Async Firestore REST client.

Design notes:
- Async-only: all public methods are coroutines. The CLI drives them via
  asyncio.run(); the admin API awaits them directly.
- Uses httpx.AsyncClient. Caller must call close() when done (or use the
  client as an async context manager).
- Talks to the Firestore v1 REST API (works against the emulator too when
  base_url points at it). Credential acquisition is external: the caller
  passes an OAuth bearer token.
- Documents are exchanged as plain Python dicts; the typed-value envelope
  Firestore uses ({"stringValue": ...}) is encoded/decoded here only.

Exports:
    FirestoreClient          -- async REST client
    FirestoreConnectionError -- server unreachable, connection dropped or timed out
    FirestoreRequestError    -- non-2xx response (carries status_code)
    FirestoreConflict        -- document already exists on create
    FirestoreResponseError   -- 2xx response whose body is not what the API returns
    encode_value / decode_value -- Firestore typed-value codec
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

log = logging.getLogger("shared_lib.firestore_client")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class FirestoreConnectionError(Exception):
    """
    Firestore is unreachable, dropped the connection, or the request timed out.

    Covers every httpx transport failure (connect, read/write, protocol) and
    timeouts: all represent an unavailable server from the caller's
    perspective.
    """


class FirestoreRequestError(Exception):
    """Firestore answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Firestore HTTP {status_code}: {message}")


class FirestoreConflict(FirestoreRequestError):
    """createDocument failed because the document id already exists (HTTP 409)."""


class FirestoreResponseError(Exception):
    """A successful response carried a body that could not be parsed."""


# ---------------------------------------------------------------------------
# Typed-value codec
# ---------------------------------------------------------------------------


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value into a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        # int64 travels as a string in the JSON mapping
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": value.isoformat().replace("+00:00", "Z")}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, (list, tuple, set)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": {str(k): encode_value(v) for k, v in value.items()}}}
    raise TypeError(f"Cannot encode {type(value).__name__} as a Firestore value")


def decode_value(typed: dict[str, Any]) -> Any:
    """Decode a Firestore typed value into a plain Python value."""
    if "stringValue" in typed:
        return typed["stringValue"]
    if "integerValue" in typed:
        return int(typed["integerValue"])
    if "doubleValue" in typed:
        return float(typed["doubleValue"])
    if "booleanValue" in typed:
        return bool(typed["booleanValue"])
    if "timestampValue" in typed:
        return typed["timestampValue"]
    if "nullValue" in typed:
        return None
    if "arrayValue" in typed:
        return [decode_value(v) for v in typed["arrayValue"].get("values", [])]
    if "mapValue" in typed:
        return decode_fields(typed["mapValue"].get("fields", {}))
    if "referenceValue" in typed:
        return typed["referenceValue"]
    return None


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Decode a Firestore ``fields`` map into a plain dict."""
    return {name: decode_value(value) for name, value in fields.items()}


def document_id(name: str) -> str:
    """Last path segment of a full document resource name."""
    return name.rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class FirestoreClient:
    """
    Async REST client for one Firestore database.

    Usage::

        client = FirestoreClient("my-project", token="ya29...")
        try:
            docs = await client.query_in("appointments", "serviceNumber", ["1001", "1002"])
        finally:
            await client.close()
    """

    def __init__(
        self,
        project_id: str,
        token: Optional[str] = None,
        base_url: str = "https://firestore.googleapis.com/v1",
        timeout: float = 10.0,
        database: str = "(default)",
    ) -> None:
        """
        Create the async Firestore client.

        Args:
            project_id: GCP project id.
            token:      Optional OAuth bearer token. Omitted for the emulator.
            base_url:   API root, e.g. ``https://firestore.googleapis.com/v1``
                        or ``http://localhost:8080/v1`` for the emulator.
            timeout:    Total request timeout in seconds (default 10). Connect
                        timeout is fixed at 5 seconds.
            database:   Database id (default ``(default)``).
        """
        self._documents_path = f"projects/{project_id}/databases/{database}/documents"
        self._root = f"{base_url.rstrip('/')}/{self._documents_path}"

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=5.0),
        )
        log.debug("FirestoreClient initialised - root=%s token=%s", self._root, bool(token))

    async def __aenter__(self) -> "FirestoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request and translate transport/status failures.

        Raises:
            FirestoreConnectionError: Server unreachable, connection dropped
                                      or request timed out.
            FirestoreConflict:        HTTP 409.
            FirestoreRequestError:    Any other non-2xx status.
        """
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise FirestoreConnectionError(f"Firestore request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise FirestoreConnectionError(f"Cannot reach Firestore: {exc!r}") from exc

        if resp.status_code >= 400:
            try:
                message = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                message = resp.text
            if resp.status_code == 409:
                raise FirestoreConflict(resp.status_code, message)
            raise FirestoreRequestError(resp.status_code, message)
        return resp

    async def query_in(
        self,
        collection: str,
        field: str,
        values: list[str],
    ) -> list[tuple[str, dict[str, Any]]]:
        """
        Run ``WHERE field IN values`` on a collection.

        Firestore bounds the operand count of ``IN``; callers batch values.

        Args:
            collection: Collection id.
            field:      Field path compared against ``values``.
            values:     String values to match.

        Returns:
            List of (document_id, decoded_fields) tuples.
        """
        if not values:
            return []

        body = {
            "structuredQuery": {
                "from": [{"collectionId": collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": field},
                        "op": "IN",
                        "value": encode_value(list(values)),
                    }
                },
            }
        }
        resp = await self._request("POST", f"{self._root}:runQuery", json=body)

        results = []
        try:
            for item in resp.json():
                doc = item.get("document")
                if not doc:
                    # readTime-only entries carry no document
                    continue
                results.append((document_id(doc["name"]), decode_fields(doc.get("fields", {}))))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise FirestoreResponseError(f"Malformed runQuery response from {collection}: {exc!r}") from exc
        return results

    async def create_document(
        self,
        collection: str,
        fields: dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        """
        Create a document, keyed by ``doc_id`` or by a server-generated id.

        Returns:
            The id of the created document.

        Raises:
            FirestoreConflict: A document with ``doc_id`` already exists.
        """
        params = {"documentId": doc_id} if doc_id else None
        body = {"fields": {k: encode_value(v) for k, v in fields.items()}}
        resp = await self._request("POST", f"{self._root}/{collection}", params=params, json=body)
        try:
            created = document_id(resp.json()["name"])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise FirestoreResponseError(f"Malformed createDocument response from {collection}: {exc!r}") from exc
        log.debug("Created %s/%s", collection, created)
        return created
