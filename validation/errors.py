"""
Error taxonomy and classification for reconciliation runs.

Two scopes matter when something goes wrong during a run:
- run-scoped: without a trustworthy snapshot no decision can be made, so the
  run aborts before writing anything (SnapshotError, CredentialError)
- identifier-scoped: the failure affects one service (or one existence
  batch) and the run continues with the rest

All components use the helpers here to decide which scope an error has.
"""

import logging
from typing import Type


# HTTP status codes that mean our credentials are not accepted.
# Retrying with the same token will not help, and nothing read with it
# can be trusted, so these are run-fatal.
CREDENTIAL_CODES = frozenset({401, 403})

# Module logger
logger = logging.getLogger(__name__)


class ServiceSyncError(Exception):
    """Base class for all reconciliation errors."""


class SnapshotError(ServiceSyncError):
    """The external listing could not be obtained (login failed, listing unreadable).

    Fatal for the whole run. Raised before any staging write.
    """


class CredentialError(SnapshotError):
    """A backing service rejected our credentials (HTTP 401/403)."""


class DetailAccessError(ServiceSyncError):
    """The detail page of one service could not be opened.

    Recoverable: the service transitions to ``blocked`` and the run continues.
    """

    def __init__(self, record_id: str, message: str = ""):
        self.record_id = record_id
        super().__init__(message or f"Detail for service {record_id} is not accessible")


class DetailValidationError(ServiceSyncError):
    """A service's detail does not carry the minimum data to stage it."""

    def __init__(self, record_id: str, message: str = ""):
        self.record_id = record_id
        super().__init__(message or f"Service {record_id} lacks minimum data")


class ExistenceQueryError(ServiceSyncError):
    """A downstream existence lookup failed for one batch.

    The batch's identifiers are treated as "no match" for the current run.
    """

    def __init__(self, store: str, ids: list[str], message: str = ""):
        self.store = store
        self.ids = list(ids)
        super().__init__(message or f"Existence query on '{store}' failed for {len(self.ids)} ids")


class PersistenceError(ServiceSyncError):
    """A staging or downstream write/read failed for one identifier."""


class PromotionRefused(ServiceSyncError):
    """An administrative promotion was refused for a staging record."""

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Cannot promote {record_id}: {reason}")


def is_run_fatal(exc: BaseException) -> bool:
    """Return True if the error must abort the whole run.

    Only snapshot acquisition and credential failures are run-fatal. Every
    identifier-scoped error (detail access, validation, existence batch,
    persistence) is handled where it happens and the run continues.
    """
    fatal = isinstance(exc, SnapshotError)
    logger.debug(f"{type(exc).__name__} classified as {'run-fatal' if fatal else 'identifier-scoped'}")
    return fatal


def classify_http_error(status_code: int, default: Type[ServiceSyncError] = PersistenceError) -> Type[ServiceSyncError]:
    """
    Classify a failed HTTP status code from a backing service.

    Args:
        status_code: HTTP response status code
        default: Error class for the caller's scope (ExistenceQueryError for
                 lookups, PersistenceError for writes)

    Returns:
        CredentialError class for 401/403, ``default`` otherwise
    """
    if status_code in CREDENTIAL_CODES:
        logger.debug(f"HTTP {status_code} classified as credential error")
        return CredentialError

    logger.debug(f"HTTP {status_code} classified as {default.__name__}")
    return default
