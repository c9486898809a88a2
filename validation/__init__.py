"""
Validation module for ServiceSync.

Provides text sanitization, the reconciliation error taxonomy, and
configuration validation. Identifier and record normalization lives in
validation.normalizer (imported directly; it depends on shared_lib.records).
"""

from validation.sanitizers import sanitize_text, join_address
from validation.errors import (
    ServiceSyncError,
    SnapshotError,
    CredentialError,
    DetailAccessError,
    DetailValidationError,
    ExistenceQueryError,
    PersistenceError,
    PromotionRefused,
    is_run_fatal,
    classify_http_error,
)
from validation.config import ServiceSyncConfig, DownstreamStoreConfig, validate_config

__all__ = [
    'sanitize_text',
    'join_address',
    'ServiceSyncError',
    'SnapshotError',
    'CredentialError',
    'DetailAccessError',
    'DetailValidationError',
    'ExistenceQueryError',
    'PersistenceError',
    'PromotionRefused',
    'is_run_fatal',
    'classify_http_error',
    'ServiceSyncConfig',
    'DownstreamStoreConfig',
    'validate_config',
]
