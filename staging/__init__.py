"""Staging collection: repository and administrative operations."""
from staging.repository import SQLiteStagingRepository, StagingRepository, merge_document
from staging.admin import delete_pending, list_pending, promote

__all__ = [
    'SQLiteStagingRepository',
    'StagingRepository',
    'merge_document',
    'delete_pending',
    'list_pending',
    'promote',
]
