"""
shared_lib - Typed models and I/O clients shared by the CLI and the admin API.

Modules (import directly; the package does not re-export, because
validation.normalizer and shared_lib.records depend on each other's
packages):

    shared_lib.records          -- PendingRecord, DetailFields, DownstreamMatch, ...
    shared_lib.firestore_client -- async Firestore REST client and typed errors
    shared_lib.snapshot_source  -- SourceExtractor protocol, JsonSnapshotSource
"""
