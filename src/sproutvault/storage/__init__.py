"""
Live store access for SproutVault.

StoreGuard owns the connection pool to the tracker's SQLite store and
provides quiescence, dated backups and atomic replacement.
"""

from sproutvault.storage.guard import (
    SIGNATURE_LENGTH,
    STORE_SIGNATURE,
    QuiesceHandle,
    StoreBusyError,
    StoreError,
    StoreGuard,
    StoreNotFoundError,
    StoreQuiescedError,
    dated_backup_path,
    is_valid_store_signature,
)

__all__ = [
    "StoreGuard",
    "QuiesceHandle",
    "StoreError",
    "StoreBusyError",
    "StoreNotFoundError",
    "StoreQuiescedError",
    "STORE_SIGNATURE",
    "SIGNATURE_LENGTH",
    "dated_backup_path",
    "is_valid_store_signature",
]
