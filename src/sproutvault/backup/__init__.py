"""
Backup and restore functionality for SproutVault.

Usage:
    from sproutvault.backup import BackupService, RestoreService

    # Export a bundle
    bundle = BackupService(guard, env_path).export()

    # Restore from an upload
    outcome = RestoreService(guard, env_path, reloader).restore(data, "backup.zip")

    # Check an upload without committing it
    result = RestoreService(guard, env_path, reloader).pre_migration_check(data, "backup.zip")
"""

from sproutvault.backup.archive import (
    ARCHIVE_EXTENSION,
    CONFIG_ENTRY_SUFFIX,
    UnpackedBundle,
    is_archive_name,
    pack,
    suggested_filename,
    unpack,
)
from sproutvault.backup.compat import (
    BASELINE_GENERATION,
    CompatibilityGate,
    GateResult,
    generation_of,
    is_at_or_before,
)
from sproutvault.backup.errors import (
    BackupError,
    BundleRejectedError,
    InvalidStoreFormatError,
    MalformedArchiveError,
    MissingStoreEntryError,
    RestoreFailedError,
    SourceUnavailableError,
)
from sproutvault.backup.manager import (
    BackupService,
    ExportedBundle,
    RestoreOutcome,
    RestoreService,
)

__all__ = [
    # Services
    "BackupService",
    "RestoreService",
    "ExportedBundle",
    "RestoreOutcome",
    # Archive
    "pack",
    "unpack",
    "UnpackedBundle",
    "is_archive_name",
    "suggested_filename",
    "ARCHIVE_EXTENSION",
    "CONFIG_ENTRY_SUFFIX",
    # Compatibility
    "BASELINE_GENERATION",
    "CompatibilityGate",
    "GateResult",
    "generation_of",
    "is_at_or_before",
    # Errors
    "BackupError",
    "BundleRejectedError",
    "MalformedArchiveError",
    "MissingStoreEntryError",
    "InvalidStoreFormatError",
    "SourceUnavailableError",
    "RestoreFailedError",
]
