"""
Exceptions raised by backup, restore and pre-migration checks.

Rejections (BundleRejectedError and subclasses) are raised before anything
on disk is touched. RestoreFailedError is raised once the destructive phase
has started; the live store may be original or partially replaced and must
be inspected by an operator.
"""

from __future__ import annotations

from pathlib import Path


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    pass


class BundleRejectedError(BackupError):
    """Upload failed validation. The live store was not touched."""

    pass


class MalformedArchiveError(BundleRejectedError):
    """Upload claims to be an archive but cannot be parsed as one."""

    pass


class MissingStoreEntryError(BundleRejectedError):
    """Archive parsed but holds no store file entry."""

    pass


class InvalidStoreFormatError(BundleRejectedError):
    """Candidate store bytes do not carry the SQLite signature."""

    pass


class SourceUnavailableError(BackupError):
    """Live store or configuration file could not be read during export."""

    pass


class RestoreFailedError(BackupError):
    """
    I/O failure during the destructive phase of a restore.

    Attributes:
        cause: The underlying exception.
        store_backup: Dated backup of the previous store, if one was written.
        config_backup: Dated backup of the previous config file, if one was written.
    """

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        store_backup: Path | None = None,
        config_backup: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.store_backup = store_backup
        self.config_backup = config_backup
