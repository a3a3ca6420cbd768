"""
Backup and restore services for SproutVault.

BackupService packages the live store and .env file into a bundle.
RestoreService validates an uploaded bundle (or legacy raw store file),
backs up the live files, runs the compatibility gate against the candidate
store, replaces the live store and hot-reloads the restored configuration.

Ordering:
    1. Validate the upload (nothing on disk is touched)
    2. Quiesce the live store
    3. Write dated backups of the store and, if replaced, the .env file
    4. Run the compatibility gate on a staged copy of the candidate
    5. Replace the live store
    6. Write the .env file and reload it into the runtime configuration
    7. Release the store

The caller must serialize calls against a given store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from sproutvault.backup import archive
from sproutvault.backup.compat import CompatibilityGate, GateResult
from sproutvault.backup.errors import (
    BackupError,
    InvalidStoreFormatError,
    RestoreFailedError,
    SourceUnavailableError,
)
from sproutvault.config.runtime import ConfigReloader, parse_env
from sproutvault.storage.guard import StoreGuard, is_valid_store_signature

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(UTC).date()


@dataclass
class ExportedBundle:
    """A bundle produced by BackupService.export()."""

    data: bytes
    filename: str
    includes_config: bool

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class RestoreOutcome:
    """Result of a successful restore."""

    success: bool
    admin_reset_required: bool
    latest_generation: str | None
    legacy_format: bool = False
    store_backup: Path | None = None
    config_backup: Path | None = None
    config_keys_applied: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "adminResetRequired": self.admin_reset_required,
            "latestGeneration": self.latest_generation,
            "legacyFormat": self.legacy_format,
            "storeBackup": str(self.store_backup) if self.store_backup else None,
            "configBackup": str(self.config_backup) if self.config_backup else None,
            "configKeysApplied": self.config_keys_applied,
        }


class BackupService:
    """
    Exports the live store and configuration as a bundle.

    Attributes:
        guard: Guard owning the live store.
        env_path: Path to the live .env file.
    """

    def __init__(self, guard: StoreGuard, env_path: Path) -> None:
        self.guard = guard
        self.env_path = Path(env_path)

    def export(self, today: date | None = None) -> ExportedBundle:
        """
        Package the live store and .env file.

        Args:
            today: Date used for entry and file names. Defaults to the current UTC date.

        Returns:
            ExportedBundle with archive bytes and a suggested filename.

        Raises:
            SourceUnavailableError: If the store (or an existing .env) cannot be read.
        """
        if today is None:
            today = _today()

        with self.guard.quiesce():
            try:
                store_bytes = self.guard.db_path.read_bytes()
            except OSError as e:
                raise SourceUnavailableError(
                    f"Cannot read store file {self.guard.db_path}: {e}"
                ) from e

            config_text = None
            if self.env_path.exists():
                try:
                    config_text = self.env_path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    raise SourceUnavailableError(
                        f"Cannot read configuration file {self.env_path}: {e}"
                    ) from e
            else:
                logger.info(f"No configuration file at {self.env_path}, exporting store only")

            data = archive.pack(store_bytes, config_text, today)

        bundle = ExportedBundle(
            data=data,
            filename=archive.suggested_filename(today),
            includes_config=config_text is not None,
        )
        logger.info(f"Backup created: {bundle.filename} ({bundle.size_bytes:,} bytes)")
        return bundle

    def write_to(self, output_dir: Path, today: date | None = None) -> Path:
        """
        Export a bundle and write it into a directory.

        Returns:
            Path of the written bundle.
        """
        output_dir = Path(output_dir)
        if output_dir.is_file():
            raise BackupError(f"Output path is a file: {output_dir}")
        output_dir.mkdir(parents=True, exist_ok=True)

        bundle = self.export(today)
        backup_path = output_dir / bundle.filename
        StoreGuard.replace(backup_path, bundle.data)
        return backup_path


class RestoreService:
    """
    Replaces the live store (and optionally configuration) from an upload.

    Example:
        service = RestoreService(guard, env_path, ConfigReloader(runtime_config))
        outcome = service.restore(upload_bytes, "sprout-track-backup-2025-01-01.zip")
        if outcome.admin_reset_required:
            print("Admin credentials were reset")

    Attributes:
        guard: Guard owning the live store.
        env_path: Path to the live .env file.
        reloader: Applies restored configuration to the running process.
        gate: Compatibility gate run against every candidate store.
    """

    def __init__(
        self,
        guard: StoreGuard,
        env_path: Path,
        reloader: ConfigReloader,
        gate: CompatibilityGate | None = None,
    ) -> None:
        self.guard = guard
        self.env_path = Path(env_path)
        self.reloader = reloader
        self.gate = gate or CompatibilityGate()

    def validate(self, upload: bytes, upload_name: str) -> archive.UnpackedBundle:
        """
        Unpack and validate an upload without touching the filesystem.

        Uploads whose name ends with .zip are bundles; anything else is a raw
        legacy store file with no configuration.

        Raises:
            MalformedArchiveError: Bundle cannot be parsed.
            MissingStoreEntryError: Bundle has no store entry.
            InvalidStoreFormatError: Store bytes fail the signature check.
        """
        if archive.is_archive_name(upload_name):
            bundle = archive.unpack(upload)
            if not is_valid_store_signature(bundle.store_bytes):
                raise InvalidStoreFormatError("Invalid database file in archive")
        else:
            if not is_valid_store_signature(upload):
                raise InvalidStoreFormatError(
                    "Invalid database file - must be a valid SQLite database"
                )
            bundle = archive.UnpackedBundle(store_bytes=upload)
        return bundle

    def restore(
        self,
        upload: bytes,
        upload_name: str,
        today: date | None = None,
    ) -> RestoreOutcome:
        """
        Restore the live store from an upload.

        Args:
            upload: Uploaded bytes (bundle or raw store file).
            upload_name: Original upload filename; decides the format.
            today: Date used for backup names. Defaults to the current UTC date.

        Returns:
            RestoreOutcome.

        Raises:
            BundleRejectedError: Validation failed; nothing was changed.
            RestoreFailedError: Failure after the store was quiesced.
        """
        if today is None:
            today = _today()

        bundle = self.validate(upload, upload_name)
        legacy = not archive.is_archive_name(upload_name)
        logger.info(
            "Restoring %s upload %s (%d store bytes, config: %s)",
            "legacy" if legacy else "bundle",
            upload_name,
            len(bundle.store_bytes),
            "yes" if bundle.config_text is not None else "no",
        )

        store_backup: Path | None = None
        config_backup: Path | None = None
        try:
            with self.guard.quiesce():
                store_backup = self.guard.backup_existing(self.guard.db_path, today)
                if bundle.config_text is not None:
                    config_backup = self.guard.backup_existing(self.env_path, today)

                with self.guard.open_candidate(bundle.store_bytes) as candidate_path:
                    gate_result = self.gate.inspect(candidate_path, apply_reset=True)
                    candidate = candidate_path.read_bytes()

                self.guard.replace(self.guard.db_path, candidate)
                logger.info(f"Store file restored: {self.guard.db_path}")

                keys_applied = 0
                if bundle.config_text is not None:
                    self.guard.replace(self.env_path, bundle.config_text.encode("utf-8"))
                    logger.info(f"Configuration file restored: {self.env_path}")
                    keys_applied = self.reloader.apply(parse_env(bundle.config_text))
        except Exception as e:
            logger.exception("Restore failed")
            message = f"Restore failed: {e}"
            if store_backup is not None:
                message += f". Previous store backed up to {store_backup}"
            raise RestoreFailedError(
                message,
                cause=e,
                store_backup=store_backup,
                config_backup=config_backup,
            ) from e

        if gate_result.requires_credential_reset:
            logger.warning(
                f"Restored store generation {gate_result.latest_generation} predates "
                f"baseline {self.gate.baseline}; admin credentials must be set again"
            )

        return RestoreOutcome(
            success=True,
            admin_reset_required=gate_result.requires_credential_reset,
            latest_generation=gate_result.latest_generation,
            legacy_format=legacy,
            store_backup=store_backup,
            config_backup=config_backup,
            config_keys_applied=keys_applied,
        )

    def pre_migration_check(self, upload: bytes, upload_name: str) -> GateResult:
        """
        Run the compatibility gate on an upload without committing it.

        The candidate is staged in a throwaway file; the live store and
        configuration are never touched.
        """
        bundle = self.validate(upload, upload_name)
        with self.guard.open_candidate(bundle.store_bytes) as candidate_path:
            return self.gate.inspect(candidate_path, apply_reset=True)

    def check_live(self) -> GateResult:
        """Report the live store's generation without changing it."""
        with self.guard.connection() as conn:
            return self.gate.check(self.gate.read_ledger(conn))
