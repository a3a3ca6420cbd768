"""
Bundle archive format.

A bundle is a ZIP archive holding the store file under its fixed logical
name and, optionally, a configuration snapshot named
<YYYY-MM-DD>.backup.env. Uploads without the .zip extension are treated
as legacy raw store files by the restore service, not by this module.
"""

from __future__ import annotations

import io
import logging
import zipfile
import zlib
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sproutvault.backup.errors import MalformedArchiveError, MissingStoreEntryError
from sproutvault.config.settings import STORE_FILE_NAME

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".zip"
CONFIG_ENTRY_SUFFIX = ".backup.env"
BUNDLE_FILENAME_PREFIX = "sprout-track-backup-"


@dataclass
class UnpackedBundle:
    """Contents extracted from a bundle."""

    store_bytes: bytes
    config_text: str | None = None
    config_entry: str | None = None


def is_archive_name(name: str) -> bool:
    """True if an upload name carries the archive extension."""
    return name.endswith(ARCHIVE_EXTENSION)


def config_entry_name(today: date) -> str:
    return f"{today.isoformat()}{CONFIG_ENTRY_SUFFIX}"


def suggested_filename(today: date) -> str:
    """Download filename for a bundle created on the given day."""
    return f"{BUNDLE_FILENAME_PREFIX}{today.isoformat()}{ARCHIVE_EXTENSION}"


def pack(store_bytes: bytes, config_text: str | None = None, today: date | None = None) -> bytes:
    """
    Build a bundle archive in memory.

    Args:
        store_bytes: Raw store file contents.
        config_text: Optional .env contents to include.
        today: Date used in the config entry name. Defaults to the current UTC date.

    Returns:
        ZIP archive bytes.
    """
    if today is None:
        today = datetime.now(UTC).date()

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(STORE_FILE_NAME, store_bytes)
        if config_text is not None:
            zf.writestr(config_entry_name(today), config_text.encode("utf-8"))

    return buffer.getvalue()


def unpack(archive_bytes: bytes) -> UnpackedBundle:
    """
    Extract the store file and optional config snapshot from a bundle.

    When several entries end with the config suffix, the first one in
    archive order is used.

    Args:
        archive_bytes: Uploaded archive contents.

    Returns:
        UnpackedBundle with store bytes and optional config text.

    Raises:
        MalformedArchiveError: If the buffer is not a readable ZIP archive.
        MissingStoreEntryError: If the archive has no store file entry.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(archive_bytes)) as zf:
            names = zf.namelist()
            if STORE_FILE_NAME not in names:
                raise MissingStoreEntryError(
                    f"Database file '{STORE_FILE_NAME}' not found in archive"
                )
            store_bytes = zf.read(STORE_FILE_NAME)

            config_entry = next(
                (name for name in names if name.endswith(CONFIG_ENTRY_SUFFIX)),
                None,
            )
            config_text = None
            if config_entry is not None:
                config_text = zf.read(config_entry).decode("utf-8")
    # Encrypted entries raise RuntimeError, unsupported compression NotImplementedError
    except (
        zipfile.BadZipFile,
        zipfile.LargeZipFile,
        zlib.error,
        EOFError,
        RuntimeError,
        NotImplementedError,
    ) as e:
        raise MalformedArchiveError(f"Failed to read archive: {e}") from e
    except UnicodeDecodeError as e:
        raise MalformedArchiveError(f"Configuration entry is not valid UTF-8: {e}") from e

    logger.debug(
        "Unpacked bundle: store %d bytes, config entry %s",
        len(store_bytes),
        config_entry or "none",
    )
    return UnpackedBundle(
        store_bytes=store_bytes,
        config_text=config_text,
        config_entry=config_entry,
    )
