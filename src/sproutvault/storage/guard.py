"""
Guarded access to the live SQLite store.

StoreGuard owns the process's connection pool to the store file and is the
only component that hands out connections to it. Destructive operations on
the store file (replacement during a restore) happen only inside a
quiesce() block, during which no connection can be borrowed.

Design Decisions:
    - Connections are pooled per guard and closed when the store is quiesced
    - Quiescence is a context manager, so release happens on every exit path
    - Replacement uses temp file + fsync + rename
    - Dated backups use calendar-day granularity; a second backup on the same
      day overwrites the first
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import tempfile
import threading
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# SQLite files start with the 16-byte header "SQLite format 3\0"
STORE_SIGNATURE = "SQLite"
SIGNATURE_LENGTH = 16

DEFAULT_POOL_SIZE = 4

# Files SQLite may leave next to a database
_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


class StoreError(Exception):
    """Base exception for store access errors."""

    pass


class StoreQuiescedError(StoreError):
    """Raised when the store is quiesced and cannot be used."""

    pass


class StoreBusyError(StoreError):
    """Raised when the store cannot be quiesced because connections are in use."""

    pass


class StoreNotFoundError(StoreError):
    """Raised when the store file does not exist."""

    pass


def is_valid_store_signature(data: bytes) -> bool:
    """
    Check whether a buffer looks like a SQLite database.

    This is a structural sniff of the first 16 bytes, not an integrity check.
    It rejects wrong file types and truncated uploads.

    Args:
        data: Candidate store bytes.

    Returns:
        True if the header contains the SQLite signature.
    """
    header = bytes(data[:SIGNATURE_LENGTH]).decode("utf-8", errors="replace")
    return STORE_SIGNATURE in header


def dated_backup_path(path: Path, today: date) -> Path:
    """Return <path>.backup-<YYYY-MM-DD>."""
    return path.with_name(f"{path.name}.backup-{today.isoformat()}")


@dataclass
class QuiesceHandle:
    """Capability returned by StoreGuard.quiesce()."""

    path: Path
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    released: bool = False


class StoreGuard:
    """
    Owner of the live store file and its connection pool.

    Example:
        guard = StoreGuard(Path("db/baby-tracker.db"))

        with guard.connection() as conn:
            conn.execute("SELECT 1")

        with guard.quiesce():
            guard.backup_existing(guard.db_path, date.today())
            guard.replace(guard.db_path, new_bytes)

    Attributes:
        db_path: Path to the live store file.
        pool_size: Maximum number of idle connections kept open.
    """

    def __init__(self, db_path: Path | str, pool_size: int = DEFAULT_POOL_SIZE) -> None:
        self.db_path = Path(db_path)
        self.pool_size = pool_size
        self._lock = threading.Lock()
        self._idle: list[sqlite3.Connection] = []
        self._borrowed = 0
        self._quiesced = False

    @property
    def is_quiesced(self) -> bool:
        with self._lock:
            return self._quiesced

    def exists(self) -> bool:
        return self.db_path.is_file()

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Borrow a pooled connection to the live store.

        Yields:
            SQLite connection with row factory set.

        Raises:
            StoreQuiescedError: If the store is quiesced.
            StoreNotFoundError: If the store file does not exist.
        """
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    def _acquire(self) -> sqlite3.Connection:
        with self._lock:
            if self._quiesced:
                raise StoreQuiescedError(f"Store is quiesced: {self.db_path}")
            if self._idle:
                conn = self._idle.pop()
            else:
                if not self.exists():
                    raise StoreNotFoundError(f"Store file not found: {self.db_path}")
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
            self._borrowed += 1
            return conn

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            self._borrowed -= 1
            keep = not self._quiesced and len(self._idle) < self.pool_size
            if keep:
                try:
                    conn.rollback()
                except sqlite3.Error:
                    keep = False
            if keep:
                self._idle.append(conn)
                return
        conn.close()

    def close(self) -> None:
        """Close every idle pooled connection."""
        with self._lock:
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()

    @contextmanager
    def quiesce(self) -> Generator[QuiesceHandle, None, None]:
        """
        Suspend live access to the store.

        Closes every pooled connection and refuses new ones until the block
        exits. The store becomes available again on every exit path.

        Raises:
            StoreQuiescedError: If the store is already quiesced.
            StoreBusyError: If connections are currently borrowed.
        """
        with self._lock:
            if self._quiesced:
                raise StoreQuiescedError(f"Store is already quiesced: {self.db_path}")
            if self._borrowed:
                raise StoreBusyError(
                    f"{self._borrowed} connection(s) to {self.db_path} still in use"
                )
            self._quiesced = True
            idle, self._idle = self._idle, []

        handle = QuiesceHandle(path=self.db_path)
        try:
            for conn in idle:
                conn.close()
            logger.debug("Store quiesced: %s", self.db_path)
            yield handle
        finally:
            with self._lock:
                self._quiesced = False
            handle.released = True
            logger.debug("Store released: %s", self.db_path)

    @staticmethod
    def backup_existing(path: Path, today: date) -> Path | None:
        """
        Copy a file to its dated backup path before it is overwritten.

        An existing backup from the same day is overwritten.

        Args:
            path: File to back up.
            today: Date used in the backup name.

        Returns:
            Path of the backup, or None if there was no file to copy.
        """
        if not path.exists():
            return None

        backup_path = dated_backup_path(path, today)
        if backup_path.exists():
            logger.warning(f"Overwriting existing same-day backup: {backup_path}")
        shutil.copy2(path, backup_path)
        logger.info(f"Backed up {path} to {backup_path}")
        return backup_path

    @staticmethod
    def replace(path: Path, data: bytes) -> None:
        """
        Replace a file's contents atomically.

        Writes to a temporary file in the same directory, fsyncs it and
        renames it over the target.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(
            prefix=f".{path.name}.",
            suffix=".tmp",
            dir=str(path.parent),
        )
        try:
            with os.fdopen(temp_fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except Exception:
            # Clean up temp file on error
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    @contextmanager
    def open_candidate(self, data: bytes) -> Generator[Path, None, None]:
        """
        Stage candidate store bytes in a temporary file.

        The file lives outside the live path and is removed on exit together
        with any SQLite sidecar files.

        Yields:
            Path of the staged candidate file.
        """
        staging_dir = self.db_path.parent if self.db_path.parent.is_dir() else None
        temp_fd, temp_name = tempfile.mkstemp(
            prefix=".candidate-",
            suffix=".db",
            dir=str(staging_dir) if staging_dir else None,
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(temp_fd, "wb") as f:
                f.write(data)
            yield temp_path
        finally:
            for candidate in [temp_path] + [
                temp_path.with_name(temp_path.name + suffix) for suffix in _SIDECAR_SUFFIXES
            ]:
                if candidate.exists():
                    candidate.unlink()
