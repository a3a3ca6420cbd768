"""
Schema-generation compatibility gate.

A store's generation is the timestamp prefix of the newest record in its
migration ledger (_prisma_migrations). Stores at or before the baseline
generation hold admin credentials in a form the current application no
longer trusts, so the credentials are cleared and the administrator must set
a new one.

Generations are fixed-width, zero-padded YYYYMMDDHHMMSS strings, so plain
string comparison orders them chronologically. All ordering goes through
is_at_or_before().
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Migration 20250807141402_add_feedback_model is the last generation with
# the old credential storage.
BASELINE_GENERATION = "20250807141402"

GENERATION_LENGTH = 14

LEDGER_TABLE = "_prisma_migrations"
CREDENTIAL_TABLE = "AppConfig"
CREDENTIAL_COLUMN = "adminPass"


@dataclass
class GateResult:
    """Outcome of a compatibility check."""

    requires_credential_reset: bool
    latest_generation: str | None
    is_older_than_baseline: bool
    credentials_cleared: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "adminResetRequired": self.requires_credential_reset,
            "latestGeneration": self.latest_generation,
            "isOlderThanBaseline": self.is_older_than_baseline,
        }


def generation_of(name: str) -> str:
    """Return the 14-character timestamp prefix of a ledger record name."""
    return name[:GENERATION_LENGTH]


def is_at_or_before(generation: str, baseline: str) -> bool:
    """True if generation is the same as or older than baseline (inclusive)."""
    return generation_of(generation) <= generation_of(baseline)


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


class CompatibilityGate:
    """
    Decides whether a store predates the credential baseline.

    Example:
        gate = CompatibilityGate()
        result = gate.check(["20240101000000_init"])
        assert result.requires_credential_reset

    Attributes:
        baseline: Generation at or before which credentials are reset.
    """

    def __init__(self, baseline: str = BASELINE_GENERATION) -> None:
        if len(baseline) < GENERATION_LENGTH or not baseline[:GENERATION_LENGTH].isdigit():
            raise ValueError(f"Baseline must start with a 14-digit timestamp: {baseline!r}")
        self.baseline = baseline

    def check(self, ledger: Iterable[str]) -> GateResult:
        """
        Compare the newest ledger record against the baseline.

        Args:
            ledger: Record names of the store's migration ledger, any order.

        Returns:
            GateResult. An empty ledger is a fresh store and always compatible.
        """
        latest: str | None = None
        for name in ledger:
            if latest is None or generation_of(name) > generation_of(latest):
                latest = name

        if latest is None:
            return GateResult(
                requires_credential_reset=False,
                latest_generation=None,
                is_older_than_baseline=False,
            )

        older = is_at_or_before(latest, self.baseline)
        return GateResult(
            requires_credential_reset=older,
            latest_generation=latest,
            is_older_than_baseline=older,
        )

    def read_ledger(self, conn: sqlite3.Connection) -> list[str]:
        """Read ledger record names. A store without a ledger table has none."""
        if not _table_exists(conn, LEDGER_TABLE):
            logger.info("No %s table found, treating store as new", LEDGER_TABLE)
            return []
        rows = conn.execute(f"SELECT migration_name FROM {LEDGER_TABLE}").fetchall()  # noqa: S608
        return [row[0] for row in rows if row[0]]

    def clear_admin_credentials(self, conn: sqlite3.Connection) -> int:
        """
        Clear the admin credential of every privileged configuration record.

        Returns:
            Number of rows updated.
        """
        if not _table_exists(conn, CREDENTIAL_TABLE):
            logger.warning("No %s table found, nothing to reset", CREDENTIAL_TABLE)
            return 0
        cursor = conn.execute(
            f"UPDATE {CREDENTIAL_TABLE} SET {CREDENTIAL_COLUMN} = ''"  # noqa: S608
        )
        return cursor.rowcount

    def inspect(self, db_path: Path, apply_reset: bool = True) -> GateResult:
        """
        Check a store file and clear its admin credentials if it is too old.

        Opens a transient connection to db_path, which must not be the live
        store while it is in use.

        Args:
            db_path: Store file to inspect.
            apply_reset: Clear credentials in db_path when a reset is required.

        Returns:
            GateResult including the number of credential rows cleared.
        """
        conn = sqlite3.connect(str(db_path))
        try:
            result = self.check(self.read_ledger(conn))

            logger.info(
                "Compatibility check: latest generation %s, baseline %s, reset required: %s",
                result.latest_generation,
                self.baseline,
                result.requires_credential_reset,
            )

            if result.requires_credential_reset and apply_reset:
                result.credentials_cleared = self.clear_admin_credentials(conn)
                conn.commit()
                logger.warning(
                    f"Store predates baseline {self.baseline}; "
                    f"cleared admin credentials in {result.credentials_cleared} row(s)"
                )
        finally:
            conn.close()

        return result
