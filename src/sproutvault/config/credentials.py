"""
Administrative credential storage for SproutVault.

The application keeps its admin password encrypted in the adminPass column
of the AppConfig table inside the store. The encryption key is derived from
the ENC_HASH value of the application's .env file.

Security Design:
    - Key derived from ENC_HASH using PBKDF2-HMAC-SHA256
    - AES-256-GCM with a random IV and a random salt bound as associated data,
      stored as iv:salt:tag:ciphertext in base64 so the application can read it
    - A cleared (empty) adminPass means the credential must be set again
      before privileged access, which is what the compatibility gate forces
      for stores older than the credential baseline
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import os
import secrets
import sqlite3
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sproutvault.backup.compat import CREDENTIAL_COLUMN, CREDENTIAL_TABLE, CompatibilityGate
from sproutvault.config.runtime import RuntimeConfig, parse_env
from sproutvault.config.settings import STORE_FILE_NAME
from sproutvault.storage.guard import StoreGuard

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_SETTING = "ENC_HASH"

# Static salt so every process derives the same key from the same ENC_HASH
KEY_SALT = b"baby-tracker-salt"
PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32
IV_LENGTH = 16
SALT_LENGTH = 32
TAG_LENGTH = 16
MIN_PASSWORD_LENGTH = 6


class CredentialError(Exception):
    """Base exception for credential-related errors."""

    pass


class EncryptionKeyMissingError(CredentialError):
    """Raised when ENC_HASH is not present in the runtime configuration."""

    pass


class CredentialNotSetError(CredentialError):
    """Raised when no admin credential is stored."""

    pass


class InvalidCredentialError(CredentialError):
    """Raised when a stored credential cannot be decrypted."""

    pass


def generate_encryption_key() -> str:
    """Generate a new random ENC_HASH value (64 hex characters)."""
    return secrets.token_hex(32)


def ensure_env_file(env_path: Path) -> bool:
    """
    Make sure the application's .env file has an encryption key.

    Creates the file if needed. When ENC_HASH is missing or blank, appends
    the default local deployment values together with a new key.

    Returns:
        True if a key was generated, False if one already existed.
    """
    existing = env_path.read_text(encoding="utf-8") if env_path.exists() else ""
    if parse_env(existing).get(ENCRYPTION_KEY_SETTING):
        return False

    lines = [
        "",
        "# Default environment variables for local deployment",
        f'DATABASE_URL="file:../db/{STORE_FILE_NAME}"',
        "ENABLE_LOG=false",
        "TZ=UTC",
        "AUTH_LIFE=86400",
        "IDLE_TIME=28800",
        "COOKIE_SECURE=false",
        "# Encryption hash for local deployment data encryption",
        f'{ENCRYPTION_KEY_SETTING}="{generate_encryption_key()}"',
    ]
    env_path.parent.mkdir(parents=True, exist_ok=True)
    StoreGuard.replace(env_path, (existing + "\n".join(lines) + "\n").encode("utf-8"))
    logger.info(f"Generated {ENCRYPTION_KEY_SETTING} in {env_path}")
    return True


class AdminCredentialCipher:
    """
    Encrypts and decrypts admin credentials the way the application does.

    Values are stored as four colon-separated base64 fields:
    ``iv:salt:tag:ciphertext``. The random salt is bound to the ciphertext
    as associated data; the AES-256-GCM key comes from ENC_HASH.
    """

    def __init__(self, runtime_config: RuntimeConfig) -> None:
        self.runtime_config = runtime_config

    def _aesgcm(self) -> AESGCM:
        # Read on every use so a reloaded .env takes effect immediately
        enc_hash = self.runtime_config.get(ENCRYPTION_KEY_SETTING)
        if not enc_hash:
            raise EncryptionKeyMissingError(
                f"{ENCRYPTION_KEY_SETTING} is not set in the application configuration"
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=KEY_SALT,
            iterations=PBKDF2_ITERATIONS,
        )
        return AESGCM(kdf.derive(enc_hash.encode()))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise ValueError("Text to encrypt cannot be empty")

        iv = os.urandom(IV_LENGTH)
        salt = os.urandom(SALT_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aesgcm().encrypt(iv, plaintext.encode("utf-8"), salt)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (iv, salt, tag, ciphertext)
        )

    def decrypt(self, token: str) -> str:
        parts = token.split(":")
        if len(parts) != 4:
            raise InvalidCredentialError("Stored credential is not in the encrypted format")

        try:
            iv, salt, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
        except binascii.Error as e:
            raise InvalidCredentialError("Stored credential is not valid base64") from e

        try:
            plaintext = self._aesgcm().decrypt(iv, ciphertext + tag, salt)
        except (InvalidTag, ValueError) as e:
            raise InvalidCredentialError(
                f"Stored credential cannot be decrypted with the current {ENCRYPTION_KEY_SETTING}"
            ) from e
        return plaintext.decode("utf-8")

    @staticmethod
    def is_encrypted(value: str) -> bool:
        """True if a stored value has the encrypted four-field layout."""
        parts = value.split(":")
        if len(parts) != 4 or not all(parts):
            return False
        try:
            for part in parts:
                base64.b64decode(part, validate=True)
        except binascii.Error:
            return False
        return True


class AdminCredentialStore:
    """
    Reads and writes the admin credential held in the live store.

    Usage:
        credentials = AdminCredentialStore(guard, AdminCredentialCipher(runtime_config))

        if not credentials.is_set():
            credentials.set_password("new-password")

        credentials.verify("new-password")
    """

    def __init__(self, guard: StoreGuard, cipher: AdminCredentialCipher) -> None:
        self.guard = guard
        self.cipher = cipher

    def _stored_value(self) -> str | None:
        with self.guard.connection() as conn:
            try:
                row = conn.execute(
                    f"SELECT {CREDENTIAL_COLUMN} FROM {CREDENTIAL_TABLE} "  # noqa: S608
                    f"ORDER BY rowid LIMIT 1"
                ).fetchone()
            except sqlite3.Error as e:
                raise CredentialError(f"Cannot read {CREDENTIAL_TABLE}: {e}") from e
        if row is None:
            return None
        return row[0] or ""

    def is_set(self) -> bool:
        """True if the store holds a non-empty admin credential."""
        return bool(self._stored_value())

    def set_password(self, password: str) -> int:
        """
        Encrypt and store a new admin password.

        Returns:
            Number of AppConfig rows updated.

        Raises:
            ValueError: If the password is too short.
            CredentialError: If the store has no AppConfig record.
        """
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
            )

        encrypted = self.cipher.encrypt(password)
        with self.guard.connection() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE {CREDENTIAL_TABLE} SET {CREDENTIAL_COLUMN} = ?",  # noqa: S608
                    (encrypted,),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise CredentialError(f"Cannot update {CREDENTIAL_TABLE}: {e}") from e
            updated = cursor.rowcount

        if updated == 0:
            raise CredentialError(
                "No app configuration found. The application must be initialized first."
            )

        logger.info("Admin credential updated in %d row(s)", updated)
        return updated

    def verify(self, password: str) -> bool:
        """
        Check a password against the stored credential.

        Values written before encryption was introduced are compared as
        plain text, as the application does.

        Raises:
            CredentialNotSetError: If the credential was cleared or never set.
        """
        stored = self._stored_value()
        if not stored:
            raise CredentialNotSetError("Admin credential is not set")
        if self.cipher.is_encrypted(stored):
            stored = self.cipher.decrypt(stored)
        return hmac.compare_digest(stored.encode(), password.encode())

    def clear(self) -> int:
        """Clear the admin credential, forcing a new one to be set."""
        with self.guard.connection() as conn:
            cleared = CompatibilityGate().clear_admin_credentials(conn)
            conn.commit()
        logger.warning("Admin credential cleared in %d row(s)", cleared)
        return cleared
