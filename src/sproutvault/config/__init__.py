"""
Configuration management for SproutVault.

This module handles the service settings (YAML), the application's live
.env configuration, and the encrypted admin credential kept in the store.
"""

from sproutvault.config.settings import (
    DEFAULT_CONFIG_DIR,
    STORE_FILE_NAME,
    ConfigurationError,
    Settings,
    load_config,
    save_config,
)
from sproutvault.config.runtime import ConfigReloader, RuntimeConfig, parse_env
from sproutvault.config.credentials import (
    AdminCredentialCipher,
    AdminCredentialStore,
    CredentialError,
    CredentialNotSetError,
    EncryptionKeyMissingError,
    InvalidCredentialError,
    ensure_env_file,
    generate_encryption_key,
)

__all__ = [
    # Settings
    "Settings",
    "load_config",
    "save_config",
    "ConfigurationError",
    "DEFAULT_CONFIG_DIR",
    "STORE_FILE_NAME",
    # Runtime configuration
    "RuntimeConfig",
    "ConfigReloader",
    "parse_env",
    # Credentials
    "AdminCredentialCipher",
    "AdminCredentialStore",
    "CredentialError",
    "CredentialNotSetError",
    "EncryptionKeyMissingError",
    "InvalidCredentialError",
    "generate_encryption_key",
    "ensure_env_file",
]
