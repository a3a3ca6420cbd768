"""
Live application configuration for SproutVault.

The household application reads its configuration from a .env file of
KEY=VALUE lines. This module parses that format and holds the values in a
single injectable RuntimeConfig service, so a restored .env can be merged
into the running process without a restart.

Values merged after a restore are visible to every subsequent get(); values
already copied out by other components are not updated retroactively.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

_QUOTES = ('"', "'")


def parse_env(text: str) -> dict[str, str]:
    """
    Parse .env text into a key/value mapping.

    Rules:
        - Blank lines and lines starting with '#' (after trimming) are skipped.
        - The first '=' separates key from value; lines without '=' are skipped.
        - Keys and values are trimmed; lines with an empty key are skipped.
        - A value wrapped in matching single or double quotes loses the
          quotes, and escaped quotes (\\" and \\') inside it are unescaped.
        - Duplicate keys: the last occurrence wins.

    Args:
        text: Contents of a .env file.

    Returns:
        Dictionary of parsed values.
    """
    values: dict[str, str] = {}

    # Only "\n" ends a line; a trailing "\r" is removed by strip()
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue

        key, sep, value = trimmed.partition("=")
        if not sep:
            continue

        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
            value = value[1:-1].replace('\\"', '"').replace("\\'", "'")

        values[key] = value

    return values


class RuntimeConfig:
    """
    Process-wide application configuration service.

    Every component that needs application configuration takes a
    RuntimeConfig instance explicitly; ConfigReloader is the only writer
    after initialization.

    Example:
        config = RuntimeConfig.from_file(Path(".env"))
        key = config.get("ENC_HASH")
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Path) -> RuntimeConfig:
        """
        Initialize configuration from a .env file.

        A missing file yields an empty configuration.
        """
        config = cls()
        if path.exists():
            config.merge(parse_env(path.read_text(encoding="utf-8")))
            logger.debug("Loaded %d configuration values from %s", len(config), path)
        return config

    def merge(self, values: Mapping[str, str]) -> int:
        """Overwrite existing keys with the given values. Returns the count merged."""
        with self._lock:
            for key, value in values.items():
                self._values[key] = value
            return len(values)

    def get(self, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._values.get(key, default)

    def as_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self.as_dict())


class ConfigReloader:
    """Applies parsed .env values to a RuntimeConfig."""

    def __init__(self, runtime_config: RuntimeConfig) -> None:
        self.runtime_config = runtime_config

    def apply(self, values: Mapping[str, str]) -> int:
        """
        Write every pair into the runtime configuration.

        Existing keys are overwritten unconditionally. Only pass values that
        came from a trusted export.

        Returns:
            Number of values applied.
        """
        count = self.runtime_config.merge(values)
        logger.info(f"Reloaded {count} configuration values")
        return count

    def reload_file(self, path: Path) -> int:
        """
        Parse a .env file and apply it.

        Returns:
            Number of values applied, 0 if the file does not exist.
        """
        if not path.exists():
            logger.warning(f"Configuration file not found at {path}, skipping reload")
            return 0

        return self.apply(parse_env(path.read_text(encoding="utf-8")))
