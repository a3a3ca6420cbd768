"""
HTTP client for a running SproutVault admin server.

Wraps the admin API in a requests.Session with the bearer token attached.

Example:
    client = AdminClient("http://127.0.0.1:8080", token="secret")
    path = client.download_backup(Path("./backups"))
    result = client.restore(path)
    if result["adminResetRequired"]:
        print("Set a new admin password")
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300

_FILENAME_PATTERN = re.compile(r'filename="?([^";]+)"?')


class ClientError(Exception):
    """
    Raised when an admin API call fails.

    Attributes:
        status_code: HTTP status code, if a response was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ClientError):
    """Raised when the server rejects the admin token."""

    pass


class OperationInProgressError(ClientError):
    """Raised when another database operation is running on the server."""

    pass


class AdminClient:
    """
    Client for the admin API.

    Attributes:
        base_url: Server root URL, without trailing slash.
        timeout: Request timeout in seconds.
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if token:
            self._session.headers.update({"Authorization": f"Bearer {token}"})

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        data: bytes | None = None,
    ) -> requests.Response:
        """
        Send a request and map error statuses to exceptions.

        Raises:
            AuthenticationError: On 401.
            OperationInProgressError: On 409.
            ClientError: On any other failure.
        """
        url = f"{self.base_url}{endpoint}"
        headers = {"Content-Type": "application/octet-stream"} if data is not None else None

        start_time = time.time()
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise ClientError(f"Failed to connect to {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            raise ClientError(f"Request to {self.base_url} timed out: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            "API call: %s %s -> %d (%.0fms)", method, endpoint, response.status_code, duration_ms
        )

        if response.status_code < 400:
            return response

        message = _error_message(response)
        if response.status_code == 401:
            raise AuthenticationError(message, status_code=401)
        if response.status_code == 409:
            raise OperationInProgressError(message, status_code=409)
        raise ClientError(message, status_code=response.status_code)

    def _upload(self, endpoint: str, path: Path) -> dict[str, Any]:
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ClientError(f"Cannot read {path}: {e}") from e

        response = self._request("POST", endpoint, params={"filename": path.name}, data=data)
        return response.json().get("data", {})

    def download_backup(self, output_dir: Path) -> Path:
        """
        Download a bundle of the live store into output_dir.

        Returns:
            Path of the saved bundle.
        """
        response = self._request("POST", "/api/database/backup")

        match = _FILENAME_PATTERN.search(response.headers.get("Content-Disposition", ""))
        filename = Path(match.group(1)).name if match else "sprout-track-backup.zip"

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        backup_path = output_dir / filename
        backup_path.write_bytes(response.content)

        logger.info(f"Downloaded backup to {backup_path} ({len(response.content):,} bytes)")
        return backup_path

    def restore(self, path: Path) -> dict[str, Any]:
        """Upload a bundle or legacy store file and restore it on the server."""
        return self._upload("/api/database/restore", path)

    def pre_migration_check(self, path: Path) -> dict[str, Any]:
        """Upload a bundle or legacy store file and check it without restoring."""
        return self._upload("/api/database/pre-migration-check", path)

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/api/health").json()

    def close(self) -> None:
        self._session.close()


def _error_message(response: requests.Response) -> str:
    try:
        error = response.json().get("error")
    except ValueError:
        error = None
    return error or f"HTTP {response.status_code}: {response.reason}"
