"""
Route handlers for the SproutVault admin API.

API Endpoints:
    - POST /api/database/backup: Download a bundle of the live store
    - POST /api/database/restore: Restore from an uploaded bundle or raw store
    - POST /api/database/pre-migration-check: Check an upload without committing it
    - GET /api/health: Liveness check (no authentication)

Uploads are sent as the raw request body; the original filename goes in the
``filename`` query parameter and decides between bundle and legacy format.

Backup, restore and check calls against the same store are single-flight:
a second call while one is running gets 409 Conflict.
"""

from __future__ import annotations

import hmac
import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any

from sproutvault import __version__
from sproutvault.backup.errors import (
    BundleRejectedError,
    RestoreFailedError,
    SourceUnavailableError,
)
from sproutvault.backup.manager import BackupService, RestoreService
from sproutvault.storage.guard import StoreError

logger = logging.getLogger(__name__)


class OperationInProgressError(Exception):
    """Raised when another privileged operation holds the store."""

    pass


_operation_locks: dict[str, threading.Lock] = {}
_operation_locks_guard = threading.Lock()


@contextmanager
def operation_lock(key: str) -> Generator[None, None, None]:
    """
    Single-flight guard keyed by store identity.

    Raises:
        OperationInProgressError: If another operation holds the key.
    """
    with _operation_locks_guard:
        lock = _operation_locks.setdefault(key, threading.Lock())

    if not lock.acquire(blocking=False):
        raise OperationInProgressError(f"Another database operation is in progress for {key}")
    try:
        yield
    finally:
        lock.release()


class RouteContext:
    """
    Context object passed to route handlers.

    Attributes:
        backup_service: Service exporting bundles.
        restore_service: Service restoring and checking uploads.
        admin_token: Bearer token required for privileged routes.
        max_upload_bytes: Largest accepted request body.
    """

    def __init__(
        self,
        backup_service: BackupService,
        restore_service: RestoreService,
        admin_token: str = "",
        max_upload_bytes: int = 512 * 1024 * 1024,
    ) -> None:
        """Initialize route context."""
        self.backup_service = backup_service
        self.restore_service = restore_service
        self.admin_token = admin_token
        self.max_upload_bytes = max_upload_bytes

    @property
    def lock_key(self) -> str:
        return str(self.backup_service.guard.db_path.resolve())


@dataclass
class RouteResponse:
    """Response produced by a route handler."""

    status: HTTPStatus = HTTPStatus.OK
    payload: dict[str, Any] | None = None
    body: bytes | None = None
    content_type: str = "application/json; charset=utf-8"
    headers: dict[str, str] = field(default_factory=dict)


# Route handler type
RouteHandler = Callable[[RouteContext, dict[str, list[str]], bytes], RouteResponse]


def _error(status: HTTPStatus, message: str, **extra: Any) -> RouteResponse:
    payload: dict[str, Any] = {"success": False, "error": message}
    payload.update(extra)
    return RouteResponse(status=status, payload=payload)


def check_authorization(context: RouteContext, header: str | None) -> RouteResponse | None:
    """
    Check a request's Authorization header.

    Returns:
        An error response, or None if the caller is privileged.
    """
    if not context.admin_token:
        return _error(
            HTTPStatus.SERVICE_UNAVAILABLE,
            "Admin token is not configured; privileged operations are disabled",
        )

    scheme, _, token = (header or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return _error(HTTPStatus.UNAUTHORIZED, "Authentication required")

    if not hmac.compare_digest(token.strip().encode(), context.admin_token.encode()):
        return _error(HTTPStatus.UNAUTHORIZED, "Invalid admin token")

    return None


def _upload_name(query: dict[str, list[str]]) -> str:
    return query.get("filename", [""])[0]


def handle_backup(
    context: RouteContext, query: dict[str, list[str]], body: bytes
) -> RouteResponse:
    """
    Handle POST /api/database/backup.

    Returns the bundle as an attachment.
    """
    try:
        with operation_lock(context.lock_key):
            bundle = context.backup_service.export()
    except OperationInProgressError as e:
        return _error(HTTPStatus.CONFLICT, str(e))
    except SourceUnavailableError as e:
        logger.error("Backup failed: %s", e)
        return _error(HTTPStatus.INTERNAL_SERVER_ERROR, f"Failed to create backup: {e}")
    except StoreError as e:
        return _error(HTTPStatus.CONFLICT, str(e))

    return RouteResponse(
        body=bundle.data,
        content_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{bundle.filename}"'},
    )


def handle_restore(
    context: RouteContext, query: dict[str, list[str]], body: bytes
) -> RouteResponse:
    """
    Handle POST /api/database/restore.

    Returns:
        RestoreOutcome fields under "data".
    """
    if not body:
        return _error(HTTPStatus.BAD_REQUEST, "No file provided")

    try:
        with operation_lock(context.lock_key):
            outcome = context.restore_service.restore(body, _upload_name(query))
    except OperationInProgressError as e:
        return _error(HTTPStatus.CONFLICT, str(e))
    except BundleRejectedError as e:
        return _error(HTTPStatus.BAD_REQUEST, str(e))
    except RestoreFailedError as e:
        return _error(
            HTTPStatus.INTERNAL_SERVER_ERROR,
            str(e),
            storeBackup=str(e.store_backup) if e.store_backup else None,
            configBackup=str(e.config_backup) if e.config_backup else None,
        )

    data = outcome.to_dict()
    data.pop("success")
    return RouteResponse(payload={"success": True, "data": data})


def handle_pre_migration_check(
    context: RouteContext, query: dict[str, list[str]], body: bytes
) -> RouteResponse:
    """
    Handle POST /api/database/pre-migration-check.

    Returns:
        adminResetRequired, latestGeneration and isOlderThanBaseline under "data".
    """
    if not body:
        return _error(HTTPStatus.BAD_REQUEST, "No file provided")

    try:
        with operation_lock(context.lock_key):
            result = context.restore_service.pre_migration_check(body, _upload_name(query))
    except OperationInProgressError as e:
        return _error(HTTPStatus.CONFLICT, str(e))
    except BundleRejectedError as e:
        return _error(HTTPStatus.BAD_REQUEST, str(e))
    except Exception as e:
        logger.exception("Pre-migration check failed")
        return _error(
            HTTPStatus.INTERNAL_SERVER_ERROR,
            f"Failed to perform pre-migration check: {e}",
        )

    return RouteResponse(payload={"success": True, "data": result.to_dict()})


def handle_health(
    context: RouteContext, query: dict[str, list[str]], body: bytes
) -> RouteResponse:
    """Handle GET /api/health."""
    return RouteResponse(
        payload={
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(UTC).isoformat(),
            "store_present": context.backup_service.guard.exists(),
            "store_quiesced": context.backup_service.guard.is_quiesced,
        }
    )


# Route registry: (method, path) -> (handler, requires admin)
API_ROUTES: dict[tuple[str, str], tuple[RouteHandler, bool]] = {
    ("POST", "/api/database/backup"): (handle_backup, True),
    ("POST", "/api/database/restore"): (handle_restore, True),
    ("POST", "/api/database/pre-migration-check"): (handle_pre_migration_check, True),
    ("GET", "/api/health"): (handle_health, False),
}


def get_route(method: str, path: str) -> tuple[RouteHandler, bool] | None:
    """
    Get the handler for a method and path.

    Returns:
        (handler, requires_admin) or None if no route matches.
    """
    return API_ROUTES.get((method.upper(), path.rstrip("/") or "/"))


def list_routes() -> list[str]:
    """List all registered routes as 'METHOD path'."""
    return [f"{method} {path}" for method, path in API_ROUTES]
