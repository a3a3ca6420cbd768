"""
Admin HTTP boundary for SproutVault.

Exposes backup, restore and pre-migration checks over HTTP using Python's
built-in http.server. Privileged routes require a bearer admin token.

Usage:
    from sproutvault.server import AdminServer, RouteContext

    context = RouteContext(backup_service, restore_service, admin_token="secret")
    server = AdminServer(context, port=8080)
    server.start(blocking=True)
"""

from sproutvault.server.routes import (
    API_ROUTES,
    OperationInProgressError,
    RouteContext,
    RouteResponse,
    check_authorization,
    get_route,
    list_routes,
    operation_lock,
)
from sproutvault.server.server import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    AdminRequestHandler,
    AdminServer,
    find_available_port,
)

__all__ = [
    "AdminServer",
    "AdminRequestHandler",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "find_available_port",
    "API_ROUTES",
    "RouteContext",
    "RouteResponse",
    "OperationInProgressError",
    "check_authorization",
    "get_route",
    "list_routes",
    "operation_lock",
]
