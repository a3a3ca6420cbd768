"""
Command-line interface for SproutVault.

Provides commands for backing up and restoring the tracker store, checking
uploads against the credential baseline, setting the admin password, and
running or driving the admin HTTP server.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

from sproutvault import __version__
from sproutvault.config.credentials import (
    MIN_PASSWORD_LENGTH,
    AdminCredentialCipher,
    AdminCredentialStore,
    CredentialError,
    ensure_env_file,
)
from sproutvault.config.runtime import ConfigReloader, RuntimeConfig
from sproutvault.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    save_config,
)

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for SproutVault CLI."""
    parser = argparse.ArgumentParser(
        prog="sproutvault",
        description="Backup, restore and compatibility checks for a household tracker store",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"sproutvault {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.sproutvault/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show paths, store generation and credential state",
        description="Display configuration paths, the live store's generation and admin credential state.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize SproutVault configuration",
        description="Create the config directory, a default config.yaml and a .env with an encryption key.",
    )
    init_parser.set_defaults(func=cmd_init)

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Write a backup bundle of the live store",
        description="Package the live store and .env file into a ZIP bundle.",
    )
    backup_parser.add_argument(
        "--output",
        "-o",
        metavar="DIR",
        help="Output directory for the bundle (default: current directory)",
    )
    backup_parser.set_defaults(func=cmd_backup)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore the live store from a bundle",
        description="Restore from a .zip bundle or a legacy raw store file.",
    )
    restore_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to bundle (.zip) or raw store file",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # check command
    check_parser = subparsers.add_parser(
        "check",
        help="Check an upload against the credential baseline",
        description="Run the compatibility gate on a bundle without restoring it.",
    )
    check_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to bundle (.zip) or raw store file",
    )
    check_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    check_parser.set_defaults(func=cmd_check)

    # set-admin-password command
    password_parser = subparsers.add_parser(
        "set-admin-password",
        help="Set the admin password in the live store",
        description="Prompt for a new admin password and store it encrypted with ENC_HASH.",
    )
    password_parser.set_defaults(func=cmd_set_admin_password)

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the admin HTTP server",
        description="Expose backup, restore and pre-migration checks over HTTP.",
    )
    serve_parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: from config)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: from config)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # remote command
    remote_parser = subparsers.add_parser(
        "remote",
        help="Drive a running admin server",
        description="Back up, restore or check through a running SproutVault server.",
    )
    remote_parser.add_argument(
        "action",
        choices=["backup", "restore", "check", "health"],
        help="Operation to run on the server",
    )
    remote_parser.add_argument(
        "backup_file",
        metavar="FILE",
        nargs="?",
        help="Bundle to upload (restore and check)",
    )
    remote_parser.add_argument(
        "--url",
        default=None,
        help="Server URL (default: from config)",
    )
    remote_parser.add_argument(
        "--token",
        default=None,
        help="Admin token (default: from config)",
    )
    remote_parser.add_argument(
        "--output",
        "-o",
        metavar="DIR",
        help="Output directory for downloaded bundles (default: current directory)",
    )
    remote_parser.set_defaults(func=cmd_remote)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def _build_services(settings: Settings) -> dict[str, Any]:
    """Wire the store guard, runtime configuration and services together."""
    from sproutvault.backup import BackupService, RestoreService
    from sproutvault.storage import StoreGuard

    guard = StoreGuard(settings.store_path)
    runtime_config = RuntimeConfig.from_file(settings.env_path)
    return {
        "guard": guard,
        "runtime_config": runtime_config,
        "backup": BackupService(guard, settings.env_path),
        "restore": RestoreService(guard, settings.env_path, ConfigReloader(runtime_config)),
    }


def _print_gate_result(result: dict[str, Any]) -> None:
    output(f"  Latest generation: {result.get('latestGeneration') or 'none (new store)'}")
    # Restore results carry no baseline comparison
    if "isOlderThanBaseline" in result:
        output(f"  Older than baseline: {'Yes' if result['isOlderThanBaseline'] else 'No'}")
    output(f"  Admin reset required: {'Yes' if result.get('adminResetRequired') else 'No'}")


def cmd_info(args: argparse.Namespace) -> int:
    """Show paths, store generation and credential state."""
    from sproutvault.backup import BASELINE_GENERATION

    settings = _load_settings(args)
    services = _build_services(settings)
    guard = services["guard"]

    info: dict[str, Any] = {
        "version": __version__,
        "config_file": str(Path(args.config) if args.config else get_config_path()),
        "store_path": str(settings.store_path),
        "env_path": str(settings.env_path),
        "store_present": guard.exists(),
        "env_present": settings.env_path.exists(),
        "encryption_key_set": bool(services["runtime_config"].get("ENC_HASH")),
        "baseline_generation": BASELINE_GENERATION,
        "latest_generation": None,
        "admin_reset_required": None,
        "admin_credential_set": None,
        "admin_token_configured": bool(settings.server.admin_token),
    }

    if guard.exists():
        try:
            result = services["restore"].check_live()
            info["latest_generation"] = result.latest_generation
            info["admin_reset_required"] = result.requires_credential_reset
        except Exception as e:
            info["latest_generation"] = f"error: {e}"

        store = AdminCredentialStore(guard, AdminCredentialCipher(services["runtime_config"]))
        try:
            info["admin_credential_set"] = store.is_set()
        except CredentialError as e:
            info["admin_credential_set"] = f"error: {e}"
    guard.close()

    if args.json:
        output(json.dumps(info, indent=2, default=str), force=True)
        return 0

    output("SproutVault Information")
    output("=" * 60)
    output()
    output(f"Version: {info['version']}")
    output()
    output("Paths:")
    output(f"  Config file: {info['config_file']}")
    output(f"  Store: {info['store_path']} ({'present' if info['store_present'] else 'missing'})")
    output(f"  Environment: {info['env_path']} ({'present' if info['env_present'] else 'missing'})")
    output()
    output("Status:")
    output(f"  Encryption key (ENC_HASH): {'set' if info['encryption_key_set'] else 'not set'}")
    output(f"  Admin token: {'configured' if info['admin_token_configured'] else 'not configured'}")
    output(f"  Baseline generation: {info['baseline_generation']}")
    if info["store_present"]:
        output(f"  Latest generation: {info['latest_generation'] or 'none (new store)'}")
        output(f"  Admin credential set: {info['admin_credential_set']}")

    return 0


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize SproutVault configuration."""
    output("SproutVault Initialization")
    output("=" * 50)
    output()

    config_path = Path(args.config) if args.config else get_config_path()

    if config_path.exists():
        output(f"Configuration file already exists: {config_path}")
        settings = load_config(config_path)
    else:
        settings = Settings()
        save_config(settings, config_path)
        output(f"Configuration file created: {config_path}")

    settings.store_path.parent.mkdir(parents=True, exist_ok=True)
    output(f"Store directory: {settings.store_path.parent}")

    if ensure_env_file(settings.env_path):
        output(f"Encryption key generated in: {settings.env_path}")
    else:
        output(f"Encryption key already present in: {settings.env_path}")

    output()
    output("Initialization complete.")
    output()
    output("Next steps:")
    output(f"  1. Edit {config_path} to set store.path and server.admin_token")
    output("  2. Run 'sproutvault info' to check the live store")
    output("  3. Run 'sproutvault backup' to create your first bundle")
    output()

    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Write a backup bundle of the live store."""
    from sproutvault.backup import BackupError
    from sproutvault.storage import StoreError

    settings = _load_settings(args)
    services = _build_services(settings)

    output_path = Path(args.output) if args.output else Path.cwd()

    output("SproutVault Backup")
    output("=" * 50)
    output()
    output(f"Store: {settings.store_path}")
    output(f"Environment: {settings.env_path}")
    output(f"Output directory: {output_path}")
    output()

    try:
        backup_path = services["backup"].write_to(output_path)
    except (BackupError, StoreError) as e:
        output_error(f"Backup failed: {e}")
        return 1
    finally:
        services["guard"].close()

    output("Backup created successfully!")
    output()
    output(f"  File: {backup_path}")
    output(f"  Size: {backup_path.stat().st_size:,} bytes")
    output()
    output("To restore from this backup, run:")
    output(f"  sproutvault restore {backup_path}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore the live store from a bundle or legacy store file."""
    from sproutvault.backup import BundleRejectedError, RestoreFailedError

    backup_path = Path(args.backup_file)
    if not backup_path.is_file():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    settings = _load_settings(args)
    services = _build_services(settings)

    output("SproutVault Restore")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output(f"Store: {settings.store_path}")
    output()

    upload = backup_path.read_bytes()

    # Validate before asking, so a bad file never prompts
    try:
        services["restore"].validate(upload, backup_path.name)
    except BundleRejectedError as e:
        output_error(f"Backup rejected: {e}")
        return 1

    if not args.force:
        output("WARNING: This will overwrite the live store.")
        output("(Dated backups of the current files will be created first)")
        output()
        response = input("Proceed with restore? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Restore cancelled.")
            return 0

    output()
    output("Restoring...")
    try:
        outcome = services["restore"].restore(upload, backup_path.name)
    except BundleRejectedError as e:
        output_error(f"Backup rejected: {e}")
        return 1
    except RestoreFailedError as e:
        output_error(str(e))
        return 1
    finally:
        services["guard"].close()

    output()
    output("Restore completed successfully!")
    output()
    output(f"  Format: {'legacy store file' if outcome.legacy_format else 'bundle'}")
    output(f"  Latest generation: {outcome.latest_generation or 'none (new store)'}")
    if outcome.store_backup:
        output(f"  Previous store backed up to: {outcome.store_backup}")
    if outcome.config_backup:
        output(f"  Previous configuration backed up to: {outcome.config_backup}")
    if outcome.config_keys_applied:
        output(f"  Configuration values reloaded: {outcome.config_keys_applied}")
    if outcome.admin_reset_required:
        output()
        output("WARNING: The restored store predates the credential baseline.")
        output("Admin credentials were cleared. Run 'sproutvault set-admin-password'.")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Run the compatibility gate on an upload without restoring it."""
    from sproutvault.backup import BundleRejectedError

    backup_path = Path(args.backup_file)
    if not backup_path.is_file():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    settings = _load_settings(args)
    services = _build_services(settings)

    try:
        result = services["restore"].pre_migration_check(
            backup_path.read_bytes(), backup_path.name
        )
    except BundleRejectedError as e:
        output_error(f"Backup rejected: {e}")
        return 1

    if args.json:
        output(json.dumps(result.to_dict(), indent=2), force=True)
        return 0

    output("Pre-migration Check")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    _print_gate_result(result.to_dict())
    return 0


def cmd_set_admin_password(args: argparse.Namespace) -> int:
    """Prompt for and store a new admin password."""
    settings = _load_settings(args)
    services = _build_services(settings)

    if not services["guard"].exists():
        output_error(f"Error: Store not found: {settings.store_path}")
        return 1

    output(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    while True:
        password = getpass.getpass("New admin password: ")
        if len(password) < MIN_PASSWORD_LENGTH:
            output_error(f"Error: Password must be at least {MIN_PASSWORD_LENGTH} characters.")
            continue

        confirm = getpass.getpass("Confirm admin password: ")
        if password != confirm:
            output_error("Error: Passwords do not match.")
            continue

        break

    store = AdminCredentialStore(
        services["guard"], AdminCredentialCipher(services["runtime_config"])
    )
    try:
        store.set_password(password)
    except CredentialError as e:
        output_error(f"Error: {e}")
        return 1
    finally:
        services["guard"].close()

    output("Admin password updated.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the admin HTTP server."""
    from sproutvault.server import AdminServer, RouteContext, find_available_port

    settings = _load_settings(args)
    services = _build_services(settings)

    host = args.host or settings.server.host
    requested_port = args.port or settings.server.port

    try:
        port = find_available_port(requested_port)
        if port != requested_port:
            output(f"Port {requested_port} is in use, using port {port}")
    except RuntimeError as e:
        output_error(f"Error: {e}")
        return 1

    if not settings.server.admin_token:
        logger.warning(
            "No admin token configured; privileged requests will be refused. "
            "Set server.admin_token or SPROUTVAULT_ADMIN_TOKEN."
        )

    context = RouteContext(
        backup_service=services["backup"],
        restore_service=services["restore"],
        admin_token=settings.server.admin_token,
        max_upload_bytes=settings.server.max_upload_mb * 1024 * 1024,
    )
    server = AdminServer(context, host=host, port=port)

    output("SproutVault Admin Server")
    output("=" * 50)
    output()
    output(f"Store: {settings.store_path}")
    output(f"Listening at {server.get_url()}")
    output()
    output("Press Ctrl+C to stop the server.")
    output()

    try:
        if not server.start(blocking=True):
            output_error("Error: Failed to start server")
            return 1
    except KeyboardInterrupt:
        output()
        output("Shutting down server...")
        server.stop()
    finally:
        services["guard"].close()

    return 0


def cmd_remote(args: argparse.Namespace) -> int:
    """Drive a running admin server."""
    from sproutvault.client import AdminClient, ClientError

    settings = _load_settings(args)
    url = args.url or f"http://{settings.server.host}:{settings.server.port}"
    token = args.token or settings.server.admin_token

    if args.action in ("restore", "check") and not args.backup_file:
        output_error(f"Error: 'remote {args.action}' requires a FILE argument")
        return 1

    client = AdminClient(url, token=token)
    try:
        if args.action == "health":
            output(json.dumps(client.health(), indent=2), force=True)
        elif args.action == "backup":
            output_dir = Path(args.output) if args.output else Path.cwd()
            path = client.download_backup(output_dir)
            output(f"Backup downloaded: {path}")
        elif args.action == "restore":
            data = client.restore(Path(args.backup_file))
            output("Restore completed successfully!")
            _print_gate_result(data)
            if data.get("storeBackup"):
                output(f"  Previous store backed up to: {data['storeBackup']}")
        else:
            data = client.pre_migration_check(Path(args.backup_file))
            output("Pre-migration Check")
            _print_gate_result(data)
    except ClientError as e:
        output_error(f"Server error: {e}")
        return 1
    finally:
        client.close()

    return 0


def main() -> NoReturn:
    """Main entry point for SproutVault CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
