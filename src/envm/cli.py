"""
Command-line interface for envm.

Provides commands to read and change variables, edit PATH-like lists and
manage snapshots. Results are printed as JSON.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, NoReturn

from envm import __version__
from envm.adapters.base import Scope
from envm.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
)
from envm.manager import EnvManager

# Set up logging
logger = logging.getLogger(__name__)

SCOPES = [scope.value for scope in Scope]
PATH_OPERATIONS = ["get", "prepend", "append", "remove", "sort", "unique"]


def output(data: Any) -> None:
    """Print a value: strings as-is, None as an empty line, anything else as JSON."""
    if data is None:
        print("")
    elif isinstance(data, str):
        print(data)
    else:
        print(json.dumps(data, indent=2, default=str))


def output_error(message: str) -> None:
    """Print an error message to stderr."""
    print(message, file=sys.stderr)


def _add_mutation_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--scope",
        choices=SCOPES,
        default="session",
        help="Target scope (default: session)",
    )
    parser.add_argument(
        "--backup",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Snapshot the medium before writing (default: from config)",
    )
    parser.add_argument(
        "--verify",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Read the variable back after writing (default: from config)",
    )
    parser.add_argument(
        "--rollback",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Restore the snapshot when verification fails (default: from config)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing anything",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for envm CLI."""
    parser = argparse.ArgumentParser(
        prog="envm",
        description="Cross-platform environment variable manager",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"envm {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.envm/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # get command
    get_parser = subparsers.add_parser(
        "get",
        help="Print a variable",
        description="Print a variable, expanded unless --raw is given.",
    )
    get_parser.add_argument("name", help="Variable name")
    get_parser.add_argument("--scope", choices=SCOPES, default="session")
    get_parser.add_argument("--raw", action="store_true", help="Do not expand references")
    get_parser.add_argument(
        "--across-scopes",
        action="store_true",
        help="Resolve references missing from the environment in user/system scope",
    )
    get_parser.set_defaults(func=cmd_get)

    # set command
    set_parser = subparsers.add_parser(
        "set",
        help="Set a variable",
        description="Set a variable, with backup, verification and rollback.",
    )
    set_parser.add_argument("name", help="Variable name")
    set_parser.add_argument("value", help="New value")
    _add_mutation_options(set_parser)
    set_parser.set_defaults(func=cmd_set)

    # unset command
    unset_parser = subparsers.add_parser(
        "unset",
        help="Remove a variable",
        description="Remove a variable, with backup, verification and rollback.",
    )
    unset_parser.add_argument("name", help="Variable name")
    _add_mutation_options(unset_parser)
    unset_parser.set_defaults(func=cmd_unset)

    # path command
    path_parser = subparsers.add_parser(
        "path",
        help="Edit a PATH-like variable",
        description="Read or edit a delimiter separated list such as PATH.",
    )
    path_parser.add_argument("operation", choices=PATH_OPERATIONS)
    path_parser.add_argument("--name", default="PATH", help="Variable name (default: PATH)")
    path_parser.add_argument("--scope", choices=SCOPES, default="session")
    path_parser.add_argument(
        "--values",
        default="",
        help="Segments to add or remove, separated by the platform delimiter",
    )
    path_parser.add_argument("--raw", action="store_true", help="Do not expand (get only)")
    path_parser.add_argument("--unique", action="store_true", help="Drop duplicate segments")
    path_parser.add_argument(
        "--validate",
        action="store_true",
        help="Reject empty segments and segments with quotes or null bytes",
    )
    path_parser.set_defaults(func=cmd_path)

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Manage snapshots",
        description="List, restore or purge snapshots taken before mutations.",
    )
    backup_subparsers = backup_parser.add_subparsers(
        dest="backup_command",
        metavar="<action>",
    )

    backup_list_parser = backup_subparsers.add_parser("list", help="List snapshots")
    backup_list_parser.add_argument("--scope", choices=SCOPES, default=None)

    backup_restore_parser = backup_subparsers.add_parser(
        "restore",
        help="Restore a snapshot by id",
    )
    backup_restore_parser.add_argument("backup_id", help="Snapshot file name")

    backup_purge_parser = backup_subparsers.add_parser(
        "purge",
        help="Delete snapshots outside the retention policy",
    )
    backup_purge_parser.add_argument("--max-per-scope", type=int, default=None)
    backup_purge_parser.add_argument("--max-age-days", type=float, default=None)

    backup_parser.set_defaults(func=cmd_backup)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show platform, media and backup locations",
    )
    info_parser.set_defaults(func=cmd_info)

    return parser


def setup_logging(verbose: int, quiet: bool, default_level: str = "WARNING") -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.ERROR
    elif verbose == 0:
        level = getattr(logging, default_level, logging.WARNING)
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def cmd_get(args: argparse.Namespace, manager: EnvManager) -> int:
    """Print a variable."""
    if args.raw:
        output(manager.get_raw(args.name, args.scope))
    else:
        output(
            manager.get_expanded(
                args.name,
                args.scope,
                expand_across_scopes=args.across_scopes,
            )
        )
    return 0


def cmd_set(args: argparse.Namespace, manager: EnvManager) -> int:
    """Set a variable."""
    if args.dry_run:
        output(
            {
                "ok": True,
                "dry_run": True,
                "scope": args.scope,
                "name": args.name,
                "previous": manager.get_raw(args.name, args.scope),
                "next": args.value,
            }
        )
        return 0

    result = manager.set(
        args.name,
        args.value,
        args.scope,
        backup=args.backup,
        verify=args.verify,
        rollback_on_fail=args.rollback,
    )
    output(result.to_dict())
    return 0 if result.ok else 1


def cmd_unset(args: argparse.Namespace, manager: EnvManager) -> int:
    """Remove a variable."""
    if args.dry_run:
        output(
            {
                "ok": True,
                "dry_run": True,
                "scope": args.scope,
                "name": args.name,
                "previous": manager.get_raw(args.name, args.scope),
                "next": None,
            }
        )
        return 0

    result = manager.unset(
        args.name,
        args.scope,
        backup=args.backup,
        verify=args.verify,
        rollback_on_fail=args.rollback,
    )
    output(result.to_dict())
    return 0 if result.ok else 1


def cmd_path(args: argparse.Namespace, manager: EnvManager) -> int:
    """Read or edit a PATH-like variable."""
    operation = args.operation
    if operation == "get":
        output(manager.path_get(args.name, args.scope, raw=args.raw))
        return 0

    values = [v for v in args.values.split(manager.delimiter) if v] if args.values else []
    if operation in ("prepend", "append", "remove") and not values:
        output_error(f"Error: path {operation} requires --values")
        return 1

    if operation == "prepend":
        result = manager.path_prepend(
            values, args.name, args.scope, unique=args.unique, validate=args.validate
        )
    elif operation == "append":
        result = manager.path_append(
            values, args.name, args.scope, unique=args.unique, validate=args.validate
        )
    elif operation == "remove":
        result = manager.path_remove(values, args.name, args.scope)
    elif operation == "sort":
        result = manager.path_sort(args.name, args.scope)
    else:
        result = manager.path_unique(args.name, args.scope)

    output(result.to_dict())
    return 0 if result.ok else 1


def cmd_backup(args: argparse.Namespace, manager: EnvManager) -> int:
    """List, restore or purge snapshots."""
    action = getattr(args, "backup_command", None)

    if action == "list":
        output([record.to_dict() for record in manager.list_backup_records(args.scope)])
        return 0

    if action == "restore":
        restored = manager.restore_backup(args.backup_id)
        output({"ok": restored, "id": args.backup_id})
        return 0 if restored else 1

    if action == "purge":
        deleted = manager.purge_backups(args.max_per_scope, args.max_age_days)
        output({"deleted": deleted, "dir": str(manager.get_backup_dir())})
        return 0

    output_error("Error: backup requires an action: list, restore or purge")
    return 1


def cmd_info(args: argparse.Namespace, manager: EnvManager) -> int:
    """Show platform, media and backup locations."""
    media = {}
    for scope in (Scope.USER, Scope.SYSTEM):
        media[scope.value] = manager.adapter.describe_medium(scope)

    output(
        {
            "version": __version__,
            "platform": manager.platform,
            "delimiter": manager.delimiter,
            "config": str(Path(args.config) if args.config else get_config_path()),
            "backup_dir": str(manager.get_backup_dir()),
            "retention": {
                "max_per_scope": manager.retention.max_per_scope,
                "max_age_days": manager.retention.max_age_days,
            },
            "media": media,
        }
    )
    return 0


def _purge_on_exit(manager: EnvManager, settings: Settings) -> None:
    if not settings.backup.purge_on_exit:
        return
    try:
        manager.purge_backups()
    except OSError as e:
        logger.warning(f"Backup purge failed: {e}")


def _handle_sigterm(signum: int, frame: Any) -> None:
    raise SystemExit(143)


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for envm CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        config_path = Path(args.config) if args.config else None
        settings = load_config(config_path)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)

    setup_logging(args.verbose, args.quiet, settings.log_level)
    manager = EnvManager.from_settings(settings)

    signal.signal(signal.SIGTERM, _handle_sigterm)

    exit_code = 1
    try:
        exit_code = args.func(args, manager)
    except KeyboardInterrupt:
        output_error("\nOperation cancelled.")
        exit_code = 130
    except ValueError as e:
        output_error(f"Error: {e}")
        exit_code = 1
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        exit_code = 1
    finally:
        # Runs for SystemExit from SIGTERM as well
        _purge_on_exit(manager, settings)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
