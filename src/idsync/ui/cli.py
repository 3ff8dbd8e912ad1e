from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from threading import Event
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from idsync.app import (
    export_status,
    initialise_database,
    load_configuration,
    process_deletions,
    retry_failed_exports,
    run_profile,
    sweep_references,
)
from idsync.config import ConfigurationError, configure_logging
from idsync.domain.model import ActivityStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)

_cancel_event = Event()


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise identities between systems")
    parser.add_argument(
        "--database-uri",
        type=str,
        help="SQLAlchemy database URI (defaults to DATABASE_URI or the local data dir)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create or migrate the database schema")

    load_config = subparsers.add_parser(
        "load-config", help="Validate and store a JSON engine configuration"
    )
    load_config.add_argument("path", type=Path, help="Path to the configuration file")

    run = subparsers.add_parser("run", help="Execute a run profile of a connected system")
    run.add_argument("system", type=str, help="Connected system name")
    run.add_argument("profile", type=str, help="Run profile name")

    exports = subparsers.add_parser("exports", help="Pending export commands")
    exports_sub = exports.add_subparsers(dest="exports_command", required=True)
    exports_status = exports_sub.add_parser("status", help="Count pending exports by status")
    exports_status.add_argument("system", type=str, help="Connected system name")
    exports_retry = exports_sub.add_parser(
        "retry", help="Re-queue exports that exhausted their retries"
    )
    exports_retry.add_argument("system", type=str, help="Connected system name")

    references = subparsers.add_parser("references", help="Deferred reference commands")
    references_sub = references.add_subparsers(dest="references_command", required=True)
    sweep = references_sub.add_parser("sweep", help="Retry unresolved deferred references")
    sweep.add_argument(
        "system",
        type=str,
        nargs="?",
        help="Only sweep references targeting this connected system",
    )

    deletions = subparsers.add_parser("deletions", help="Metaverse deletion commands")
    deletions_sub = deletions.add_subparsers(dest="deletions_command", required=True)
    deletions_sub.add_parser("process", help="Delete metaverse objects whose grace period ended")

    return parser.parse_args(list(argv))


def _run_command(args: argparse.Namespace) -> int:
    initialise_database(database_uri=args.database_uri)

    if args.command == "init-db":
        log.info("Database schema is up to date")
    elif args.command == "load-config":
        config = load_configuration(args.path)
        log.info(
            "Loaded %d connected system(s), %d metaverse type(s), %d sync rule(s)",
            len(config.connected_systems),
            len(config.metaverse_types),
            len(config.sync_rules),
        )
    elif args.command == "run":
        activity = run_profile(args.system, args.profile, cancel_event=_cancel_event)
        if activity.status == ActivityStatus.FAILED:
            return 1
    elif args.command == "exports" and args.exports_command == "status":
        report = export_status(args.system)
        log.info("%s: %d pending export(s)", report.system_name, report.total)
        for status, count in sorted(report.counts.items()):
            log.info("  %s: %d", status, count)
    elif args.command == "exports" and args.exports_command == "retry":
        reset = retry_failed_exports(args.system)
        log.info("Re-queued %d export(s) for %s", reset, args.system)
    elif args.command == "references" and args.references_command == "sweep":
        sweep_references(args.system)
    elif args.command == "deletions" and args.deletions_command == "process":
        deleted = process_deletions()
        log.info("Deleted %d metaverse object(s)", deleted)
    else:
        raise ValueError(f"Unsupported command: {args.command}")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
    try:
        exit_code = _run_command(parsed_args)
    except (ValueError, ConfigurationError):
        log.exception("Invalid request")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)
    sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Cancel the running task on the first Ctrl+C, quit on the second."""
    if _cancel_event.is_set():
        log.info("Closed by user (Ctrl+C)")
        sys.exit(0)
    log.info("Cancelling; press Ctrl+C again to quit immediately")
    _cancel_event.set()


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
