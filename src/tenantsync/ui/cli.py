from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from tenantsync.app import (
    build_synchronizer,
    probe_directory_source,
    sync_status,
    synchronize_tenant,
)
from tenantsync.config import configure_logging
from tenantsync.domain.model import DEFAULT_TENANT

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Synchronise directory sources into the identity store"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Synchronise one tenant")
    sync.add_argument(
        "--tenant",
        type=str,
        default=DEFAULT_TENANT,
        help="Tenant to synchronise (default: %(default)s)",
    )
    sync.add_argument(
        "--full",
        action="store_true",
        help="Full synchronisation including removal of authorities gone from the directory",
    )
    sync.add_argument(
        "--force",
        action="store_true",
        help="Ignore stored watermarks and read every entry",
    )
    sync.add_argument(
        "--wait",
        action="store_true",
        help="Wait for the tenant lock instead of giving up when another run holds it",
    )

    probe = subparsers.add_parser("probe", help="Read one source without changing anything")
    probe.add_argument("--tenant", type=str, default=DEFAULT_TENANT)
    probe.add_argument("--source", type=str, required=True, help="Source id to probe")

    status = subparsers.add_parser("status", help="Show the last run of a tenant")
    status.add_argument("--tenant", type=str, default=DEFAULT_TENANT)

    person = subparsers.add_parser(
        "ensure-person", help="Make sure a person exists, as on first login"
    )
    person.add_argument("--tenant", type=str, default=DEFAULT_TENANT)
    person.add_argument("--user", type=str, required=True, help="User name to look up")

    return parser.parse_args(list(argv))


def _run(parsed_args: argparse.Namespace) -> None:
    if parsed_args.command == "sync":
        result = synchronize_tenant(
            parsed_args.tenant,
            full=parsed_args.full,
            force=parsed_args.force,
            wait_for_lock=parsed_args.wait,
        )
        if not result.lock_acquired:
            log.warning("Tenant %s is being synchronised elsewhere", parsed_args.tenant)
        for summary in result.sources:
            log.info("%s: %s", summary.source_id, summary.describe())
    elif parsed_args.command == "probe":
        diagnostic = probe_directory_source(parsed_args.tenant, parsed_args.source)
        log.info(
            "Source %s: active=%s, groups=%s, persons=%s, groups synced up to %s, "
            "persons synced up to %s",
            diagnostic.source_id,
            diagnostic.active,
            len(diagnostic.group_names),
            len(diagnostic.person_names),
            diagnostic.group_last_synced,
            diagnostic.person_last_synced,
        )
    elif parsed_args.command == "status":
        for checkpoint in sync_status(parsed_args.tenant):
            log.info(
                "%s: status=%s, started=%s, ended=%s, summary=%s, error=%s",
                checkpoint.source_id or f"tenant {checkpoint.tenant}",
                checkpoint.status,
                checkpoint.start_time,
                checkpoint.end_time,
                checkpoint.summary,
                checkpoint.last_error,
            )
    elif parsed_args.command == "ensure-person":
        exists = build_synchronizer().create_missing_person(parsed_args.tenant, parsed_args.user)
        log.info("Person %s exists: %s", parsed_args.user, exists)
    else:
        raise ValueError(f"Unsupported command: {parsed_args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args: argparse.Namespace
    try:
        parsed_args = _parse_args(args_list)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        _run(parsed_args)
    except Exception:
        log.exception("Fatal error during sync")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
