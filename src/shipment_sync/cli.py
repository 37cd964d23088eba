"""Command-line interface for the shipment synchroniser."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import Settings
from .runner import run_pull, run_push, run_reconcile, run_sweep


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", dest="database_path", help="Local SQLite database path")
    common.add_argument("--user", dest="user_id", help="Signed-in cloud user id")
    common.add_argument(
        "--credentials",
        dest="credentials_path",
        help="Firebase service-account JSON (defaults to application credentials)",
    )
    common.add_argument(
        "--offline",
        action="store_true",
        default=None,
        help="Never contact the cloud store",
    )
    common.add_argument("--output", help="Optional JSON output path")
    common.add_argument("--log-level", dest="log_level", help="Logging level, e.g. DEBUG")

    parser = argparse.ArgumentParser(
        description="Reconcile shipments between the local database and the cloud"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    reconcile = commands.add_parser(
        "reconcile", parents=[common], help="Apply a workbook submission to both stores"
    )
    reconcile.add_argument(
        "--workbook",
        required=True,
        help="Excel workbook with shipment, boxes and products worksheets",
    )
    reconcile.add_argument("--invoice", help="Invoice number to pick from the workbook")

    commands.add_parser("pull", parents=[common], help="Copy the cloud data into the database")
    commands.add_parser("push", parents=[common], help="Copy the database into the cloud")

    sweep = commands.add_parser("sweep", parents=[common], help="Remove orphaned records")
    sweep.add_argument("--invoice", help="Also converge this shipment's cloud records")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    settings = Settings.from_env().with_overrides(
        database_path=args.database_path,
        user_id=args.user_id,
        credentials_path=args.credentials_path,
        offline=args.offline,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "reconcile":
        path = run_reconcile(
            args.workbook, args.invoice, settings=settings, output_path=args.output
        )
    elif args.command == "pull":
        path = run_pull(settings=settings, output_path=args.output)
    elif args.command == "push":
        path = run_push(settings=settings, output_path=args.output)
    else:
        path = run_sweep(args.invoice, settings=settings, output_path=args.output)

    print(f"Report written to {path}")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
