"""Command-line entry point: ``matfinder-sync``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import yaml

from . import __version__
from .app import AppContext, app_lifespan
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import COLLECTION_PRESETS, LoggingConfig, build_config
from .errors import RemoteFetchError, StartupError
from .logger import setup_logging
from .sync.notifications import SyncNotification
from .sync.reporter import format_status, format_sync_report, report_to_json

logger = logging.getLogger(__name__)


def _print_notification(note: SyncNotification) -> None:
    print(
        f"[{note.severity.value}] {note.collection}: {note.message}",
        file=sys.stderr,
        flush=True,
    )


async def _cmd_sync(ctx: AppContext, args: argparse.Namespace) -> int:
    report = await ctx.coordinator.start_app_sync()
    if report is None:
        print("Sync already in progress.", file=sys.stderr)
        return 0
    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_sync_report(report))
    return 0 if report.errors == 0 else 2


async def _cmd_listen(ctx: AppContext, args: argparse.Namespace) -> int:
    ctx.notifier.subscribe(_print_notification)
    report = await ctx.coordinator.start_app_sync()
    if report is not None and not args.json:
        print(format_sync_report(report))
    if not ctx.dispatcher.is_running:
        await ctx.dispatcher.start_listeners()
    print("Listening for remote changes. Press Ctrl-C to stop.", file=sys.stderr)
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        logger.info("Listener stats: %s", dict(ctx.dispatcher.stats))
    return 0


async def _cmd_status(ctx: AppContext, args: argparse.Namespace) -> int:
    counts: dict[str, tuple[int, int | None]] = {}
    for spec in ctx.registry:
        local_count = await ctx.writer.run(ctx.local.count, spec.key)
        try:
            remote_count: int | None = len(
                await ctx.remote.list_document_ids(spec.remote_name)
            )
        except RemoteFetchError as e:
            logger.error("%s", e)
            remote_count = None
        counts[spec.remote_name] = (local_count, remote_count)

    if args.json:
        payload = {
            name: {"local": local, "remote": remote}
            for name, (local, remote) in counts.items()
        }
        payload["pending_links"] = len(ctx.links)
        print(json.dumps(payload, indent=2))
    else:
        print(format_status(counts))
        print(f"\nPending parent links: {len(ctx.links)}")
    return 0


_COMMANDS = {
    "sync": _cmd_sync,
    "listen": _cmd_listen,
    "status": _cmd_status,
}


async def main(args: argparse.Namespace, overrides: dict) -> int:
    async with app_lifespan(overrides) as ctx:
        return await _COMMANDS[args.command](ctx, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matfinder-sync",
        description="Bidirectional sync between Firestore and the local gym cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One full sync pass using .env / config.yml settings
  matfinder-sync sync

  # Sync the TravelBallRating collections against another project
  matfinder-sync --app travelball --project my-project sync --json

  # Initial sync, then apply live changes until Ctrl-C
  matfinder-sync --db-url sqlite:///cache.db listen

  # Compare local and remote record counts
  matfinder-sync status

  # Write .matfinder_sync/config.yml with every option commented out
  matfinder-sync init
        """,
    )
    parser.add_argument(
        "--project",
        help="Google Cloud project id (overrides MATFINDER_FIRESTORE_PROJECT and config files)",
    )
    parser.add_argument(
        "--credentials",
        help="Service account key file (overrides GOOGLE_APPLICATION_CREDENTIALS)",
    )
    parser.add_argument(
        "--db-url",
        help="SQLAlchemy URL of the local cache (overrides MATFINDER_LOCAL_DB_URL)",
    )
    parser.add_argument(
        "--app",
        choices=sorted(COLLECTION_PRESETS),
        help="Remote collection-name preset",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"matfinder-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("sync", "Run one full sync pass and print the report"),
        ("listen", "Run a full sync, then apply live remote changes"),
        ("status", "Show local and remote record counts"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument(
            "--json", action="store_true", help="Machine-readable output"
        )
    sub.add_parser("init", help="Create a starter config file if none exists")
    return parser


def _logging_config() -> LoggingConfig:
    """The ``logging`` section of the config files.

    Unreadable files fall back to defaults here; ``app_lifespan`` reports
    the same error when it loads the settings.
    """
    try:
        return build_config(load_hierarchical_config()).logging
    except (ValueError, OSError, yaml.YAMLError):
        return LoggingConfig()


def run(argv: list[str] | None = None) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args(argv)

    log_config = _logging_config()
    setup_logging(
        debug=args.debug,
        log_file=args.log_file or log_config.file,
        level=log_config.level,
    )

    if args.command == "init":
        print(f"Config file: {ensure_config()}")
        sys.exit(0)

    overrides: dict = {}
    if args.project:
        overrides["project"] = args.project
    if args.credentials:
        overrides["credentials"] = args.credentials
    if args.db_url:
        overrides["db_url"] = args.db_url
    if args.debug:
        overrides["debug"] = True
    if args.app:
        overrides["collections"] = COLLECTION_PRESETS[args.app]

    try:
        code = asyncio.run(main(args, overrides))
    except StartupError:
        # Already reported by the lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)
    sys.exit(code)


if __name__ == "__main__":
    run()
