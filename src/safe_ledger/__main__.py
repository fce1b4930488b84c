"""CLI entry point for the Safe ledger.

Usage:
    python -m safe_ledger sync ORG_ID [--limit N]
    python -m safe_ledger export ORG_ID [--safe ADDRESS --chain CHAIN] [-o FILE]
    python -m safe_ledger --config-check
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
import uuid
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError
from redis.asyncio import Redis

from safe_ledger import __version__
from safe_ledger.chains import Chain
from safe_ledger.config import Settings, clear_settings_cache, get_settings
from safe_ledger.errors import SafeLedgerError
from safe_ledger.identity import SelectedSafe, parse_safe_chain_unique_id, to_checksum_address
from safe_ledger.ingestor.safe_client import SafeTransactionClient
from safe_ledger.shutdown import GracefulShutdown
from safe_ledger.storage import (
    CategoryRepository,
    SafeRepository,
    TransferRepository,
    create_engine,
    create_session_factory,
    init_models,
    session_scope,
)
from safe_ledger.sync import SyncReport, SyncState, SyncStatusPublisher, TransferSync
from safe_ledger.views import to_csv, to_table_rows

logger = logging.getLogger(__name__)

# Application info
APP_NAME = "Safe Ledger"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="safe-ledger",
        description="Mirror Safe multisig transfers into a local ledger and export them.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  safe-ledger sync 3f1c...                  Sync every Safe of an organization
  safe-ledger sync 3f1c... --limit 200      Fetch up to 200 transfers per Safe
  safe-ledger export 3f1c... -o out.csv     Export the organization's transfers
  safe-ledger export 3f1c... --safe 0xAbc... --chain ETH
  safe-ledger --config-check                Validate config and exit
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser("sync", help="Sync transfers for an organization")
    sync_parser.add_argument("organization_id", help="Organization whose Safes to sync")
    sync_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum transfers fetched per Safe (default: from settings)",
    )

    export_parser = subparsers.add_parser("export", help="Export transfers as CSV")
    export_parser.add_argument("organization_id", help="Organization to export")
    export_parser.add_argument("--safe", default=None, help="Only this Safe address")
    export_parser.add_argument(
        "--chain",
        type=str.upper,
        choices=[c.value for c in Chain],
        default=None,
        help="Chain of --safe",
    )
    export_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Write CSV to this file instead of stdout",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure structured logging for the application.

    Logs go to stderr so CSV written to stdout stays clean.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "web3": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_config_summary(settings: Settings) -> None:
    """Print a summary of the configuration.

    Args:
        settings: Application settings.
    """
    summary = settings.redacted_summary()
    print("Configuration:")
    print(f"  Database: {summary['database_url']}")
    print(f"  Redis: {summary['redis_url']}")
    print(f"  Safe API Key: {'(set)' if settings.safe_api.api_key else '(not set)'}")
    print(f"  Safe API Timeout: {settings.safe_api.timeout}s")
    print(f"  Transfer Limit: {settings.sync.transfer_limit}")
    print(f"  Write Delay: {settings.sync.write_delay}s")
    print(f"  Log Level: {summary['log_level']}")
    print()


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        # Clear cache to force reload
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            msg = error["msg"]
            print(f"  {field}: {msg}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Print the validated configuration.

    Args:
        settings: Validated settings.

    Returns:
        Exit code (0 for success).
    """
    print(f"{APP_NAME} v{APP_VERSION}")
    print("Configuration is valid!")
    print()
    print_config_summary(settings)

    if settings.redis.enabled:
        print("  Progress publishing: enabled")
    else:
        print("  Progress publishing: disabled")

    print()
    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


def log_report(report: SyncReport) -> None:
    """Log the final status of every Safe in a run."""
    for status in report.statuses:
        level = logging.ERROR if status.state is SyncState.ERROR else logging.INFO
        logger.log(
            level,
            "%s: %s (%d/%d, %d skipped)%s",
            status.safe_id,
            status.state.value,
            status.progress.current,
            status.progress.total,
            status.progress.skipped,
            f" - {status.message}" if status.message else "",
        )
    logger.info("Wrote %d transfers, skipped %d", report.written, report.skipped)


async def run_sync(settings: Settings, organization_id: str, limit: int | None = None) -> int:
    """Sync an organization and report the outcome.

    Args:
        settings: Application settings.
        organization_id: Organization to sync.
        limit: Transfers per Safe; defaults to ``SYNC_TRANSFER_LIMIT``.

    Returns:
        Exit code.
    """
    engine = create_engine(settings.database.url)
    session_factory = create_session_factory(engine)
    api_key = settings.safe_api.api_key
    client = SafeTransactionClient(
        api_key=api_key.get_secret_value() if api_key else None,
        timeout=settings.safe_api.timeout,
    )

    shutdown = GracefulShutdown()
    shutdown.register_cleanup(engine.dispose)

    on_status_change = None
    if settings.redis.url:
        redis = Redis.from_url(settings.redis.url)
        shutdown.register_cleanup(redis.aclose)
        run_id = uuid.uuid4().hex
        on_status_change = SyncStatusPublisher(redis).sink(run_id)
        logger.info("Publishing progress for run %s", run_id)

    sync = TransferSync(
        client,
        session_factory,
        write_delay_seconds=settings.sync.write_delay,
        on_status_change=on_status_change,
    )

    try:
        async with shutdown:
            await init_models(engine)
            report = await sync.run(
                organization_id,
                limit if limit is not None else settings.sync.transfer_limit,
                cancel_event=shutdown.cancel_event,
            )
    except SafeLedgerError as e:
        logger.error("Sync failed: %s", e)
        return EXIT_ERROR
    except Exception as e:
        logger.exception("Sync failed: %s", e)
        return EXIT_ERROR

    log_report(report)
    if shutdown.is_shutdown_requested:
        return EXIT_INTERRUPTED
    return EXIT_SUCCESS if report.succeeded else EXIT_ERROR


async def build_export(
    settings: Settings,
    organization_id: str,
    selected: SelectedSafe | None = None,
) -> str:
    """Render an organization's (or one Safe's) transfers as CSV text."""
    engine = create_engine(settings.database.url)
    session_factory = create_session_factory(engine)
    try:
        async with session_scope(session_factory) as session:
            safes = await SafeRepository(session).list_for_organization(organization_id)
            transfers_repo = TransferRepository(session)
            if selected is not None:
                transfers = await transfers_repo.list_transfers(selected.address, selected.chain)
            else:
                transfers = await transfers_repo.list_for_safes(safes)

            category_repo = CategoryRepository(session)
            categories = await category_repo.list_for_organization(organization_id)
            mappings = await category_repo.list_transfer_categories(
                t.transfer_id for t in transfers
            )
    finally:
        await engine.dispose()

    rows = to_table_rows(transfers, selected, safes)
    logger.info("Exporting %d rows from %d transfers", len(rows), len(transfers))
    return to_csv(rows, categories, mappings)


def run_export(settings: Settings, args: argparse.Namespace) -> int:
    """Run the export subcommand.

    Returns:
        Exit code.
    """
    selected = None
    if args.safe or args.chain:
        if not (args.safe and args.chain):
            print("--safe and --chain must be given together", file=sys.stderr)
            return EXIT_ERROR
        try:
            address = to_checksum_address(args.safe)
            selected = parse_safe_chain_unique_id(f"{address}_{args.chain}")
        except SafeLedgerError as e:
            print(str(e), file=sys.stderr)
            return EXIT_ERROR

    try:
        text = asyncio.run(build_export(settings, args.organization_id, selected))
    except Exception as e:
        logger.exception("Export failed: %s", e)
        return EXIT_ERROR

    if args.output is None:
        sys.stdout.write(text)
    else:
        args.output.write_text(text, encoding="utf-8", newline="")
        logger.info("Wrote %s", args.output)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate configuration first
    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    # Determine effective log level
    log_level = args.log_level or settings.log_level
    configure_logging(log_level)

    if args.config_check:
        sys.exit(run_config_check(settings))

    if args.command == "sync":
        sys.exit(asyncio.run(run_sync(settings, args.organization_id, args.limit)))

    if args.command == "export":
        sys.exit(run_export(settings, args))

    parser.print_help(sys.stderr)
    sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
