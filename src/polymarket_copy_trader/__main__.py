"""Command-line entry point.

Usage:
    python -m polymarket_copy_trader run [--dry-run]
    python -m polymarket_copy_trader init-db
    python -m polymarket_copy_trader top-traders [--limit N]
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys

from polymarket_copy_trader.config import Settings, get_settings
from polymarket_copy_trader.pipeline import CopyTradingPipeline, PipelineState
from polymarket_copy_trader.storage.database import DatabaseManager
from polymarket_copy_trader.storage.ledger import LedgerStore

logger = logging.getLogger("polymarket_copy_trader")


def setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _run(settings: Settings, *, dry_run: bool) -> int:
    pipeline = CopyTradingPipeline(settings, dry_run=dry_run)
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda: main_task.cancel() if main_task else None)

    with contextlib.suppress(asyncio.CancelledError):
        await pipeline.run()
    return 1 if pipeline.state == PipelineState.ERROR else 0


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    return 0


async def _top_traders(settings: Settings, *, limit: int) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        traders = await LedgerStore(db.get_async_session).top_traders(limit)
    finally:
        await db.dispose_async()
    for t in traders:
        print(
            json.dumps(
                {
                    "address": t.address,
                    "username": t.username,
                    "total_pnl": str(t.total_pnl),
                    "win_rate": str(t.win_rate),
                    "last_updated": t.last_updated.isoformat() if t.last_updated else None,
                }
            )
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="polymarket-copy-trader",
        description="Mirror fills of top Polymarket traders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Watch the chain and copy trades")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate order submission (overrides DRY_RUN)",
    )
    subparsers.add_parser("init-db", help="Create ledger tables")
    top_parser = subparsers.add_parser("top-traders", help="Print tracked traders by profit")
    top_parser.add_argument("--limit", type=int, default=10)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    settings = get_settings()
    setup_logging(settings)

    if args.command == "run":
        dry_run = bool(args.dry_run or settings.dry_run)
        if not dry_run:
            settings.validate_requirements(command="run")
        logger.info("Configuration: %s", json.dumps(settings.redacted_summary()))
        return asyncio.run(_run(settings, dry_run=dry_run))
    if args.command == "init-db":
        return asyncio.run(_init_db(settings))
    return asyncio.run(_top_traders(settings, limit=args.limit))


if __name__ == "__main__":
    sys.exit(main())
