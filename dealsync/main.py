"""
dealsync - command line entry point.

    dealsync                 run one cycle now, then every VC_UPDATER_INTERVAL_SECONDS
    dealsync --once          run a single cycle and exit
    dealsync --dry-run       report the sync gap without writing anything
    dealsync --limit 5       only process the 5 oldest new records (staged testing)
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .archivist.database import close_db, init_db
from .config.settings import settings
from .harvester.pipeline import dry_run_check
from .scheduler.jobs import SyncJobRunner, setup_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealsync",
        description="Incremental sync of the crypto fundraising deal-flow listing",
    )
    parser.add_argument("--dry-run", action="store_true", help="Check sync status without writing to the database")
    parser.add_argument("--limit", "-n", type=positive_int, help="Process only the N oldest new records")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument(
        "--max-pages",
        type=positive_int,
        help=f"Safety limit on listing pages to scan (default: {settings.vc_updater_max_pages})",
    )
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables before running")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows: rely on KeyboardInterrupt
    await stop.wait()
    logger.info("Shutdown signal received")


async def run(args: argparse.Namespace) -> int:
    try:
        if args.create_tables:
            await init_db()

        if args.dry_run:
            logger.info("Running in DRY RUN mode...")
            await dry_run_check(limit=args.limit, max_pages=args.max_pages)
            return 0

        runner = SyncJobRunner(limit=args.limit, max_pages=args.max_pages)
        result = await runner.run()
        if args.once:
            return 0 if result is not None else 1

        setup_scheduler(runner)
        try:
            await wait_for_shutdown()
        finally:
            shutdown_scheduler()
        return 0
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
