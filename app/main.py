"""
Recurring Expense Worker for Split Ledger

Runs the recurring expense job against the configured database.

    python -m app.main          # run daily at the configured time, forever
    python -m app.main --once   # process everything due now and exit

Configuration comes from the environment / .env file (see src.config).
"""

import argparse
import asyncio
import signal
import sys

import structlog

from src.config import get_settings
from src.orchestrator import create_app_components
from src.services.storage import StorageError


logger = structlog.get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="splitledger-worker",
        description="Generate expenses from due recurring templates.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process due templates once and exit",
    )
    return parser.parse_args(argv)


async def run(once: bool) -> int:
    components = create_app_components(get_settings())
    try:
        await components.connect()
    except StorageError as e:
        logger.error("worker_storage_unavailable", error=str(e))
        return 1

    try:
        if once:
            report = await components.recurring_job.run_once()
            print(
                f"Generated {report.generated}, skipped {report.skipped}, "
                f"failed {report.failed} (as of {report.as_of.isoformat()})"
            )
            return 1 if report.failed else 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        components.recurring_job.start()
        await stop.wait()
        return 0
    finally:
        await components.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args.once))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
