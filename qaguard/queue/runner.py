"""Standalone worker process.

    python -m qaguard.queue.runner          # poll until SIGINT/SIGTERM
    python -m qaguard.queue.runner --once   # drain due jobs and exit
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys

from qaguard.context import build_context, dispose_stores, init_stores
from qaguard.logging_config import setup_logging
from qaguard.queue.scheduler import start_workers, stop_workers
from qaguard.queue.worker import drain
from qaguard.startup_checks import validate_settings

logger = logging.getLogger(__name__)


async def _main(once: bool = False) -> None:
    setup_logging()
    validate_settings()
    await init_stores()
    ctx = build_context()
    try:
        if once:
            ran = await drain(ctx)
            logger.info("Drained %d jobs", ran)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        start_workers(ctx)
        await stop.wait()
        logger.info("Shutdown signal received")
        stop_workers()
    finally:
        await ctx.aclose()
        await dispose_stores()


def main() -> None:
    asyncio.run(_main(once="--once" in sys.argv[1:]))


if __name__ == "__main__":
    main()
