"""
Commission engine worker process.

Startup:
- Configure logging
- Create missing tables
- Start the payout scheduler

Run with:
    python -m commission_engine.worker
"""
import asyncio
import logging
import signal

from commission_engine.config import get_settings
from commission_engine.database import init_db
from commission_engine.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status
from commission_engine.logging_config import setup_logging
from commission_engine.services.transfer_service import HttpTransferProvider

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    await init_db()

    transfers = HttpTransferProvider(settings, destinations=settings.TRANSFER_DESTINATIONS)
    start_scheduler(transfers, config=settings)
    logger.info(f"Worker started with {len(get_job_status())} scheduled job(s)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        shutdown_scheduler()
        logger.info("Worker stopped")


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
