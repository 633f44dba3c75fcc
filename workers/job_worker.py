"""
Standalone scheduler for the SLA and post-event jobs.

Runs the same polling loop the API starts in its lifespan, for deployments
that keep jobs out of the web process (set JOBS_ENABLED=false there).

    python workers/job_worker.py          # poll forever
    python workers/job_worker.py --once   # claim and run one batch
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from wchic.core.logging import configure_structlog, get_structlog_logger
from wchic.db import session as db_session
from wchic.services.jobs import run_once, scheduler_loop
from wchic.services.redis import close_redis_pool

configure_structlog()
logger = get_structlog_logger()


async def worker_main(once: bool = False) -> None:
    logger.info("job_worker.starting", once=once)

    try:
        if once:
            outcomes = await run_once()
            logger.info("job_worker.completed", processed=len(outcomes))
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers.
                pass
        await scheduler_loop(stop_event)
    finally:
        await close_redis_pool()
        if db_session.engine is not None:
            await db_session.engine.dispose()
        logger.info("job_worker.stopped")


def main() -> None:
    parser = argparse.ArgumentParser(description="WChic job worker")
    parser.add_argument("--once", action="store_true", help="Run one batch of due jobs and exit")
    args = parser.parse_args()
    asyncio.run(worker_main(once=args.once))


if __name__ == "__main__":
    main()
