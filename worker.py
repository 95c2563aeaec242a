"""
FitLife Background Worker
=========================

Run from project root: python worker.py --job all

Runs the batch refresh and segment refresh loops outside the API
process (set FITLIFE_API_BACKGROUND_JOBS=false on the API servers).
Use --once for a single pass, e.g. from cron.

Requires FITLIFE_REDIS_URL: warmed sets and invalidation marks reach
the API servers only through the shared Redis cache.
"""

import argparse
import asyncio
import signal
import sys
import time

from loguru import logger

from fitlife.bootstrap import EngineComponents, build_components
from fitlife.config import get_settings
from fitlife.logging_config import setup_logging

JOBS = ("segments", "refresh", "all")


def _selected_jobs(engine: EngineComponents, job: str):
    jobs = []
    # Segments first: a fresh segment feeds the following refresh
    if job in ("segments", "all"):
        jobs.append(engine.segment_refresh)
    if job in ("refresh", "all"):
        jobs.append(engine.batch_refresh)
    return jobs


async def run(job: str, once: bool) -> None:
    settings = get_settings()
    engine = await build_components(settings)
    try:
        jobs = _selected_jobs(engine, job)
        if once:
            for periodic_job in jobs:
                result = await periodic_job.run_once()
                logger.info(f"{periodic_job.name}: {result}")
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers; Ctrl+C still raises
                pass

        await asyncio.gather(*(periodic_job.run_forever(stop_event) for periodic_job in jobs))
    finally:
        await engine.close()


def main():
    """Worker entry point"""
    parser = argparse.ArgumentParser(description="Run FitLife background jobs")
    parser.add_argument("--job", choices=JOBS, default="all", help="Which job(s) to run")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_serialize)

    # The API only sees warmed sets and invalidations through a shared cache
    if not settings.redis_url:
        logger.error("FITLIFE_REDIS_URL is not set; the worker needs the cache the API servers use")
        return False

    logger.info("=" * 60)
    logger.info(f"FITLIFE WORKER: job={args.job} once={args.once}")
    logger.info("=" * 60)

    start_time = time.time()
    try:
        asyncio.run(run(args.job, args.once))
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.exception(f"Worker failed: {e}")
        return False

    logger.info(f"Worker finished after {time.time() - start_time:.1f}s")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
