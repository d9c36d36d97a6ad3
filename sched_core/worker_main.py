"""
Worker Entry Point
Command-line runner for the periodic jobs
Run with: python -m sched_core.worker_main notify|webhook|reconcile [--once]
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from sched_core.core import settings
from sched_core.db import database
from sched_core.workers.periodic import PeriodicWorker
from sched_core.workers.runner import JobRunner, WORKERS
from sched_core.core.setup_logger import worker_logger
from sched_core.core.logger import info, critical


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sched_core.worker_main",
        description="Run scheduling coordination jobs periodically",
    )
    parser.add_argument(
        "jobs",
        nargs="*",
        choices=list(WORKERS.keys()),
        help="Jobs to run (default: WORKER_JOBS setting)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run each job a single time and exit",
    )
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> dict:
    """
    Merge command-line arguments with settings

    Returns:
        Configuration dictionary
    """
    config = {
        "jobs": args.jobs or [job.strip() for job in settings.WORKER_JOBS],
        "once": args.once,
        "poll_interval": settings.POLL_INTERVAL,
        "max_poll_interval": settings.MAX_POLL_INTERVAL,
        "backoff_factor": settings.BACKOFF_FACTOR,
    }

    unknown = [job for job in config["jobs"] if job not in WORKERS]
    if unknown:
        raise ValueError(f"Unknown jobs in WORKER_JOBS: {unknown}")

    info(worker_logger, "Configuration loaded", context=config)

    return config


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to start the worker
    """
    info(worker_logger, "Worker process starting...")

    try:
        config = load_config(parse_args(argv))

        info(worker_logger, "Initializing database connection...")
        await database.init_database()
        info(worker_logger, "Database connection initialized")

        worker = PeriodicWorker(
            runner=JobRunner(settings),
            job_names=config["jobs"],
            poll_interval=config["poll_interval"],
            max_poll_interval=config["max_poll_interval"],
            backoff_factor=config["backoff_factor"],
        )

        if config["once"]:
            await worker.run_once()
            await worker.runner.close()
        else:
            # Blocks until shutdown
            await worker.start()

    except KeyboardInterrupt:
        info(worker_logger, "Worker interrupted by user (Ctrl+C)")

    except Exception as e:
        critical(worker_logger, "Worker failed to start", context={
            "error": str(e),
            "error_type": type(e).__name__
        })
        return 1

    finally:
        await database.close_database()

    info(worker_logger, "Worker process terminated")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        info(worker_logger, "Worker stopped by user")
    except Exception as e:
        critical(worker_logger, "Fatal error", context={
            "error": str(e)
        })
        sys.exit(1)
