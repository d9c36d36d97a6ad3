"""
Periodic Worker
Runs one or more jobs through the JobRunner in a loop, with exponential
backoff polling while there is nothing to do
"""
import asyncio
import signal
from typing import List

from sched_core.constants.job_types import JobTrigger
from sched_core.constants.queue_status import JobRunStatus
from sched_core.core.setup_logger import worker_logger
from sched_core.core.logger import info, debug, warning, error, critical
from sched_core.workers.runner import JobRunner


class PeriodicWorker:
    """
    Command-line counterpart of the cron endpoint. Every run goes through the
    same lock and job-run bookkeeping, recorded as triggered_by=cli.
    """

    def __init__(
            self,
            runner: JobRunner,
            job_names: List[str],
            poll_interval: float = 60.0,
            max_poll_interval: float = 300.0,
            backoff_factor: float = 1.5,
    ):
        """
        Initialize the worker

        Args:
            runner: JobRunner shared by all jobs
            job_names: Jobs to run each cycle
            poll_interval: Initial polling interval in seconds
            max_poll_interval: Maximum polling interval in seconds
            backoff_factor: Backoff multiplier when a cycle finds no work
        """
        self.runner = runner
        self.job_names = job_names
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff_factor = backoff_factor

        # Current polling interval (starts at poll_interval, increases with backoff)
        self.current_poll_interval = poll_interval

        self._shutdown_event = asyncio.Event()

        # Statistics
        self.runs = 0
        self.items_processed = 0
        self.items_failed = 0

        info(worker_logger, "Periodic worker initialized", context={
            "instance_id": self.runner.instance_id,
            "jobs": self.job_names,
            "poll_interval": self.poll_interval,
            "max_poll_interval": self.max_poll_interval,
            "backoff_factor": self.backoff_factor,
        })

    @property
    def should_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown"""

        def signal_handler(signum, frame=None):
            signal_name = signal.Signals(signum).name
            warning(worker_logger, f"Received {signal_name} signal, initiating graceful shutdown...")
            self._shutdown_event.set()

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                signal.signal(signum, signal_handler)

        info(worker_logger, "Signal handlers registered (SIGTERM, SIGINT)")

    async def start(self):
        """
        Start the worker and loop until a shutdown signal arrives
        """
        info(worker_logger, "Periodic worker starting...", context={
            "instance_id": self.runner.instance_id,
            "jobs": self.job_names,
        })

        try:
            self.setup_signal_handlers()
            await self._processing_loop()
        except Exception as e:
            critical(worker_logger, "Worker crashed with unexpected error", context={
                "instance_id": self.runner.instance_id,
                "error": str(e),
                "error_type": type(e).__name__,
            })
            raise
        finally:
            await self._shutdown()

    async def run_once(self) -> bool:
        """
        Run every configured job once

        Returns:
            True if any job found work to do
        """
        found_work = False
        for job_name in self.job_names:
            if self.should_shutdown:
                break
            try:
                summary = await self.runner.run(job_name, triggered_by=JobTrigger.cli.value)
            except Exception as e:
                error(worker_logger, "Job run raised", context={
                    "job_name": job_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                })
                continue

            self.runs += 1
            self.items_processed += summary.processed
            self.items_failed += summary.failed
            if summary.status != JobRunStatus.locked.value and (summary.processed or summary.failed):
                found_work = True
        return found_work

    async def _processing_loop(self):
        info(worker_logger, "Entering main processing loop...")

        while not self.should_shutdown:
            found_work = await self.run_once()

            if found_work:
                # Reset poll interval since we've found work
                self.current_poll_interval = self.poll_interval
                await self._sleep(self.poll_interval)
            else:
                await self._apply_backoff()

        info(worker_logger, "Exiting main processing loop")

    async def _apply_backoff(self):
        """
        Apply exponential backoff when no job found work
        Gradually increases wait time up to max_poll_interval
        """
        old_interval = self.current_poll_interval

        self.current_poll_interval = min(
            self.current_poll_interval * self.backoff_factor,
            self.max_poll_interval
        )

        debug(worker_logger, "Applying backoff", context={
            "old_interval": round(old_interval, 2),
            "new_interval": round(self.current_poll_interval, 2),
            "max_interval": self.max_poll_interval
        })

        await self._sleep(self.current_poll_interval)

    async def _sleep(self, seconds: float):
        # Wakes early on shutdown
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _shutdown(self):
        """
        Perform graceful shutdown
        Log final statistics and cleanup
        """
        warning(worker_logger, "Worker shutting down...", context={
            "instance_id": self.runner.instance_id
        })

        await self.runner.close()

        info(worker_logger, "Worker statistics", context={
            "instance_id": self.runner.instance_id,
            "runs": self.runs,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
        })

        info(worker_logger, "Worker stopped gracefully", context={
            "instance_id": self.runner.instance_id
        })

    async def stop(self):
        """
        Stop the worker gracefully
        Can be called programmatically to stop the worker
        """
        warning(worker_logger, "Stop requested", context={
            "instance_id": self.runner.instance_id
        })
        self._shutdown_event.set()
