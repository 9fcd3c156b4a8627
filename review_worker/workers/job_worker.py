"""
Job worker: polls the jobs table, dispatches each claimed job and records
its terminal state.

Shutdown is cooperative. SIGINT/SIGTERM set ``shutdown_event``; the loop
finishes the job it is working on and exits before claiming another one.
"""

import asyncio
import logging
import os
import signal
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from review_worker.errors import JobError, is_critical_error
from review_worker.models.job import Job
from review_worker.repositories.job_repository import JobRepository
from review_worker.schemas.job import JobOutcome
from review_worker.services.job_dispatcher import JobDispatcher
from review_worker.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    processed: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=utc_now)

    @property
    def uptime_seconds(self) -> float:
        return (utc_now() - self.started_at).total_seconds()


class JobWorker:
    """Single-process job worker; run several processes to scale out."""

    def __init__(
        self,
        repository: JobRepository,
        dispatcher: JobDispatcher,
        *,
        worker_id: Optional[str] = None,
        poll_interval: float = 0.2,
        lease_seconds: int = 0,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}"
        self.poll_interval = poll_interval
        self.lease_seconds = lease_seconds
        self.shutdown_event = asyncio.Event()
        self.stats = WorkerStats()
        self._last_reclaim: Optional[float] = None

        logger.info("Worker %s initialized", self.worker_id)

    def setup_signal_handlers(self) -> None:
        """Setup graceful shutdown on SIGTERM/SIGINT."""
        def signal_handler(signum, frame=None):
            logger.info("Worker %s received signal %s, shutting down gracefully...", self.worker_id, signum)
            self.shutdown_event.set()

        try:
            loop = asyncio.get_running_loop()
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(signum, signal_handler, signum)
        except (RuntimeError, NotImplementedError):
            # No running loop, or a platform without loop signal support
            signal.signal(signal.SIGTERM, signal_handler)
            signal.signal(signal.SIGINT, signal_handler)

    def request_stop(self) -> None:
        self.shutdown_event.set()

    async def process_job(self, job: Job) -> bool:
        """
        Dispatch a claimed job and finalize it.

        Never raises for job-level problems: handler errors become a
        "failed" outcome and a failed terminal write is logged and dropped.

        Returns:
            bool: True if the job completed, False if it failed
        """
        logger.info("Processing job %s (type: %s)", job.id, job.job_type)
        started = time.perf_counter()

        try:
            result = await self.dispatcher.dispatch(job.job_type, job.payload)
            result["processing_time_ms"] = int((time.perf_counter() - started) * 1000)
            outcome = JobOutcome.completed(result)
        except JobError as e:
            logger.error("Job %s failed: %s", job.id, e.to_payload())
            outcome = JobOutcome.failed(str(e))
        except Exception as e:
            logger.exception("Job %s failed with an unexpected error", job.id)
            outcome = JobOutcome.failed(f"Unexpected error: {e}")

        if outcome.succeeded:
            self.stats.processed += 1
        else:
            self.stats.failed += 1

        # With leases on, only the claim this worker holds may be finalized
        claimed_at = job.updated_at if self.lease_seconds > 0 else None
        try:
            await self.repository.finalize(job.id, outcome, claimed_at=claimed_at)
        except Exception:
            logger.exception("Failed to record %s status for job %s", outcome.status, job.id)

        if outcome.succeeded:
            logger.info(
                "Job %s completed successfully in %sms",
                job.id,
                outcome.result.get("processing_time_ms") if outcome.result else "?",
            )
        return outcome.succeeded

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns:
            bool: True if a job was processed, False if none was available
        """
        await self._maybe_reclaim_stale()

        job = await self.repository.claim_next()
        if job is None:
            logger.debug("No jobs available")
            return False

        await self.process_job(job)
        return True

    async def _maybe_reclaim_stale(self) -> None:
        if self.lease_seconds <= 0:
            return
        now = time.monotonic()
        if self._last_reclaim is not None and now - self._last_reclaim < self.lease_seconds:
            return
        self._last_reclaim = now
        await self.repository.reclaim_stale(timedelta(seconds=self.lease_seconds))

    async def _wait(self, timeout: float) -> None:
        """Sleep for ``timeout`` seconds or until shutdown is requested."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def run_forever(self) -> None:
        """Main worker loop - polls for jobs and processes them."""
        logger.info("Worker %s starting job polling (interval: %ss)", self.worker_id, self.poll_interval)

        while not self.shutdown_event.is_set():
            delay = self.poll_interval
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("Worker loop error: %s", e)
                if is_critical_error(e):
                    delay = self.poll_interval * 2
                    logger.warning("Critical error detected, backing off for %ss", delay)

            await self._wait(delay)

        logger.info("Worker %s stopped", self.worker_id)

    def log_stats(self) -> None:
        logger.info(
            "Worker %s statistics: processed=%d failed=%d uptime=%.1fs",
            self.worker_id,
            self.stats.processed,
            self.stats.failed,
            self.stats.uptime_seconds,
        )

    async def run(self) -> None:
        """Start the worker."""
        self.setup_signal_handlers()
        try:
            await self.run_forever()
        finally:
            self.log_stats()
            logger.info("Worker %s shutting down", self.worker_id)
