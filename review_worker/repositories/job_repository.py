"""
Repository for job queue database operations.

The only component that writes job status, result and error. Each method
opens its own session and commits before returning, so a claimed row is
visible as "processing" to every other worker immediately.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from review_worker.db.session import session_scope
from review_worker.models.job import TERMINAL_STATUSES, Job, JobStatus
from review_worker.schemas.job import JobOutcome
from review_worker.utils.retry import retry_async
from review_worker.utils.time import utc_now

logger = logging.getLogger(__name__)


class JobRepository:
    """Atomic claim and terminal-state writes for the jobs table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        finalize_attempts: int = 3,
        finalize_backoff_seconds: float = 1.0,
    ):
        self.session_maker = session_maker
        self.finalize_attempts = finalize_attempts
        self.finalize_backoff_seconds = finalize_backoff_seconds

    async def enqueue(self, user_id: uuid.UUID, job_type: str, payload: Dict[str, Any]) -> Job:
        """Insert a pending job (the producer side of the row contract)."""
        job = Job(
            user_id=user_id,
            job_type=job_type,
            status=JobStatus.PENDING.value,
            payload=payload,
        )
        async with session_scope(self.session_maker) as session:
            session.add(job)
            await session.flush()
            await session.refresh(job)

        logger.info("Job %s enqueued for user %s, type %s", job.id, user_id, job_type)
        return job

    async def get_job(self, job_id: uuid.UUID) -> Optional[Job]:
        """Get job by ID."""
        async with self.session_maker() as session:
            return await session.get(Job, job_id)

    async def claim_next(self) -> Optional[Job]:
        """
        Claim the oldest pending job.

        Runs as a single UPDATE whose target id comes from a
        SELECT ... FOR UPDATE SKIP LOCKED subquery, so concurrent callers
        never receive the same row. The status guard in the outer WHERE
        keeps the statement correct on backends that ignore SKIP LOCKED.

        Returns:
            The claimed Job (now "processing"), or None when nothing is pending.
        """
        candidate = aliased(Job, name="candidate")
        next_job_id = (
            select(candidate.id)
            .where(candidate.status == JobStatus.PENDING.value)
            .order_by(candidate.created_at, candidate.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(Job)
            .where(Job.id == next_job_id, Job.status == JobStatus.PENDING.value)
            .values(status=JobStatus.PROCESSING.value, updated_at=utc_now())
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with session_scope(self.session_maker) as session:
            result = await session.execute(stmt)
            job = result.scalar_one_or_none()

        if job:
            logger.info("Claimed job %s (%s)", job.id, job.job_type)
        return job

    async def finalize(
        self,
        job_id: uuid.UUID,
        outcome: JobOutcome,
        *,
        claimed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Write a terminal status for a job the caller holds in "processing".

        ``result`` and ``error`` are mutually exclusive: the one not carried by
        the outcome is written as NULL. Transient store errors are retried
        with a fixed backoff; the last error is re-raised.

        ``claimed_at`` is the ``updated_at`` stamped by ``claim_next``. When
        given, the write only applies to that claim: a row reclaimed by
        ``reclaim_stale`` and claimed again carries a newer stamp.

        Returns:
            False when no processing row matched (already terminal, unknown id,
            or claimed again since ``claimed_at``).
        """
        if outcome.status not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot finalize job {job_id} with non-terminal status {outcome.status!r}")

        succeeded = outcome.succeeded
        conditions = [Job.id == job_id, Job.status == JobStatus.PROCESSING.value]
        if claimed_at is not None:
            conditions.append(Job.updated_at == claimed_at)
        stmt = (
            update(Job)
            .where(*conditions)
            .values(
                status=outcome.status,
                result=outcome.result if succeeded else None,
                error=None if succeeded else outcome.error,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

        async def _write() -> int:
            async with session_scope(self.session_maker) as session:
                result = await session.execute(stmt)
                return result.rowcount

        updated = await retry_async(
            _write,
            attempts=self.finalize_attempts,
            backoff_seconds=self.finalize_backoff_seconds,
            description=f"Status update for job {job_id}",
        )

        if not updated:
            logger.warning("Job %s was not in processing state; %s not recorded", job_id, outcome.status)
            return False

        logger.info("Job %s status updated to: %s", job_id, outcome.status)
        return True

    async def reclaim_stale(self, older_than: timedelta) -> int:
        """
        Return jobs stuck in "processing" longer than ``older_than`` to "pending".

        Used only when a processing lease is configured; a worker that crashed
        mid-job otherwise leaves its row in "processing" for good.
        """
        cutoff = utc_now() - older_than
        stmt = (
            update(Job)
            .where(Job.status == JobStatus.PROCESSING.value, Job.updated_at < cutoff)
            .values(status=JobStatus.PENDING.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        async with session_scope(self.session_maker) as session:
            result = await session.execute(stmt)
            reclaimed = result.rowcount or 0

        if reclaimed:
            logger.warning("Reclaimed %d stale processing job(s) older than %s", reclaimed, older_than)
        return reclaimed
