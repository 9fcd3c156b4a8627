import asyncio
import os
import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from review_worker.models import JobStatus
from review_worker.repositories.job_repository import JobRepository
from review_worker.schemas.job import JobOutcome
from review_worker.utils.time import utc_now


class FlakySessionMaker:
    """Fails the first ``failures`` session opens with a connection error."""

    def __init__(self, inner, failures):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("UPDATE jobs", {}, ConnectionRefusedError("connection refused"))
        return self.inner()


async def test_claim_next_returns_none_on_empty_queue(repository):
    assert await repository.claim_next() is None


async def test_claim_next_marks_job_processing(repository, insert_job):
    job = await insert_job("sentiment_analysis", {"text_content": "Great"})

    claimed = await repository.claim_next()

    assert claimed is not None
    assert claimed.id == job.id
    assert claimed.status == JobStatus.PROCESSING.value
    assert claimed.payload == {"text_content": "Great"}

    stored = await repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING.value


async def test_claim_next_takes_oldest_pending_first(repository, insert_job):
    now = utc_now()
    newest = await insert_job("sentiment_analysis", created_at=now)
    oldest = await insert_job("sentiment_analysis", created_at=now - timedelta(minutes=10))
    middle = await insert_job("sentiment_analysis", created_at=now - timedelta(minutes=5))

    order = [(await repository.claim_next()).id for _ in range(3)]

    assert order == [oldest.id, middle.id, newest.id]
    assert await repository.claim_next() is None


async def test_concurrent_claims_never_share_a_job(repository, insert_job):
    jobs = [await insert_job("sentiment_analysis") for _ in range(5)]

    claims = await asyncio.gather(*(repository.claim_next() for _ in range(10)))

    claimed_ids = [job.id for job in claims if job is not None]
    assert len(claimed_ids) == 5
    assert set(claimed_ids) == {job.id for job in jobs}


async def test_two_claimers_one_pending_row(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    other = JobRepository(repository.session_maker)

    first, second = await asyncio.gather(repository.claim_next(), other.claim_next())

    winners = [claim for claim in (first, second) if claim is not None]
    assert len(winners) == 1
    assert winners[0].id == job.id
    assert (await repository.get_job(job.id)).status == JobStatus.PROCESSING.value


async def test_terminal_jobs_are_never_claimed(repository, insert_job):
    await insert_job("sentiment_analysis", status=JobStatus.COMPLETED.value)
    await insert_job("sentiment_analysis", status=JobStatus.FAILED.value)
    await insert_job("sentiment_analysis", status=JobStatus.PROCESSING.value)

    assert await repository.claim_next() is None


async def test_finalize_completed_stores_result_without_error(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    await repository.claim_next()

    assert await repository.finalize(job.id, JobOutcome.completed({"sentiment_score": 0.9}))

    stored = await repository.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.result == {"sentiment_score": 0.9}
    assert stored.error is None


async def test_finalize_failed_stores_error_without_result(repository, insert_job):
    job = await insert_job("ai_generation")
    await repository.claim_next()

    assert await repository.finalize(job.id, JobOutcome.failed("review_text is required"))

    stored = await repository.get_job(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error == "review_text is required"
    assert stored.result is None


def test_failed_outcome_without_message_gets_default():
    assert JobOutcome.failed("").error == "Unknown processing error"


async def test_finalize_is_a_noop_once_terminal(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    await repository.claim_next()
    await repository.finalize(job.id, JobOutcome.completed({"sentiment_score": 0.5}))

    assert await repository.finalize(job.id, JobOutcome.failed("late failure")) is False

    stored = await repository.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.result == {"sentiment_score": 0.5}
    assert stored.error is None


async def test_finalize_requires_processing_state(repository, insert_job):
    job = await insert_job("sentiment_analysis")

    assert await repository.finalize(job.id, JobOutcome.completed({})) is False
    assert (await repository.get_job(job.id)).status == JobStatus.PENDING.value


async def test_finalize_unknown_job_returns_false(repository):
    assert await repository.finalize(uuid.uuid4(), JobOutcome.failed("gone")) is False


async def test_finalize_retries_transient_errors(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    await repository.claim_next()
    flaky = FlakySessionMaker(repository.session_maker, failures=2)
    retrying = JobRepository(flaky, finalize_attempts=3, finalize_backoff_seconds=0)

    assert await retrying.finalize(job.id, JobOutcome.completed({"ok": True}))

    assert flaky.calls == 3
    assert (await repository.get_job(job.id)).status == JobStatus.COMPLETED.value


async def test_finalize_raises_after_retries_exhausted(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    await repository.claim_next()
    flaky = FlakySessionMaker(repository.session_maker, failures=10)
    retrying = JobRepository(flaky, finalize_attempts=3, finalize_backoff_seconds=0)

    with pytest.raises(OperationalError):
        await retrying.finalize(job.id, JobOutcome.completed({"ok": True}))

    assert flaky.calls == 3
    assert (await repository.get_job(job.id)).status == JobStatus.PROCESSING.value


async def test_enqueue_creates_pending_job(repository):
    job = await repository.enqueue(uuid.uuid4(), "prompt_analysis", {"prompt_text": "Summarize"})

    assert job.status == JobStatus.PENDING.value
    assert job.retry_count == 0
    claimed = await repository.claim_next()
    assert claimed.id == job.id


async def test_reclaim_stale_returns_old_processing_jobs_to_pending(repository, insert_job):
    now = utc_now()
    stale = await insert_job(
        "sentiment_analysis",
        status=JobStatus.PROCESSING.value,
        updated_at=now - timedelta(minutes=30),
    )
    fresh = await insert_job("sentiment_analysis", status=JobStatus.PROCESSING.value, updated_at=now)

    reclaimed = await repository.reclaim_stale(timedelta(minutes=5))

    assert reclaimed == 1
    assert (await repository.get_job(stale.id)).status == JobStatus.PENDING.value
    assert (await repository.get_job(fresh.id)).status == JobStatus.PROCESSING.value


@pytest.mark.db
async def test_concurrent_claims_on_postgres():
    from review_worker.db.base import Base
    from review_worker.db.session import create_engine, create_session_maker

    engine = create_engine(os.environ["TEST_DATABASE_URL"])
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        repo = JobRepository(create_session_maker(engine))
        for _ in range(20):
            await repo.enqueue(uuid.uuid4(), "sentiment_analysis", {"text_content": "ok"})

        claims = await asyncio.gather(*(repo.claim_next() for _ in range(30)))

        claimed_ids = [job.id for job in claims if job is not None]
        assert len(claimed_ids) == 20
        assert len(set(claimed_ids)) == 20
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


async def test_finalize_ignores_a_claim_that_was_reclaimed(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    first_claim = await repository.claim_next()
    await repository.reclaim_stale(timedelta(seconds=-1))
    second_claim = await repository.claim_next()
    assert second_claim.id == job.id

    late = await repository.finalize(
        job.id, JobOutcome.completed({"from": "first"}), claimed_at=first_claim.updated_at
    )
    current = await repository.finalize(
        job.id, JobOutcome.completed({"from": "second"}), claimed_at=second_claim.updated_at
    )

    assert late is False
    assert current is True
    assert (await repository.get_job(job.id)).result == {"from": "second"}


async def test_finalize_rejects_non_terminal_outcome(repository, insert_job):
    job = await insert_job("sentiment_analysis")
    await repository.claim_next()

    with pytest.raises(ValueError):
        await repository.finalize(job.id, JobOutcome(status=JobStatus.PENDING.value))

    assert (await repository.get_job(job.id)).status == JobStatus.PROCESSING.value
